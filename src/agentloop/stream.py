"""
Cancellable single-producer, single-consumer stream.

A ResponseStream drives an async iterable (usually an async generator) in a
background task and hands its values to the consumer through a small bounded
queue. Producer errors are delivered to the consumer at end-of-stream, and
closing the stream cancels the producer and drains the queue so the producer
can never stay blocked on a full buffer.
"""

import asyncio
import logging
from typing import (
    AsyncIterable,
    AsyncIterator,
    Callable,
    Generic,
    List,
    Optional,
    Tuple,
    TypeVar,
)

from .errors import StreamClosedError
from .responses import AgentResponse, AgentResponseUpdate, agent_response_from_updates

logger = logging.getLogger(__name__)

T = TypeVar("T")
U = TypeVar("U")

_END = object()
_CLOSED = object()


class _Failure:
    __slots__ = ("error",)

    def __init__(self, error: BaseException):
        self.error = error


class ResponseStream(Generic[T]):
    """Pull iterator over values produced in a background task.

    Must be created inside a running event loop.

    Parameters
    ----------
    producer : AsyncIterable
        Source of values; an exception it raises ends the stream with that error
    buffer_size : int
        Number of values the producer may run ahead of the consumer
    on_cancel : callable, optional
        Called once when the stream is cancelled, e.g. to cancel an upstream stream
    """

    def __init__(
        self,
        producer: AsyncIterable[T],
        *,
        buffer_size: int = 1,
        on_cancel: Optional[Callable[[], None]] = None,
    ):
        self._on_cancel = on_cancel
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max(1, buffer_size))
        self._closed = False
        self._finished = False
        self._error: Optional[BaseException] = None
        self._unreported_error: Optional[BaseException] = None
        self._close_logged = False
        self._task = asyncio.get_running_loop().create_task(self._pump(producer))

    async def _pump(self, producer: AsyncIterable[T]) -> None:
        iterator = producer.__aiter__()
        try:
            while True:
                try:
                    value = await iterator.__anext__()
                except StopAsyncIteration:
                    break
                await self._queue.put(value)
        except Exception as e:
            try:
                await self._queue.put(_Failure(e))
            except asyncio.CancelledError:
                # closed while the buffer was full
                self._keep_error(e)
                raise
            return
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()
        await self._queue.put(_END)

    @property
    def closed(self) -> bool:
        return self._closed

    async def next(self, timeout: Optional[float] = None) -> Tuple[Optional[T], bool]:
        """Wait for the next value.

        Returns ``(value, True)`` for a value and ``(None, False)`` once the
        producer has finished. A producer error is raised by the call that
        reaches the end of the stream and by every call after it.

        Raises:
            StreamClosedError: If the stream was closed or cancelled; a producer
                error discarded by the close is chained as its cause
            asyncio.TimeoutError: If no value arrived within ``timeout`` seconds
        """
        if self._closed:
            self._raise_closed()
        if self._finished:
            if self._error is not None:
                raise self._error
            return None, False

        if timeout is None:
            item = await self._queue.get()
        else:
            item = await asyncio.wait_for(self._queue.get(), timeout)

        if item is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            self._raise_closed()
        if item is _END:
            self._finished = True
            return None, False
        if isinstance(item, _Failure):
            self._finished = True
            self._error = item.error
            raise item.error
        return item, True

    async def collect(self, timeout: Optional[float] = None) -> List[T]:
        """Drain the stream into a list, raising the first error encountered.

        ``timeout`` bounds the whole collection, not each value.
        """

        async def _drain():
            values = []
            while True:
                value, has_more = await self.next()
                if not has_more:
                    return values
                values.append(value)

        if timeout is None:
            return await _drain()
        return await asyncio.wait_for(_drain(), timeout)

    def _raise_closed(self):
        # a producer error is kept as the cause
        raise StreamClosedError("stream is closed") from self._error

    def _drain_buffer(self) -> None:
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            if isinstance(item, _Failure):
                self._keep_error(item.error)

    def _keep_error(self, error: BaseException) -> None:
        if self._error is None:
            self._error = error
            self._unreported_error = error

    def cancel(self) -> None:
        """Stop the producer and discard buffered values. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True
        self._task.cancel()
        self._drain_buffer()
        # wake a consumer blocked in next()
        self._queue.put_nowait(_CLOSED)
        if self._on_cancel is not None:
            self._on_cancel()

    async def aclose(self) -> None:
        """Cancel the stream and wait for the producer task to finish."""
        self.cancel()
        await asyncio.wait({self._task})
        error, self._unreported_error = self._unreported_error, None
        # closing the producer itself can also fail
        if error is None and not self._task.cancelled() and not self._close_logged:
            error = self._task.exception()
        self._close_logged = True
        if error is not None:
            logger.error(f"Stream producer failed before close: {error}")

    def __aiter__(self) -> AsyncIterator[T]:
        return self

    async def __anext__(self) -> T:
        value, has_more = await self.next()
        if not has_more:
            raise StopAsyncIteration
        return value

    async def __aenter__(self) -> "ResponseStream[T]":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


def map_stream(
    source: ResponseStream[T],
    fn: Callable[[T], U],
    stream_cls: type = ResponseStream,
) -> ResponseStream[U]:
    """Stream ``fn(value)`` for every value of ``source``.

    Closing the mapped stream closes ``source``.
    """

    async def produce():
        try:
            async for value in source:
                yield fn(value)
        finally:
            await source.aclose()

    return stream_cls(produce(), on_cancel=source.cancel)


class AgentResponseStream(ResponseStream[AgentResponseUpdate]):
    """Stream of agent updates that remembers what it delivered."""

    def __init__(self, producer: AsyncIterable[AgentResponseUpdate], **kwargs):
        super().__init__(producer, **kwargs)
        self.updates: List[AgentResponseUpdate] = []

    async def next(
        self, timeout: Optional[float] = None
    ) -> Tuple[Optional[AgentResponseUpdate], bool]:
        value, has_more = await super().next(timeout)
        if has_more:
            self.updates.append(value)
        return value, has_more

    async def final_response(self) -> AgentResponse:
        """Pull the remaining updates and merge everything into one response."""
        await self.collect()
        return agent_response_from_updates(self.updates)
