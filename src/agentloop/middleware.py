"""
Middleware pipelines for agent runs, chat calls and function invocations.

A middleware takes the next handler and returns a new handler. All three
pipelines are built by the same chain(): the first middleware in the list
becomes the outermost wrapper, so its pre-logic runs first and its
post-logic runs last.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Sequence, TypeVar

from .messages import Message
from .options import ChatOptions
from .responses import AgentResponse, ChatResponse
from .session import Session
from .tools import Tool


@dataclass
class AgentRequest:
    """What an agent middleware sees for one run."""

    messages: List[Message] = field(default_factory=list)
    session: Optional[Session] = None
    options: Optional[ChatOptions] = None


AgentHandler = Callable[[AgentRequest], Awaitable[AgentResponse]]
ChatHandler = Callable[[List[Message], Optional[ChatOptions]], Awaitable[ChatResponse]]
FunctionHandler = Callable[[Tool, str], Awaitable[Any]]

AgentMiddleware = Callable[[AgentHandler], AgentHandler]
ChatMiddleware = Callable[[ChatHandler], ChatHandler]
FunctionMiddleware = Callable[[FunctionHandler], FunctionHandler]

H = TypeVar("H")


def chain(handler: H, middleware: Optional[Sequence[Callable[[H], H]]]) -> H:
    """Wrap ``handler`` so that ``middleware[0]`` is the outermost layer."""
    for mw in reversed(list(middleware or [])):
        handler = mw(handler)
    return handler


def chain_agent_middleware(
    handler: AgentHandler, middleware: Optional[Sequence[AgentMiddleware]]
) -> AgentHandler:
    return chain(handler, middleware)


def chain_chat_middleware(
    handler: ChatHandler, middleware: Optional[Sequence[ChatMiddleware]]
) -> ChatHandler:
    return chain(handler, middleware)


def chain_function_middleware(
    handler: FunctionHandler, middleware: Optional[Sequence[FunctionMiddleware]]
) -> FunctionHandler:
    return chain(handler, middleware)


def logging_middleware(logger: logging.Logger | logging.LoggerAdapter) -> AgentMiddleware:
    """Agent middleware that logs start, finish, duration and token usage of each run.

    Parameters
    ----------
    logger : logging.Logger or logging.LoggerAdapter
        Destination of the records; nothing is logged anywhere else
    """

    def middleware(next_handler: AgentHandler) -> AgentHandler:
        async def handler(request: AgentRequest) -> AgentResponse:
            start = time.perf_counter()
            logger.info(
                f"Agent run started with {len(request.messages)} message(s)",
                extra={
                    "structured": {
                        "log_type": "agent_run",
                        "stage": "start",
                        "message_count": len(request.messages),
                    }
                },
            )
            try:
                response = await next_handler(request)
            except Exception as e:
                elapsed = time.perf_counter() - start
                logger.error(
                    f"Agent run failed after {elapsed:.3f}s: {e}",
                    extra={
                        "structured": {
                            "log_type": "agent_run",
                            "stage": "error",
                            "duration": elapsed,
                            "error": str(e),
                        }
                    },
                )
                raise

            elapsed = time.perf_counter() - start
            usage = response.usage
            structured = {"log_type": "agent_run", "stage": "finish", "duration": elapsed}
            if usage is not None:
                structured.update(
                    input_tokens=usage.input_token_count,
                    output_tokens=usage.output_token_count,
                    total_tokens=usage.total_token_count,
                )
            logger.info(
                f"Agent run finished in {elapsed:.3f}s", extra={"structured": structured}
            )
            return response

        return handler

    return middleware
