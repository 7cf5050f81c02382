"""
Exception hierarchy shared by the agent, the invocation loop and chat clients.

Agent-level failures derive from AgentError, backend failures from
ChatClientError and tool failures from ToolError. When the agent wraps a lower
level failure it chains it with ``raise ... from``, so callers can still look
for the original kind with find_cause().
"""

from typing import Optional, Type, TypeVar

E = TypeVar("E", bound=BaseException)


class AgentError(Exception):
    """Base class for failures of the agent machinery."""


class ExecutionError(AgentError):
    """A run failed: iteration budget exhausted or an underlying error at the agent boundary."""


class InitializationError(AgentError):
    """An agent, client or config was built with invalid arguments."""


class SessionError(AgentError):
    """A session could not be used as requested."""


class SessionModeLockedError(SessionError):
    """The session is locked into service or local mode and cannot switch."""


class StreamClosedError(AgentError):
    """A value was requested from a stream that has been closed."""


class ChatClientError(Exception):
    """Base class for chat client failures."""


class ServiceError(ChatClientError):
    """The backend rejected or failed a request.

    Args:
        message: Human readable description
        status_code: HTTP status reported by the backend, if any
        code: Backend specific error code, if any
    """

    def __init__(
        self,
        message: str = "service error",
        status_code: Optional[int] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code

    def __str__(self):
        parts = [self.message]
        if self.status_code is not None:
            parts.append(f"status={self.status_code}")
        if self.code:
            parts.append(f"code={self.code}")
        return " ".join(parts)


class ContentFilterError(ServiceError):
    """The backend blocked the request or response with its content filter."""


class InvalidRequestError(ServiceError):
    """The backend refused the request as malformed."""


class InvalidResponseError(ServiceError):
    """The backend answered with something that could not be interpreted."""


class AuthError(ServiceError):
    """The backend refused the credentials."""


class ToolError(Exception):
    """A tool failed.

    Args:
        message: Human readable description
        tool_name: Name of the tool involved
    """

    def __init__(self, message: str, tool_name: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.tool_name = tool_name


class ToolExecutionError(ToolError):
    """A tool could not be executed, or the invocation loop gave up on tools."""


class MiddlewareError(Exception):
    """Raised by middleware that refuses to pass a request on."""


class ContentDecodeError(ValueError):
    """Serialized content could not be decoded."""


def find_cause(exc: Optional[BaseException], kind: Type[E]) -> Optional[E]:
    """Return the first exception of ``kind`` in the chain starting at ``exc``.

    Follows ``__cause__`` first and falls back to ``__context__``.
    """
    seen = set()
    while exc is not None and id(exc) not in seen:
        if isinstance(exc, kind):
            return exc
        seen.add(id(exc))
        exc = exc.__cause__ or exc.__context__
    return None
