"""Context providers: hooks that run around every agent invocation."""

from dataclasses import dataclass, field
from typing import List, Optional

from .messages import Message
from .tools import Tool


@dataclass
class InvocationContext:
    """Extra material a provider contributes to one run."""

    instructions: Optional[str] = None
    messages: List[Message] = field(default_factory=list)
    tools: List[Tool] = field(default_factory=list)


class ContextProvider:
    """Base provider; every hook is a no-op. Override what you need."""

    async def invoking(self, messages: List[Message]) -> Optional[InvocationContext]:
        """Called before the backend sees ``messages``."""
        return None

    async def invoked(
        self, request_messages: List[Message], response_messages: List[Message]
    ) -> None:
        """Called after a run completed with the new input and everything it produced."""
        return None

    async def session_created(self, session_id: str) -> None:
        return None
