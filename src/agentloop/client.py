"""The chat client contract the agent talks to."""

from abc import ABC, abstractmethod
from typing import List, Optional

from .messages import Message
from .options import ChatOptions
from .responses import ChatResponse, ChatResponseUpdate
from .stream import ResponseStream


class ChatClient(ABC):
    """A backend that answers message lists.

    Implementations raise ServiceError subclasses for backend failures.
    """

    @abstractmethod
    async def respond(
        self, messages: List[Message], options: Optional[ChatOptions] = None
    ) -> ChatResponse:
        ...

    @abstractmethod
    async def stream_respond(
        self, messages: List[Message], options: Optional[ChatOptions] = None
    ) -> ResponseStream[ChatResponseUpdate]:
        ...
