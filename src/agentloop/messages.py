"""Role-tagged messages and helpers to build message lists."""

from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .content import (
    Content,
    FunctionCallContent,
    FunctionResultContent,
    TextContent,
    content_from_dict,
    content_to_dict,
)


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


class FinishReason(str, Enum):
    """Well-known finish reasons. Backends may report other strings."""

    STOP = "stop"
    LENGTH = "length"
    TOOL_CALLS = "tool_calls"
    CONTENT_FILTER = "content_filter"


class Message(BaseModel):
    """One turn's contribution: a role and an ordered list of content items."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    role: Role
    contents: List[Content] = Field(default_factory=list)
    author_name: Optional[str] = None
    message_id: Optional[str] = None

    @property
    def text(self) -> str:
        """Concatenated text of all plain text contents."""
        return "".join(c.text for c in self.contents if isinstance(c, TextContent))

    def function_calls(self) -> List[FunctionCallContent]:
        return [c for c in self.contents if isinstance(c, FunctionCallContent)]

    def to_dict(self) -> Dict[str, Any]:
        data = {"role": self.role.value, "contents": [content_to_dict(c) for c in self.contents]}
        if self.author_name is not None:
            data["authorName"] = self.author_name
        if self.message_id is not None:
            data["messageId"] = self.message_id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        return cls(
            role=data["role"],
            contents=[content_from_dict(c) for c in data.get("contents", [])],
            author_name=data.get("authorName"),
            message_id=data.get("messageId"),
        )


def user_message(text: str) -> Message:
    return Message(role=Role.USER, contents=[TextContent(text=text)])


def assistant_message(text: str) -> Message:
    return Message(role=Role.ASSISTANT, contents=[TextContent(text=text)])


def system_message(text: str) -> Message:
    return Message(role=Role.SYSTEM, contents=[TextContent(text=text)])


def tool_message(call_id: str, result: Any) -> Message:
    """Tool messages carry exactly one function result."""
    return Message(
        role=Role.TOOL, contents=[FunctionResultContent(call_id=call_id, result=result)]
    )


MessageInput = Union[None, str, Message, Iterable[Union[str, Message]]]


def normalize_messages(messages: MessageInput) -> List[Message]:
    """Turn the loose inputs accepted by Agent.run into a fresh list of messages.

    Plain strings become user messages.
    """
    if messages is None:
        return []
    if isinstance(messages, (str, Message)):
        messages = [messages]
    result = []
    for item in messages:
        if isinstance(item, str):
            result.append(user_message(item))
        elif isinstance(item, Message):
            result.append(item)
        else:
            raise TypeError(f"Unsupported message input: {type(item).__name__}")
    return result


def prepend_instructions(messages: List[Message], instructions: Optional[str]) -> List[Message]:
    """Prepend a system message carrying ``instructions``.

    Nothing is added when the instructions are empty or the list already has a
    system message.
    """
    if not instructions or not instructions.strip():
        return list(messages)
    if any(m.role == Role.SYSTEM for m in messages):
        return list(messages)
    return [system_message(instructions)] + list(messages)
