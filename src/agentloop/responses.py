"""
Complete responses, streaming updates, and the merge that reduces a sequence
of updates back into one response.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional

from .content import ApprovalRequestContent, FunctionCallContent, TextContent, UsageDetails
from .messages import Message, Role


def merge_content_deltas(contents: Iterable[Any]) -> list:
    """Collapse runs of adjacent plain text items into single text items."""
    merged = []
    pending: List[str] = []

    def flush():
        if pending:
            merged.append(TextContent(text="".join(pending)))
            pending.clear()

    for content in contents:
        if isinstance(content, TextContent):
            pending.append(content.text)
            continue
        flush()
        merged.append(content)
    flush()
    return merged


def _text_of(contents) -> str:
    return "".join(c.text for c in contents if isinstance(c, TextContent))


_UNSET = object()


def _leading_role(response) -> Optional[Role]:
    # a merged response keeps the role its updates carried, even when none did
    if response._update_role is not _UNSET:
        return response._update_role
    return response.messages[0].role if response.messages else None


@dataclass
class ChatResponse:
    """One complete backend turn."""

    messages: List[Message] = field(default_factory=list)
    response_id: Optional[str] = None
    conversation_id: Optional[str] = None
    model_id: Optional[str] = None
    finish_reason: Optional[str] = None
    usage: Optional[UsageDetails] = None
    raw: Any = None
    _update_role: Any = field(default=_UNSET, init=False, repr=False, compare=False)

    @property
    def text(self) -> str:
        return "".join(m.text for m in self.messages)

    def function_calls(self) -> List[FunctionCallContent]:
        """Every function call across all messages, in document order."""
        return [call for m in self.messages for call in m.function_calls()]

    def as_update(self) -> "ChatResponseUpdate":
        return ChatResponseUpdate(
            contents=[c for m in self.messages for c in m.contents],
            role=_leading_role(self),
            author_name=self.messages[0].author_name if self.messages else None,
            response_id=self.response_id,
            conversation_id=self.conversation_id,
            model_id=self.model_id,
            finish_reason=self.finish_reason,
            usage=self.usage,
            raw=self.raw,
        )


@dataclass
class ChatResponseUpdate:
    """One incremental slice of a streamed backend turn."""

    contents: List[Any] = field(default_factory=list)
    role: Optional[Role] = None
    author_name: Optional[str] = None
    response_id: Optional[str] = None
    message_id: Optional[str] = None
    conversation_id: Optional[str] = None
    model_id: Optional[str] = None
    finish_reason: Optional[str] = None
    usage: Optional[UsageDetails] = None
    raw: Any = None

    @property
    def text(self) -> str:
        return _text_of(self.contents)


@dataclass
class AgentResponse:
    """Result of Agent.run."""

    messages: List[Message] = field(default_factory=list)
    response_id: Optional[str] = None
    agent_id: Optional[str] = None
    usage: Optional[UsageDetails] = None
    raw: Any = None
    _update_role: Any = field(default=_UNSET, init=False, repr=False, compare=False)

    @property
    def text(self) -> str:
        return "".join(m.text for m in self.messages)

    @property
    def user_input_requests(self) -> List[ApprovalRequestContent]:
        """Tool calls waiting for approval before the run can continue."""
        return [
            c
            for m in self.messages
            for c in m.contents
            if isinstance(c, ApprovalRequestContent)
        ]

    def as_update(self) -> "AgentResponseUpdate":
        return AgentResponseUpdate(
            contents=[c for m in self.messages for c in m.contents],
            role=_leading_role(self),
            author_name=self.messages[0].author_name if self.messages else None,
            agent_id=self.agent_id,
            response_id=self.response_id,
            usage=self.usage,
            raw=self.raw,
        )


@dataclass
class AgentResponseUpdate:
    """One incremental slice of Agent.run_stream output."""

    contents: List[Any] = field(default_factory=list)
    role: Optional[Role] = None
    author_name: Optional[str] = None
    agent_id: Optional[str] = None
    response_id: Optional[str] = None
    message_id: Optional[str] = None
    usage: Optional[UsageDetails] = None
    raw: Any = None

    @property
    def text(self) -> str:
        return _text_of(self.contents)


def _has_usage(usage: Optional[UsageDetails]) -> bool:
    return usage is not None and bool(usage.total_token_count)


def chat_response_from_updates(updates: Iterable[ChatResponseUpdate]) -> ChatResponse:
    """
    Reduce streamed updates into one response.

    Contents are concatenated in arrival order and adjacent text is collapsed.
    Ids, model and finish reason take the last non-empty value seen, usage the
    last update whose total is non-zero, and the role comes from the first
    update that sets one.
    """
    response = ChatResponse()
    role = None
    author_name = None
    contents = []

    for update in updates:
        contents.extend(update.contents)
        if role is None and update.role:
            role = update.role
        if author_name is None and update.author_name:
            author_name = update.author_name
        if update.response_id:
            response.response_id = update.response_id
        if update.conversation_id:
            response.conversation_id = update.conversation_id
        if update.model_id:
            response.model_id = update.model_id
        if update.finish_reason:
            response.finish_reason = update.finish_reason
        if _has_usage(update.usage):
            response.usage = update.usage
        if update.raw is not None:
            response.raw = update.raw

    response._update_role = role
    contents = merge_content_deltas(contents)
    if contents:
        response.messages = [
            Message(role=role or Role.ASSISTANT, contents=contents, author_name=author_name)
        ]
    return response


def agent_response_from_updates(updates: Iterable[AgentResponseUpdate]) -> AgentResponse:
    """Same reduction as chat_response_from_updates, for agent updates."""
    response = AgentResponse()
    role = None
    author_name = None
    contents = []

    for update in updates:
        contents.extend(update.contents)
        if role is None and update.role:
            role = update.role
        if author_name is None and update.author_name:
            author_name = update.author_name
        if update.agent_id:
            response.agent_id = update.agent_id
        if update.response_id:
            response.response_id = update.response_id
        if _has_usage(update.usage):
            response.usage = update.usage
        if update.raw is not None:
            response.raw = update.raw

    response._update_role = role
    contents = merge_content_deltas(contents)
    if contents:
        response.messages = [
            Message(role=role or Role.ASSISTANT, contents=contents, author_name=author_name)
        ]
    return response
