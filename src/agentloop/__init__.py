"""
agentloop - client-side orchestration for tool-calling LLM agents.

The package provides the function-invocation loop, agent/chat/function
middleware pipelines, a cancellable response stream with update merging, and
sessions that keep conversation history locally or with the backend.
"""

__version__ = "0.1.0"

from .agent import Agent, AgentLoggerAdapter
from .client import ChatClient
from .content import (
    ApprovalRequestContent,
    ApprovalResponseContent,
    Content,
    DataContent,
    ErrorContent,
    FunctionCallContent,
    FunctionResultContent,
    TextContent,
    TextReasoningContent,
    UriContent,
    UsageContent,
    UsageDetails,
    content_from_dict,
    content_to_dict,
)
from .context import ContextProvider, InvocationContext
from .errors import (
    AgentError,
    AuthError,
    ChatClientError,
    ContentFilterError,
    ExecutionError,
    InitializationError,
    InvalidRequestError,
    InvalidResponseError,
    MiddlewareError,
    ServiceError,
    SessionError,
    SessionModeLockedError,
    StreamClosedError,
    ToolError,
    ToolExecutionError,
    find_cause,
)
from .invocation import InvocationConfig, InvocationResult, invoke_functions
from .messages import FinishReason, Message, Role, user_message
from .middleware import AgentRequest, chain, logging_middleware
from .options import ChatOptions, ToolChoice, merge_chat_options, tool_choice_function
from .responses import (
    AgentResponse,
    AgentResponseUpdate,
    ChatResponse,
    ChatResponseUpdate,
    agent_response_from_updates,
    chat_response_from_updates,
)
from .session import InMemoryStore, MessageStore, Session
from .stream import AgentResponseStream, ResponseStream, map_stream
from .tools import ApprovalMode, FunctionTool, Tool, ToolRegistry, tool

__all__ = [
    "Agent",
    "AgentLoggerAdapter",
    "ChatClient",
    "ChatOptions",
    "ToolChoice",
    "merge_chat_options",
    "tool_choice_function",
    "Message",
    "Role",
    "FinishReason",
    "user_message",
    "Content",
    "TextContent",
    "TextReasoningContent",
    "DataContent",
    "UriContent",
    "ErrorContent",
    "FunctionCallContent",
    "FunctionResultContent",
    "UsageContent",
    "UsageDetails",
    "ApprovalRequestContent",
    "ApprovalResponseContent",
    "content_to_dict",
    "content_from_dict",
    "ContextProvider",
    "InvocationContext",
    "InvocationConfig",
    "InvocationResult",
    "invoke_functions",
    "AgentRequest",
    "chain",
    "logging_middleware",
    "ChatResponse",
    "ChatResponseUpdate",
    "AgentResponse",
    "AgentResponseUpdate",
    "chat_response_from_updates",
    "agent_response_from_updates",
    "Session",
    "MessageStore",
    "InMemoryStore",
    "ResponseStream",
    "AgentResponseStream",
    "map_stream",
    "Tool",
    "FunctionTool",
    "ToolRegistry",
    "ApprovalMode",
    "tool",
    "AgentError",
    "ExecutionError",
    "InitializationError",
    "SessionError",
    "SessionModeLockedError",
    "StreamClosedError",
    "ChatClientError",
    "ServiceError",
    "ContentFilterError",
    "InvalidRequestError",
    "InvalidResponseError",
    "AuthError",
    "ToolError",
    "ToolExecutionError",
    "MiddlewareError",
    "find_cause",
]
