"""
The function-invocation loop.

Given a chat handler and a message list, the loop asks the backend for a
response, runs the tools it requests, feeds the results back and asks again,
until the model answers without tool calls, a tool needs approval or is
declaration-only, or a limit is hit.
"""

import logging
from dataclasses import dataclass
from typing import Any, List, NamedTuple, Optional, Sequence

from .content import ApprovalRequestContent
from .errors import ExecutionError, ToolExecutionError
from .messages import Message, Role, tool_message
from .middleware import ChatHandler, FunctionMiddleware, chain_function_middleware
from .options import ChatOptions
from .responses import ChatResponse
from .tools import ApprovalMode, Tool, ToolRegistry

_logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 40
DEFAULT_MAX_CONSECUTIVE_ERRORS = 3

UNKNOWN_TOOL_RESULT = "error: unknown tool"
TOOL_ERROR_RESULT = "error invoking tool"


@dataclass(frozen=True)
class InvocationConfig:
    """Bounds for one invocation loop.

    Non-positive limits fall back to the defaults.
    """

    max_iterations: int = DEFAULT_MAX_ITERATIONS
    max_consecutive_errors: int = DEFAULT_MAX_CONSECUTIVE_ERRORS
    terminate_on_unknown: bool = False
    include_detailed_errors: bool = False

    def __post_init__(self):
        if self.max_iterations <= 0:
            object.__setattr__(self, "max_iterations", DEFAULT_MAX_ITERATIONS)
        if self.max_consecutive_errors <= 0:
            object.__setattr__(
                self, "max_consecutive_errors", DEFAULT_MAX_CONSECUTIVE_ERRORS
            )


class InvocationResult(NamedTuple):
    """Final response plus every message the loop generated, in order."""

    response: ChatResponse
    new_messages: List[Message]


async def _invoke_tool(tool: Tool, arguments: str) -> Any:
    return await tool.invoke(arguments)


def _log_event(log, log_type: str, message: str, level: int = logging.INFO, **fields):
    log.log(level, message, extra={"structured": {"log_type": log_type, **fields}})


async def invoke_functions(
    chat_handler: ChatHandler,
    messages: Sequence[Message],
    options: Optional[ChatOptions] = None,
    config: Optional[InvocationConfig] = None,
    function_middleware: Optional[Sequence[FunctionMiddleware]] = None,
    logger: Optional[logging.Logger | logging.LoggerAdapter] = None,
) -> InvocationResult:
    """Run the tool-calling loop.

    Parameters
    ----------
    chat_handler : ChatHandler
        Backend call, usually the client's respond wrapped in chat middleware
    messages : sequence of Message
        Conversation so far; not modified
    options : ChatOptions, optional
        Options for every backend call; ``options.tools`` is what calls resolve against
    config : InvocationConfig, optional
        Loop bounds
    function_middleware : sequence, optional
        Wraps every tool invocation
    logger : logging.Logger or logging.LoggerAdapter, optional
        Receives structured tool events; the module logger when omitted

    Returns
    -------
    InvocationResult
        The final response and the messages generated along the way

    Raises
    ------
    ToolExecutionError
        An unknown tool was called with ``terminate_on_unknown`` set, or
        ``max_consecutive_errors`` tool failures happened in a row
    ExecutionError
        ``max_iterations`` backend calls did not produce a final answer
    """
    config = config or InvocationConfig()
    log = logger or _logger
    registry = ToolRegistry(options.tools if options is not None else None)
    invoke = chain_function_middleware(_invoke_tool, function_middleware)

    history = list(messages)
    generated: List[Message] = []
    consecutive_errors = 0

    for iteration in range(config.max_iterations):
        response = await chat_handler(history, options)

        calls = response.function_calls()
        if not calls:
            generated.extend(response.messages)
            return InvocationResult(response, generated)

        results: List[Message] = []
        for call in calls:
            tool = registry.get(call.name)

            if tool is None:
                if config.terminate_on_unknown:
                    raise ToolExecutionError(f"unknown tool: {call.name}", tool_name=call.name)
                consecutive_errors += 1
                _log_event(
                    log,
                    "unknown_tool",
                    f"Model called unknown tool '{call.name}'",
                    logging.WARNING,
                    tool_name=call.name,
                    call_id=call.call_id,
                )
                if consecutive_errors >= config.max_consecutive_errors:
                    raise ToolExecutionError(
                        f"max consecutive errors reached ({consecutive_errors})",
                        tool_name=call.name,
                    )
                results.append(tool_message(call.call_id, UNKNOWN_TOOL_RESULT))
                continue

            if tool.approval_mode == ApprovalMode.ALWAYS:
                _log_event(
                    log,
                    "tool_signal",
                    f"Tool '{tool.name}' requires approval, ending loop",
                    tool_name=tool.name,
                    call_id=call.call_id,
                    signal="approval_required",
                )
                response.messages.append(
                    Message(
                        role=Role.ASSISTANT,
                        contents=[
                            ApprovalRequestContent(
                                call_id=call.call_id, name=call.name, arguments=call.arguments
                            )
                        ],
                    )
                )
                generated.extend(response.messages)
                return InvocationResult(response, generated)

            if tool.declaration_only:
                _log_event(
                    log,
                    "tool_signal",
                    f"Tool '{tool.name}' is declaration-only, returning call to caller",
                    tool_name=tool.name,
                    call_id=call.call_id,
                    signal="declaration_only",
                )
                generated.extend(response.messages)
                return InvocationResult(response, generated)

            _log_event(
                log,
                "tool_call",
                f"Tool call {tool.name}",
                tool_name=tool.name,
                arguments=call.arguments,
                call_id=call.call_id,
                iteration=iteration,
            )
            try:
                result = await invoke(tool, call.arguments)
            except Exception as e:
                consecutive_errors += 1
                _log_event(
                    log,
                    "tool_error",
                    f"Tool {tool.name} failed ({consecutive_errors} in a row): {e}",
                    logging.WARNING,
                    tool_name=tool.name,
                    call_id=call.call_id,
                    error=str(e),
                )
                if consecutive_errors >= config.max_consecutive_errors:
                    raise ToolExecutionError(
                        f"max consecutive errors reached ({consecutive_errors})",
                        tool_name=tool.name,
                    ) from e
                text = str(e) if config.include_detailed_errors else TOOL_ERROR_RESULT
                results.append(tool_message(call.call_id, text))
                continue

            consecutive_errors = 0
            _log_event(
                log,
                "tool_result",
                f"Tool result {tool.name}",
                tool_name=tool.name,
                call_id=call.call_id,
                result=str(result),
            )
            results.append(tool_message(call.call_id, result))

        history.extend(response.messages)
        history.extend(results)
        generated.extend(response.messages)
        generated.extend(results)

    raise ExecutionError(f"max iterations reached ({config.max_iterations})")
