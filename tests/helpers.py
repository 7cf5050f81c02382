"""
Fakes shared by the test suite: a scripted chat client and response builders.
"""

import json
from typing import Callable, List, Optional

from agentloop.client import ChatClient
from agentloop.content import FunctionCallContent, TextContent, UsageDetails
from agentloop.messages import Message, Role
from agentloop.responses import ChatResponse
from agentloop.stream import ResponseStream


def text_response(text: str, **kwargs) -> ChatResponse:
    return ChatResponse(
        messages=[Message(role=Role.ASSISTANT, contents=[TextContent(text=text)])],
        finish_reason="stop",
        **kwargs,
    )


def call_response(*calls, **kwargs) -> ChatResponse:
    """Response requesting tool calls given as (call_id, name, arguments dict)."""
    contents = [
        FunctionCallContent(call_id=call_id, name=name, arguments=json.dumps(arguments))
        for call_id, name, arguments in calls
    ]
    return ChatResponse(
        messages=[Message(role=Role.ASSISTANT, contents=contents)],
        finish_reason="tool_calls",
        usage=UsageDetails(input_token_count=1, output_token_count=1, total_token_count=2),
        **kwargs,
    )


class ScriptedChatClient(ChatClient):
    """Chat client that replays scripted responses and records every request.

    A scripted item may be a ChatResponse, an exception to raise, or a callable
    ``(messages, options) -> ChatResponse``. ``responder`` answers every call
    once the script is exhausted.
    """

    def __init__(
        self,
        responses: Optional[list] = None,
        updates: Optional[list] = None,
        responder: Optional[Callable] = None,
    ):
        self.responses = list(responses or [])
        self.updates = list(updates or [])
        self.responder = responder
        self.calls: List[tuple] = []
        self.stream_calls: List[tuple] = []

    async def respond(self, messages, options=None):
        self.calls.append((list(messages), options))
        if self.responses:
            item = self.responses.pop(0)
        elif self.responder is not None:
            item = self.responder
        else:
            raise AssertionError("ScriptedChatClient ran out of responses")
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            return item(messages, options)
        return item

    async def stream_respond(self, messages, options=None):
        self.stream_calls.append((list(messages), options))
        updates = list(self.updates)

        async def produce():
            for update in updates:
                if isinstance(update, BaseException):
                    raise update
                yield update

        return ResponseStream(produce())
