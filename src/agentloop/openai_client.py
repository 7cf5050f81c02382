"""
ChatClient implementation for OpenAI-compatible chat completions endpoints.
"""

import json
import logging
import os
from typing import Any, Dict, Iterator, List, Optional

import openai
from openai import AsyncOpenAI

from .client import ChatClient
from .content import (
    DataContent,
    FunctionCallContent,
    FunctionResultContent,
    TextContent,
    TextReasoningContent,
    UriContent,
    UsageDetails,
)
from .errors import (
    AuthError,
    ContentFilterError,
    InitializationError,
    InvalidRequestError,
    InvalidResponseError,
    ServiceError,
)
from .messages import Message, Role
from .options import FUNCTION_CHOICE_PREFIX, ChatOptions
from .responses import ChatResponse, ChatResponseUpdate
from .stream import ResponseStream
from .tools import ToolRegistry

logger = logging.getLogger(__name__)


def map_openai_error(exc: openai.APIError) -> ServiceError:
    """Translate an SDK exception into the matching ServiceError kind."""
    code = getattr(exc, "code", None)
    message = getattr(exc, "message", None) or str(exc)

    if isinstance(exc, openai.APIStatusError):
        status = exc.status_code
        if code == "content_filter":
            cls = ContentFilterError
        elif status in (401, 403):
            cls = AuthError
        elif status == 400:
            cls = InvalidRequestError
        else:
            cls = ServiceError
        return cls(message, status_code=status, code=code)

    if code == "content_filter":
        return ContentFilterError(message, code=code)
    return ServiceError(message, code=code)


def _result_text(result: Any) -> str:
    if isinstance(result, str):
        return result
    try:
        return json.dumps(result)
    except (TypeError, ValueError):
        return str(result)


def _is_image(content) -> bool:
    return bool(content.media_type and content.media_type.startswith("image/"))


def _to_openai_messages(messages: List[Message]) -> List[Dict[str, Any]]:
    result = []
    for message in messages:
        if message.role == Role.TOOL:
            for content in message.contents:
                if isinstance(content, FunctionResultContent):
                    result.append(
                        {
                            "role": "tool",
                            "tool_call_id": content.call_id,
                            "content": _result_text(content.result),
                        }
                    )
            continue

        if message.role == Role.ASSISTANT:
            calls = message.function_calls()
            if not calls and not message.text:
                continue
            entry: Dict[str, Any] = {"role": "assistant", "content": message.text or None}
            if calls:
                entry["tool_calls"] = [
                    {
                        "id": call.call_id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": call.arguments or "{}"},
                    }
                    for call in calls
                ]
            if message.author_name:
                entry["name"] = message.author_name
            result.append(entry)
            continue

        has_media = any(
            isinstance(c, (DataContent, UriContent)) and _is_image(c) for c in message.contents
        )
        if has_media:
            parts = []
            for content in message.contents:
                if isinstance(content, TextContent):
                    parts.append({"type": "text", "text": content.text})
                elif isinstance(content, (DataContent, UriContent)) and _is_image(content):
                    parts.append({"type": "image_url", "image_url": {"url": content.uri}})
            entry = {"role": message.role.value, "content": parts}
        else:
            entry = {"role": message.role.value, "content": message.text}
        if message.author_name:
            entry["name"] = message.author_name
        result.append(entry)
    return result


def _usage_from(usage: Any) -> Optional[UsageDetails]:
    if usage is None:
        return None
    return UsageDetails(
        input_token_count=getattr(usage, "prompt_tokens", None),
        output_token_count=getattr(usage, "completion_tokens", None),
        total_token_count=getattr(usage, "total_tokens", None),
    )


class OpenAIChatClient(ChatClient):
    """ChatClient backed by ``AsyncOpenAI().chat.completions``.

    Parameters
    ----------
    api_key : str, optional
        Defaults to the OPENAI_API_KEY environment variable
    model : str, optional
        Used when the options carry no model id
    base_url, organization, default_headers : optional
        Passed through to AsyncOpenAI
    client : AsyncOpenAI, optional
        Pre-built SDK client; the other connection arguments are then ignored
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        organization: Optional[str] = None,
        default_headers: Optional[Dict[str, str]] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model = model
        if client is None:
            client = AsyncOpenAI(
                api_key=api_key or os.getenv("OPENAI_API_KEY"),
                base_url=base_url,
                organization=organization,
                default_headers=default_headers,
            )
        self.client = client

    @classmethod
    def from_settings(cls, settings) -> "OpenAIChatClient":
        return cls(
            settings.openai_api_key,
            model=settings.model,
            base_url=settings.openai_base_url,
            organization=settings.openai_org_id,
        )

    def _prepare_request(
        self, messages: List[Message], options: Optional[ChatOptions]
    ) -> Dict[str, Any]:
        options = options or ChatOptions()
        model = options.model_id or self.model
        if not model:
            raise InitializationError("no model configured for OpenAIChatClient")

        if options.instructions and not any(m.role == Role.SYSTEM for m in messages):
            messages = [
                Message(role=Role.SYSTEM, contents=[TextContent(text=options.instructions)])
            ] + list(messages)

        request: Dict[str, Any] = {"model": model, "messages": _to_openai_messages(messages)}
        simple = {
            "temperature": options.temperature,
            "top_p": options.top_p,
            "max_completion_tokens": options.max_tokens,
            "stop": options.stop,
            "seed": options.seed,
            "frequency_penalty": options.frequency_penalty,
            "presence_penalty": options.presence_penalty,
            "response_format": options.response_format,
            "metadata": options.metadata,
            "user": options.user,
            "store": options.store,
        }
        request.update({k: v for k, v in simple.items() if v is not None})

        if options.tools:
            request["tools"] = ToolRegistry(options.tools).get_schemas()
            if options.tool_choice:
                choice = str(
                    getattr(options.tool_choice, "value", options.tool_choice)
                )
                if choice.startswith(FUNCTION_CHOICE_PREFIX):
                    request["tool_choice"] = {
                        "type": "function",
                        "function": {"name": choice[len(FUNCTION_CHOICE_PREFIX):]},
                    }
                else:
                    request["tool_choice"] = choice
        if options.extra:
            request["extra_body"] = dict(options.extra)
        return request

    def _parse_completion(self, completion: Any) -> ChatResponse:
        if not completion.choices:
            raise InvalidResponseError("chat completion contained no choices")
        choice = completion.choices[0]
        message = choice.message

        contents = []
        reasoning = getattr(message, "reasoning_content", None)
        if reasoning:
            contents.append(TextReasoningContent(text=reasoning))
        if message.content:
            contents.append(TextContent(text=message.content))
        for call in message.tool_calls or []:
            contents.append(
                FunctionCallContent(
                    call_id=call.id,
                    name=call.function.name,
                    arguments=call.function.arguments or "",
                )
            )

        return ChatResponse(
            messages=[Message(role=Role.ASSISTANT, contents=contents)] if contents else [],
            response_id=completion.id,
            model_id=completion.model,
            finish_reason=choice.finish_reason,
            usage=_usage_from(getattr(completion, "usage", None)),
            raw=completion,
        )

    async def respond(
        self, messages: List[Message], options: Optional[ChatOptions] = None
    ) -> ChatResponse:
        request = self._prepare_request(messages, options)
        logger.debug(
            f"Chat completion request for {request['model']} "
            f"with {len(request['messages'])} message(s)"
        )
        try:
            completion = await self.client.chat.completions.create(**request)
        except openai.APIError as e:
            logger.error(f"Error creating chat completion: {e}")
            raise map_openai_error(e) from e
        return self._parse_completion(completion)

    async def stream_respond(
        self, messages: List[Message], options: Optional[ChatOptions] = None
    ) -> ResponseStream[ChatResponseUpdate]:
        request = self._prepare_request(messages, options)
        try:
            stream = await self.client.chat.completions.create(
                stream=True, stream_options={"include_usage": True}, **request
            )
        except openai.APIError as e:
            logger.error(f"Error creating chat completion stream: {e}")
            raise map_openai_error(e) from e
        return ResponseStream(self._iterate_stream(stream))

    async def _iterate_stream(self, stream: Any):
        # tool call fragments by index until the choice finishes
        pending: Dict[int, Dict[str, str]] = {}
        last_id = None
        try:
            async for chunk in stream:
                last_id = chunk.id or last_id
                for update in self._parse_chunk(chunk, pending):
                    yield update
            if pending:
                yield ChatResponseUpdate(
                    contents=_flush_calls(pending), role=Role.ASSISTANT, response_id=last_id
                )
        except openai.APIError as e:
            raise map_openai_error(e) from e
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                await close()

    def _parse_chunk(
        self, chunk: Any, pending: Dict[int, Dict[str, str]]
    ) -> Iterator[ChatResponseUpdate]:
        usage = _usage_from(getattr(chunk, "usage", None))
        if not chunk.choices:
            if usage is not None:
                yield ChatResponseUpdate(
                    response_id=chunk.id, model_id=chunk.model, usage=usage, raw=chunk
                )
            return

        choice = chunk.choices[0]
        delta = choice.delta
        contents = []
        reasoning = getattr(delta, "reasoning_content", None)
        if reasoning:
            contents.append(TextReasoningContent(text=reasoning))
        if delta.content:
            contents.append(TextContent(text=delta.content))
        for fragment in delta.tool_calls or []:
            entry = pending.setdefault(fragment.index, {"id": "", "name": "", "arguments": ""})
            if fragment.id:
                entry["id"] = fragment.id
            if fragment.function is not None:
                if fragment.function.name:
                    entry["name"] = fragment.function.name
                if fragment.function.arguments:
                    entry["arguments"] += fragment.function.arguments
        if choice.finish_reason and pending:
            contents.extend(_flush_calls(pending))

        yield ChatResponseUpdate(
            contents=contents,
            role=Role(delta.role) if delta.role else None,
            response_id=chunk.id,
            model_id=chunk.model,
            finish_reason=choice.finish_reason,
            usage=usage,
            raw=chunk,
        )


def _flush_calls(pending: Dict[int, Dict[str, str]]) -> List[FunctionCallContent]:
    calls = [
        FunctionCallContent(
            call_id=pending[index]["id"],
            name=pending[index]["name"],
            arguments=pending[index]["arguments"],
        )
        for index in sorted(pending)
    ]
    pending.clear()
    return calls
