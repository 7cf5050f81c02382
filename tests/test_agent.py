"""Tests for Agent.run and Agent.run_stream."""

import asyncio
import logging

import pytest

from agentloop.agent import Agent
from agentloop.content import TextContent, UsageDetails
from agentloop.context import ContextProvider, InvocationContext
from agentloop.errors import (
    ExecutionError,
    InitializationError,
    InvalidRequestError,
    SessionModeLockedError,
    ToolExecutionError,
    find_cause,
)
from agentloop.invocation import InvocationConfig
from agentloop.messages import Role, system_message, user_message
from agentloop.options import ChatOptions
from agentloop.responses import AgentResponse, ChatResponseUpdate
from agentloop.session import LOCAL_MODE, SERVICE_MODE, InMemoryStore
from agentloop.stream import ResponseStream
from agentloop.tools import FunctionTool

from helpers import ScriptedChatClient, call_response, text_response

pytestmark = pytest.mark.asyncio


class RecordingProvider(ContextProvider):
    def __init__(self, context=None, fail_invoked=False):
        self.context = context
        self.fail_invoked = fail_invoked
        self.invoking_calls = []
        self.invoked_calls = []
        self.created = []

    async def invoking(self, messages):
        self.invoking_calls.append(list(messages))
        return self.context

    async def invoked(self, request_messages, response_messages):
        self.invoked_calls.append((list(request_messages), list(response_messages)))
        if self.fail_invoked:
            raise RuntimeError("memory backend offline")

    async def session_created(self, session_id):
        self.created.append(session_id)


async def test_agent_requires_a_client():
    with pytest.raises(InitializationError):
        Agent(None)


async def test_tool_scenario_through_the_agent(add_tool):
    client = ScriptedChatClient(
        [call_response(("c1", "add", {"a": 3, "b": 4})), text_response("The answer is 7.")]
    )
    agent = Agent(client, instructions="You are a calculator.", tools=[add_tool], agent_id="calc")

    response = await agent.run("What is 3+4?")

    assert response.text == "The answer is 7."
    assert response.agent_id == "calc"
    assert len(client.calls) == 2
    first_request, first_options = client.calls[0]
    assert first_request[0] == system_message("You are a calculator.")
    assert first_request[1] == user_message("What is 3+4?")
    assert [t.name for t in first_options.tools] == ["add"]


async def test_plain_callables_are_wrapped_as_tools():
    def shout(text: str) -> str:
        """Upper-case text."""
        return text.upper()

    client = ScriptedChatClient([call_response(("c1", "shout", {"text": "hi"})), text_response("HI")])
    agent = Agent(client, tools=[shout])
    assert isinstance(agent.tools[0], FunctionTool)
    await agent.run("shout hi")
    assert client.calls[1][0][-1].contents[0].result == "HI"


async def test_single_backend_call_without_tools():
    client = ScriptedChatClient([text_response("hello")])
    agent = Agent(client)
    response = await agent.run(["hi", user_message("there")])
    assert response.text == "hello"
    assert len(client.calls) == 1
    assert [m.text for m in client.calls[0][0]] == ["hi", "there"]


async def test_per_call_options_override_defaults():
    client = ScriptedChatClient([text_response("ok")])
    agent = Agent(
        client,
        instructions="Be brief.",
        default_options=ChatOptions(model_id="small", temperature=0.1),
    )
    await agent.run("hi", options=ChatOptions(temperature=0.9, instructions="Use French."))
    options = client.calls[0][1]
    assert options.model_id == "small"
    assert options.temperature == 0.9
    assert options.instructions == "Be brief.\nUse French."
    assert client.calls[0][0][0].text == "Be brief.\nUse French."


async def test_local_session_accumulates_history(add_tool):
    client = ScriptedChatClient(
        [
            call_response(("c1", "add", {"a": 1, "b": 2})),
            text_response("3"),
            text_response("you asked about 1+2"),
        ]
    )
    agent = Agent(client, tools=[add_tool])
    session = await agent.new_session()

    await agent.run("1+2?", session=session)
    assert session.mode == LOCAL_MODE
    stored = await session.store.list_messages()
    assert [m.role for m in stored] == [Role.USER, Role.ASSISTANT, Role.TOOL, Role.ASSISTANT]

    await agent.run("what did I ask?", session=session)
    third_request = client.calls[2][0]
    assert [m.role for m in third_request] == [
        Role.USER,
        Role.ASSISTANT,
        Role.TOOL,
        Role.ASSISTANT,
        Role.USER,
    ]
    assert len(session.store) == 6


async def test_custom_store_factory_is_used():
    stores = []

    def factory():
        stores.append(InMemoryStore())
        return stores[-1]

    agent = Agent(ScriptedChatClient([text_response("ok")]), message_store_factory=factory)
    session = await agent.new_session()
    await agent.run("hi", session=session)
    assert session.store is stores[0]


async def test_service_managed_session():
    client = ScriptedChatClient(
        [text_response("first", conversation_id="conv-1"), text_response("second", conversation_id="conv-2")]
    )
    agent = Agent(client)
    session = await agent.new_session()

    await agent.run("hi", session=session)
    assert session.mode == SERVICE_MODE
    assert session.service_id == "conv-1"
    assert session.store is None

    await agent.run("again", session=session)
    messages, options = client.calls[1]
    assert options.conversation_id == "conv-1"
    assert [m.text for m in messages] == ["again"]
    assert session.service_id == "conv-2"


async def test_local_session_refuses_a_service_response():
    client = ScriptedChatClient([text_response("ok", conversation_id="conv-1")])
    agent = Agent(client)
    session = await agent.new_session(store=InMemoryStore())
    with pytest.raises(SessionModeLockedError):
        await agent.run("hi", session=session)


async def test_context_provider_contributes_and_observes(add_tool):
    provider = RecordingProvider(
        InvocationContext(
            instructions="User prefers metric units.",
            messages=[user_message("remembered fact")],
            tools=[add_tool],
        )
    )
    client = ScriptedChatClient([text_response("ok")])
    agent = Agent(client, instructions="Be helpful.", context_provider=provider)

    session = await agent.new_session()
    assert provider.created == [session.id]

    await agent.run("hi", session=session)
    messages, options = client.calls[0]
    assert messages[0].role == Role.SYSTEM
    assert messages[0].text == "Be helpful.\nUser prefers metric units."
    assert [m.text for m in messages[1:]] == ["remembered fact", "hi"]
    assert [t.name for t in options.tools] == ["add"]

    request, generated = provider.invoked_calls[0]
    assert [m.text for m in request] == ["hi"]
    assert [m.text for m in generated] == ["ok"]


async def test_session_provider_overrides_agent_provider():
    agent_provider = RecordingProvider()
    session_provider = RecordingProvider()
    agent = Agent(ScriptedChatClient([text_response("ok")]), context_provider=agent_provider)
    session = await agent.new_session()
    session.context_provider = session_provider

    await agent.run("hi", session=session)
    assert agent_provider.invoking_calls == []
    assert len(session_provider.invoking_calls) == 1


async def test_invoked_errors_are_logged_not_raised(caplog):
    provider = RecordingProvider(fail_invoked=True)
    agent = Agent(ScriptedChatClient([text_response("ok")]), context_provider=provider)
    with caplog.at_level(logging.ERROR):
        response = await agent.run("hi")
    assert response.text == "ok"
    assert "memory backend offline" in caplog.text


async def test_middleware_pipelines_nest_in_order():
    trace = []

    def agent_mw(label):
        def middleware(next_handler):
            async def handler(request):
                trace.append(f"{label}:in")
                response = await next_handler(request)
                trace.append(f"{label}:out")
                return response

            return handler

        return middleware

    def chat_mw(next_handler):
        async def handler(messages, options):
            trace.append("chat")
            return await next_handler(messages, options)

        return handler

    def function_mw(next_handler):
        async def handler(tool, arguments):
            trace.append(f"function:{tool.name}")
            return await next_handler(tool, arguments)

        return handler

    add = FunctionTool.from_callable(lambda a, b: a + b, name="add")
    client = ScriptedChatClient([call_response(("c1", "add", {"a": 1, "b": 1})), text_response("2")])
    agent = Agent(
        client,
        tools=[add],
        agent_middleware=[agent_mw("outer"), agent_mw("inner")],
        chat_middleware=[chat_mw],
        function_middleware=[function_mw],
    )
    await agent.run("1+1")
    assert trace == [
        "outer:in",
        "inner:in",
        "chat",
        "function:add",
        "chat",
        "inner:out",
        "outer:out",
    ]


async def test_agent_middleware_can_short_circuit():
    def cached(next_handler):
        async def handler(request):
            return AgentResponse(messages=[], agent_id="cache")

        return handler

    client = ScriptedChatClient([])
    agent = Agent(client, agent_middleware=[cached])
    response = await agent.run("hi")
    assert response.agent_id == "cache"
    assert client.calls == []


async def test_backend_errors_are_wrapped_with_their_cause():
    client = ScriptedChatClient([InvalidRequestError("bad model", status_code=400)])
    agent = Agent(client)
    with pytest.raises(ExecutionError) as exc_info:
        await agent.run("hi")
    cause = find_cause(exc_info.value, InvalidRequestError)
    assert cause is not None
    assert cause.status_code == 400


async def test_tool_breaker_surfaces_as_execution_error(failing_tool):
    client = ScriptedChatClient(responder=lambda m, o: call_response(("c", "explode", {})))
    agent = Agent(client, tools=[failing_tool], invocation_config=InvocationConfig(max_consecutive_errors=2))
    with pytest.raises(ExecutionError) as exc_info:
        await agent.run("go")
    assert isinstance(exc_info.value.__cause__, ToolExecutionError)
    assert find_cause(exc_info.value, RuntimeError) is not None


async def test_iteration_limit_is_not_wrapped_twice(add_tool):
    client = ScriptedChatClient(responder=lambda m, o: call_response(("c", "add", {"a": 1, "b": 1})))
    agent = Agent(client, tools=[add_tool], invocation_config=InvocationConfig(max_iterations=3))
    with pytest.raises(ExecutionError, match=r"max iterations reached \(3\)") as exc_info:
        await agent.run("loop")
    assert exc_info.value.__cause__ is None


async def test_failed_run_does_not_touch_the_session():
    client = ScriptedChatClient([RuntimeError("down")])
    agent = Agent(client)
    session = await agent.new_session()
    with pytest.raises(ExecutionError):
        await agent.run("hi", session=session)
    assert session.mode is None


async def test_structured_logs_carry_the_agent_id(caplog, add_tool):
    client = ScriptedChatClient([call_response(("c1", "add", {"a": 1, "b": 1})), text_response("2")])
    agent = Agent(client, tools=[add_tool], agent_id="agent-7")
    with caplog.at_level(logging.INFO):
        await agent.run("1+1")
    structured = [r.structured for r in caplog.records if hasattr(r, "structured")]
    assert {s["log_type"] for s in structured} >= {"agent_run", "tool_call", "tool_result"}
    assert all(s["agent_id"] == "agent-7" for s in structured)


async def test_run_stream_yields_agent_updates_and_updates_session():
    client = ScriptedChatClient(
        updates=[
            ChatResponseUpdate(role=Role.ASSISTANT, contents=[TextContent(text="Hel")], response_id="r1"),
            ChatResponseUpdate(contents=[TextContent(text="lo")]),
            ChatResponseUpdate(
                finish_reason="stop",
                usage=UsageDetails(input_token_count=2, output_token_count=2, total_token_count=4),
            ),
        ]
    )
    agent = Agent(client, instructions="Greet.", agent_id="streamer")
    session = await agent.new_session()

    stream = await agent.run_stream("hi", session=session)
    first, _ = await stream.next()
    assert first.agent_id == "streamer"
    assert first.text == "Hel"

    response = await stream.final_response()
    assert response.text == "Hello"
    assert response.response_id == "r1"
    assert response.usage.total_token_count == 4

    messages, _ = client.stream_calls[0]
    assert messages[0].role == Role.SYSTEM
    stored = await session.store.list_messages()
    assert [m.text for m in stored] == ["hi", "Hello"]


async def test_run_stream_wraps_producer_errors():
    client = ScriptedChatClient(
        updates=[ChatResponseUpdate(contents=[TextContent(text="partial")]), ConnectionError("reset")]
    )
    agent = Agent(client)
    session = await agent.new_session()
    stream = await agent.run_stream("hi", session=session)

    assert (await stream.next())[0].text == "partial"
    with pytest.raises(ExecutionError) as exc_info:
        await stream.next()
    assert isinstance(exc_info.value.__cause__, ConnectionError)
    assert session.mode is None


class StalledClient(ScriptedChatClient):
    """Client whose backend call never returns."""

    def __init__(self):
        super().__init__()
        self.started = asyncio.Event()

    async def respond(self, messages, options=None):
        self.calls.append((list(messages), options))
        self.started.set()
        await asyncio.Event().wait()


class EndlessStreamClient(ScriptedChatClient):
    """Client that streams forever and keeps the stream it handed out."""

    def __init__(self):
        super().__init__()
        self.source = None
        self.finished = []

    async def stream_respond(self, messages, options=None):
        finished = self.finished

        async def produce():
            try:
                while True:
                    yield ChatResponseUpdate(contents=[TextContent(text="tick")])
            finally:
                finished.append(True)

        self.source = ResponseStream(produce())
        return self.source


async def test_cancelling_a_run_during_the_backend_call(add_tool):
    client = StalledClient()
    agent = Agent(client, tools=[add_tool])
    session = await agent.new_session()

    task = asyncio.ensure_future(agent.run("hi", session=session))
    await asyncio.wait_for(client.started.wait(), timeout=1)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert len(client.calls) == 1
    assert session.mode is None


async def test_closing_a_run_stream_closes_the_backend_stream():
    client = EndlessStreamClient()
    agent = Agent(client)
    stream = await agent.run_stream("hi")
    assert (await stream.next())[0].text == "tick"

    await asyncio.wait_for(stream.aclose(), timeout=1)
    assert stream.closed
    assert client.source.closed
    assert client.source._task.done()
    assert client.finished == [True]
