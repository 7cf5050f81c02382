import logging
import uuid
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from .client import ChatClient
from .context import ContextProvider
from .errors import ExecutionError, InitializationError
from .invocation import InvocationConfig, invoke_functions
from .messages import Message, MessageInput, normalize_messages, prepend_instructions
from .middleware import (
    AgentMiddleware,
    AgentRequest,
    ChatMiddleware,
    FunctionMiddleware,
    chain_agent_middleware,
    chain_chat_middleware,
)
from .options import ChatOptions, join_instructions, merge_chat_options
from .responses import (
    AgentResponse,
    AgentResponseUpdate,
    ChatResponse,
    ChatResponseUpdate,
    chat_response_from_updates,
)
from .session import SERVICE_MODE, InMemoryStore, MessageStore, Session
from .stream import AgentResponseStream
from .tools import FunctionTool, Tool, merge_tools


class AgentLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that automatically injects agent_id into structured logs."""

    def __init__(self, logger, agent_id):
        self.agent_id = agent_id
        super().__init__(logger, {})

    def process(self, msg, kwargs):
        # Inject agent_id into structured logs
        if "extra" in kwargs and "structured" in kwargs["extra"]:
            kwargs["extra"]["structured"]["agent_id"] = self.agent_id
        return msg, kwargs


@dataclass
class _PreparedRun:
    messages: List[Message]
    options: ChatOptions
    context_provider: Optional[ContextProvider]


class Agent:
    """Conversational agent on top of a ChatClient.

    Parameters
    ----------
    client : ChatClient
        Backend the agent talks to
    name, description : str, optional
        Identification only
    instructions : str, optional
        Sent as a system message unless the conversation already has one
    tools : list, optional
        Tools, or plain callables that are wrapped with FunctionTool.from_callable
    default_options : ChatOptions, optional
        Options every run starts from
    message_store_factory : callable, optional
        Builds the store attached to sessions that end up locally managed
    context_provider : ContextProvider, optional
        Used unless the session brings its own
    agent_middleware, chat_middleware, function_middleware : list, optional
        The three middleware pipelines
    invocation_config : InvocationConfig, optional
        Bounds for the tool loop
    agent_id : str, optional
        Defaults to a random UUID
    logger : logging.Logger, optional
        Base logger; records get the agent id injected
    """

    def __init__(
        self,
        client: ChatClient,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        instructions: Optional[str] = None,
        tools: Optional[Sequence[Tool | Callable]] = None,
        default_options: Optional[ChatOptions] = None,
        message_store_factory: Optional[Callable[[], MessageStore]] = None,
        context_provider: Optional[ContextProvider] = None,
        agent_middleware: Optional[Sequence[AgentMiddleware]] = None,
        chat_middleware: Optional[Sequence[ChatMiddleware]] = None,
        function_middleware: Optional[Sequence[FunctionMiddleware]] = None,
        invocation_config: Optional[InvocationConfig] = None,
        agent_id: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ):
        if client is None:
            raise InitializationError("Agent requires a chat client")
        self.client = client
        self.id = agent_id or str(uuid.uuid4())
        self.name = name
        self.description = description
        self.instructions = instructions
        self.tools: List[Tool] = [
            t if isinstance(t, Tool) else FunctionTool.from_callable(t) for t in tools or []
        ]
        self.default_options = default_options
        self.message_store_factory = message_store_factory or InMemoryStore
        self.context_provider = context_provider
        self.agent_middleware = list(agent_middleware or [])
        self.chat_middleware = list(chat_middleware or [])
        self.function_middleware = list(function_middleware or [])
        self.invocation_config = invocation_config or InvocationConfig()

        # Create agent-specific logger with automatic agent_id injection
        self.logger = AgentLoggerAdapter(logger or logging.getLogger(__name__), self.id)

    @property
    def display_name(self) -> str:
        return self.name or self.id

    async def new_session(self, store: Optional[MessageStore] = None) -> Session:
        """Create a session for this agent and tell the context provider about it."""
        session = Session(store=store)
        if self.context_provider is not None:
            await self.context_provider.session_created(session.id)
        self.logger.info(f"Created session {session.id}")
        return session

    def _merge_options(
        self, tools: Optional[Sequence[Tool]], options: Optional[ChatOptions]
    ) -> ChatOptions:
        merged = merge_chat_options(
            ChatOptions(
                instructions=self.instructions, tools=list(self.tools) if self.tools else None
            ),
            self.default_options,
        )
        if tools:
            merged = merge_chat_options(merged, ChatOptions(tools=list(tools)))
        return merge_chat_options(merged, options)

    async def _prepare(
        self, messages: List[Message], session: Optional[Session], options: ChatOptions
    ) -> _PreparedRun:
        request_messages = list(messages)
        provider = self.context_provider

        if session is not None:
            store = session.store
            if store is not None:
                request_messages = await store.list_messages() + request_messages
            if session.service_id:
                options.conversation_id = session.service_id
            if session.context_provider is not None:
                provider = session.context_provider

        if provider is not None:
            context = await provider.invoking(request_messages)
            if context is not None:
                if context.instructions:
                    options.instructions = join_instructions(
                        options.instructions, context.instructions
                    )
                if context.messages:
                    request_messages = list(context.messages) + request_messages
                if context.tools:
                    options.tools = merge_tools(options.tools, context.tools)

        request_messages = prepend_instructions(request_messages, options.instructions)
        return _PreparedRun(request_messages, options, provider)

    async def _finish_turn(
        self,
        session: Optional[Session],
        prepared: _PreparedRun,
        input_messages: List[Message],
        generated: List[Message],
        response: ChatResponse,
    ) -> None:
        if session is not None:
            if response.conversation_id:
                # raises if the session already keeps its history locally
                locking = session.mode is None
                session.set_service_id(response.conversation_id)
                if locking:
                    self.logger.info(
                        f"Session {session.id} locked into service mode ({response.conversation_id})"
                    )
            elif session.mode != SERVICE_MODE:
                store = session.ensure_store(self.message_store_factory)
                await store.add_messages(input_messages + generated)

        if prepared.context_provider is not None:
            try:
                await prepared.context_provider.invoked(input_messages, generated)
            except Exception as e:
                self.logger.error(
                    f"Error in invoked from {prepared.context_provider.__class__.__name__}: {e}"
                )

    async def run(
        self,
        messages: MessageInput = None,
        *,
        session: Optional[Session] = None,
        tools: Optional[Sequence[Tool]] = None,
        options: Optional[ChatOptions] = None,
    ) -> AgentResponse:
        """Run one turn, including any tool calls, through the agent middleware.

        Raises:
            ExecutionError: If the backend, a tool or a middleware failed;
                the original exception is chained as the cause
            SessionModeLockedError: If the session cannot take the result
        """
        request = AgentRequest(
            messages=normalize_messages(messages),
            session=session,
            options=self._merge_options(tools, options),
        )
        handler = chain_agent_middleware(self._run_request, self.agent_middleware)
        return await handler(request)

    async def _run_request(self, request: AgentRequest) -> AgentResponse:
        options = merge_chat_options(None, request.options)
        prepared = await self._prepare(request.messages, request.session, options)
        chat = chain_chat_middleware(self.client.respond, self.chat_middleware)

        self.logger.info(
            f"Agent {self.display_name} running with {len(prepared.messages)} message(s)",
            extra={
                "structured": {
                    "log_type": "agent_run",
                    "stage": "request",
                    "message_count": len(prepared.messages),
                    "tool_count": len(prepared.options.tools or []),
                }
            },
        )
        try:
            if prepared.options.tools:
                response, generated = await invoke_functions(
                    chat,
                    prepared.messages,
                    prepared.options,
                    self.invocation_config,
                    self.function_middleware,
                    logger=self.logger,
                )
            else:
                response = await chat(prepared.messages, prepared.options)
                generated = list(response.messages)
        except ExecutionError:
            raise
        except Exception as e:
            self.logger.error(f"Agent {self.display_name} run failed: {e}")
            raise ExecutionError(f"agent {self.display_name} run failed: {e}") from e

        await self._finish_turn(
            request.session, prepared, request.messages, generated, response
        )
        return AgentResponse(
            messages=list(response.messages),
            response_id=response.response_id,
            agent_id=self.id,
            usage=response.usage,
            raw=response,
        )

    def _to_agent_update(self, update: ChatResponseUpdate) -> AgentResponseUpdate:
        return AgentResponseUpdate(
            contents=list(update.contents),
            role=update.role,
            author_name=update.author_name,
            agent_id=self.id,
            response_id=update.response_id,
            message_id=update.message_id,
            usage=update.usage,
            raw=update,
        )

    async def run_stream(
        self,
        messages: MessageInput = None,
        *,
        session: Optional[Session] = None,
        tools: Optional[Sequence[Tool]] = None,
        options: Optional[ChatOptions] = None,
    ) -> AgentResponseStream:
        """Stream one turn from the backend.

        Tools are declared to the model but not invoked, and agent middleware is
        not applied. The session is updated once the stream completes.
        """
        input_messages = normalize_messages(messages)
        prepared = await self._prepare(
            input_messages, session, self._merge_options(tools, options)
        )
        try:
            source = await self.client.stream_respond(prepared.messages, prepared.options)
        except Exception as e:
            raise ExecutionError(f"agent {self.display_name} stream failed: {e}") from e

        async def produce():
            updates: List[ChatResponseUpdate] = []
            try:
                async for update in source:
                    updates.append(update)
                    yield self._to_agent_update(update)
            except Exception as e:
                raise ExecutionError(f"agent {self.display_name} stream failed: {e}") from e
            finally:
                await source.aclose()

            response = chat_response_from_updates(updates)
            await self._finish_turn(
                session, prepared, input_messages, list(response.messages), response
            )

        return AgentResponseStream(produce(), on_cancel=source.cancel)
