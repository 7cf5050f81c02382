"""
Conversation sessions and local message stores.

A session is either service-managed (the backend keeps the history under a
conversation id) or locally managed (messages live in a MessageStore). It
starts in neither mode; once one is chosen the other is refused for the
lifetime of the session.
"""

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, List, Optional

from .errors import SessionError, SessionModeLockedError
from .messages import Message

logger = logging.getLogger(__name__)

SERVICE_MODE = "service"
LOCAL_MODE = "local"


class MessageStore(ABC):
    """Local history of a session."""

    @abstractmethod
    async def list_messages(self) -> List[Message]:
        ...

    @abstractmethod
    async def add_messages(self, messages: Iterable[Message]) -> None:
        ...

    @abstractmethod
    def serialize(self) -> Dict[str, Any]:
        ...


class InMemoryStore(MessageStore):
    def __init__(self, messages: Optional[Iterable[Message]] = None):
        self._messages: List[Message] = list(messages or [])

    async def list_messages(self) -> List[Message]:
        return list(self._messages)

    async def add_messages(self, messages: Iterable[Message]) -> None:
        self._messages.extend(messages)

    def serialize(self) -> Dict[str, Any]:
        return {"messages": [m.to_dict() for m in self._messages]}

    @classmethod
    def from_state(cls, state: Dict[str, Any]) -> "InMemoryStore":
        return cls(Message.from_dict(m) for m in state.get("messages", []))

    def __len__(self) -> int:
        return len(self._messages)


class Session:
    """Multi-turn conversation state.

    Parameters
    ----------
    store : MessageStore, optional
        Attach a local store right away, locking the session into local mode
    context_provider : ContextProvider, optional
        Overrides the agent's context provider for runs on this session
    session_id : str, optional
        Defaults to a random UUID
    """

    def __init__(
        self,
        store: Optional[MessageStore] = None,
        context_provider=None,
        session_id: Optional[str] = None,
    ):
        self.id = session_id or str(uuid.uuid4())
        self.context_provider = context_provider
        self._lock = threading.Lock()
        self._service_id: Optional[str] = None
        self._store: Optional[MessageStore] = store

    @property
    def service_id(self) -> Optional[str]:
        with self._lock:
            return self._service_id

    @property
    def store(self) -> Optional[MessageStore]:
        with self._lock:
            return self._store

    @property
    def mode(self) -> Optional[str]:
        with self._lock:
            if self._service_id is not None:
                return SERVICE_MODE
            if self._store is not None:
                return LOCAL_MODE
            return None

    def set_service_id(self, service_id: str) -> None:
        """Lock the session into service mode, or update its conversation id.

        Raises:
            SessionModeLockedError: If a local store is attached
        """
        if not service_id:
            raise SessionError("service id must not be empty")
        with self._lock:
            if self._store is not None:
                raise SessionModeLockedError(
                    f"session {self.id} uses a local store and cannot switch to service mode"
                )
            self._service_id = service_id

    def set_store(self, store: MessageStore) -> None:
        """Lock the session into local mode, or replace its store.

        Raises:
            SessionModeLockedError: If the session is service-managed
        """
        if store is None:
            raise SessionError("store must not be None")
        with self._lock:
            if self._service_id is not None:
                raise SessionModeLockedError(
                    f"session {self.id} is service-managed and cannot attach a local store"
                )
            self._store = store

    def ensure_store(self, factory: Callable[[], MessageStore]) -> MessageStore:
        """Return the attached store, attaching one from ``factory`` if there is none."""
        with self._lock:
            if self._service_id is not None:
                raise SessionModeLockedError(
                    f"session {self.id} is service-managed and cannot attach a local store"
                )
            if self._store is None:
                self._store = factory()
                logger.debug(f"Session {self.id} locked into local mode")
            return self._store

    def serialize(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "id": self.id,
                "serviceId": self._service_id,
                "store": self._store.serialize() if self._store is not None else None,
            }

    @classmethod
    def from_state(
        cls,
        state: Dict[str, Any],
        store_loader: Callable[[Dict[str, Any]], MessageStore] = InMemoryStore.from_state,
        context_provider=None,
    ) -> "Session":
        session = cls(session_id=state.get("id"), context_provider=context_provider)
        if state.get("serviceId"):
            session.set_service_id(state["serviceId"])
        if state.get("store") is not None:
            session.set_store(store_loader(state["store"]))
        return session
