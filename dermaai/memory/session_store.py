from __future__ import annotations

import re
import threading
from typing import Callable, Dict

from dermaai.agents.conversation import ConversationState, DiagnosisConversation
from dermaai.memory.kv_store import KeyValueStore, NamespacedStore

_SESSION_ID = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def is_valid_session_id(session_id: str) -> bool:
    return bool(_SESSION_ID.match(session_id or ""))


def session_store_for(store: KeyValueStore, session_id: str) -> KeyValueStore:
    return NamespacedStore(store, f"session-{session_id}-")


class SessionStore:
    """
    Live conversations by session id, loaded on first access.

    Sessions without a stored diagnosis are not kept, so lookups of unknown
    ids leave the registry unchanged.
    """

    def __init__(self, factory: Callable[[str], DiagnosisConversation]) -> None:
        self._factory = factory
        self._sessions: Dict[str, DiagnosisConversation] = {}
        self._lock = threading.Lock()

    def get(self, session_id: str) -> DiagnosisConversation:
        with self._lock:
            conversation = self._sessions.get(session_id)
            if conversation is not None:
                return conversation

            conversation = self._factory(session_id)
            conversation.load()
            if conversation.state is not ConversationState.EMPTY:
                self._sessions[session_id] = conversation
            return conversation

    def get_fresh(self, session_id: str) -> DiagnosisConversation:
        """Replace any live conversation with a new, unloaded one."""
        with self._lock:
            previous = self._sessions.pop(session_id, None)
            if previous is not None:
                previous.close()
            conversation = self._factory(session_id)
            self._sessions[session_id] = conversation
            return conversation

    def clear(self, session_id: str) -> None:
        with self._lock:
            conversation = self._sessions.pop(session_id, None)
        if conversation is not None:
            conversation.close()

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
