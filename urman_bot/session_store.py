"""
DialogStateStore - in-memory conversation states keyed by user id.

Turns of the same user are serialized through a per-user lock; turns of
different users run in parallel. State lives only in process memory and is
never evicted.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Union

from urman_bot.logger import logger
from urman_bot.state import ConversationState

UserId = Union[int, str]


class DialogStateStore:
    """Per-user conversation state with per-user mutual exclusion."""

    def __init__(self):
        self._states: Dict[str, ConversationState] = {}
        self._locks: Dict[str, threading.Lock] = {}
        # Guards insertion into _states/_locks
        self._registry_lock = threading.Lock()

    @staticmethod
    def _key(user_id: UserId) -> str:
        key = str(user_id).strip()
        if not key:
            raise ValueError("user_id must not be empty")
        return key

    def _user_lock(self, key: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def get_or_create(self, user_id: UserId) -> ConversationState:
        key = self._key(user_id)
        with self._registry_lock:
            state = self._states.get(key)
            if state is None:
                state = self._states[key] = ConversationState(user_id=key)
                logger.debug("Conversation state created", user_id=key)
            return state

    def get(self, user_id: UserId) -> Optional[ConversationState]:
        return self._states.get(self._key(user_id))

    def save(self, user_id: UserId, state: ConversationState) -> None:
        key = self._key(user_id)
        with self._registry_lock:
            self._states[key] = state

    @contextmanager
    def lock(self, user_id: UserId) -> Iterator[None]:
        """Context manager for the user's lock."""
        lock = self._user_lock(self._key(user_id))
        with lock:
            yield

    @contextmanager
    def session(self, user_id: UserId) -> Iterator[ConversationState]:
        """Hold the user's lock and yield the user's current state."""
        with self.lock(user_id):
            yield self.get_or_create(user_id)

    def user_ids(self) -> List[str]:
        with self._registry_lock:
            return list(self._states)

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, user_id: object) -> bool:
        return str(user_id).strip() in self._states
