"""Bounded per-session conversation transcripts."""

import asyncio
from abc import ABC, abstractmethod
from collections import deque
from typing import Deque, Dict, List

from spoon_pay.schema import ConversationMessage


class ConversationStore(ABC):
    """Source of recent session messages.

    Implementations may be remote; ``get_recent`` is allowed to raise, and
    callers must decide what a missing snapshot means for them.
    """

    @abstractmethod
    async def get_recent(self, session_id: str, count: int) -> List[ConversationMessage]:
        """Return up to ``count`` most recent messages, oldest first."""

    @abstractmethod
    async def add(self, session_id: str, message: ConversationMessage) -> None:
        """Append ``message`` to the session transcript."""


class InMemoryConversationStore(ConversationStore):
    """Process-local store keeping the last ``max_messages`` messages per session."""

    def __init__(self, max_messages: int = 100):
        if max_messages <= 0:
            raise ValueError("max_messages must be positive")
        self.max_messages = max_messages
        self._sessions: Dict[str, Deque[ConversationMessage]] = {}
        self._lock = asyncio.Lock()

    async def get_recent(self, session_id: str, count: int) -> List[ConversationMessage]:
        if count <= 0:
            return []
        async with self._lock:
            messages = self._sessions.get(session_id)
            if not messages:
                return []
            return list(messages)[-count:]

    async def add(self, session_id: str, message: ConversationMessage) -> None:
        async with self._lock:
            messages = self._sessions.setdefault(session_id, deque(maxlen=self.max_messages))
            messages.append(message)

    async def clear(self, session_id: str) -> None:
        async with self._lock:
            self._sessions.pop(session_id, None)
