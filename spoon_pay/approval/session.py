import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from spoon_pay.payments.models import PaymentPrompt


class GateState(str, Enum):
    """
    The state of one session's approval gate.
    """
    IDLE = "IDLE"
    AWAITING_APPROVAL = "AWAITING_APPROVAL"


@dataclass
class ApprovalSession:
    """Per-session gate state. The pending prompt, not the transcript, is authoritative."""

    session_id: str
    state: GateState = GateState.IDLE
    pending_prompt: Optional[PaymentPrompt] = None
    last_transition_at: Optional[float] = None
    last_seen_at: Optional[float] = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def has_history(self) -> bool:
        """Whether this process has seen the session change state."""
        return self.last_transition_at is not None

    @property
    def busy(self) -> bool:
        return self.lock.locked()

    def await_approval(self, prompt: PaymentPrompt, now: float) -> Optional[PaymentPrompt]:
        """Record ``prompt`` as pending and return the prompt it superseded, if any."""
        superseded = self.pending_prompt
        self.pending_prompt = prompt
        self.state = GateState.AWAITING_APPROVAL
        self.last_transition_at = now
        return superseded

    def consume_prompt(self, now: float) -> Optional[PaymentPrompt]:
        """Clear the pending prompt and return to IDLE. A prompt is never paid twice."""
        prompt = self.pending_prompt
        self.pending_prompt = None
        self.state = GateState.IDLE
        self.last_transition_at = now
        return prompt


class SessionRegistry:
    """In-process map of session id to :class:`ApprovalSession`."""

    def __init__(self):
        self._sessions: Dict[str, ApprovalSession] = {}

    def get(self, session_id: str, now: Optional[float] = None) -> ApprovalSession:
        session = self._sessions.get(session_id)
        if session is None:
            session = ApprovalSession(session_id=session_id)
            self._sessions[session_id] = session
        if now is not None:
            session.last_seen_at = now
        return session

    def evict_idle(self, now: float, max_idle_seconds: float) -> List[str]:
        """Drop sessions untouched for longer than ``max_idle_seconds`` and return their ids.

        A session with a payment in flight is never dropped.
        """
        evicted = []
        for session_id, session in list(self._sessions.items()):
            if session.busy:
                continue
            last_active = max(session.last_seen_at or 0.0, session.last_transition_at or 0.0)
            if now - last_active > max_idle_seconds:
                del self._sessions[session_id]
                evicted.append(session_id)
        return evicted

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
