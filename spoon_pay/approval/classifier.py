from abc import ABC, abstractmethod
from enum import Enum
from typing import Iterable, Set, Tuple

from spoon_pay.payments.config import DEFAULT_NEW_REQUEST_KEYWORDS


class Intent(str, Enum):
    """What a user message asks the approval gate to do."""
    NEW_REQUEST = "new_request"
    APPROVAL = "approval"
    REJECTION = "rejection"
    UNKNOWN = "unknown"


APPROVAL_KEYWORDS: Tuple[str, ...] = ("yes", "approve", "ok", "okay", "proceed", "go ahead", "sure", "fine")
REJECTION_KEYWORDS: Tuple[str, ...] = ("no", "deny", "reject", "cancel", "stop", "abort", "decline", "refuse")


class IntentClassifier(ABC):
    """Strategy that maps message text to an :class:`Intent`."""

    @abstractmethod
    def classify(self, text: str) -> Intent:
        """Return the single intent the gate should act on."""

    def candidates(self, text: str) -> Set[Intent]:
        """Every intent the text could express; defaults to the classified one."""
        return {self.classify(text)}


class KeywordIntentClassifier(IntentClassifier):
    """Case-insensitive substring matching against keyword lists.

    Approval wins over rejection, and both win over a new request.
    """

    def __init__(
        self,
        request_keywords: Iterable[str] = DEFAULT_NEW_REQUEST_KEYWORDS,
        approval_keywords: Iterable[str] = APPROVAL_KEYWORDS,
        rejection_keywords: Iterable[str] = REJECTION_KEYWORDS,
    ):
        self.request_keywords = tuple(k.lower() for k in request_keywords)
        self.approval_keywords = tuple(k.lower() for k in approval_keywords)
        self.rejection_keywords = tuple(k.lower() for k in rejection_keywords)

    @staticmethod
    def _matches(text: str, keywords: Tuple[str, ...]) -> bool:
        return any(keyword in text for keyword in keywords)

    def candidates(self, text: str) -> Set[Intent]:
        lowered = (text or "").lower()
        found = set()
        if self._matches(lowered, self.approval_keywords):
            found.add(Intent.APPROVAL)
        if self._matches(lowered, self.rejection_keywords):
            found.add(Intent.REJECTION)
        if self._matches(lowered, self.request_keywords):
            found.add(Intent.NEW_REQUEST)
        return found or {Intent.UNKNOWN}

    def classify(self, text: str) -> Intent:
        found = self.candidates(text)
        for intent in (Intent.APPROVAL, Intent.REJECTION, Intent.NEW_REQUEST):
            if intent in found:
                return intent
        return Intent.UNKNOWN
