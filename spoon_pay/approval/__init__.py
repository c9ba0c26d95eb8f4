from .classifier import APPROVAL_KEYWORDS, REJECTION_KEYWORDS, Intent, IntentClassifier, KeywordIntentClassifier
from .gate import ApprovalGate, ApprovalPolicy, GateDecision, GateResult
from .session import ApprovalSession, GateState, SessionRegistry

__all__ = [
    "APPROVAL_KEYWORDS",
    "REJECTION_KEYWORDS",
    "ApprovalGate",
    "ApprovalPolicy",
    "ApprovalSession",
    "GateDecision",
    "GateResult",
    "GateState",
    "Intent",
    "IntentClassifier",
    "KeywordIntentClassifier",
    "SessionRegistry",
]
