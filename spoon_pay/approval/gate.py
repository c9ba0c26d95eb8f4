"""
Approval gate: turns conversational messages into payment pipeline runs.

A new paid-resource request produces a payment prompt. An approval runs the
paid pipeline only when it can be tied to a prompt (fail-closed); a
rejection always runs the unpaid request (fail-open). Both halves of that
asymmetry are configurable through :class:`ApprovalPolicy`.
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Callable, List, Optional

from pydantic import BaseModel, ConfigDict

from spoon_pay.memory.conversation import ConversationStore, InMemoryConversationStore
from spoon_pay.payments.config import PaymentSettings
from spoon_pay.payments.exceptions import PaymentError, StateError
from spoon_pay.payments.models import PaymentOutcome, PaymentPrompt, PaymentTerms
from spoon_pay.payments.service import PaymentService
from spoon_pay.schema import ConversationMessage

from .classifier import Intent, IntentClassifier, KeywordIntentClassifier
from .session import ApprovalSession, GateState, SessionRegistry

logger = logging.getLogger(__name__)

_UNSET = object()


class GateDecision(str, Enum):
    """What the gate did with a message."""
    PROMPTED = "PROMPTED"
    PAID = "PAID"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    REJECTED = "REJECTED"
    APPROVAL_DENIED = "APPROVAL_DENIED"
    BUSY = "BUSY"
    IGNORED = "IGNORED"
    ERROR = "ERROR"


class ApprovalPolicy(BaseModel):
    """Whether approval and rejection need an established payment context.

    The default (approval fails closed, rejection fails open) is a product
    decision: declining a payment can never spend funds, accepting one can.
    """

    model_config = ConfigDict(frozen=True)

    approval_requires_context: bool = True
    rejection_requires_context: bool = False


class GateResult(BaseModel):
    """Explicit result of handling one message; the caller decides how to deliver ``text``."""

    session_id: str
    decision: GateDecision
    state: GateState
    text: str
    prompt: Optional[PaymentPrompt] = None
    outcome: Optional[PaymentOutcome] = None

    @property
    def success(self) -> bool:
        if self.outcome is not None:
            return self.outcome.success
        return self.decision in (GateDecision.PROMPTED, GateDecision.IGNORED)


class ApprovalGate:
    """Per-session approval state machine in front of a :class:`PaymentService`."""

    def __init__(
        self,
        service: PaymentService,
        store: Optional[ConversationStore] = None,
        classifier: Optional[IntentClassifier] = None,
        policy: Optional[ApprovalPolicy] = None,
        history_window: Optional[int] = None,
        prompt_ttl_seconds: Optional[float] = _UNSET,  # type: ignore[assignment]
        action_label: Optional[str] = None,
        resource_label: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        settings = service.settings
        self.service = service
        self.store = store if store is not None else InMemoryConversationStore()
        self.classifier = classifier or KeywordIntentClassifier(settings.request_keywords)
        self.policy = policy or ApprovalPolicy()
        self.history_window = history_window or settings.history_window
        self.prompt_ttl_seconds = settings.prompt_ttl_seconds if prompt_ttl_seconds is _UNSET else prompt_ttl_seconds
        self.action_label = action_label or settings.action_label
        self.resource_label = resource_label or settings.resource_label
        self.clock = clock
        self.sessions = SessionRegistry()

    @classmethod
    def from_settings(cls, settings: Optional[PaymentSettings] = None, **kwargs) -> "ApprovalGate":
        return cls(PaymentService(settings or PaymentSettings.load()), **kwargs)

    def session(self, session_id: str) -> ApprovalSession:
        return self.sessions.get(session_id)

    # ------------------------------------------------------------------ #
    # Entry point
    # ------------------------------------------------------------------ #
    async def handle(self, session_id: str, text: str) -> GateResult:
        now = self.clock()
        self._evict_idle_sessions(now)
        session = self.sessions.get(session_id, now)
        intent = self._classify(session, text)

        if intent in (Intent.APPROVAL, Intent.REJECTION) and session.busy:
            logger.warning("Session %s already has a payment in flight; ignoring %s", session_id, intent.value)
            return self._result(
                session,
                GateDecision.BUSY,
                "A payment for this conversation is still being processed. Please wait for it to finish.",
            )

        async with session.lock:
            self._expire_stale_prompt(session)
            if intent is Intent.APPROVAL:
                return await self._on_approval(session)
            if intent is Intent.REJECTION:
                return await self._on_rejection(session)
            if intent is Intent.NEW_REQUEST:
                return await self._on_new_request(session)
            return self._result(session, GateDecision.IGNORED, "")

    def _classify(self, session: ApprovalSession, text: str) -> Intent:
        candidates = self.classifier.candidates(text)
        # With nothing pending, a request keyword means a fresh request even if
        # the text also happens to contain an approval or rejection keyword.
        if session.state is GateState.IDLE and Intent.NEW_REQUEST in candidates:
            return Intent.NEW_REQUEST
        return self.classifier.classify(text)

    # ------------------------------------------------------------------ #
    # Transitions
    # ------------------------------------------------------------------ #
    async def _on_new_request(self, session: ApprovalSession) -> GateResult:
        logger.info("Paid resource requested in session %s, prompting for payment approval", session.session_id)
        try:
            terms = await self.service.resolve_terms()
        except PaymentError as exc:
            logger.error("Unable to determine payment terms: %s", exc)
            return self._result(
                session,
                GateDecision.ERROR,
                f"Unable to prepare payment: {exc.message}",
                outcome=PaymentOutcome.from_error(exc),
            )

        text = self.prompt_text(terms)
        prompt = PaymentPrompt(terms=terms, text=text, created_at=self.clock())
        superseded = session.await_approval(prompt, self.clock())
        if superseded is not None:
            logger.info("Prompt %s superseded by %s", superseded.id, prompt.id)
        await self._append_transcript(session.session_id, self._assistant_message(text))
        return self._result(session, GateDecision.PROMPTED, text, prompt=prompt)

    async def _on_approval(self, session: ApprovalSession) -> GateResult:
        prompt = session.pending_prompt
        terms: Optional[PaymentTerms] = prompt.terms if prompt else None

        if terms is None:
            try:
                terms = await self._terms_from_transcript(session)
            except StateError as exc:
                logger.warning("Payment approval denied in session %s: %s", session.session_id, exc)
                return self._result(
                    session,
                    GateDecision.APPROVAL_DENIED,
                    "There is no pending payment request to approve. Ask for the resource first.",
                )
            except PaymentError as exc:
                session.consume_prompt(self.clock())
                return self._failed(session, exc)

        # Consume before paying so a retry of the same approval cannot reuse it.
        session.consume_prompt(self.clock())
        logger.info("Payment approved in session %s, processing payment", session.session_id)
        outcome = await self.service.pay(terms)

        if outcome.success:
            text = "Payment processed successfully!"
            decision = GateDecision.PAID
        else:
            text = f"Payment processing failed: {outcome.error or 'Unknown error'}"
            decision = GateDecision.PAYMENT_FAILED
        await self._append_transcript(session.session_id, self._assistant_message(text))
        return self._result(session, decision, text, outcome=outcome)

    async def _on_rejection(self, session: ApprovalSession) -> GateResult:
        prompt = session.pending_prompt
        if prompt is None:
            has_context = await self._transcript_has_payment_context(session.session_id)
            if not has_context:
                if self.policy.rejection_requires_context:
                    return self._result(session, GateDecision.IGNORED, "")
                logger.info("No payment prompt found for rejection in session %s; honoring it anyway", session.session_id)

        terms = prompt.terms if prompt else self.service.configured_terms()
        session.consume_prompt(self.clock())
        logger.info("Payment rejected in session %s, fetching resource without payment", session.session_id)
        outcome = await self.service.fetch_without_payment(terms)

        if outcome.success:
            text = "Payment declined. The resource was requested without payment."
        else:
            text = f"Payment declined. Request without payment failed: {outcome.error or 'Unknown error'}"
        await self._append_transcript(session.session_id, self._assistant_message(text))
        return self._result(session, GateDecision.REJECTED, text, outcome=outcome)

    # ------------------------------------------------------------------ #
    # Context
    # ------------------------------------------------------------------ #
    async def _terms_from_transcript(self, session: ApprovalSession) -> PaymentTerms:
        """Terms for an approval that has no pending prompt on the session.

        Only sessions unknown to this process (e.g. after a restart) may fall
        back to the transcript. A session whose prompt was consumed, superseded
        or expired here is never re-armed by old transcript lines.

        Raises:
            StateError: If no payment context can be established.
        """
        if not self.policy.approval_requires_context:
            return await self.service.resolve_terms()
        if session.has_history:
            raise StateError("no pending prompt for this session")
        if not await self._transcript_has_payment_context(session.session_id):
            raise StateError(f"no payment prompt in the last {self.history_window} messages")
        return await self.service.resolve_terms()

    def _payment_markers(self) -> List[str]:
        terms = self.service.configured_terms()
        return [terms.display_amount, terms.asset_name.lower(), "payment"]

    async def _transcript_has_payment_context(self, session_id: str) -> bool:
        try:
            messages = await self.store.get_recent(session_id, self.history_window)
        except Exception as exc:
            logger.error("Error checking conversation history for payment context: %s", exc)
            return False

        markers = self._payment_markers()
        now = self.clock()
        for message in messages:
            # A prompt older than the TTL would already have expired in-process.
            if self.prompt_ttl_seconds is not None and now - message.created_at > self.prompt_ttl_seconds:
                continue
            if self.action_label in message.actions:
                return True
            text = message.text.lower()
            if any(marker in text for marker in markers):
                return True
        return False

    def _evict_idle_sessions(self, now: float) -> None:
        if self.prompt_ttl_seconds is None:
            return
        evicted = self.sessions.evict_idle(now, self.prompt_ttl_seconds)
        if evicted:
            logger.debug("Evicted %d idle approval sessions", len(evicted))

    def _expire_stale_prompt(self, session: ApprovalSession) -> None:
        prompt = session.pending_prompt
        if prompt is not None and prompt.is_stale(self.clock(), self.prompt_ttl_seconds):
            logger.info("Payment prompt %s in session %s expired", prompt.id, session.session_id)
            session.consume_prompt(self.clock())

    def _assistant_message(self, text: str) -> ConversationMessage:
        return ConversationMessage.assistant(text, [self.action_label], created_at=self.clock())

    async def _append_transcript(self, session_id: str, message: ConversationMessage) -> None:
        try:
            await self.store.add(session_id, message)
        except Exception as exc:
            logger.warning("Unable to record message in transcript for session %s: %s", session_id, exc)

    # ------------------------------------------------------------------ #
    # Output
    # ------------------------------------------------------------------ #
    def prompt_text(self, terms: PaymentTerms) -> str:
        return (
            f"To access {self.resource_label}, you need to add a payment of "
            f"{terms.display_amount} {terms.asset_name}. Do you approve this?"
        )

    def _failed(self, session: ApprovalSession, exc: PaymentError) -> GateResult:
        return self._result(
            session,
            GateDecision.PAYMENT_FAILED,
            f"Payment processing failed: {exc.message}",
            outcome=PaymentOutcome.from_error(exc),
        )

    @staticmethod
    def _result(
        session: ApprovalSession,
        decision: GateDecision,
        text: str,
        prompt: Optional[PaymentPrompt] = None,
        outcome: Optional[PaymentOutcome] = None,
    ) -> GateResult:
        return GateResult(
            session_id=session.session_id,
            decision=decision,
            state=session.state,
            text=text,
            prompt=prompt,
            outcome=outcome,
        )
