"""
Per-conversation dialogue state machine for expense capture.

Each conversation is either idle or awaiting one clarification answer for a
`PendingCapture`. Analytics questions are answered on a side channel and never
create or disturb a capture. Every commit goes through the ledger with the
capture id as its idempotency key.
"""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Sequence
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone, tzinfo
from enum import Enum
from typing import Any
from uuid import uuid4

from answer_formatter import format_breakdown, format_confirmation, format_summary, format_total, format_trend
from errors import ConversationExpired, InvalidTransaction
from ledger_store import LedgerStore
from query_analyzer import QueryAnalysis, analyze_query
from query_engine import BucketSize, QueryEngine
from question_generator import QuestionSpec, build_question, select_next_slot
from taxonomy import PaymentMethodKey, normalize_text
from transaction_model import (
    REQUIRED_SLOTS,
    PartialTransaction,
    Slot,
    TransactionDraft,
    TransactionSource,
    local_date,
)
from utterance_parser import AmountCandidate, ParseResult, UtteranceParser

from shared.observability import (
    bind_conversation_context,
    describe_utterance,
    get_tracer,
    reset_conversation_context,
)

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

CANCEL_PHRASES = frozenset(
    {
        "never mind",
        "nevermind",
        "cancel",
        "cancel that",
        "cancel it",
        "forget it",
        "forget about it",
        "stop",
        "olvidalo",
        "cancelar",
        "cancela",
    }
)

_OPTION_RE = re.compile(r"^\s*(?:option\s*)?#?(\d{1,2})\s*[.)]?\s*$", re.IGNORECASE)

# Conversations hash onto a fixed pool of locks.
LOCK_STRIPES = 64


class DialogueState(str, Enum):
    IDLE = "idle"
    AWAITING_CLARIFICATION = "awaiting_clarification"
    COMMITTED = "committed"
    CANCELLED = "cancelled"
    ANSWERING_QUERY = "answering_query"


class ReplyKind(str, Enum):
    QUESTION = "question"
    CONFIRMATION = "confirmation"
    ANSWER = "answer"
    CANCELLED = "cancelled"


@dataclass
class PendingCapture:
    conversation_id: str
    capture_id: str
    partial: PartialTransaction
    missing_slots: list[Slot] = field(default_factory=list)
    ambiguous_slots: list[Slot] = field(default_factory=list)
    candidates: dict[Slot, list[Any]] = field(default_factory=dict)
    awaiting_slot: Slot | None = None
    turns_asked: int = 0
    question: QuestionSpec | None = None


@dataclass
class DialogueReply:
    kind: ReplyKind
    message: str
    state: DialogueState
    payload: dict[str, Any] = field(default_factory=dict)


class DialogueManager:
    def __init__(
        self,
        ledger: LedgerStore,
        query_engine: QueryEngine,
        *,
        parser: UtteranceParser | None = None,
        reporting_currency: str = "MXN",
        zone: tzinfo = timezone.utc,
        max_clarification_turns: int = 3,
        prompt_optional_slots: Sequence[str] = (),
        default_query_range: str = "this_month",
    ) -> None:
        self._ledger = ledger
        self._query_engine = query_engine
        self._parser = parser or UtteranceParser(reporting_currency=reporting_currency, zone=zone)
        self.reporting_currency = reporting_currency
        self.zone = zone
        self.max_clarification_turns = max_clarification_turns
        self.prompt_optional_slots = tuple(prompt_optional_slots)
        self.default_query_range = default_query_range
        self._pending: dict[str, PendingCapture] = {}
        self._locks = tuple(threading.Lock() for _ in range(LOCK_STRIPES))

    def handle(self, conversation_id: str, text: str | None, now: datetime | None = None) -> DialogueReply:
        """Process one user message and return exactly one reply."""
        now = now or datetime.now(timezone.utc)
        token = bind_conversation_context(conversation_id)
        try:
            with self._lock_for(conversation_id), tracer.start_as_current_span("dialogue.handle"):
                pending = self._pending.get(conversation_id)
                logger.info(
                    {
                        "event": "utterance_received",
                        "conversation_id": conversation_id,
                        "pending": pending is not None,
                        **describe_utterance(text),
                    }
                )
                if _is_cancel(text):
                    return self._cancel_locked(conversation_id)
                try:
                    if pending is None:
                        return self._start_capture(conversation_id, text or "", now)
                    return self._continue_capture(pending, text or "", now)
                except ConversationExpired as exc:
                    return self._expired_reply(exc)
        finally:
            reset_conversation_context(token)

    def cancel(self, conversation_id: str) -> DialogueReply:
        with self._lock_for(conversation_id):
            return self._cancel_locked(conversation_id)

    def state_of(self, conversation_id: str) -> DialogueState:
        if conversation_id in self._pending:
            return DialogueState.AWAITING_CLARIFICATION
        return DialogueState.IDLE

    def pending_capture(self, conversation_id: str) -> PendingCapture | None:
        return self._pending.get(conversation_id)

    def _lock_for(self, conversation_id: str) -> threading.Lock:
        return self._locks[hash(conversation_id) % len(self._locks)]

    def _cancel_locked(self, conversation_id: str) -> DialogueReply:
        pending = self._pending.pop(conversation_id, None)
        if pending is None:
            return DialogueReply(
                kind=ReplyKind.ANSWER,
                message="There's nothing to cancel right now.",
                state=DialogueState.IDLE,
                payload={"cancelled": False},
            )
        logger.info(
            {
                "event": "capture_cancelled",
                "conversation_id": conversation_id,
                "capture_id": pending.capture_id,
                "turns_asked": pending.turns_asked,
            }
        )
        return DialogueReply(
            kind=ReplyKind.CANCELLED,
            message="Okay, I've discarded that expense.",
            state=DialogueState.CANCELLED,
            payload={"cancelled": True, "capture_id": pending.capture_id},
        )

    def _start_capture(self, conversation_id: str, text: str, now: datetime) -> DialogueReply:
        result = self._parser.parse(text, now)
        if not _states_an_expense(result):
            analysis = self._analyze(text, now)
            if analysis.is_query:
                return self._answer_query(analysis, state=DialogueState.ANSWERING_QUERY)

        pending = PendingCapture(
            conversation_id=conversation_id,
            capture_id=str(uuid4()),
            partial=result.partial,
            missing_slots=list(result.missing_slots),
            ambiguous_slots=list(result.ambiguous_slots),
            candidates={slot: list(values) for slot, values in result.candidates.items()},
        )
        logger.info(
            {
                "event": "capture_started",
                "conversation_id": conversation_id,
                "capture_id": pending.capture_id,
                "missing_slots": pending.missing_slots,
                "ambiguous_slots": pending.ambiguous_slots,
                "confidence": result.confidence,
            }
        )
        return self._advance(pending, now)

    def _continue_capture(self, pending: PendingCapture, text: str, now: datetime) -> DialogueReply:
        if not self._apply_fast_path(pending, text, now):
            result = self._parser.parse(text, now)
            if not _states_an_expense(result):
                analysis = self._analyze(text, now)
                if analysis.is_query:
                    reply = self._answer_query(analysis, state=DialogueState.AWAITING_CLARIFICATION)
                    if pending.question is not None:
                        reply.payload["pending_question"] = pending.question.prompt
                    return reply
            self._merge(pending, result)
        _refresh_gaps(pending)
        return self._advance(pending, now)

    def _advance(self, pending: PendingCapture, now: datetime, preface: str | None = None) -> DialogueReply:
        slot = select_next_slot(
            pending.missing_slots,
            pending.ambiguous_slots,
            pending.partial,
            self.prompt_optional_slots,
        )
        if slot is None:
            return self._commit(pending, now)

        if pending.turns_asked >= self.max_clarification_turns:
            self._pending.pop(pending.conversation_id, None)
            raise ConversationExpired(pending.conversation_id, pending.turns_asked, capture_id=pending.capture_id)

        question = build_question(
            slot,
            pending.partial,
            candidates=pending.candidates.get(slot, ()),
            reporting_currency=self.reporting_currency,
            today=local_date(now, self.zone),
        )
        pending.awaiting_slot = slot
        pending.question = question
        pending.turns_asked += 1
        self._pending[pending.conversation_id] = pending

        logger.info(
            {
                "event": "clarification_asked",
                "conversation_id": pending.conversation_id,
                "capture_id": pending.capture_id,
                "slot": slot,
                "turns_asked": pending.turns_asked,
            }
        )
        message = f"{preface} {question.prompt}" if preface else question.prompt
        return DialogueReply(
            kind=ReplyKind.QUESTION,
            message=message,
            state=DialogueState.AWAITING_CLARIFICATION,
            payload={
                "capture_id": pending.capture_id,
                "question": asdict(question) | {"options": [_option_value(option) for option in question.options]},
                "missing_slots": list(pending.missing_slots),
                "ambiguous_slots": list(pending.ambiguous_slots),
                "turns_asked": pending.turns_asked,
            },
        )

    @staticmethod
    def _expired_reply(exc: ConversationExpired) -> DialogueReply:
        logger.warning(
            {
                "event": "capture_expired",
                "conversation_id": exc.conversation_id,
                "capture_id": exc.capture_id,
                "turns_asked": exc.turns_asked,
            }
        )
        return DialogueReply(
            kind=ReplyKind.CANCELLED,
            message="Sorry, I couldn't complete this entry. Please try describing the expense again.",
            state=DialogueState.CANCELLED,
            payload={"cancelled": True, "capture_id": exc.capture_id, "reason": exc.error_code},
        )

    def _commit(self, pending: PendingCapture, now: datetime) -> DialogueReply:
        partial = pending.partial
        today = local_date(now, self.zone)
        draft = TransactionDraft(
            amount=partial.amount,
            currency=partial.currency or self.reporting_currency,
            category=partial.category,
            payment_method=partial.payment_method or PaymentMethodKey.UNSPECIFIED,
            occurred_at=partial.occurred_at or today,
            note=partial.note,
            source=TransactionSource.CHAT,
        )
        try:
            transaction_id = self._ledger.commit(draft, now=now, idempotency_key=pending.capture_id)
        except InvalidTransaction as exc:
            if exc.field == "amount":
                partial.amount = None
                _refresh_gaps(pending)
                return self._advance(pending, now, preface="The amount has to be greater than zero.")
            self._pending.pop(pending.conversation_id, None)
            logger.warning(
                {
                    "event": "capture_rejected",
                    "conversation_id": pending.conversation_id,
                    "capture_id": pending.capture_id,
                    "field": exc.field,
                }
            )
            return DialogueReply(
                kind=ReplyKind.CANCELLED,
                message=f"I couldn't record that expense: {exc}.",
                state=DialogueState.CANCELLED,
                payload={"cancelled": True, "capture_id": pending.capture_id, "reason": exc.error_code},
            )

        self._pending.pop(pending.conversation_id, None)
        transaction = self._ledger.get(transaction_id)
        logger.info(
            {
                "event": "capture_committed",
                "conversation_id": pending.conversation_id,
                "capture_id": pending.capture_id,
                "transaction_id": transaction_id,
                "turns_asked": pending.turns_asked,
            }
        )
        return DialogueReply(
            kind=ReplyKind.CONFIRMATION,
            message=format_confirmation(transaction, today),
            state=DialogueState.COMMITTED,
            payload={"capture_id": pending.capture_id, "transaction": transaction},
        )

    def _apply_fast_path(self, pending: PendingCapture, text: str, now: datetime) -> bool:
        """Accept a bare value for the awaited slot; False leaves the capture untouched."""
        slot = pending.awaiting_slot
        if slot is None:
            return False
        options = pending.question.options if pending.question else []

        choice = _option_choice(text, options)
        if choice is not None:
            _assign(pending, slot, choice)
            return True

        if slot == "amount":
            candidate = self._parser.parse_amount_reply(text)
            if candidate is None:
                return False
            if not candidate.explicit_currency and pending.partial.currency:
                candidate = AmountCandidate(candidate.amount, pending.partial.currency)
            _assign(pending, slot, candidate)
            return True

        if slot in ("category", "payment_method"):
            registry = self._parser.categories if slot == "category" else self._parser.payment_methods
            key = registry.resolve_exact(text)
            if key is None and slot in pending.candidates:
                resolved = registry.resolve(text)
                key = resolved if resolved in pending.candidates[slot] else None
            if key is None or key == PaymentMethodKey.UNSPECIFIED:
                return False
            _assign(pending, slot, key)
            return True

        if slot == "occurred_at":
            day = self._parser.parse_date_reply(text, now)
            if day is None:
                return False
            _assign(pending, slot, day)
            return True

        return False

    def _merge(self, pending: PendingCapture, result: ParseResult) -> None:
        """Fold a re-parsed reply into the capture; explicit new values win."""
        partial = pending.partial
        incoming = result.partial

        if incoming.amount is not None:
            amount_is_answer = pending.awaiting_slot == "amount" or result.explicit_currency
            if partial.amount is None or amount_is_answer:
                _assign(pending, "amount", AmountCandidate(incoming.amount, incoming.currency or self.reporting_currency))
        for slot in ("category", "payment_method", "occurred_at"):
            value = getattr(incoming, slot)
            if value is not None:
                _assign(pending, slot, value)

        for slot in result.ambiguous_slots:
            setattr(partial, slot, None)
            if slot == "amount":
                partial.currency = None
            pending.candidates[slot] = list(result.candidates.get(slot, []))
            if slot not in pending.ambiguous_slots:
                pending.ambiguous_slots.append(slot)

        if partial.note is None and incoming.note:
            partial.note = incoming.note

    def _analyze(self, text: str, now: datetime) -> QueryAnalysis:
        return analyze_query(
            text,
            now,
            zone=self.zone,
            default_range=self.default_query_range,
            categories=self._parser.categories,
        )

    def _answer_query(self, analysis: QueryAnalysis, *, state: DialogueState) -> DialogueReply:
        date_range = analysis.date_range
        currency = self.reporting_currency
        payload: dict[str, Any] = {
            "intent": analysis.intent,
            "range": {"start": date_range.start, "end": date_range.end, "label": analysis.range_label},
            "category": analysis.category,
        }

        if analysis.intent == "total_spent":
            total = self._query_engine.total(date_range, analysis.category)
            payload["total"] = total
            message = format_total(total, analysis.range_label, currency, analysis.category)
        elif analysis.intent == "spending_trend":
            bucket_size = BucketSize.WEEK if date_range.days > 31 else BucketSize.DAY
            points = self._query_engine.time_series(date_range, bucket_size)
            payload["series"] = points
            message = format_trend(points, analysis.range_label, currency)
        elif analysis.intent == "summary":
            stats = self._query_engine.dashboard_stats(date_range)
            buckets = self._query_engine.aggregate_by_category(date_range)
            payload["stats"] = stats
            payload["buckets"] = buckets
            message = format_summary(stats, buckets, analysis.range_label)
        else:
            buckets = self._query_engine.aggregate_by_category(date_range)
            payload["buckets"] = buckets
            message = format_breakdown(buckets, analysis.range_label, currency)

        logger.info(
            {
                "event": "query_answered",
                "intent": analysis.intent,
                "range": analysis.range_name,
                "confidence": analysis.confidence,
            }
        )
        return DialogueReply(kind=ReplyKind.ANSWER, message=message, state=state, payload=payload)


def _is_cancel(text: str | None) -> bool:
    normalized = " ".join(normalize_text(text).replace("!", " ").replace(".", " ").split())
    return normalized in CANCEL_PHRASES


def _states_an_expense(result: ParseResult) -> bool:
    """An amount with an explicit currency is a report even when it is worded like a question."""
    if result.explicit_currency:
        return True
    return any(candidate.explicit_currency for candidate in result.candidates.get("amount", []))


def _option_choice(text: str, options: Sequence[Any]) -> Any | None:
    if not options:
        return None
    match = _OPTION_RE.match(text or "")
    if not match:
        return None
    index = int(match.group(1))
    if 1 <= index <= len(options):
        return options[index - 1]
    return None


def _assign(pending: PendingCapture, slot: Slot, value: Any) -> None:
    partial = pending.partial
    if slot == "amount":
        partial.amount = value.amount
        partial.currency = value.currency
    else:
        setattr(partial, slot, value)
    pending.candidates.pop(slot, None)
    if slot in pending.ambiguous_slots:
        pending.ambiguous_slots.remove(slot)
    if slot in pending.missing_slots:
        pending.missing_slots.remove(slot)


def _refresh_gaps(pending: PendingCapture) -> None:
    pending.ambiguous_slots = [
        slot
        for slot in pending.ambiguous_slots
        if pending.candidates.get(slot) and not pending.partial.has_value(slot)
    ]
    pending.missing_slots = [
        slot
        for slot in REQUIRED_SLOTS
        if not pending.partial.has_value(slot) and slot not in pending.ambiguous_slots
    ]


def _option_value(option: Any) -> Any:
    if isinstance(option, AmountCandidate):
        return {"amount": option.amount, "currency": option.currency}
    if isinstance(option, date):
        return option.isoformat()
    return getattr(option, "value", option)
