"""Tests for dialogue_manager.py - the capture state machine and its side-channel queries."""

from datetime import date, timezone
from decimal import Decimal

import pytest
from dialogue_manager import LOCK_STRIPES, DialogueManager, DialogueState, ReplyKind
from ledger_store import LedgerStore
from query_engine import QueryEngine
from taxonomy import CategoryKey, PaymentMethodKey
from transaction_model import TransactionDraft, TransactionSource

CONVERSATION = "conv-1"


@pytest.fixture
def ledger() -> LedgerStore:
    return LedgerStore()


@pytest.fixture
def manager(ledger) -> DialogueManager:
    return DialogueManager(ledger, QueryEngine(ledger), reporting_currency="MXN", zone=timezone.utc)


# =============================================================================
# Capture and commit
# =============================================================================


class TestCapture:
    def test_complete_utterance_commits_immediately(self, manager, ledger, now):
        reply = manager.handle(CONVERSATION, "I spent 250 pesos on gas with my credit card", now)

        assert reply.kind == ReplyKind.CONFIRMATION
        assert reply.state == DialogueState.COMMITTED
        assert len(ledger) == 1
        [transaction] = ledger.list()
        assert transaction.amount == Decimal("250.00")
        assert transaction.category == CategoryKey.TRANSPORTATION
        assert transaction.payment_method == PaymentMethodKey.CREDIT_CARD
        assert transaction.occurred_at == date(2026, 10, 19)
        assert transaction.source == TransactionSource.CHAT
        assert reply.payload["transaction"] == transaction
        assert manager.state_of(CONVERSATION) == DialogueState.IDLE

    def test_confirmation_message(self, manager, now):
        reply = manager.handle(CONVERSATION, "I spent 250 pesos on gas with my credit card", now)

        assert reply.message.startswith("Got it! I've recorded your expense:")
        assert "**Transportation** - $250.00 MXN" in reply.message
        assert "Today" in reply.message
        assert "Credit Card" in reply.message
        assert reply.message.endswith("Would you like to add any notes or categorize it differently?")

    def test_missing_payment_method_defaults_to_unspecified(self, manager, ledger, now):
        manager.handle(CONVERSATION, "lunch 120", now)

        [transaction] = ledger.list()
        assert transaction.payment_method == PaymentMethodKey.UNSPECIFIED

    def test_amount_then_category_flow(self, manager, ledger, now):
        first = manager.handle(CONVERSATION, "I spent money on stuff", now)

        assert first.kind == ReplyKind.QUESTION
        assert first.state == DialogueState.AWAITING_CLARIFICATION
        assert first.message == "How much did you spend on stuff?"
        assert first.payload["missing_slots"] == ["amount", "category"]

        second = manager.handle(CONVERSATION, "300", now)

        assert second.kind == ReplyKind.QUESTION
        assert second.message.startswith("What category should I file this under?")
        assert second.payload["turns_asked"] == 2
        assert "groceries" in second.payload["question"]["options"]

        third = manager.handle(CONVERSATION, "Groceries", now)

        assert third.kind == ReplyKind.CONFIRMATION
        [transaction] = ledger.list()
        assert transaction.amount == Decimal("300.00")
        assert transaction.category == CategoryKey.GROCERIES
        assert transaction.note == "stuff"
        assert third.payload["capture_id"] == first.payload["capture_id"]

    def test_only_one_question_per_reply(self, manager, now):
        reply = manager.handle(CONVERSATION, "I spent money on stuff", now)

        assert reply.message.count("?") == 1
        assert reply.payload["question"]["slot"] == "amount"

    def test_option_number_resolves_ambiguous_category(self, manager, ledger, now):
        question = manager.handle(CONVERSATION, "movie and pizza 300", now)

        assert question.message == "Should this go under Entertainment or Food & Dining?"
        assert question.payload["ambiguous_slots"] == ["category"]

        reply = manager.handle(CONVERSATION, "2", now)

        assert reply.kind == ReplyKind.CONFIRMATION
        assert ledger.list()[0].category == CategoryKey.FOOD_DINING

    def test_ambiguous_amount_choice(self, manager, ledger, now):
        question = manager.handle(CONVERSATION, "I spent $200 and $300 on dinner", now)

        assert question.message.startswith("I found more than one amount.")
        assert question.payload["question"]["options"] == [
            {"amount": Decimal("200"), "currency": "MXN"},
            {"amount": Decimal("300"), "currency": "MXN"},
        ]

        manager.handle(CONVERSATION, "2", now)

        assert ledger.list()[0].amount == Decimal("300.00")

    def test_non_positive_amount_is_asked_again(self, manager, ledger, now):
        manager.handle(CONVERSATION, "groceries", now)

        reply = manager.handle(CONVERSATION, "0", now)

        assert reply.kind == ReplyKind.QUESTION
        assert reply.message.startswith("The amount has to be greater than zero.")
        assert reply.payload["question"]["slot"] == "amount"
        assert len(ledger) == 0

        manager.handle(CONVERSATION, "85", now)

        assert ledger.list()[0].amount == Decimal("85.00")

    def test_optional_slots_are_prompted_when_configured(self, ledger, now):
        manager = DialogueManager(ledger, QueryEngine(ledger), prompt_optional_slots=("payment_method",))

        question = manager.handle(CONVERSATION, "lunch 120", now)

        assert question.message.startswith("How did you pay for it?")
        assert "Not specified" not in question.message

        manager.handle(CONVERSATION, "cash", now)

        assert ledger.list()[0].payment_method == PaymentMethodKey.CASH

    def test_conversations_are_independent(self, manager, ledger, now):
        manager.handle("a", "I spent money on stuff", now)
        manager.handle("b", "lunch 120", now)

        assert manager.state_of("a") == DialogueState.AWAITING_CLARIFICATION
        assert manager.state_of("b") == DialogueState.IDLE
        assert len(ledger) == 1

    def test_lock_pool_does_not_grow_with_conversations(self, manager, now):
        for index in range(1000):
            manager.handle(f"conv-{index}", "cancel", now)

        assert len(manager._locks) == LOCK_STRIPES
        assert manager._lock_for("conv-7") is manager._lock_for("conv-7")

    def test_expense_worded_like_a_question_is_recorded(self, manager, ledger, now):
        reply = manager.handle(CONVERSATION, "Tacos 120 pesos cash, what a total deal", now)

        assert reply.kind == ReplyKind.CONFIRMATION
        [transaction] = ledger.list()
        assert transaction.amount == Decimal("120.00")
        assert transaction.category == CategoryKey.FOOD_DINING
        assert transaction.payment_method == PaymentMethodKey.CASH

    def test_what_i_spent_statement_is_recorded(self, manager, ledger, now):
        reply = manager.handle(CONVERSATION, "What I spent on groceries today was 500 pesos", now)

        assert reply.kind == ReplyKind.CONFIRMATION
        [transaction] = ledger.list()
        assert transaction.amount == Decimal("500.00")
        assert transaction.category == CategoryKey.GROCERIES
        assert transaction.occurred_at == date(2026, 10, 19)

    def test_follow_up_sentence_with_currency_fills_the_capture(self, manager, ledger, now):
        manager.handle(CONVERSATION, "I spent money on stuff", now)

        reply = manager.handle(CONVERSATION, "What I paid was 300 pesos for groceries", now)

        assert reply.kind == ReplyKind.CONFIRMATION
        [transaction] = ledger.list()
        assert transaction.amount == Decimal("300.00")
        assert transaction.category == CategoryKey.GROCERIES


# =============================================================================
# Turn cap and cancellation
# =============================================================================


class TestExpiryAndCancel:
    def test_capture_expires_after_turn_cap(self, manager, ledger, now):
        manager.handle(CONVERSATION, "I spent money on stuff", now)
        manager.handle(CONVERSATION, "not sure", now)
        third = manager.handle(CONVERSATION, "not sure", now)
        assert third.payload["turns_asked"] == 3

        reply = manager.handle(CONVERSATION, "not sure", now)

        assert reply.kind == ReplyKind.CANCELLED
        assert reply.payload["reason"] == "conversation_expired"
        assert manager.state_of(CONVERSATION) == DialogueState.IDLE
        assert len(ledger) == 0

    def test_next_message_after_expiry_starts_fresh(self, manager, ledger, now):
        manager.handle(CONVERSATION, "I spent money on stuff", now)
        for _ in range(3):
            manager.handle(CONVERSATION, "not sure", now)

        reply = manager.handle(CONVERSATION, "lunch 120", now)

        assert reply.kind == ReplyKind.CONFIRMATION
        assert len(ledger) == 1

    @pytest.mark.parametrize("phrase", ["never mind", "Cancel", "forget it!", "olvídalo"])
    def test_cancel_discards_pending_capture(self, manager, ledger, now, phrase):
        manager.handle(CONVERSATION, "I spent money on stuff", now)

        reply = manager.handle(CONVERSATION, phrase, now)

        assert reply.kind == ReplyKind.CANCELLED
        assert reply.message == "Okay, I've discarded that expense."
        assert manager.pending_capture(CONVERSATION) is None
        assert len(ledger) == 0

    def test_cancel_when_idle(self, manager, now):
        reply = manager.handle(CONVERSATION, "cancel", now)

        assert reply.kind == ReplyKind.ANSWER
        assert reply.state == DialogueState.IDLE
        assert reply.payload == {"cancelled": False}

    def test_explicit_cancel_method(self, manager, now):
        manager.handle(CONVERSATION, "I spent money on stuff", now)

        reply = manager.cancel(CONVERSATION)

        assert reply.state == DialogueState.CANCELLED
        assert manager.state_of(CONVERSATION) == DialogueState.IDLE


# =============================================================================
# Analytics questions
# =============================================================================


class TestQueries:
    @pytest.fixture
    def seeded(self, ledger, now):
        ledger.commit(
            TransactionDraft(
                amount=Decimal("250"),
                currency="MXN",
                category=CategoryKey.TRANSPORTATION,
                payment_method=PaymentMethodKey.CREDIT_CARD,
                occurred_at=date(2026, 10, 19),
            ),
            now=now,
        )
        return ledger

    def test_idle_query_is_answered_without_capture(self, manager, seeded, now):
        reply = manager.handle(CONVERSATION, "Where did I spend more this week?", now)

        assert reply.kind == ReplyKind.ANSWER
        assert reply.state == DialogueState.ANSWERING_QUERY
        assert reply.payload["intent"] == "category_breakdown"
        assert "Based on your expenses this week, here's a breakdown:" in reply.message
        assert "**Transportation** - $250.00 MXN (100.0%)" in reply.message
        assert manager.state_of(CONVERSATION) == DialogueState.IDLE
        assert len(seeded) == 1

    def test_total_query(self, manager, seeded, now):
        reply = manager.handle(CONVERSATION, "How much did I spend this month?", now)

        assert reply.payload["intent"] == "total_spent"
        assert reply.payload["total"] == Decimal("250.00")
        assert reply.message == "You've spent $250.00 MXN this month."

    def test_empty_breakdown(self, manager, now):
        reply = manager.handle(CONVERSATION, "Where did I spend more last week?", now)

        assert reply.message == "You haven't recorded any expenses last week yet."

    def test_query_during_capture_keeps_pending_state(self, manager, seeded, now):
        question = manager.handle(CONVERSATION, "I spent money on stuff", now)

        answer = manager.handle(CONVERSATION, "How much did I spend this month?", now)

        assert answer.kind == ReplyKind.ANSWER
        assert answer.state == DialogueState.AWAITING_CLARIFICATION
        assert answer.payload["pending_question"] == question.message
        pending = manager.pending_capture(CONVERSATION)
        assert pending is not None
        assert pending.turns_asked == 1
        assert pending.awaiting_slot == "amount"

        follow_up = manager.handle(CONVERSATION, "300", now)

        assert follow_up.payload["question"]["slot"] == "category"
