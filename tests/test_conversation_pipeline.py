"""End-to-end pipeline test: chat capture → SQLite ledger → analytics → restart."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from dialogue_manager import DialogueState, ReplyKind
from expense_engine import ExpenseEngine
from persistence import SqlTransactionRepository, build_engine, init_db
from query_engine import BucketSize
from sqlalchemy.orm import sessionmaker
from taxonomy import CategoryKey, PaymentMethodKey
from transaction_model import DateRange, TransactionFilter

from shared.engine_settings import EngineSettings

NOW = datetime(2026, 10, 19, 15, 0, tzinfo=timezone.utc)
THIS_WEEK = DateRange(date(2026, 10, 13), date(2026, 10, 19))
SETTINGS = EngineSettings(reporting_currency="MXN", reporting_timezone="America/Mexico_City")


@pytest.fixture
def repository(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'expenses.db'}")
    init_db(engine)
    yield SqlTransactionRepository(sessionmaker(bind=engine, expire_on_commit=False, future=True))
    engine.dispose()


@pytest.mark.integration
def test_chat_capture_to_dashboard(repository) -> None:
    engine = ExpenseEngine(SETTINGS, repository=repository)

    first = engine.send_utterance("web", "I spent 250 pesos on gas with my credit card", NOW)
    assert first.kind == ReplyKind.CONFIRMATION

    question = engine.send_utterance("web", "yesterday I spent money at the pharmacy", NOW)
    assert question.kind == ReplyKind.QUESTION
    assert question.payload["question"]["slot"] == "amount"

    second = engine.send_utterance("web", "189.50", NOW)
    assert second.kind == ReplyKind.CONFIRMATION
    assert second.payload["transaction"].occurred_at == date(2026, 10, 18)
    assert second.payload["transaction"].category == CategoryKey.HEALTH

    answer = engine.send_utterance("web", "Where did I spend more this week?", NOW)
    assert answer.kind == ReplyKind.ANSWER
    assert answer.state == DialogueState.ANSWERING_QUERY
    assert "Transportation is your biggest category." in answer.message

    dashboard = engine.get_dashboard(THIS_WEEK)
    assert [bucket.key for bucket in dashboard.totals] == [CategoryKey.TRANSPORTATION, CategoryKey.HEALTH]
    assert dashboard.stats.total == Decimal("439.50")
    assert dashboard.stats.transaction_count == 2
    assert len(dashboard.series) == 7
    assert [row.category for row in dashboard.rows] == [CategoryKey.TRANSPORTATION, CategoryKey.HEALTH]

    health_id = second.payload["transaction"].id
    engine.edit_transaction(health_id, {"payment_method": "cash"})
    cash_only = engine.get_dashboard(
        THIS_WEEK,
        TransactionFilter(payment_methods=frozenset({PaymentMethodKey.CASH})),
        BucketSize.WEEK,
    )
    assert [row.id for row in cash_only.rows] == [health_id]
    assert [point.bucket_start for point in cash_only.series] == [date(2026, 10, 12), date(2026, 10, 19)]

    restarted = ExpenseEngine(SETTINGS, repository=repository)
    assert restarted.list_transactions() == engine.list_transactions()
    assert restarted.get_dashboard(THIS_WEEK).stats == dashboard.stats
    assert [event.action for event in repository.audit_trail(health_id)] == [
        "commit_transaction",
        "edit_transaction",
    ]
