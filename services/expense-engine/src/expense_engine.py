"""
In-process facade over the dialogue manager, ledger and query engine.

The HTTP service and the integration tests talk to this class only; it wires
the components from one `EngineSettings` so every entrypoint shares the same
reporting currency, timezone and dialogue policy.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from dialogue_manager import DialogueManager, DialogueReply
from ledger_store import LedgerRepository, LedgerStore
from query_engine import AggregateBucket, BucketSize, DashboardStats, QueryEngine, SeriesPoint
from taxonomy import CATEGORIES, PAYMENT_METHODS, PaymentMethodKey
from transaction_model import DateRange, Transaction, TransactionDraft, TransactionFilter, TransactionSource, local_date
from utterance_parser import UtteranceParser

from shared.engine_settings import EngineSettings


@dataclass(frozen=True)
class Dashboard:
    date_range: DateRange
    bucket_size: BucketSize
    totals: list[AggregateBucket]
    series: list[SeriesPoint]
    rows: list[Transaction]
    stats: DashboardStats


class ExpenseEngine:
    def __init__(
        self,
        settings: EngineSettings | None = None,
        *,
        ledger: LedgerStore | None = None,
        repository: LedgerRepository | None = None,
    ) -> None:
        self.settings = settings or EngineSettings()
        if ledger is None:
            zone = self.settings.tzinfo
            if repository is not None:
                ledger = LedgerStore.from_repository(repository, zone=zone)
            else:
                ledger = LedgerStore(zone=zone)
        self.ledger = ledger
        self.query_engine = QueryEngine(ledger, reporting_currency=self.settings.reporting_currency)
        self.parser = UtteranceParser(
            reporting_currency=self.settings.reporting_currency,
            zone=self.settings.tzinfo,
        )
        self.dialogue = DialogueManager(
            ledger,
            self.query_engine,
            parser=self.parser,
            reporting_currency=self.settings.reporting_currency,
            zone=self.settings.tzinfo,
            max_clarification_turns=self.settings.max_clarification_turns,
            prompt_optional_slots=self.settings.prompt_optional_slots,
            default_query_range=self.settings.default_query_range,
        )

    def send_utterance(self, conversation_id: str, text: str, now: datetime | None = None) -> DialogueReply:
        return self.dialogue.handle(conversation_id, text, now)

    def cancel_pending(self, conversation_id: str) -> DialogueReply:
        return self.dialogue.cancel(conversation_id)

    def get_dashboard(
        self,
        date_range: DateRange,
        filter: TransactionFilter | None = None,
        bucket_size: BucketSize = BucketSize.DAY,
    ) -> Dashboard:
        """Everything the dashboard view renders for one range and filter in a single call."""
        bucket_size = BucketSize(bucket_size)
        scoped = (filter or TransactionFilter()).with_range(date_range)
        return Dashboard(
            date_range=date_range,
            bucket_size=bucket_size,
            totals=self.query_engine.aggregate_by_category(date_range, filter=filter),
            series=self.query_engine.time_series(date_range, bucket_size, filter=filter),
            rows=self.query_engine.filter(scoped),
            stats=self.query_engine.dashboard_stats(date_range, filter),
        )

    def list_transactions(self, filter: TransactionFilter | None = None) -> list[Transaction]:
        return self.query_engine.filter(filter)

    def get_transaction(self, transaction_id: str) -> Transaction:
        return self.ledger.get(transaction_id)

    def edit_transaction(self, transaction_id: str, patch: Mapping[str, Any]) -> Transaction:
        return self.ledger.edit(transaction_id, patch)

    def delete_transaction(self, transaction_id: str) -> None:
        self.ledger.delete(transaction_id)

    def create_manual_transaction(self, fields: Mapping[str, Any], now: datetime | None = None) -> Transaction:
        """
        Record an entry typed into the dashboard form. Currency, payment method
        and date fall back to the same defaults the chat uses.
        """

        now = now or datetime.now(timezone.utc)
        draft = TransactionDraft(
            amount=fields.get("amount"),
            currency=fields.get("currency") or self.settings.reporting_currency,
            category=fields.get("category"),
            payment_method=fields.get("payment_method") or PaymentMethodKey.UNSPECIFIED,
            occurred_at=fields.get("occurred_at") or local_date(now, self.settings.tzinfo),
            note=fields.get("note"),
            source=TransactionSource.MANUAL,
        )
        transaction_id = self.ledger.commit(draft, now=now)
        return self.ledger.get(transaction_id)

    def taxonomy(self) -> dict[str, list[dict[str, str]]]:
        return {
            "categories": [
                {"key": entry.key.value, "display_name": entry.display_name} for entry in CATEGORIES.entries
            ],
            "payment_methods": [
                {"key": entry.key.value, "display_name": entry.display_name} for entry in PAYMENT_METHODS.entries
            ],
        }
