"""
Ledger store: the canonical collection of committed transactions.

Every mutation is validated before anything is written. When a repository is
attached, the repository write happens next and the in-memory collection is
only touched once it succeeds, so a failed write never leaves the two out of
step. Reads share a readers/writer lock with the mutators and can run
concurrently with each other.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import date, datetime, timezone, tzinfo
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Protocol
from uuid import uuid4

from errors import InvalidTransaction, NotFound
from taxonomy import CATEGORIES, PAYMENT_METHODS, CategoryKey, PaymentMethodKey, Taxonomy
from transaction_model import Transaction, TransactionDraft, TransactionFilter, as_utc

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
EDITABLE_FIELDS = frozenset({"amount", "currency", "category", "payment_method", "occurred_at", "note"})
IMMUTABLE_FIELDS = frozenset({"id", "created_at", "source"})
MAX_NOTE_LENGTH = 500


class LedgerRepository(Protocol):
    """Durable backing store; each call must be atomic and read-your-writes."""

    def add(self, transaction: Transaction) -> None: ...

    def update(self, transaction: Transaction, changed_fields: list[str]) -> None: ...

    def remove(self, transaction_id: str) -> None: ...

    def load_all(self) -> list[Transaction]: ...


@dataclass(frozen=True)
class LedgerSnapshot:
    version: int
    transactions: tuple[Transaction, ...]


class _ReadWriteLock:
    """Many readers or one writer; waiting writers block new readers."""

    def __init__(self) -> None:
        self._condition = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._condition:
            while self._writer or self._writers_waiting:
                self._condition.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._condition:
                self._readers -= 1
                if self._readers == 0:
                    self._condition.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._condition:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._condition.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._condition:
                self._writer = False
                self._condition.notify_all()


class LedgerStore:
    def __init__(
        self,
        *,
        repository: LedgerRepository | None = None,
        categories: Taxonomy[CategoryKey] = CATEGORIES,
        payment_methods: Taxonomy[PaymentMethodKey] = PAYMENT_METHODS,
        zone: tzinfo = timezone.utc,
    ) -> None:
        self._repository = repository
        self._zone = zone
        self._categories = categories
        self._payment_methods = payment_methods
        self._lock = _ReadWriteLock()
        self._transactions: dict[str, Transaction] = {}
        self._sequence: dict[str, int] = {}
        self._idempotency: dict[str, str] = {}
        self._next_sequence = 0
        self._version = 0

    @classmethod
    def from_repository(cls, repository: LedgerRepository, **kwargs: Any) -> LedgerStore:
        """Build a ledger pre-loaded with everything the repository holds."""
        store = cls(repository=repository, **kwargs)
        loaded = sorted(repository.load_all(), key=lambda transaction: transaction.created_at)
        for transaction in loaded:
            store._insert(transaction)
        logger.info({"event": "ledger_hydrated", "transactions": len(loaded)})
        return store

    @property
    def version(self) -> int:
        with self._lock.read():
            return self._version

    def commit(
        self,
        draft: TransactionDraft,
        *,
        now: datetime | None = None,
        idempotency_key: str | None = None,
    ) -> str:
        """
        Validate `draft` and append it to the ledger, returning the new id.

        A repeated `idempotency_key` returns the id recorded the first time
        without writing anything.
        """

        with self._lock.write():
            if idempotency_key is not None and idempotency_key in self._idempotency:
                existing_id = self._idempotency[idempotency_key]
                logger.info({"event": "ledger_commit_replayed", "transaction_id": existing_id})
                return existing_id

            created_at = as_utc(now, self._zone)
            transaction = Transaction(
                id=str(uuid4()),
                amount=self._validate_amount(draft.amount),
                currency=self._validate_currency(draft.currency),
                category=self._validate_key(self._categories, "category", draft.category),
                payment_method=self._validate_key(self._payment_methods, "payment_method", draft.payment_method),
                occurred_at=self._validate_date(draft.occurred_at),
                created_at=created_at,
                note=_clean_note(draft.note),
                source=draft.source,
            )

            if self._repository is not None:
                self._repository.add(transaction)
            self._insert(transaction)
            if idempotency_key is not None:
                self._idempotency[idempotency_key] = transaction.id
            self._version += 1

        logger.info(
            {
                "event": "ledger_commit",
                "transaction_id": transaction.id,
                "category": transaction.category.value,
                "source": transaction.source.value,
                "version": self._version,
            }
        )
        return transaction.id

    def edit(self, transaction_id: str, patch: Mapping[str, Any]) -> Transaction:
        with self._lock.write():
            current = self._transactions.get(transaction_id)
            if current is None:
                raise NotFound(transaction_id)

            changes: dict[str, Any] = {}
            for field_name, value in patch.items():
                if field_name in IMMUTABLE_FIELDS:
                    raise InvalidTransaction(f"Field '{field_name}' cannot be edited", field=field_name, value=value)
                if field_name not in EDITABLE_FIELDS:
                    raise InvalidTransaction(f"Unknown field '{field_name}'", field=field_name, value=value)
                changes[field_name] = self._validate_field(field_name, value)

            updated = replace(current, **changes)
            changed_fields = sorted(name for name in changes if getattr(current, name) != changes[name])
            if not changed_fields:
                return current

            if self._repository is not None:
                self._repository.update(updated, changed_fields)
            self._transactions[transaction_id] = updated
            self._version += 1

        logger.info(
            {
                "event": "ledger_edit",
                "transaction_id": transaction_id,
                "fields": changed_fields,
                "version": self._version,
            }
        )
        return updated

    def delete(self, transaction_id: str) -> None:
        with self._lock.write():
            if transaction_id not in self._transactions:
                raise NotFound(transaction_id)
            if self._repository is not None:
                self._repository.remove(transaction_id)
            del self._transactions[transaction_id]
            del self._sequence[transaction_id]
            self._version += 1

        logger.info({"event": "ledger_delete", "transaction_id": transaction_id, "version": self._version})

    def get(self, transaction_id: str) -> Transaction:
        with self._lock.read():
            transaction = self._transactions.get(transaction_id)
        if transaction is None:
            raise NotFound(transaction_id)
        return transaction

    def list(self, filter: TransactionFilter | None = None) -> list[Transaction]:
        """Newest first: occurred_at desc, then created_at desc, then latest insertion."""
        with self._lock.read():
            ordered = self._ordered()
        if filter is None:
            return ordered
        return [transaction for transaction in ordered if filter.matches(transaction)]

    def snapshot(self) -> LedgerSnapshot:
        with self._lock.read():
            return LedgerSnapshot(version=self._version, transactions=tuple(self._ordered()))

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._transactions)

    def _insert(self, transaction: Transaction) -> None:
        self._transactions[transaction.id] = transaction
        self._sequence[transaction.id] = self._next_sequence
        self._next_sequence += 1

    def _ordered(self) -> list[Transaction]:
        return sorted(
            self._transactions.values(),
            key=lambda transaction: (
                transaction.occurred_at,
                transaction.created_at,
                self._sequence[transaction.id],
            ),
            reverse=True,
        )

    def _validate_field(self, field_name: str, value: Any) -> Any:
        if field_name == "amount":
            return self._validate_amount(value)
        if field_name == "currency":
            return self._validate_currency(value)
        if field_name == "category":
            return self._validate_key(self._categories, "category", value)
        if field_name == "payment_method":
            return self._validate_key(self._payment_methods, "payment_method", value)
        if field_name == "occurred_at":
            return self._validate_date(value)
        return _clean_note(value)

    @staticmethod
    def _validate_amount(value: Any) -> Decimal:
        if isinstance(value, bool) or value is None:
            raise InvalidTransaction("Amount is required", field="amount", value=value)
        try:
            amount = Decimal(str(value))
        except InvalidOperation as exc:
            raise InvalidTransaction(f"Amount '{value}' is not a number", field="amount", value=value) from exc
        if not amount.is_finite() or amount <= 0:
            raise InvalidTransaction("Amount must be greater than zero", field="amount", value=value)
        quantized = amount.quantize(CENTS, rounding=ROUND_HALF_UP)
        if quantized <= 0:
            raise InvalidTransaction("Amount must be at least one cent", field="amount", value=value)
        return quantized

    @staticmethod
    def _validate_currency(value: Any) -> str:
        if not isinstance(value, str) or len(value.strip()) != 3 or not value.strip().isalpha():
            raise InvalidTransaction("Currency must be a 3-letter ISO code", field="currency", value=value)
        return value.strip().upper()

    @staticmethod
    def _validate_key(registry: Taxonomy, field_name: str, value: Any) -> Any:
        key = registry.coerce_key(value)
        if key is None:
            raise InvalidTransaction(f"Unknown {field_name} '{value}'", field=field_name, value=value)
        return key

    @staticmethod
    def _validate_date(value: Any) -> date:
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        if isinstance(value, str):
            try:
                return date.fromisoformat(value)
            except ValueError as exc:
                raise InvalidTransaction(
                    f"Date '{value}' is not YYYY-MM-DD", field="occurred_at", value=value
                ) from exc
        raise InvalidTransaction("Date is required", field="occurred_at", value=value)


def _clean_note(value: Any) -> str | None:
    if value is None:
        return None
    text = " ".join(str(value).split())
    return text[:MAX_NOTE_LENGTH].rstrip() or None
