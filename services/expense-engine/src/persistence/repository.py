"""Transaction data access helpers backing the ledger's write-through."""

from __future__ import annotations

from datetime import timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from errors import NotFound
from persistence.models import AuditEvent, TransactionRecord
from taxonomy import CategoryKey, PaymentMethodKey
from transaction_model import Transaction, TransactionSource

CENTS = Decimal("0.01")


class AuditAction(str, Enum):
    """Enumerates the ledger mutations that leave an audit row."""

    COMMIT = "commit_transaction"
    EDIT = "edit_transaction"
    DELETE = "delete_transaction"


class SqlTransactionRepository:
    """Thin repository that mirrors ledger mutations into SQL, one session per call."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def add(self, transaction: Transaction) -> None:
        with self._session_factory() as db:
            db.add(to_record(transaction))
            self._record_event(
                db,
                action=AuditAction.COMMIT,
                transaction_id=transaction.id,
                details={"category": transaction.category.value, "source": transaction.source.value},
            )
            db.commit()

    def update(self, transaction: Transaction, changed_fields: list[str]) -> None:
        with self._session_factory() as db:
            record = db.get(TransactionRecord, transaction.id)
            if record is None:
                raise NotFound(transaction.id)
            fresh = to_record(transaction)
            for column in ("amount_minor", "currency", "category", "payment_method", "note", "occurred_at"):
                setattr(record, column, getattr(fresh, column))
            self._record_event(
                db,
                action=AuditAction.EDIT,
                transaction_id=transaction.id,
                details={"fields": list(changed_fields)},
            )
            db.commit()

    def remove(self, transaction_id: str) -> None:
        with self._session_factory() as db:
            record = db.get(TransactionRecord, transaction_id)
            if record is None:
                raise NotFound(transaction_id)
            db.delete(record)
            self._record_event(db, action=AuditAction.DELETE, transaction_id=transaction_id, details=None)
            db.commit()

    def load_all(self) -> list[Transaction]:
        with self._session_factory() as db:
            records = db.scalars(select(TransactionRecord).order_by(TransactionRecord.created_at)).all()
            return [from_record(record) for record in records]

    def audit_trail(self, transaction_id: str) -> list[AuditEvent]:
        with self._session_factory() as db:
            statement = (
                select(AuditEvent).where(AuditEvent.transaction_id == transaction_id).order_by(AuditEvent.id)
            )
            return list(db.scalars(statement).all())

    @staticmethod
    def _record_event(
        db: Session,
        *,
        action: AuditAction,
        transaction_id: str,
        details: dict[str, Any] | None,
    ) -> None:
        event = AuditEvent(
            transaction_id=transaction_id,
            action=action.value,
            details=details,
        )
        db.add(event)


def to_record(transaction: Transaction) -> TransactionRecord:
    return TransactionRecord(
        id=transaction.id,
        amount_minor=int((transaction.amount / CENTS).to_integral_value()),
        currency=transaction.currency,
        category=transaction.category.value,
        payment_method=transaction.payment_method.value,
        note=transaction.note,
        occurred_at=transaction.occurred_at,
        source=transaction.source.value,
        created_at=transaction.created_at,
    )


def from_record(record: TransactionRecord) -> Transaction:
    created_at = record.created_at
    if created_at.tzinfo is None:
        # SQLite drops the offset; values are always written in UTC.
        created_at = created_at.replace(tzinfo=timezone.utc)
    return Transaction(
        id=record.id,
        amount=(Decimal(record.amount_minor) * CENTS).quantize(CENTS),
        currency=record.currency,
        category=CategoryKey(record.category),
        payment_method=PaymentMethodKey(record.payment_method),
        occurred_at=record.occurred_at,
        created_at=created_at,
        note=record.note,
        source=TransactionSource(record.source),
    )
