from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone, tzinfo
from decimal import Decimal
from enum import Enum
from typing import Literal

from taxonomy import CategoryKey, PaymentMethodKey

Slot = Literal["amount", "category", "payment_method", "occurred_at", "note"]

REQUIRED_SLOTS: tuple[Slot, ...] = ("amount", "category")
OPTIONAL_SLOTS: tuple[Slot, ...] = ("payment_method", "occurred_at")


class TransactionSource(str, Enum):
    CHAT = "chat"
    MANUAL = "manual"


@dataclass
class PartialTransaction:
    """Slots collected so far for an entry that has not been committed."""

    amount: Decimal | None = None
    currency: str | None = None
    category: CategoryKey | None = None
    payment_method: PaymentMethodKey | None = None
    note: str | None = None
    occurred_at: date | None = None

    def has_value(self, slot: Slot) -> bool:
        return getattr(self, slot) is not None


@dataclass(frozen=True)
class TransactionDraft:
    """Fully-resolved fields handed to the ledger's commit operation."""

    amount: Decimal
    currency: str
    category: CategoryKey
    payment_method: PaymentMethodKey
    occurred_at: date
    note: str | None = None
    source: TransactionSource = TransactionSource.CHAT


@dataclass(frozen=True)
class Transaction:
    id: str
    amount: Decimal
    currency: str
    category: CategoryKey
    payment_method: PaymentMethodKey
    occurred_at: date
    created_at: datetime
    note: str | None = None
    source: TransactionSource = TransactionSource.CHAT


@dataclass(frozen=True)
class DateRange:
    """Inclusive calendar range."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError(f"Range start {self.start} is after end {self.end}")

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1


@dataclass(frozen=True)
class TransactionFilter:
    """Predicate over category, payment method and occurrence date; empty sets mean "any"."""

    categories: frozenset[CategoryKey] = field(default_factory=frozenset)
    payment_methods: frozenset[PaymentMethodKey] = field(default_factory=frozenset)
    date_range: DateRange | None = None

    def matches(self, transaction: Transaction) -> bool:
        if self.categories and transaction.category not in self.categories:
            return False
        if self.payment_methods and transaction.payment_method not in self.payment_methods:
            return False
        if self.date_range is not None and not self.date_range.contains(transaction.occurred_at):
            return False
        return True

    def with_range(self, date_range: DateRange | None) -> TransactionFilter:
        return replace(self, date_range=date_range)


def local_date(moment: datetime | None, zone: tzinfo) -> date:
    """Calendar day of `moment` in the reporting zone; naive values are taken as already local."""
    if moment is None:
        return datetime.now(zone).date()
    if moment.tzinfo is None:
        return moment.date()
    return moment.astimezone(zone).date()


def as_utc(moment: datetime | None, zone: tzinfo) -> datetime:
    if moment is None:
        return datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=zone)
    return moment.astimezone(timezone.utc)
