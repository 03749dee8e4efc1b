"""
Read-side analytics over a ledger snapshot.

All results are pure functions of `(snapshot, arguments)` and are cached per
snapshot version, so a dashboard refresh that issues the same questions twice
only pays for the first one. Aggregates only count transactions in the
reporting currency; listings return everything that matches.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any

from ledger_store import CENTS, LedgerSnapshot, LedgerStore
from taxonomy import CATEGORIES, CategoryKey, Taxonomy
from transaction_model import DateRange, Transaction, TransactionFilter

ONE_DECIMAL = Decimal("0.1")
ZERO = Decimal("0.00")


class BucketSize(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


@dataclass(frozen=True)
class AggregateBucket:
    key: CategoryKey
    display_name: str
    total: Decimal
    count: int
    percent_of_total: Decimal


@dataclass(frozen=True)
class SeriesPoint:
    bucket_label: str
    bucket_start: date
    total: Decimal
    count: int = 0


@dataclass(frozen=True)
class DashboardStats:
    total: Decimal
    transaction_count: int
    average_per_transaction: Decimal
    currency: str


class QueryEngine:
    def __init__(
        self,
        ledger: LedgerStore,
        *,
        reporting_currency: str = "MXN",
        categories: Taxonomy[CategoryKey] = CATEGORIES,
    ) -> None:
        self._ledger = ledger
        self.reporting_currency = reporting_currency
        self._categories = categories
        self._cache: dict[tuple[Any, ...], Any] = {}
        self._cache_version: int | None = None
        self._cache_lock = threading.Lock()

    def aggregate_by_category(
        self,
        date_range: DateRange | None,
        *,
        include_empty: bool = False,
        filter: TransactionFilter | None = None,
    ) -> list[AggregateBucket]:
        """Category totals sorted by total descending, then key ascending."""
        key = ("aggregate", date_range, include_empty, filter)
        return list(self._memoized(key, lambda snapshot: self._aggregate(snapshot, date_range, include_empty, filter)))

    def time_series(
        self,
        date_range: DateRange,
        bucket_size: BucketSize = BucketSize.DAY,
        *,
        filter: TransactionFilter | None = None,
    ) -> list[SeriesPoint]:
        """One point per bucket intersecting `date_range`, zero-filled, oldest first."""
        bucket_size = BucketSize(bucket_size)
        key = ("series", date_range, bucket_size, filter)
        return list(self._memoized(key, lambda snapshot: self._series(snapshot, date_range, bucket_size, filter)))

    def filter(self, transaction_filter: TransactionFilter | None = None) -> list[Transaction]:
        key = ("filter", transaction_filter)
        return list(self._memoized(key, lambda snapshot: self._matching(snapshot, transaction_filter, None)))

    def dashboard_stats(
        self,
        date_range: DateRange | None,
        filter: TransactionFilter | None = None,
    ) -> DashboardStats:
        key = ("stats", date_range, filter)
        return self._memoized(key, lambda snapshot: self._stats(snapshot, date_range, filter))

    def total(self, date_range: DateRange | None, category: CategoryKey | None = None) -> Decimal:
        transaction_filter = TransactionFilter(categories=frozenset({category}) if category else frozenset())
        return self.dashboard_stats(date_range, transaction_filter).total

    def _memoized(self, key: tuple[Any, ...], compute: Callable[[LedgerSnapshot], Any]) -> Any:
        with self._cache_lock:
            if self._cache_version == self._ledger.version and key in self._cache:
                return self._cache[key]

        snapshot = self._ledger.snapshot()
        result = compute(snapshot)
        with self._cache_lock:
            if self._cache_version != snapshot.version:
                self._cache = {}
                self._cache_version = snapshot.version
            self._cache[key] = result
        return result

    def _matching(
        self,
        snapshot: LedgerSnapshot,
        transaction_filter: TransactionFilter | None,
        date_range: DateRange | None,
    ) -> tuple[Transaction, ...]:
        effective = transaction_filter or TransactionFilter()
        if date_range is not None:
            effective = effective.with_range(date_range)
        return tuple(transaction for transaction in snapshot.transactions if effective.matches(transaction))

    def _reportable(
        self,
        snapshot: LedgerSnapshot,
        transaction_filter: TransactionFilter | None,
        date_range: DateRange | None,
    ) -> list[Transaction]:
        return [
            transaction
            for transaction in self._matching(snapshot, transaction_filter, date_range)
            if transaction.currency == self.reporting_currency
        ]

    def _aggregate(
        self,
        snapshot: LedgerSnapshot,
        date_range: DateRange | None,
        include_empty: bool,
        transaction_filter: TransactionFilter | None,
    ) -> tuple[AggregateBucket, ...]:
        totals: dict[CategoryKey, Decimal] = {}
        counts: dict[CategoryKey, int] = {}
        if include_empty:
            for key in self._categories.keys():
                totals[key] = ZERO
                counts[key] = 0
        for transaction in self._reportable(snapshot, transaction_filter, date_range):
            totals[transaction.category] = totals.get(transaction.category, ZERO) + transaction.amount
            counts[transaction.category] = counts.get(transaction.category, 0) + 1

        grand_total = sum(totals.values(), ZERO)
        buckets = [
            AggregateBucket(
                key=key,
                display_name=self._categories.display_name(key),
                total=total,
                count=counts[key],
                percent_of_total=_percent(total, grand_total),
            )
            for key, total in totals.items()
        ]
        buckets.sort(key=lambda bucket: (-bucket.total, bucket.key.value))
        return tuple(buckets)

    def _series(
        self,
        snapshot: LedgerSnapshot,
        date_range: DateRange,
        bucket_size: BucketSize,
        transaction_filter: TransactionFilter | None,
    ) -> tuple[SeriesPoint, ...]:
        starts = list(_bucket_starts(date_range, bucket_size))
        totals = {start: ZERO for start in starts}
        counts = {start: 0 for start in starts}
        for transaction in self._reportable(snapshot, transaction_filter, date_range):
            start = bucket_start(transaction.occurred_at, bucket_size)
            totals[start] += transaction.amount
            counts[start] += 1
        return tuple(
            SeriesPoint(
                bucket_label=bucket_label(start, bucket_size),
                bucket_start=start,
                total=totals[start],
                count=counts[start],
            )
            for start in starts
        )

    def _stats(
        self,
        snapshot: LedgerSnapshot,
        date_range: DateRange | None,
        transaction_filter: TransactionFilter | None,
    ) -> DashboardStats:
        rows = self._reportable(snapshot, transaction_filter, date_range)
        total = sum((transaction.amount for transaction in rows), ZERO)
        average = (total / len(rows)).quantize(CENTS, rounding=ROUND_HALF_UP) if rows else ZERO
        return DashboardStats(
            total=total,
            transaction_count=len(rows),
            average_per_transaction=average,
            currency=self.reporting_currency,
        )


def bucket_start(day: date, bucket_size: BucketSize) -> date:
    if bucket_size == BucketSize.WEEK:
        return day - timedelta(days=day.weekday())
    if bucket_size == BucketSize.MONTH:
        return day.replace(day=1)
    return day


def bucket_label(start: date, bucket_size: BucketSize) -> str:
    if bucket_size == BucketSize.MONTH:
        return start.strftime("%Y-%m")
    return start.isoformat()


def _bucket_starts(date_range: DateRange, bucket_size: BucketSize) -> Iterable[date]:
    current = bucket_start(date_range.start, bucket_size)
    while current <= date_range.end:
        yield current
        if bucket_size == BucketSize.DAY:
            current += timedelta(days=1)
        elif bucket_size == BucketSize.WEEK:
            current += timedelta(days=7)
        elif current.month == 12:
            current = current.replace(year=current.year + 1, month=1)
        else:
            current = current.replace(month=current.month + 1)


def _percent(total: Decimal, grand_total: Decimal) -> Decimal:
    if grand_total <= 0:
        return Decimal("0.0")
    return (total / grand_total * 100).quantize(ONE_DECIMAL, rounding=ROUND_HALF_UP)
