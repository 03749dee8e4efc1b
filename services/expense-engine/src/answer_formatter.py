"""Plain-text renderings of confirmations and analytics answers for the chat surface."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from decimal import Decimal

from query_engine import AggregateBucket, DashboardStats, SeriesPoint
from taxonomy import CATEGORIES, PAYMENT_METHODS, CategoryKey, PaymentMethodKey
from transaction_model import Transaction

CURRENCY_PREFIXES: dict[str, str] = {
    "MXN": "$",
    "USD": "$",
    "CAD": "$",
    "EUR": "€",
    "GBP": "£",
}

FOLLOW_UP = "Would you like to add any notes or categorize it differently?"


def format_money(amount: Decimal, currency: str) -> str:
    prefix = CURRENCY_PREFIXES.get(currency, "")
    return f"{prefix}{amount:,.2f} {currency}"


def describe_day(day: date, today: date) -> str:
    if day == today:
        return "Today"
    if (today - day).days == 1:
        return "Yesterday"
    return day.strftime("%b %d, %Y").replace(" 0", " ")


def format_confirmation(transaction: Transaction, today: date) -> str:
    lines = [
        "Got it! I've recorded your expense:",
        "",
        f"**{CATEGORIES.display_name(transaction.category)}** - "
        f"{format_money(transaction.amount, transaction.currency)}",
        describe_day(transaction.occurred_at, today),
    ]
    if transaction.payment_method != PaymentMethodKey.UNSPECIFIED:
        lines.append(PAYMENT_METHODS.display_name(transaction.payment_method))
    if transaction.note:
        lines.append(f"Note: {transaction.note}")
    lines.extend(["", FOLLOW_UP])
    return "\n".join(lines)


def format_breakdown(buckets: Sequence[AggregateBucket], range_label: str, currency: str) -> str:
    """
    Render category buckets the way the chat shows them, biggest first, closing
    with the biggest category.
    """

    spent = [bucket for bucket in buckets if bucket.total > 0]
    if not spent:
        return f"You haven't recorded any expenses {range_label} yet."

    lines = [f"Based on your expenses {range_label}, here's a breakdown:", ""]
    for bucket in spent:
        lines.append(
            f"**{bucket.display_name}** - {format_money(bucket.total, currency)} ({bucket.percent_of_total}%)"
        )
    lines.extend(["", f"{spent[0].display_name} is your biggest category."])
    return "\n".join(lines)


def format_total(total: Decimal, range_label: str, currency: str, category: CategoryKey | None = None) -> str:
    scope = f" on {CATEGORIES.display_name(category)}" if category is not None else ""
    if total <= 0:
        return f"You haven't spent anything{scope} {range_label}."
    return f"You've spent {format_money(total, currency)}{scope} {range_label}."


def format_trend(points: Sequence[SeriesPoint], range_label: str, currency: str) -> str:
    if not any(point.total > 0 for point in points):
        return f"You haven't recorded any expenses {range_label} yet."

    lines = [f"Here's your spending {range_label}:", ""]
    lines.extend(f"{point.bucket_label}: {format_money(point.total, currency)}" for point in points)
    peak = max(points, key=lambda point: point.total)
    lines.extend(["", f"Your highest spending was on {peak.bucket_label}."])
    return "\n".join(lines)


def format_summary(
    stats: DashboardStats,
    buckets: Sequence[AggregateBucket],
    range_label: str,
) -> str:
    if stats.transaction_count == 0:
        return f"You haven't recorded any expenses {range_label} yet."

    lines = [
        f"Here's your summary for {range_label}:",
        "",
        f"Total spent: {format_money(stats.total, stats.currency)}",
        f"Transactions: {stats.transaction_count}",
        f"Average per transaction: {format_money(stats.average_per_transaction, stats.currency)}",
    ]
    spent = [bucket for bucket in buckets if bucket.total > 0]
    if spent:
        top = spent[0]
        lines.append(f"Biggest category: {top.display_name} ({top.percent_of_total}%)")
    return "\n".join(lines)
