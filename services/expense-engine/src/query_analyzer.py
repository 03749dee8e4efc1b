"""
Query analyzer module for recognizing analytics questions in the chat stream.

A message is treated as a question about past spending when it carries a
question cue ("where", "how much", "show me", a trailing "?") together with a
metric keyword ("spend", "summary", "breakdown"), and does not open like an
expense report ("I spent ..."). The analysis also extracts the intent, the
date range and an optional category filter so the dialogue can hand the
question straight to the query engine.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Literal

from taxonomy import CATEGORIES, CategoryKey, Taxonomy, normalize_text, tokenize
from transaction_model import DateRange, local_date

QueryIntent = Literal[
    "category_breakdown",
    "total_spent",
    "spending_trend",
    "summary",
]

RangeName = Literal[
    "today",
    "yesterday",
    "this_week",
    "last_week",
    "this_month",
    "last_month",
    "this_year",
    "last_n_days",
]


@dataclass
class QueryAnalysis:
    """Structured representation of an analytics question."""

    raw_query: str
    is_query: bool
    intent: QueryIntent | None = None
    date_range: DateRange | None = None
    range_name: RangeName | None = None
    range_label: str = ""
    category: CategoryKey | None = None
    confidence: float = 0.0  # 0.0 to 1.0


QUESTION_CUES: set[str] = {
    "where",
    "how much",
    "how many",
    "what",
    "which",
    "when",
    "show",
    "show me",
    "give me",
    "tell me",
    "list",
    "donde",
    "cuanto",
    "cuanta",
    "cual",
    "que",
    "muestrame",
}

METRIC_KEYWORDS: set[str] = {
    "spend",
    "spent",
    "spending",
    "expense",
    "expenses",
    "money",
    "total",
    "summary",
    "breakdown",
    "overview",
    "report",
    "trend",
    "category",
    "categories",
    "gaste",
    "gastado",
    "gastos",
    "resumen",
}

# Keyword patterns for intent detection, checked in order of specificity.
INTENT_KEYWORDS: dict[QueryIntent, set[str]] = {
    "summary": {
        "summary",
        "overview",
        "report",
        "resumen",
        "monthly summary",
        "weekly summary",
    },
    "spending_trend": {
        "trend",
        "over time",
        "per day",
        "each day",
        "daily",
        "day by day",
        "per week",
        "weekly",
        "por dia",
    },
    "category_breakdown": {
        "where",
        "which category",
        "what category",
        "breakdown",
        "by category",
        "categories",
        "spend more",
        "spent more",
        "spend the most",
        "spent the most",
        "biggest",
        "donde",
    },
    "total_spent": {
        "how much",
        "total",
        "cuanto",
        "cuanta",
    },
}

CAPTURE_OPENERS: tuple[str, ...] = (
    "i spent",
    "i paid",
    "i bought",
    "spent",
    "paid",
    "bought",
    "i just spent",
    "i just paid",
    "gaste",
    "pague",
    "compre",
)

RANGE_KEYWORDS: dict[RangeName, set[str]] = {
    "today": {"today", "hoy"},
    "yesterday": {"yesterday", "ayer"},
    "this_week": {"this week", "esta semana", "weekly"},
    "last_week": {"last week", "semana pasada"},
    "this_month": {"this month", "este mes", "monthly"},
    "last_month": {"last month", "mes pasado"},
    "this_year": {"this year", "este ano", "yearly"},
}

RANGE_LABELS: dict[RangeName, str] = {
    "today": "today",
    "yesterday": "yesterday",
    "this_week": "this week",
    "last_week": "last week",
    "this_month": "this month",
    "last_month": "last month",
    "this_year": "this year",
}

_LAST_N_DAYS_RE = re.compile(r"\b(?:last|past)\s+(\d{1,3})\s+days?\b")


def analyze_query(
    query: str | None,
    now: datetime | None = None,
    *,
    zone: tzinfo = timezone.utc,
    default_range: RangeName = "this_month",
    categories: Taxonomy[CategoryKey] = CATEGORIES,
) -> QueryAnalysis:
    """
    Decide whether a chat message is an analytics question and extract its parameters.

    Args:
        query: The user's raw message.
        now: Reference instant; "this week" and friends are computed from its local date.
        zone: Reporting timezone.
        default_range: Range used when the question names none.

    Returns:
        QueryAnalysis; `is_query` is False for expense reports and small talk.
    """
    if not query or not query.strip():
        return QueryAnalysis(raw_query=query or "", is_query=False)

    text = " ".join(tokenize(query))
    padded = f" {text} "

    if text.startswith(CAPTURE_OPENERS):
        return QueryAnalysis(raw_query=query, is_query=False)

    has_question_cue = query.strip().endswith("?") or any(_contains(padded, cue) for cue in QUESTION_CUES)
    metric_hits = sum(1 for keyword in METRIC_KEYWORDS if _contains(padded, keyword))
    if not has_question_cue or metric_hits == 0:
        return QueryAnalysis(raw_query=query, is_query=False)

    intent: QueryIntent = "category_breakdown"
    intent_hits = 0
    for candidate, keywords in INTENT_KEYWORDS.items():
        hits = sum(1 for keyword in keywords if _contains(padded, keyword))
        if hits:
            intent, intent_hits = candidate, hits
            break

    today = local_date(now, zone)
    range_name, date_range, range_label = _extract_range(text, today, default_range)
    category = _extract_category(text, categories)
    if intent == "category_breakdown" and category is not None and not _contains(padded, "where"):
        # "how much on food" style questions name a single category
        intent = "total_spent"

    confidence = min(1.0, 0.4 + 0.2 * metric_hits + 0.2 * intent_hits)

    return QueryAnalysis(
        raw_query=query,
        is_query=True,
        intent=intent,
        date_range=date_range,
        range_name=range_name,
        range_label=range_label,
        category=category,
        confidence=round(confidence, 2),
    )


def resolve_named_range(name: RangeName, today: date) -> DateRange:
    """Map a named range to inclusive dates; weeks start on Monday and end today."""
    if name == "today":
        return DateRange(today, today)
    if name == "yesterday":
        yesterday = today - timedelta(days=1)
        return DateRange(yesterday, yesterday)
    if name == "this_week":
        return DateRange(today - timedelta(days=today.weekday()), today)
    if name == "last_week":
        start = today - timedelta(days=today.weekday() + 7)
        return DateRange(start, start + timedelta(days=6))
    if name == "this_month":
        return DateRange(today.replace(day=1), today)
    if name == "last_month":
        end = today.replace(day=1) - timedelta(days=1)
        return DateRange(end.replace(day=1), end)
    if name == "this_year":
        return DateRange(today.replace(month=1, day=1), today)
    raise ValueError(f"Unsupported range '{name}'")


def _extract_range(text: str, today: date, default_range: RangeName) -> tuple[RangeName, DateRange, str]:
    match = _LAST_N_DAYS_RE.search(text)
    if match:
        days = max(1, int(match.group(1)))
        return "last_n_days", DateRange(today - timedelta(days=days - 1), today), f"the last {days} days"

    padded = f" {text} "
    # Phrases before single words: "last week" must not fall through to "weekly".
    for name, keywords in RANGE_KEYWORDS.items():
        if any(" " in keyword and _contains(padded, keyword) for keyword in keywords):
            return name, resolve_named_range(name, today), RANGE_LABELS[name]
    for name, keywords in RANGE_KEYWORDS.items():
        if any(" " not in keyword and _contains(padded, keyword) for keyword in keywords):
            return name, resolve_named_range(name, today), RANGE_LABELS[name]

    return default_range, resolve_named_range(default_range, today), RANGE_LABELS[default_range]


def _extract_category(text: str, categories: Taxonomy[CategoryKey]) -> CategoryKey | None:
    distinct = list(dict.fromkeys(match.key for match in categories.find_matches(text.split())))
    if len(distinct) == 1:
        return distinct[0]
    return None


def _contains(padded_text: str, phrase: str) -> bool:
    return f" {normalize_text(phrase)} " in padded_text
