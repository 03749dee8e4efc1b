"""
Rule-based parser that turns a chat utterance into a partial transaction.

The pipeline is deterministic: tokens are claimed slot by slot (dates, then
amount and currency, then category, then payment method) and whatever is left
over becomes the note. Slots with a single reading are filled; slots with two
or more readings are reported as ambiguous with their candidates; required
slots with no reading at all are reported as missing. Malformed input never
raises, the worst case is an empty partial with both required slots missing.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone, tzinfo
from decimal import Decimal, InvalidOperation
from typing import Any, Literal

from taxonomy import (
    CATEGORIES,
    PAYMENT_METHODS,
    CategoryKey,
    PaymentMethodKey,
    Taxonomy,
    TaxonomyMatch,
    normalize_text,
)
from transaction_model import REQUIRED_SLOTS, PartialTransaction, Slot, local_date

TokenKind = Literal["isodate", "number", "symbol", "word"]

# A minus sign only counts when it does not follow a word, so "2026-10-18" and
# "20-30" never produce negative amounts.
_TOKEN_RE = re.compile(
    r"(?P<isodate>(?<![\w-])\d{4}-\d{1,2}-\d{1,2}\b)"
    r"|(?P<number>(?:(?<!\w)-)?\d+(?:[.,]\d+)*)(?P<ordinal>(?:st|nd|rd|th)\b)?"
    r"|(?P<symbol>[$€£])"
    r"|(?P<word>[^\W\d_]+)"
)

CURRENCY_SYMBOLS: dict[str, str | None] = {
    # None means "the reporting currency"; "$" is shared by MXN and USD.
    "$": None,
    "€": "EUR",
    "£": "GBP",
}

CURRENCY_WORDS: dict[str, str] = {
    "peso": "MXN",
    "pesos": "MXN",
    "mxn": "MXN",
    "dollar": "USD",
    "dollars": "USD",
    "usd": "USD",
    "dlls": "USD",
    "bucks": "USD",
    "euro": "EUR",
    "euros": "EUR",
    "eur": "EUR",
    "pound": "GBP",
    "pounds": "GBP",
    "gbp": "GBP",
}

CATEGORY_CUES = frozenset({"on", "for", "en", "para"})
PAYMENT_CUES = frozenset({"with", "using", "by", "via", "in", "con", "en"})
DETERMINERS = frozenset({"my", "the", "a", "an", "some", "mi", "mis", "el", "la", "los", "las", "un", "una"})

FILLER_WORDS = frozenset(
    {
        "i", "m", "ive", "ve", "me", "my", "we", "our", "you", "it", "was", "is", "just",
        "spent", "spend", "spending", "paid", "pay", "paying", "bought", "buy", "purchased",
        "cost", "costs", "charged", "got", "had", "money", "total",
        "on", "for", "with", "using", "by", "via", "in", "at", "to", "of", "and", "from",
        "the", "a", "an", "some", "this", "that", "last", "ago", "days", "day", "before",
        "gaste", "pague", "compre", "en", "de", "con", "por", "para", "mi", "mis", "y",
        "el", "la", "los", "las", "un", "una", "hace", "dias", "dia", "pasado", "pasada",
    }
)

MONTHS: dict[str, int] = {
    "january": 1, "jan": 1, "enero": 1, "ene": 1,
    "february": 2, "feb": 2, "febrero": 2,
    "march": 3, "mar": 3, "marzo": 3,
    "april": 4, "apr": 4, "abril": 4, "abr": 4,
    "may": 5, "mayo": 5,
    "june": 6, "jun": 6, "junio": 6,
    "july": 7, "jul": 7, "julio": 7,
    "august": 8, "aug": 8, "agosto": 8,
    "september": 9, "sep": 9, "sept": 9, "septiembre": 9,
    "october": 10, "oct": 10, "octubre": 10,
    "november": 11, "nov": 11, "noviembre": 11,
    "december": 12, "dec": 12, "diciembre": 12, "dic": 12,
}

WEEKDAYS: dict[str, int] = {
    "monday": 0, "lunes": 0,
    "tuesday": 1, "martes": 1,
    "wednesday": 2, "miercoles": 2,
    "thursday": 3, "jueves": 3,
    "friday": 4, "viernes": 4,
    "saturday": 5, "sabado": 5,
    "sunday": 6, "domingo": 6,
}

RELATIVE_DAYS: dict[tuple[str, ...], int] = {
    ("today",): 0,
    ("hoy",): 0,
    ("yesterday",): 1,
    ("ayer",): 1,
    ("day", "before", "yesterday"): 2,
    ("antier",): 2,
    ("anteayer",): 2,
}

SLOT_WEIGHTS: dict[str, float] = {
    "amount": 0.4,
    "category": 0.3,
    "payment_method": 0.15,
    "currency": 0.1,
    "occurred_at": 0.05,
}


@dataclass(frozen=True)
class Token:
    text: str
    norm: str
    start: int
    end: int
    kind: TokenKind
    ordinal: bool = False


@dataclass(frozen=True)
class AmountCandidate:
    amount: Decimal
    currency: str
    explicit_currency: bool = False


@dataclass
class ParseResult:
    """Outcome of one parse; `candidates` holds the readings of every ambiguous slot."""

    partial: PartialTransaction
    missing_slots: list[Slot] = field(default_factory=list)
    ambiguous_slots: list[Slot] = field(default_factory=list)
    candidates: dict[Slot, list[Any]] = field(default_factory=dict)
    confidence: float = 0.0
    explicit_currency: bool = False

    @property
    def is_complete(self) -> bool:
        return not self.missing_slots and not self.ambiguous_slots


@dataclass
class _SlotReading:
    """Intermediate result for one slot: a value or candidates plus claimed tokens."""

    value: Any = None
    candidates: list[Any] = field(default_factory=list)
    claimed: set[int] = field(default_factory=set)
    first_index: int | None = None


def tokenize_utterance(text: str | None) -> list[Token]:
    tokens: list[Token] = []
    for match in _TOKEN_RE.finditer(text or ""):
        if match.group("isodate") is not None:
            value = match.group("isodate")
            tokens.append(Token(text=value, norm=value, start=match.start(), end=match.end(), kind="isodate"))
        elif match.group("number") is not None:
            tokens.append(
                Token(
                    text=match.group("number"),
                    norm=match.group("number"),
                    start=match.start(),
                    end=match.end(),
                    kind="number",
                    ordinal=match.group("ordinal") is not None,
                )
            )
        elif match.group("symbol") is not None:
            symbol = match.group("symbol")
            tokens.append(Token(text=symbol, norm=symbol, start=match.start(), end=match.end(), kind="symbol"))
        else:
            word = match.group("word")
            tokens.append(
                Token(text=word, norm=normalize_text(word), start=match.start(), end=match.end(), kind="word")
            )
    return tokens


def parse_number(raw: str) -> Decimal | None:
    """
    Read "1,200.50", "1.200,50", "1.500", "250,5" or "-40" as a Decimal.

    When both separators appear the last one is the decimal point; a lone
    separator followed by groups of exactly three digits is a thousands mark,
    for dots as well as commas.
    """

    text = raw
    sign = ""
    if text.startswith("-"):
        sign, text = "-", text[1:]

    if "," in text and "." in text:
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif "," in text:
        parts = text.split(",")
        if all(len(part) == 3 for part in parts[1:]):
            text = "".join(parts)
        elif len(parts) == 2:
            text = ".".join(parts)
        else:
            return None
    elif "." in text:
        parts = text.split(".")
        if all(len(part) == 3 for part in parts[1:]):
            text = "".join(parts)
        elif len(parts) > 2:
            return None

    try:
        return Decimal(sign + text)
    except InvalidOperation:
        return None


class UtteranceParser:
    """Deterministic slot extractor bound to a pair of taxonomies and a reporting locale."""

    def __init__(
        self,
        *,
        categories: Taxonomy[CategoryKey] = CATEGORIES,
        payment_methods: Taxonomy[PaymentMethodKey] = PAYMENT_METHODS,
        reporting_currency: str = "MXN",
        zone: tzinfo = timezone.utc,
    ) -> None:
        self.categories = categories
        self.payment_methods = payment_methods
        self.reporting_currency = reporting_currency
        self.zone = zone

    def parse(self, utterance: str | None, now: datetime | None = None) -> ParseResult:
        tokens = tokenize_utterance(utterance)
        norms = [token.norm for token in tokens]
        today = local_date(now, self.zone)

        date_reading = self._extract_date(tokens, today)
        amount_reading = self._extract_amount(tokens, blocked=date_reading.claimed)
        blocked = date_reading.claimed | amount_reading.claimed
        category_reading = self._extract_taxonomy(self.categories, norms, blocked, CATEGORY_CUES)
        blocked |= category_reading.claimed
        payment_reading = self._extract_taxonomy(self.payment_methods, norms, blocked, PAYMENT_CUES)
        blocked |= payment_reading.claimed

        readings: dict[Slot, _SlotReading] = {
            "amount": amount_reading,
            "category": category_reading,
            "payment_method": payment_reading,
            "occurred_at": date_reading,
        }

        partial = PartialTransaction()
        explicit_currency = False
        if isinstance(amount_reading.value, AmountCandidate):
            partial.amount = amount_reading.value.amount
            partial.currency = amount_reading.value.currency
            explicit_currency = amount_reading.value.explicit_currency
        partial.category = category_reading.value
        partial.payment_method = payment_reading.value
        partial.occurred_at = date_reading.value
        partial.note = self._residual_note(tokens, blocked)

        ambiguous = [slot for slot, reading in readings.items() if len(reading.candidates) >= 2]
        ambiguous.sort(key=lambda slot: readings[slot].first_index or 0)
        missing = [
            slot for slot in REQUIRED_SLOTS if readings[slot].value is None and slot not in ambiguous
        ]

        return ParseResult(
            partial=partial,
            missing_slots=missing,
            ambiguous_slots=ambiguous,
            candidates={slot: list(readings[slot].candidates) for slot in ambiguous},
            confidence=_score(partial, explicit_currency),
            explicit_currency=explicit_currency,
        )

    def parse_amount_reply(self, text: str | None) -> AmountCandidate | None:
        """Accept a bare amount ("250", "$250", "250 pesos", "it was 250"); None otherwise."""
        tokens = tokenize_utterance(text)
        reading = self._extract_amount(tokens, blocked=set())
        if not isinstance(reading.value, AmountCandidate):
            return None
        leftover = [
            token for index, token in enumerate(tokens)
            if index not in reading.claimed and token.norm not in FILLER_WORDS
        ]
        if leftover:
            return None
        return reading.value

    def parse_date_reply(self, text: str | None, now: datetime | None = None) -> date | None:
        """Accept a bare date phrase ("yesterday", "on monday", "15 de enero"); None otherwise."""
        tokens = tokenize_utterance(text)
        reading = self._extract_date(tokens, local_date(now, self.zone))
        if reading.value is None:
            return None
        leftover = [
            token for index, token in enumerate(tokens)
            if index not in reading.claimed and token.norm not in FILLER_WORDS
        ]
        if leftover:
            return None
        return reading.value

    def _extract_amount(self, tokens: Sequence[Token], blocked: set[int]) -> _SlotReading:
        with_context: list[tuple[int, AmountCandidate, set[int]]] = []
        bare: list[tuple[int, AmountCandidate]] = []

        for index, token in enumerate(tokens):
            if token.kind != "number" or token.ordinal or index in blocked:
                continue
            value = parse_number(token.text)
            if value is None:
                continue
            currency, context_indices = self._currency_context(tokens, index)
            if currency is not None:
                with_context.append((index, AmountCandidate(value, currency, explicit_currency=True), context_indices))
            else:
                bare.append((index, AmountCandidate(value, self.reporting_currency)))

        reading = _SlotReading()
        number_indices = {index for index, _ in bare} | {index for index, _, _ in with_context}
        reading.claimed = set(number_indices)
        for _, _, context_indices in with_context:
            reading.claimed |= context_indices
        if number_indices:
            reading.first_index = min(number_indices)

        if with_context:
            distinct = _distinct(candidate for _, candidate, _ in with_context)
        else:
            distinct = _distinct(candidate for _, candidate in bare)

        if len(distinct) == 1:
            reading.value = distinct[0]
        elif len(distinct) >= 2:
            reading.candidates = distinct
        return reading

    def _currency_context(self, tokens: Sequence[Token], index: int) -> tuple[str | None, set[int]]:
        previous = tokens[index - 1] if index > 0 else None
        following = tokens[index + 1] if index + 1 < len(tokens) else None

        if previous is not None and previous.kind == "symbol":
            code = CURRENCY_SYMBOLS[previous.norm] or self.reporting_currency
            claimed = {index - 1}
            if following is not None and following.norm in CURRENCY_WORDS:
                # "$250 MXN": the word is more specific than the symbol.
                return CURRENCY_WORDS[following.norm], claimed | {index + 1}
            return code, claimed
        if following is not None and following.norm in CURRENCY_WORDS:
            return CURRENCY_WORDS[following.norm], {index + 1}
        if previous is not None and previous.norm in CURRENCY_WORDS:
            return CURRENCY_WORDS[previous.norm], {index - 1}
        return None, set()

    def _extract_taxonomy(
        self,
        registry: Taxonomy,
        norms: Sequence[str],
        blocked: set[int],
        cues: frozenset[str],
    ) -> _SlotReading:
        reading = _SlotReading()
        matches = registry.find_matches(norms, skip=blocked)
        if not matches:
            return reading

        reading.first_index = matches[0].start
        distinct = list(dict.fromkeys(match.key for match in matches))
        if len(distinct) == 1:
            reading.value = distinct[0]
            reading.claimed = _span_indices(matches)
            return reading

        cued = list(dict.fromkeys(match.key for match in matches if _is_cued(norms, match.start, cues)))
        if len(cued) == 1:
            reading.value = cued[0]
            reading.claimed = _span_indices(match for match in matches if match.key == cued[0])
            return reading

        reading.candidates = distinct
        reading.claimed = _span_indices(matches)
        return reading

    def _extract_date(self, tokens: Sequence[Token], today: date) -> _SlotReading:
        reading = _SlotReading()
        found: list[date] = []
        index = 0
        while index < len(tokens):
            result = self._match_date_at(tokens, index, today)
            if result is None:
                index += 1
                continue
            day, consumed = result
            found.append(day)
            reading.claimed |= set(range(index, index + consumed))
            if reading.first_index is None:
                reading.first_index = index
            index += consumed

        distinct = list(dict.fromkeys(found))
        if len(distinct) == 1:
            reading.value = distinct[0]
        elif len(distinct) >= 2:
            reading.candidates = distinct
        return reading

    def _match_date_at(self, tokens: Sequence[Token], index: int, today: date) -> tuple[date, int] | None:
        norms = [token.norm for token in tokens]

        for phrase, offset in sorted(RELATIVE_DAYS.items(), key=lambda item: -len(item[0])):
            if tuple(norms[index : index + len(phrase)]) == phrase:
                return today - timedelta(days=offset), len(phrase)

        token = tokens[index]

        if token.kind == "isodate":
            year, month, day = (int(part) for part in token.text.split("-"))
            try:
                return date(year, month, day), 1
            except ValueError:
                return None

        # "3 days ago" / "hace 3 dias"
        if token.kind == "number" and not token.ordinal and norms[index + 1 : index + 3] in (["days", "ago"], ["day", "ago"]):
            days = _small_int(token.text)
            if days is not None:
                return today - timedelta(days=days), 3
        if token.norm == "hace" and index + 2 < len(tokens) and tokens[index + 1].kind == "number":
            if norms[index + 2] in {"dias", "dia"}:
                days = _small_int(tokens[index + 1].text)
                if days is not None:
                    return today - timedelta(days=days), 3

        # "last monday" / "el lunes pasado" / "monday"
        if token.norm == "last" and index + 1 < len(tokens) and norms[index + 1] in WEEKDAYS:
            return _previous_weekday(today, WEEKDAYS[norms[index + 1]], strictly_before=True), 2
        if token.norm in WEEKDAYS:
            strict = index + 1 < len(tokens) and norms[index + 1] in {"pasado", "pasada"}
            return _previous_weekday(today, WEEKDAYS[token.norm], strictly_before=strict), 2 if strict else 1

        # "15 de enero" / "15th of january"
        if token.kind == "number" and not self._has_currency_neighbor(tokens, index):
            if index + 2 < len(tokens) and norms[index + 1] in {"de", "of"} and norms[index + 2] in MONTHS:
                resolved = self._day_month(tokens, day_index=index, month_index=index + 2, today=today)
                if resolved is not None:
                    return resolved[0], 3 + resolved[1]

        # "jan 15" / "january the 3rd"
        if token.norm in MONTHS:
            day_index = index + 1
            if day_index < len(tokens) and norms[day_index] == "the":
                day_index += 1
            if (
                day_index < len(tokens)
                and tokens[day_index].kind == "number"
                and not self._has_currency_neighbor(tokens, day_index)
            ):
                resolved = self._day_month(tokens, day_index=day_index, month_index=index, today=today)
                if resolved is not None:
                    return resolved[0], day_index - index + 1 + resolved[1]

        # "15 january", unless the month reads as "january 20" with the next number
        if token.kind == "number" and index + 1 < len(tokens) and norms[index + 1] in MONTHS:
            if not self._has_currency_neighbor(tokens, index) and not self._looks_like_day(tokens, index + 2):
                resolved = self._day_month(tokens, day_index=index, month_index=index + 1, today=today)
                if resolved is not None:
                    return resolved[0], 2 + resolved[1]

        return None

    def _day_month(
        self, tokens: Sequence[Token], *, day_index: int, month_index: int, today: date
    ) -> tuple[date, int] | None:
        """Resolve a day/month pair plus an optional trailing year; returns (date, extra tokens)."""
        day = _small_int(tokens[day_index].text)
        month = MONTHS[tokens[month_index].norm]
        if day is None or not 1 <= day <= 31:
            return None

        year_index = max(day_index, month_index) + 1
        extra = 0
        if year_index < len(tokens) and tokens[year_index].norm == "de":
            year_index += 1
            extra = 1
        year: int | None = None
        if (
            year_index < len(tokens)
            and tokens[year_index].kind == "number"
            and not self._has_currency_neighbor(tokens, year_index)
        ):
            candidate = _small_int(tokens[year_index].text)
            if candidate is not None and 1900 <= candidate <= 2100:
                year = candidate
                extra += 1
        if year is None:
            extra = 0

        try:
            if year is not None:
                return date(year, month, day), extra
            resolved = date(today.year, month, day)
            if resolved > today:
                resolved = date(today.year - 1, month, day)
            return resolved, extra
        except ValueError:
            return None

    def _looks_like_day(self, tokens: Sequence[Token], index: int) -> bool:
        if index >= len(tokens) or tokens[index].kind != "number":
            return False
        if self._has_currency_neighbor(tokens, index):
            return False
        day = _small_int(tokens[index].text)
        return day is not None and 1 <= day <= 31

    @staticmethod
    def _has_currency_neighbor(tokens: Sequence[Token], index: int) -> bool:
        previous = tokens[index - 1] if index > 0 else None
        following = tokens[index + 1] if index + 1 < len(tokens) else None
        if previous is not None and (previous.kind == "symbol" or previous.norm in CURRENCY_WORDS):
            return True
        return following is not None and following.norm in CURRENCY_WORDS

    @staticmethod
    def _residual_note(tokens: Sequence[Token], blocked: set[int]) -> str | None:
        words = [
            token.text
            for index, token in enumerate(tokens)
            if index not in blocked and token.kind == "word" and token.norm not in FILLER_WORDS
        ]
        note = " ".join(words).strip()
        return note or None


def _distinct(candidates: Iterable[AmountCandidate]) -> list[AmountCandidate]:
    seen: dict[tuple[Decimal, str], AmountCandidate] = {}
    for candidate in candidates:
        seen.setdefault((candidate.amount, candidate.currency), candidate)
    return list(seen.values())


def _span_indices(matches: Iterable[TaxonomyMatch]) -> set[int]:
    indices: set[int] = set()
    for match in matches:
        indices.update(range(match.start, match.end))
    return indices


def _is_cued(norms: Sequence[str], start: int, cues: frozenset[str]) -> bool:
    position = start - 1
    while position >= 0 and norms[position] in DETERMINERS:
        position -= 1
    return position >= 0 and norms[position] in cues


def _previous_weekday(today: date, weekday: int, *, strictly_before: bool) -> date:
    delta = (today.weekday() - weekday) % 7
    if delta == 0 and strictly_before:
        delta = 7
    return today - timedelta(days=delta)


def _small_int(raw: str) -> int | None:
    return int(raw) if raw.isdigit() else None


def _score(partial: PartialTransaction, explicit_currency: bool) -> float:
    score = 0.0
    if partial.amount is not None:
        score += SLOT_WEIGHTS["amount"]
        if explicit_currency:
            score += SLOT_WEIGHTS["currency"]
    if partial.category is not None:
        score += SLOT_WEIGHTS["category"]
    if partial.payment_method is not None:
        score += SLOT_WEIGHTS["payment_method"]
    if partial.occurred_at is not None:
        score += SLOT_WEIGHTS["occurred_at"]
    return round(score, 2)


DEFAULT_PARSER = UtteranceParser()


def parse_utterance(utterance: str | None, now: datetime | None = None) -> ParseResult:
    """Parse with the default taxonomies, MXN and UTC."""
    return DEFAULT_PARSER.parse(utterance, now)
