"""
Static category and payment-method registries with synonym lookup.

Keys are closed enumerations; synonyms live in a separate lookup table keyed by
normalized token tuples so resolution is whole-token ("cash" never matches
inside "cashier") and longest-synonym-first ("gas bill" beats "gas").
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Generic, Literal, TypeVar

from errors import TaxonomyError

TaxonomyKind = Literal["category", "payment_method"]

_WORD_RE = re.compile(r"[^\W_]+")


class CategoryKey(str, Enum):
    FOOD_DINING = "food_dining"
    GROCERIES = "groceries"
    TRANSPORTATION = "transportation"
    ENTERTAINMENT = "entertainment"
    SHOPPING = "shopping"
    UTILITIES = "utilities"
    HOUSING = "housing"
    HEALTH = "health"


class PaymentMethodKey(str, Enum):
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    UNSPECIFIED = "unspecified"


KeyT = TypeVar("KeyT", CategoryKey, PaymentMethodKey)


def normalize_text(raw: str | None) -> str:
    """Casefold, strip diacritics and collapse whitespace."""
    if not raw:
        return ""
    decomposed = unicodedata.normalize("NFKD", str(raw))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return " ".join(stripped.split()).casefold()


def tokenize(raw: str | None) -> list[str]:
    return _WORD_RE.findall(normalize_text(raw))


@dataclass(frozen=True)
class TaxonomyEntry(Generic[KeyT]):
    key: KeyT
    display_name: str
    synonyms: frozenset[str]


@dataclass(frozen=True)
class TaxonomyMatch(Generic[KeyT]):
    """A synonym found in a token stream; `end` is exclusive."""

    key: KeyT
    start: int
    end: int
    synonym: str


class Taxonomy(Generic[KeyT]):
    """Registry of entries for one taxonomy kind."""

    def __init__(self, kind: TaxonomyKind, entries: Sequence[TaxonomyEntry[KeyT]]):
        self.kind = kind
        self._entries: dict[KeyT, TaxonomyEntry[KeyT]] = {}
        self._lookup: dict[tuple[str, ...], KeyT] = {}
        self._exact: dict[str, KeyT] = {}

        for entry in entries:
            if entry.key in self._entries:
                raise TaxonomyError(f"Duplicate {kind} key '{entry.key.value}'")
            self._entries[entry.key] = entry
            for synonym in entry.synonyms:
                tokens = tuple(tokenize(synonym))
                if not tokens:
                    continue
                owner = self._lookup.get(tokens)
                if owner is not None and owner != entry.key:
                    raise TaxonomyError(
                        f"Synonym '{synonym}' is shared by {kind} keys '{owner.value}' and '{entry.key.value}'"
                    )
                self._lookup[tokens] = entry.key

        for entry in self._entries.values():
            for label in (entry.key.value, entry.display_name, *entry.synonyms):
                self._exact.setdefault(" ".join(tokenize(label.replace("_", " "))), entry.key)

        self._max_span = max((len(tokens) for tokens in self._lookup), default=0)

    @property
    def entries(self) -> list[TaxonomyEntry[KeyT]]:
        return list(self._entries.values())

    def keys(self) -> list[KeyT]:
        return list(self._entries)

    def get(self, key: KeyT) -> TaxonomyEntry[KeyT]:
        return self._entries[key]

    def display_name(self, key: KeyT) -> str:
        return self._entries[key].display_name

    def coerce_key(self, value: object) -> KeyT | None:
        """Map an enum member or its string value to a registered key."""
        if isinstance(value, Enum):
            value = value.value
        if not isinstance(value, str):
            return None
        candidate = value.strip().lower()
        for key in self._entries:
            if key.value == candidate:
                return key
        return None

    def find_matches(self, tokens: Sequence[str], skip: Iterable[int] = ()) -> list[TaxonomyMatch[KeyT]]:
        """
        Scan normalized tokens left to right, preferring the longest synonym at
        each position. Indices in `skip` (already consumed by another slot)
        never take part in a match.
        """

        blocked = set(skip)
        matches: list[TaxonomyMatch[KeyT]] = []
        index = 0
        while index < len(tokens):
            matched = False
            for span in range(min(self._max_span, len(tokens) - index), 0, -1):
                window = range(index, index + span)
                if any(position in blocked for position in window):
                    continue
                key = self._lookup.get(tuple(tokens[index : index + span]))
                if key is None:
                    continue
                matches.append(
                    TaxonomyMatch(key=key, start=index, end=index + span, synonym=" ".join(tokens[index : index + span]))
                )
                index += span
                matched = True
                break
            if not matched:
                index += 1
        return matches

    def resolve(self, token: str | None) -> KeyT | None:
        """Resolve free text to a single key; None when unknown or contradictory."""
        distinct = {match.key for match in self.find_matches(tokenize(token))}
        if len(distinct) == 1:
            return distinct.pop()
        return None

    def resolve_exact(self, text: str | None) -> KeyT | None:
        """Resolve a bare reply that is exactly a synonym, display name or key."""
        return self._exact.get(" ".join(tokenize(text)))


def _entry(key: KeyT, display_name: str, *synonyms: str) -> TaxonomyEntry[KeyT]:
    return TaxonomyEntry(key=key, display_name=display_name, synonyms=frozenset(synonyms))


CATEGORIES: Taxonomy[CategoryKey] = Taxonomy(
    "category",
    [
        _entry(
            CategoryKey.FOOD_DINING,
            "Food & Dining",
            "food", "dining", "food and dining", "restaurant", "restaurants", "dinner", "lunch",
            "breakfast", "brunch", "coffee", "cafe", "pizza", "tacos", "burger", "burgers", "takeout",
            "take out", "eating out", "meal", "meals", "snack", "snacks", "comida", "restaurante",
        ),
        _entry(
            CategoryKey.GROCERIES,
            "Groceries",
            "groceries", "grocery", "grocery store", "supermarket", "vegetables", "produce",
            "despensa", "mandado",
        ),
        _entry(
            CategoryKey.TRANSPORTATION,
            "Transportation",
            "gas", "gasoline", "fuel", "gas station", "uber", "taxi", "cab", "bus", "metro",
            "subway", "train", "parking", "toll", "tolls", "transport", "transportation",
            "gasolina", "estacionamiento", "camion",
        ),
        _entry(
            CategoryKey.ENTERTAINMENT,
            "Entertainment",
            "entertainment", "movie", "movies", "cinema", "concert", "concerts", "concert tickets",
            "netflix", "spotify", "video games", "games", "streaming", "cine",
        ),
        _entry(
            CategoryKey.SHOPPING,
            "Shopping",
            "shopping", "clothes", "clothing", "shoes", "headphones", "electronics", "amazon",
            "gift", "gifts", "mall", "ropa",
        ),
        _entry(
            CategoryKey.UTILITIES,
            "Utilities",
            "utilities", "utility", "electricity", "electric bill", "light bill", "water bill",
            "gas bill", "internet", "internet bill", "phone bill", "cell phone", "luz", "agua",
        ),
        _entry(
            CategoryKey.HOUSING,
            "Housing",
            "rent", "mortgage", "housing", "renta", "hoa",
        ),
        _entry(
            CategoryKey.HEALTH,
            "Health",
            "health", "pharmacy", "medicine", "doctor", "dentist", "medical", "gym", "farmacia",
        ),
    ],
)

PAYMENT_METHODS: Taxonomy[PaymentMethodKey] = Taxonomy(
    "payment_method",
    [
        _entry(
            PaymentMethodKey.CREDIT_CARD,
            "Credit Card",
            "credit card", "credit", "visa", "mastercard", "amex", "tarjeta de credito",
        ),
        _entry(
            PaymentMethodKey.DEBIT_CARD,
            "Debit Card",
            "debit card", "debit", "tarjeta de debito",
        ),
        _entry(
            PaymentMethodKey.CASH,
            "Cash",
            "cash", "efectivo",
        ),
        _entry(
            PaymentMethodKey.BANK_TRANSFER,
            "Bank Transfer",
            "bank transfer", "transfer", "wire", "wire transfer", "spei", "transferencia",
        ),
        _entry(PaymentMethodKey.UNSPECIFIED, "Not specified"),
    ],
)


def get_taxonomy(kind: TaxonomyKind) -> Taxonomy:
    if kind == "category":
        return CATEGORIES
    if kind == "payment_method":
        return PAYMENT_METHODS
    raise ValueError(f"Unknown taxonomy kind '{kind}'")


def resolve(token: str | None, kind: TaxonomyKind) -> CategoryKey | PaymentMethodKey | None:
    """Resolve free text against the default registry of `kind`."""
    return get_taxonomy(kind).resolve(token)
