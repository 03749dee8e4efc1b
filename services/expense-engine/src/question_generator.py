from __future__ import annotations

"""Deterministic clarification question selection for pending expense captures."""

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from answer_formatter import format_money
from taxonomy import CATEGORIES, PAYMENT_METHODS, PaymentMethodKey, Taxonomy
from transaction_model import OPTIONAL_SLOTS, PartialTransaction, Slot
from ui_schema_builder import build_date_input, build_dropdown, build_number_input
from utterance_parser import AmountCandidate


@dataclass
class QuestionSpec:
    """Structured descriptor for a single clarification question."""

    question_id: str
    slot: Slot
    prompt: str
    components: list[dict[str, Any]]
    # Values a numbered reply ("2") maps to, in display order.
    options: list[Any] = field(default_factory=list)


def select_next_slot(
    missing_slots: Sequence[Slot],
    ambiguous_slots: Sequence[Slot],
    partial: PartialTransaction,
    prompt_optional_slots: Sequence[str] = (),
) -> Slot | None:
    """
    Pick the single slot to ask about next: missing amount, missing category,
    ambiguous slots in the order they appeared, then the optional slots the
    deployment wants asked.
    """

    for slot in ("amount", "category"):
        if slot in missing_slots:
            return slot
    if ambiguous_slots:
        return ambiguous_slots[0]
    for slot in OPTIONAL_SLOTS:
        if slot in prompt_optional_slots and not partial.has_value(slot):
            return slot
    return None


def build_question(
    slot: Slot,
    partial: PartialTransaction,
    *,
    candidates: Sequence[Any] = (),
    reporting_currency: str = "MXN",
    today: date | None = None,
    categories: Taxonomy = CATEGORIES,
    payment_methods: Taxonomy = PAYMENT_METHODS,
) -> QuestionSpec:
    if candidates:
        return _build_choice_question(slot, candidates, categories, payment_methods)
    if slot == "amount":
        return _build_amount_question(partial, reporting_currency, categories)
    if slot == "category":
        return _build_taxonomy_question(
            slot,
            categories,
            "What category should I file this under?",
            categories.keys(),
        )
    if slot == "payment_method":
        keys = [key for key in payment_methods.keys() if key != PaymentMethodKey.UNSPECIFIED]
        return _build_taxonomy_question(slot, payment_methods, "How did you pay for it?", keys)
    if slot == "occurred_at":
        return QuestionSpec(
            question_id="question_occurred_at",
            slot=slot,
            prompt="When was this? You can say today, yesterday, or a date like 15 january.",
            components=[
                build_date_input(
                    field_id="occurred_at",
                    label="Date",
                    max_value=today.isoformat() if today else None,
                    binding="transaction.occurred_at",
                )
            ],
        )
    raise ValueError(f"No question is defined for slot '{slot}'")


def _build_amount_question(
    partial: PartialTransaction, reporting_currency: str, categories: Taxonomy
) -> QuestionSpec:
    if partial.category is not None:
        prompt = f"How much did you spend on {categories.display_name(partial.category)}?"
    elif partial.note:
        prompt = f"How much did you spend on {partial.note}?"
    else:
        prompt = "How much did you spend?"
    return QuestionSpec(
        question_id="question_amount",
        slot="amount",
        prompt=prompt,
        components=[
            build_number_input(
                field_id="amount",
                label="Amount",
                min_value=0.01,
                unit=partial.currency or reporting_currency,
                step=0.01,
                binding="transaction.amount",
            )
        ],
    )


def _build_taxonomy_question(
    slot: Slot,
    registry: Taxonomy,
    prompt: str,
    keys: Sequence[Any],
) -> QuestionSpec:
    labels = [registry.display_name(key) for key in keys]
    return QuestionSpec(
        question_id=f"question_{slot}",
        slot=slot,
        prompt=f"{prompt} ({', '.join(labels)})",
        components=[
            build_dropdown(
                field_id=slot,
                label=prompt,
                options=[{"value": key.value, "label": label} for key, label in zip(keys, labels)],
                binding=f"transaction.{slot}",
            )
        ],
        options=list(keys),
    )


def _build_choice_question(
    slot: Slot,
    candidates: Sequence[Any],
    categories: Taxonomy,
    payment_methods: Taxonomy,
) -> QuestionSpec:
    labels = [_candidate_label(slot, candidate, categories, payment_methods) for candidate in candidates]
    numbered = " ".join(f"{index}) {label}" for index, label in enumerate(labels, start=1))
    if slot == "amount":
        prompt = f"I found more than one amount. Which one did you spend? {numbered}"
    elif slot == "occurred_at":
        prompt = f"I found more than one date. When did this happen? {numbered}"
    elif len(labels) == 2:
        prompt = f"Should this go under {labels[0]} or {labels[1]}?"
    else:
        prompt = f"Which one fits best? {numbered}"

    options = [
        {"value": _candidate_value(candidate), "label": label} for candidate, label in zip(candidates, labels)
    ]
    return QuestionSpec(
        question_id=f"question_{slot}_choice",
        slot=slot,
        prompt=prompt,
        components=[build_dropdown(field_id=slot, label=prompt, options=options, binding=f"transaction.{slot}")],
        options=list(candidates),
    )


def _candidate_label(slot: Slot, candidate: Any, categories: Taxonomy, payment_methods: Taxonomy) -> str:
    if isinstance(candidate, AmountCandidate):
        return format_money(candidate.amount, candidate.currency)
    if isinstance(candidate, date):
        return candidate.isoformat()
    if slot == "category":
        return categories.display_name(candidate)
    if slot == "payment_method":
        return payment_methods.display_name(candidate)
    return str(candidate)


def _candidate_value(candidate: Any) -> str:
    if isinstance(candidate, AmountCandidate):
        return str(candidate.amount)
    if isinstance(candidate, date):
        return candidate.isoformat()
    return getattr(candidate, "value", str(candidate))
