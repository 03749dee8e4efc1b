"""Tests for clarification question selection, UI descriptors and answer text."""

from datetime import date, datetime, timezone
from decimal import Decimal

from answer_formatter import describe_day, format_breakdown, format_confirmation, format_money, format_total
from query_engine import AggregateBucket
from question_generator import build_question, select_next_slot
from taxonomy import CategoryKey, PaymentMethodKey
from transaction_model import PartialTransaction, Transaction
from ui_schema_builder import build_date_input, build_dropdown, build_number_input
from utterance_parser import AmountCandidate

TODAY = date(2026, 10, 19)

# =============================================================================
# Slot priority
# =============================================================================


class TestSelectNextSlot:
    def test_amount_before_category(self):
        assert select_next_slot(["category", "amount"], [], PartialTransaction()) == "amount"

    def test_missing_before_ambiguous(self):
        assert select_next_slot(["category"], ["amount"], PartialTransaction()) == "category"

    def test_first_ambiguous_slot(self):
        assert select_next_slot([], ["category", "amount"], PartialTransaction()) == "category"

    def test_optional_slots_only_when_configured(self):
        partial = PartialTransaction(amount=Decimal("10"), category=CategoryKey.HEALTH)

        assert select_next_slot([], [], partial) is None
        assert select_next_slot([], [], partial, ("occurred_at",)) == "occurred_at"
        assert select_next_slot([], [], partial, ("occurred_at", "payment_method")) == "payment_method"

    def test_filled_optional_slot_is_skipped(self):
        partial = PartialTransaction(payment_method=PaymentMethodKey.CASH)

        assert select_next_slot([], [], partial, ("payment_method",)) is None


# =============================================================================
# Question text and components
# =============================================================================


class TestBuildQuestion:
    def test_amount_question_names_category(self):
        spec = build_question("amount", PartialTransaction(category=CategoryKey.GROCERIES))

        assert spec.prompt == "How much did you spend on Groceries?"
        assert spec.components[0]["constraints"]["unit"] == "MXN"
        assert spec.options == []

    def test_generic_amount_question(self):
        assert build_question("amount", PartialTransaction()).prompt == "How much did you spend?"

    def test_category_question_lists_every_category(self):
        spec = build_question("category", PartialTransaction())

        assert spec.prompt.startswith("What category should I file this under? (Food & Dining, Groceries")
        assert spec.options[0] == CategoryKey.FOOD_DINING
        assert len(spec.components[0]["options"]) == len(spec.options)

    def test_payment_question_hides_unspecified(self):
        spec = build_question("payment_method", PartialTransaction())

        assert PaymentMethodKey.UNSPECIFIED not in spec.options

    def test_choice_question_is_numbered(self):
        spec = build_question(
            "amount",
            PartialTransaction(),
            candidates=[AmountCandidate(Decimal("80"), "MXN"), AmountCandidate(Decimal("120"), "MXN")],
        )

        assert spec.prompt.endswith("1) $80.00 MXN 2) $120.00 MXN")
        assert spec.question_id == "question_amount_choice"
        assert spec.components[0]["options"][1] == {"value": "120", "label": "$120.00 MXN"}

    def test_date_question_caps_at_today(self):
        spec = build_question("occurred_at", PartialTransaction(), today=TODAY)

        assert spec.components[0]["component"] == "date_input"
        assert spec.components[0]["constraints"] == {"maximum": "2026-10-19"}


class TestUiSchemaBuilder:
    def test_number_input(self):
        component = build_number_input("amount", "Amount", min_value=0.01, unit="MXN", binding="transaction.amount")

        assert component == {
            "field_id": "amount",
            "component": "number_input",
            "label": "Amount",
            "constraints": {"minimum": 0.01, "unit": "MXN"},
            "binding": "transaction.amount",
        }

    def test_dropdown_copies_options(self):
        options = [{"value": "cash", "label": "Cash"}]

        component = build_dropdown("payment_method", "Paid with", options, default="cash")
        options[0]["label"] = "changed"

        assert component["options"] == [{"value": "cash", "label": "Cash"}]
        assert component["constraints"] == {"default": "cash"}
        assert "binding" not in component

    def test_date_input_without_constraints(self):
        assert build_date_input("occurred_at", "Date") == {
            "field_id": "occurred_at",
            "component": "date_input",
            "label": "Date",
        }


# =============================================================================
# Answer formatting
# =============================================================================


class TestAnswerFormatter:
    def test_money(self):
        assert format_money(Decimal("1200"), "MXN") == "$1,200.00 MXN"
        assert format_money(Decimal("5.5"), "EUR") == "€5.50 EUR"
        assert format_money(Decimal("7"), "JPY") == "7.00 JPY"

    def test_describe_day(self):
        assert describe_day(TODAY, TODAY) == "Today"
        assert describe_day(date(2026, 10, 18), TODAY) == "Yesterday"
        assert describe_day(date(2026, 10, 5), TODAY) == "Oct 5, 2026"

    def test_confirmation_skips_unspecified_payment(self):
        transaction = Transaction(
            id="t1",
            amount=Decimal("120.00"),
            currency="MXN",
            category=CategoryKey.FOOD_DINING,
            payment_method=PaymentMethodKey.UNSPECIFIED,
            occurred_at=date(2026, 10, 18),
            created_at=datetime(2026, 10, 19, tzinfo=timezone.utc),
            note="tacos al pastor",
        )

        message = format_confirmation(transaction, TODAY)

        assert message.splitlines() == [
            "Got it! I've recorded your expense:",
            "",
            "**Food & Dining** - $120.00 MXN",
            "Yesterday",
            "Note: tacos al pastor",
            "",
            "Would you like to add any notes or categorize it differently?",
        ]

    def test_breakdown_names_biggest_category(self):
        buckets = [
            AggregateBucket(CategoryKey.GROCERIES, "Groceries", Decimal("300.00"), 2, Decimal("75.0")),
            AggregateBucket(CategoryKey.HEALTH, "Health", Decimal("100.00"), 1, Decimal("25.0")),
        ]

        message = format_breakdown(buckets, "this week", "MXN")

        assert "**Groceries** - $300.00 MXN (75.0%)" in message
        assert message.endswith("Groceries is your biggest category.")

    def test_total_for_category(self):
        assert (
            format_total(Decimal("99.00"), "this month", "MXN", CategoryKey.HEALTH)
            == "You've spent $99.00 MXN on Health this month."
        )
        assert format_total(Decimal("0"), "today", "MXN") == "You haven't spent anything today."
