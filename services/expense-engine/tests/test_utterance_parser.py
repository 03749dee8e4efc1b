"""Tests for utterance_parser.py - slot extraction from free-text expense reports."""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from taxonomy import CategoryKey, PaymentMethodKey
from utterance_parser import AmountCandidate, UtteranceParser, parse_number, parse_utterance

NOW = datetime(2026, 10, 19, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def parser() -> UtteranceParser:
    return UtteranceParser(reporting_currency="MXN")


# =============================================================================
# Complete utterances
# =============================================================================


class TestCompleteUtterances:
    def test_canonical_example_resolves_every_slot(self, parser):
        result = parser.parse("I spent 250 pesos on gas with my credit card", NOW)

        assert result.is_complete
        assert result.partial.amount == Decimal("250")
        assert result.partial.currency == "MXN"
        assert result.partial.category == CategoryKey.TRANSPORTATION
        assert result.partial.payment_method == PaymentMethodKey.CREDIT_CARD
        assert result.partial.note is None
        assert result.explicit_currency is True
        assert result.confidence == pytest.approx(0.95)

    def test_bare_number_uses_reporting_currency(self, parser):
        result = parser.parse("lunch 120", NOW)

        assert result.partial.amount == Decimal("120")
        assert result.partial.currency == "MXN"
        assert result.explicit_currency is False
        assert result.partial.category == CategoryKey.FOOD_DINING
        assert result.missing_slots == []

    def test_dollar_sign_is_reporting_currency(self):
        parser = UtteranceParser(reporting_currency="USD")

        result = parser.parse("$18.50 for pizza", NOW)

        assert result.partial.amount == Decimal("18.50")
        assert result.partial.currency == "USD"

    def test_currency_word_overrides_symbol(self, parser):
        result = parser.parse("$40 usd on netflix", NOW)

        assert result.partial.currency == "USD"
        assert result.partial.category == CategoryKey.ENTERTAINMENT

    def test_longest_synonym_beats_shorter(self, parser):
        result = parser.parse("paid the gas bill 80 dollars by bank transfer", NOW)

        assert result.partial.category == CategoryKey.UTILITIES
        assert result.partial.currency == "USD"
        assert result.partial.payment_method == PaymentMethodKey.BANK_TRANSFER

    def test_residual_words_become_note(self, parser):
        result = parser.parse("spent 300 on groceries at Walmart", NOW)

        assert result.partial.category == CategoryKey.GROCERIES
        assert result.partial.note == "Walmart"

    def test_spanish_utterance(self, parser):
        result = parser.parse("gasté 500 pesos en despensa con tarjeta de débito", NOW)

        assert result.partial.amount == Decimal("500")
        assert result.partial.category == CategoryKey.GROCERIES
        assert result.partial.payment_method == PaymentMethodKey.DEBIT_CARD

    def test_payment_method_never_guessed(self, parser):
        result = parser.parse("coffee 45", NOW)

        assert result.partial.payment_method is None
        assert "payment_method" not in result.missing_slots

    def test_cash_does_not_match_cashier(self, parser):
        result = parser.parse("gave 50 to the cashier for lunch", NOW)

        assert result.partial.payment_method is None
        assert result.partial.category == CategoryKey.FOOD_DINING


# =============================================================================
# Missing and ambiguous slots
# =============================================================================


class TestGaps:
    def test_no_amount_no_category(self, parser):
        result = parser.parse("I spent money on stuff", NOW)

        assert result.missing_slots == ["amount", "category"]
        assert result.ambiguous_slots == []
        assert result.partial.note == "stuff"
        assert result.confidence == pytest.approx(0.0)

    def test_two_amounts_with_currency_are_ambiguous(self, parser):
        result = parser.parse("I spent $200 and $300 on dinner", NOW)

        assert result.ambiguous_slots == ["amount"]
        assert "amount" not in result.missing_slots
        assert result.candidates["amount"] == [
            AmountCandidate(Decimal("200"), "MXN", explicit_currency=True),
            AmountCandidate(Decimal("300"), "MXN", explicit_currency=True),
        ]
        assert result.partial.amount is None

    def test_currency_context_beats_bare_numbers(self, parser):
        result = parser.parse("2 tacos for 90 pesos", NOW)

        assert result.partial.amount == Decimal("90")
        assert result.ambiguous_slots == []

    def test_two_bare_numbers_are_ambiguous(self, parser):
        result = parser.parse("uber 80 120", NOW)

        assert result.ambiguous_slots == ["amount"]

    def test_two_categories_without_cue_are_ambiguous(self, parser):
        result = parser.parse("movie and pizza 300", NOW)

        assert result.ambiguous_slots == ["category"]
        assert result.candidates["category"] == [CategoryKey.ENTERTAINMENT, CategoryKey.FOOD_DINING]
        assert result.missing_slots == []

    def test_cue_word_disambiguates_category(self, parser):
        result = parser.parse("300 on pizza after the movie", NOW)

        assert result.partial.category == CategoryKey.FOOD_DINING
        assert result.ambiguous_slots == []

    def test_ambiguous_slots_in_encounter_order(self, parser):
        result = parser.parse("movie and pizza 80 120", NOW)

        assert result.ambiguous_slots == ["category", "amount"]

    @pytest.mark.parametrize("text", ["", "   ", None, "$$$ ,,, 12.34.56", "€", "-"])
    def test_malformed_input_never_raises(self, parser, text):
        result = parser.parse(text, NOW)

        assert "amount" in result.missing_slots or "amount" in result.ambiguous_slots or result.partial.amount


# =============================================================================
# Dates
# =============================================================================


class TestDates:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("yesterday I spent 100 on lunch", date(2026, 10, 18)),
            ("day before yesterday uber 80", date(2026, 10, 17)),
            ("3 days ago spent 50 on coffee", date(2026, 10, 16)),
            ("hace 2 dias gaste 90 en comida", date(2026, 10, 17)),
            ("last friday 200 on dinner", date(2026, 10, 16)),
            ("monday 60 on coffee", date(2026, 10, 19)),
            ("last monday 60 on coffee", date(2026, 10, 12)),
            ("el lunes pasado 60 en comida", date(2026, 10, 12)),
            ("15 de enero 400 en despensa", date(2026, 1, 15)),
            ("jan 3rd 75 on tacos", date(2026, 1, 3)),
            ("the 3rd of march 75 on tacos", date(2026, 3, 3)),
        ],
    )
    def test_recognized_phrases(self, parser, text, expected):
        result = parser.parse(text, NOW)

        assert result.partial.occurred_at == expected

    def test_day_numbers_are_not_amounts(self, parser):
        result = parser.parse("spent 40 on tacos on 20 december", NOW)

        assert result.partial.amount == Decimal("40")
        assert result.ambiguous_slots == []

    def test_future_day_month_rolls_back_a_year(self, parser):
        result = parser.parse("spent 40 on tacos on 20 december", NOW)

        assert result.partial.occurred_at == date(2025, 12, 20)

    def test_explicit_year(self, parser):
        result = parser.parse("15 january 2025 rent 9000", NOW)

        assert result.partial.occurred_at == date(2025, 1, 15)
        assert result.partial.amount == Decimal("9000")

    def test_month_followed_by_day_prefers_day(self, parser):
        """'20 jan 15' reads as an amount of 20 on January 15."""
        result = parser.parse("20 jan 15 on lunch", NOW)

        assert result.partial.occurred_at == date(2026, 1, 15)
        assert result.partial.amount == Decimal("20")

    def test_no_date_leaves_slot_unset(self, parser):
        result = parser.parse("coffee 45", NOW)

        assert result.partial.occurred_at is None

    def test_today_uses_reporting_timezone(self):
        parser = UtteranceParser(zone=timezone.utc)
        late_night = datetime(2026, 10, 20, 1, 30, tzinfo=timezone.utc)

        result = parser.parse("today 40 on coffee", late_night)

        assert result.partial.occurred_at == date(2026, 10, 20)

    def test_iso_date_is_a_date_not_amounts(self, parser):
        result = parser.parse("I spent 80 on coffee on 2026-10-18", NOW)

        assert result.partial.occurred_at == date(2026, 10, 18)
        assert result.partial.amount == Decimal("80")
        assert result.ambiguous_slots == []

    def test_hyphenated_numbers_never_turn_negative(self, parser):
        result = parser.parse("uber 20-30", NOW)

        assert result.ambiguous_slots == ["amount"]
        assert [candidate.amount for candidate in result.candidates["amount"]] == [Decimal("20"), Decimal("30")]

    def test_invalid_iso_date_is_ignored(self, parser):
        result = parser.parse("coffee 45 on 2026-13-45", NOW)

        assert result.partial.occurred_at is None
        assert result.partial.amount == Decimal("45")


# =============================================================================
# Numbers and fast-path helpers
# =============================================================================


class TestNumbers:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("250", Decimal("250")),
            ("1,200", Decimal("1200")),
            ("1,200.50", Decimal("1200.50")),
            ("1.200,50", Decimal("1200.50")),
            ("250,5", Decimal("250.5")),
            ("1.234.567", Decimal("1234567")),
            ("1.500", Decimal("1500")),
            ("-40", Decimal("-40")),
        ],
    )
    def test_parse_number(self, raw, expected):
        assert parse_number(raw) == expected

    def test_parse_number_rejects_garbage(self):
        assert parse_number("12.34.56") is None
        assert parse_number("1,2,3") is None

    def test_dot_thousands_in_sentence(self, parser):
        result = parser.parse("gasté 1.500 pesos en renta", NOW)

        assert result.partial.amount == Decimal("1500")
        assert result.partial.category == CategoryKey.HOUSING

    def test_amount_reply_accepts_bare_values(self, parser):
        assert parser.parse_amount_reply("250").amount == Decimal("250")
        assert parser.parse_amount_reply("it was 99.90 pesos").explicit_currency is True

    def test_amount_reply_rejects_sentences(self, parser):
        assert parser.parse_amount_reply("250 on groceries") is None
        assert parser.parse_amount_reply("no idea") is None

    def test_date_reply(self, parser):
        assert parser.parse_date_reply("yesterday", NOW) == date(2026, 10, 18)
        assert parser.parse_date_reply("on friday", NOW) == date(2026, 10, 16)
        assert parser.parse_date_reply("yesterday at the mall", NOW) is None


def test_module_level_parse_uses_defaults():
    result = parse_utterance("I spent 250 pesos on gas with my credit card", NOW)

    assert result.partial.category == CategoryKey.TRANSPORTATION
