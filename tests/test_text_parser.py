"""Tests for the invoice text heuristics."""

from decimal import Decimal

import pytest

from invoice_reconciler.extractors.text_parser import (
    TextParser,
    fold_accents,
    parse_amount_token,
)


@pytest.fixture
def parser():
    return TextParser()


class TestAmountTokens:
    """Tests for number parsing in both conventions."""

    @pytest.mark.parametrize(
        "token,expected",
        [
            ("123,45", Decimal("123.45")),
            ("123.45", Decimal("123.45")),
            ("1 234,56", Decimal("1234.56")),
            ("1.234,56", Decimal("1234.56")),
            ("1,234.56", Decimal("1234.56")),
            ("1\u202f234,56", Decimal("1234.56")),
        ],
    )
    def test_parse_amount_token(self, token, expected):
        assert parse_amount_token(token) == expected

    def test_single_decimal_rejected(self):
        assert parse_amount_token("12.5") is None

    def test_fold_accents(self):
        assert fold_accents("février août décembre") == "fevrier aout decembre"


class TestFrenchInvoice:
    """Full parse of a French invoice."""

    def test_fields(self, parser, sample_invoice_fr):
        fields = parser.parse(sample_invoice_fr)

        assert fields.vendor == "Acme Fournitures"
        assert fields.amount == Decimal("123.45")
        assert fields.date == "2026-03-12"
        assert fields.invoice_number == "FA-2026-0042"
        assert fields.tax_rate == Decimal("20")
        assert fields.tax_amount == Decimal("20.57")


class TestEnglishInvoice:
    """Full parse of an English invoice."""

    def test_fields(self, parser, sample_invoice_en):
        fields = parser.parse(sample_invoice_en)

        assert fields.vendor == "Globex Corporation"
        assert fields.amount == Decimal("1200.00")
        assert fields.date == "2026-01-05"
        assert fields.invoice_number == "INV-10234"
        assert fields.tax_rate == Decimal("20")
        assert fields.tax_amount == Decimal("200.00")


class TestDates:
    """Date recognition order and formats."""

    def test_numeric_slash(self, parser):
        assert parser.parse("Date: 18/11/2024").date == "2024-11-18"

    def test_numeric_dot(self, parser):
        assert parser.parse("Datum 18.11.2024").date == "2024-11-18"

    def test_english_month(self, parser):
        assert parser.parse("Due March 12, 2026").date == "2026-03-12"

    def test_french_month_with_accent(self, parser):
        assert parser.parse("Paris, le 15 février 2026").date == "2026-02-15"

    def test_french_month_uppercase(self, parser):
        assert parser.parse("15 FÉVRIER 2026").date == "2026-02-15"

    def test_french_first_of_month(self, parser):
        assert parser.parse("le 1er août 2026").date == "2026-08-01"

    def test_iso(self, parser):
        assert parser.parse("issued 2026-03-12").date == "2026-03-12"

    def test_numeric_wins_over_iso(self, parser):
        text = "Created 2026-01-01\nInvoice date 05/02/2026"
        assert parser.parse(text).date == "2026-02-05"

    def test_invalid_date_skipped(self, parser):
        text = "Ref 31/02/2026\nIssued 2026-03-01"
        assert parser.parse(text).date == "2026-03-01"

    def test_no_date(self, parser):
        assert parser.parse("nothing to see here").date is None


class TestAmounts:
    """Amount label priority and bounds."""

    def test_net_payable_beats_generic_total(self, parser):
        text = "Total : 50,00\nNet à payer : 45,00"
        assert parser.parse(text).amount == Decimal("45.00")

    def test_amount_due_beats_everything(self, parser):
        text = "Total: 80.00\nNet a payer 75.00\nAmount due: 70.00"
        assert parser.parse(text).amount == Decimal("70.00")

    def test_subtotal_ignored(self, parser):
        text = "Sous-total : 80,00\nTotal : 96,00"
        assert parser.parse(text).amount == Decimal("96.00")

    def test_total_tva_line_not_taken_for_total(self, parser):
        text = (
            "Acme Fournitures\nDate : 12/03/2026\n"
            "Total HT 100,00 €\nTotal TVA 20,00 €\nTotal 120,00 €\n"
        )
        fields = parser.parse(text)
        assert fields.amount == Decimal("120.00")
        assert fields.tax_amount == Decimal("20.00")

    def test_total_tax_line_not_taken_for_total(self, parser):
        text = "Globex\nSubtotal 25.00\nTotal tax 5.00\nTotal 30.00\n"
        assert parser.parse(text).amount == Decimal("30.00")

    @pytest.mark.parametrize(
        "line",
        ["Total hors taxes : 80,00", "Total excl. VAT: 80.00", "Total net 80,00"],
    )
    def test_qualified_totals_skip_generic_rule(self, parser, line):
        assert parser.parse(f"{line}\nTotal : 96,00").amount == Decimal("96.00")

    def test_only_net_total_is_used_as_fallback(self, parser):
        assert parser.parse("Total HT : 80,00\nTVA 20 % : 16,00").amount == Decimal("80.00")

    def test_german_total(self, parser):
        text = "Summe\nGesamtbetrag EUR 11,48"
        assert parser.parse(text).amount == Decimal("11.48")

    def test_currency_prefix(self, parser):
        assert parser.parse("Paid $30.00 today").amount == Decimal("30.00")

    def test_currency_suffix(self, parser):
        assert parser.parse("Price 21.60 EUR").amount == Decimal("21.60")

    def test_thousands_grouping(self, parser):
        assert parser.parse("Total TTC : 1 234,56 €").amount == Decimal("1234.56")

    def test_astronomical_amount_rejected(self, parser):
        assert parser.parse("Total: 2 500 000,00").amount is None

    def test_zero_amount_rejected(self, parser):
        assert parser.parse("Total: 0,00").amount is None


class TestVendorAndNumber:
    """Vendor guess and invoice number."""

    def test_vendor_skips_structural_lines(self, parser):
        text = "FACTURE\n2026\nAcme SARL\nTotal 10,00"
        assert parser.parse(text).vendor == "Acme SARL"

    def test_vendor_skips_long_lines(self, parser):
        text = "x" * 70 + "\nShort Name Ltd"
        assert parser.parse(text).vendor == "Short Name Ltd"

    def test_prefixed_invoice_number(self, parser):
        assert parser.parse("Ref: FACT-00123").invoice_number == "FACT-00123"

    def test_tax_without_rate(self, parser):
        fields = parser.parse("TVA : 4,00\nTotal TTC : 24,00")
        assert fields.tax_rate is None
        assert fields.tax_amount == Decimal("4.00")


class TestEmptyInput:
    """Unparsable text yields an empty result, never an error."""

    @pytest.mark.parametrize("text", [None, "", "   \n  \n"])
    def test_empty(self, parser, text):
        assert parser.parse(text).is_empty()
