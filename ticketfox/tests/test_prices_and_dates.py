"""Tests for price, date, time and line-level field primitives."""

from datetime import date
from decimal import Decimal

from ticketfox.domain import PaymentMethod
from ticketfox.receipt.date_utils import detect_date_order, parse_date, parse_time
from ticketfox.receipt.ocr_parser import extract_payment_method, extract_quantity_and_unit, extract_store_address
from ticketfox.receipt.prices import detect_decimal_separator, extract_price_value, is_standalone_price, parse_price
from ticketfox.receipt.text_normalizer import contains_keyword, normalize_line, normalize_lines, split_text


def test_parse_price_accepts_spanish_and_english_styles() -> None:
    assert parse_price("12,50") == Decimal("12.50")
    assert parse_price("12.50") == Decimal("12.50")
    assert parse_price("€12,50") == Decimal("12.50")
    assert parse_price("12, 50") == Decimal("12.50")
    assert parse_price("2,70 A") == Decimal("2.70")
    assert parse_price("TOTAL 1.234,56", ",") == Decimal("1234.56")
    assert parse_price("no price here") is None
    assert parse_price("12") is None
    assert parse_price("12", allow_integer=True) == Decimal("12.00")


def test_standalone_price_allows_a_trailing_tax_letter() -> None:
    assert is_standalone_price("2,35")
    assert is_standalone_price("19,10 B")
    assert not is_standalone_price("PAN 2,35")


def test_extract_price_value_prefers_comma_decimals() -> None:
    assert extract_price_value("IMPORTE 1.204,30 EUR") == Decimal("1204.30")
    assert extract_price_value("TOTAL 15.99") == Decimal("15.99")
    assert extract_price_value("nada") is None


def test_decimal_separator_is_a_majority_vote() -> None:
    assert detect_decimal_separator("1,20 3,40 5.60") == ","
    assert detect_decimal_separator("1.20 3.40") == "."
    assert detect_decimal_separator("1,20 3.40") is None


def test_numeric_dates_resolve_structurally_before_hint() -> None:
    assert parse_date("15/03/2024").value == date(2024, 3, 15)
    assert parse_date("03/15/2024").value == date(2024, 3, 15)
    assert parse_date("03/04/2024").value == date(2024, 4, 3)
    assert parse_date("03/04/2024", hint="MDY").value == date(2024, 3, 4)
    assert parse_date("2024-03-15").value == date(2024, 3, 15)
    assert parse_date("15.03.24").value == date(2024, 3, 15)


def test_named_month_dates() -> None:
    assert parse_date("15 de marzo de 2024").value == date(2024, 3, 15)
    assert parse_date("15-MAR-2024").value == date(2024, 3, 15)
    assert parse_date("March 15, 2024").value == date(2024, 3, 15)
    assert parse_date("15 Mar 2024").value == date(2024, 3, 15)


def test_out_of_range_dates_are_rejected() -> None:
    assert parse_date("31/02/2024") is None
    assert parse_date("15/03/1999") is None


def test_date_order_from_structure_then_keywords() -> None:
    assert detect_date_order("2024/03/15") == "YMD"
    assert detect_date_order("15/03/2024") == "DMY"
    assert detect_date_order("03/15/2024") == "MDY"
    assert detect_date_order("01/02/2024 IVA €") == "DMY"
    assert detect_date_order("01/02/2024") is None


def test_parse_time_formats() -> None:
    assert parse_time("15/03/2024 10:42") == "10:42"
    assert parse_time("HORA 9:05:33") == "09:05"
    assert parse_time("14h30") == "14:30"
    assert parse_time("2:15 PM") == "14:15"
    assert parse_time("12:10 am") == "00:10"
    assert parse_time("sin hora") is None


def test_normalizer_fixes_ocr_confusions() -> None:
    assert normalize_line("  PAN   BARRA  O12,50 ") == "PAN BARRA 012,50"
    assert normalize_line("LECHE l2,50") == "LECHE 12,50"
    assert normalize_line("TOTAL 12 , 50") == "TOTAL 12,50"
    assert normalize_lines(["A", "  ", "", "B"]) == ["A", "B"]
    assert split_text("uno\n\n  dos  \n") == ["uno", "dos"]


def test_keywords_match_whole_words_only() -> None:
    assert not contains_keyword("ACEITE OLIVA 5,95", ("iva",))
    assert not contains_keyword("SUBTOTAL 7,95", ("total",))
    assert contains_keyword("IVA 21% 1,05", ("iva",))
    assert contains_keyword("IVA21% 1,05", ("iva",))
    assert contains_keyword("Total a pagar", ("TOTAL",))
    assert contains_keyword("visite www.frutas.es", ("www.",))
    assert not contains_keyword("PAN", ())


def test_payment_method_from_keywords_and_masked_cards() -> None:
    assert extract_payment_method("ENTREGADO EFECTIVO 10,00") == PaymentMethod.CASH
    assert extract_payment_method("TARJETA BANCARIA") == PaymentMethod.CARD
    assert extract_payment_method("PAGO BIZUM") == PaymentMethod.DIGITAL
    assert extract_payment_method("************1234") == PaymentMethod.CARD
    assert extract_payment_method("GRACIAS") is None


def test_store_address_from_street_patterns() -> None:
    lines = ["SUPERMERCADO", "C/ Mayor 12", "28013 Madrid"]
    assert extract_store_address(lines) == "C/ Mayor 12"


def test_quantity_and_weight_in_item_names() -> None:
    weighed = extract_quantity_and_unit("PLATANO 1,250 kg", Decimal("2.50"))
    assert weighed.name == "PLATANO"
    assert weighed.quantity == Decimal("1.250")
    assert weighed.unit == "kg"
    assert weighed.unit_price == Decimal("2.00")

    counted = extract_quantity_and_unit("2 x YOGUR", Decimal("1.80"))
    assert counted.name == "YOGUR"
    assert counted.quantity == Decimal("2")
    assert counted.unit == "each"
    assert counted.unit_price == Decimal("0.90")
