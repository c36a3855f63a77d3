from datetime import date
from decimal import Decimal

import pytest

from app.core.validation import (
    is_skip,
    normalize_email,
    normalize_phone,
    parse_color,
    parse_date,
    parse_optional_int,
    parse_positive_int,
    parse_price,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("912 345 678", "+351912345678"),
        ("+351 912-345-678", "+351912345678"),
        ("+44 20 7946 0958", "+442079460958"),
        ("12345", None),
        ("٩١٢٣٤٥٦٧٨", None),
        ("abc", None),
    ],
)
def test_normalize_phone(raw, expected):
    assert normalize_phone(raw) == expected


def test_normalize_email():
    assert normalize_email("  Ana@Box.PT ") == "ana@box.pt"
    assert normalize_email("ana@box") is None
    assert normalize_email("not an email") is None


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("69", Decimal("69.00")),
        ("69,5", Decimal("69.50")),
        ("79.90 €", Decimal("79.90")),
        ("0", Decimal("0.00")),
    ],
)
def test_parse_price(raw, expected):
    assert parse_price(raw) == expected


@pytest.mark.parametrize("raw", ["-1", "abc", "NaN", "Infinity", "", "1e30"])
def test_parse_price_rejects(raw):
    assert parse_price(raw) is None


def test_parse_positive_int():
    assert parse_positive_int(" 10 ") == 10
    assert parse_positive_int("0") is None
    assert parse_positive_int("-3") is None
    assert parse_positive_int("2.5") is None
    assert parse_positive_int("²") is None
    assert parse_positive_int("١٢") is None


def test_parse_optional_int():
    assert parse_optional_int("3") == (True, 3)
    assert parse_optional_int("-") == (True, None)
    assert parse_optional_int("∞") == (True, None)
    assert parse_optional_int("Ilimitado") == (True, None)
    assert parse_optional_int("muitas") == (False, None)
    assert parse_optional_int("³") == (False, None)


def test_parse_date_formats():
    assert parse_date("2026-03-01") == date(2026, 3, 1)
    assert parse_date("01/03/2026") == date(2026, 3, 1)
    assert parse_date("01.03.2026") == date(2026, 3, 1)
    assert parse_date("31/02/2026") is None


def test_parse_color():
    assert parse_color("#1E90FF") == "#1e90ff"
    assert parse_color("ff0000") == "#ff0000"
    assert parse_color("red") is None
    assert parse_color("#fff") is None


def test_is_skip():
    assert is_skip(" - ")
    assert is_skip(None)
    assert not is_skip("nota")
