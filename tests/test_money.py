import pytest

from splitledger.utils.money import format_amount, parse_amount


def test_parse_amount_accepts_common_spellings():
    assert parse_amount("12") == 1200
    assert parse_amount("12.5") == 1250
    assert parse_amount("12,50") == 1250
    assert parse_amount(" $1 234.56 ") == 123456


def test_parse_amount_uses_currency_exponent():
    assert parse_amount("500", "JPY") == 500
    assert parse_amount("1.250", "KWD") == 1250


def test_parse_amount_rejects_extra_precision():
    with pytest.raises(ValueError):
        parse_amount("1.005")
    with pytest.raises(ValueError):
        parse_amount("1.5", "JPY")


def test_parse_amount_rejects_garbage():
    with pytest.raises(ValueError):
        parse_amount("twelve")


def test_format_amount():
    assert format_amount(1000) == "10.00 USD"
    assert format_amount(-150, "EUR") == "-1.50 EUR"
    assert format_amount(5, "USD") == "0.05 USD"
    assert format_amount(500, "JPY") == "500 JPY"
