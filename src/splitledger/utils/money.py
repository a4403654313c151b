from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation

# ISO 4217 exponents that differ from the usual two decimal places
MINOR_UNIT_EXPONENTS = {
    "BIF": 0, "CLP": 0, "ISK": 0, "JPY": 0, "KRW": 0, "PYG": 0, "UGX": 0, "VND": 0, "XAF": 0, "XOF": 0,
    "BHD": 3, "IQD": 3, "JOD": 3, "KWD": 3, "LYD": 3, "OMR": 3, "TND": 3,
}

_AMOUNT_RE = re.compile(r"^[+-]?\d+(?:[.,]\d+)?$")


def minor_unit_exponent(currency: str) -> int:
    return MINOR_UNIT_EXPONENTS.get(currency.upper(), 2)


def parse_amount(text: str, currency: str = "USD") -> int:
    """
    Convert a typed amount into minor units of ``currency``.

    Accepts "12", "12.5", "12,50" and a leading currency sign ("$12.50").
    More fractional digits than the currency allows is an error, never a
    silent rounding.
    """
    cleaned = text.strip().lstrip("$€£¥").replace(" ", "").replace("\u00a0", "")
    if not _AMOUNT_RE.match(cleaned):
        raise ValueError(f"not an amount: {text!r}")

    try:
        value = Decimal(cleaned.replace(",", "."))
    except InvalidOperation as exc:
        raise ValueError(f"not an amount: {text!r}") from exc

    exponent = minor_unit_exponent(currency)
    scaled = value.scaleb(exponent)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"{text!r} has more than {exponent} decimal places for {currency}")
    return int(scaled)


def format_amount(amount: int, currency: str = "USD") -> str:
    exponent = minor_unit_exponent(currency)
    sign = "-" if amount < 0 else ""
    whole, fraction = divmod(abs(amount), 10**exponent)
    if exponent == 0:
        return f"{sign}{whole} {currency}"
    return f"{sign}{whole}.{fraction:0{exponent}d} {currency}"
