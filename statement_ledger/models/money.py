"""
Exact money helpers.

Amounts are compared in integer minor units of their currency (cents for
USD, whole yen for JPY, fils for KWD), never as binary floats.
"""

from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Optional, Union

# ISO 4217 exponents that differ from the usual 2
_MINOR_UNIT_EXCEPTIONS = {
    "BHD": 3,
    "BIF": 0,
    "CLP": 0,
    "DJF": 0,
    "GNF": 0,
    "IQD": 3,
    "ISK": 0,
    "JOD": 3,
    "JPY": 0,
    "KMF": 0,
    "KRW": 0,
    "KWD": 3,
    "LYD": 3,
    "OMR": 3,
    "PYG": 0,
    "RWF": 0,
    "TND": 3,
    "UGX": 0,
    "VND": 0,
    "VUV": 0,
    "XAF": 0,
    "XOF": 0,
    "XPF": 0,
}

ZERO = Decimal("0")


def minor_unit_exponent(currency_code: str) -> int:
    """Number of decimal places in the currency's minor unit."""
    return _MINOR_UNIT_EXCEPTIONS.get(currency_code.upper(), 2)


def quantum(currency_code: str) -> Decimal:
    return Decimal(1).scaleb(-minor_unit_exponent(currency_code))


def to_minor_units(amount: Decimal, currency_code: str) -> int:
    """Convert an amount to an integer count of minor units (banker's rounding)."""
    return int(amount.quantize(quantum(currency_code), rounding=ROUND_HALF_EVEN).scaleb(
        minor_unit_exponent(currency_code)
    ))


def round_money(amount: Decimal, currency_code: str) -> Decimal:
    return amount.quantize(quantum(currency_code), rounding=ROUND_HALF_EVEN)


def parse_decimal(value: Union[str, int, Decimal, None]) -> Optional[Decimal]:
    """
    Parse a statement amount into a finite Decimal.

    Accepts a leading '+', surrounding whitespace and a decimal comma when
    no decimal point is present ("-12,50"). Returns None for anything that
    is not a finite number. Floats are refused outright.
    """
    if value is None or isinstance(value, float):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    text = str(value).strip().replace(" ", "")
    if not text:
        return None
    if "," in text and "." not in text:
        text = text.replace(",", ".")
    try:
        parsed = Decimal(text)
    except InvalidOperation:
        return None
    if not parsed.is_finite():
        return None
    return parsed
