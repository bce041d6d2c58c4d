"""
Module: ledger_kernel.db.types
Responsibility: Annotated column types and the sanctioned helpers for
    monetary precision and currency codes.
Architecture position: Kernel > DB.  Imported by models/, domain/, services/
    and selectors/; imports nothing from them.

Invariants enforced:
    - Amounts are stored with AMOUNT_DECIMAL_PLACES (4), rates with
      RATE_DECIMAL_PLACES (8).
    - Rounding is ROUND_HALF_UP (half away from zero) everywhere.
    - Currency codes are three upper-case ASCII letters.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Annotated

from sqlalchemy import Numeric, String

from ledger_kernel.exceptions import InvalidCurrencyError

Amount = Annotated[Decimal, Numeric(18, 4)]
Rate = Annotated[Decimal, Numeric(24, 8)]
CurrencyCode = Annotated[str, String(3)]
ShortCode = Annotated[str, String(50)]
LongText = Annotated[str, String(1000)]

AMOUNT_DECIMAL_PLACES = 4
RATE_DECIMAL_PLACES = 8
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")


def to_decimal(value: object) -> Decimal:
    """
    Coerce a database or payload value to Decimal.

    Floats go through ``str`` so binary artefacts do not leak into amounts
    (SQLite returns SUM() results as float).

    Raises:
        ValueError: If the value is not numeric.
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Not a numeric amount: {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Not a numeric amount: {value!r}") from exc


def quantize(value: Decimal, places: int) -> Decimal:
    """Round ``value`` half-up to ``places`` decimal places."""
    return value.quantize(Decimal(1).scaleb(-places), rounding=DEFAULT_ROUNDING)


def round_amount(value: Decimal, places: int = AMOUNT_DECIMAL_PLACES) -> Decimal:
    return quantize(value, places)


def normalize_currency(code: str) -> str:
    """
    Upper-case and validate a currency code.

    Raises:
        InvalidCurrencyError: If ``code`` is not three ASCII letters.
    """
    if not isinstance(code, str):
        raise InvalidCurrencyError(repr(code))
    normalized = code.strip().upper()
    if len(normalized) != 3 or not normalized.isascii() or not normalized.isalpha():
        raise InvalidCurrencyError(code)
    return normalized
