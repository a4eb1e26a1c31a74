"""
Module: procurement_kernel.db.types
Responsibility: Conversion and rounding helpers for monetary amounts.
    Centralizes precision and rounding so that every model and calculator
    uses identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    CRITICAL: No floats anywhere.  All monetary amounts are Decimal with two
    fractional digits.  round_money() is the ONLY sanctioned rounding
    function; to_money() is the ONLY sanctioned conversion from caller input.

Failure modes:
    - ValidationFailedError on float input or non-numeric strings.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from procurement_kernel.exceptions import ValidationFailedError

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

_MONEY_QUANTUM = Decimal(1).scaleb(-MONEY_DECIMAL_PLACES)


def round_money(value: Decimal, rounding: str = DEFAULT_ROUNDING) -> Decimal:
    """
    Quantize a monetary value to MONEY_DECIMAL_PLACES.

    This is the ONLY sanctioned rounding function for monetary values.
    """
    return value.quantize(_MONEY_QUANTUM, rounding=rounding)


def to_money(value: Decimal | int | str, field: str = "amount") -> Decimal:
    """
    Convert caller input to a rounded money Decimal.

    Accepts Decimal, int, or a numeric string.  Floats are refused: binary
    floating point cannot represent most decimal fractions exactly.

    Raises:
        ValidationFailedError: float, bool, non-numeric, or non-finite input.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationFailedError(
            field, f"must be a Decimal, int or numeric string, got {type(value).__name__}"
        )
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, str)):
        try:
            amount = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValidationFailedError(field, f"not a number: {value!r}") from None
    else:
        raise ValidationFailedError(
            field, f"unsupported type {type(value).__name__}"
        )
    if not amount.is_finite():
        raise ValidationFailedError(field, "must be finite")
    return round_money(amount)
