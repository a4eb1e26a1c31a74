"""
procurement_kernel.domain.calculator -- Financial calculator for material requests.

Responsibility:
    Line totals, request totals and payment application.  Every amount the
    persistence layer stores for a request is produced here.

Architecture position:
    Kernel > Domain -- pure calculation, zero I/O, no clock access.
    May import only ``procurement_kernel.db.types`` (money helpers) and
    ``procurement_kernel.exceptions``.

Invariants enforced:
    - No floats: caller amounts go through ``to_money``; quantities must be
      real ints.
    - ``total_price == quantity * unit_price`` rounded ROUND_HALF_UP to 2
      places.
    - After ``apply_payment``: ``0 <= paid_amount <= total``; the paid
      amount never decreases.

Failure modes:
    - ValidationFailedError for float input, non-positive quantities,
      negative prices, non-positive payments, or (policy ``reject``) a
      payment exceeding the outstanding balance.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from procurement_kernel.db.types import round_money, to_money
from procurement_kernel.exceptions import ValidationFailedError

ZERO = Decimal("0.00")


class OverpaymentPolicy(str, Enum):
    """What to do with a payment larger than the outstanding balance."""

    CLAMP = "clamp"  # settle the request, track the excess separately
    REJECT = "reject"


@dataclass(frozen=True)
class PaymentOutcome:
    """
    Result of applying one payment to a request.

    ``applied`` is the part of the payment that reduced the balance;
    ``overpaid`` the excess beyond the total (always zero under REJECT).
    """

    paid_amount: Decimal
    applied: Decimal
    overpaid: Decimal
    settled: bool

    @property
    def has_overpayment(self) -> bool:
        return self.overpaid > ZERO


def validate_quantity(quantity: int, field: str = "quantity", minimum: int = 1) -> int:
    """Check that ``quantity`` is an int (not bool) and at least ``minimum``."""
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationFailedError(
            field, f"must be an integer, got {type(quantity).__name__}"
        )
    if quantity < minimum:
        raise ValidationFailedError(field, f"must be >= {minimum}, got {quantity}")
    return quantity


def validate_unit_price(unit_price: Decimal | int | str) -> Decimal:
    price = to_money(unit_price, field="unit_price")
    if price < ZERO:
        raise ValidationFailedError("unit_price", f"must be >= 0, got {price}")
    return price


def line_total(quantity: int, unit_price: Decimal | int | str) -> Decimal:
    """``quantity * unit_price``, rounded to cents."""
    qty = validate_quantity(quantity)
    price = validate_unit_price(unit_price)
    return round_money(price * qty)


def request_total(line_totals: Iterable[Decimal]) -> Decimal:
    """Sum of already-computed line totals (an empty request totals 0.00)."""
    total = ZERO
    for value in line_totals:
        total += value
    return round_money(total)


def apply_payment(
    total: Decimal,
    paid: Decimal,
    amount: Decimal | int | str,
    policy: OverpaymentPolicy = OverpaymentPolicy.CLAMP,
) -> PaymentOutcome:
    """
    Apply ``amount`` to a request with ``total`` and ``paid`` so far.

    Postconditions:
        - ``settled`` iff the new paid amount reaches ``total``.
        - Under CLAMP, anything beyond the outstanding balance is reported
          as ``overpaid`` and not added to ``paid_amount``.

    Raises:
        ValidationFailedError: non-positive amount, float input, or an
            overpayment under REJECT.
    """
    value = to_money(amount, field="amount")
    if value <= ZERO:
        raise ValidationFailedError("amount", f"must be > 0, got {value}")

    outstanding = round_money(total - paid)
    if outstanding < ZERO:
        outstanding = ZERO

    if value > outstanding:
        if OverpaymentPolicy(policy) is OverpaymentPolicy.REJECT:
            raise ValidationFailedError(
                "amount",
                f"{value} exceeds outstanding balance {outstanding}",
            )
        applied = outstanding
        overpaid = round_money(value - outstanding)
    else:
        applied = value
        overpaid = ZERO

    new_paid = round_money(paid + applied)
    return PaymentOutcome(
        paid_amount=new_paid,
        applied=applied,
        overpaid=overpaid,
        settled=new_paid >= total,
    )
