"""
Material request guards -- payload validation and transition guard evaluation.

Responsibility:
    Two kinds of precondition protect every command:

    * Payload guards check the command's own input (reasons present,
      quantities and prices in range, payment positive, delivered item ids
      known).  They raise ``ValidationFailedError``.
    * Transition guards (``has_items``, ``payment_settles_total``, ...) are
      declared by name on workflow transitions and evaluated here by
      explicit per-guard functions registered on a ``GuardExecutor``.

Architecture position:
    Modules layer.  Pure functions over DTOs / loaded ORM rows; no session
    access, no clock.

Invariants enforced:
    - A guard never mutates the aggregate.
    - Guard evaluators receive a ``GuardContext``; unknown guard names
      fail closed.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from procurement_config.schema import MaterialRequestPolicy, OverDeliveryPolicy
from procurement_kernel.db.types import to_money
from procurement_kernel.domain.calculator import (
    PaymentOutcome,
    line_total,
    validate_quantity,
    validate_unit_price,
)
from procurement_kernel.domain.workflow import Guard
from procurement_kernel.exceptions import ValidationFailedError
from procurement_kernel.logging_config import get_logger
from procurement_modules.material_requests.models import (
    DeliveredItem,
    ItemChange,
    NewItem,
    RequestPriority,
)

logger = get_logger("modules.material_requests.guards")


# ---------------------------------------------------------------------------
# Payload guards
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PricedItem:
    """A validated new item with its computed line total."""
    product_id: str
    product_name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    product_sku: str | None = None
    notes: str | None = None


def _required_text(value: str | None, field: str, max_length: int) -> str:
    if value is None or not isinstance(value, str) or not value.strip():
        raise ValidationFailedError(field, "is required")
    text = value.strip()
    if len(text) > max_length:
        raise ValidationFailedError(field, f"must be at most {max_length} characters")
    return text


def _optional_text(value: str | None, field: str, max_length: int) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationFailedError(field, f"must be a string, got {type(value).__name__}")
    if len(value) > max_length:
        raise ValidationFailedError(field, f"must be at most {max_length} characters")
    return value


def validate_reason(reason: str | None, policy: MaterialRequestPolicy, field: str = "reason") -> str:
    """A non-blank reason (reject, cancel), trimmed."""
    return _required_text(reason, field, policy.max_reason_length)


def validate_notes(notes: str | None, policy: MaterialRequestPolicy) -> str | None:
    return _optional_text(notes, "notes", policy.max_notes_length)


def validate_comment(comment: str | None, policy: MaterialRequestPolicy) -> str | None:
    return _optional_text(comment, "comment", policy.max_comment_length)


def validate_priority(priority: RequestPriority | str) -> RequestPriority:
    try:
        return RequestPriority(priority)
    except ValueError:
        raise ValidationFailedError(
            "priority",
            f"expected one of {[p.value for p in RequestPriority]}, got {priority!r}",
        ) from None


def validate_new_item(item: NewItem, policy: MaterialRequestPolicy) -> PricedItem:
    """Check a new line item and compute its total."""
    product_id = _required_text(item.product_id, "product_id", 100)
    product_name = _required_text(item.product_name, "product_name", 255)
    quantity = validate_quantity(item.quantity)
    unit_price = validate_unit_price(item.unit_price)
    return PricedItem(
        product_id=product_id,
        product_name=product_name,
        quantity=quantity,
        unit_price=unit_price,
        total_price=line_total(quantity, unit_price),
        product_sku=_optional_text(item.product_sku, "product_sku", 100),
        notes=_optional_text(item.notes, "item.notes", policy.max_notes_length),
    )


def validate_item_change(
    change: ItemChange,
    known_ids: Iterable[UUID],
    policy: MaterialRequestPolicy,
) -> None:
    """Check an item change against the request's current items."""
    if change.item_id not in set(known_ids):
        raise ValidationFailedError("item_id", f"unknown item {change.item_id}")
    if change.quantity is not None:
        validate_quantity(change.quantity)
    if change.unit_price is not None:
        validate_unit_price(change.unit_price)
    if change.product_name is not None:
        _required_text(change.product_name, "product_name", 255)
    _optional_text(change.product_sku, "product_sku", 100)
    _optional_text(change.notes, "item.notes", policy.max_notes_length)


def validate_removals(item_ids: Sequence[UUID], known_ids: Iterable[UUID]) -> None:
    known = set(known_ids)
    for item_id in item_ids:
        if item_id not in known:
            raise ValidationFailedError("remove_item_ids", f"unknown item {item_id}")


def validate_payment_amount(amount: Decimal | int | str) -> Decimal:
    """A strictly positive money amount."""
    value = to_money(amount, field="amount")
    if value <= 0:
        raise ValidationFailedError("amount", f"must be > 0, got {value}")
    return value


def validate_deliveries(
    deliveries: Sequence[DeliveredItem],
    ordered: dict[UUID, int],
    policy: MaterialRequestPolicy,
) -> dict[UUID, int]:
    """
    Check delivered quantities against the ordered quantities.

    Args:
        deliveries: Reported quantities, at most one per item.
        ordered: item_id -> ordered quantity for the request.

    Returns:
        item_id -> delivered quantity for every mentioned item.

    Raises:
        ValidationFailedError: unknown or duplicate item id, negative
            quantity, or (policy ``reject``) more than ordered.
    """
    result: dict[UUID, int] = {}
    for delivery in deliveries:
        if delivery.item_id not in ordered:
            raise ValidationFailedError("item_id", f"unknown item {delivery.item_id}")
        if delivery.item_id in result:
            raise ValidationFailedError("item_id", f"duplicate item {delivery.item_id}")
        quantity = validate_quantity(
            delivery.delivered_quantity, field="delivered_quantity", minimum=0
        )
        if (
            quantity > ordered[delivery.item_id]
            and policy.over_delivery_policy is OverDeliveryPolicy.REJECT
        ):
            raise ValidationFailedError(
                "delivered_quantity",
                f"{quantity} exceeds ordered quantity {ordered[delivery.item_id]} "
                f"for item {delivery.item_id}",
            )
        result[delivery.item_id] = quantity
    return result


# ---------------------------------------------------------------------------
# Transition guards
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GuardContext:
    """Facts about the aggregate and command that guards may inspect."""
    item_count: int = 0
    payment: PaymentOutcome | None = None


def _has_items(context: GuardContext) -> bool:
    return context.item_count > 0


def _payment_settles_total(context: GuardContext) -> bool:
    return context.payment is not None and context.payment.settled


def _payment_leaves_balance(context: GuardContext) -> bool:
    return context.payment is not None and not context.payment.settled


class GuardExecutor:
    """Evaluates workflow guards against a GuardContext.

    Guards are declared on transitions (name + description).  This executor
    holds the evaluation function per guard name.
    """

    def __init__(self) -> None:
        self._evaluators: dict[str, Callable[[GuardContext], bool]] = {}

    def register(self, guard_name: str, evaluator: Callable[[GuardContext], bool]) -> None:
        self._evaluators[guard_name] = evaluator

    def evaluate(self, guard: Guard, context: GuardContext) -> bool:
        """Returns True if the guard passes.  Unknown guards fail closed."""
        fn = self._evaluators.get(guard.name)
        if fn is None:
            logger.warning("guard_no_evaluator", extra={"guard_name": guard.name})
            return False
        return bool(fn(context))


def default_guard_executor() -> GuardExecutor:
    """Return a GuardExecutor with the material request guards registered."""
    ex = GuardExecutor()
    ex.register("has_items", _has_items)
    ex.register("payment_settles_total", _payment_settles_total)
    ex.register("payment_leaves_balance", _payment_leaves_balance)
    return ex
