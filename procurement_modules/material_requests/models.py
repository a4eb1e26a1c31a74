"""
Material Request Domain Models.

The nouns of material procurement: requests, their line items, the
history trail, and the command/query value objects exchanged with
``MaterialRequestService`` and ``MaterialRequestSelector``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from procurement_kernel.logging_config import get_logger

logger = get_logger("modules.material_requests.models")


class MaterialRequestStatus(str, Enum):
    """Material request lifecycle states."""
    DRAFT = "draft"
    NEW = "new"  # submitted, awaiting approval
    APPROVED = "approved"
    REJECTED = "rejected"
    SENT = "sent"  # sent to supplier
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RequestPriority(str, Enum):
    """Display/sort priority; no workflow semantics."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class HistoryAction(str, Enum):
    """Commands that append a history row."""
    CREATE = "create"
    UPDATE = "update"
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    RETURN_TO_DRAFT = "return_to_draft"
    SEND_TO_SUPPLIER = "send_to_supplier"
    RECORD_PAYMENT = "record_payment"
    CONFIRM_DELIVERY = "confirm_delivery"
    CANCEL = "cancel"
    COMPLETE = "complete"


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CallerContext:
    """Who is calling, and for which tenant.  Identities are opaque."""
    organization_id: str
    actor_user_id: str


@dataclass(frozen=True)
class NewItem:
    """A line item to add to a draft request."""
    product_id: str
    product_name: str
    quantity: int
    unit_price: Decimal | int | str
    product_sku: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class ItemChange:
    """Changes to an existing line item of a draft request (None = keep)."""
    item_id: UUID
    quantity: int | None = None
    unit_price: Decimal | int | str | None = None
    product_name: str | None = None
    product_sku: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class CreateRequest:
    """Payload of the ``create`` command."""
    items: tuple[NewItem, ...] = ()
    supplier_id: str | None = None
    priority: RequestPriority = RequestPriority.NORMAL
    notes: str | None = None
    requester_id: str | None = None  # defaults to the calling user


@dataclass(frozen=True)
class UpdateRequest:
    """Payload of the ``update`` command (None = keep current value)."""
    supplier_id: str | None = None
    priority: RequestPriority | None = None
    notes: str | None = None
    add_items: tuple[NewItem, ...] = ()
    update_items: tuple[ItemChange, ...] = ()
    remove_item_ids: tuple[UUID, ...] = ()


@dataclass(frozen=True)
class DeliveredItem:
    """Received quantity for one line item."""
    item_id: UUID
    delivered_quantity: int


@dataclass(frozen=True)
class PaymentDetails:
    """Optional bookkeeping carried with a payment (comment and event only)."""
    payment_method: str | None = None
    reference: str | None = None
    notes: str | None = None


# ---------------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MaterialRequestItem:
    """A line item of a material request."""
    id: UUID
    request_id: UUID
    line_number: int
    product_id: str
    product_name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    delivered_quantity: int = 0
    product_sku: str | None = None
    notes: str | None = None

    @property
    def is_over_delivered(self) -> bool:
        return self.delivered_quantity > self.quantity

    @property
    def remaining_quantity(self) -> int:
        return max(self.quantity - self.delivered_quantity, 0)


@dataclass(frozen=True)
class MaterialRequest:
    """A material request with its line items."""
    id: UUID
    organization_id: str
    request_number: str
    requester_id: str
    status: MaterialRequestStatus
    priority: RequestPriority
    total_amount: Decimal
    paid_amount: Decimal
    version: int
    created_at: datetime
    updated_at: datetime
    supplier_id: str | None = None
    overpaid_amount: Decimal = Decimal("0.00")
    notes: str | None = None
    submitted_at: datetime | None = None
    approved_by: str | None = None
    approved_at: datetime | None = None
    rejection_reason: str | None = None
    rejected_by: str | None = None
    rejected_at: datetime | None = None
    sent_at: datetime | None = None
    delivered_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    items: tuple[MaterialRequestItem, ...] = field(default_factory=tuple)

    @property
    def outstanding_amount(self) -> Decimal:
        return self.total_amount - self.paid_amount

    @property
    def is_terminal(self) -> bool:
        return self.status in (
            MaterialRequestStatus.COMPLETED,
            MaterialRequestStatus.CANCELLED,
        )


@dataclass(frozen=True)
class MaterialRequestHistoryEntry:
    """One row of a request's audit trail."""
    id: UUID
    request_id: UUID
    action: HistoryAction
    from_status: MaterialRequestStatus | None
    to_status: MaterialRequestStatus
    user_id: str
    timestamp: datetime
    comment: str | None = None


@dataclass(frozen=True)
class MaterialRequestFilter:
    """Query filters for ``get_requests``; every filter is optional."""
    status: MaterialRequestStatus | None = None
    priority: RequestPriority | None = None
    requester_id: str | None = None
    supplier_id: str | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None  # inclusive
    search: str | None = None  # request number or notes, case-insensitive
    page: int = 1
    limit: int | None = None  # None = configured default page size


@dataclass(frozen=True)
class MaterialRequestPage:
    """One page of ``get_requests`` results."""
    items: tuple[MaterialRequest, ...]
    total: int
    page: int
    limit: int
    total_pages: int


@dataclass(frozen=True)
class MaterialRequestStats:
    """Per-organization counts and money totals."""
    total_requests: int = 0
    draft: int = 0
    pending_approval: int = 0
    approved: int = 0
    rejected: int = 0
    completed: int = 0
    cancelled: int = 0
    total_amount: Decimal = Decimal("0.00")
    paid_amount: Decimal = Decimal("0.00")
    unpaid_amount: Decimal = Decimal("0.00")
