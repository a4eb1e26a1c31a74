"""
SQLAlchemy ORM persistence models for the Material Requests module.

Responsibility
--------------
Provide database-backed persistence for material requests, their line
items, and the append-only status history.

Suppliers, products, users and organizations are owned by other systems.
References to them use ``String(100)`` fields with NO foreign key
constraints.

Architecture position
---------------------
**Modules layer** -- ORM models consumed by ``MaterialRequestService``
and ``MaterialRequestSelector``.  Inherits from ``TrackedBase`` /
``Base`` (kernel db layer).

Invariants enforced
-------------------
* All monetary fields use ``Decimal`` (Numeric(18,2)) -- NEVER float.
* Enum fields stored as String(50) for readability and portability.
* ``MaterialRequestModel.version`` is the SQLAlchemy version counter:
  every UPDATE carries ``WHERE version = <loaded>`` and a stale write
  raises ``StaleDataError``.
* ``MaterialRequestHistoryModel`` rows are append-only (ORM listeners in
  ``procurement_kernel.db.immutability``).
* Priced item fields are frozen once the request leaves ``draft`` (same
  listeners).

Audit relevance
---------------
``MaterialRequestHistoryModel`` is the audit trail: one row per
successful command, carrying actor, from/to status and a comment.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from procurement_kernel.db.base import Base, TrackedBase, UUIDString

# ---------------------------------------------------------------------------
# MaterialRequestModel
# ---------------------------------------------------------------------------


class MaterialRequestModel(TrackedBase):
    """
    A material request (aggregate root).

    Maps to the ``MaterialRequest`` DTO in
    ``procurement_modules.material_requests.models``.

    Guarantees:
        - ``request_number`` is unique and never changes.
        - ``0 <= paid_amount <= total_amount``.
    """

    __tablename__ = "material_requests"

    __table_args__ = (
        UniqueConstraint("request_number", name="uq_material_request_number"),
        Index("idx_mr_org_status", "organization_id", "status"),
        Index("idx_mr_org_created", "organization_id", "created_at"),
        Index("idx_mr_requester", "requester_id"),
        Index("idx_mr_supplier", "supplier_id"),
    )

    organization_id: Mapped[str] = mapped_column(String(100), nullable=False)
    request_number: Mapped[str] = mapped_column(String(50), nullable=False)
    requester_id: Mapped[str] = mapped_column(String(100), nullable=False)
    supplier_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="draft")
    priority: Mapped[str] = mapped_column(String(50), nullable=False, default="normal")

    total_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    paid_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    overpaid_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejected_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Optimistic concurrency counter, bumped explicitly by the service on
    # every command so that item-only changes still advance it.
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {
        "version_id_col": version,
        "version_id_generator": False,
    }

    # Relationships
    items: Mapped[list["MaterialRequestItemModel"]] = relationship(
        "MaterialRequestItemModel",
        back_populates="request",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="MaterialRequestItemModel.line_number",
    )

    def to_dto(self):
        from procurement_modules.material_requests.models import (
            MaterialRequest,
            MaterialRequestStatus,
            RequestPriority,
        )

        return MaterialRequest(
            id=self.id,
            organization_id=self.organization_id,
            request_number=self.request_number,
            requester_id=self.requester_id,
            supplier_id=self.supplier_id,
            status=MaterialRequestStatus(self.status),
            priority=RequestPriority(self.priority),
            total_amount=self.total_amount,
            paid_amount=self.paid_amount,
            overpaid_amount=self.overpaid_amount,
            version=self.version,
            notes=self.notes,
            submitted_at=self.submitted_at,
            approved_by=self.approved_by,
            approved_at=self.approved_at,
            rejection_reason=self.rejection_reason,
            rejected_by=self.rejected_by,
            rejected_at=self.rejected_at,
            sent_at=self.sent_at,
            delivered_at=self.delivered_at,
            completed_at=self.completed_at,
            cancelled_at=self.cancelled_at,
            cancellation_reason=self.cancellation_reason,
            created_at=self.created_at,
            updated_at=self.updated_at,
            items=tuple(item.to_dto() for item in self.items),
        )

    def next_line_number(self) -> int:
        return max((item.line_number for item in self.items), default=0) + 1

    def __repr__(self) -> str:
        return f"<MaterialRequestModel {self.request_number} [{self.status}] v{self.version}>"


# ---------------------------------------------------------------------------
# MaterialRequestItemModel
# ---------------------------------------------------------------------------


class MaterialRequestItemModel(TrackedBase):
    """
    A line item of a material request.

    Maps to the ``MaterialRequestItem`` DTO.

    Guarantees:
        - Belongs to exactly one ``MaterialRequestModel``.
        - (request_id, line_number) is unique.
        - ``total_price == quantity * unit_price`` (set by the calculator).
    """

    __tablename__ = "material_request_items"

    __table_args__ = (
        UniqueConstraint("request_id", "line_number", name="uq_mr_item_line_number"),
        Index("idx_mr_item_request", "request_id"),
    )

    request_id: Mapped[UUID] = mapped_column(
        ForeignKey("material_requests.id"), nullable=False,
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[str] = mapped_column(String(100), nullable=False)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    product_sku: Mapped[str | None] = mapped_column(String(100), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    total_price: Mapped[Decimal] = mapped_column(nullable=False)
    delivered_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Parent relationship
    request: Mapped["MaterialRequestModel"] = relationship(
        "MaterialRequestModel",
        back_populates="items",
    )

    def to_dto(self):
        from procurement_modules.material_requests.models import MaterialRequestItem

        return MaterialRequestItem(
            id=self.id,
            request_id=self.request_id,
            line_number=self.line_number,
            product_id=self.product_id,
            product_name=self.product_name,
            product_sku=self.product_sku,
            quantity=self.quantity,
            unit_price=self.unit_price,
            total_price=self.total_price,
            delivered_quantity=self.delivered_quantity,
            notes=self.notes,
        )

    def __repr__(self) -> str:
        return f"<MaterialRequestItemModel #{self.line_number} {self.product_id} x{self.quantity}>"


# ---------------------------------------------------------------------------
# MaterialRequestHistoryModel
# ---------------------------------------------------------------------------


class MaterialRequestHistoryModel(Base):
    """
    One audit-trail row per successful command.

    Maps to the ``MaterialRequestHistoryEntry`` DTO.

    Guarantees:
        - Never updated or deleted after insert.
        - ``seq`` is the request's ``version`` after the command; it is
          unique per request and orders rows that share a timestamp.
        - ``from_status`` is NULL only for the ``create`` action.
    """

    __tablename__ = "material_request_history"

    __table_args__ = (
        UniqueConstraint("request_id", "seq", name="uq_mr_history_request_seq"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False)
    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("material_requests.id"), nullable=False,
    )
    organization_id: Mapped[str] = mapped_column(String(100), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    from_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    to_status: Mapped[str] = mapped_column(String(50), nullable=False)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def to_dto(self):
        from procurement_modules.material_requests.models import (
            HistoryAction,
            MaterialRequestHistoryEntry,
            MaterialRequestStatus,
        )

        return MaterialRequestHistoryEntry(
            id=self.id,
            request_id=self.request_id,
            action=HistoryAction(self.action),
            from_status=MaterialRequestStatus(self.from_status) if self.from_status else None,
            to_status=MaterialRequestStatus(self.to_status),
            user_id=self.user_id,
            comment=self.comment,
            timestamp=self.timestamp,
        )

    def __repr__(self) -> str:
        return (
            f"<MaterialRequestHistoryModel #{self.seq} {self.action} "
            f"{self.from_status}->{self.to_status}>"
        )
