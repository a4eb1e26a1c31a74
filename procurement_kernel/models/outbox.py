"""
Module: procurement_kernel.models.outbox
Responsibility: ORM persistence for the transactional outbox of domain events.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - An outbox row is written in the same transaction as the change it
      describes; a rolled-back command leaves no row behind.
    - seq is the aggregate's version at publish time: unique per
      aggregate and strictly increasing within it.  Delivery order is
      (created_at, aggregate_id, seq).
    - Only delivery bookkeeping (attempt_count, last_error, available_at,
      delivered, delivered_at) changes after insert.

Audit relevance:
    The outbox is a delivery queue, not the audit trail; the material
    request history table is the audit record of every transition.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from procurement_kernel.db.base import Base, UUIDString


class OutboxEvent(Base):
    """
    A domain event waiting for (or past) delivery to subscribers.

    Guarantees:
        - ``payload`` holds only JSON-native values (strings for money,
          ids and timestamps).
        - ``delivered`` flips to True exactly once.
    """

    __tablename__ = "outbox_events"

    __table_args__ = (
        Index("idx_outbox_delivery", "delivered", "available_at", "created_at"),
        Index("idx_outbox_topic", "topic"),
        UniqueConstraint("aggregate_id", "seq", name="uq_outbox_aggregate_seq"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # e.g. "material-request.approved"
    topic: Mapped[str] = mapped_column(String(128), nullable=False)

    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    aggregate_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    organization_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    # Delivery state
    available_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    delivered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    delivered_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        state = "delivered" if self.delivered else f"pending({self.attempt_count})"
        return f"<OutboxEvent #{self.seq} {self.topic} {state}>"
