"""
Module: procurement_kernel.selectors.outbox_selector
Responsibility: Read access to the domain event outbox (delivery monitoring,
    per-aggregate event trail).
Architecture position: Kernel > Selectors.
"""

from uuid import UUID

from sqlalchemy import func, select

from procurement_kernel.models.outbox import OutboxEvent
from procurement_kernel.selectors.base import BaseSelector
from procurement_kernel.services.outbox_service import OutboxMessage


class OutboxSelector(BaseSelector[OutboxEvent]):
    """Queries over outbox rows, returned as OutboxMessage DTOs."""

    def for_aggregate(self, aggregate_id: UUID) -> list[OutboxMessage]:
        """Every event written for one aggregate, oldest first."""
        rows = self.session.execute(
            select(OutboxEvent)
            .where(OutboxEvent.aggregate_id == aggregate_id)
            .order_by(OutboxEvent.seq.asc())
        ).scalars().all()
        return [OutboxMessage.from_row(r) for r in rows]

    def topics_for_aggregate(self, aggregate_id: UUID) -> list[str]:
        return [m.topic for m in self.for_aggregate(aggregate_id)]

    def pending_count(self) -> int:
        return self.session.execute(
            select(func.count())
            .select_from(OutboxEvent)
            .where(OutboxEvent.delivered.is_(False))
        ).scalar_one()

    def failed(self) -> list[OutboxMessage]:
        """Undelivered events that have failed at least once."""
        rows = self.session.execute(
            select(OutboxEvent)
            .where(OutboxEvent.delivered.is_(False))
            .where(OutboxEvent.attempt_count > 0)
            .order_by(
                OutboxEvent.created_at.asc(),
                OutboxEvent.aggregate_id.asc(),
                OutboxEvent.seq.asc(),
            )
        ).scalars().all()
        return [OutboxMessage.from_row(r) for r in rows]
