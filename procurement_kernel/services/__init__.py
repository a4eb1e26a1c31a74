"""Services for the procurement kernel (write side)."""

from procurement_kernel.services.outbox_service import (
    DispatchResult,
    OutboxDispatcher,
    OutboxMessage,
    OutboxPublisher,
)
from procurement_kernel.services.sequence_service import SequenceCounter, SequenceService

__all__ = [
    "DispatchResult",
    "OutboxDispatcher",
    "OutboxMessage",
    "OutboxPublisher",
    "SequenceCounter",
    "SequenceService",
]
