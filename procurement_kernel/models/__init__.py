"""Kernel-owned ORM models."""

from procurement_kernel.models.outbox import OutboxEvent

__all__ = [
    "OutboxEvent",
]
