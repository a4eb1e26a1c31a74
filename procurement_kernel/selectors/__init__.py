"""Selectors for the procurement kernel (read side)."""

from procurement_kernel.selectors.base import BaseSelector
from procurement_kernel.selectors.outbox_selector import OutboxSelector

__all__ = [
    "BaseSelector",
    "OutboxSelector",
]
