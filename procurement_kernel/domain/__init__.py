"""
Pure domain layer.

This module contains value objects and calculations with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

The only source of time is the injectable Clock.
"""

from procurement_kernel.domain.calculator import (
    OverpaymentPolicy,
    PaymentOutcome,
    apply_payment,
    line_total,
    request_total,
)
from procurement_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from procurement_kernel.domain.workflow import (
    Guard,
    Transition,
    Workflow,
    actions_from,
    transitions_from,
    validate_workflow,
)

__all__ = [
    # Clock
    "Clock",
    "DeterministicClock",
    "SystemClock",
    # Calculator
    "OverpaymentPolicy",
    "PaymentOutcome",
    "apply_payment",
    "line_total",
    "request_total",
    # Workflow
    "Guard",
    "Transition",
    "Workflow",
    "actions_from",
    "transitions_from",
    "validate_workflow",
]
