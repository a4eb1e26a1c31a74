"""
procurement_modules.material_requests.engine -- Transition selection and effects.

Responsibility:
    Given a loaded request and a command action, find the workflow
    transition that applies (state guard), evaluate its transition guard,
    and apply the transition's effects to the aggregate.  The command
    facade decides *when* to call the engine; the engine decides *whether*
    and *how* the aggregate moves.

Architecture position:
    Modules layer.  Operates on a loaded ``MaterialRequestModel``; never
    touches the session, never commits.

Invariants enforced:
    - A command whose action has no transition out of the current status
      raises ``InvalidTransitionError`` before any mutation.
    - When several transitions share (status, action) -- record_payment --
      the first one whose guard passes wins; if none passes the command is
      invalid.
    - ``apply`` is the only place that writes ``status``; it bumps
      ``version`` exactly once per command.
    - Effects set timestamps and actor fields; they never clear them.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from procurement_kernel.db.types import round_money
from procurement_kernel.domain.calculator import PaymentOutcome
from procurement_kernel.domain.workflow import Transition, Workflow, transitions_from
from procurement_kernel.exceptions import InvalidTransitionError
from procurement_kernel.logging_config import LogContext, get_logger
from procurement_modules.material_requests import workflows as wf
from procurement_modules.material_requests.guards import (
    GuardContext,
    GuardExecutor,
    default_guard_executor,
)
from procurement_modules.material_requests.orm import MaterialRequestModel

logger = get_logger("modules.material_requests.engine")

OUTCOME_SUCCESS = "success"
OUTCOME_GUARD_FAILED = "guard_failed"
OUTCOME_NO_TRANSITION = "no_transition"


@dataclass(frozen=True)
class TransitionEffect:
    """Inputs an effect may stamp onto the aggregate."""
    actor_user_id: str
    now: datetime
    reason: str | None = None
    payment: PaymentOutcome | None = None
    deliveries: dict[UUID, int] = field(default_factory=dict)


def _emit_trace(
    workflow: Workflow,
    action: str,
    entity_id: UUID,
    from_state: str,
    outcome: str,
    started: float,
    to_state: str | None = None,
    reason: str | None = None,
) -> None:
    record = {
        "workflow": workflow.name,
        "action": action,
        "entity_id": str(entity_id),
        "from_state": from_state,
        "outcome": outcome,
        "duration_ms": round((time.monotonic() - started) * 1000, 3),
    }
    if to_state is not None:
        record["to_state"] = to_state
    if reason is not None:
        record["reason"] = reason
    record.update(LogContext.get_all())
    if outcome == OUTCOME_SUCCESS:
        logger.info("workflow_transition", extra=record)
    else:
        logger.warning("workflow_transition", extra=record)


# ---------------------------------------------------------------------------
# Effects
# ---------------------------------------------------------------------------


def _submitted(model: MaterialRequestModel, effect: TransitionEffect) -> None:
    model.submitted_at = effect.now


def _approved(model: MaterialRequestModel, effect: TransitionEffect) -> None:
    model.approved_by = effect.actor_user_id
    model.approved_at = effect.now


def _rejected(model: MaterialRequestModel, effect: TransitionEffect) -> None:
    model.rejection_reason = effect.reason
    model.rejected_by = effect.actor_user_id
    model.rejected_at = effect.now


def _sent(model: MaterialRequestModel, effect: TransitionEffect) -> None:
    model.sent_at = effect.now


def _payment_recorded(model: MaterialRequestModel, effect: TransitionEffect) -> None:
    payment = effect.payment
    model.paid_amount = payment.paid_amount
    if payment.has_overpayment:
        model.overpaid_amount = round_money(model.overpaid_amount + payment.overpaid)


def _delivered(model: MaterialRequestModel, effect: TransitionEffect) -> None:
    for item in model.items:
        if item.id in effect.deliveries:
            item.delivered_quantity = effect.deliveries[item.id]
            item.updated_by_id = effect.actor_user_id
            if item.delivered_quantity > item.quantity:
                logger.warning(
                    "material_request_over_delivery_flagged",
                    extra={
                        "item_id": str(item.id),
                        "ordered": item.quantity,
                        "delivered": item.delivered_quantity,
                    },
                )
    model.delivered_at = effect.now


def _cancelled(model: MaterialRequestModel, effect: TransitionEffect) -> None:
    model.cancellation_reason = effect.reason
    model.cancelled_at = effect.now


def _completed(model: MaterialRequestModel, effect: TransitionEffect) -> None:
    model.completed_at = effect.now


_EFFECTS: dict[str, Callable[[MaterialRequestModel, TransitionEffect], None]] = {
    wf.SUBMIT: _submitted,
    wf.APPROVE: _approved,
    wf.REJECT: _rejected,
    wf.SEND_TO_SUPPLIER: _sent,
    wf.RECORD_PAYMENT: _payment_recorded,
    wf.CONFIRM_DELIVERY: _delivered,
    wf.CANCEL: _cancelled,
    wf.COMPLETE: _completed,
}


# ---------------------------------------------------------------------------
# TransitionEngine
# ---------------------------------------------------------------------------


class TransitionEngine:
    """Selects and applies material request transitions."""

    def __init__(
        self,
        workflow: Workflow = wf.MATERIAL_REQUEST_WORKFLOW,
        guard_executor: GuardExecutor | None = None,
    ) -> None:
        self._workflow = workflow
        self._guards = guard_executor or default_guard_executor()

    @property
    def workflow(self) -> Workflow:
        return self._workflow

    def candidates(self, model: MaterialRequestModel, action: str) -> tuple[Transition, ...]:
        """
        Transitions leaving the current status via ``action``.

        Raises:
            InvalidTransitionError: none exist.
        """
        started = time.monotonic()
        found = transitions_from(self._workflow, model.status, action)
        if not found:
            reason = f"No transition from '{model.status}' via action '{action}'"
            _emit_trace(self._workflow, action, model.id, model.status, OUTCOME_NO_TRANSITION, started, reason=reason)
            raise InvalidTransitionError(str(model.id), action, model.status)
        return found

    def select(
        self,
        model: MaterialRequestModel,
        action: str,
        candidates: tuple[Transition, ...],
        context: GuardContext,
    ) -> Transition:
        """
        First candidate whose guard passes.

        Raises:
            InvalidTransitionError: every candidate's guard failed.
        """
        started = time.monotonic()
        failed: list[str] = []
        for transition in candidates:
            if transition.guard is None or self._guards.evaluate(transition.guard, context):
                return transition
            failed.append(transition.guard.name)

        reason = f"Guard not satisfied: {', '.join(failed)}"
        _emit_trace(self._workflow, action, model.id, model.status, OUTCOME_GUARD_FAILED, started, reason=reason)
        raise InvalidTransitionError(str(model.id), action, model.status, reason=reason)

    def resolve(
        self,
        model: MaterialRequestModel,
        action: str,
        context: GuardContext | None = None,
    ) -> Transition:
        """``candidates`` then ``select`` in one call."""
        found = self.candidates(model, action)
        if context is None:
            context = GuardContext(item_count=len(model.items))
        return self.select(model, action, found, context)

    def apply(
        self,
        model: MaterialRequestModel,
        transition: Transition,
        effect: TransitionEffect,
    ) -> str:
        """
        Move ``model`` along ``transition`` and stamp its effects.

        Returns:
            The status the request left.
        """
        started = time.monotonic()
        from_status = model.status
        if from_status != transition.from_state:
            raise InvalidTransitionError(str(model.id), transition.action, from_status)

        handler = _EFFECTS.get(transition.action)
        if handler is not None:
            handler(model, effect)

        model.status = transition.to_state
        model.updated_by_id = effect.actor_user_id
        model.updated_at = effect.now
        model.version = model.version + 1

        _emit_trace(
            self._workflow,
            transition.action,
            model.id,
            from_status,
            OUTCOME_SUCCESS,
            started,
            to_state=transition.to_state,
        )
        return from_status

