"""
Material Request Module Service (``procurement_modules.material_requests.service``).

Responsibility
--------------
Command facade for the material request lifecycle: create, update,
submit, approve, reject, return to draft, send to supplier, record
payment, confirm delivery, cancel and complete.  Read operations are
delegated to ``MaterialRequestSelector``.

Architecture position
---------------------
**Modules layer** -- the sole public entry point for material request
commands.  Composes the kernel ``SequenceService`` (request numbers),
the pure financial calculator, the ``TransitionEngine`` (state and
transition guards, effects), the ``HistoryRecorder`` (audit trail) and
the ``OutboxPublisher`` (domain events).

Invariants enforced
-------------------
* Each public command owns the transaction boundary: ``commit`` on
  success, ``rollback`` on any exception, which is then re-raised.
* Control flow per command: load with row lock and version check ->
  payload guard -> state guard -> mutate -> history row -> outbox row ->
  commit.  A failure at any step leaves no trace.
* Exactly one history row and one outbox row per successful command.
* ``total_amount`` is recomputed only while the request is in ``draft``.
* ``0 <= paid_amount <= total_amount`` after every payment.

Failure modes
-------------
* ``RequestNotFoundError`` -- unknown id, or another organization's request.
* ``InvalidTransitionError`` -- command not valid from the current status,
  or a transition guard (``has_items``) failed.
* ``ValidationFailedError`` -- malformed payload.
* ``ConflictError`` / ``OptimisticLockError`` -- stale ``expected_version``
  or a concurrent writer won (``StaleDataError`` on flush).

Audit relevance
---------------
Structured log events at start, commit and rollback of every command,
carrying request ids, statuses and amounts.  The history table and the
outbox are written in the same transaction as the change.

Usage::

    service = MaterialRequestService(session, clock=clock)
    ctx = CallerContext(organization_id="org-1", actor_user_id="user-7")
    request = service.create(ctx, CreateRequest(items=(NewItem(...),)))
    request = service.submit(ctx, request.id)
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from decimal import Decimal
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from procurement_config import get_active_config
from procurement_config.schema import MaterialRequestPolicy
from procurement_kernel.domain.calculator import (
    apply_payment,
    line_total,
    request_total,
    validate_unit_price,
)
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.exceptions import (
    ConflictError,
    OptimisticLockError,
    RequestNotFoundError,
)
from procurement_kernel.logging_config import LogContext, get_logger
from procurement_kernel.services.outbox_service import OutboxDispatcher, OutboxPublisher
from procurement_kernel.services.sequence_service import SequenceService
from procurement_modules.material_requests import guards
from procurement_modules.material_requests import workflows as wf
from procurement_modules.material_requests.engine import TransitionEffect, TransitionEngine
from procurement_modules.material_requests.guards import GuardContext
from procurement_modules.material_requests.history import HistoryRecorder
from procurement_modules.material_requests.models import (
    CallerContext,
    CreateRequest,
    DeliveredItem,
    HistoryAction,
    MaterialRequest,
    MaterialRequestFilter,
    MaterialRequestHistoryEntry,
    MaterialRequestPage,
    MaterialRequestStats,
    MaterialRequestStatus,
    PaymentDetails,
    UpdateRequest,
)
from procurement_modules.material_requests.orm import (
    MaterialRequestItemModel,
    MaterialRequestModel,
)
from procurement_modules.material_requests.selector import MaterialRequestSelector

logger = get_logger("modules.material_requests.service")

T = TypeVar("T")

ENTITY_TYPE = "MaterialRequest"
TOPIC_PREFIX = "material-request"


def _json_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, UUID):
        return str(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


class MaterialRequestService:
    """
    Orchestrates material request commands.

    Contract
    --------
    * Every command returns the updated ``MaterialRequest`` DTO.
    * Every command accepts ``expected_version``; when given and different
      from the stored version, ``OptimisticLockError`` is raised before any
      mutation.

    Guarantees
    ----------
    * Session is committed only when the whole command succeeded.
    * Clock is injectable for deterministic testing.
    * When a dispatcher is supplied, committed outbox events are delivered
      right after the commit; subscriber failures are recorded on the
      outbox row and never undo the command.

    Non-goals
    ---------
    * Authorization: callers are trusted to have checked permissions.
    * Retries: a ``ConflictError`` is surfaced to the caller as-is.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: MaterialRequestPolicy | None = None,
        dispatcher: OutboxDispatcher | None = None,
        engine: TransitionEngine | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._policy = policy or get_active_config()
        self._dispatcher = dispatcher
        self._engine = engine or TransitionEngine()
        self._sequence = SequenceService(session)
        self._history = HistoryRecorder(session, self._clock)
        self._outbox = OutboxPublisher(session, self._clock)
        self._selector = MaterialRequestSelector(session, self._policy)

    @property
    def policy(self) -> MaterialRequestPolicy:
        return self._policy

    # =========================================================================
    # Transaction plumbing
    # =========================================================================

    def _execute(
        self,
        operation: str,
        ctx: CallerContext,
        request_id: UUID | None,
        body: Callable[[], T],
    ) -> T:
        """Run ``body`` as one transaction with start/commit/rollback logging."""
        with LogContext.bind(
            organization_id=ctx.organization_id,
            actor_id=ctx.actor_user_id,
            request_id=str(request_id) if request_id else None,
            action=operation,
        ):
            logger.info(f"material_request_{operation}_started")
            try:
                result = body()
                self._session.commit()
            except StaleDataError as exc:
                self._session.rollback()
                logger.warning(
                    f"material_request_{operation}_rolled_back",
                    extra={"error_code": ConflictError.code},
                )
                raise ConflictError(ENTITY_TYPE, str(request_id)) from exc
            except Exception as exc:
                self._session.rollback()
                logger.warning(
                    f"material_request_{operation}_rolled_back",
                    extra={"error_code": getattr(exc, "code", type(exc).__name__)},
                )
                raise
            logger.info(f"material_request_{operation}_committed")

        if self._dispatcher is not None:
            try:
                self._dispatcher.dispatch_pending()
            except Exception:
                # Committed rows stay pending; the next dispatch picks them up.
                logger.error(
                    "outbox_dispatch_failed",
                    extra={"operation": operation},
                    exc_info=True,
                )
        return result

    def _load_for_update(
        self,
        ctx: CallerContext,
        request_id: UUID,
        expected_version: int | None,
    ) -> MaterialRequestModel:
        model = self._session.execute(
            select(MaterialRequestModel)
            .where(MaterialRequestModel.id == request_id)
            .where(MaterialRequestModel.organization_id == ctx.organization_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None:
            raise RequestNotFoundError(str(request_id))
        if expected_version is not None and model.version != expected_version:
            raise OptimisticLockError(
                ENTITY_TYPE,
                str(request_id),
                expected_version=expected_version,
                actual_version=model.version,
            )
        return model

    def _record(
        self,
        ctx: CallerContext,
        model: MaterialRequestModel,
        action: HistoryAction,
        from_status: str | None,
        verb: str,
        comment: str | None = None,
        **extras: Any,
    ) -> None:
        """Append the history row and the outbox event for one command."""
        self._history.record(
            model,
            action=action.value,
            from_status=from_status,
            to_status=model.status,
            user_id=ctx.actor_user_id,
            comment=comment,
        )
        payload = {
            "request_id": str(model.id),
            "organization_id": model.organization_id,
            "request_number": model.request_number,
            "from_status": from_status,
            "to_status": model.status,
            "actor_user_id": ctx.actor_user_id,
            "timestamp": self._clock.now().isoformat(),
        }
        payload.update({k: _json_value(v) for k, v in extras.items()})
        self._outbox.publish(
            f"{TOPIC_PREFIX}.{verb}",
            payload,
            aggregate_id=model.id,
            seq=model.version,
            organization_id=model.organization_id,
        )

    def _transition(
        self,
        ctx: CallerContext,
        model: MaterialRequestModel,
        action: str,
        context: GuardContext | None = None,
        **effect: Any,
    ) -> str:
        """State guard, transition guard and effects; returns the old status."""
        transition = self._engine.resolve(model, action, context)
        return self._engine.apply(
            model,
            transition,
            TransitionEffect(actor_user_id=ctx.actor_user_id, now=self._clock.now(), **effect),
        )

    # =========================================================================
    # Create / update
    # =========================================================================

    def create(self, ctx: CallerContext, command: CreateRequest) -> MaterialRequest:
        """
        Create a draft request with a fresh request number.

        Items may be empty; ``submit`` requires at least one.
        """

        def body() -> MaterialRequest:
            priced = [guards.validate_new_item(item, self._policy) for item in command.items]
            priority = guards.validate_priority(command.priority)
            notes = guards.validate_notes(command.notes, self._policy)

            now = self._clock.now()
            number = self._sequence.next_request_number(
                now.year,
                prefix=self._policy.request_number_prefix,
                width=self._policy.sequence_width,
            )
            model = MaterialRequestModel(
                organization_id=ctx.organization_id,
                request_number=number,
                requester_id=command.requester_id or ctx.actor_user_id,
                supplier_id=command.supplier_id,
                status=MaterialRequestStatus.DRAFT.value,
                priority=priority.value,
                total_amount=request_total(p.total_price for p in priced),
                paid_amount=Decimal("0.00"),
                overpaid_amount=Decimal("0.00"),
                notes=notes,
                version=1,
                created_at=now,
                updated_at=now,
                created_by_id=ctx.actor_user_id,
            )
            for line_number, item in enumerate(priced, start=1):
                model.items.append(self._item_model(ctx, item, line_number, now))
            self._session.add(model)
            self._session.flush()

            self._record(
                ctx, model, HistoryAction.CREATE, None, "created",
                comment="Request created",
                requester_id=model.requester_id,
                total_amount=model.total_amount,
                item_count=len(model.items),
            )
            logger.info(
                "material_request_created",
                extra={
                    "request_id": str(model.id),
                    "request_number": number,
                    "total_amount": str(model.total_amount),
                    "item_count": len(model.items),
                },
            )
            return model.to_dto()

        return self._execute("create", ctx, None, body)

    @staticmethod
    def _item_model(ctx, item: guards.PricedItem, line_number: int, now) -> MaterialRequestItemModel:
        return MaterialRequestItemModel(
            line_number=line_number,
            product_id=item.product_id,
            product_name=item.product_name,
            product_sku=item.product_sku,
            quantity=item.quantity,
            unit_price=item.unit_price,
            total_price=item.total_price,
            delivered_quantity=0,
            notes=item.notes,
            created_at=now,
            updated_at=now,
            created_by_id=ctx.actor_user_id,
        )

    def update(
        self,
        ctx: CallerContext,
        request_id: UUID,
        command: UpdateRequest,
        expected_version: int | None = None,
    ) -> MaterialRequest:
        """
        Change a draft request: header fields and items.

        Items are removed first, then changed, then added; the total is
        recomputed from the resulting lines.
        """

        def body() -> MaterialRequest:
            model = self._load_for_update(ctx, request_id, expected_version)

            known_ids = [item.id for item in model.items]
            guards.validate_removals(command.remove_item_ids, known_ids)
            removed = set(command.remove_item_ids)
            remaining = [i for i in known_ids if i not in removed]
            for change in command.update_items:
                guards.validate_item_change(change, remaining, self._policy)
            priced = [guards.validate_new_item(item, self._policy) for item in command.add_items]
            priority = (
                guards.validate_priority(command.priority)
                if command.priority is not None else None
            )
            notes = guards.validate_notes(command.notes, self._policy)

            now = self._clock.now()
            from_status = self._transition(ctx, model, wf.UPDATE)

            if command.supplier_id is not None:
                model.supplier_id = command.supplier_id
            if priority is not None:
                model.priority = priority.value
            if notes is not None:
                model.notes = notes

            for item in [i for i in model.items if i.id in removed]:
                model.items.remove(item)

            by_id = {item.id: item for item in model.items}
            for change in command.update_items:
                self._apply_item_change(ctx, by_id[change.item_id], change, now)

            next_line = model.next_line_number()
            for offset, item in enumerate(priced):
                model.items.append(self._item_model(ctx, item, next_line + offset, now))

            old_total = model.total_amount
            model.total_amount = request_total(item.total_price for item in model.items)
            self._session.flush()

            self._record(
                ctx, model, HistoryAction.UPDATE, from_status, "updated",
                comment="Request updated",
                total_amount=model.total_amount,
                item_count=len(model.items),
            )
            logger.info(
                "material_request_updated",
                extra={
                    "request_id": str(model.id),
                    "old_total": str(old_total),
                    "new_total": str(model.total_amount),
                    "added": len(priced),
                    "changed": len(command.update_items),
                    "removed": len(removed),
                },
            )
            return model.to_dto()

        return self._execute("update", ctx, request_id, body)

    @staticmethod
    def _apply_item_change(ctx, item: MaterialRequestItemModel, change, now) -> None:
        if change.quantity is not None:
            item.quantity = change.quantity
        if change.unit_price is not None:
            item.unit_price = validate_unit_price(change.unit_price)
        if change.product_name is not None:
            item.product_name = change.product_name.strip()
        if change.product_sku is not None:
            item.product_sku = change.product_sku
        if change.notes is not None:
            item.notes = change.notes
        item.total_price = line_total(item.quantity, item.unit_price)
        item.updated_by_id = ctx.actor_user_id
        item.updated_at = now

    # =========================================================================
    # Approval flow
    # =========================================================================

    def submit(
        self,
        ctx: CallerContext,
        request_id: UUID,
        comment: str | None = None,
        expected_version: int | None = None,
    ) -> MaterialRequest:
        """Send a draft for approval.  Requires at least one item."""

        def body() -> MaterialRequest:
            model = self._load_for_update(ctx, request_id, expected_version)
            text = guards.validate_comment(comment, self._policy)
            from_status = self._transition(ctx, model, wf.SUBMIT)
            self._record(
                ctx, model, HistoryAction.SUBMIT, from_status, "submitted",
                comment=text,
                requester_id=model.requester_id,
                total_amount=model.total_amount,
            )
            return model.to_dto()

        return self._execute("submit", ctx, request_id, body)

    def approve(
        self,
        ctx: CallerContext,
        request_id: UUID,
        comment: str | None = None,
        expected_version: int | None = None,
    ) -> MaterialRequest:
        def body() -> MaterialRequest:
            model = self._load_for_update(ctx, request_id, expected_version)
            text = guards.validate_comment(comment, self._policy)
            from_status = self._transition(ctx, model, wf.APPROVE)
            self._record(
                ctx, model, HistoryAction.APPROVE, from_status, "approved",
                comment=text,
                requester_id=model.requester_id,
                approver_id=ctx.actor_user_id,
            )
            return model.to_dto()

        return self._execute("approve", ctx, request_id, body)

    def reject(
        self,
        ctx: CallerContext,
        request_id: UUID,
        reason: str,
        expected_version: int | None = None,
    ) -> MaterialRequest:
        """Reject a submitted request.  ``reason`` is required."""

        def body() -> MaterialRequest:
            model = self._load_for_update(ctx, request_id, expected_version)
            text = guards.validate_reason(reason, self._policy)
            from_status = self._transition(ctx, model, wf.REJECT, reason=text)
            self._record(
                ctx, model, HistoryAction.REJECT, from_status, "rejected",
                comment=text,
                requester_id=model.requester_id,
                reason=text,
            )
            return model.to_dto()

        return self._execute("reject", ctx, request_id, body)

    def return_to_draft(
        self,
        ctx: CallerContext,
        request_id: UUID,
        comment: str | None = None,
        expected_version: int | None = None,
    ) -> MaterialRequest:
        """Reopen a rejected request for editing.  Rejection fields are kept."""

        def body() -> MaterialRequest:
            model = self._load_for_update(ctx, request_id, expected_version)
            text = guards.validate_comment(comment, self._policy)
            from_status = self._transition(ctx, model, wf.RETURN_TO_DRAFT)
            self._record(
                ctx, model, HistoryAction.RETURN_TO_DRAFT, from_status,
                "returned-to-draft", comment=text,
            )
            return model.to_dto()

        return self._execute("return_to_draft", ctx, request_id, body)

    # =========================================================================
    # Fulfilment
    # =========================================================================

    def send_to_supplier(
        self,
        ctx: CallerContext,
        request_id: UUID,
        comment: str | None = None,
        expected_version: int | None = None,
    ) -> MaterialRequest:
        def body() -> MaterialRequest:
            model = self._load_for_update(ctx, request_id, expected_version)
            text = guards.validate_comment(comment, self._policy)
            from_status = self._transition(ctx, model, wf.SEND_TO_SUPPLIER)
            self._record(
                ctx, model, HistoryAction.SEND_TO_SUPPLIER, from_status, "sent",
                comment=text,
                supplier_id=model.supplier_id,
            )
            return model.to_dto()

        return self._execute("send_to_supplier", ctx, request_id, body)

    def record_payment(
        self,
        ctx: CallerContext,
        request_id: UUID,
        amount: Decimal | int | str,
        details: PaymentDetails | None = None,
        expected_version: int | None = None,
    ) -> MaterialRequest:
        """
        Record a (partial) payment.

        The request becomes ``paid`` once cumulative payments reach the
        total, ``partially_paid`` otherwise.  An amount beyond the
        outstanding balance is clamped and tracked as ``overpaid_amount``,
        or rejected, depending on ``overpayment_policy``.
        """
        details = details or PaymentDetails()

        def body() -> MaterialRequest:
            model = self._load_for_update(ctx, request_id, expected_version)
            value = guards.validate_payment_amount(amount)
            notes = guards.validate_comment(details.notes, self._policy)

            candidates = self._engine.candidates(model, wf.RECORD_PAYMENT)
            outcome = apply_payment(
                model.total_amount,
                model.paid_amount,
                value,
                policy=self._policy.overpayment_policy,
            )
            transition = self._engine.select(
                model,
                wf.RECORD_PAYMENT,
                candidates,
                GuardContext(item_count=len(model.items), payment=outcome),
            )
            from_status = self._engine.apply(
                model,
                transition,
                TransitionEffect(
                    actor_user_id=ctx.actor_user_id,
                    now=self._clock.now(),
                    payment=outcome,
                ),
            )

            comment = self._payment_comment(value, outcome.overpaid, details, notes)
            self._record(
                ctx, model, HistoryAction.RECORD_PAYMENT, from_status, "payment-recorded",
                comment=comment,
                amount=value,
                applied_amount=outcome.applied,
                paid_amount=model.paid_amount,
                total_amount=model.total_amount,
                overpaid_amount=outcome.overpaid,
                payment_method=details.payment_method,
                reference=details.reference,
            )
            if outcome.has_overpayment:
                logger.warning(
                    "material_request_overpayment_clamped",
                    extra={
                        "request_id": str(model.id),
                        "amount": str(value),
                        "overpaid": str(outcome.overpaid),
                    },
                )
            return model.to_dto()

        return self._execute("record_payment", ctx, request_id, body)

    @staticmethod
    def _payment_comment(
        amount: Decimal,
        overpaid: Decimal,
        details: PaymentDetails,
        notes: str | None,
    ) -> str:
        parts = [f"Payment of {amount}"]
        if details.payment_method:
            parts.append(f"via {details.payment_method}")
        if details.reference:
            parts.append(f"(ref {details.reference})")
        text = " ".join(parts)
        if overpaid > 0:
            text = f"{text}; overpayment of {overpaid} not applied"
        if notes:
            text = f"{text}: {notes}"
        return text

    def confirm_delivery(
        self,
        ctx: CallerContext,
        request_id: UUID,
        items: Sequence[DeliveredItem] = (),
        notes: str | None = None,
        expected_version: int | None = None,
    ) -> MaterialRequest:
        """
        Record received quantities.  Items not mentioned keep their
        current delivered quantity (0 on first delivery).
        """

        def body() -> MaterialRequest:
            model = self._load_for_update(ctx, request_id, expected_version)
            ordered = {item.id: item.quantity for item in model.items}
            deliveries = guards.validate_deliveries(items, ordered, self._policy)
            text = guards.validate_comment(notes, self._policy)
            from_status = self._transition(ctx, model, wf.CONFIRM_DELIVERY, deliveries=deliveries)
            self._record(
                ctx, model, HistoryAction.CONFIRM_DELIVERY, from_status, "delivered",
                comment=text,
                items=[
                    {"item_id": str(i.id), "delivered_quantity": i.delivered_quantity}
                    for i in model.items
                ],
            )
            return model.to_dto()

        return self._execute("confirm_delivery", ctx, request_id, body)

    def cancel(
        self,
        ctx: CallerContext,
        request_id: UUID,
        reason: str,
        expected_version: int | None = None,
    ) -> MaterialRequest:
        """Cancel from any non-terminal status.  ``reason`` is required."""

        def body() -> MaterialRequest:
            model = self._load_for_update(ctx, request_id, expected_version)
            text = guards.validate_reason(reason, self._policy)
            from_status = self._transition(ctx, model, wf.CANCEL, reason=text)
            self._record(
                ctx, model, HistoryAction.CANCEL, from_status, "cancelled",
                comment=text,
                reason=text,
            )
            return model.to_dto()

        return self._execute("cancel", ctx, request_id, body)

    def complete(
        self,
        ctx: CallerContext,
        request_id: UUID,
        comment: str | None = None,
        expected_version: int | None = None,
    ) -> MaterialRequest:
        def body() -> MaterialRequest:
            model = self._load_for_update(ctx, request_id, expected_version)
            text = guards.validate_comment(comment, self._policy)
            from_status = self._transition(ctx, model, wf.COMPLETE)
            self._record(
                ctx, model, HistoryAction.COMPLETE, from_status, "completed",
                comment=text,
            )
            return model.to_dto()

        return self._execute("complete", ctx, request_id, body)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_request(self, ctx: CallerContext, request_id: UUID) -> MaterialRequest:
        return self._selector.get_request(ctx, request_id)

    def get_requests(
        self,
        ctx: CallerContext,
        flt: MaterialRequestFilter | None = None,
    ) -> MaterialRequestPage:
        return self._selector.get_requests(ctx, flt)

    def get_stats(self, ctx: CallerContext) -> MaterialRequestStats:
        return self._selector.get_stats(ctx)

    def get_pending_approvals(self, ctx: CallerContext) -> list[MaterialRequest]:
        return self._selector.get_pending_approvals(ctx)

    def get_request_history(
        self,
        ctx: CallerContext,
        request_id: UUID,
    ) -> list[MaterialRequestHistoryEntry]:
        return self._selector.get_request_history(ctx, request_id)
