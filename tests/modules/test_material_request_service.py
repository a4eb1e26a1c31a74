"""
Tests for the Material Request Module Service.

Validates:
- Create: numbering, totals, items, history and event
- Update: header fields, item add/change/remove, total recomputation
- Approval flow: submit, approve, reject, return to draft
- Fulfilment: send, complete, cancel
- Failure atomicity: no history row, no outbox row, no field change
- History and outbox ordering keys come from the request version
- Structured logging around the transaction boundary
"""

from __future__ import annotations

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from procurement_kernel.exceptions import (
    InvalidTransitionError,
    RequestNotFoundError,
    ValidationFailedError,
)
from procurement_kernel.selectors.outbox_selector import OutboxSelector
from procurement_modules.material_requests.models import (
    HistoryAction,
    ItemChange,
    MaterialRequestStatus as S,
    NewItem,
    RequestPriority,
    UpdateRequest,
)
from procurement_kernel.services.sequence_service import SequenceCounter
from procurement_modules.material_requests.orm import MaterialRequestHistoryModel


def _history_count(session, request_id) -> int:
    return session.execute(
        select(func.count())
        .select_from(MaterialRequestHistoryModel)
        .where(MaterialRequestHistoryModel.request_id == request_id)
    ).scalar_one()


# =============================================================================
# Create
# =============================================================================


class TestCreate:

    def test_scenario_a_totals_and_status(self, service, caller, create_command):
        request = service.create(
            caller,
            create_command(items=(
                NewItem(product_id="p-1", product_name="Water", quantity=10, unit_price=Decimal("1000")),
                NewItem(product_id="p-2", product_name="Juice", quantity=5, unit_price=Decimal("2000")),
            )),
        )

        assert request.status is S.DRAFT
        assert request.total_amount == Decimal("20000.00")
        assert request.paid_amount == Decimal("0.00")
        assert [i.total_price for i in request.items] == [Decimal("10000.00"), Decimal("10000.00")]

    def test_request_number_format(self, service, caller, create_command):
        first = service.create(caller, create_command())
        second = service.create(caller, create_command())

        assert first.request_number == "MR-2024-00001"
        assert second.request_number == "MR-2024-00002"

    def test_numbering_is_global_across_organizations(
        self, service, caller, other_org_caller, create_command,
    ):
        mine = service.create(caller, create_command())
        theirs = service.create(other_org_caller, create_command())

        assert mine.request_number != theirs.request_number
        assert theirs.request_number == "MR-2024-00002"

    def test_create_without_items_is_allowed(self, service, caller, create_command):
        request = service.create(caller, create_command(items=()))

        assert request.status is S.DRAFT
        assert request.items == ()
        assert request.total_amount == Decimal("0.00")

    def test_requester_defaults_to_caller(self, service, caller, create_command):
        request = service.create(caller, create_command())
        assert request.requester_id == caller.actor_user_id

    def test_explicit_requester_kept(self, service, caller, create_command):
        request = service.create(caller, create_command(requester_id="user-on-behalf"))
        assert request.requester_id == "user-on-behalf"

    def test_items_numbered_in_order(self, draft):
        assert [i.line_number for i in draft.items] == [1, 2]
        assert draft.items[0].product_sku == "COLA-330"
        assert all(i.delivered_quantity == 0 for i in draft.items)

    def test_version_starts_at_one(self, draft):
        assert draft.version == 1

    def test_history_row_with_no_from_status(self, service, caller, draft):
        history = service.get_request_history(caller, draft.id)

        assert len(history) == 1
        assert history[0].action is HistoryAction.CREATE
        assert history[0].from_status is None
        assert history[0].to_status is S.DRAFT
        assert history[0].user_id == caller.actor_user_id

    def test_created_event_written(self, session, draft):
        assert OutboxSelector(session).topics_for_aggregate(draft.id) == [
            "material-request.created",
        ]

    @pytest.mark.parametrize(
        "item, field",
        [
            (NewItem(product_id="p", product_name="X", quantity=0, unit_price=Decimal("1")), "quantity"),
            (NewItem(product_id="p", product_name="X", quantity=-3, unit_price=Decimal("1")), "quantity"),
            (NewItem(product_id="p", product_name="X", quantity=1, unit_price=Decimal("-0.01")), "unit_price"),
            (NewItem(product_id="p", product_name="X", quantity=1, unit_price=1.5), "unit_price"),
            (NewItem(product_id="", product_name="X", quantity=1, unit_price=Decimal("1")), "product_id"),
            (NewItem(product_id="p", product_name="  ", quantity=1, unit_price=Decimal("1")), "product_name"),
        ],
    )
    def test_invalid_items_rejected(self, session, service, caller, create_command, item, field):
        with pytest.raises(ValidationFailedError) as exc_info:
            service.create(caller, create_command(items=(item,)))

        assert exc_info.value.field == field
        assert session.execute(
            select(func.count()).select_from(MaterialRequestHistoryModel)
        ).scalar_one() == 0

    def test_failed_create_does_not_consume_number(self, service, caller, create_command):
        bad = NewItem(product_id="p", product_name="X", quantity=0, unit_price=Decimal("1"))
        with pytest.raises(ValidationFailedError):
            service.create(caller, create_command(items=(bad,)))

        request = service.create(caller, create_command())
        assert request.request_number == "MR-2024-00001"

    def test_invalid_priority_rejected(self, service, caller, create_command):
        with pytest.raises(ValidationFailedError) as exc_info:
            service.create(caller, create_command(priority="critical"))
        assert exc_info.value.field == "priority"

    def test_notes_too_long_rejected(self, service, caller, create_command, policy):
        with pytest.raises(ValidationFailedError) as exc_info:
            service.create(caller, create_command(notes="x" * (policy.max_notes_length + 1)))
        assert exc_info.value.field == "notes"


# =============================================================================
# Update
# =============================================================================


class TestUpdate:

    def test_header_fields(self, service, caller, draft):
        updated = service.update(
            caller,
            draft.id,
            UpdateRequest(supplier_id="supplier-2", priority=RequestPriority.URGENT, notes="Rush"),
        )

        assert updated.supplier_id == "supplier-2"
        assert updated.priority is RequestPriority.URGENT
        assert updated.notes == "Rush"
        assert updated.status is S.DRAFT
        assert updated.version == draft.version + 1

    def test_empty_update_is_still_a_command(self, session, service, caller, draft):
        before = _history_count(session, draft.id)

        updated = service.update(caller, draft.id, UpdateRequest())

        assert updated.version == draft.version + 1
        assert updated.total_amount == draft.total_amount
        assert [i.id for i in updated.items] == [i.id for i in draft.items]
        assert _history_count(session, draft.id) == before + 1

    def test_add_item_recomputes_total(self, service, caller, draft):
        updated = service.update(
            caller,
            draft.id,
            UpdateRequest(add_items=(
                NewItem(product_id="p-3", product_name="Gum", quantity=4, unit_price=Decimal("2.50")),
            )),
        )

        assert len(updated.items) == 3
        assert updated.items[-1].line_number == 3
        assert updated.total_amount == Decimal("160.00")

    def test_change_item_recomputes_line_and_total(self, service, caller, draft):
        first = draft.items[0]
        updated = service.update(
            caller,
            draft.id,
            UpdateRequest(update_items=(ItemChange(item_id=first.id, quantity=20),)),
        )

        changed = next(i for i in updated.items if i.id == first.id)
        assert changed.quantity == 20
        assert changed.total_price == Decimal("200.00")
        assert updated.total_amount == Decimal("250.00")

    def test_remove_item_recomputes_total(self, service, caller, draft):
        updated = service.update(
            caller,
            draft.id,
            UpdateRequest(remove_item_ids=(draft.items[1].id,)),
        )

        assert [i.id for i in updated.items] == [draft.items[0].id]
        assert updated.total_amount == Decimal("100.00")

    def test_total_matches_sum_of_lines(self, service, caller, draft):
        updated = service.update(
            caller,
            draft.id,
            UpdateRequest(
                remove_item_ids=(draft.items[0].id,),
                update_items=(ItemChange(item_id=draft.items[1].id, unit_price=Decimal("3.33")),),
                add_items=(NewItem(product_id="p-9", product_name="Mints", quantity=3, unit_price=Decimal("0.99")),),
            ),
        )

        assert updated.total_amount == sum(i.total_price for i in updated.items)
        assert updated.total_amount == Decimal("19.62")

    def test_unknown_item_rejected(self, service, caller, draft):
        with pytest.raises(ValidationFailedError):
            service.update(
                caller,
                draft.id,
                UpdateRequest(update_items=(ItemChange(item_id=uuid4(), quantity=2),)),
            )

    def test_cannot_change_removed_item(self, service, caller, draft):
        target = draft.items[0].id
        with pytest.raises(ValidationFailedError):
            service.update(
                caller,
                draft.id,
                UpdateRequest(
                    remove_item_ids=(target,),
                    update_items=(ItemChange(item_id=target, quantity=2),),
                ),
            )

    def test_update_outside_draft_rejected(self, session, service, caller, submitted):
        with pytest.raises(InvalidTransitionError):
            service.update(caller, submitted.id, UpdateRequest(notes="too late"))

        after = service.get_request(caller, submitted.id)
        assert after.status is S.NEW
        assert after.version == submitted.version
        assert after.notes == submitted.notes
        assert _history_count(session, submitted.id) == 2

    def test_update_writes_history_and_event(self, session, service, caller, draft):
        service.update(caller, draft.id, UpdateRequest(notes="Changed"))

        history = service.get_request_history(caller, draft.id)
        assert history[0].action is HistoryAction.UPDATE
        assert history[0].from_status is S.DRAFT
        assert history[0].to_status is S.DRAFT
        assert OutboxSelector(session).topics_for_aggregate(draft.id)[-1] == "material-request.updated"


# =============================================================================
# Approval flow
# =============================================================================


class TestSubmit:

    def test_submit_moves_to_new(self, service, caller, draft, deterministic_clock):
        deterministic_clock.advance(60)
        request = service.submit(caller, draft.id, comment="Please approve")

        assert request.status is S.NEW
        assert request.submitted_at is not None
        history = service.get_request_history(caller, draft.id)
        assert history[0].action is HistoryAction.SUBMIT
        assert history[0].comment == "Please approve"

    def test_scenario_b_submit_without_items(self, session, service, caller, create_command):
        empty = service.create(caller, create_command(items=()))

        with pytest.raises(InvalidTransitionError) as exc_info:
            service.submit(caller, empty.id)

        assert "has_items" in str(exc_info.value)
        assert service.get_request(caller, empty.id).status is S.DRAFT
        assert _history_count(session, empty.id) == 1

    def test_submit_after_removing_all_items(self, service, caller, draft):
        service.update(
            caller, draft.id,
            UpdateRequest(remove_item_ids=tuple(i.id for i in draft.items)),
        )
        with pytest.raises(InvalidTransitionError):
            service.submit(caller, draft.id)


class TestApproveReject:

    def test_scenario_d_approve(self, session, service, approver, submitted):
        request = service.approve(approver, submitted.id)

        assert request.status is S.APPROVED
        assert request.approved_at is not None
        assert request.approved_by == approver.actor_user_id

        history = service.get_request_history(approver, submitted.id)
        approvals = [h for h in history if h.action is HistoryAction.APPROVE]
        assert len(approvals) == 1
        assert approvals[0].from_status is S.NEW
        assert approvals[0].to_status is S.APPROVED

    def test_reject_records_reason(self, service, approver, submitted):
        request = service.reject(approver, submitted.id, "  Over budget  ")

        assert request.status is S.REJECTED
        assert request.rejection_reason == "Over budget"
        assert request.rejected_by == approver.actor_user_id
        assert request.rejected_at is not None
        assert service.get_request_history(approver, submitted.id)[0].comment == "Over budget"

    @pytest.mark.parametrize("reason", ["", "   ", None])
    def test_reject_requires_reason(self, session, service, approver, submitted, reason):
        with pytest.raises(ValidationFailedError) as exc_info:
            service.reject(approver, submitted.id, reason)

        assert exc_info.value.field == "reason"
        assert service.get_request(approver, submitted.id).status is S.NEW
        assert _history_count(session, submitted.id) == 2

    def test_scenario_f_return_to_draft_keeps_rejection(self, service, caller, rejected):
        request = service.return_to_draft(caller, rejected.id)

        assert request.status is S.DRAFT
        assert request.rejection_reason == "Over budget"
        assert request.rejected_by == rejected.rejected_by

    def test_resubmit_after_return(self, service, caller, approver, rejected):
        service.return_to_draft(caller, rejected.id)
        service.update(caller, rejected.id, UpdateRequest(notes="Reduced quantities"))
        request = service.submit(caller, rejected.id)

        assert request.status is S.NEW
        assert service.approve(approver, rejected.id).status is S.APPROVED


# =============================================================================
# Fulfilment and terminal states
# =============================================================================


class TestFulfilment:

    def test_send_to_supplier(self, service, caller, approved):
        request = service.send_to_supplier(caller, approved.id)

        assert request.status is S.SENT
        assert request.sent_at is not None

    def test_complete(self, service, caller, delivered):
        request = service.complete(caller, delivered.id, comment="All good")

        assert request.status is S.COMPLETED
        assert request.completed_at is not None
        assert request.is_terminal

    def test_full_lifecycle_history(self, service, caller, completed):
        history = service.get_request_history(caller, completed.id)

        assert [h.action for h in reversed(history)] == [
            HistoryAction.CREATE,
            HistoryAction.SUBMIT,
            HistoryAction.APPROVE,
            HistoryAction.SEND_TO_SUPPLIER,
            HistoryAction.RECORD_PAYMENT,
            HistoryAction.CONFIRM_DELIVERY,
            HistoryAction.COMPLETE,
        ]
        assert completed.version == 7


class TestCancel:

    @pytest.mark.parametrize(
        "state_fixture",
        ["draft", "submitted", "approved", "rejected", "sent", "partially_paid", "paid", "delivered"],
    )
    def test_cancel_from_non_terminal(self, request, service, caller, state_fixture):
        target = request.getfixturevalue(state_fixture)

        cancelled = service.cancel(caller, target.id, "Supplier out of stock")

        assert cancelled.status is S.CANCELLED
        assert cancelled.cancellation_reason == "Supplier out of stock"
        assert cancelled.cancelled_at is not None

    def test_cancel_requires_reason(self, service, caller, draft):
        with pytest.raises(ValidationFailedError):
            service.cancel(caller, draft.id, "")

    def test_scenario_e_cancel_completed(self, session, service, caller, completed):
        before = _history_count(session, completed.id)

        with pytest.raises(InvalidTransitionError):
            service.cancel(caller, completed.id, "Too late")

        assert _history_count(session, completed.id) == before
        assert service.get_request(caller, completed.id).status is S.COMPLETED

    def test_cancel_cancelled(self, service, caller, cancelled):
        with pytest.raises(InvalidTransitionError):
            service.cancel(caller, cancelled.id, "Again")


# =============================================================================
# Tenancy
# =============================================================================


class TestOrderingKeys:

    def test_history_seq_tracks_version(self, session, completed):
        seqs = session.execute(
            select(MaterialRequestHistoryModel.seq)
            .where(MaterialRequestHistoryModel.request_id == completed.id)
            .order_by(MaterialRequestHistoryModel.seq.asc())
        ).scalars().all()

        assert seqs == list(range(1, completed.version + 1))

    def test_event_seq_matches_history_seq(self, session, completed):
        event_seqs = [m.seq for m in OutboxSelector(session).for_aggregate(completed.id)]
        assert event_seqs == list(range(1, completed.version + 1))

    def test_only_request_number_counters_allocated(
        self, session, service, completed, other_org_caller, create_command,
    ):
        service.create(other_org_caller, create_command())

        names = session.execute(select(SequenceCounter.name)).scalars().all()
        assert names
        assert all(name.startswith("material_request:") for name in names)


class TestTenantScope:

    def test_other_org_cannot_read(self, service, other_org_caller, draft):
        with pytest.raises(RequestNotFoundError):
            service.get_request(other_org_caller, draft.id)

    def test_other_org_cannot_command(self, session, service, other_org_caller, draft):
        with pytest.raises(RequestNotFoundError):
            service.submit(other_org_caller, draft.id)
        assert _history_count(session, draft.id) == 1

    def test_unknown_id(self, service, caller):
        with pytest.raises(RequestNotFoundError):
            service.approve(caller, uuid4())


# =============================================================================
# Logging
# =============================================================================


class TestLogging:

    def test_command_logs_start_and_commit(self, service, caller, create_command, captured_logs):
        service.create(caller, create_command())

        messages = [r["message"] for r in captured_logs()]
        assert "material_request_create_started" in messages
        assert "material_request_create_committed" in messages
        assert "material_request_created" in messages

    def test_failed_command_logs_rollback(self, service, caller, completed, captured_logs):
        with pytest.raises(InvalidTransitionError):
            service.cancel(caller, completed.id, "nope")

        records = captured_logs()
        rolled_back = [r for r in records if r["message"] == "material_request_cancel_rolled_back"]
        assert len(rolled_back) == 1
        assert rolled_back[0]["error_code"] == "INVALID_TRANSITION"
        assert rolled_back[0]["organization_id"] == caller.organization_id
        assert any(
            r["message"] == "workflow_transition" and r["outcome"] == "no_transition"
            for r in records
        )

    def test_transition_trace_logged(self, service, caller, draft, captured_logs):
        service.submit(caller, draft.id)

        traces = [r for r in captured_logs() if r["message"] == "workflow_transition"]
        assert traces[-1]["from_state"] == "draft"
        assert traces[-1]["to_state"] == "new"
        assert traces[-1]["outcome"] == "success"
