"""
Material Request Workflow.

State machine for the material request lifecycle, declared as data.
Guard evaluation lives in ``guards.py``; transition selection and
effects live in ``engine.py``.
"""

from procurement_kernel.domain.workflow import Guard, Transition, Workflow, validate_workflow
from procurement_kernel.logging_config import get_logger
from procurement_modules.material_requests.models import MaterialRequestStatus as S

logger = get_logger("modules.material_requests.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

HAS_ITEMS = Guard(
    name="has_items",
    description="Request has at least one line item",
)

PAYMENT_SETTLES_TOTAL = Guard(
    name="payment_settles_total",
    description="Cumulative payments reach the request total",
)

PAYMENT_LEAVES_BALANCE = Guard(
    name="payment_leaves_balance",
    description="Cumulative payments stay below the request total",
)

logger.info(
    "material_request_workflow_guards_defined",
    extra={
        "guards": [
            HAS_ITEMS.name,
            PAYMENT_SETTLES_TOTAL.name,
            PAYMENT_LEAVES_BALANCE.name,
        ],
    },
)


# -----------------------------------------------------------------------------
# Actions
# -----------------------------------------------------------------------------

UPDATE = "update"
SUBMIT = "submit"
APPROVE = "approve"
REJECT = "reject"
RETURN_TO_DRAFT = "return_to_draft"
SEND_TO_SUPPLIER = "send_to_supplier"
RECORD_PAYMENT = "record_payment"
CONFIRM_DELIVERY = "confirm_delivery"
CANCEL = "cancel"
COMPLETE = "complete"

ACTIONS = (
    UPDATE,
    SUBMIT,
    APPROVE,
    REJECT,
    RETURN_TO_DRAFT,
    SEND_TO_SUPPLIER,
    RECORD_PAYMENT,
    CONFIRM_DELIVERY,
    CANCEL,
    COMPLETE,
)

_TERMINAL = (S.COMPLETED.value, S.CANCELLED.value)

_CANCELLABLE = tuple(s.value for s in S if s.value not in _TERMINAL)


# -----------------------------------------------------------------------------
# Material Request Workflow
# -----------------------------------------------------------------------------

MATERIAL_REQUEST_WORKFLOW = Workflow(
    name="material_request",
    description="Material request lifecycle: draft to completion",
    initial_state=S.DRAFT.value,
    states=tuple(s.value for s in S),
    transitions=(
        Transition(S.DRAFT.value, S.DRAFT.value, action=UPDATE),
        Transition(S.DRAFT.value, S.NEW.value, action=SUBMIT, guard=HAS_ITEMS),
        Transition(S.NEW.value, S.APPROVED.value, action=APPROVE),
        Transition(S.NEW.value, S.REJECTED.value, action=REJECT),
        Transition(S.REJECTED.value, S.DRAFT.value, action=RETURN_TO_DRAFT),
        Transition(S.APPROVED.value, S.SENT.value, action=SEND_TO_SUPPLIER),
        Transition(S.SENT.value, S.PAID.value, action=RECORD_PAYMENT, guard=PAYMENT_SETTLES_TOTAL),
        Transition(S.SENT.value, S.PARTIALLY_PAID.value, action=RECORD_PAYMENT, guard=PAYMENT_LEAVES_BALANCE),
        Transition(S.PARTIALLY_PAID.value, S.PAID.value, action=RECORD_PAYMENT, guard=PAYMENT_SETTLES_TOTAL),
        Transition(
            S.PARTIALLY_PAID.value, S.PARTIALLY_PAID.value,
            action=RECORD_PAYMENT, guard=PAYMENT_LEAVES_BALANCE,
        ),
        Transition(S.PAID.value, S.DELIVERED.value, action=CONFIRM_DELIVERY),
        Transition(S.DELIVERED.value, S.COMPLETED.value, action=COMPLETE),
    ) + tuple(
        Transition(state, S.CANCELLED.value, action=CANCEL) for state in _CANCELLABLE
    ),
    terminal_states=_TERMINAL,
)

_problems = validate_workflow(MATERIAL_REQUEST_WORKFLOW)
if _problems:
    raise RuntimeError(f"material_request workflow is malformed: {_problems}")

logger.info(
    "material_request_workflow_registered",
    extra={
        "workflow_name": MATERIAL_REQUEST_WORKFLOW.name,
        "state_count": len(MATERIAL_REQUEST_WORKFLOW.states),
        "transition_count": len(MATERIAL_REQUEST_WORKFLOW.transitions),
        "initial_state": MATERIAL_REQUEST_WORKFLOW.initial_state,
    },
)
