"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The material request history is the audit trail of the procurement
workflow: who moved which request from which status to which status, and
when.  Once written it must never change.  Likewise, the priced line items
of a request are frozen once the request leaves DRAFT; only the delivered
quantity may still be recorded.

The transition engine already respects both rules.  These listeners catch
everything else that goes through SQLAlchemy: ad-hoc scripts, future
modules, bugs.

    session.flush()
         |
         v
    [before_update event] --> _check_*() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _check_*() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                      | When Immutable                    | Why
----------------------------|-----------------------------------|------------------------------
MaterialRequestHistory      | ALWAYS (from creation)            | Audit trail
MaterialRequestItem         | Priced fields once request leaves | Totals and payments were
                            | DRAFT; delete likewise            | computed from them

===============================================================================
USAGE
===============================================================================

    from procurement_kernel.db.engine import create_tables
    create_tables()  # registers the listeners; idempotent

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
    # ... do forbidden operation ...
    register_immutability_listeners()
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm import object_session

from procurement_kernel.exceptions import ImmutabilityViolationError
from procurement_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

# Item fields fixed once the owning request has been submitted
ITEM_FROZEN_FIELDS = frozenset({
    "product_id",
    "product_name",
    "product_sku",
    "quantity",
    "unit_price",
    "total_price",
})

_MUTABLE_ITEM_STATUS = "draft"


def _blocked(entity_type: str, entity_id: str, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
    )


# =============================================================================
# History rows
# =============================================================================


def _check_history_immutability(mapper, connection, target):
    """Prevent any updates to history records."""
    _blocked(
        "MaterialRequestHistory",
        str(target.id),
        "UPDATE",
        "History records are immutable and cannot be modified",
    )


def _check_history_delete(mapper, connection, target):
    """Prevent deletion of history records."""
    _blocked(
        "MaterialRequestHistory",
        str(target.id),
        "DELETE",
        "History records cannot be deleted",
    )


# =============================================================================
# Line items
# =============================================================================


def _parent_status(target) -> str | None:
    request = target.request
    return request.status if request is not None else None


def _check_item_immutability(mapper, connection, target):
    """Block changes to priced item fields unless the request is in DRAFT."""
    status = _parent_status(target)
    if status is None or status == _MUTABLE_ITEM_STATUS:
        return

    state = inspect(target)
    changed = [
        name for name in ITEM_FROZEN_FIELDS
        if state.attrs[name].history.has_changes()
    ]
    if changed:
        _blocked(
            "MaterialRequestItem",
            str(target.id),
            "UPDATE",
            f"Fields {sorted(changed)} are frozen in status {status}",
        )


def _check_item_delete(mapper, connection, target):
    """Block item deletion unless the request is in DRAFT or itself deleted."""
    status = _parent_status(target)
    if status is None or status == _MUTABLE_ITEM_STATUS:
        return
    session = object_session(target)
    if session is not None and target.request in session.deleted:
        return
    _blocked(
        "MaterialRequestItem",
        str(target.id),
        "DELETE",
        f"Items cannot be removed in status {status}",
    )


# =============================================================================
# Registration
# =============================================================================


def _listener_table():
    from procurement_modules.material_requests.orm import (
        MaterialRequestHistoryModel,
        MaterialRequestItemModel,
    )

    return (
        (MaterialRequestHistoryModel, "before_update", _check_history_immutability),
        (MaterialRequestHistoryModel, "before_delete", _check_history_delete),
        (MaterialRequestItemModel, "before_update", _check_item_immutability),
        (MaterialRequestItemModel, "before_delete", _check_item_delete),
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Call once after models are imported and before database writes begin.
    Idempotent.
    """
    for target, name, fn in _listener_table():
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that intentionally violate the rules.
    """
    for target, name, fn in _listener_table():
        if event.contains(target, name, fn):
            event.remove(target, name, fn)
