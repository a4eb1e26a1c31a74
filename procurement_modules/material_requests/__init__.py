"""
Material Requests Module (``procurement_modules.material_requests``).

Responsibility
--------------
The lifecycle of a request for stock from a supplier: drafting and
editing, approval, dispatch to the supplier, partial and full payment,
delivery confirmation, completion and cancellation.

Architecture position
---------------------
**Modules layer** -- DTOs, ORM models, the workflow declaration, guards,
the transition engine and a ``MaterialRequestService`` facade that owns
the transaction boundary.  Numbering and event publication come from
``procurement_kernel`` services.

Invariants enforced
-------------------
* Status changes only along ``MATERIAL_REQUEST_WORKFLOW`` transitions.
* One history row and one outbox event per successful command, written
  in the command's transaction.
* ``0 <= paid_amount <= total_amount``; ``total_amount`` is fixed once
  the request leaves ``draft``.

Failure modes
-------------
* ``RequestNotFoundError``, ``InvalidTransitionError``,
  ``ValidationFailedError``, ``ConflictError`` -- raised after rollback.
"""

from procurement_modules.material_requests.models import (
    CallerContext,
    CreateRequest,
    DeliveredItem,
    HistoryAction,
    ItemChange,
    MaterialRequest,
    MaterialRequestFilter,
    MaterialRequestHistoryEntry,
    MaterialRequestItem,
    MaterialRequestPage,
    MaterialRequestStats,
    MaterialRequestStatus,
    NewItem,
    PaymentDetails,
    RequestPriority,
    UpdateRequest,
)
from procurement_modules.material_requests.workflows import MATERIAL_REQUEST_WORKFLOW
from procurement_modules.material_requests.service import MaterialRequestService
from procurement_modules.material_requests.selector import MaterialRequestSelector

__all__ = [
    "CallerContext",
    "CreateRequest",
    "DeliveredItem",
    "HistoryAction",
    "ItemChange",
    "MaterialRequest",
    "MaterialRequestFilter",
    "MaterialRequestHistoryEntry",
    "MaterialRequestItem",
    "MaterialRequestPage",
    "MaterialRequestStats",
    "MaterialRequestStatus",
    "NewItem",
    "PaymentDetails",
    "RequestPriority",
    "UpdateRequest",
    "MATERIAL_REQUEST_WORKFLOW",
    "MaterialRequestService",
    "MaterialRequestSelector",
]
