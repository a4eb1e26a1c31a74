"""
History recorder for material requests.

Responsibility:
    Append one ``MaterialRequestHistoryModel`` row per successful command,
    inside the command's transaction.  If the insert fails the whole
    command fails with it.

Invariants enforced:
    - Rows are only ever added (updates and deletes are refused by the
      ORM listeners in ``procurement_kernel.db.immutability``).
    - ``seq`` is the request's ``version`` after the command.  The command
      already holds the request's row lock and bumps the version exactly
      once, so ``(request_id, seq)`` is unique without a shared counter.
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.logging_config import get_logger
from procurement_modules.material_requests.orm import (
    MaterialRequestHistoryModel,
    MaterialRequestModel,
)

logger = get_logger("modules.material_requests.history")

class HistoryRecorder:
    """Writes audit-trail rows; never commits."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def record(
        self,
        request: MaterialRequestModel,
        action: str,
        from_status: str | None,
        to_status: str,
        user_id: str,
        comment: str | None = None,
    ) -> MaterialRequestHistoryModel:
        row = MaterialRequestHistoryModel(
            seq=request.version,
            request_id=request.id,
            organization_id=request.organization_id,
            action=action,
            from_status=from_status,
            to_status=to_status,
            user_id=user_id,
            comment=comment,
            timestamp=self._clock.now(),
        )
        self._session.add(row)
        self._session.flush()
        logger.debug(
            "material_request_history_recorded",
            extra={
                "request_id": str(request.id),
                "action": action,
                "from_status": from_status,
                "to_status": to_status,
                "seq": row.seq,
            },
        )
        return row
