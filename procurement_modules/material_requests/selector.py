"""
Material request query facade (read side).

Responsibility:
    Tenant-scoped reads over material requests: single request, filtered
    and paginated listing, per-organization statistics, the approval
    queue and a request's history trail.

Architecture position:
    Modules layer selector.  Read-only: never adds, flushes or commits.
    Returns frozen DTOs from ``procurement_modules.material_requests.models``.

Invariants enforced:
    - Every query is filtered by ``organization_id``; a request of another
      organization is indistinguishable from a missing one.
    - Reads are side-effect free and idempotent.
    - Page size is bounded by the configured ``max_page_size``.
"""

from __future__ import annotations

import math
from decimal import Decimal
from uuid import UUID

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from procurement_config.schema import MaterialRequestPolicy
from procurement_kernel.db.types import round_money
from procurement_kernel.exceptions import RequestNotFoundError, ValidationFailedError
from procurement_kernel.selectors.base import BaseSelector
from procurement_modules.material_requests.models import (
    CallerContext,
    MaterialRequest,
    MaterialRequestFilter,
    MaterialRequestHistoryEntry,
    MaterialRequestPage,
    MaterialRequestStats,
    MaterialRequestStatus as S,
    RequestPriority,
)
from procurement_modules.material_requests.orm import (
    MaterialRequestHistoryModel,
    MaterialRequestModel,
)

# Requests counted as "approved" in statistics: approved and everything
# downstream of approval short of completion.
APPROVED_BUCKET = (
    S.APPROVED.value,
    S.SENT.value,
    S.PARTIALLY_PAID.value,
    S.PAID.value,
    S.DELIVERED.value,
)

_ZERO = Decimal("0.00")


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _as_money(value) -> Decimal:
    if value is None:
        return _ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return round_money(value)


class MaterialRequestSelector(BaseSelector[MaterialRequestModel]):
    """Read-only queries over material requests."""

    def __init__(self, session: Session, policy: MaterialRequestPolicy | None = None):
        super().__init__(session)
        self._policy = policy or MaterialRequestPolicy.with_defaults()

    # ------------------------------------------------------------------
    # Single request
    # ------------------------------------------------------------------

    def find_by_id(self, organization_id: str, request_id: UUID) -> MaterialRequestModel | None:
        """The ORM row, or None if absent or owned by another organization."""
        return self.session.execute(
            select(MaterialRequestModel)
            .where(MaterialRequestModel.id == request_id)
            .where(MaterialRequestModel.organization_id == organization_id)
        ).scalar_one_or_none()

    def get_request(self, ctx: CallerContext, request_id: UUID) -> MaterialRequest:
        """
        Raises:
            RequestNotFoundError: absent or outside the caller's organization.
        """
        model = self.find_by_id(ctx.organization_id, request_id)
        if model is None:
            raise RequestNotFoundError(str(request_id))
        return model.to_dto()

    def get_by_number(self, ctx: CallerContext, request_number: str) -> MaterialRequest:
        model = self.session.execute(
            select(MaterialRequestModel)
            .where(MaterialRequestModel.request_number == request_number)
            .where(MaterialRequestModel.organization_id == ctx.organization_id)
        ).scalar_one_or_none()
        if model is None:
            raise RequestNotFoundError(request_number)
        return model.to_dto()

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    @staticmethod
    def _enum_filter(enum_cls, value, field: str):
        try:
            return enum_cls(value).value
        except ValueError:
            raise ValidationFailedError(
                field,
                f"expected one of {[m.value for m in enum_cls]}, got {value!r}",
            ) from None

    def _page_bounds(self, flt: MaterialRequestFilter) -> tuple[int, int]:
        page = flt.page
        if isinstance(page, bool) or not isinstance(page, int) or page < 1:
            raise ValidationFailedError("page", f"must be a positive integer, got {page!r}")
        limit = flt.limit if flt.limit is not None else self._policy.default_page_size
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValidationFailedError("limit", f"must be a positive integer, got {limit!r}")
        return page, min(limit, self._policy.max_page_size)

    def get_requests(
        self,
        ctx: CallerContext,
        flt: MaterialRequestFilter | None = None,
    ) -> MaterialRequestPage:
        """Filtered page of requests, newest first."""
        flt = flt or MaterialRequestFilter()
        page, limit = self._page_bounds(flt)

        conditions = [MaterialRequestModel.organization_id == ctx.organization_id]
        if flt.status is not None:
            status = self._enum_filter(S, flt.status, "status")
            conditions.append(MaterialRequestModel.status == status)
        if flt.priority is not None:
            priority = self._enum_filter(RequestPriority, flt.priority, "priority")
            conditions.append(MaterialRequestModel.priority == priority)
        if flt.requester_id is not None:
            conditions.append(MaterialRequestModel.requester_id == flt.requester_id)
        if flt.supplier_id is not None:
            conditions.append(MaterialRequestModel.supplier_id == flt.supplier_id)
        if flt.from_date is not None:
            conditions.append(MaterialRequestModel.created_at >= flt.from_date)
        if flt.to_date is not None:
            conditions.append(MaterialRequestModel.created_at <= flt.to_date)
        if flt.search:
            pattern = f"%{_escape_like(flt.search.strip())}%"
            conditions.append(
                or_(
                    MaterialRequestModel.request_number.ilike(pattern, escape="\\"),
                    MaterialRequestModel.notes.ilike(pattern, escape="\\"),
                )
            )
        where = and_(*conditions)

        total = self.session.execute(
            select(func.count()).select_from(MaterialRequestModel).where(where)
        ).scalar_one()

        rows = self.session.execute(
            select(MaterialRequestModel)
            .where(where)
            .order_by(
                MaterialRequestModel.created_at.desc(),
                MaterialRequestModel.request_number.desc(),
            )
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars().all()

        return MaterialRequestPage(
            items=tuple(r.to_dto() for r in rows),
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit) if total else 0,
        )

    def get_pending_approvals(self, ctx: CallerContext) -> list[MaterialRequest]:
        """Submitted requests awaiting a decision, oldest first."""
        rows = self.session.execute(
            select(MaterialRequestModel)
            .where(MaterialRequestModel.organization_id == ctx.organization_id)
            .where(MaterialRequestModel.status == S.NEW.value)
            .order_by(
                MaterialRequestModel.created_at.asc(),
                MaterialRequestModel.request_number.asc(),
            )
        ).scalars().all()
        return [r.to_dto() for r in rows]

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_stats(self, ctx: CallerContext) -> MaterialRequestStats:
        """Counts by status bucket plus money totals for the organization."""
        rows = self.session.execute(
            select(
                MaterialRequestModel.status,
                func.count(),
                func.coalesce(func.sum(MaterialRequestModel.total_amount), 0),
                func.coalesce(func.sum(MaterialRequestModel.paid_amount), 0),
            )
            .where(MaterialRequestModel.organization_id == ctx.organization_id)
            .group_by(MaterialRequestModel.status)
        ).all()

        counts: dict[str, int] = {}
        total_amount = _ZERO
        paid_amount = _ZERO
        for status, count, total, paid in rows:
            counts[status] = count
            total_amount += _as_money(total)
            paid_amount += _as_money(paid)

        return MaterialRequestStats(
            total_requests=sum(counts.values()),
            draft=counts.get(S.DRAFT.value, 0),
            pending_approval=counts.get(S.NEW.value, 0),
            approved=sum(counts.get(s, 0) for s in APPROVED_BUCKET),
            rejected=counts.get(S.REJECTED.value, 0),
            completed=counts.get(S.COMPLETED.value, 0),
            cancelled=counts.get(S.CANCELLED.value, 0),
            total_amount=round_money(total_amount),
            paid_amount=round_money(paid_amount),
            unpaid_amount=round_money(total_amount - paid_amount),
        )

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def get_request_history(
        self,
        ctx: CallerContext,
        request_id: UUID,
    ) -> list[MaterialRequestHistoryEntry]:
        """
        The request's audit trail, newest first.

        Raises:
            RequestNotFoundError: absent or outside the caller's organization.
        """
        if self.find_by_id(ctx.organization_id, request_id) is None:
            raise RequestNotFoundError(str(request_id))

        rows = self.session.execute(
            select(MaterialRequestHistoryModel)
            .where(MaterialRequestHistoryModel.request_id == request_id)
            .where(MaterialRequestHistoryModel.organization_id == ctx.organization_id)
            .order_by(MaterialRequestHistoryModel.seq.desc())
        ).scalars().all()
        return [r.to_dto() for r in rows]
