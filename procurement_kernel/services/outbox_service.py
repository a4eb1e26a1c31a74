"""
Outbox services -- transactional publish and after-commit dispatch.

Responsibility:
    ``OutboxPublisher`` adds a domain event row to the caller's session so
    that the event commits (or rolls back) together with the change it
    describes.  ``OutboxDispatcher`` later reads committed, undelivered
    rows and hands them to in-process subscribers.

Architecture position:
    Kernel > Services.  The publisher never commits; the dispatcher owns
    its own short transactions via a session factory.

Invariants enforced:
    - At-least-once delivery: a row is marked delivered only after every
      matching handler returned normally.
    - A handler failure never touches the committed domain change; it is
      recorded on the outbox row (attempt_count, last_error) and retried
      after a capped exponential backoff.
    - Rows are dispatched in (created_at, aggregate_id, seq) order, so the
      events of one aggregate are delivered in the order they happened.

Failure modes:
    - Handler exceptions are logged with traceback and recorded on the row;
      the dispatcher continues with the next row.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.logging_config import get_logger
from procurement_kernel.models.outbox import OutboxEvent

logger = get_logger("services.outbox")

MAX_BACKOFF_SECONDS = 600


@dataclass(frozen=True)
class OutboxMessage:
    """Read-only view of an outbox row handed to subscribers."""

    event_id: UUID
    seq: int
    topic: str
    payload: dict[str, Any]
    aggregate_id: UUID
    organization_id: str | None
    created_at: datetime

    @classmethod
    def from_row(cls, row: OutboxEvent) -> OutboxMessage:
        return cls(
            event_id=row.id,
            seq=row.seq,
            topic=row.topic,
            payload=dict(row.payload or {}),
            aggregate_id=row.aggregate_id,
            organization_id=row.organization_id,
            created_at=row.created_at,
        )


Handler = Callable[[OutboxMessage], None]


@dataclass(frozen=True)
class DispatchResult:
    delivered: int = 0
    failed: int = 0
    failed_event_ids: tuple[UUID, ...] = field(default_factory=tuple)


def pattern_matches(pattern: str, topic: str) -> bool:
    """
    Topic pattern matching.

    Supported:
      - exact match
      - ``prefix.*`` (matches every topic under ``prefix.``)
      - ``*`` (matches everything)
    """
    if not pattern:
        return False
    if pattern == "*" or pattern == topic:
        return True
    if pattern.endswith(".*"):
        return topic.startswith(pattern[:-1])
    return False


def backoff_delay(attempt_count: int) -> timedelta:
    """Exponential backoff capped at ten minutes."""
    return timedelta(seconds=min(MAX_BACKOFF_SECONDS, 2 ** min(attempt_count, 10)))


class OutboxPublisher:
    """
    Writes domain events into the caller's transaction.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def publish(
        self,
        topic: str,
        payload: dict[str, Any],
        *,
        aggregate_id: UUID,
        seq: int,
        organization_id: str | None = None,
    ) -> OutboxEvent:
        """
        Add one event row for ``aggregate_id``.

        ``seq`` is supplied by the caller (the aggregate's version) and must
        increase with every event of the same aggregate.
        """
        now = self._clock.now()
        event = OutboxEvent(
            seq=seq,
            topic=topic,
            payload=payload or {},
            aggregate_id=aggregate_id,
            organization_id=organization_id,
            created_at=now,
            available_at=now,
            attempt_count=0,
            delivered=False,
        )
        self._session.add(event)
        self._session.flush()
        logger.debug(
            "outbox_event_published",
            extra={"topic": topic, "seq": event.seq, "aggregate_id": aggregate_id},
        )
        return event


class OutboxDispatcher:
    """
    Delivers committed outbox rows to in-process subscribers.

    Usage:
        dispatcher = OutboxDispatcher(get_session_factory())
        dispatcher.subscribe("material-request.*", notify_procurement_team)
        dispatcher.dispatch_pending()
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._subscriptions: list[tuple[str, Handler]] = []

    def subscribe(self, pattern: str, handler: Handler) -> None:
        self._subscriptions.append((pattern, handler))
        logger.info(
            "outbox_subscription_added",
            extra={"pattern": pattern, "handler": getattr(handler, "__name__", repr(handler))},
        )

    def handlers_for(self, topic: str) -> list[Handler]:
        return [h for p, h in self._subscriptions if pattern_matches(p, topic)]

    def dispatch_pending(self, limit: int = 50) -> DispatchResult:
        """
        Deliver up to ``limit`` due, undelivered events, oldest first.

        Rows without a matching subscriber are marked delivered so the
        queue does not grow without bound.
        """
        session = self._session_factory()
        delivered = 0
        failed: list[UUID] = []
        try:
            now = self._clock.now()
            rows = session.execute(
                select(OutboxEvent)
                .where(OutboxEvent.delivered.is_(False))
                .where(OutboxEvent.available_at <= now)
                .order_by(
                    OutboxEvent.created_at.asc(),
                    OutboxEvent.aggregate_id.asc(),
                    OutboxEvent.seq.asc(),
                )
                .limit(limit)
            ).scalars().all()

            for row in rows:
                error = self._deliver(row)
                if error is None:
                    row.delivered = True
                    row.delivered_at = now
                    row.last_error = None
                    delivered += 1
                else:
                    row.attempt_count = (row.attempt_count or 0) + 1
                    row.last_error = error
                    row.available_at = now + backoff_delay(row.attempt_count)
                    failed.append(row.id)

            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        if delivered or failed:
            logger.info(
                "outbox_dispatch_completed",
                extra={"delivered": delivered, "failed": len(failed)},
            )
        return DispatchResult(
            delivered=delivered,
            failed=len(failed),
            failed_event_ids=tuple(failed),
        )

    def _deliver(self, row: OutboxEvent) -> str | None:
        """Run every matching handler; return the last error message, if any."""
        message = OutboxMessage.from_row(row)
        error: str | None = None
        for handler in self.handlers_for(row.topic):
            try:
                handler(message)
            except Exception as exc:
                error = f"{type(exc).__name__}: {exc}"
                logger.warning(
                    "outbox_handler_failed",
                    extra={
                        "topic": row.topic,
                        "seq": row.seq,
                        "handler": getattr(handler, "__name__", repr(handler)),
                        "attempt": (row.attempt_count or 0) + 1,
                    },
                    exc_info=True,
                )
        return error
