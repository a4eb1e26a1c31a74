"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Provides strictly increasing sequence numbers and formats them into
    human-readable request numbers (``MR-2026-00001``).  Uses a dedicated
    counter table with row-level locking (``SELECT ... FOR UPDATE``) to
    guarantee uniqueness under concurrent creation.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by MaterialRequestService.create().

Invariants enforced:
    - Sequence monotonicity: the locked counter row is the sole source of
      truth for the next value.  Deriving the number from ``count() + 1``
      or an aggregate max over existing requests is FORBIDDEN.
    - Transactional: the increment is only visible after the caller's
      transaction commits.  A rollback returns the value.
    - Request numbers restart at 1 every calendar year and are global
      across organizations (one counter row per year).

Failure modes:
    - IntegrityError: concurrent counter creation race (handled via
      savepoint rollback and retry).

Audit relevance:
    Allocation is logged at DEBUG level with sequence_name and value.
"""

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from procurement_kernel.db.base import Base
from procurement_kernel.logging_config import get_logger

logger = get_logger("services.sequence")

DEFAULT_REQUEST_PREFIX = "MR"
DEFAULT_SEQUENCE_WIDTH = 5


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row represents a named sequence with its current value.
    Row-level locking ensures monotonicity under concurrency.
    """

    __tablename__ = "sequence_counters"

    # Sequence name (e.g., "material_request:2026")
    name: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )


def material_request_sequence(year: int) -> str:
    """Counter name for material request numbers issued in ``year``."""
    return f"material_request:{year}"


def format_request_number(
    year: int,
    value: int,
    prefix: str = DEFAULT_REQUEST_PREFIX,
    width: int = DEFAULT_SEQUENCE_WIDTH,
) -> str:
    """``MR-2026-00042``; values wider than ``width`` are not truncated."""
    return f"{prefix}-{year}-{value:0{width}d}"


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Contract:
        Accepts a sequence name and returns the next strictly-monotonic
        integer value.  The increment is transactional -- it is only
        committed when the caller's transaction commits.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        # SELECT ... FOR UPDATE serializes concurrent allocations.
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Get the next value for a named sequence.

        Preconditions:
            The caller is within an active database transaction.

        Postconditions:
            - Returns an integer > 0 strictly greater than any previously
              committed value for this sequence name.
            - The counter row stays locked until the transaction completes.
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            # First use of this sequence.  A savepoint keeps a lost creation
            # race from rolling back the caller's other work.
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._locked_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value of a sequence without incrementing (None if unused)."""
        counter = self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()

        return counter.current_value if counter else None

    def next_request_number(
        self,
        year: int,
        prefix: str = DEFAULT_REQUEST_PREFIX,
        width: int = DEFAULT_SEQUENCE_WIDTH,
    ) -> str:
        """Allocate the next material request number for ``year``."""
        value = self.next_value(material_request_sequence(year))
        return format_request_number(year, value, prefix=prefix, width=width)
