"""
SequenceService -- human-readable numbering from locked counter rows.

Recurring orders are numbered ``RO-000001``, ``RO-000002``, ... and each
order numbers its executions 1, 2, 3, ...  Both come from rows in
``sequence_counters`` locked with ``SELECT ... FOR UPDATE``, so several
engine processes can allocate against the same database.

Invariants enforced:
    - Values per counter name are strictly increasing and start at 1.
    - The locked counter row is the only source of truth; numbers are never
      derived from the tables they label.
    - An allocation becomes visible to others only when the caller commits,
      and a rollback gives the number back.

Failure modes:
    - IntegrityError from two sessions creating the same counter at once is
      absorbed by a savepoint; the loser re-reads the winner's row.
"""

from uuid import UUID

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from procurement_kernel.db.base import Base
from procurement_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class SequenceService:
    """Allocates order references and execution cycle numbers.

    Flushes only; the caller owns the transaction.
    """

    RECURRING_ORDER = "recurring_order"
    EXECUTION_PREFIX = "order_execution"
    REFERENCE_FORMAT = "RO-{:06d}"

    def __init__(self, session: Session):
        self._session = session

    @classmethod
    def execution_sequence_name(cls, recurring_order_id: UUID | str) -> str:
        return f"{cls.EXECUTION_PREFIX}:{recurring_order_id}"

    def next_reference(self) -> str:
        """Next recurring order reference, e.g. ``RO-000042``."""
        return self.REFERENCE_FORMAT.format(self.next_value(self.RECURRING_ORDER))

    def next_execution_sequence(self, recurring_order_id: UUID | str) -> int:
        """Next cycle number for one recurring order's executions."""
        return self.next_value(self.execution_sequence_name(recurring_order_id))

    def next_value(self, sequence_name: str) -> int:
        counter = self._locked_counter(sequence_name) or self._create_counter(sequence_name)
        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Last allocated value, or None if the counter was never used."""
        return self._session.execute(
            select(SequenceCounter.current_value).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()

    def _create_counter(self, sequence_name: str) -> SequenceCounter:
        savepoint = self._session.begin_nested()
        try:
            counter = SequenceCounter(name=sequence_name, current_value=0)
            self._session.add(counter)
            self._session.flush()
        except IntegrityError:
            savepoint.rollback()
            logger.debug("sequence_counter_race", extra={"sequence_name": sequence_name})
            counter = self._locked_counter(sequence_name)
            if counter is None:
                raise
            return counter
        savepoint.commit()
        return counter

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
