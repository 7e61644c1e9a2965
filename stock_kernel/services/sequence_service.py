"""
SequenceService -- monotonic numbers from locked counter rows.

Used for GRN numbers, transfer references and, on SQLite, movement
``seq``.  On PostgreSQL movement ``seq`` comes from the database sequence
STOCK_MOVEMENT_SEQ instead, so a movement write never waits on a global
counter row.  Counter values always come from the locked row; MAX()+1
over the target table is never used, because two transactions could both
read the same maximum.

A counter increment is part of the caller's transaction: a rollback
returns the value, so GRN numbers are gap free.  The PostgreSQL sequence
is not transactional and may leave gaps in ``seq``; only order matters.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stock_kernel.logging_config import get_logger
from stock_kernel.models.movement import STOCK_MOVEMENT_SEQ
from stock_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """
    Allocates the next value of a named sequence.

    Usage:
        seq = SequenceService(session).next_movement_seq()
    """

    STOCK_MOVEMENT = "stock_movement"
    GRN_NUMBER = "grn_number"
    TRANSFER = "transfer"

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Lock the counter row (creating it on first use), increment, return.

        The row stays locked until the caller's transaction ends, so values
        are handed out in commit order.
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            # Another transaction may create the counter at the same time;
            # the savepoint keeps the rest of our work if we lose that race.
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

    def next_movement_seq(self) -> int:
        """
        Next movement ``seq``.

        Callers hold the (product, location) row lock, so for one pair the
        values still follow commit order.  SQLite already serializes
        writers, so the counter row costs nothing there.
        """
        if self._session.get_bind().dialect.name == "postgresql":
            return self._session.execute(select(STOCK_MOVEMENT_SEQ.next_value())).scalar_one()
        return self.next_value(self.STOCK_MOVEMENT)

    def current_value(self, sequence_name: str) -> int:
        """Current value without incrementing; 0 if never used."""
        value = self._session.execute(
            select(SequenceCounter.current_value).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
        return value or 0

    def next_formatted(self, sequence_name: str, prefix: str, width: int) -> str:
        """Next value rendered as ``<prefix><zero padded value>``, e.g. GRN-000001."""
        return format_sequence(prefix, self.next_value(sequence_name), width)


def format_sequence(prefix: str, value: int, width: int) -> str:
    return f"{prefix}{value:0{width}d}"
