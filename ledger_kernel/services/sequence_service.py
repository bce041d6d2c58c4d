"""
SequenceService -- monotonic voucher numbers via locked counter rows.

Responsibility:
    Allocates strictly increasing values per named sequence and formats
    voucher numbers such as ``JV-000001``.  The locked counter row is the
    only source of the next value; MAX()+1 over journal_entries is never used.

Invariants enforced:
    - Monotonic per sequence name under concurrency
      (``SELECT ... FOR UPDATE`` on the counter row).
    - Transactional: a rolled-back posting returns its number.

Failure modes:
    - IntegrityError on a concurrent first use of a sequence, handled by a
      savepoint rollback and re-read.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


def format_voucher_number(prefix: str, value: int, padding: int = 6) -> str:
    return f"{prefix}-{value:0{padding}d}"


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Usage:
        seq = SequenceService(session).next_value("voucher:JV")
    """

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
        Lock the sequence row (creating it on first use), increment, return.

        The increment is only committed when the caller's transaction commits.
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
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
        counter = self._session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
        return counter.current_value if counter else None

    def next_voucher_number(self, prefix: str, padding: int = 6) -> str:
        return format_voucher_number(prefix, self.next_value(f"voucher:{prefix}"), padding)
