"""
FiscalPeriodGuard -- period resolution, open checks and lifecycle.

Responsibility:
    Resolves a date to exactly one fiscal period, rejects postings into
    closed or locked periods, and drives the open -> closed -> locked
    lifecycle (plus admin reopen of a closed period).

Architecture position:
    Kernel > Services.  Called by JournalPoster before anything is written,
    by DocumentWorkflow before a delete or reversal, and by LedgerService for
    close/lock/reopen.

Invariants enforced:
    - Periods never overlap.
    - Every posting date resolves to exactly one period or fails.
    - Locked is checked before closed (a locked period is also closed), so
      terminal year-end close always reports PeriodLockedError.
    - Close/lock/reopen take ``SELECT ... FOR UPDATE`` on the period row and
      posting reads it ``FOR SHARE``: a posting in flight when a period is
      closed either commits before the close or is rejected after it.

Failure modes:
    - NoPeriodDefinedError: no period covers the date.
    - PeriodClosedError / PeriodLockedError: period not open.
    - PeriodOverlapError: new range overlaps an existing period.
    - PeriodTransitionError: illegal lifecycle move.
    - PeriodNotFoundError: unknown period id.

Audit relevance:
    Transitions record who and when (closed_by/closed_at, locked_by/locked_at)
    and are logged at INFO; rejected postings are logged at WARNING.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select

from ledger_kernel.exceptions import (
    BusinessLogicError,
    NoPeriodDefinedError,
    PeriodClosedError,
    PeriodLockedError,
    PeriodNotFoundError,
    PeriodOverlapError,
    PeriodTransitionError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.fiscal_period import FiscalPeriod, PeriodStatus
from ledger_kernel.services.base import BaseService

logger = get_logger("services.fiscal_period_guard")


class FiscalPeriodGuard(BaseService):
    """
    Contract:
        ``period_for`` + ``assert_open`` gate every create, update or delete
        that affects a posting.

    Non-goals:
        - Does NOT run year-end closing entries.
    """

    def _find_covering(self, on_date: date, *, lock: bool) -> FiscalPeriod:
        stmt = select(FiscalPeriod).where(
            FiscalPeriod.start_date <= on_date,
            FiscalPeriod.end_date >= on_date,
        )
        if lock:
            stmt = stmt.with_for_update(read=True)
        periods = self.session.execute(stmt).scalars().all()
        if not periods:
            raise NoPeriodDefinedError(on_date)
        if len(periods) > 1:
            raise BusinessLogicError(
                f"{len(periods)} fiscal periods cover {on_date.isoformat()}; "
                "period data is inconsistent"
            )
        return periods[0]

    def period_for(self, on_date: date) -> FiscalPeriod:
        """The single period covering ``on_date``."""
        return self._find_covering(on_date, lock=False)

    def period_for_posting(self, on_date: date) -> FiscalPeriod:
        """``period_for`` with a shared row lock held until commit."""
        return self._find_covering(on_date, lock=True)

    def assert_open(self, period: FiscalPeriod) -> None:
        if period.is_locked:
            logger.warning(
                "posting_rejected_period_locked",
                extra={"period_name": period.name},
            )
            raise PeriodLockedError(period.name)
        if period.is_closed:
            logger.warning(
                "posting_rejected_period_closed",
                extra={"period_name": period.name},
            )
            raise PeriodClosedError(period.name)

    def assert_date_open(self, on_date: date) -> FiscalPeriod:
        period = self.period_for_posting(on_date)
        self.assert_open(period)
        return period

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create_period(self, name: str, start_date: date, end_date: date) -> FiscalPeriod:
        if start_date > end_date:
            raise BusinessLogicError(
                f"start_date ({start_date}) cannot be after end_date ({end_date})"
            )
        overlapping = self.session.execute(
            select(FiscalPeriod).where(
                FiscalPeriod.start_date <= end_date,
                FiscalPeriod.end_date >= start_date,
            )
        ).scalars().first()
        if overlapping is not None:
            raise PeriodOverlapError(name, overlapping.name)

        period = FiscalPeriod(
            name=name,
            start_date=start_date,
            end_date=end_date,
            is_closed=False,
            is_locked=False,
        )
        self.session.add(period)
        self.session.flush()
        logger.info(
            "period_created",
            extra={
                "period_name": name,
                "start_date": str(start_date),
                "end_date": str(end_date),
            },
        )
        return period

    def _get_period_for_update(self, period_id: UUID) -> FiscalPeriod:
        period = self.session.execute(
            select(FiscalPeriod)
            .where(FiscalPeriod.id == period_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if period is None:
            raise PeriodNotFoundError(str(period_id))
        return period

    def close_period(self, period_id: UUID, actor_id: str) -> FiscalPeriod:
        """OPEN -> CLOSED."""
        period = self._get_period_for_update(period_id)
        if period.status != PeriodStatus.OPEN:
            raise PeriodTransitionError(
                period.name, period.status.value, PeriodStatus.CLOSED.value
            )
        period.is_closed = True
        period.closed_at = self._clock.now()
        period.closed_by = actor_id
        self.session.flush()
        logger.info("period_closed", extra={"period_name": period.name, "actor_id": actor_id})
        return period

    def lock_period(self, period_id: UUID, actor_id: str) -> FiscalPeriod:
        """CLOSED -> LOCKED.  An open period is closed and locked in one step."""
        period = self._get_period_for_update(period_id)
        if period.is_locked:
            raise PeriodTransitionError(
                period.name, period.status.value, PeriodStatus.LOCKED.value
            )
        now = self._clock.now()
        if not period.is_closed:
            period.is_closed = True
            period.closed_at = now
            period.closed_by = actor_id
        period.is_locked = True
        period.locked_at = now
        period.locked_by = actor_id
        self.session.flush()
        logger.info("period_locked", extra={"period_name": period.name, "actor_id": actor_id})
        return period

    def reopen_period(self, period_id: UUID, actor_id: str) -> FiscalPeriod:
        """CLOSED -> OPEN.  Locked periods never reopen."""
        period = self._get_period_for_update(period_id)
        if period.status != PeriodStatus.CLOSED:
            raise PeriodTransitionError(
                period.name, period.status.value, PeriodStatus.OPEN.value
            )
        period.is_closed = False
        period.closed_at = None
        period.closed_by = None
        self.session.flush()
        logger.info("period_reopened", extra={"period_name": period.name, "actor_id": actor_id})
        return period
