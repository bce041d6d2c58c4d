"""
Module: ledger_kernel.models.fiscal_period
Responsibility: ORM persistence for fiscal periods and their open -> closed
    -> locked lifecycle flags.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - start_date <= end_date (CHECK constraint).
    - is_locked implies is_closed (CHECK constraint).
    - Periods never overlap (enforced by FiscalPeriodGuard.create_period).

Audit relevance:
    closed_at/closed_by and locked_at/locked_by record who froze the period.
"""

from datetime import date, datetime
from enum import Enum

from sqlalchemy import Boolean, CheckConstraint, Date, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TimestampedBase


class PeriodStatus(str, Enum):
    """Derived lifecycle status of a fiscal period."""

    OPEN = "open"
    CLOSED = "closed"
    LOCKED = "locked"


class FiscalPeriod(TimestampedBase):
    """
    A bounded date range within which postings are permitted while open.

    Contract:
        A closed period blocks postings but may be reopened by an
        administrator.  A locked period is terminal: it blocks postings,
        reversals and reopening.
    """

    __tablename__ = "fiscal_periods"

    __table_args__ = (
        CheckConstraint("start_date <= end_date", name="ck_period_date_range"),
        CheckConstraint(
            "NOT is_locked OR is_closed", name="ck_period_locked_implies_closed"
        ),
        Index("idx_period_dates", "start_date", "end_date"),
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)

    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    is_closed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    is_locked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    closed_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    locked_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return f"<FiscalPeriod {self.name} {self.start_date}..{self.end_date} {self.status.value}>"

    @property
    def status(self) -> PeriodStatus:
        if self.is_locked:
            return PeriodStatus.LOCKED
        if self.is_closed:
            return PeriodStatus.CLOSED
        return PeriodStatus.OPEN

    @property
    def is_open(self) -> bool:
        return not self.is_closed and not self.is_locked

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date
