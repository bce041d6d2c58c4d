"""
Module: ledger_kernel.models.currency
Responsibility: ORM persistence for currency policies and the append-only
    exchange-rate history.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - currency_policies.code is unique; exactly one policy is active
      (enforced by CurrencyPolicyService.activate under row locks).
    - exchange_rate_history rows are append-only: the ORM rejects UPDATE and
      DELETE of a persisted rate.
    - rate > 0 (CHECK constraint).

Audit relevance:
    Every conversion can be reproduced from the history row that recorded
    the rate it used.
"""

from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Index,
    Numeric,
    String,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TimestampedBase
from ledger_kernel.db.types import Rate
from ledger_kernel.exceptions import ImmutabilityViolationError


class CurrencyPolicy(TimestampedBase):
    """
    Tenant-wide rule for whether and when foreign amounts are converted.

    Enum-valued columns hold the values of the enums in
    ``ledger_kernel.domain.currency_policy``.
    """

    __tablename__ = "currency_policies"

    __table_args__ = (UniqueConstraint("code", name="uq_currency_policy_code"),)

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    policy_type: Mapped[str] = mapped_column(String(30), nullable=False)

    conversion_timing: Mapped[str] = mapped_column(String(20), nullable=False)

    reference_currency: Mapped[str] = mapped_column(String(3), nullable=False)

    requires_reference_currency: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )

    allow_multi_currency_balances: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    revaluation_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    revaluation_frequency: Mapped[str | None] = mapped_column(String(20), nullable=True)

    exchange_rate_source: Mapped[str] = mapped_column(String(20), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<CurrencyPolicy {self.code} {self.policy_type} active={self.is_active}>"


class ExchangeRateHistory(TimestampedBase):
    """
    One recorded rate: 1 unit of from_currency = rate units of to_currency.

    Contract:
        Append-only.  Corrections are new rows with a later recorded_at; the
        lookup picks the latest row for the effective date.
    """

    __tablename__ = "exchange_rate_history"

    __table_args__ = (
        CheckConstraint("rate > 0", name="ck_rate_positive"),
        Index(
            "idx_rate_pair_date",
            "from_currency",
            "to_currency",
            "effective_date",
        ),
    )

    from_currency: Mapped[str] = mapped_column(String(3), nullable=False)

    to_currency: Mapped[str] = mapped_column(String(3), nullable=False)

    rate: Mapped[Rate] = mapped_column(Numeric(24, 8), nullable=False)

    effective_date: Mapped[date] = mapped_column(Date, nullable=False)

    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    source: Mapped[str] = mapped_column(String(20), nullable=False)

    source_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    created_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<ExchangeRateHistory {self.from_currency}/{self.to_currency} "
            f"{self.rate} @ {self.effective_date}>"
        )


@event.listens_for(ExchangeRateHistory, "before_update")
def _reject_rate_update(mapper, connection, target):
    raise ImmutabilityViolationError("exchange_rate_history", str(target.id))


@event.listens_for(ExchangeRateHistory, "before_delete")
def _reject_rate_delete(mapper, connection, target):
    raise ImmutabilityViolationError("exchange_rate_history", str(target.id))
