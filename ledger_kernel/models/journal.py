"""
Module: ledger_kernel.models.journal
Responsibility: ORM persistence for journal entry headers and their lines,
    the durable record of every ledger posting.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - A JournalEntry exclusively owns its lines (cascade "all, delete-orphan"
      plus ON DELETE CASCADE); both are written in one transaction.
    - debit >= 0 and credit >= 0 on every line (CHECK constraints).
    - Exactly one of debit/credit is non-zero (CHECK constraint).
    - voucher_number is unique.
    - Balance (sum of debits == sum of credits) is enforced by JournalPoster
      before any row is written.

Failure modes:
    - IntegrityError on duplicate voucher_number or a negative amount.

Audit relevance:
    Entries are never updated in place.  Corrections are compensating
    entries that point back through reversal_of_id.
"""

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TimestampedBase, UUIDString
from ledger_kernel.db.types import Amount, Rate

if TYPE_CHECKING:
    from ledger_kernel.models.account import Account
    from ledger_kernel.models.fiscal_period import FiscalPeriod


class JournalEntry(TimestampedBase):
    """
    Journal entry header.

    Contract:
        Created together with its lines by JournalPoster inside a single
        transaction.  Immutable afterwards.

    Guarantees:
        - fiscal_period_id is derived from entry_date, never supplied.
        - entry_metadata records conversion decisions and source currency.
    """

    __tablename__ = "journal_entries"

    __table_args__ = (
        UniqueConstraint("voucher_number", name="uq_journal_voucher_number"),
        Index("idx_journal_entry_date", "entry_date"),
        Index("idx_journal_reference", "reference_type", "reference_id"),
        Index("idx_journal_reversal_of", "reversal_of_id"),
    )

    voucher_number: Mapped[str] = mapped_column(String(50), nullable=False)

    description: Mapped[str] = mapped_column(String(1000), nullable=False)

    entry_date: Mapped[date] = mapped_column(Date, nullable=False)

    fiscal_period_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("fiscal_periods.id"),
        nullable=False,
    )

    # Actor id as supplied by the authorization layer
    created_by: Mapped[str] = mapped_column(String(100), nullable=False)

    # Reference currency of every debit/credit on the lines
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    # Source document, e.g. ("invoice", "<uuid>")
    reference_type: Mapped[str | None] = mapped_column(String(50), nullable=True)

    reference_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    reversal_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=True,
    )

    entry_metadata: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    lines: Mapped[list["JournalEntryLine"]] = relationship(
        back_populates="entry",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="JournalEntryLine.line_number",
    )

    fiscal_period: Mapped["FiscalPeriod"] = relationship()

    reversal_of: Mapped["JournalEntry | None"] = relationship(
        remote_side="JournalEntry.id",
        foreign_keys=[reversal_of_id],
    )

    def __repr__(self) -> str:
        return f"<JournalEntry {self.voucher_number} {self.entry_date}>"

    @property
    def total_debits(self) -> Decimal:
        return sum((line.debit for line in self.lines), Decimal("0"))

    @property
    def total_credits(self) -> Decimal:
        return sum((line.credit for line in self.lines), Decimal("0"))

    @property
    def is_reversal(self) -> bool:
        return self.reversal_of_id is not None


class JournalEntryLine(TimestampedBase):
    """
    One debit or credit against one account.

    original_currency/original_amount/exchange_rate are populated when the
    line was converted from a foreign currency (or deferred, in which case
    exchange_rate is NULL).
    """

    __tablename__ = "journal_entry_lines"

    __table_args__ = (
        CheckConstraint("debit >= 0", name="ck_line_debit_non_negative"),
        CheckConstraint("credit >= 0", name="ck_line_credit_non_negative"),
        CheckConstraint(
            "(debit = 0 AND credit > 0) OR (debit > 0 AND credit = 0)",
            name="ck_line_one_side",
        ),
        UniqueConstraint("journal_entry_id", "line_number", name="uq_line_number"),
        Index("idx_line_entry", "journal_entry_id"),
        Index("idx_line_account", "account_id"),
    )

    journal_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id", ondelete="CASCADE"),
        nullable=False,
    )

    line_number: Mapped[int] = mapped_column(Integer, nullable=False)

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    debit: Mapped[Amount] = mapped_column(Numeric(18, 4), nullable=False, default=Decimal("0"))

    credit: Mapped[Amount] = mapped_column(Numeric(18, 4), nullable=False, default=Decimal("0"))

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    original_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)

    original_amount: Mapped[Amount | None] = mapped_column(Numeric(18, 4), nullable=True)

    exchange_rate: Mapped[Rate | None] = mapped_column(Numeric(24, 8), nullable=True)

    entry: Mapped["JournalEntry"] = relationship(back_populates="lines")

    account: Mapped["Account"] = relationship(back_populates="journal_lines")

    def __repr__(self) -> str:
        return f"<JournalEntryLine #{self.line_number} Dr {self.debit} Cr {self.credit}>"
