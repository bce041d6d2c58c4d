"""
Module: ledger_kernel.models.account
Responsibility: ORM persistence for the chart of accounts, the target of
    every journal line.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - code is unique.
    - A child account has the same account_type as its parent (enforced by
      AccountRegistry at creation, so balances aggregate up the tree with
      one normal side).

Failure modes:
    - AccountNotFoundError when a posting references an unknown code.
    - InvalidPostingTargetError when a posting targets a parent account.
    - AccountReferencedError when deletion is attempted on a used account.

Audit relevance:
    Accounts referenced by journal lines are never hard-deleted; they are
    deactivated so historical lines keep their meaning.
"""

from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TimestampedBase, UUIDString

if TYPE_CHECKING:
    from ledger_kernel.models.journal import JournalEntryLine


class AccountType(str, Enum):
    """Types of accounts in the chart of accounts."""

    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    REVENUE = "revenue"
    EXPENSE = "expense"


class NormalBalance(str, Enum):
    """Normal balance side for an account."""

    DEBIT = "debit"
    CREDIT = "credit"


_NORMAL_BALANCE: dict[AccountType, NormalBalance] = {
    AccountType.ASSET: NormalBalance.DEBIT,
    AccountType.EXPENSE: NormalBalance.DEBIT,
    AccountType.LIABILITY: NormalBalance.CREDIT,
    AccountType.EQUITY: NormalBalance.CREDIT,
    AccountType.REVENUE: NormalBalance.CREDIT,
}


def normal_balance_for(account_type: AccountType | str) -> NormalBalance:
    return _NORMAL_BALANCE[AccountType(account_type)]


class Account(TimestampedBase):
    """
    Chart of accounts entry.

    Contract:
        Accounts form a tree through parent_id.  Only leaf accounts receive
        postings when ``prevent_posting_to_parent_accounts`` is enabled.

    Guarantees:
        - code is unique and non-null.
        - account_type is one of ASSET, LIABILITY, EQUITY, REVENUE, EXPENSE.

    Non-goals:
        - Does NOT decide postability; that is AccountRegistry, because the
          rule depends on configuration read at call time.
    """

    __tablename__ = "accounts"

    __table_args__ = (
        UniqueConstraint("code", name="uq_account_code"),
        Index("idx_account_parent", "parent_id"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    account_type: Mapped[AccountType] = mapped_column(String(20), nullable=False)

    parent_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=True,
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    parent: Mapped["Account | None"] = relationship(
        back_populates="children",
        remote_side="Account.id",
    )

    children: Mapped[list["Account"]] = relationship(back_populates="parent")

    journal_lines: Mapped[list["JournalEntryLine"]] = relationship(
        back_populates="account",
        lazy="dynamic",
    )

    def __repr__(self) -> str:
        return f"<Account {self.code}: {self.name}>"

    @property
    def normal_balance(self) -> NormalBalance:
        return normal_balance_for(self.account_type)

    @property
    def is_debit_normal(self) -> bool:
        return self.normal_balance == NormalBalance.DEBIT

    @property
    def is_leaf(self) -> bool:
        return not self.children
