"""
AccountRegistry -- chart of accounts lookups and maintenance.

Responsibility:
    Resolves account codes to postable leaf accounts and maintains the
    account tree (create, deactivate, guarded delete).

Architecture position:
    Kernel > Services.  Called by JournalPoster for every line, and by
    administrative callers for chart maintenance.

Invariants enforced:
    - With ``accounting.prevent_posting_to_parent_accounts`` on, only leaf
      accounts accept postings (read from settings on every call).
    - A child account has its parent's account_type.
    - Accounts referenced by journal lines are never hard-deleted.

Failure modes:
    - AccountNotFoundError: unknown code or id.
    - AccountInactiveError: deactivated account targeted by a posting.
    - InvalidPostingTargetError: parent account targeted under strict posting.
    - AccountHierarchyError: duplicate code or parent type mismatch.
    - AccountReferencedError: delete of a used or parent account.
"""

from uuid import UUID

from sqlalchemy import func, select

from ledger_kernel.exceptions import (
    AccountHierarchyError,
    AccountInactiveError,
    AccountNotFoundError,
    AccountReferencedError,
    InvalidPostingTargetError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account, AccountType
from ledger_kernel.models.journal import JournalEntryLine
from ledger_kernel.services.base import BaseService

logger = get_logger("services.account_registry")


class AccountRegistry(BaseService):
    """
    Contract:
        Read-mostly.  ``resolve_leaf_account`` is the only way the posting
        engine turns a code into an Account.

    Non-goals:
        - Does NOT compute balances (LedgerSelector does).
    """

    def get_by_code(self, code: str) -> Account:
        account = self.session.execute(
            select(Account).where(Account.code == code)
        ).scalar_one_or_none()
        if account is None:
            raise AccountNotFoundError(code)
        return account

    def get_by_id(self, account_id: UUID) -> Account:
        account = self.session.get(Account, account_id)
        if account is None:
            raise AccountNotFoundError(str(account_id))
        return account

    def child_count(self, account: Account) -> int:
        return self.session.execute(
            select(func.count()).select_from(Account).where(Account.parent_id == account.id)
        ).scalar_one()

    def is_postable(self, account: Account) -> bool:
        """False if the account has children and strict posting is enabled."""
        if not self.settings.accounting.prevent_posting_to_parent_accounts:
            return True
        return self.child_count(account) == 0

    def resolve_leaf_account(self, code: str) -> Account:
        """
        Resolve ``code`` to an account that may receive postings.

        Raises:
            AccountNotFoundError, AccountInactiveError, InvalidPostingTargetError
        """
        account = self.get_by_code(code)
        if not account.is_active:
            raise AccountInactiveError(code)
        if not self.is_postable(account):
            raise InvalidPostingTargetError(code, self.child_count(account))
        return account

    def create_account(
        self,
        code: str,
        name: str,
        account_type: AccountType | str,
        parent_code: str | None = None,
    ) -> Account:
        account_type = AccountType(account_type)
        existing = self.session.execute(
            select(Account.id).where(Account.code == code)
        ).scalar_one_or_none()
        if existing is not None:
            raise AccountHierarchyError(code, "code already exists")

        parent = None
        if parent_code is not None:
            parent = self.get_by_code(parent_code)
            if AccountType(parent.account_type) != account_type:
                raise AccountHierarchyError(
                    code,
                    f"type {account_type.value} differs from parent "
                    f"{parent.code} ({AccountType(parent.account_type).value})",
                )

        account = Account(
            code=code,
            name=name,
            account_type=account_type.value,
            parent_id=parent.id if parent else None,
            is_active=True,
        )
        self.session.add(account)
        self.session.flush()
        logger.info(
            "account_created",
            extra={"account_code": code, "account_type": account_type.value, "parent_code": parent_code},
        )
        return account

    def deactivate(self, code: str) -> Account:
        account = self.get_by_code(code)
        account.is_active = False
        self.session.flush()
        logger.info("account_deactivated", extra={"account_code": code})
        return account

    def delete(self, code: str) -> None:
        """Hard-delete an account nothing references."""
        account = self.get_by_code(code)
        line_count = self.session.execute(
            select(func.count())
            .select_from(JournalEntryLine)
            .where(JournalEntryLine.account_id == account.id)
        ).scalar_one()
        children = self.child_count(account)
        if line_count or children:
            raise AccountReferencedError(code, line_count, children)
        self.session.delete(account)
        self.session.flush()
        logger.info("account_deleted", extra={"account_code": code})
