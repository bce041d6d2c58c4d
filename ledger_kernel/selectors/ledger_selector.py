"""
Module: ledger_kernel.selectors.ledger_selector
Responsibility: Read-only ledger queries: account balances (including
    descendants), trial balance, entry lines, entries by source document and
    per-currency balances.
Architecture position: Kernel > Selectors.  May import from models/, db/ and
    selectors/base.py.

Invariants enforced:
    - No stored balances.  All figures derive from journal_entry_lines.
    - Sums are returned as Decimal; SQLite returns floats for SUM(), so every
      aggregate passes through to_decimal().
    - Normal-side balances: asset and expense are debit - credit, everything
      else credit - debit.

Failure modes:
    - AccountNotFoundError for an unknown account code.
    - JournalEntryNotFoundError for an unknown entry id.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import case, func, select

from ledger_kernel.db.types import ZERO, round_amount, to_decimal
from ledger_kernel.exceptions import AccountNotFoundError, JournalEntryNotFoundError
from ledger_kernel.models.account import Account, NormalBalance, normal_balance_for
from ledger_kernel.models.journal import JournalEntry, JournalEntryLine
from ledger_kernel.selectors.base import BaseSelector

# Tolerance used when judging whether a trial balance is balanced
BALANCE_TOLERANCE = Decimal("0.001")


def _amount(value: object) -> Decimal:
    """Aggregate to Decimal at stored precision (SQLite sums are floats)."""
    return round_amount(to_decimal(value))


def _normal_side_balance(account_type: str, debits: Decimal, credits: Decimal) -> Decimal:
    if normal_balance_for(account_type) == NormalBalance.DEBIT:
        return debits - credits
    return credits - debits


@dataclass(frozen=True)
class AccountBalance:
    """Balance of one account and its descendants."""

    account_code: str
    account_name: str
    account_type: str
    currency: str | None
    debit_total: Decimal
    credit_total: Decimal
    line_count: int

    @property
    def balance(self) -> Decimal:
        """Balance on the account's normal side."""
        return _normal_side_balance(self.account_type, self.debit_total, self.credit_total)


@dataclass(frozen=True)
class TrialBalanceRow:
    account_code: str
    account_name: str
    account_type: str
    currency: str
    debit_total: Decimal
    credit_total: Decimal

    @property
    def debit_balance(self) -> Decimal:
        net = self.debit_total - self.credit_total
        return net if net > ZERO else ZERO

    @property
    def credit_balance(self) -> Decimal:
        net = self.credit_total - self.debit_total
        return net if net > ZERO else ZERO


@dataclass(frozen=True)
class TrialBalance:
    as_of: date | None
    rows: tuple[TrialBalanceRow, ...]

    @property
    def total_debits(self) -> Decimal:
        return sum((row.debit_balance for row in self.rows), ZERO)

    @property
    def total_credits(self) -> Decimal:
        return sum((row.credit_balance for row in self.rows), ZERO)

    def totals_by_currency(self) -> dict[str, tuple[Decimal, Decimal]]:
        totals: dict[str, list[Decimal]] = defaultdict(lambda: [ZERO, ZERO])
        for row in self.rows:
            totals[row.currency][0] += row.debit_balance
            totals[row.currency][1] += row.credit_balance
        return {currency: (dr, cr) for currency, (dr, cr) in totals.items()}

    @property
    def is_balanced(self) -> bool:
        """Balanced within tolerance in every currency."""
        return all(
            abs(dr - cr) <= BALANCE_TOLERANCE for dr, cr in self.totals_by_currency().values()
        )


@dataclass(frozen=True)
class EntryLineView:
    line_number: int
    account_code: str
    debit: Decimal
    credit: Decimal
    description: str | None
    original_currency: str | None
    original_amount: Decimal | None
    exchange_rate: Decimal | None


@dataclass(frozen=True)
class EntryView:
    entry_id: UUID
    voucher_number: str
    entry_date: date
    description: str
    currency: str
    created_by: str
    reference_type: str | None
    reference_id: str | None
    reversal_of_id: UUID | None
    period_name: str
    metadata: dict | None
    lines: tuple[EntryLineView, ...]

    @property
    def total_debits(self) -> Decimal:
        return sum((line.debit for line in self.lines), ZERO)

    @property
    def total_credits(self) -> Decimal:
        return sum((line.credit for line in self.lines), ZERO)


@dataclass(frozen=True)
class CurrencyBalance:
    currency: str
    debit_total: Decimal
    credit_total: Decimal
    balance: Decimal


class LedgerSelector(BaseSelector):
    """
    Contract:
        Every query optionally cuts off at ``as_of`` (entry_date <= as_of).

    Non-goals:
        - Does NOT convert between currencies; figures are in the currency
          the entries were posted in.
    """

    def _account(self, code: str) -> Account:
        account = self.session.execute(
            select(Account).where(Account.code == code)
        ).scalar_one_or_none()
        if account is None:
            raise AccountNotFoundError(code)
        return account

    def _subtree_ids(self, root: Account) -> list[UUID]:
        """The account and every descendant, breadth first."""
        ids = [root.id]
        frontier = [root.id]
        while frontier:
            frontier = list(
                self.session.execute(
                    select(Account.id).where(Account.parent_id.in_(frontier))
                ).scalars()
            )
            ids.extend(frontier)
        return ids

    def account_balance(
        self,
        code: str,
        as_of: date | None = None,
        currency: str | None = None,
    ) -> AccountBalance:
        account = self._account(code)
        stmt = (
            select(
                func.coalesce(func.sum(JournalEntryLine.debit), 0),
                func.coalesce(func.sum(JournalEntryLine.credit), 0),
                func.count(JournalEntryLine.id),
            )
            .join(JournalEntry, JournalEntry.id == JournalEntryLine.journal_entry_id)
            .where(JournalEntryLine.account_id.in_(self._subtree_ids(account)))
        )
        if as_of is not None:
            stmt = stmt.where(JournalEntry.entry_date <= as_of)
        if currency is not None:
            stmt = stmt.where(JournalEntry.currency == currency)
        debits, credits, count = self.session.execute(stmt).one()
        return AccountBalance(
            account_code=account.code,
            account_name=account.name,
            account_type=account.account_type,
            currency=currency,
            debit_total=_amount(debits),
            credit_total=_amount(credits),
            line_count=count,
        )

    def trial_balance(self, as_of: date | None = None, currency: str | None = None) -> TrialBalance:
        """One row per (leaf account, entry currency) with activity."""
        stmt = (
            select(
                Account.code,
                Account.name,
                Account.account_type,
                JournalEntry.currency,
                func.sum(JournalEntryLine.debit),
                func.sum(JournalEntryLine.credit),
            )
            .join(JournalEntry, JournalEntry.id == JournalEntryLine.journal_entry_id)
            .join(Account, Account.id == JournalEntryLine.account_id)
            .group_by(Account.code, Account.name, Account.account_type, JournalEntry.currency)
            .order_by(JournalEntry.currency, Account.code)
        )
        if as_of is not None:
            stmt = stmt.where(JournalEntry.entry_date <= as_of)
        if currency is not None:
            stmt = stmt.where(JournalEntry.currency == currency)

        rows = tuple(
            TrialBalanceRow(
                account_code=code,
                account_name=name,
                account_type=account_type,
                currency=row_currency,
                debit_total=_amount(debits),
                credit_total=_amount(credits),
            )
            for code, name, account_type, row_currency, debits, credits in self.session.execute(stmt)
        )
        return TrialBalance(as_of=as_of, rows=rows)

    def get_entry(self, entry_id: UUID) -> EntryView:
        entry = self.session.get(JournalEntry, entry_id)
        if entry is None:
            raise JournalEntryNotFoundError(str(entry_id))
        return EntryView(
            entry_id=entry.id,
            voucher_number=entry.voucher_number,
            entry_date=entry.entry_date,
            description=entry.description,
            currency=entry.currency,
            created_by=entry.created_by,
            reference_type=entry.reference_type,
            reference_id=entry.reference_id,
            reversal_of_id=entry.reversal_of_id,
            period_name=entry.fiscal_period.name,
            metadata=entry.entry_metadata,
            lines=tuple(self.entry_lines(entry.id)),
        )

    def entry_lines(self, entry_id: UUID) -> list[EntryLineView]:
        rows = self.session.execute(
            select(JournalEntryLine, Account.code)
            .join(Account, Account.id == JournalEntryLine.account_id)
            .where(JournalEntryLine.journal_entry_id == entry_id)
            .order_by(JournalEntryLine.line_number)
        ).all()
        return [
            EntryLineView(
                line_number=line.line_number,
                account_code=code,
                debit=to_decimal(line.debit),
                credit=to_decimal(line.credit),
                description=line.description,
                original_currency=line.original_currency,
                original_amount=(
                    to_decimal(line.original_amount) if line.original_amount is not None else None
                ),
                exchange_rate=(
                    to_decimal(line.exchange_rate) if line.exchange_rate is not None else None
                ),
            )
            for line, code in rows
        ]

    def entries_for_reference(self, reference_type: str, reference_id: str) -> list[EntryView]:
        ids = self.session.execute(
            select(JournalEntry.id)
            .where(
                JournalEntry.reference_type == reference_type,
                JournalEntry.reference_id == str(reference_id),
            )
            .order_by(JournalEntry.entry_date, JournalEntry.voucher_number)
        ).scalars()
        return [self.get_entry(entry_id) for entry_id in ids]

    def currency_balances(self, code: str, as_of: date | None = None) -> list[CurrencyBalance]:
        """
        Balance of one account grouped by the currency each line was
        originally posted in.  Zero balances are omitted.
        """
        account = self._account(code)
        line_currency = func.coalesce(JournalEntryLine.original_currency, JournalEntry.currency)
        debit_amount = case(
            (JournalEntryLine.debit > 0,
             func.coalesce(JournalEntryLine.original_amount, JournalEntryLine.debit)),
            else_=0,
        )
        credit_amount = case(
            (JournalEntryLine.credit > 0,
             func.coalesce(JournalEntryLine.original_amount, JournalEntryLine.credit)),
            else_=0,
        )
        stmt = (
            select(line_currency, func.sum(debit_amount), func.sum(credit_amount))
            .join(JournalEntry, JournalEntry.id == JournalEntryLine.journal_entry_id)
            .where(JournalEntryLine.account_id.in_(self._subtree_ids(account)))
            .group_by(line_currency)
            .order_by(line_currency)
        )
        if as_of is not None:
            stmt = stmt.where(JournalEntry.entry_date <= as_of)

        balances = []
        for currency, debits, credits in self.session.execute(stmt):
            debits, credits = _amount(debits), _amount(credits)
            balance = _normal_side_balance(account.account_type, debits, credits)
            if balance != ZERO:
                balances.append(
                    CurrencyBalance(
                        currency=currency,
                        debit_total=debits,
                        credit_total=credits,
                        balance=balance,
                    )
                )
        return balances
