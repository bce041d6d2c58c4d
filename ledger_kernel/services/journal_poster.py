"""
JournalPoster -- the only writer of journal entries.

Responsibility:
    Validates a requested entry, resolves its fiscal period and accounts,
    checks balance, and writes the header and every line atomically.
    Also writes currency-converted entries and compensating reversals.

Architecture position:
    Kernel > Services -- imperative shell.  Consumes AccountRegistry,
    FiscalPeriodGuard, CurrencyConverter and SequenceService.  Flushes only;
    the caller owns the transaction.

Invariants enforced:
    - At least two lines; every amount >= 0; exactly one side non-zero.
    - |sum(debits) - sum(credits)| <= accounting.balance_tolerance.
    - The posting date resolves to exactly one OPEN period, read FOR SHARE.
    - Every line targets an active account that may receive postings.
    - Header and lines are written inside one savepoint: on any failure
      neither the header nor any line persists and the error propagates.
    - An entry is reversed at most once; a reversal is never reversed.

Failure modes:
    - InvalidEntryError, UnbalancedEntryError (nothing written).
    - NoPeriodDefinedError, PeriodClosedError, PeriodLockedError.
    - AccountNotFoundError, AccountInactiveError, InvalidPostingTargetError.
    - CurrencyPolicyError: unconverted foreign entry under a policy that
      forbids multi-currency balances.
    - EntryAlreadyReversedError, JournalEntryNotFoundError.

Audit relevance:
    created_by, reference_type/reference_id and reversal_of_id tie every
    entry to its actor and source.  Conversion decisions are stored in
    entry_metadata["conversion"].
"""

import time
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select

from ledger_kernel.db.types import ZERO, normalize_currency, round_amount, to_decimal
from ledger_kernel.domain.currency_policy import ConversionOutcome, PolicySnapshot
from ledger_kernel.domain.dtos import LineInput
from ledger_kernel.exceptions import (
    CurrencyPolicyError,
    EntryAlreadyReversedError,
    InvalidEntryError,
    JournalEntryNotFoundError,
    PeriodLockedError,
    UnbalancedEntryError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.models.fiscal_period import FiscalPeriod
from ledger_kernel.models.journal import JournalEntry, JournalEntryLine
from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.currency_converter import CurrencyConverter
from ledger_kernel.services.fiscal_period_guard import FiscalPeriodGuard
from ledger_kernel.services.sequence_service import SequenceService

logger = get_logger("services.journal_poster")


@dataclass(frozen=True)
class ResolvedLine:
    """A validated line bound to its account, amounts in entry currency."""

    line_number: int
    account: Account
    debit: Decimal
    credit: Decimal
    description: str | None = None
    original_currency: str | None = None
    original_amount: Decimal | None = None
    exchange_rate: Decimal | None = None


def validate_lines(lines: Sequence[LineInput]) -> list[LineInput]:
    """
    Structural checks that need no database.

    Returns the lines with amounts coerced to Decimal and rounded to the
    stored precision.

    Raises:
        InvalidEntryError: fewer than two lines, a negative amount, or a
            line with both or neither side set.
    """
    if len(lines) < 2:
        raise InvalidEntryError("a journal entry needs at least two lines")

    normalized = []
    for number, line in enumerate(lines, start=1):
        try:
            debit = round_amount(to_decimal(line.debit))
            credit = round_amount(to_decimal(line.credit))
        except ValueError as exc:
            raise InvalidEntryError(str(exc), line_number=number) from exc
        if debit < ZERO or credit < ZERO:
            raise InvalidEntryError("amounts cannot be negative", line_number=number)
        if (debit > ZERO) == (credit > ZERO):
            raise InvalidEntryError(
                "exactly one of debit or credit must be non-zero", line_number=number
            )
        if not line.account:
            raise InvalidEntryError("account is required", line_number=number)
        normalized.append(
            LineInput(account=line.account, debit=debit, credit=credit, description=line.description)
        )
    return normalized


class JournalPoster(BaseService):
    """
    Contract:
        ``post`` / ``post_foreign`` / ``reverse`` return the new entry id.
        Nothing is written unless every check passes.

    Non-goals:
        - Does NOT commit.  Retries of transient faults belong to
          LedgerService via Database.run_in_transaction.
        - Does NOT lock accounts; row-level locks on the period and the
          sequence counter are the only locks taken.
    """

    def __init__(self, session, settings_provider=None, clock=None):
        super().__init__(session, settings_provider, clock)
        self.accounts = AccountRegistry(session, settings_provider, clock)
        self.periods = FiscalPeriodGuard(session, settings_provider, clock)
        self.converter = CurrencyConverter(session, settings_provider, clock)
        self.sequences = SequenceService(session)

    # ------------------------------------------------------------------
    # Posting
    # ------------------------------------------------------------------

    def post(
        self,
        description: str,
        entry_date: date,
        lines: Sequence[LineInput],
        *,
        actor_id: str,
        reference_type: str | None = None,
        reference_id: str | None = None,
        currency: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> UUID:
        """
        Post a balanced entry whose amounts are already in ``currency``
        (default: the reference currency).
        """
        if not description:
            raise InvalidEntryError("description is required")
        normalized = validate_lines(lines)

        period = self.periods.assert_date_open(entry_date)
        resolved = self._resolve(normalized)
        self._assert_balanced(resolved)

        entry_currency = (
            normalize_currency(currency) if currency else self.converter.policies.reference_currency()
        )
        entry = self._write(
            description=description,
            entry_date=entry_date,
            period=period,
            resolved=resolved,
            actor_id=actor_id,
            currency=entry_currency,
            reference_type=reference_type,
            reference_id=reference_id,
            metadata=metadata,
        )
        return entry.id

    def post_foreign(
        self,
        description: str,
        entry_date: date,
        lines: Sequence[LineInput],
        *,
        transaction_currency: str,
        actor_id: str,
        reference_type: str | None = None,
        reference_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        user_requested: bool = False,
        exempt: bool = False,
    ) -> UUID:
        """
        Post an entry whose amounts are in ``transaction_currency``.

        One conversion decision is made for the whole entry.  Converted
        lines carry their original currency, amount and rate; the header
        currency is then the policy's reference currency.  Deferred or
        exempted entries keep the transaction currency.
        """
        if not description:
            raise InvalidEntryError("description is required")
        source = normalize_currency(transaction_currency)
        normalized = validate_lines(lines)

        period = self.periods.assert_date_open(entry_date)
        policy, outcome = self.converter.decide(
            source, entry_date, user_requested=user_requested, exempt=exempt
        )
        if (
            not outcome.involves_conversion
            and source != policy.reference_currency
            and not policy.allow_multi_currency_balances
        ):
            raise CurrencyPolicyError(
                policy.code,
                f"{source} entry left unconverted ({outcome.decision.value}) but "
                "multi-currency balances are not allowed",
            )

        resolved = self._resolve(normalized, source=source, policy=policy, outcome=outcome)
        self._assert_balanced(resolved)

        conversion = {
            "decision": outcome.decision.value,
            "label": outcome.decision.label,
            "policy_code": policy.code,
            "transaction_currency": source,
            "reference_currency": policy.reference_currency,
            "rate": str(outcome.rate) if outcome.rate is not None else None,
        }
        entry = self._write(
            description=description,
            entry_date=entry_date,
            period=period,
            resolved=resolved,
            actor_id=actor_id,
            currency=policy.reference_currency if outcome.involves_conversion else source,
            reference_type=reference_type,
            reference_id=reference_id,
            metadata={**(metadata or {}), "conversion": conversion},
        )
        if outcome.involves_conversion:
            self.converter.record_used_rate(
                source,
                policy.reference_currency,
                outcome.rate,
                entry_date,
                record_reference=entry.voucher_number,
                actor_id=actor_id,
            )
        return entry.id

    def post_resolved(
        self,
        description: str,
        entry_date: date,
        resolved: list[ResolvedLine],
        *,
        actor_id: str,
        currency: str,
        reference_type: str | None = None,
        reference_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> JournalEntry:
        """
        Post lines that were bound to accounts by the caller (revaluation).
        Period and balance checks still apply.
        """
        period = self.periods.assert_date_open(entry_date)
        self._assert_balanced(resolved)
        return self._write(
            description=description,
            entry_date=entry_date,
            period=period,
            resolved=resolved,
            actor_id=actor_id,
            currency=currency,
            reference_type=reference_type,
            reference_id=reference_id,
            metadata=metadata,
        )

    # ------------------------------------------------------------------
    # Reversal
    # ------------------------------------------------------------------

    def reverse(
        self,
        entry_id: UUID,
        *,
        actor_id: str,
        reason: str,
        reversal_date: date | None = None,
    ) -> UUID:
        """
        Write the compensating entry for ``entry_id``: every debit becomes a
        credit and vice versa, with reversal_of_id pointing at the original.

        ``reversal_date`` defaults to the original entry date.
        """
        original = self.session.execute(
            select(JournalEntry).where(JournalEntry.id == entry_id).with_for_update()
        ).scalar_one_or_none()
        if original is None:
            raise JournalEntryNotFoundError(str(entry_id))
        if original.reversal_of_id is not None:
            raise InvalidEntryError(
                f"{original.voucher_number} is itself a reversal and cannot be reversed"
            )
        existing = self.find_reversal(original.id)
        if existing is not None:
            raise EntryAlreadyReversedError(str(original.id), str(existing.id))

        if original.fiscal_period.is_locked:
            logger.warning(
                "reversal_rejected_period_locked",
                extra={"entry_id": str(original.id), "period_name": original.fiscal_period.name},
            )
            raise PeriodLockedError(original.fiscal_period.name)

        target_date = reversal_date or original.entry_date
        period = self.periods.assert_date_open(target_date)

        resolved = [
            ResolvedLine(
                line_number=line.line_number,
                account=line.account,
                debit=line.credit,
                credit=line.debit,
                description=line.description,
                original_currency=line.original_currency,
                original_amount=line.original_amount,
                exchange_rate=line.exchange_rate,
            )
            for line in original.lines
        ]
        entry = self._write(
            description=f"Reversal of {original.voucher_number}: {reason}",
            entry_date=target_date,
            period=period,
            resolved=resolved,
            actor_id=actor_id,
            currency=original.currency,
            reference_type=original.reference_type,
            reference_id=original.reference_id,
            metadata={"reason": reason, "reversed_voucher": original.voucher_number},
            reversal_of_id=original.id,
        )
        logger.info(
            "journal_entry_reversed",
            extra={
                "original_entry_id": str(original.id),
                "reversal_entry_id": str(entry.id),
                "reason": reason,
            },
        )
        return entry.id

    def find_reversal(self, entry_id: UUID) -> JournalEntry | None:
        return self.session.execute(
            select(JournalEntry).where(JournalEntry.reversal_of_id == entry_id)
        ).scalar_one_or_none()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resolve(
        self,
        lines: list[LineInput],
        *,
        source: str | None = None,
        policy: PolicySnapshot | None = None,
        outcome: ConversionOutcome | None = None,
    ) -> list[ResolvedLine]:
        resolved = []
        for number, line in enumerate(lines, start=1):
            account = self.accounts.resolve_leaf_account(line.account)
            debit, credit = line.debit, line.credit
            original_currency = original_amount = rate = None
            if outcome is not None:
                amount = debit if debit > ZERO else credit
                result = self.converter.apply(amount, source, policy, outcome)
                if result.converted:
                    if result.converted_amount <= ZERO:
                        raise InvalidEntryError(
                            f"amount {amount} {source} converts to zero", line_number=number
                        )
                    if debit > ZERO:
                        debit = result.converted_amount
                    else:
                        credit = result.converted_amount
                    rate = result.rate
                original_currency = source
                original_amount = amount
            resolved.append(
                ResolvedLine(
                    line_number=number,
                    account=account,
                    debit=debit,
                    credit=credit,
                    description=line.description,
                    original_currency=original_currency,
                    original_amount=original_amount,
                    exchange_rate=rate,
                )
            )
        return resolved

    def _assert_balanced(self, resolved: list[ResolvedLine]) -> None:
        debits = sum((line.debit for line in resolved), ZERO)
        credits = sum((line.credit for line in resolved), ZERO)
        tolerance = self.settings.accounting.balance_tolerance
        if abs(debits - credits) > tolerance:
            logger.warning(
                "unbalanced_entry_rejected",
                extra={"sum_debit": debits, "sum_credit": credits},
            )
            raise UnbalancedEntryError(debits, credits)
        logger.debug("balance_validated", extra={"sum_debit": debits, "sum_credit": credits})

    def _build_line(self, entry: JournalEntry, line: ResolvedLine) -> JournalEntryLine:
        return JournalEntryLine(
            journal_entry_id=entry.id,
            line_number=line.line_number,
            account_id=line.account.id,
            debit=line.debit,
            credit=line.credit,
            description=line.description,
            original_currency=line.original_currency,
            original_amount=line.original_amount,
            exchange_rate=line.exchange_rate,
        )

    def _write(
        self,
        *,
        description: str,
        entry_date: date,
        period: FiscalPeriod,
        resolved: list[ResolvedLine],
        actor_id: str,
        currency: str,
        reference_type: str | None,
        reference_id: str | None,
        metadata: dict[str, Any] | None,
        reversal_of_id: UUID | None = None,
    ) -> JournalEntry:
        t0 = time.monotonic()
        accounting = self.settings.accounting
        with self.session.begin_nested():
            voucher_number = self.sequences.next_voucher_number(
                accounting.voucher_prefix, accounting.voucher_padding
            )
            entry = JournalEntry(
                voucher_number=voucher_number,
                description=description,
                entry_date=entry_date,
                fiscal_period_id=period.id,
                created_by=actor_id,
                currency=currency,
                reference_type=reference_type,
                reference_id=str(reference_id) if reference_id is not None else None,
                reversal_of_id=reversal_of_id,
                entry_metadata=metadata,
            )
            self.session.add(entry)
            self.session.flush()
            for line in resolved:
                self.session.add(self._build_line(entry, line))
            self.session.flush()

        self.session.refresh(entry, ["lines"])
        with LogContext.bind(
            entry_id=str(entry.id), voucher_number=voucher_number, period=period.name
        ):
            logger.info(
                "journal_entry_posted",
                extra={
                    "entry_date": str(entry_date),
                    "line_count": len(resolved),
                    "currency": currency,
                    "reference_type": reference_type,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
        return entry
