"""
RevaluationService -- unrealized exchange gain/loss on foreign balances.

Responsibility:
    Restates the reference-currency carrying value of an account's balance
    held in a foreign currency at the rate effective on a date, posting
    the difference against the configured unrealized gain or loss account.

Invariants enforced:
    - Runs only under an active policy with revaluation enabled.
    - The account-side line keeps the foreign currency with an original
      amount of zero: the foreign balance is unchanged, only its reference
      value moves.
    - No entry is written when the carrying value is already current.

Failure modes:
    - CurrencyPolicyError: revaluation disabled by the active policy.
    - MissingExchangeRateError: no rate effective on the date.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import case, func, select

from ledger_kernel.db.types import ZERO, normalize_currency, round_amount, to_decimal
from ledger_kernel.domain.currency_policy import RateSource, convert_amount
from ledger_kernel.exceptions import CurrencyPolicyError, MissingExchangeRateError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.journal import JournalEntry, JournalEntryLine
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.journal_poster import JournalPoster, ResolvedLine

logger = get_logger("services.revaluation")

REVALUATION_REFERENCE = "revaluation"


@dataclass(frozen=True)
class RevaluationResult:
    account_code: str
    currency: str
    as_of: date
    rate: Decimal
    foreign_balance: Decimal
    carrying_value: Decimal
    revalued_value: Decimal
    adjustment: Decimal
    entry_id: UUID | None


class RevaluationService(BaseService):
    def __init__(self, session, settings_provider=None, clock=None):
        super().__init__(session, settings_provider, clock)
        self.poster = JournalPoster(session, settings_provider, clock)

    def _foreign_position(self, account_id: UUID, currency: str, as_of: date) -> tuple[Decimal, Decimal]:
        """(foreign debit-minus-credit, reference debit-minus-credit)."""
        foreign_signed = case(
            (JournalEntryLine.debit > 0, JournalEntryLine.original_amount),
            else_=-JournalEntryLine.original_amount,
        )
        row = self.session.execute(
            select(
                func.coalesce(func.sum(foreign_signed), 0),
                func.coalesce(func.sum(JournalEntryLine.debit - JournalEntryLine.credit), 0),
            )
            .join(JournalEntry, JournalEntry.id == JournalEntryLine.journal_entry_id)
            .where(
                JournalEntryLine.account_id == account_id,
                JournalEntryLine.original_currency == currency,
                JournalEntryLine.exchange_rate.is_not(None),
                JournalEntry.entry_date <= as_of,
            )
        ).one()
        return round_amount(to_decimal(row[0])), round_amount(to_decimal(row[1]))

    def revalue(
        self,
        account_code: str,
        currency: str,
        as_of: date,
        *,
        actor_id: str,
        rate: Decimal | None = None,
    ) -> RevaluationResult:
        policy = self.poster.converter.policies.active_policy()
        if not policy.revaluation_enabled:
            raise CurrencyPolicyError(policy.code, "revaluation is not enabled")

        foreign = normalize_currency(currency)
        reference = policy.reference_currency
        rates = self.poster.converter.rates
        if rate is None:
            rate = rates.get_rate(foreign, reference, as_of)
            if rate is None:
                raise MissingExchangeRateError(foreign, reference, as_of)
            supplied = False
        else:
            rate = to_decimal(rate)
            supplied = True

        account = self.poster.accounts.resolve_leaf_account(account_code)
        foreign_balance, carrying = self._foreign_position(account.id, foreign, as_of)
        currency_settings = self.settings.accounting.currency
        revalued = convert_amount(foreign_balance, rate, currency_settings.amount_precision)
        adjustment = revalued - carrying

        entry_id = None
        if adjustment != ZERO:
            if supplied and currency_settings.auto_record_rates:
                rates.record_rate(
                    foreign,
                    reference,
                    rate,
                    as_of,
                    source=RateSource.SYSTEM,
                    source_reference="REVALUATION",
                    actor_id=actor_id,
                )
            entry_id = self._post_adjustment(
                account, foreign, rate, as_of, adjustment, actor_id=actor_id, reference=reference
            )

        logger.info(
            "revaluation_completed",
            extra={
                "account_code": account_code,
                "currency": foreign,
                "rate": rate,
                "adjustment": adjustment,
                "posted": entry_id is not None,
            },
        )
        return RevaluationResult(
            account_code=account_code,
            currency=foreign,
            as_of=as_of,
            rate=rate,
            foreign_balance=foreign_balance,
            carrying_value=carrying,
            revalued_value=revalued,
            adjustment=adjustment,
            entry_id=entry_id,
        )

    def _post_adjustment(self, account, foreign, rate, as_of, adjustment, *, actor_id, reference):
        currency_settings = self.settings.accounting.currency
        amount = abs(adjustment)
        account_line = ResolvedLine(
            line_number=1,
            account=account,
            debit=amount if adjustment > ZERO else ZERO,
            credit=ZERO if adjustment > ZERO else amount,
            description=f"Revaluation of {foreign} balance at {rate}",
            original_currency=foreign,
            original_amount=ZERO,
            exchange_rate=rate,
        )
        if adjustment > ZERO:
            offset = self.poster.accounts.resolve_leaf_account(currency_settings.unrealized_gain_account)
            offset_line = ResolvedLine(
                line_number=2, account=offset, debit=ZERO, credit=amount,
                description="Unrealized exchange gain",
            )
        else:
            offset = self.poster.accounts.resolve_leaf_account(currency_settings.unrealized_loss_account)
            offset_line = ResolvedLine(
                line_number=2, account=offset, debit=amount, credit=ZERO,
                description="Unrealized exchange loss",
            )
        entry = self.poster.post_resolved(
            f"{foreign} revaluation of {account.code} as of {as_of.isoformat()}",
            as_of,
            [account_line, offset_line],
            actor_id=actor_id,
            currency=reference,
            reference_type=REVALUATION_REFERENCE,
            reference_id=f"{account.code}:{foreign}:{as_of.isoformat()}",
            metadata={"rate": str(rate), "currency": foreign},
        )
        return entry.id
