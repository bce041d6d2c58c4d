"""
Data transfer objects passed across the kernel boundary.

Frozen dataclasses only: services accept LineInput and return these DTOs
instead of live ORM rows where the caller outlives the session.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from uuid import UUID

from ledger_kernel.db.types import ZERO
from ledger_kernel.domain.currency_policy import ConversionDecision


@dataclass(frozen=True)
class LineInput:
    """
    One requested journal line.

    ``account`` is the account code.  For foreign-currency posting the
    amounts are in the transaction currency.
    """

    account: str
    debit: Decimal = ZERO
    credit: Decimal = ZERO
    description: str | None = None


@dataclass(frozen=True)
class PostedEntry:
    entry_id: UUID
    voucher_number: str
    entry_date: date
    fiscal_period_id: UUID
    total_debits: Decimal
    total_credits: Decimal
    currency: str
    reversal_of_id: UUID | None = None
    conversion: dict | None = field(default=None, compare=False)


@dataclass(frozen=True)
class ConversionResult:
    """Amount after a conversion decision was applied."""

    decision: ConversionDecision
    original_currency: str
    original_amount: Decimal
    target_currency: str
    converted_amount: Decimal
    rate: Decimal | None

    @property
    def converted(self) -> bool:
        return self.decision.involves_conversion


@dataclass(frozen=True)
class DocumentView:
    document_id: UUID
    document_type: str
    document_number: str
    module: str
    owner_id: str
    state: str
    document_date: date
    currency: str
    total_amount: Decimal
    amount_paid: Decimal
