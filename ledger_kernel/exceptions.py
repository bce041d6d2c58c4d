"""
Typed exception hierarchy for the ledger kernel.

Every error the kernel raises on purpose is a ``LedgerError`` subclass with:
  1. a ``code`` class attribute (machine readable, stable across releases),
  2. an ``http_status`` class attribute used by the API envelope,
  3. structured attributes set in ``__init__`` (never parse the message).

Callers catch by type:

    try:
        poster.post(description, entry_date, lines, actor=actor)
    except PeriodLockedError as e:
        return failure(str(e), e.http_status)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerError (base)
    |
    +-- BusinessLogicError (400)
    |   +-- InvalidPayloadError
    |   +-- InvalidEntryError
    |   +-- UnbalancedEntryError
    |   +-- InvalidPostingTargetError
    |   +-- AccountInactiveError
    |   +-- AccountReferencedError
    |   +-- AccountHierarchyError
    |   +-- NoPeriodDefinedError
    |   +-- PeriodClosedError
    |   +-- PeriodLockedError
    |   +-- PeriodOverlapError
    |   +-- PeriodTransitionError
    |   +-- MissingExchangeRateError
    |   +-- InvalidExchangeRateError
    |   +-- InvalidCurrencyError
    |   +-- CurrencyPolicyError
    |   +-- NoActiveCurrencyPolicyError
    |   +-- EntryAlreadyReversedError
    |   +-- ModificationForbiddenError
    |
    +-- AuthorizationError (403)
    |
    +-- NotFoundError (404)
    |   +-- AccountNotFoundError
    |   +-- JournalEntryNotFoundError
    |   +-- PeriodNotFoundError
    |   +-- DocumentNotFoundError
    |
    +-- TransientDatabaseError (503)
    |
    +-- ImmutabilityViolationError (500)

Business-rule errors are never retried: retrying a rejection can never
succeed.  Only TransientDatabaseError reports an exhausted retry budget.
"""

from datetime import date
from decimal import Decimal
from enum import Enum


class LedgerError(Exception):
    """
    Base exception for all ledger kernel errors.

    All subclasses define a ``code`` class attribute for machine-readable
    identification and an ``http_status`` for the API envelope.
    """

    code: str = "LEDGER_ERROR"
    http_status: int = 500


class BusinessLogicError(LedgerError):
    """A request violates a business rule (generic, 400)."""

    code: str = "BUSINESS_LOGIC_ERROR"
    http_status: int = 400


class InvalidPayloadError(BusinessLogicError):
    """A request payload is malformed (missing field, bad date or amount)."""

    code: str = "INVALID_PAYLOAD"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class AuthorizationError(LedgerError):
    """The actor lacks permission for the action (generic, 403)."""

    code: str = "AUTHORIZATION_ERROR"
    http_status: int = 403

    def __init__(self, actor_id: str | None, action: str, module: str, detail: str = ""):
        self.actor_id = actor_id
        self.action = action
        self.module = module
        message = f"Actor {actor_id or 'Guest'} is not permitted to {action} in {module}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class NotFoundError(LedgerError):
    """A referenced record does not exist (generic, 404)."""

    code: str = "NOT_FOUND"
    http_status: int = 404


class TransientDatabaseError(LedgerError):
    """The database kept failing with retryable errors."""

    code: str = "TRANSIENT_DATABASE_ERROR"
    http_status: int = 503

    def __init__(self, operation: str, attempts: int):
        self.operation = operation
        self.attempts = attempts
        super().__init__(
            f"{operation} failed after {attempts} attempt(s); please retry later"
        )


class ImmutabilityViolationError(LedgerError):
    """Code attempted to update or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, table: str, record_id: str):
        self.table = table
        self.record_id = record_id
        super().__init__(f"{table} row {record_id} is append-only")


# Journal entry exceptions


class InvalidEntryError(BusinessLogicError):
    """Journal lines are structurally invalid."""

    code: str = "INVALID_ENTRY"

    def __init__(self, reason: str, line_number: int | None = None):
        self.reason = reason
        self.line_number = line_number
        if line_number is None:
            super().__init__(f"Invalid journal entry: {reason}")
        else:
            super().__init__(f"Invalid journal entry line {line_number}: {reason}")


class UnbalancedEntryError(BusinessLogicError):
    """Total debits differ from total credits beyond tolerance."""

    code: str = "UNBALANCED_ENTRY"

    def __init__(self, debits: Decimal, credits: Decimal):
        self.debits = debits
        self.credits = credits
        self.difference = debits - credits
        super().__init__(f"Debits ({debits}) must equal Credits ({credits})")


class EntryAlreadyReversedError(BusinessLogicError):
    """The journal entry has already been reversed."""

    code: str = "ENTRY_ALREADY_REVERSED"

    def __init__(self, entry_id: str, reversal_entry_id: str | None = None):
        self.entry_id = entry_id
        self.reversal_entry_id = reversal_entry_id
        super().__init__(f"Journal entry {entry_id} has already been reversed")


class JournalEntryNotFoundError(NotFoundError):
    """Journal entry with given ID was not found."""

    code: str = "JOURNAL_ENTRY_NOT_FOUND"

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Journal entry not found: {entry_id}")


# Account exceptions


class AccountNotFoundError(NotFoundError):
    """Account with given code or ID was not found."""

    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_ref: str):
        self.account_ref = account_ref
        super().__init__(f"Account not found: {account_ref}")


class InvalidPostingTargetError(BusinessLogicError):
    """Posting to a parent (non-leaf) account is not allowed."""

    code: str = "INVALID_POSTING_TARGET"

    def __init__(self, account_code: str, child_count: int):
        self.account_code = account_code
        self.child_count = child_count
        super().__init__(
            f"Cannot post to parent account {account_code}; "
            f"it has {child_count} child account(s)"
        )


class AccountInactiveError(BusinessLogicError):
    """Account is deactivated."""

    code: str = "ACCOUNT_INACTIVE"

    def __init__(self, account_code: str):
        self.account_code = account_code
        super().__init__(f"Account {account_code} is inactive")


class AccountReferencedError(BusinessLogicError):
    """Account cannot be deleted because something still references it."""

    code: str = "ACCOUNT_REFERENCED"

    def __init__(self, account_code: str, line_count: int, child_count: int):
        self.account_code = account_code
        self.line_count = line_count
        self.child_count = child_count
        super().__init__(
            f"Account {account_code} is referenced by {line_count} journal "
            f"line(s) and {child_count} child account(s); deactivate it instead"
        )


class AccountHierarchyError(BusinessLogicError):
    """Account tree would become inconsistent."""

    code: str = "ACCOUNT_HIERARCHY_ERROR"

    def __init__(self, account_code: str, reason: str):
        self.account_code = account_code
        self.reason = reason
        super().__init__(f"Account {account_code}: {reason}")


# Fiscal period exceptions


class NoPeriodDefinedError(BusinessLogicError):
    """No fiscal period covers the date."""

    code: str = "NO_PERIOD_DEFINED"

    def __init__(self, entry_date: date):
        self.entry_date = entry_date
        super().__init__(f"No fiscal period is defined for {entry_date.isoformat()}")


class PeriodClosedError(BusinessLogicError):
    """Fiscal period is closed (an administrator may reopen it)."""

    code: str = "PERIOD_CLOSED"

    def __init__(self, period_name: str):
        self.period_name = period_name
        super().__init__(
            f"Cannot post transactions to a closed fiscal period ({period_name}); "
            "contact an administrator to reopen it"
        )


class PeriodLockedError(BusinessLogicError):
    """Fiscal period is locked (terminal year-end close)."""

    code: str = "PERIOD_LOCKED"

    def __init__(self, period_name: str):
        self.period_name = period_name
        super().__init__(
            f"Cannot post transactions to a locked fiscal period ({period_name})"
        )


class PeriodOverlapError(BusinessLogicError):
    """New period date range overlaps with an existing one."""

    code: str = "PERIOD_OVERLAP"

    def __init__(self, name: str, existing_name: str):
        self.name = name
        self.existing_name = existing_name
        super().__init__(f"Fiscal period {name} overlaps with {existing_name}")


class PeriodTransitionError(BusinessLogicError):
    """Requested lifecycle transition is not allowed from the current status."""

    code: str = "PERIOD_TRANSITION_NOT_ALLOWED"

    def __init__(self, period_name: str, current_status: str, target_status: str):
        self.period_name = period_name
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            f"Fiscal period {period_name} cannot move from {current_status} "
            f"to {target_status}"
        )


class PeriodNotFoundError(NotFoundError):
    """Fiscal period with given ID was not found."""

    code: str = "PERIOD_NOT_FOUND"

    def __init__(self, period_id: str):
        self.period_id = period_id
        super().__init__(f"Fiscal period not found: {period_id}")


# Currency exceptions


class MissingExchangeRateError(BusinessLogicError):
    """A conversion is required but no rate is available."""

    code: str = "MISSING_EXCHANGE_RATE"

    def __init__(self, from_currency: str, to_currency: str, on_date: date):
        self.from_currency = from_currency
        self.to_currency = to_currency
        self.on_date = on_date
        super().__init__(
            f"No exchange rate from {from_currency} to {to_currency} "
            f"on or before {on_date.isoformat()}"
        )


class InvalidExchangeRateError(BusinessLogicError):
    """Exchange rate is zero, negative or otherwise unusable."""

    code: str = "INVALID_EXCHANGE_RATE"

    def __init__(self, from_currency: str, to_currency: str, rate: object):
        self.from_currency = from_currency
        self.to_currency = to_currency
        self.rate = rate
        super().__init__(
            f"Invalid exchange rate {rate} for {from_currency}/{to_currency}"
        )


class InvalidCurrencyError(BusinessLogicError):
    """Currency code is not a three-letter ISO 4217 code."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid currency code: {currency!r}")


class CurrencyPolicyError(BusinessLogicError):
    """A currency policy is inconsistent or forbids the operation."""

    code: str = "CURRENCY_POLICY_VIOLATION"

    def __init__(self, policy_code: str, reason: str):
        self.policy_code = policy_code
        self.reason = reason
        super().__init__(f"Currency policy {policy_code}: {reason}")


class NoActiveCurrencyPolicyError(BusinessLogicError):
    """No currency policy is currently active."""

    code: str = "NO_ACTIVE_CURRENCY_POLICY"

    def __init__(self):
        super().__init__("No currency policy is active")


# Document workflow exceptions


class ForbiddenReason(str, Enum):
    """Which business-state invariant blocked a modification."""

    PAYMENTS_APPLIED = "payments_applied"
    PERIOD_CLOSED = "period_closed"
    PERIOD_LOCKED = "period_locked"
    VOUCHER_POSTED = "voucher_posted"
    INVALID_STATE = "invalid_state"


_FORBIDDEN_MESSAGES: dict[ForbiddenReason, str] = {
    ForbiddenReason.PAYMENTS_APPLIED: "payments already applied",
    ForbiddenReason.PERIOD_CLOSED: "period is closed",
    ForbiddenReason.PERIOD_LOCKED: "period is locked",
    ForbiddenReason.VOUCHER_POSTED: "voucher already posted to the general ledger",
    ForbiddenReason.INVALID_STATE: "document state does not allow it",
}


class ModificationForbiddenError(BusinessLogicError):
    """
    Business state forbids deleting or reversing a document.

    Distinct from AuthorizationError: the constraint is on the document's
    state, so no role can lift it.
    """

    code: str = "MODIFICATION_FORBIDDEN"

    def __init__(
        self,
        document_id: str,
        action: str,
        reason: ForbiddenReason,
        detail: str = "",
    ):
        self.document_id = document_id
        self.action = action
        self.reason = reason
        self.detail = detail
        message = f"cannot {action}: {_FORBIDDEN_MESSAGES[reason]}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class DocumentNotFoundError(NotFoundError):
    """Document with given ID was not found."""

    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Document not found: {document_id}")
