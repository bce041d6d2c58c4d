"""
Currency policy engine -- pure conversion decisions and arithmetic.

Responsibility:
    Decides whether a foreign-currency amount is converted to the reference
    currency at a given lifecycle stage, and performs the conversion with
    deterministic half-up rounding.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  The rate is looked up
    by the caller (CurrencyConverter) and passed in.

Invariants enforced:
    - Same inputs always produce the same ConversionOutcome and amount.
    - Rates are quantized to ``exchange_rate_precision`` places and amounts
      to ``amount_precision`` places, ROUND_HALF_UP (half away from zero).
    - A policy is internally consistent (validate_policy):
        NORMALIZATION   => timing POSTING, no multi-currency balances
        UNIT_OF_MEASURE => timing NEVER or REPORTING, multi-currency allowed
        revaluation_enabled => revaluation_frequency set

Failure modes:
    - MissingExchangeRateError when a conversion is due, no rate is
      available and ``require_exchange_rate`` is set.
    - CurrencyPolicyError from validate_policy.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum

from ledger_kernel.db.types import ZERO, normalize_currency, quantize
from ledger_kernel.exceptions import (
    CurrencyPolicyError,
    InvalidExchangeRateError,
    MissingExchangeRateError,
)


class PolicyType(str, Enum):
    """How the tenant treats foreign currencies."""

    UNIT_OF_MEASURE = "UNIT_OF_MEASURE"
    VALUED_ASSET = "VALUED_ASSET"
    NORMALIZATION = "NORMALIZATION"


class ConversionTiming(str, Enum):
    """Lifecycle point at which a foreign amount is converted."""

    POSTING = "POSTING"
    SETTLEMENT = "SETTLEMENT"
    REPORTING = "REPORTING"
    NEVER = "NEVER"


class LifecycleStage(str, Enum):
    """Where in its lifecycle a transaction currently is."""

    POSTING = "POSTING"
    SETTLEMENT = "SETTLEMENT"
    REPORTING = "REPORTING"


class RevaluationFrequency(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    PERIOD_END = "PERIOD_END"


class RateSource(str, Enum):
    MANUAL = "MANUAL"
    CENTRAL_BANK = "CENTRAL_BANK"
    API = "API"
    SYSTEM = "SYSTEM"


# Stage order: a conversion timed for an earlier stage is already due later.
_STAGE_RANK: dict[str, int] = {
    LifecycleStage.POSTING.value: 0,
    LifecycleStage.SETTLEMENT.value: 1,
    LifecycleStage.REPORTING.value: 2,
}


class ConversionDecision(str, Enum):
    """Outcome of a conversion decision, recorded per transaction."""

    POLICY_MANDATED = "POLICY_MANDATED"
    USER_REQUESTED = "USER_REQUESTED"
    SAME_CURRENCY = "SAME_CURRENCY"
    DEFERRED = "DEFERRED"
    EXEMPTED = "EXEMPTED"

    @property
    def involves_conversion(self) -> bool:
        return involves_conversion(self)

    @property
    def label(self) -> str:
        return label(self)


_INVOLVES_CONVERSION: dict[ConversionDecision, bool] = {
    ConversionDecision.POLICY_MANDATED: True,
    ConversionDecision.USER_REQUESTED: True,
    ConversionDecision.SAME_CURRENCY: False,
    ConversionDecision.DEFERRED: False,
    ConversionDecision.EXEMPTED: False,
}

_LABELS: dict[ConversionDecision, str] = {
    ConversionDecision.POLICY_MANDATED: "Converted by policy",
    ConversionDecision.USER_REQUESTED: "Converted on user request",
    ConversionDecision.SAME_CURRENCY: "Same currency (no conversion)",
    ConversionDecision.DEFERRED: "Conversion deferred",
    ConversionDecision.EXEMPTED: "Exempt from conversion",
}

# Every variant must have an entry in every behaviour table.
for _table in (_INVOLVES_CONVERSION, _LABELS):
    _missing = set(ConversionDecision) - set(_table)
    if _missing:
        raise RuntimeError(
            f"ConversionDecision table incomplete: {sorted(d.value for d in _missing)}"
        )


def involves_conversion(decision: ConversionDecision) -> bool:
    return _INVOLVES_CONVERSION[decision]


def label(decision: ConversionDecision) -> str:
    return _LABELS[decision]


@dataclass(frozen=True)
class PolicySnapshot:
    """Immutable view of the active currency policy."""

    code: str
    policy_type: PolicyType
    conversion_timing: ConversionTiming
    reference_currency: str
    allow_multi_currency_balances: bool
    revaluation_enabled: bool = False
    revaluation_frequency: RevaluationFrequency | None = None
    exchange_rate_source: RateSource = RateSource.MANUAL
    requires_reference_currency: bool = True


@dataclass(frozen=True)
class ConversionOutcome:
    """A decision plus the rate it will use (None unless converting)."""

    decision: ConversionDecision
    rate: Decimal | None = None

    @property
    def involves_conversion(self) -> bool:
        return involves_conversion(self.decision)


def validate_policy(policy: PolicySnapshot) -> None:
    """
    Check the policy's internal consistency.

    Raises:
        CurrencyPolicyError: On any inconsistent combination.
    """
    normalize_currency(policy.reference_currency)
    if policy.policy_type == PolicyType.NORMALIZATION:
        if policy.conversion_timing != ConversionTiming.POSTING:
            raise CurrencyPolicyError(
                policy.code, "NORMALIZATION requires conversion_timing POSTING"
            )
        if policy.allow_multi_currency_balances:
            raise CurrencyPolicyError(
                policy.code, "NORMALIZATION cannot allow multi-currency balances"
            )
    elif policy.policy_type == PolicyType.UNIT_OF_MEASURE:
        if policy.conversion_timing not in (ConversionTiming.NEVER, ConversionTiming.REPORTING):
            raise CurrencyPolicyError(
                policy.code,
                "UNIT_OF_MEASURE requires conversion_timing NEVER or REPORTING",
            )
        if not policy.allow_multi_currency_balances:
            raise CurrencyPolicyError(
                policy.code, "UNIT_OF_MEASURE must allow multi-currency balances"
            )
    if policy.revaluation_enabled and policy.revaluation_frequency is None:
        raise CurrencyPolicyError(
            policy.code, "revaluation_enabled requires a revaluation_frequency"
        )


def conversion_due(policy: PolicySnapshot, stage: LifecycleStage) -> bool:
    """True when the policy's timing has been reached at ``stage``."""
    timing = ConversionTiming(policy.conversion_timing)
    if timing == ConversionTiming.NEVER:
        return False
    return _STAGE_RANK[timing.value] <= _STAGE_RANK[LifecycleStage(stage).value]


def decide_conversion(
    transaction_currency: str,
    reference_currency: str,
    policy: PolicySnapshot,
    stage: LifecycleStage,
    rate: Decimal | None,
    *,
    on_date: date,
    require_exchange_rate: bool,
    user_requested: bool = False,
    exempt: bool = False,
) -> ConversionOutcome:
    """
    Decide whether ``transaction_currency`` is converted at ``stage``.

    Order of evaluation:
        1. same currency        -> SAME_CURRENCY
        2. exempt               -> EXEMPTED
        3. user requested       -> USER_REQUESTED (needs a rate)
        4. policy timing is due -> POLICY_MANDATED (needs a rate)
        5. otherwise            -> DEFERRED

    When a rate is needed and ``rate`` is None, ``require_exchange_rate``
    turns the missing rate into MissingExchangeRateError; without it the
    conversion is DEFERRED.

    Raises:
        MissingExchangeRateError: Conversion due, no rate, rate required.
        InvalidExchangeRateError: ``rate`` is not positive.
    """
    source = normalize_currency(transaction_currency)
    target = normalize_currency(reference_currency)

    if source == target:
        return ConversionOutcome(ConversionDecision.SAME_CURRENCY, Decimal("1"))
    if exempt:
        return ConversionOutcome(ConversionDecision.EXEMPTED)

    if user_requested:
        wanted = ConversionDecision.USER_REQUESTED
    elif conversion_due(policy, stage):
        wanted = ConversionDecision.POLICY_MANDATED
    else:
        return ConversionOutcome(ConversionDecision.DEFERRED)

    if rate is None:
        if require_exchange_rate:
            raise MissingExchangeRateError(source, target, on_date)
        return ConversionOutcome(ConversionDecision.DEFERRED)
    if rate <= ZERO:
        raise InvalidExchangeRateError(source, target, rate)
    return ConversionOutcome(wanted, rate)


def quantize_rate(rate: Decimal, exchange_rate_precision: int = 8) -> Decimal:
    return quantize(rate, exchange_rate_precision)


def invert_rate(rate: Decimal, exchange_rate_precision: int = 8) -> Decimal:
    """1 / rate at rate precision.  The caller guarantees rate > 0."""
    return quantize_rate(Decimal("1") / rate, exchange_rate_precision)


def convert_amount(amount: Decimal, rate: Decimal, amount_precision: int = 4) -> Decimal:
    """``amount * rate`` rounded half-up to ``amount_precision`` places."""
    return quantize(amount * rate, amount_precision)
