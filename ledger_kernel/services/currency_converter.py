"""
CurrencyConverter -- applies the active currency policy to an amount.

Responsibility:
    Looks up the date-effective rate, asks the pure policy engine for a
    ConversionDecision, rounds the converted amount, and (when
    ``accounting.currency.auto_record_rates`` is on) appends the rate it
    used to the rate history so the conversion can be reproduced later.

Invariants enforced:
    - Deterministic: identical inputs give identical decisions and amounts.
    - Rates used for a conversion are recorded with source SYSTEM.

Failure modes:
    - MissingExchangeRateError (require_exchange_rate on, no rate).
    - NoActiveCurrencyPolicyError when no policy is active.
"""

from datetime import date
from decimal import Decimal

from ledger_kernel.db.types import normalize_currency, to_decimal
from ledger_kernel.domain.currency_policy import (
    ConversionOutcome,
    LifecycleStage,
    PolicySnapshot,
    RateSource,
    convert_amount,
    decide_conversion,
)
from ledger_kernel.domain.dtos import ConversionResult
from ledger_kernel.logging_config import get_logger
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.currency_policy_service import CurrencyPolicyService
from ledger_kernel.services.exchange_rate_store import ExchangeRateStore

logger = get_logger("services.currency_converter")


class CurrencyConverter(BaseService):
    def __init__(self, session, settings_provider=None, clock=None):
        super().__init__(session, settings_provider, clock)
        self.rates = ExchangeRateStore(session, settings_provider, clock)
        self.policies = CurrencyPolicyService(session, settings_provider, clock)

    def decide(
        self,
        transaction_currency: str,
        on_date: date,
        *,
        stage: LifecycleStage = LifecycleStage.POSTING,
        policy: PolicySnapshot | None = None,
        user_requested: bool = False,
        exempt: bool = False,
    ) -> tuple[PolicySnapshot, ConversionOutcome]:
        policy = policy or self.policies.active_policy()
        rate = self.rates.get_rate(transaction_currency, policy.reference_currency, on_date)
        outcome = decide_conversion(
            transaction_currency,
            policy.reference_currency,
            policy,
            stage,
            rate,
            on_date=on_date,
            require_exchange_rate=self.settings.accounting.currency.require_exchange_rate,
            user_requested=user_requested,
            exempt=exempt,
        )
        return policy, outcome

    def convert(
        self,
        amount: Decimal,
        transaction_currency: str,
        on_date: date,
        *,
        stage: LifecycleStage = LifecycleStage.POSTING,
        user_requested: bool = False,
        exempt: bool = False,
        record_reference: str | None = None,
        actor_id: str | None = None,
    ) -> ConversionResult:
        """
        Convert ``amount`` to the active policy's reference currency.

        Unconverted outcomes return the original amount in the original
        currency with ``rate`` None.
        """
        amount = to_decimal(amount)
        source = normalize_currency(transaction_currency)
        policy, outcome = self.decide(
            source,
            on_date,
            stage=stage,
            user_requested=user_requested,
            exempt=exempt,
        )
        result = self.apply(amount, source, policy, outcome)
        if result.converted:
            self.record_used_rate(source, policy.reference_currency, outcome.rate, on_date,
                                  record_reference=record_reference, actor_id=actor_id)
        logger.debug(
            "currency_conversion_decided",
            extra={
                "from_currency": source,
                "to_currency": policy.reference_currency,
                "decision": outcome.decision.value,
                "rate": outcome.rate,
            },
        )
        return result

    def apply(
        self,
        amount: Decimal,
        source: str,
        policy: PolicySnapshot,
        outcome: ConversionOutcome,
    ) -> ConversionResult:
        """Apply an already-made decision to one amount (no I/O)."""
        precision = self.settings.accounting.currency.amount_precision
        if outcome.involves_conversion:
            return ConversionResult(
                decision=outcome.decision,
                original_currency=source,
                original_amount=amount,
                target_currency=policy.reference_currency,
                converted_amount=convert_amount(amount, outcome.rate, precision),
                rate=outcome.rate,
            )
        same = source == policy.reference_currency
        return ConversionResult(
            decision=outcome.decision,
            original_currency=source,
            original_amount=amount,
            target_currency=policy.reference_currency if same else source,
            converted_amount=amount,
            rate=Decimal("1") if same else None,
        )

    def record_used_rate(
        self,
        source: str,
        target: str,
        rate: Decimal,
        on_date: date,
        *,
        record_reference: str | None,
        actor_id: str | None,
    ) -> None:
        if not self.settings.accounting.currency.auto_record_rates:
            return
        self.rates.record_rate(
            source,
            target,
            rate,
            on_date,
            source=RateSource.SYSTEM,
            source_reference=record_reference,
            actor_id=actor_id,
        )
