"""
CurrencyPolicyService -- persistence and activation of currency policies.

Responsibility:
    Creates policies (validated for internal consistency), activates one
    policy at a time, and returns the active policy as an immutable
    PolicySnapshot.  The snapshot is read per call; it is never cached
    beyond the current session, so a change of reference currency is
    visible to the next request.

Invariants enforced:
    - Exactly one policy is active: activation locks every policy row
      (``SELECT ... FOR UPDATE``) before flipping flags.
    - Policies are validated on create and again on activate.

Failure modes:
    - CurrencyPolicyError: inconsistent policy or duplicate code.
    - NoActiveCurrencyPolicyError: no policy is active.
"""

from sqlalchemy import select

from ledger_kernel.domain.currency_policy import (
    ConversionTiming,
    PolicySnapshot,
    PolicyType,
    RateSource,
    RevaluationFrequency,
    validate_policy,
)
from ledger_kernel.db.types import normalize_currency
from ledger_kernel.exceptions import CurrencyPolicyError, NoActiveCurrencyPolicyError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.currency import CurrencyPolicy
from ledger_kernel.services.base import BaseService

logger = get_logger("services.currency_policy")


def to_snapshot(policy: CurrencyPolicy) -> PolicySnapshot:
    return PolicySnapshot(
        code=policy.code,
        policy_type=PolicyType(policy.policy_type),
        conversion_timing=ConversionTiming(policy.conversion_timing),
        reference_currency=policy.reference_currency,
        allow_multi_currency_balances=policy.allow_multi_currency_balances,
        revaluation_enabled=policy.revaluation_enabled,
        revaluation_frequency=(
            RevaluationFrequency(policy.revaluation_frequency)
            if policy.revaluation_frequency
            else None
        ),
        exchange_rate_source=RateSource(policy.exchange_rate_source),
        requires_reference_currency=policy.requires_reference_currency,
    )


class CurrencyPolicyService(BaseService):
    def create_policy(
        self,
        *,
        code: str,
        name: str,
        policy_type: PolicyType | str,
        conversion_timing: ConversionTiming | str,
        reference_currency: str,
        allow_multi_currency_balances: bool,
        revaluation_enabled: bool = False,
        revaluation_frequency: RevaluationFrequency | str | None = None,
        exchange_rate_source: RateSource | str = RateSource.MANUAL,
        requires_reference_currency: bool = True,
        activate: bool = False,
    ) -> CurrencyPolicy:
        snapshot = PolicySnapshot(
            code=code,
            policy_type=PolicyType(policy_type),
            conversion_timing=ConversionTiming(conversion_timing),
            reference_currency=normalize_currency(reference_currency),
            allow_multi_currency_balances=allow_multi_currency_balances,
            revaluation_enabled=revaluation_enabled,
            revaluation_frequency=(
                RevaluationFrequency(revaluation_frequency) if revaluation_frequency else None
            ),
            exchange_rate_source=RateSource(exchange_rate_source),
            requires_reference_currency=requires_reference_currency,
        )
        validate_policy(snapshot)

        existing = self.session.execute(
            select(CurrencyPolicy.id).where(CurrencyPolicy.code == code)
        ).scalar_one_or_none()
        if existing is not None:
            raise CurrencyPolicyError(code, "a policy with this code already exists")

        policy = CurrencyPolicy(
            code=code,
            name=name,
            policy_type=snapshot.policy_type.value,
            conversion_timing=snapshot.conversion_timing.value,
            reference_currency=snapshot.reference_currency,
            allow_multi_currency_balances=allow_multi_currency_balances,
            revaluation_enabled=revaluation_enabled,
            revaluation_frequency=(
                snapshot.revaluation_frequency.value if snapshot.revaluation_frequency else None
            ),
            exchange_rate_source=snapshot.exchange_rate_source.value,
            requires_reference_currency=requires_reference_currency,
            is_active=False,
        )
        self.session.add(policy)
        self.session.flush()
        logger.info(
            "currency_policy_created",
            extra={"policy_code": code, "policy_type": snapshot.policy_type.value},
        )
        if activate:
            self.activate(code)
        return policy

    def activate(self, code: str) -> PolicySnapshot:
        policies = self.session.execute(
            select(CurrencyPolicy).with_for_update().execution_options(populate_existing=True)
        ).scalars().all()
        target = next((p for p in policies if p.code == code), None)
        if target is None:
            raise CurrencyPolicyError(code, "policy does not exist")
        snapshot = to_snapshot(target)
        validate_policy(snapshot)
        for policy in policies:
            policy.is_active = policy is target
        self.session.flush()
        logger.info("currency_policy_activated", extra={"policy_code": code})
        return snapshot

    def active_policy(self) -> PolicySnapshot:
        policies = self.session.execute(
            select(CurrencyPolicy).where(CurrencyPolicy.is_active.is_(True))
        ).scalars().all()
        if not policies:
            raise NoActiveCurrencyPolicyError()
        if len(policies) > 1:
            raise CurrencyPolicyError(
                ",".join(sorted(p.code for p in policies)), "more than one policy is active"
            )
        return to_snapshot(policies[0])

    def reference_currency(self) -> str:
        """Reference currency of the active policy, else the configured default."""
        try:
            return self.active_policy().reference_currency
        except NoActiveCurrencyPolicyError:
            return self.settings.accounting.default_currency
