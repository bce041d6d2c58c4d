"""
ExchangeRateStore -- append-only rate history and date-effective lookups.

Responsibility:
    Records rates and answers "what was the rate from A to B on date D":
    the latest row (by effective_date, then recorded_at) on or before D.
    When only the reverse pair is recorded, its inverse is returned at the
    configured rate precision.

Invariants enforced:
    - History rows are never updated or deleted (ORM guard on the model).
    - Rates are positive and quantized to ``exchange_rate_precision``.
    - Same-currency lookups return exactly 1.

Failure modes:
    - InvalidExchangeRateError: non-positive rate.
    - InvalidCurrencyError: malformed currency code.
"""

from datetime import date
from decimal import Decimal

from sqlalchemy import select

from ledger_kernel.db.types import ZERO, normalize_currency, to_decimal
from ledger_kernel.domain.currency_policy import RateSource, invert_rate, quantize_rate
from ledger_kernel.exceptions import InvalidExchangeRateError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.currency import ExchangeRateHistory
from ledger_kernel.services.base import BaseService

logger = get_logger("services.exchange_rate_store")


class ExchangeRateStore(BaseService):
    def _latest(self, from_currency: str, to_currency: str, on_date: date) -> ExchangeRateHistory | None:
        return self.session.execute(
            select(ExchangeRateHistory)
            .where(
                ExchangeRateHistory.from_currency == from_currency,
                ExchangeRateHistory.to_currency == to_currency,
                ExchangeRateHistory.effective_date <= on_date,
            )
            .order_by(
                ExchangeRateHistory.effective_date.desc(),
                ExchangeRateHistory.recorded_at.desc(),
            )
            .limit(1)
        ).scalar_one_or_none()

    def get_rate(self, from_currency: str, to_currency: str, on_date: date) -> Decimal | None:
        """Rate for 1 unit of ``from_currency`` in ``to_currency``, or None."""
        source = normalize_currency(from_currency)
        target = normalize_currency(to_currency)
        if source == target:
            return Decimal("1")

        precision = self.settings.accounting.currency.exchange_rate_precision
        direct = self._latest(source, target, on_date)
        if direct is not None:
            return quantize_rate(to_decimal(direct.rate), precision)

        inverse = self._latest(target, source, on_date)
        if inverse is not None:
            return invert_rate(to_decimal(inverse.rate), precision)

        logger.debug(
            "exchange_rate_not_found",
            extra={"from_currency": source, "to_currency": target, "on_date": str(on_date)},
        )
        return None

    def record_rate(
        self,
        from_currency: str,
        to_currency: str,
        rate: Decimal,
        effective_date: date,
        *,
        source: RateSource | str | None = None,
        source_reference: str | None = None,
        actor_id: str | None = None,
    ) -> ExchangeRateHistory:
        currency_settings = self.settings.accounting.currency
        source_currency = normalize_currency(from_currency)
        target_currency = normalize_currency(to_currency)
        rate = to_decimal(rate)
        if rate <= ZERO or source_currency == target_currency:
            raise InvalidExchangeRateError(source_currency, target_currency, rate)

        row = ExchangeRateHistory(
            from_currency=source_currency,
            to_currency=target_currency,
            rate=quantize_rate(rate, currency_settings.exchange_rate_precision),
            effective_date=effective_date,
            recorded_at=self._clock.now(),
            source=RateSource(source or currency_settings.default_exchange_rate_source).value,
            source_reference=source_reference,
            created_by=actor_id,
        )
        self.session.add(row)
        self.session.flush()
        logger.info(
            "exchange_rate_recorded",
            extra={
                "from_currency": source_currency,
                "to_currency": target_currency,
                "rate": row.rate,
                "effective_date": str(effective_date),
                "source": row.source,
            },
        )
        return row

    def history(self, from_currency: str, to_currency: str) -> list[ExchangeRateHistory]:
        return list(
            self.session.execute(
                select(ExchangeRateHistory)
                .where(
                    ExchangeRateHistory.from_currency == normalize_currency(from_currency),
                    ExchangeRateHistory.to_currency == normalize_currency(to_currency),
                )
                .order_by(
                    ExchangeRateHistory.effective_date,
                    ExchangeRateHistory.recorded_at,
                )
            ).scalars()
        )
