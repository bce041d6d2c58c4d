"""
Foreign-currency posting tests.

Verifies:
- Date-effective rate lookup with inverse fallback
- Rate history is append-only
- NORMALIZATION converts every line at posting and records the rate used
- Deferred entries keep the transaction currency
- Missing rates and forbidden multi-currency balances reject the entry
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from ledger_config.schema import AccountingSettings, CurrencySettings, LedgerSettings
from ledger_kernel.domain.currency_policy import ConversionDecision, LifecycleStage, RateSource
from ledger_kernel.domain.dtos import LineInput
from ledger_kernel.exceptions import (
    CurrencyPolicyError,
    ImmutabilityViolationError,
    InvalidExchangeRateError,
    MissingExchangeRateError,
    NoActiveCurrencyPolicyError,
)
from ledger_kernel.models.journal import JournalEntry
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.services.currency_converter import CurrencyConverter
from ledger_kernel.services.currency_policy_service import CurrencyPolicyService
from ledger_kernel.services.exchange_rate_store import ExchangeRateStore
from ledger_kernel.services.journal_poster import JournalPoster

USD_LINES = [
    LineInput(account="1300", debit=Decimal("100.00")),
    LineInput(account="4100", credit=Decimal("100.00")),
]


@pytest.fixture
def rates(session, settings_provider, clock):
    return ExchangeRateStore(session, settings_provider, clock)


@pytest.fixture
def poster(session, settings_provider, clock):
    return JournalPoster(session, settings_provider, clock)


@pytest.fixture
def usd_rate(rates):
    rates.record_rate("USD", "SAR", Decimal("3.75"), date(2024, 1, 1))


def _activate_unit_of_measure(session, settings_provider, clock):
    CurrencyPolicyService(session, settings_provider, clock).create_policy(
        code="UOM",
        name="Currencies as units",
        policy_type="UNIT_OF_MEASURE",
        conversion_timing="NEVER",
        reference_currency="SAR",
        allow_multi_currency_balances=True,
        activate=True,
    )


class TestExchangeRateStore:
    def test_latest_rate_on_or_before_date(self, rates):
        rates.record_rate("USD", "SAR", Decimal("3.70"), date(2024, 1, 1))
        rates.record_rate("USD", "SAR", Decimal("3.75"), date(2024, 3, 1))

        assert rates.get_rate("USD", "SAR", date(2023, 12, 31)) is None
        assert rates.get_rate("USD", "SAR", date(2024, 2, 15)) == Decimal("3.70")
        assert rates.get_rate("usd", "sar", date(2024, 3, 15)) == Decimal("3.75")

    def test_inverse_rate_used_when_pair_missing(self, rates):
        rates.record_rate("USD", "SAR", Decimal("3.75"), date(2024, 1, 1))
        assert rates.get_rate("SAR", "USD", date(2024, 3, 15)) == Decimal("0.26666667")

    def test_same_currency_is_one(self, rates):
        assert rates.get_rate("SAR", "SAR", date(2024, 3, 15)) == Decimal("1")

    def test_rates_quantized_to_precision(self, rates):
        row = rates.record_rate("EUR", "SAR", Decimal("4.0512345678"), date(2024, 1, 1))
        assert row.rate == Decimal("4.05123457")
        assert row.source == RateSource.MANUAL.value

    @pytest.mark.parametrize("rate", [Decimal("0"), Decimal("-1")])
    def test_non_positive_rate_rejected(self, rates, rate):
        with pytest.raises(InvalidExchangeRateError):
            rates.record_rate("USD", "SAR", rate, date(2024, 1, 1))

    def test_history_is_append_only(self, session, rates):
        row = rates.record_rate("USD", "SAR", Decimal("3.75"), date(2024, 1, 1))
        row.rate = Decimal("4")
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_round_trip_conversion_is_close(self, session, sar_policy, usd_rate, settings_provider, clock):
        converter = CurrencyConverter(session, settings_provider, clock)
        to_sar = converter.convert(Decimal("123.45"), "USD", date(2024, 3, 15))
        back = converter.rates.get_rate("SAR", "USD", date(2024, 3, 15))

        assert abs(to_sar.converted_amount * back - Decimal("123.45")) < Decimal("0.01")


class TestNormalizedPosting:
    def test_lines_converted_at_posting(self, session, sar_policy, usd_rate, poster):
        entry_id = poster.post_foreign(
            "USD sale", date(2024, 3, 15), USD_LINES, transaction_currency="USD", actor_id="user-1"
        )
        entry = session.get(JournalEntry, entry_id)

        assert entry.currency == "SAR"
        for line in entry.lines:
            assert line.original_currency == "USD"
            assert line.original_amount == Decimal("100")
            assert line.exchange_rate == Decimal("3.75")
        assert entry.lines[0].debit == Decimal("375")
        assert entry.lines[1].credit == Decimal("375")
        assert entry.entry_metadata["conversion"]["decision"] == "POLICY_MANDATED"
        assert entry.entry_metadata["conversion"]["label"] == "Converted by policy"

    def test_rate_used_is_recorded(self, session, sar_policy, usd_rate, poster, rates):
        entry_id = poster.post_foreign(
            "USD sale", date(2024, 3, 15), USD_LINES, transaction_currency="USD", actor_id="user-1"
        )
        voucher = session.get(JournalEntry, entry_id).voucher_number

        history = rates.history("USD", "SAR")
        assert len(history) == 2
        assert history[-1].source == RateSource.SYSTEM.value
        assert history[-1].source_reference == voucher
        assert history[-1].effective_date == date(2024, 3, 15)

    def test_rate_not_recorded_when_disabled(self, sar_policy, usd_rate, poster, rates, settings_provider):
        settings_provider.value = LedgerSettings(
            accounting=AccountingSettings(currency=CurrencySettings(auto_record_rates=False))
        )
        poster.post_foreign(
            "USD sale", date(2024, 3, 15), USD_LINES, transaction_currency="USD", actor_id="user-1"
        )
        assert len(rates.history("USD", "SAR")) == 1

    def test_missing_rate_rejects_entry(self, session, sar_policy, poster):
        with pytest.raises(MissingExchangeRateError):
            poster.post_foreign(
                "EUR sale", date(2024, 3, 15), USD_LINES, transaction_currency="EUR", actor_id="u"
            )
        assert session.execute(select(func.count()).select_from(JournalEntry)).scalar_one() == 0

    def test_exempt_entry_rejected_under_normalization(self, sar_policy, usd_rate, poster):
        with pytest.raises(CurrencyPolicyError, match="multi-currency"):
            poster.post_foreign(
                "USD sale",
                date(2024, 3, 15),
                USD_LINES,
                transaction_currency="USD",
                actor_id="user-1",
                exempt=True,
            )

    def test_reference_currency_entry_is_same_currency(self, session, sar_policy, poster):
        entry_id = poster.post_foreign(
            "SAR sale", date(2024, 3, 15), USD_LINES, transaction_currency="SAR", actor_id="u"
        )
        entry = session.get(JournalEntry, entry_id)
        assert entry.currency == "SAR"
        assert entry.entry_metadata["conversion"]["decision"] == "SAME_CURRENCY"

    def test_requires_active_policy(self, poster):
        with pytest.raises(NoActiveCurrencyPolicyError):
            poster.post_foreign(
                "USD sale", date(2024, 3, 15), USD_LINES, transaction_currency="USD", actor_id="u"
            )


class TestDeferredPosting:
    def test_unit_of_measure_keeps_transaction_currency(
        self, session, settings_provider, clock, poster
    ):
        _activate_unit_of_measure(session, settings_provider, clock)

        entry_id = poster.post_foreign(
            "USD sale", date(2024, 3, 15), USD_LINES, transaction_currency="USD", actor_id="u"
        )
        entry = session.get(JournalEntry, entry_id)

        assert entry.currency == "USD"
        assert entry.entry_metadata["conversion"]["decision"] == "DEFERRED"
        assert all(line.exchange_rate is None for line in entry.lines)
        assert all(line.original_currency == "USD" for line in entry.lines)
        assert entry.lines[0].debit == Decimal("100")

    def test_user_request_converts_under_unit_of_measure(
        self, session, settings_provider, clock, poster, usd_rate
    ):
        _activate_unit_of_measure(session, settings_provider, clock)

        entry_id = poster.post_foreign(
            "USD sale",
            date(2024, 3, 15),
            USD_LINES,
            transaction_currency="USD",
            actor_id="u",
            user_requested=True,
        )
        entry = session.get(JournalEntry, entry_id)
        assert entry.currency == "SAR"
        assert entry.entry_metadata["conversion"]["decision"] == "USER_REQUESTED"

    def test_currency_balances_grouped_by_original_currency(
        self, session, settings_provider, clock, poster
    ):
        _activate_unit_of_measure(session, settings_provider, clock)
        poster.post_foreign(
            "USD sale", date(2024, 3, 15), USD_LINES, transaction_currency="USD", actor_id="u"
        )
        poster.post(
            "SAR sale",
            date(2024, 3, 16),
            [
                LineInput(account="1300", debit=Decimal("50")),
                LineInput(account="4100", credit=Decimal("50")),
            ],
            actor_id="u",
        )

        balances = {b.currency: b.balance for b in LedgerSelector(session).currency_balances("1300")}
        assert balances == {"SAR": Decimal("50"), "USD": Decimal("100")}


class TestConverter:
    def test_convert_reports_decision(self, session, sar_policy, usd_rate, settings_provider, clock):
        result = CurrencyConverter(session, settings_provider, clock).convert(
            Decimal("10"), "USD", date(2024, 3, 15), record_reference="QUOTE-1"
        )
        assert result.decision is ConversionDecision.POLICY_MANDATED
        assert result.converted
        assert result.converted_amount == Decimal("37.5000")
        assert result.target_currency == "SAR"

    def test_deferred_convert_returns_original(self, session, settings_provider, clock):
        _activate_unit_of_measure(session, settings_provider, clock)
        result = CurrencyConverter(session, settings_provider, clock).convert(
            Decimal("10"), "USD", date(2024, 3, 15), stage=LifecycleStage.REPORTING
        )
        assert result.decision is ConversionDecision.DEFERRED
        assert result.converted_amount == Decimal("10")
        assert result.target_currency == "USD"
        assert result.rate is None
