"""
Journal posting tests.

Verifies:
- A balanced sale with VAT posts one header and three lines
- Unbalanced entries are rejected and nothing is written
- Header and lines are all-or-nothing
- Structural validation (line count, sides, negative amounts)
- Parent and inactive accounts are rejected
- Voucher numbers are unique and increase monotonically
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from ledger_config.schema import AccountingSettings, LedgerSettings
from ledger_kernel.domain.dtos import LineInput
from ledger_kernel.exceptions import (
    AccountInactiveError,
    AccountNotFoundError,
    InvalidEntryError,
    InvalidPostingTargetError,
    NoPeriodDefinedError,
    UnbalancedEntryError,
)
from ledger_kernel.models.journal import JournalEntry, JournalEntryLine
from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.journal_poster import JournalPoster, validate_lines

SALE_LINES = [
    LineInput(account="1200", debit=Decimal("115.00")),
    LineInput(account="4100", credit=Decimal("100.00")),
    LineInput(account="2210", credit=Decimal("15.00")),
]


@pytest.fixture
def poster(session, settings_provider, clock):
    return JournalPoster(session, settings_provider, clock)


def _counts(session) -> tuple[int, int]:
    headers = session.execute(select(func.count()).select_from(JournalEntry)).scalar_one()
    lines = session.execute(select(func.count()).select_from(JournalEntryLine)).scalar_one()
    return headers, lines


class TestBalancedPosting:
    """A balanced entry persists a header and all of its lines."""

    def test_sale_with_vat_posts(self, session, poster):
        entry_id = poster.post(
            "Invoice INV-001", date(2024, 3, 15), SALE_LINES, actor_id="user-1"
        )
        session.commit()

        entry = session.get(JournalEntry, entry_id)
        assert entry.voucher_number == "JV-000001"
        assert entry.currency == "SAR"
        assert entry.created_by == "user-1"
        assert entry.fiscal_period.name == "FY2024"
        assert [line.line_number for line in entry.lines] == [1, 2, 3]
        assert entry.total_debits == Decimal("115")
        assert entry.total_credits == Decimal("115")
        assert _counts(session) == (1, 3)

    def test_posting_is_logged(self, session, poster, captured_logs):
        poster.post("Invoice INV-001", date(2024, 3, 15), SALE_LINES, actor_id="user-1")

        posted = [r for r in captured_logs() if r["message"] == "journal_entry_posted"]
        assert len(posted) == 1
        assert posted[0]["voucher_number"] == "JV-000001"
        assert posted[0]["line_count"] == 3
        assert posted[0]["period"] == "FY2024"

    def test_difference_within_tolerance_is_accepted(self, session, poster):
        lines = [
            LineInput(account="1110", debit=Decimal("100.0005")),
            LineInput(account="3100", credit=Decimal("100.0000")),
        ]
        entry_id = poster.post("Rounding", date(2024, 3, 15), lines, actor_id="user-1")
        assert session.get(JournalEntry, entry_id) is not None

    def test_reference_is_stored_as_text(self, session, poster):
        entry_id = poster.post(
            "Linked",
            date(2024, 3, 15),
            SALE_LINES,
            actor_id="user-1",
            reference_type="invoice",
            reference_id=42,
        )
        entry = session.get(JournalEntry, entry_id)
        assert entry.reference_type == "invoice"
        assert entry.reference_id == "42"


class TestUnbalancedRejection:
    """Unbalanced entries are rejected before anything is written."""

    def test_unbalanced_entry_rejected(self, session, poster, captured_logs):
        lines = [
            LineInput(account="1200", debit=Decimal("100.00")),
            LineInput(account="4100", credit=Decimal("90.00")),
        ]
        with pytest.raises(UnbalancedEntryError) as exc_info:
            poster.post("Unbalanced", date(2024, 3, 15), lines, actor_id="user-1")

        assert "Debits (100" in str(exc_info.value)
        assert exc_info.value.difference == Decimal("10")
        assert _counts(session) == (0, 0)
        assert any(r["message"] == "unbalanced_entry_rejected" for r in captured_logs())

    def test_difference_beyond_tolerance_rejected(self, session, poster):
        lines = [
            LineInput(account="1110", debit=Decimal("100.002")),
            LineInput(account="3100", credit=Decimal("100.000")),
        ]
        with pytest.raises(UnbalancedEntryError):
            poster.post("Off", date(2024, 3, 15), lines, actor_id="user-1")


class TestAtomicity:
    """A failure while writing lines leaves neither header nor lines."""

    def test_failure_on_second_line_rolls_back_everything(self, session, poster, monkeypatch):
        original = poster._build_line
        calls = []

        def failing_build(entry, line):
            calls.append(line.line_number)
            if line.line_number == 2:
                raise RuntimeError("disk full")
            return original(entry, line)

        monkeypatch.setattr(poster, "_build_line", failing_build)

        with pytest.raises(RuntimeError, match="disk full"):
            poster.post("Doomed", date(2024, 3, 15), SALE_LINES, actor_id="user-1")

        assert calls == [1, 2]
        assert _counts(session) == (0, 0)

    def test_sequence_not_consumed_by_failed_write(self, session, poster, monkeypatch):
        def failing_build(entry, line):
            raise RuntimeError("boom")

        monkeypatch.setattr(poster, "_build_line", failing_build)
        with pytest.raises(RuntimeError):
            poster.post("Doomed", date(2024, 3, 15), SALE_LINES, actor_id="user-1")
        monkeypatch.undo()

        entry_id = poster.post("Next", date(2024, 3, 15), SALE_LINES, actor_id="user-1")
        assert session.get(JournalEntry, entry_id).voucher_number == "JV-000001"


class TestStructuralValidation:
    def test_single_line_rejected(self):
        with pytest.raises(InvalidEntryError, match="at least two lines"):
            validate_lines([LineInput(account="1110", debit=Decimal("1"))])

    def test_negative_amount_rejected(self):
        with pytest.raises(InvalidEntryError) as exc_info:
            validate_lines(
                [
                    LineInput(account="1110", debit=Decimal("-5")),
                    LineInput(account="3100", credit=Decimal("-5")),
                ]
            )
        assert exc_info.value.line_number == 1

    def test_both_sides_rejected(self):
        with pytest.raises(InvalidEntryError, match="exactly one"):
            validate_lines(
                [
                    LineInput(account="1110", debit=Decimal("5"), credit=Decimal("5")),
                    LineInput(account="3100", credit=Decimal("5")),
                ]
            )

    def test_zero_line_rejected(self):
        with pytest.raises(InvalidEntryError) as exc_info:
            validate_lines(
                [
                    LineInput(account="1110", debit=Decimal("5")),
                    LineInput(account="3100"),
                ]
            )
        assert exc_info.value.line_number == 2

    def test_non_numeric_amount_rejected(self):
        with pytest.raises(InvalidEntryError):
            validate_lines(
                [
                    LineInput(account="1110", debit="abc"),
                    LineInput(account="3100", credit=Decimal("5")),
                ]
            )

    def test_amounts_rounded_half_up(self):
        lines = validate_lines(
            [
                LineInput(account="1110", debit=Decimal("1.00005")),
                LineInput(account="3100", credit=Decimal("1.00005")),
            ]
        )
        assert lines[0].debit == Decimal("1.0001")

    def test_empty_description_rejected(self, poster):
        with pytest.raises(InvalidEntryError, match="description"):
            poster.post("", date(2024, 3, 15), SALE_LINES, actor_id="user-1")


class TestAccountTargets:
    def test_parent_account_rejected(self, session, poster):
        lines = [
            LineInput(account="1000", debit=Decimal("10")),
            LineInput(account="3100", credit=Decimal("10")),
        ]
        with pytest.raises(InvalidPostingTargetError) as exc_info:
            poster.post("Parent", date(2024, 3, 15), lines, actor_id="user-1")
        assert exc_info.value.account_code == "1000"
        assert exc_info.value.child_count == 3
        assert _counts(session) == (0, 0)

    def test_parent_account_allowed_when_setting_off(self, session, poster, settings_provider):
        settings_provider.value = LedgerSettings(
            accounting=AccountingSettings(prevent_posting_to_parent_accounts=False)
        )
        lines = [
            LineInput(account="1000", debit=Decimal("10")),
            LineInput(account="3100", credit=Decimal("10")),
        ]
        entry_id = poster.post("Parent", date(2024, 3, 15), lines, actor_id="user-1")
        assert session.get(JournalEntry, entry_id) is not None

    def test_inactive_account_rejected(self, session, poster, settings_provider, clock):
        AccountRegistry(session, settings_provider, clock).deactivate("5100")
        lines = [
            LineInput(account="5100", debit=Decimal("10")),
            LineInput(account="1110", credit=Decimal("10")),
        ]
        with pytest.raises(AccountInactiveError):
            poster.post("Inactive", date(2024, 3, 15), lines, actor_id="user-1")

    def test_unknown_account_rejected(self, poster):
        lines = [
            LineInput(account="9999", debit=Decimal("10")),
            LineInput(account="1110", credit=Decimal("10")),
        ]
        with pytest.raises(AccountNotFoundError):
            poster.post("Unknown", date(2024, 3, 15), lines, actor_id="user-1")

    def test_no_period_for_date(self, session, poster):
        with pytest.raises(NoPeriodDefinedError):
            poster.post("Too early", date(2023, 12, 31), SALE_LINES, actor_id="user-1")
        assert _counts(session) == (0, 0)


class TestVoucherNumbers:
    def test_voucher_numbers_increase(self, session, poster):
        ids = [
            poster.post(f"Entry {i}", date(2024, 3, 15), SALE_LINES, actor_id="user-1")
            for i in range(3)
        ]
        vouchers = [session.get(JournalEntry, entry_id).voucher_number for entry_id in ids]
        assert vouchers == ["JV-000001", "JV-000002", "JV-000003"]

    def test_prefix_and_padding_come_from_settings(self, session, poster, settings_provider):
        settings_provider.value = LedgerSettings(
            accounting=AccountingSettings(voucher_prefix="GJ", voucher_padding=4)
        )
        entry_id = poster.post("Entry", date(2024, 3, 15), SALE_LINES, actor_id="user-1")
        assert session.get(JournalEntry, entry_id).voucher_number == "GJ-0001"
