"""
Document delete / reversal workflow tests.

Verifies:
- Paid documents cannot be deleted, not even by an administrator
- Closed and locked periods block modification before ownership is checked
- Posted journal vouchers cannot be deleted
- Only the owner or an actor with elevated permission may modify
- A successful delete or reversal reverses every ledger entry of the document
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.domain.authorization import Actor
from ledger_kernel.domain.dtos import LineInput
from ledger_kernel.exceptions import (
    AuthorizationError,
    BusinessLogicError,
    DocumentNotFoundError,
    ForbiddenReason,
    ModificationForbiddenError,
)

SALE_LINES = [
    LineInput(account="1200", debit=Decimal("115.00")),
    LineInput(account="4100", credit=Decimal("100.00")),
    LineInput(account="2210", credit=Decimal("15.00")),
]


@pytest.fixture
def invoice(ledger, owner):
    """A posted SAR invoice owned by user-1."""
    document_id = ledger.create_document(
        "invoice", "INV-001", date(2024, 3, 15), Decimal("115.00"), "SAR", actor=owner
    )
    ledger.post_document(document_id, "Invoice INV-001", SALE_LINES, actor=owner)
    return document_id


def _reason(exc_info) -> ForbiddenReason:
    return exc_info.value.reason


class TestPaymentsApplied:
    def test_admin_cannot_delete_paid_invoice(self, ledger, owner, admin, invoice):
        ledger.apply_payment(invoice, Decimal("50.00"), actor=owner)

        with pytest.raises(ModificationForbiddenError) as exc_info:
            ledger.delete_document(invoice, actor=admin)

        assert _reason(exc_info) is ForbiddenReason.PAYMENTS_APPLIED
        assert "payments already applied" in str(exc_info.value)
        assert ledger.get_document(invoice).state == "posted"

    def test_payment_checked_before_ownership(self, ledger, owner, other_user, invoice):
        ledger.apply_payment(invoice, Decimal("1.00"), actor=owner)
        with pytest.raises(ModificationForbiddenError) as exc_info:
            ledger.delete_document(invoice, actor=other_user)
        assert _reason(exc_info) is ForbiddenReason.PAYMENTS_APPLIED

    def test_overpayment_rejected(self, ledger, owner, invoice):
        with pytest.raises(BusinessLogicError, match="exceeds"):
            ledger.apply_payment(invoice, Decimal("200.00"), actor=owner)

    def test_non_positive_payment_rejected(self, ledger, owner, invoice):
        with pytest.raises(BusinessLogicError, match="positive"):
            ledger.apply_payment(invoice, Decimal("0"), actor=owner)


class TestPeriodGuards:
    def test_closed_period_blocks_admin(self, ledger, admin, invoice, period_ids):
        ledger.close_period(period_ids["FY2024"], actor=admin)
        with pytest.raises(ModificationForbiddenError) as exc_info:
            ledger.reverse_document(invoice, actor=admin)
        assert _reason(exc_info) is ForbiddenReason.PERIOD_CLOSED

    def test_locked_period_blocks_owner(self, ledger, owner, admin, invoice, period_ids):
        ledger.lock_period(period_ids["FY2024"], actor=admin)
        with pytest.raises(ModificationForbiddenError) as exc_info:
            ledger.delete_document(invoice, actor=owner)
        assert _reason(exc_info) is ForbiddenReason.PERIOD_LOCKED

    def test_period_checked_before_ownership(self, ledger, other_user, admin, invoice, period_ids):
        ledger.close_period(period_ids["FY2024"], actor=admin)
        with pytest.raises(ModificationForbiddenError):
            ledger.delete_document(invoice, actor=other_user)

    def test_draft_without_period_may_be_deleted(self, ledger, owner):
        document_id = ledger.create_document(
            "purchase", "PO-9", date(2030, 1, 1), Decimal("10"), "SAR", actor=owner
        )
        assert ledger.delete_document(document_id, actor=owner) == "deleted"


class TestVoucherPosted:
    def test_posted_voucher_cannot_be_deleted(self, ledger, owner, admin):
        posted = ledger.post_entry(
            "Manual adjustment",
            date(2024, 3, 15),
            [
                LineInput(account="5100", debit=Decimal("20")),
                LineInput(account="1110", credit=Decimal("20")),
            ],
            actor=owner,
        )
        voucher = ledger.create_document(
            "voucher", posted.voucher_number, date(2024, 3, 15), Decimal("20"), "SAR", actor=owner
        )

        with pytest.raises(ModificationForbiddenError) as exc_info:
            ledger.delete_document(voucher, actor=admin)
        assert _reason(exc_info) is ForbiddenReason.VOUCHER_POSTED

    def test_voucher_posted_through_document_path_cannot_be_deleted(self, ledger, owner):
        voucher = ledger.create_document(
            "voucher", "JV-USER-7", date(2024, 3, 15), Decimal("20"), "SAR", actor=owner
        )
        posted = ledger.post_document(
            voucher,
            "Manual adjustment",
            [
                LineInput(account="5100", debit=Decimal("20")),
                LineInput(account="1110", credit=Decimal("20")),
            ],
            actor=owner,
        )
        assert posted.voucher_number != "JV-USER-7"

        with pytest.raises(ModificationForbiddenError) as exc_info:
            ledger.delete_document(voucher, actor=owner)
        assert _reason(exc_info) is ForbiddenReason.VOUCHER_POSTED
        assert ledger.get_document(voucher).state == "posted"
        assert ledger.account_balance("5100").balance == Decimal("20")

    def test_unposted_voucher_can_be_deleted(self, ledger, owner):
        voucher = ledger.create_document(
            "voucher", "JV-DRAFT-1", date(2024, 3, 15), Decimal("20"), "SAR", actor=owner
        )
        assert ledger.delete_document(voucher, actor=owner) == "deleted"


class TestOwnership:
    def test_non_owner_without_elevated_permission_denied(self, ledger, other_user, invoice):
        with pytest.raises(AuthorizationError) as exc_info:
            ledger.delete_document(invoice, actor=other_user)
        assert exc_info.value.http_status == 403
        assert ledger.get_document(invoice).state == "posted"

    def test_elevated_permission_allows_non_owner(self, ledger, invoice):
        supervisor = Actor(id="user-3", permissions=frozenset({"sales.delete_any"}))
        assert ledger.delete_document(invoice, actor=supervisor) == "deleted"

    def test_admin_may_delete_unpaid_invoice(self, ledger, admin, invoice):
        assert ledger.delete_document(invoice, actor=admin) == "deleted"


class TestSuccessfulModification:
    def test_owner_delete_reverses_ledger_entries(self, ledger, owner, invoice, audit):
        assert ledger.delete_document(invoice, actor=owner) == "deleted"

        report = ledger.trial_balance()
        assert all(row.debit_total == row.credit_total for row in report.rows)
        assert ledger.account_balance("1200").balance == Decimal("0")
        assert [row.action for row in audit.entries(module="sales", action="delete")] == ["delete"]

    def test_owner_reverse(self, ledger, owner, invoice):
        assert ledger.reverse_document(invoice, actor=owner) == "reversed"
        assert ledger.account_balance("4100").balance == Decimal("0")

    def test_terminal_state_is_final(self, ledger, owner, invoice):
        ledger.reverse_document(invoice, actor=owner)
        with pytest.raises(ModificationForbiddenError) as exc_info:
            ledger.delete_document(invoice, actor=owner)
        assert _reason(exc_info) is ForbiddenReason.INVALID_STATE

    def test_draft_cannot_be_reversed(self, ledger, owner):
        draft = ledger.create_document(
            "invoice", "INV-002", date(2024, 3, 15), Decimal("10"), "SAR", actor=owner
        )
        with pytest.raises(ModificationForbiddenError) as exc_info:
            ledger.reverse_document(draft, actor=owner)
        assert _reason(exc_info) is ForbiddenReason.INVALID_STATE

    def test_unknown_document(self, ledger, owner):
        with pytest.raises(DocumentNotFoundError):
            ledger.delete_document(uuid4(), actor=owner)

    def test_document_view(self, ledger, invoice):
        view = ledger.get_document(invoice)
        assert view.module == "sales"
        assert view.owner_id == "user-1"
        assert view.total_amount == Decimal("115")
        assert view.amount_paid == Decimal("0")
