"""
Response envelope tests for the ledger request handlers.

Verifies:
- Success bodies are {"success": true, "data": ...}
- Business-rule failures are 400, permission failures 403, missing records 404
- Malformed payloads never reach the services
- Unexpected errors become a generic 500
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.api.envelope import GENERIC_ERROR_MESSAGE
from ledger_kernel.api.handlers import LedgerApi, parse_amount, parse_lines
from ledger_kernel.domain.authorization import Actor
from ledger_kernel.domain.dtos import LineInput
from ledger_kernel.exceptions import InvalidPayloadError

SALE_PAYLOAD = {
    "description": "Invoice INV-001",
    "date": "2024-03-15",
    "lines": [
        {"account_id": "1200", "debit": "115.00"},
        {"account_id": "4100", "credit": "100.00"},
        {"account_id": "2210", "credit": "15.00"},
    ],
}


@pytest.fixture
def api(ledger):
    return LedgerApi(ledger)


@pytest.fixture
def outsider():
    return Actor(id="user-9")


@pytest.fixture
def invoice(ledger, owner):
    document_id = ledger.create_document(
        "invoice", "INV-001", date(2024, 3, 15), Decimal("115.00"), "SAR", actor=owner
    )
    ledger.post_document(
        document_id,
        "Invoice INV-001",
        [
            LineInput(account="1200", debit=Decimal("115.00")),
            LineInput(account="4100", credit=Decimal("100.00")),
            LineInput(account="2210", credit=Decimal("15.00")),
        ],
        actor=owner,
    )
    return document_id


class TestPostJournalEntry:
    def test_created(self, api, owner):
        response = api.post_journal_entry(SALE_PAYLOAD, owner)

        assert response.status == 201
        assert response.body["success"] is True
        data = response.body["data"]
        assert data["voucher_number"] == "JV-000001"
        assert Decimal(data["total_debits"]) == Decimal("115")
        assert data["currency"] == "SAR"

    def test_unbalanced_is_400(self, api, owner):
        payload = {**SALE_PAYLOAD, "lines": SALE_PAYLOAD["lines"][:2]}
        response = api.post_journal_entry(payload, owner)

        assert response.status == 400
        assert response.body == {
            "success": False,
            "message": "Debits (115.0000) must equal Credits (100.0000)",
        }

    @pytest.mark.parametrize(
        "change, message",
        [
            ({"description": ""}, "Invalid description: is required"),
            ({"date": "15/03/2024"}, "is not an ISO date"),
            ({"lines": []}, "Invalid lines: expected a non-empty list"),
            ({"lines": [{"account_id": "1200", "debit": "abc"}]}, "is not a decimal amount"),
            ({"lines": [{"debit": "1"}, {"account_id": "4100", "credit": "1"}]}, "lines[1].account_id"),
        ],
    )
    def test_malformed_payload_is_400(self, api, owner, change, message):
        response = api.post_journal_entry({**SALE_PAYLOAD, **change}, owner)
        assert response.status == 400
        assert message in response.body["message"]

    def test_non_object_payload(self, api, owner):
        assert api.post_journal_entry(["not", "a", "dict"], owner).status == 400

    def test_without_permission_is_403(self, api, outsider):
        response = api.post_journal_entry(SALE_PAYLOAD, outsider)
        assert response.status == 403
        assert response.body["success"] is False
        assert "not permitted" in response.body["message"]

    def test_locked_period_is_400(self, api, ledger, owner, admin, period_ids):
        ledger.lock_period(period_ids["FY2024"], actor=admin)
        response = api.post_journal_entry({**SALE_PAYLOAD, "date": "2024-06-01"}, owner)
        assert response.status == 400
        assert "locked fiscal period" in response.body["message"]

    def test_foreign_entry(self, api, ledger, owner, sar_policy):
        ledger.record_rate("USD", "SAR", Decimal("3.75"), date(2024, 1, 1), actor=owner)
        payload = {
            "description": "USD sale",
            "date": "2024-03-15",
            "transaction_currency": "USD",
            "lines": [
                {"account_id": "1300", "debit": "100"},
                {"account_id": "4100", "credit": "100"},
            ],
        }
        response = api.post_journal_entry(payload, owner)

        assert response.status == 201
        assert response.body["data"]["conversion"]["decision"] == "POLICY_MANDATED"
        assert Decimal(response.body["data"]["total_debits"]) == Decimal("375")

    def test_unexpected_error_is_generic_500(self, api, ledger, owner, monkeypatch, captured_logs):
        def explode(*args, **kwargs):
            raise RuntimeError("connection pool on fire")

        monkeypatch.setattr(ledger, "post_entry", explode)
        response = api.post_journal_entry(SALE_PAYLOAD, owner)

        assert response.status == 500
        assert response.body == {"success": False, "message": GENERIC_ERROR_MESSAGE}
        assert any(r["message"] == "unhandled_exception" for r in captured_logs())


class TestJournalEntryLookup:
    def test_unknown_entry_is_404(self, api, owner):
        response = api.get_journal_entry(uuid4(), owner)
        assert response.status == 404
        assert "Journal entry not found" in response.body["message"]

    def test_bad_id_is_400(self, api, owner):
        assert api.get_journal_entry("not-a-uuid", owner).status == 400

    def test_entry_returned(self, api, owner):
        entry_id = api.post_journal_entry(SALE_PAYLOAD, owner).body["data"]["entry_id"]
        data = api.get_journal_entry(entry_id, owner).body["data"]
        assert data["period_name"] == "FY2024"
        assert [line["account_code"] for line in data["lines"]] == ["1200", "4100", "2210"]

    def test_reverse_entry(self, api, owner):
        entry_id = api.post_journal_entry(SALE_PAYLOAD, owner).body["data"]["entry_id"]
        response = api.reverse_journal_entry(entry_id, owner, {"reason": "typo"})

        assert response.status == 201
        assert response.body["data"]["reversal_of_id"] == entry_id

    def test_reverse_someone_elses_entry_is_403(self, api, owner, other_user):
        entry_id = api.post_journal_entry(SALE_PAYLOAD, owner).body["data"]["entry_id"]
        assert api.reverse_journal_entry(entry_id, other_user).status == 403


class TestDocumentEndpoints:
    def test_admin_delete_of_paid_invoice_is_400(self, api, ledger, owner, admin, invoice):
        ledger.apply_payment(invoice, Decimal("50"), actor=owner)
        response = api.delete_document(invoice, admin)

        assert response.status == 400
        assert response.body["success"] is False
        assert "payments already applied" in response.body["message"]

    def test_non_owner_delete_is_403(self, api, other_user, invoice):
        assert api.delete_document(invoice, other_user).status == 403

    def test_actor_without_module_permission_is_403(self, api, outsider, invoice):
        assert api.delete_document(invoice, outsider).status == 403

    def test_owner_delete(self, api, owner, invoice):
        response = api.delete_document(str(invoice), owner)
        assert response.status == 200
        assert response.body["data"] == {"document_id": str(invoice), "state": "deleted"}

    def test_owner_void(self, api, owner, invoice):
        response = api.void_document(invoice, owner)
        assert response.body["data"]["state"] == "reversed"

    def test_unknown_document_is_404(self, api, owner):
        assert api.delete_document(uuid4(), owner).status == 404


class TestSaleInvoiceEndpoint:
    def test_created_with_vat(self, api, owner):
        response = api.post_sale_invoice(
            {"document_number": "INV-200", "date": "2024-03-15", "net_amount": "200"}, owner
        )

        assert response.status == 201
        assert Decimal(response.body["data"]["entry"]["total_debits"]) == Decimal("230")

    def test_missing_amount_is_400(self, api, owner):
        response = api.post_sale_invoice({"document_number": "INV-201", "date": "2024-03-15"}, owner)
        assert response.status == 400
        assert "net_amount" in response.body["message"]

    def test_without_sales_permission_is_403(self, api, outsider):
        response = api.post_sale_invoice(
            {"document_number": "INV-202", "date": "2024-03-15", "net_amount": "1"}, outsider
        )
        assert response.status == 403


class TestPeriodAndReportEndpoints:
    def test_close_and_lock(self, api, admin, period_ids):
        period_id = period_ids["FY2025"]
        assert api.close_period(period_id, admin).body["data"]["status"] == "closed"
        assert api.lock_period(period_id, admin).body["data"]["status"] == "locked"

    def test_close_needs_elevated_permission(self, api, owner, period_ids):
        assert api.close_period(period_ids["FY2025"], owner).status == 403

    def test_close_without_permission_is_403(self, api, outsider, period_ids):
        assert api.close_period(period_ids["FY2025"], outsider).status == 403

    def test_trial_balance(self, api, owner):
        api.post_journal_entry(SALE_PAYLOAD, owner)
        data = api.trial_balance(owner).body["data"]

        assert data["is_balanced"] is True
        assert Decimal(data["total_debits"]) == Decimal("115")
        assert {row["account_code"] for row in data["rows"]} == {"1200", "4100", "2210"}

    def test_account_balance_of_parent_includes_children(self, api, owner):
        api.post_journal_entry(SALE_PAYLOAD, owner)
        data = api.account_balance("4000", owner, as_of="2024-12-31").body["data"]
        assert Decimal(data["balance"]) == Decimal("100")

    def test_unknown_account_is_404(self, api, owner):
        assert api.account_balance("9999", owner).status == 404

    def test_convert_carries_label(self, api, ledger, owner, sar_policy):
        ledger.record_rate("USD", "SAR", Decimal("3.75"), date(2024, 1, 1), actor=owner)
        data = api.convert({"amount": "100", "currency": "USD", "date": "2024-03-15"}, owner).body["data"]

        assert data["decision"] == "POLICY_MANDATED"
        assert data["label"] == "Converted by policy"
        assert Decimal(data["converted_amount"]) == Decimal("375")

    def test_convert_bad_stage(self, api, owner, sar_policy):
        response = api.convert(
            {"amount": "1", "currency": "USD", "date": "2024-03-15", "stage": "LATER"}, owner
        )
        assert response.status == 400


class TestPayloadParsing:
    def test_amount_accepts_strings_and_floats(self):
        assert parse_amount("1.10", "debit") == Decimal("1.10")
        assert parse_amount(0.1, "debit") == Decimal("0.1")
        assert parse_amount(None, "debit") == Decimal("0")

    @pytest.mark.parametrize("value", [True, "NaN", "Infinity", "1,5"])
    def test_amount_rejects(self, value):
        with pytest.raises(InvalidPayloadError):
            parse_amount(value, "debit")

    def test_lines_accept_account_alias(self):
        lines = parse_lines([{"account": "1110", "debit": "5"}, {"account_id": "3100", "credit": 5}])
        assert [line.account for line in lines] == ["1110", "3100"]
        assert lines[1].credit == Decimal("5")
