"""
Taxed sales invoice posting.

Verifies:
- With the tax engine off, the single VAT rate is charged
- With the tax engine on, effective rules decide the tax lines
- The invoice document is created posted, for the gross amount
"""

from dataclasses import replace
from datetime import date
from decimal import Decimal

from ledger_config.schema import TaxRuleDef, TaxSettings, TaxType

REDUCED = TaxRuleDef(
    code="VAT5",
    name="Reduced VAT",
    tax_type=TaxType.PERCENTAGE,
    rate=Decimal("0.05"),
    account_code="2210",
    effective_from=date(2024, 1, 1),
)


def _enable_engine(settings_provider, *rules):
    settings_provider.value = replace(
        settings_provider.value, tax=TaxSettings(use_tax_engine=True, rules=rules)
    )


class TestLegacyVat:
    def test_vat_rate_applied(self, ledger, owner):
        document_id, posted = ledger.post_sale_invoice(
            "INV-100", date(2024, 3, 15), Decimal("100.00"), actor=owner
        )

        assert posted.total_debits == Decimal("115")
        assert ledger.account_balance("2210").balance == Decimal("15")
        assert ledger.account_balance("4100").balance == Decimal("100")

        document = ledger.get_document(document_id)
        assert document.state == "posted"
        assert document.module == "sales"
        assert document.total_amount == Decimal("115")


class TestTaxEngine:
    def test_effective_rule_used(self, ledger, owner, settings_provider):
        _enable_engine(settings_provider, REDUCED)

        _, posted = ledger.post_sale_invoice(
            "INV-101", date(2024, 3, 15), Decimal("100.00"), actor=owner
        )

        assert posted.total_debits == Decimal("105")
        assert ledger.account_balance("2210").balance == Decimal("5")

    def test_no_effective_rule_falls_back_to_vat_rate(self, ledger, owner, settings_provider):
        _enable_engine(settings_provider, replace(REDUCED, effective_from=date(2025, 1, 1)))

        _, posted = ledger.post_sale_invoice(
            "INV-102", date(2024, 3, 15), Decimal("100.00"), actor=owner
        )

        assert posted.total_debits == Decimal("115")

    def test_posted_invoice_is_recorded_in_audit(self, ledger, owner, audit):
        ledger.post_sale_invoice("INV-103", date(2024, 3, 15), Decimal("10"), actor=owner)

        rows = audit.entries(module="sales", action="create")
        assert any(row.description == "Posted invoice INV-103" for row in rows)
