"""
Tax calculation -- pure, configuration driven.

The rule-based tax engine is the primary path.  The legacy single
``accounting.vat_rate`` line is kept as the fallback when
``tax.use_tax_engine`` is off or no rule is effective on the date.

Engine amounts round half-up to 4 places; the legacy path rounds to 2.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from ledger_config.schema import LedgerSettings, TaxType
from ledger_kernel.db.types import ZERO, quantize
from ledger_kernel.domain.dtos import LineInput

LEGACY_TAX_CODE = "VAT"


@dataclass(frozen=True)
class TaxLine:
    code: str
    name: str
    rate: Decimal
    taxable_amount: Decimal
    tax_amount: Decimal
    account_code: str


@dataclass(frozen=True)
class TaxResult:
    lines: tuple[TaxLine, ...]
    used_engine: bool

    @property
    def total_tax(self) -> Decimal:
        return sum((line.tax_amount for line in self.lines), ZERO)


class TaxCalculator:
    def __init__(self, settings: LedgerSettings):
        self._settings = settings

    def calculate(self, taxable_amount: Decimal, on_date: date) -> TaxResult:
        if self._settings.tax.use_tax_engine:
            lines = tuple(
                self._apply_rule(rule, taxable_amount)
                for rule in self._settings.tax.rules
                if rule.is_effective(on_date)
            )
            if lines:
                return TaxResult(lines=lines, used_engine=True)
        return self.calculate_legacy(taxable_amount)

    def calculate_legacy(self, taxable_amount: Decimal) -> TaxResult:
        rate = self._settings.accounting.vat_rate
        line = TaxLine(
            code=LEGACY_TAX_CODE,
            name="VAT (Legacy)",
            rate=rate,
            taxable_amount=taxable_amount,
            tax_amount=quantize(taxable_amount * rate, 2),
            account_code=self._settings.tax.output_vat_account,
        )
        return TaxResult(lines=(line,), used_engine=False)

    @staticmethod
    def _apply_rule(rule, taxable_amount: Decimal) -> TaxLine:
        if rule.tax_type == TaxType.PERCENTAGE:
            rate = rule.rate
            amount = quantize(taxable_amount * rate, 4)
        else:
            rate = ZERO
            amount = quantize(rule.rate, 4)
        return TaxLine(
            code=rule.code,
            name=rule.name,
            rate=rate,
            taxable_amount=taxable_amount,
            tax_amount=amount,
            account_code=rule.account_code,
        )


def sale_lines(
    receivable_account: str,
    revenue_account: str,
    net_amount: Decimal,
    tax: TaxResult,
) -> list[LineInput]:
    """
    Posting lines for a taxed sale: debit the gross amount, credit revenue
    and one credit per tax line.
    """
    lines = [
        LineInput(account=receivable_account, debit=net_amount + tax.total_tax),
        LineInput(account=revenue_account, credit=net_amount),
    ]
    lines.extend(
        LineInput(account=t.account_code, credit=t.tax_amount, description=t.name)
        for t in tax.lines
        if t.tax_amount > ZERO
    )
    return lines
