"""
Ledger Kernel

The double-entry general-ledger posting core:
- Balanced, atomic journal postings with voucher numbering
- Fiscal period open/closed/locked enforcement
- Policy-driven multi-currency conversion with rate history
- Guarded document reversal and void
- Append-only, redacted audit trail
"""

__version__ = "0.1.0"
