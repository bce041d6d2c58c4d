"""
Module: ledger_kernel.models.document
Responsibility: Minimal persisted view of a financial document (invoice,
    purchase, journal voucher) as seen by the reversal/void workflow.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - amount_paid >= 0 and total_amount >= 0 (CHECK constraints).
    - state changes only through DocumentWorkflow, which applies the
      transition table in ledger_kernel.domain.document_state.

Audit relevance:
    The ledger entries a document produced are linked back to it through
    journal_entries.reference_type / reference_id.
"""

from datetime import date
from decimal import Decimal
from enum import Enum

from sqlalchemy import CheckConstraint, Date, Index, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TimestampedBase
from ledger_kernel.db.types import Amount


class DocumentType(str, Enum):
    """Kinds of documents that post to the ledger."""

    INVOICE = "invoice"
    PURCHASE = "purchase"
    VOUCHER = "voucher"


# Permission module each document type belongs to
DOCUMENT_MODULES: dict[DocumentType, str] = {
    DocumentType.INVOICE: "sales",
    DocumentType.PURCHASE: "purchases",
    DocumentType.VOUCHER: "accounting",
}


class Document(TimestampedBase):
    """A business document whose deletion or reversal is guarded."""

    __tablename__ = "documents"

    __table_args__ = (
        UniqueConstraint("document_type", "document_number", name="uq_document_number"),
        CheckConstraint("amount_paid >= 0", name="ck_document_paid_non_negative"),
        CheckConstraint("total_amount >= 0", name="ck_document_total_non_negative"),
        Index("idx_document_owner", "owner_id"),
    )

    document_type: Mapped[str] = mapped_column(String(20), nullable=False)

    document_number: Mapped[str] = mapped_column(String(50), nullable=False)

    owner_id: Mapped[str] = mapped_column(String(100), nullable=False)

    state: Mapped[str] = mapped_column(String(20), nullable=False)

    document_date: Mapped[date] = mapped_column(Date, nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    total_amount: Mapped[Amount] = mapped_column(
        Numeric(18, 4), nullable=False, default=Decimal("0")
    )

    amount_paid: Mapped[Amount] = mapped_column(
        Numeric(18, 4), nullable=False, default=Decimal("0")
    )

    def __repr__(self) -> str:
        return f"<Document {self.document_type} {self.document_number} {self.state}>"

    @property
    def module(self) -> str:
        return DOCUMENT_MODULES[DocumentType(self.document_type)]

    @property
    def reference_type(self) -> str:
        """Value used in journal_entries.reference_type for this document."""
        return DocumentType(self.document_type).value
