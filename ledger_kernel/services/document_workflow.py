"""
DocumentWorkflow -- guarded delete and reversal of financial documents.

Responsibility:
    Decides whether an invoice, purchase or journal voucher may be deleted
    or reversed, and when it may, reverses every ledger entry the document
    produced and moves it to its terminal state.

Architecture position:
    Kernel > Services.  Consumes JournalPoster (compensating entries) and
    an Authorizer for the ownership predicates.

Invariants enforced, in this order:
    1. The state machine allows the move (INVALID_STATE).
    2. No payment has been applied (PAYMENTS_APPLIED).
    3. The fiscal period of every ledger entry referencing the document,
       or of the document date when none does, is neither locked nor
       closed (PERIOD_LOCKED / PERIOD_CLOSED).
    4. A journal voucher has no general-ledger row carrying its number and
       no unreversed entry referencing it (VOUCHER_POSTED).
    5. The actor owns the document or holds elevated permission for the
       module and action; otherwise AuthorizationError (403).
    Checks 1-4 are business state and apply to every actor, admins
    included.  Elevated permission lifts check 5 only.

Failure modes:
    - ModificationForbiddenError with the failing ForbiddenReason.
    - AuthorizationError.
    - DocumentNotFoundError.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import and_, or_, select

from ledger_kernel.db.types import ZERO, normalize_currency, round_amount, to_decimal
from ledger_kernel.domain.authorization import Actor, Authorizer
from ledger_kernel.domain.document_state import DocumentState, transition
from ledger_kernel.exceptions import (
    AuthorizationError,
    BusinessLogicError,
    DocumentNotFoundError,
    ForbiddenReason,
    ModificationForbiddenError,
    NoPeriodDefinedError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.document import Document, DocumentType
from ledger_kernel.models.fiscal_period import FiscalPeriod
from ledger_kernel.models.journal import JournalEntry
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.journal_poster import JournalPoster

logger = get_logger("services.document_workflow")


class DocumentWorkflow(BaseService):
    def __init__(self, session, authorizer: Authorizer, settings_provider=None, clock=None):
        super().__init__(session, settings_provider, clock)
        self.authorizer = authorizer
        self.poster = JournalPoster(session, settings_provider, clock)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get(self, document_id: UUID, *, lock: bool = False) -> Document:
        stmt = select(Document).where(Document.id == document_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        document = self.session.execute(stmt).scalar_one_or_none()
        if document is None:
            raise DocumentNotFoundError(str(document_id))
        return document

    def ledger_entries(self, document: Document) -> list[JournalEntry]:
        """Entries posted for the document, reversals excluded."""
        return list(
            self.session.execute(
                select(JournalEntry)
                .where(
                    JournalEntry.reference_type == document.reference_type,
                    JournalEntry.reference_id == str(document.id),
                    JournalEntry.reversal_of_id.is_(None),
                )
                .order_by(JournalEntry.entry_date, JournalEntry.voucher_number)
            ).scalars()
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create_document(
        self,
        document_type: DocumentType | str,
        document_number: str,
        owner_id: str,
        document_date: date,
        total_amount: Decimal,
        currency: str,
    ) -> Document:
        total = round_amount(to_decimal(total_amount))
        if total < ZERO:
            raise BusinessLogicError("total_amount cannot be negative")
        document = Document(
            document_type=DocumentType(document_type).value,
            document_number=document_number,
            owner_id=owner_id,
            state=DocumentState.DRAFT.value,
            document_date=document_date,
            currency=normalize_currency(currency),
            total_amount=total,
            amount_paid=ZERO,
        )
        self.session.add(document)
        self.session.flush()
        logger.info(
            "document_created",
            extra={
                "document_id": str(document.id),
                "document_type": document.document_type,
                "document_number": document_number,
            },
        )
        return document

    def mark_posted(self, document_id: UUID) -> Document:
        document = self.get(document_id, lock=True)
        document.state = transition(
            document.state, DocumentState.POSTED, document_id=str(document.id), action="post"
        ).value
        self.session.flush()
        logger.info("document_posted", extra={"document_id": str(document.id)})
        return document

    def apply_payment(self, document_id: UUID, amount: Decimal) -> Document:
        amount = round_amount(to_decimal(amount))
        if amount <= ZERO:
            raise BusinessLogicError("payment amount must be positive")
        document = self.get(document_id, lock=True)
        if document.amount_paid + amount > document.total_amount:
            raise BusinessLogicError(
                f"payment of {amount} exceeds the outstanding "
                f"{document.total_amount - document.amount_paid}"
            )
        document.amount_paid = document.amount_paid + amount
        self.session.flush()
        logger.info(
            "document_payment_applied",
            extra={"document_id": str(document.id), "amount": amount},
        )
        return document

    def delete(self, document_id: UUID, actor: Actor) -> Document:
        """
        Delete a draft or posted document.  Ledger entries it produced are
        reversed, never removed.
        """
        return self._finish(document_id, actor, action="delete", target=DocumentState.DELETED)

    def reverse(self, document_id: UUID, actor: Actor) -> Document:
        """Reverse a posted document and every ledger entry it produced."""
        return self._finish(document_id, actor, action="reverse", target=DocumentState.REVERSED)

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def check_modifiable(self, document: Document, actor: Actor, action: str) -> None:
        """Run every guard for ``action``; raise on the first that fails."""
        document_id = str(document.id)

        if to_decimal(document.amount_paid) > ZERO:
            raise ModificationForbiddenError(
                document_id,
                action,
                ForbiddenReason.PAYMENTS_APPLIED,
                detail=f"{document.amount_paid} paid",
            )

        for period in self._governing_periods(document):
            if period.is_locked:
                raise ModificationForbiddenError(
                    document_id, action, ForbiddenReason.PERIOD_LOCKED, detail=period.name
                )
            if period.is_closed:
                raise ModificationForbiddenError(
                    document_id, action, ForbiddenReason.PERIOD_CLOSED, detail=period.name
                )

        if DocumentType(document.document_type) == DocumentType.VOUCHER:
            posted = self.session.execute(
                select(JournalEntry.id).where(
                    or_(
                        JournalEntry.voucher_number == document.document_number,
                        and_(
                            JournalEntry.reference_type == document.reference_type,
                            JournalEntry.reference_id == str(document.id),
                            JournalEntry.reversal_of_id.is_(None),
                        ),
                    )
                )
            ).first()
            if posted is not None:
                raise ModificationForbiddenError(
                    document_id,
                    action,
                    ForbiddenReason.VOUCHER_POSTED,
                    detail=document.document_number,
                )

        if not (
            self.authorizer.is_owner(actor, document.owner_id)
            or self.authorizer.has_elevated_permission(actor, document.module, action)
        ):
            logger.warning(
                "document_modification_denied",
                extra={
                    "document_id": document_id,
                    "action": action,
                    "actor_id": actor.display_id,
                    "doc_module": document.module,
                },
            )
            raise AuthorizationError(
                actor.id, action, document.module, detail="actor does not own the document"
            )

    def _governing_periods(self, document: Document) -> list[FiscalPeriod]:
        entries = self.ledger_entries(document)
        if entries:
            periods = {entry.fiscal_period_id: entry.fiscal_period for entry in entries}
            return list(periods.values())
        try:
            return [self.poster.periods.period_for(document.document_date)]
        except NoPeriodDefinedError:
            # nothing has been posted and no period covers the date
            return []

    def _finish(
        self, document_id: UUID, actor: Actor, *, action: str, target: DocumentState
    ) -> Document:
        document = self.get(document_id, lock=True)
        new_state = transition(document.state, target, document_id=str(document.id), action=action)
        self.check_modifiable(document, actor, action)

        reversal_ids = []
        for entry in self.ledger_entries(document):
            if self.poster.find_reversal(entry.id) is not None:
                continue
            reversal_ids.append(
                self.poster.reverse(
                    entry.id,
                    actor_id=actor.display_id,
                    reason=f"{document.document_type} {document.document_number} {action}",
                )
            )

        document.state = new_state.value
        self.session.flush()
        logger.info(
            "document_state_changed",
            extra={
                "document_id": str(document.id),
                "action": action,
                "state": new_state.value,
                "reversal_count": len(reversal_ids),
            },
        )
        return document
