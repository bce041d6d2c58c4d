"""
Module: ledger_kernel.models.audit_log
Responsibility: ORM persistence for the append-only audit trail of
    state-changing financial actions.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Rows are never updated or deleted (ORM guard below).
    - payload is stored already redacted by AuditTrailRecorder.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Index, String, event
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base
from ledger_kernel.exceptions import ImmutabilityViolationError

GUEST_ACTOR = "Guest"


class AuditLogEntry(Base):
    """One audited action: who did what, in which module, from where."""

    __tablename__ = "audit_log"

    __table_args__ = (
        Index("idx_audit_occurred_at", "occurred_at"),
        Index("idx_audit_module_action", "module", "action"),
    )

    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    actor: Mapped[str] = mapped_column(String(100), nullable=False, default=GUEST_ACTOR)

    action: Mapped[str] = mapped_column(String(50), nullable=False)

    module: Mapped[str] = mapped_column(String(50), nullable=False)

    description: Mapped[str] = mapped_column(String(1000), nullable=False)

    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)

    payload: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLogEntry {self.occurred_at} {self.actor} {self.module}.{self.action}>"


@event.listens_for(AuditLogEntry, "before_update")
def _reject_audit_update(mapper, connection, target):
    raise ImmutabilityViolationError("audit_log", str(target.id))


@event.listens_for(AuditLogEntry, "before_delete")
def _reject_audit_delete(mapper, connection, target):
    raise ImmutabilityViolationError("audit_log", str(target.id))
