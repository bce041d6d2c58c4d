"""
AuditTrailRecorder -- fire-and-forget append to the audit log.

Responsibility:
    Records who did what, in which module, from where, with a redacted copy
    of the request payload.

Architecture position:
    Kernel > Services.  Unlike every other service it does not take the
    caller's session: each record is written in its own short transaction
    from ``Database.session_scope``, after the business transaction has
    committed.

Invariants enforced:
    - Sensitive keys (password, token, session_token, credit_card, cvv) are
      replaced with "[REDACTED]" at any depth, matched case-insensitively.
    - A missing actor is recorded as "Guest".
    - A failed audit write never fails the business operation: database
      errors are logged as ``audit_write_failed`` and ``record`` returns
      False.
"""

from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from ledger_kernel.db.engine import Database
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.audit_log import GUEST_ACTOR, AuditLogEntry

logger = get_logger("services.audit_trail")

REDACTED = "[REDACTED]"

SENSITIVE_KEYS = frozenset({"password", "token", "session_token", "credit_card", "cvv"})


def redact(value: Any) -> Any:
    """
    Copy ``value`` with sensitive keys masked and leaves made JSON-safe.
    """
    if isinstance(value, Mapping):
        return {
            str(key): REDACTED if str(key).lower() in SENSITIVE_KEYS else redact(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple, set, frozenset)):
        return [redact(item) for item in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


class AuditTrailRecorder:
    def __init__(self, database: Database, clock: Clock | None = None):
        self._database = database
        self._clock = clock or SystemClock()

    def record(
        self,
        actor: str | None,
        action: str,
        module: str,
        description: str,
        metadata: Mapping[str, Any] | None = None,
        ip_address: str | None = None,
    ) -> bool:
        """
        Append one audit row.

        Returns:
            True when the row was committed, False when the write failed.
        """
        try:
            with self._database.session_scope() as session:
                session.add(
                    AuditLogEntry(
                        occurred_at=self._clock.now(),
                        actor=actor or GUEST_ACTOR,
                        action=action,
                        module=module,
                        description=description,
                        ip_address=ip_address,
                        payload=redact(metadata) if metadata is not None else None,
                    )
                )
        except SQLAlchemyError as exc:
            logger.error(
                "audit_write_failed",
                extra={
                    "audit_action": action,
                    "audit_module": module,
                    "error": str(exc),
                },
                exc_info=True,
            )
            return False
        logger.debug("audit_recorded", extra={"audit_action": action, "audit_module": module})
        return True

    def entries(
        self,
        *,
        module: str | None = None,
        action: str | None = None,
        limit: int = 100,
    ) -> list[AuditLogEntry]:
        """Most recent audit rows first."""
        stmt = select(AuditLogEntry)
        if module is not None:
            stmt = stmt.where(AuditLogEntry.module == module)
        if action is not None:
            stmt = stmt.where(AuditLogEntry.action == action)
        stmt = stmt.order_by(AuditLogEntry.occurred_at.desc()).limit(limit)
        with self._database.session_scope() as session:
            return list(session.execute(stmt).scalars())
