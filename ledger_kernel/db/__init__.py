"""Database layer: declarative base, column types and the connection handle."""

from ledger_kernel.db.base import Base, TimestampedBase, UUIDString
from ledger_kernel.db.engine import Database, is_retryable

__all__ = [
    "Base",
    "Database",
    "TimestampedBase",
    "UUIDString",
    "is_retryable",
]
