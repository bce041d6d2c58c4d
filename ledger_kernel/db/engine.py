"""
Module: ledger_kernel.db.engine
Responsibility: The explicitly passed database handle: engine, session
    factory, transactional scopes and the bounded retry loop for transient
    failures.
Architecture position: Kernel > DB.  May import from db/base.py.  Imports
    models/ only inside create_all/drop_all so Base.metadata is complete.

Invariants enforced:
    - No module-level engine.  A Database is created once at process start,
      passed down to every caller, and disposed at shutdown.
    - PostgreSQL sessions run at READ COMMITTED; callers that need stronger
      isolation (period close/lock) request SERIALIZABLE per transaction.
    - session_scope() commits on normal exit and rolls back on any exception.
    - run_in_transaction() retries ONLY failures classified by is_retryable().

Failure modes:
    - TransientDatabaseError when retryable failures exhaust max_attempts.
    - Every non-retryable exception propagates unchanged after rollback.

Audit relevance:
    All ledger transactions flow through sessions created here, so the
    commit-or-rollback guarantee of session_scope() is what makes a journal
    entry header and its lines visible together or not at all.
"""

import time
from collections.abc import Callable, Generator
from contextlib import contextmanager
from typing import Any, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ledger_kernel.exceptions import TransientDatabaseError
from ledger_kernel.logging_config import get_logger

logger = get_logger("db.engine")

T = TypeVar("T")

# SQLSTATE codes for serialization_failure and deadlock_detected
_RETRYABLE_PGCODES = frozenset({"40001", "40P01"})
_RETRYABLE_MESSAGES = (
    "deadlock",
    "could not serialize access",
    "database is locked",
    "server closed the connection",
    "connection reset",
)


def is_retryable(exc: BaseException) -> bool:
    """
    Classify a database failure as transient.

    Deadlocks, serialization failures, invalidated connections and SQLite
    busy errors are transient.  Everything else (integrity violations,
    business-rule errors) is fatal to the request.
    """
    if not isinstance(exc, DBAPIError):
        return False
    if exc.connection_invalidated:
        return True
    pgcode = getattr(exc.orig, "pgcode", None)
    if pgcode in _RETRYABLE_PGCODES:
        return True
    if isinstance(exc, OperationalError):
        message = str(exc.orig).lower()
        return any(fragment in message for fragment in _RETRYABLE_MESSAGES)
    return False


def _install_sqlite_transaction_fix(engine: Engine, *, wal: bool) -> None:
    """
    Let SQLAlchemy own BEGIN on pysqlite so SAVEPOINT works.

    pysqlite defers BEGIN until the first DML statement, which breaks nested
    transactions; this hands transaction control back to SQLAlchemy.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if wal:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


class Database:
    """
    Connection handle shared by every ledger service in the process.

    Contract:
        Owns the SQLAlchemy Engine and session factory for one database URL.
        Services never create engines; they receive a Session produced here.

    Guarantees:
        - session_scope() is atomic: commit on success, rollback on error.
        - run_in_transaction() re-runs the whole unit of work, each attempt
          in a fresh session, only for transient failures.

    Non-goals:
        - Does NOT retry business-rule errors.
        - Does NOT cache sessions across requests.
    """

    def __init__(
        self,
        url: str,
        *,
        echo: bool = False,
        pool_size: int = 20,
        max_overflow: int = 10,
        pool_pre_ping: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.url = make_url(url)
        self._sleep = sleep

        if self.url.get_backend_name() == "sqlite":
            in_memory = self.url.database in (None, "", ":memory:")
            kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
            if in_memory:
                kwargs["poolclass"] = StaticPool
            self.engine = create_engine(url, echo=echo, **kwargs)
            _install_sqlite_transaction_fix(self.engine, wal=not in_memory)
        else:
            self.engine = create_engine(
                url,
                echo=echo,
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_pre_ping=pool_pre_ping,
                isolation_level="READ COMMITTED",
            )

        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

        logger.info(
            "database_initialized",
            extra={"dialect": self.engine.dialect.name, "echo": echo},
        )

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    def session(self) -> Session:
        """Return a new, unmanaged session.  The caller must close it."""
        return self._session_factory()

    @contextmanager
    def session_scope(
        self, isolation_level: str | None = None
    ) -> Generator[Session, None, None]:
        """
        Provide a transactional scope around a series of operations.

        Args:
            isolation_level: Optional per-transaction isolation level such as
                "SERIALIZABLE".  Applied before any statement runs.
        """
        session = self.session()
        try:
            if isolation_level is not None:
                session.connection(execution_options={"isolation_level": isolation_level})
            yield session
            session.commit()
            logger.debug("transaction_committed")
        except Exception:
            session.rollback()
            logger.debug("transaction_rolled_back", exc_info=True)
            raise
        finally:
            session.close()

    def run_in_transaction(
        self,
        fn: Callable[[Session], T],
        *,
        operation: str,
        max_attempts: int = 3,
        backoff_seconds: float = 0.05,
        isolation_level: str | None = None,
    ) -> T:
        """
        Run ``fn`` in its own committed transaction, retrying transient faults.

        Each attempt opens a fresh session so no state from a failed attempt
        leaks into the next.  Backoff grows linearly with the attempt number.

        Raises:
            TransientDatabaseError: Retryable failures exhausted max_attempts.
            Exception: Any non-retryable error from ``fn`` or the commit.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        for attempt in range(1, max_attempts + 1):
            try:
                with self.session_scope(isolation_level=isolation_level) as session:
                    return fn(session)
            except DBAPIError as exc:
                if not is_retryable(exc):
                    raise
                if attempt == max_attempts:
                    logger.error(
                        "transaction_retries_exhausted",
                        extra={"operation": operation, "attempts": attempt},
                    )
                    raise TransientDatabaseError(operation, attempt) from exc
                delay = backoff_seconds * attempt
                logger.warning(
                    "transaction_retry",
                    extra={
                        "operation": operation,
                        "attempt": attempt,
                        "max_attempts": max_attempts,
                        "delay_seconds": delay,
                        "error": str(exc.orig),
                    },
                )
                self._sleep(delay)
        raise AssertionError("unreachable")

    def create_all(self) -> None:
        """Create every ledger table."""
        import ledger_kernel.models  # noqa: F401  registers all tables
        from ledger_kernel.db.base import Base

        Base.metadata.create_all(self.engine)

    def drop_all(self) -> None:
        """Drop every ledger table.  Use with caution - primarily for testing."""
        import ledger_kernel.models  # noqa: F401
        from ledger_kernel.db.base import Base

        Base.metadata.drop_all(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()
        logger.info("database_disposed")
