"""
BaseService -- abstract base for the ledger's write services.

Responsibility:
    Common constructor and session-handling contract.  Services receive a
    SQLAlchemy ``Session`` and persist with ``session.flush()``, never
    ``session.commit()``: the caller (LedgerService, an API handler, or a
    test) owns the transaction boundary.

Failure modes:
    - A subclass that commits breaks the all-or-nothing guarantee of a
      multi-step operation such as reversing every entry of a document.
"""

from abc import ABC

from sqlalchemy.orm import Session

from ledger_config.provider import SettingsProvider, StaticSettings
from ledger_config.schema import LedgerSettings
from ledger_kernel.domain.clock import Clock, SystemClock


class BaseService(ABC):
    """
    Abstract base class for ledger services.

    Contract:
        Accepts a ``Session`` from the caller, a settings provider, and a
        clock.  Settings are read through ``self.settings`` at call time.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read-only reporting; that is selectors/.
    """

    def __init__(
        self,
        session: Session,
        settings_provider: SettingsProvider | None = None,
        clock: Clock | None = None,
    ):
        self.session = session
        self._settings_provider = settings_provider or StaticSettings()
        self._clock = clock or SystemClock()

    @property
    def settings(self) -> LedgerSettings:
        return self._settings_provider()
