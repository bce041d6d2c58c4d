"""
Settings providers.

A provider is any zero-argument callable returning ``LedgerSettings``.
Services hold a provider, not a settings object, and call it every time
they need a value so configuration changes take effect without a restart.
"""

from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import Callable

from ledger_config.loader import load_settings
from ledger_config.schema import LedgerSettings

SettingsProvider = Callable[[], LedgerSettings]


class StaticSettings:
    """Provider that always returns the same settings object."""

    def __init__(self, settings: LedgerSettings | None = None):
        self._settings = settings or LedgerSettings()

    def __call__(self) -> LedgerSettings:
        return self._settings


class FileSettings:
    """
    Provider backed by a YAML file.

    The file is re-parsed whenever its modification time changes; a parse
    failure propagates so a broken file is never silently ignored.
    """

    def __init__(self, path: Path | str):
        self._path = Path(path)
        self._lock = threading.Lock()
        self._mtime: float | None = None
        self._settings: LedgerSettings | None = None

    def __call__(self) -> LedgerSettings:
        mtime = os.stat(self._path).st_mtime
        with self._lock:
            if self._settings is None or mtime != self._mtime:
                self._settings = load_settings(self._path)
                self._mtime = mtime
            return self._settings
