"""Remote configuration sources consumed by the config refresh worker."""

from __future__ import annotations

import logging
import os
from typing import Any, Protocol

from .loader import read_document
from .schema import ConfigError

L = logging.getLogger("pump_runtime.config")


class ConfigSource(Protocol):
    def fetch_latest(self) -> dict[str, Any] | None: ...


class FileConfigSource:
    """Desired-properties document dropped on disk by an external sync agent.

    Returns the document only when the file changed since the previous fetch.
    """

    def __init__(self, path: str):
        self.path = path
        self._last_mtime: float | None = None

    def fetch_latest(self) -> dict[str, Any] | None:
        try:
            mtime = os.path.getmtime(self.path)
        except OSError:
            L.debug("Remote config not present: %s", self.path)
            return None
        if self._last_mtime is not None and mtime == self._last_mtime:
            return None
        try:
            document = read_document(self.path)
        except (OSError, ConfigError) as e:
            L.warning("Remote config unreadable (%s): %s", self.path, e)
            return None
        self._last_mtime = mtime
        return document


__all__ = ["ConfigSource", "FileConfigSource"]
