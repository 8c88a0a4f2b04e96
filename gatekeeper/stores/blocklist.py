"""Append-only permanent block list."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List

from gatekeeper.utils import exclusive_lock, normalize_ip

LOGGER = logging.getLogger(__name__)


class BlockListUnavailable(RuntimeError):
    """Raised when the block list file cannot be read or written."""


def _parse_entries(text: str) -> List[str]:
    seen = set()
    entries: List[str] = []
    for line in text.splitlines():
        normalized = normalize_ip(line)
        if normalized and normalized not in seen:
            seen.add(normalized)
            entries.append(normalized)
    return entries


class BlockListStore:
    """One identifier per line; entries are only ever appended."""

    def __init__(self, path: Path, *, lock_timeout: float = 2.0) -> None:
        self._path = Path(path)
        self._lock_timeout = lock_timeout

    def entries(self) -> List[str]:
        """Return the blocked identifiers in file order."""

        try:
            text = self._path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise BlockListUnavailable(f"cannot read block list {self._path}: {exc}") from exc
        return _parse_entries(text)

    def contains(self, identifier: str) -> bool:
        normalized = normalize_ip(identifier)
        if normalized is None:
            return False
        return normalized in self.entries()

    def add_if_absent(self, identifier: str) -> bool:
        """Append ``identifier`` unless present; ``True`` only when this call added it."""

        normalized = normalize_ip(identifier)
        if normalized is None:
            LOGGER.warning("refusing to block invalid address", extra={"client_ip": identifier})
            return False
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self._path, os.O_RDWR | os.O_CREAT | os.O_APPEND, 0o660)
            with os.fdopen(fd, "r+", encoding="utf-8", errors="replace") as handle:
                with exclusive_lock(handle, self._lock_timeout):
                    handle.seek(0)
                    text = handle.read()
                    if normalized in _parse_entries(text):
                        return False
                    # An interrupted append may have left the last line unterminated.
                    prefix = "\n" if text and not text.endswith("\n") else ""
                    handle.write(f"{prefix}{normalized}\n")
                    handle.flush()
                    os.fsync(handle.fileno())
        except OSError as exc:
            raise BlockListUnavailable(f"cannot update block list {self._path}: {exc}") from exc
        LOGGER.info("address added to block list", extra={"client_ip": normalized})
        return True
