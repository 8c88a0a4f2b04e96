"""Append-only audit trail of rejected requests."""
from __future__ import annotations

import logging
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Optional

from gatekeeper.utils import exclusive_lock

LOGGER = logging.getLogger(__name__)


def format_audit_line(identifier: Optional[str], reason: str, when: float) -> str:
    """Render ``YYYY-MM-DD HH:MM:SS | identifier | reason`` in UTC."""

    stamp = datetime.fromtimestamp(when, tz=UTC).strftime("%Y-%m-%d %H:%M:%S")
    return f"{stamp} | {identifier or '-'} | {reason}\n"


class AuditLog:
    """Best-effort rejection log; a ``None`` path disables it."""

    def __init__(self, path: Optional[Path], *, lock_timeout: float = 2.0) -> None:
        self._path = Path(path) if path else None
        self._lock_timeout = lock_timeout

    def record(self, identifier: Optional[str], reason: str, when: float) -> bool:
        if self._path is None:
            return False
        line = format_audit_line(identifier, reason, when)
        try:
            with open(self._path, "a", encoding="utf-8") as handle:
                with exclusive_lock(handle, self._lock_timeout):
                    handle.write(line)
                    handle.flush()
                    os.fsync(handle.fileno())
        except OSError:
            LOGGER.warning(
                "failed to write audit record",
                exc_info=True,
                extra={"client_ip": identifier, "reason": reason},
            )
            return False
        return True
