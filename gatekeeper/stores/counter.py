"""Durable per-client request counters."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import IO, Any, Optional, Tuple

from gatekeeper.utils import exclusive_lock, storage_key

LOGGER = logging.getLogger(__name__)


class CounterStatus(str, Enum):
    CONTINUED = "continued"
    FRESH = "fresh"
    RESET = "reset"
    FAILED = "failed"


@dataclass(frozen=True)
class CounterState:
    """Post-increment view of a client's counting window."""

    count: int
    window_start: int
    status: CounterStatus = CounterStatus.CONTINUED


def _parse_record(raw: str) -> Optional[Tuple[int, int]]:
    try:
        data = json.loads(raw)
    except (ValueError, RecursionError):
        return None
    if not isinstance(data, dict):
        return None
    count = data.get("count")
    start = data.get("window_start")
    # bool is an int subclass; a record holding true/false is corrupt.
    for value in (count, start):
        if not isinstance(value, int) or isinstance(value, bool):
            return None
    if count < 0:
        return None
    return count, start


class ClientCounterStore:
    """One JSON record per client, updated under a per-record file lock."""

    def __init__(self, directory: Path, *, lock_timeout: float = 2.0) -> None:
        self._directory = Path(directory)
        self._lock_timeout = lock_timeout

    def path_for(self, identifier: str) -> Path:
        return self._directory / f"{storage_key(identifier)}.json"

    def increment(self, identifier: str, now: float, window_duration: int) -> CounterState:
        """Count one request for ``identifier`` and return the new state.

        Never raises: storage trouble yields a fresh window flagged ``FAILED``.
        """

        now = int(now)
        path = self.path_for(identifier)
        try:
            self._directory.mkdir(mode=0o700, parents=True, exist_ok=True)
            with open(path, "a+", encoding="utf-8", errors="replace") as handle:
                with exclusive_lock(handle, self._lock_timeout):
                    return self._increment_locked(handle, identifier, now, window_duration)
        except OSError:
            LOGGER.warning(
                "counter store unavailable, starting fresh window",
                exc_info=True,
                extra={"client_ip": identifier},
            )
            return CounterState(count=1, window_start=now, status=CounterStatus.FAILED)

    def peek(self, identifier: str) -> Optional[CounterState]:
        """Return the stored state without modifying it, if readable."""

        try:
            raw = self.path_for(identifier).read_text(encoding="utf-8", errors="replace")
        except OSError:
            return None
        parsed = _parse_record(raw)
        if parsed is None:
            return None
        count, start = parsed
        return CounterState(count=count, window_start=start)

    def _increment_locked(
        self, handle: IO[Any], identifier: str, now: int, window_duration: int
    ) -> CounterState:
        handle.seek(0)
        parsed = _parse_record(handle.read())
        if parsed is None:
            if handle.tell() > 0:
                LOGGER.warning("discarding corrupt counter record", extra={"client_ip": identifier})
            count, start, status = 0, now, CounterStatus.FRESH
        else:
            count, start = parsed
            status = CounterStatus.CONTINUED
            if now - start > window_duration:
                count, start, status = 0, now, CounterStatus.RESET

        count += 1
        handle.seek(0)
        handle.truncate()
        handle.write(json.dumps({"count": count, "window_start": start}))
        handle.flush()
        os.fsync(handle.fileno())
        return CounterState(count=count, window_start=start, status=status)
