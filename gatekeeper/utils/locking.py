"""Bounded advisory file locks."""
from __future__ import annotations

import fcntl
import time
from contextlib import contextmanager
from typing import IO, Any, Iterator

_POLL_INTERVAL = 0.01


class LockTimeout(OSError):
    """Raised when an exclusive lock is not acquired in time."""


@contextmanager
def exclusive_lock(handle: IO[Any], timeout: float) -> Iterator[None]:
    """Hold ``flock(LOCK_EX)`` on ``handle`` for the duration of the block.

    Locks belong to the open file description, so separate ``open`` calls
    exclude each other across threads as well as processes.
    """

    deadline = time.monotonic() + timeout
    while True:
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            break
        except BlockingIOError:
            if time.monotonic() >= deadline:
                raise LockTimeout(f"timed out after {timeout}s locking {handle.name}")
            time.sleep(_POLL_INTERVAL)
    try:
        yield
    finally:
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
