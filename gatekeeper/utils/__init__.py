"""Utility helpers."""
from .locking import LockTimeout, exclusive_lock  # noqa: F401
from .network import (  # noqa: F401
    is_valid_ip,
    normalize_ip,
    resolve_client_ip,
    storage_key,
)
