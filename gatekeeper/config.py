"""Gate settings and environment loading utilities."""
from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import MutableMapping, Optional, Tuple

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _load_dotenv(
    env_path: Path = Path(".env"), environ: MutableMapping[str, str] = os.environ
) -> None:
    """Seed ``environ`` from ``KEY=value`` lines; variables already set win."""

    if not env_path.is_file():
        return
    for raw_line in env_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        name, sep, value = line.partition("=")
        name = name.strip()
        if not sep or not name or name.startswith("#"):
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        environ.setdefault(name, value)


_load_dotenv()


def _parse_int(value: Optional[str], name: str, default: int, minimum: int) -> int:
    if value is None or not value.strip():
        return default
    try:
        parsed = int(value)
    except ValueError as exc:
        raise RuntimeError(f"Invalid integer for environment variable {name}: {value!r}") from exc
    if parsed < minimum:
        raise RuntimeError(f"Environment variable {name} must be >= {minimum}, got {parsed}")
    return parsed


def _parse_float(value: Optional[str], name: str, default: float) -> float:
    if value is None or not value.strip():
        return default
    try:
        parsed = float(value)
    except ValueError as exc:
        raise RuntimeError(f"Invalid number for environment variable {name}: {value!r}") from exc
    if parsed <= 0:
        raise RuntimeError(f"Environment variable {name} must be positive, got {parsed}")
    return parsed


def _parse_bool(value: Optional[str], name: str, default: bool) -> bool:
    if value is None or not value.strip():
        return default
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise RuntimeError(f"Invalid boolean for environment variable {name}: {value!r}")


def _parse_list(value: Optional[str]) -> Tuple[str, ...]:
    if not value:
        return ()
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _default_rate_dir() -> Path:
    return Path(tempfile.gettempdir()) / "gate_rate"


@dataclass(frozen=True)
class Settings:
    """Runtime configuration for the admission gate.

    Built once at start-up and handed to the decider and the stores; nothing in
    the gate reads the environment after that.
    """

    threshold: int = 20
    window_seconds: int = 60
    auto_block: bool = True
    blacklist_file: Path = Path("blocked_ips.txt")
    blocked_log_file: Optional[Path] = Path("blocked_log.txt")
    rate_dir: Path = _default_rate_dir()
    trust_x_forwarded: bool = False
    trusted_proxies: Tuple[str, ...] = ()
    lock_timeout_seconds: float = 2.0

    @classmethod
    def from_env(cls) -> "Settings":
        threshold = _parse_int(os.getenv("GATE_THRESHOLD"), "GATE_THRESHOLD", 20, minimum=1)
        window = _parse_int(
            os.getenv("GATE_WINDOW_SECONDS"), "GATE_WINDOW_SECONDS", 60, minimum=0
        )
        auto_block = _parse_bool(os.getenv("GATE_AUTO_BLOCK"), "GATE_AUTO_BLOCK", True)
        trust_xff = _parse_bool(
            os.getenv("GATE_TRUST_X_FORWARDED"), "GATE_TRUST_X_FORWARDED", False
        )
        lock_timeout = _parse_float(
            os.getenv("GATE_LOCK_TIMEOUT_SECONDS"), "GATE_LOCK_TIMEOUT_SECONDS", 2.0
        )

        blacklist_file = Path(os.getenv("GATE_BLACKLIST_FILE") or "blocked_ips.txt")
        # An explicitly empty value turns the audit log off.
        log_value = os.getenv("GATE_BLOCKED_LOG_FILE", "blocked_log.txt")
        blocked_log_file = Path(log_value) if log_value.strip() else None
        rate_dir_value = os.getenv("GATE_RATE_DIR")
        rate_dir = Path(rate_dir_value) if rate_dir_value else _default_rate_dir()

        return cls(
            threshold=threshold,
            window_seconds=window,
            auto_block=auto_block,
            blacklist_file=blacklist_file,
            blocked_log_file=blocked_log_file,
            rate_dir=rate_dir,
            trust_x_forwarded=trust_xff,
            trusted_proxies=_parse_list(os.getenv("GATE_TRUSTED_PROXIES")),
            lock_timeout_seconds=lock_timeout,
        )


@lru_cache()
def get_settings() -> Settings:
    """Return cached gate settings."""

    return Settings.from_env()
