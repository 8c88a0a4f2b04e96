"""Gate package exports commonly used helpers for convenience."""

from .config import Settings, get_settings
from .decider import AdmissionDecider, AdmissionResult, Decision, Reason
from .logging_config import configure_logging

__all__ = [
    "AdmissionDecider",
    "AdmissionResult",
    "Decision",
    "Reason",
    "Settings",
    "configure_logging",
    "get_settings",
]
