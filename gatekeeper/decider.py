"""Per-request admission decisions."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from gatekeeper.audit import AuditLog
from gatekeeper.config import Settings
from gatekeeper.stores import BlockListStore, BlockListUnavailable, ClientCounterStore
from gatekeeper.utils import normalize_ip

LOGGER = logging.getLogger(__name__)


class Decision(str, Enum):
    ADMIT = "Admit"
    REJECT_BLOCKED = "RejectBlocked"
    REJECT_INVALID = "RejectInvalid"
    REJECT_RATE_LIMITED = "RejectRateLimited"
    REJECT_ESCALATED = "RejectEscalated"

    @property
    def admitted(self) -> bool:
        return self is Decision.ADMIT


class Reason(str, Enum):
    """Audit tags attached to rejections."""

    ALREADY_BLACKLISTED = "already_blacklisted"
    INVALID_IP = "invalid_ip"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    AUTO_BLOCKED = "auto_blocked"
    AUTO_BLOCKED_ALREADY_PRESENT = "auto_blocked_already_present"
    AUTO_BLOCK_FAILED = "auto_block_failed"
    BLOCKLIST_UNAVAILABLE = "blocklist_unavailable"


@dataclass(frozen=True)
class AdmissionResult:
    decision: Decision
    identifier: Optional[str]
    reason: Optional[Reason] = None
    count: Optional[int] = None

    @property
    def admitted(self) -> bool:
        return self.decision.admitted


class AdmissionDecider:
    """Combine the block list and the rate counter into one decision.

    The block list is read without locking on every request; the locked append
    only happens on the rare escalation path. Counter failures fail open,
    block list read failures fail closed.
    """

    def __init__(
        self,
        settings: Settings,
        counters: ClientCounterStore,
        blocklist: BlockListStore,
        audit: Optional[AuditLog] = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings
        self._counters = counters
        self._blocklist = blocklist
        self._audit = audit or AuditLog(None)
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> "AdmissionDecider":
        timeout = settings.lock_timeout_seconds
        return cls(
            settings,
            ClientCounterStore(settings.rate_dir, lock_timeout=timeout),
            BlockListStore(settings.blacklist_file, lock_timeout=timeout),
            AuditLog(settings.blocked_log_file, lock_timeout=timeout),
        )

    def decide(self, identifier: Optional[str], now: Optional[float] = None) -> AdmissionResult:
        when = self._clock() if now is None else now
        client_ip = normalize_ip(identifier)
        if client_ip is None:
            return self._reject(Decision.REJECT_INVALID, None, Reason.INVALID_IP, when)

        try:
            blocked = self._blocklist.contains(client_ip)
        except BlockListUnavailable:
            LOGGER.error(
                "block list unreadable, denying request",
                exc_info=True,
                extra={"client_ip": client_ip},
            )
            return self._reject(
                Decision.REJECT_BLOCKED, client_ip, Reason.BLOCKLIST_UNAVAILABLE, when
            )
        if blocked:
            return self._reject(
                Decision.REJECT_BLOCKED, client_ip, Reason.ALREADY_BLACKLISTED, when
            )

        state = self._counters.increment(client_ip, when, self._settings.window_seconds)
        if state.count <= self._settings.threshold:
            return AdmissionResult(Decision.ADMIT, client_ip, count=state.count)

        if not self._settings.auto_block:
            return self._reject(
                Decision.REJECT_RATE_LIMITED,
                client_ip,
                Reason.RATE_LIMIT_EXCEEDED,
                when,
                count=state.count,
            )
        return self._escalate(client_ip, state.count, when)

    def _escalate(self, client_ip: str, count: int, when: float) -> AdmissionResult:
        try:
            added = self._blocklist.add_if_absent(client_ip)
        except BlockListUnavailable:
            LOGGER.error(
                "failed to persist block entry",
                exc_info=True,
                extra={"client_ip": client_ip, "count": count},
            )
            reason = Reason.AUTO_BLOCK_FAILED
        else:
            reason = Reason.AUTO_BLOCKED if added else Reason.AUTO_BLOCKED_ALREADY_PRESENT
        return self._reject(Decision.REJECT_ESCALATED, client_ip, reason, when, count=count)

    def _reject(
        self,
        decision: Decision,
        identifier: Optional[str],
        reason: Reason,
        when: float,
        *,
        count: Optional[int] = None,
    ) -> AdmissionResult:
        LOGGER.warning(
            "request rejected",
            extra={
                "client_ip": identifier,
                "decision": decision.value,
                "reason": reason.value,
                "count": count,
            },
        )
        self._audit.record(identifier, reason.value, when)
        return AdmissionResult(decision, identifier, reason=reason, count=count)
