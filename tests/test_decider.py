from __future__ import annotations

from dataclasses import replace
from unittest import mock

import pytest

from gatekeeper.audit import AuditLog
from gatekeeper.config import Settings
from gatekeeper.decider import AdmissionDecider, Decision, Reason
from gatekeeper.stores import (
    BlockListStore,
    BlockListUnavailable,
    ClientCounterStore,
    CounterState,
    CounterStatus,
)

IP = "203.0.113.5"


@pytest.fixture()
def settings(tmp_path):
    return Settings(
        threshold=20,
        window_seconds=60,
        blacklist_file=tmp_path / "blocked_ips.txt",
        blocked_log_file=tmp_path / "blocked_log.txt",
        rate_dir=tmp_path / "rate",
    )


def make_decider(settings: Settings, **overrides) -> AdmissionDecider:
    return AdmissionDecider.from_settings(replace(settings, **overrides))


def audit_reasons(settings: Settings) -> list[str]:
    lines = settings.blocked_log_file.read_text().splitlines()
    return [line.split(" | ")[2] for line in lines]


def test_burst_escalates_then_short_circuits(settings):
    decider = AdmissionDecider.from_settings(settings)
    start = 1_700_000_000

    admitted = [decider.decide(IP, now=start + i // 2) for i in range(20)]
    assert all(result.decision is Decision.ADMIT for result in admitted)
    assert [result.count for result in admitted] == list(range(1, 21))

    escalated = decider.decide(IP, now=start + 10)
    assert escalated.decision is Decision.REJECT_ESCALATED
    assert escalated.reason is Reason.AUTO_BLOCKED
    assert escalated.count == 21
    assert BlockListStore(settings.blacklist_file).contains(IP)

    blocked = decider.decide(IP, now=start + 11)
    assert blocked.decision is Decision.REJECT_BLOCKED
    assert blocked.reason is Reason.ALREADY_BLACKLISTED
    assert ClientCounterStore(settings.rate_dir).peek(IP).count == 21
    assert audit_reasons(settings) == ["auto_blocked", "already_blacklisted"]


def test_window_expiry_keeps_client_admitted(settings):
    decider = make_decider(settings, threshold=2)

    assert decider.decide(IP, now=100).admitted
    assert decider.decide(IP, now=100).admitted
    assert decider.decide(IP, now=161).count == 1


@pytest.mark.parametrize("identifier", [None, "", "not-an-ip", "300.1.2.3"])
def test_invalid_identifier_touches_no_store(settings, identifier):
    counters = mock.Mock(spec=ClientCounterStore)
    blocklist = mock.Mock(spec=BlockListStore)
    decider = AdmissionDecider(settings, counters, blocklist, AuditLog(settings.blocked_log_file))

    result = decider.decide(identifier, now=0)

    assert result.decision is Decision.REJECT_INVALID
    assert result.reason is Reason.INVALID_IP
    counters.increment.assert_not_called()
    blocklist.contains.assert_not_called()
    blocklist.add_if_absent.assert_not_called()
    assert audit_reasons(settings) == ["invalid_ip"]


def test_blocked_client_skips_counter(settings):
    BlockListStore(settings.blacklist_file).add_if_absent(IP)
    counters = mock.Mock(spec=ClientCounterStore)
    decider = AdmissionDecider(settings, counters, BlockListStore(settings.blacklist_file))

    result = decider.decide(IP, now=0)

    assert result.decision is Decision.REJECT_BLOCKED
    counters.increment.assert_not_called()


def test_rate_limited_without_auto_block(settings):
    decider = make_decider(settings, threshold=1, auto_block=False)

    assert decider.decide(IP, now=0).admitted
    result = decider.decide(IP, now=1)

    assert result.decision is Decision.REJECT_RATE_LIMITED
    assert result.reason is Reason.RATE_LIMIT_EXCEEDED
    assert not settings.blacklist_file.exists()
    assert decider.decide(IP, now=2).decision is Decision.REJECT_RATE_LIMITED


def test_escalation_reports_existing_entry(settings):
    blocklist = mock.Mock(spec=BlockListStore)
    blocklist.contains.return_value = False
    blocklist.add_if_absent.return_value = False
    counters = mock.Mock(spec=ClientCounterStore)
    counters.increment.return_value = CounterState(count=21, window_start=0)
    decider = AdmissionDecider(settings, counters, blocklist)

    result = decider.decide(IP, now=5)

    assert result.decision is Decision.REJECT_ESCALATED
    assert result.reason is Reason.AUTO_BLOCKED_ALREADY_PRESENT
    blocklist.add_if_absent.assert_called_once_with(IP)


def test_blocklist_read_failure_fails_closed(settings):
    blocklist = mock.Mock(spec=BlockListStore)
    blocklist.contains.side_effect = BlockListUnavailable("disk gone")
    counters = mock.Mock(spec=ClientCounterStore)
    decider = AdmissionDecider(settings, counters, blocklist)

    result = decider.decide(IP, now=0)

    assert result.decision is Decision.REJECT_BLOCKED
    assert result.reason is Reason.BLOCKLIST_UNAVAILABLE
    counters.increment.assert_not_called()


def test_blocklist_write_failure_still_rejects(settings):
    blocklist = mock.Mock(spec=BlockListStore)
    blocklist.contains.return_value = False
    blocklist.add_if_absent.side_effect = BlockListUnavailable("read-only")
    counters = mock.Mock(spec=ClientCounterStore)
    counters.increment.return_value = CounterState(count=21, window_start=0)
    decider = AdmissionDecider(settings, counters, blocklist)

    result = decider.decide(IP, now=0)

    assert result.decision is Decision.REJECT_ESCALATED
    assert result.reason is Reason.AUTO_BLOCK_FAILED


def test_counter_failure_fails_open(settings):
    counters = mock.Mock(spec=ClientCounterStore)
    counters.increment.return_value = CounterState(
        count=1, window_start=0, status=CounterStatus.FAILED
    )
    decider = AdmissionDecider(settings, counters, BlockListStore(settings.blacklist_file))

    assert decider.decide(IP, now=0).decision is Decision.ADMIT


def test_identifier_is_normalized_before_lookup(settings):
    BlockListStore(settings.blacklist_file).add_if_absent("2001:db8::1")
    decider = AdmissionDecider.from_settings(settings)

    result = decider.decide("2001:DB8:0::1", now=0)

    assert result.decision is Decision.REJECT_BLOCKED
    assert result.identifier == "2001:db8::1"


def test_decider_uses_clock_when_now_missing(settings):
    decider = AdmissionDecider(
        settings,
        ClientCounterStore(settings.rate_dir),
        BlockListStore(settings.blacklist_file),
        clock=lambda: 4_242.9,
    )

    decider.decide(IP)

    assert ClientCounterStore(settings.rate_dir).peek(IP).window_start == 4_242


def test_unparseable_counter_record_admits(settings):
    counters = ClientCounterStore(settings.rate_dir)
    settings.rate_dir.mkdir()
    counters.path_for(IP).write_text("[" * 100_000)
    decider = AdmissionDecider.from_settings(settings)

    result = decider.decide(IP, now=1)

    assert result.decision is Decision.ADMIT
    assert result.count == 1
