from __future__ import annotations

from datetime import datetime, timezone

import pytest

from checkinator.services.devices import SQLiteDeviceStore
from checkinator.services.leases import KeaLeaseFile
from checkinator.services.presence import PresenceService

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
FUTURE = int(NOW.timestamp()) + 3600
PAST = int(NOW.timestamp()) - 3600

MAC_A = "00:01:02:03:04:0a"
MAC_B = "00:01:02:03:04:0b"
MAC_C = "00:01:02:03:04:0c"


@pytest.fixture()
def store(tmp_path):
    store = SQLiteDeviceStore(tmp_path / "checkinator.db")
    yield store
    store.close()


def _leases(tmp_path, *rows: tuple[str, str, int, str]) -> KeaLeaseFile:
    lines = ["address,hwaddr,expire,hostname"] + [",".join(map(str, row)) for row in rows]
    path = tmp_path / "dhcp4.leases"
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return KeaLeaseFile([path, tmp_path / "dhcp4.leases.2"])


def test_only_claimed_devices_count(tmp_path, store):
    leases = _leases(tmp_path, ("10.0.0.10", MAC_A, FUTURE, "a"), ("10.0.0.11", MAC_B, FUTURE, "b"))
    store.claim_device("alice", MAC_A, "a")
    presence = PresenceService(leases, store, clock=lambda: NOW)
    assert presence.active_users() == ["alice"]


def test_expired_leases_are_ignored(tmp_path, store):
    leases = _leases(tmp_path, ("10.0.0.10", MAC_A, PAST, "a"), ("10.0.0.11", MAC_B, FUTURE, "b"))
    store.claim_device("alice", MAC_A, "a")
    store.claim_device("bob", MAC_B, "b")
    assert PresenceService(leases, store, clock=lambda: NOW).active_users() == ["bob"]


def test_users_are_unique_and_sorted(tmp_path, store):
    leases = _leases(
        tmp_path,
        ("10.0.0.10", MAC_A, FUTURE, "a"),
        ("10.0.0.11", MAC_B, FUTURE, "b"),
        ("10.0.0.12", MAC_C, FUTURE, "c"),
    )
    store.claim_device("zoe", MAC_A, "a")
    store.claim_device("alice", MAC_B, "b")
    store.claim_device("zoe", MAC_C, "c")
    assert PresenceService(leases, store, clock=lambda: NOW).active_users() == ["alice", "zoe"]


def test_explicit_time_overrides_clock(tmp_path, store):
    leases = _leases(tmp_path, ("10.0.0.10", MAC_A, FUTURE, "a"))
    store.claim_device("alice", MAC_A, "a")
    presence = PresenceService(leases, store, clock=lambda: NOW)
    later = datetime.fromtimestamp(FUTURE + 1, tz=timezone.utc)
    assert presence.active_users(later) == []


def test_lease_for_address(tmp_path, store):
    leases = _leases(tmp_path, ("10.0.0.10", MAC_A, FUTURE, "a"))
    presence = PresenceService(leases, store, clock=lambda: NOW)
    assert presence.lease_for_address("10.0.0.10").mac_address == MAC_A
    assert presence.lease_for_address("10.0.0.99") is None


def test_lease_expiring_exactly_now_counts(tmp_path, store):
    leases = _leases(tmp_path, ("10.0.0.10", MAC_A, int(NOW.timestamp()), "a"))
    store.claim_device("alice", MAC_A, "a")
    assert PresenceService(leases, store, clock=lambda: NOW).active_users() == ["alice"]
