"""Who is at the space right now: live leases intersected with claims."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from checkinator.services.devices.store import DeviceStore
from checkinator.services.leases.reconciler import KeaLeaseFile, Lease, find_lease_by_ip

__all__ = ["PresenceService"]

_log = logging.getLogger("checkinator.presence")


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class PresenceService:
    def __init__(
        self,
        leases: KeaLeaseFile,
        store: DeviceStore,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.leases = leases
        self.store = store
        self._clock = clock

    def active_leases(self, at: datetime | None = None) -> list[Lease]:
        now = at or self._clock()
        return [lease for lease in self.leases.leases() if lease.is_active(now)]

    def active_users(self, at: datetime | None = None) -> list[str]:
        """Sorted nicknames of users owning at least one device with a live lease."""

        macs = [lease.mac_address for lease in self.active_leases(at)]
        devices = self.store.get_devices_for_mac_addresses(macs)
        users = sorted({device.user_nickname for device in devices})
        _log.debug("%d active leases, %d claimed, %d users", len(macs), len(devices), len(users))
        return users

    def lease_for_address(self, address: str) -> Lease | None:
        return find_lease_by_ip(self.leases.leases(), address)
