"""Kea DHCPv4 lease file parsing.

Kea's memfile backend appends one CSV row per lease update, so a single file
holds stale and duplicate rows; the live file and its ``.2`` rotation may
also overlap. :class:`KeaLeaseFile` folds all of them into one lease per
hardware address, keeping the one that expires last.
"""
from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Mapping, Sequence

from checkinator.services.errors import LeaseFormatError
from checkinator.services.macaddr import parse_mac

__all__ = ["Lease", "KeaLeaseFile", "reconcile", "find_lease_by_ip", "REQUIRED_FIELDS"]

_log = logging.getLogger("checkinator.leases")

REQUIRED_FIELDS: tuple[str, ...] = ("address", "hwaddr", "expire", "hostname")

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


@dataclass(frozen=True, slots=True)
class Lease:
    """A DHCP lease. It might or might not be currently active."""

    ip_address: IPAddress
    mac_address: str
    expires_at: datetime
    hostname: str

    def is_active(self, at: datetime | None = None) -> bool:
        if at is None:
            at = datetime.now(tz=timezone.utc)
        return not self.expires_at < at


class _LineSkipped(ValueError):
    pass


def _column_map(header: str, path: str) -> dict[str, int]:
    columns: dict[str, int] = {}
    for index, name in enumerate(header.split(",")):
        columns[name.strip()] = index
    for name in REQUIRED_FIELDS:
        if name not in columns:
            raise LeaseFormatError(path, name)
    return {name: columns[name] for name in REQUIRED_FIELDS}


def _field(parts: Sequence[str], index: int) -> str:
    if index >= len(parts):
        return ""
    return parts[index]


def _parse_expiry(value: str) -> datetime:
    try:
        seconds = int(value)
    except ValueError as exc:
        raise _LineSkipped(f"invalid expire time {value!r}") from exc
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as exc:
        raise _LineSkipped(f"expire time {value!r} out of range") from exc


def _parse_line(parts: Sequence[str], columns: Mapping[str, int]) -> Lease:
    address = _field(parts, columns["address"])
    try:
        ip = ipaddress.ip_address(address)
    except ValueError as exc:
        raise _LineSkipped(f"invalid address {address!r}") from exc

    hwaddr = _field(parts, columns["hwaddr"])
    try:
        mac = parse_mac(hwaddr)
    except ValueError as exc:
        raise _LineSkipped(f"invalid hwaddr {hwaddr!r}") from exc

    expires_at = _parse_expiry(_field(parts, columns["expire"]))
    return Lease(
        ip_address=ip,
        mac_address=mac,
        expires_at=expires_at,
        hostname=_field(parts, columns["hostname"]),
    )


def _merge(into: dict[str, Lease], leases: Iterable[Lease]) -> None:
    for lease in leases:
        existing = into.get(lease.mac_address)
        if existing is None or lease.expires_at > existing.expires_at:
            into[lease.mac_address] = lease


def _sorted(by_mac: Mapping[str, Lease]) -> list[Lease]:
    return [by_mac[mac] for mac in sorted(by_mac)]


class KeaLeaseFile:
    """Provides leases by parsing one or more Kea DHCPv4 lease files."""

    def __init__(self, paths: Sequence[str | Path]) -> None:
        self.paths = [str(p) for p in paths]

    def leases_from(self, path: str | Path) -> list[Lease]:
        """Parse a single file.

        Raises ``FileNotFoundError``/``OSError`` when the file cannot be read
        and :class:`LeaseFormatError` when its header lacks a required column.
        Bytes that are not valid UTF-8 are replaced with U+FFFD and the line
        is logged but still parsed.
        """

        path = str(path)
        by_mac: dict[str, Lease] = {}
        columns: dict[str, int] | None = None
        with open(path, "r", encoding="utf-8", errors="replace") as fh:
            for raw in fh:
                line = raw.rstrip("\r\n")
                if columns is None:
                    columns = _column_map(line, path)
                    continue
                if not line.strip():
                    continue
                if "\ufffd" in line:
                    _log.warning("leasefile %s line %r: invalid UTF-8 replaced", path, line)
                try:
                    lease = _parse_line(line.split(","), columns)
                except _LineSkipped as exc:
                    _log.warning("leasefile %s line %r: %s", path, line, exc)
                    continue
                _merge(by_mac, [lease])
        return _sorted(by_mac)

    def leases(self) -> list[Lease]:
        """Reconcile every configured file into one sorted, deduplicated list.

        Missing files contribute nothing and a file with a bad header is
        skipped; any other I/O failure propagates.
        """

        by_mac: dict[str, Lease] = {}
        for path in self.paths:
            try:
                leases = self.leases_from(path)
            except FileNotFoundError:
                _log.debug("leasefile %s does not exist, skipping", path)
                continue
            except LeaseFormatError as exc:
                _log.error("leasefile %s skipped: %s", path, exc)
                continue
            _merge(by_mac, leases)
        return _sorted(by_mac)


def reconcile(paths: Sequence[str | Path]) -> list[Lease]:
    return KeaLeaseFile(paths).leases()


def find_lease_by_ip(leases: Iterable[Lease], address: str) -> Lease | None:
    try:
        ip = ipaddress.ip_address(address.strip())
    except ValueError:
        return None
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    for lease in leases:
        if lease.ip_address == ip:
            return lease
    return None
