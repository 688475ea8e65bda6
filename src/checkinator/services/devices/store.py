"""SQLite-backed storage of claimed devices.

The database holds a single ``devices`` collection mapping the canonical MAC
address string to a JSON encoded :class:`Device`. The JSON field names are
read by external tooling and must not change.
"""
from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Final, Iterable, Iterator, Protocol

from checkinator.services.errors import OwnershipConflict, OwnershipMismatch, StoreError
from checkinator.services.macaddr import parse_mac

from .models import Device

__all__ = ["DeviceStore", "SQLiteDeviceStore"]

_log = logging.getLogger("checkinator.devices")


class DeviceStore(Protocol):
    def get_devices_for_mac_addresses(self, mac_addresses: Iterable[str]) -> list[Device]: ...

    def get_devices_for_user(self, user: str) -> list[Device]: ...

    def claim_device(self, user: str, mac_address: str, hostname: str) -> Device: ...

    def unclaim_device(self, user: str, mac_address: str) -> None: ...


class SQLiteDeviceStore:
    """Claimed devices in an on-disk SQLite database.

    Every operation runs in its own transaction while holding a process-wide
    lock, so a claim's ownership check and its write cannot interleave with
    another claim or unclaim. ``BEGIN IMMEDIATE`` extends that to other
    processes sharing the file.
    """

    _SCHEMA: Final[str] = """
    PRAGMA journal_mode=WAL;

    CREATE TABLE IF NOT EXISTS devices (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL
    ) WITHOUT ROWID;
    """

    def __init__(self, db_path: str | Path) -> None:
        self._path = Path(db_path)
        self._lock = threading.Lock()
        try:
            if not self._path.parent.exists():
                self._path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self._path, isolation_level=None, check_same_thread=False)
            self._conn.executescript(self._SCHEMA)
        except (OSError, sqlite3.Error) as exc:
            raise StoreError(f"failed to open DB file {self._path}: {exc}") from exc

    @property
    def path(self) -> Path:
        return self._path

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> "SQLiteDeviceStore":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @contextmanager
    def _transaction(self, *, write: bool) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                self._conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
            except sqlite3.Error as exc:
                raise StoreError(f"could not begin transaction: {exc}") from exc
            try:
                yield self._conn
            except sqlite3.Error as exc:
                self._rollback()
                raise StoreError(str(exc)) from exc
            except BaseException:
                self._rollback()
                raise
            else:
                try:
                    self._conn.execute("COMMIT")
                except sqlite3.Error as exc:
                    self._rollback()
                    raise StoreError(f"could not commit: {exc}") from exc

    def _rollback(self) -> None:
        if self._conn.in_transaction:
            self._conn.execute("ROLLBACK")

    @staticmethod
    def _get(con: sqlite3.Connection, key: str) -> Device | None:
        row = con.execute("SELECT value FROM devices WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        return Device.from_json(row[0])

    def get_devices_for_mac_addresses(self, mac_addresses: Iterable[str]) -> list[Device]:
        """Return the stored devices matching the given MAC addresses."""

        keys = sorted({parse_mac(m) for m in mac_addresses})
        result: list[Device] = []
        with self._transaction(write=False) as con:
            for key in keys:
                try:
                    device = self._get(con, key)
                except ValueError as exc:
                    _log.warning("device %s could not be decoded: %s", key, exc)
                    continue
                if device is not None:
                    result.append(device)
        return sorted(result, key=lambda d: d.mac_address)

    def get_devices_for_user(self, user: str) -> list[Device]:
        """Return the devices managed by ``user``."""

        # TODO: index by user_nickname once installations outgrow a linear scan.
        return [d for d in self.all_devices() if d.user_nickname == user]

    def all_devices(self) -> list[Device]:
        result: list[Device] = []
        with self._transaction(write=False) as con:
            for key, value in con.execute("SELECT key, value FROM devices ORDER BY key"):
                try:
                    result.append(Device.from_json(value))
                except ValueError as exc:
                    _log.warning("device %s could not be decoded: %s", key, exc)
        return sorted(result, key=lambda d: d.mac_address)

    def claim_device(self, user: str, mac_address: str, hostname: str) -> Device:
        """Mark a device as managed by ``user``.

        Re-claiming one's own device updates its hostname. Claiming a device
        that belongs to somebody else raises :class:`OwnershipConflict` and
        leaves the record untouched.
        """

        key = parse_mac(mac_address)
        device = Device(mac_address=key, hostname=hostname, user_nickname=user)
        with self._transaction(write=True) as con:
            try:
                existing = self._get(con, key)
            except ValueError as exc:
                raise StoreError(f"could not decode existing device {key}: {exc}") from exc
            if existing is not None and existing.user_nickname != user:
                raise OwnershipConflict(key, existing.user_nickname, user)
            con.execute(
                "INSERT INTO devices(key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, device.to_json()),
            )
        _log.info("device %s claimed by %s as %r", key, user, hostname)
        return device

    def unclaim_device(self, user: str, mac_address: str) -> None:
        """Release a device. Unknown devices are a no-op."""

        key = parse_mac(mac_address)
        with self._transaction(write=True) as con:
            try:
                existing = self._get(con, key)
            except ValueError as exc:
                raise StoreError(f"could not decode existing device {key}: {exc}") from exc
            if existing is None:
                return
            if existing.user_nickname != user:
                raise OwnershipMismatch(key, existing.user_nickname, user)
            con.execute("DELETE FROM devices WHERE key = ?", (key,))
        _log.info("device %s unclaimed by %s", key, user)
