"""Stored per-device data."""
from __future__ import annotations

import json
from dataclasses import asdict, dataclass

__all__ = ["Device"]


@dataclass(frozen=True, slots=True)
class Device:
    # String representation of the device MAC address; primary key.
    mac_address: str
    # Name of the device as shown to the user in the management panel.
    hostname: str
    # Nickname of the user who manages this device.
    user_nickname: str

    def to_json(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: str | bytes) -> "Device":
        """Decode a stored record; raises ``ValueError`` on malformed data."""

        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("device record is not an object")
        try:
            values = {key: data[key] for key in ("mac_address", "hostname", "user_nickname")}
        except KeyError as exc:
            raise ValueError(f"device record missing {exc.args[0]!r}") from exc
        for key, value in values.items():
            if not isinstance(value, str):
                raise ValueError(f"device record field {key!r} is not a string")
        return cls(**values)
