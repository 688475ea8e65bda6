"""Exception hierarchy shared by the checkinator services."""
from __future__ import annotations

__all__ = [
    "CheckinatorError",
    "ConfigError",
    "LeaseFormatError",
    "StoreError",
    "OwnershipError",
    "OwnershipConflict",
    "OwnershipMismatch",
    "OAuthError",
]


class CheckinatorError(RuntimeError):
    """Base class for errors raised by checkinator."""


class ConfigError(CheckinatorError):
    """Raised when settings are missing or malformed."""


class LeaseFormatError(CheckinatorError):
    """Raised when a lease file header does not declare the required columns."""

    def __init__(self, path: str, missing: str) -> None:
        super().__init__(f"leasefile {path} missing field {missing!r}")
        self.path = path
        self.missing = missing


class StoreError(CheckinatorError):
    """Raised when the device store cannot be read or written."""


class OwnershipError(CheckinatorError):
    """A claim or unclaim was rejected because another user owns the device."""

    reason = "ownership violation"

    def __init__(self, mac_address: str, owner: str, user: str) -> None:
        super().__init__(self.reason)
        self.mac_address = mac_address
        self.owner = owner
        self.user = user


class OwnershipConflict(OwnershipError):
    reason = "device already claimed"


class OwnershipMismatch(OwnershipError):
    reason = "device does not belong to user"


class OAuthError(CheckinatorError):
    """Raised when the identity provider exchange fails."""
