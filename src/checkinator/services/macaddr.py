"""Hardware address parsing and canonical formatting."""
from __future__ import annotations

import re

__all__ = ["parse_mac"]

_VALID_OCTETS = (6, 8, 20)
_SEPARATED = re.compile(r"^[0-9A-Fa-f]{2}([:-])[0-9A-Fa-f]{2}(?:\1[0-9A-Fa-f]{2})*$")
_DOTTED = re.compile(r"^[0-9A-Fa-f]{4}(?:\.[0-9A-Fa-f]{4})+$")


def parse_mac(value: str) -> str:
    """Return ``value`` as lower-case, colon separated octets.

    Accepts ``00:01:02:03:04:05``, ``00-01-02-03-04-05`` and
    ``0001.0203.0405`` for 6, 8 and 20 octet addresses. Raises ``ValueError``
    for anything else.
    """

    text = value.strip()
    match = _SEPARATED.match(text)
    if match:
        octets = text.split(match.group(1))
    elif _DOTTED.match(text):
        groups = text.split(".")
        octets = [g[i : i + 2] for g in groups for i in (0, 2)]
    else:
        raise ValueError(f"invalid MAC address {value!r}")
    if len(octets) not in _VALID_OCTETS:
        raise ValueError(f"invalid MAC address {value!r}")
    return ":".join(o.lower() for o in octets)
