from __future__ import annotations

import logging
import os
import secrets
from pathlib import Path

__all__ = ["load_or_create_secret"]

_log = logging.getLogger("checkinator.secret")


def load_or_create_secret(path: str | Path) -> str:
    """Return the session secret, generating a random one on first start."""

    path = Path(path)
    if not path.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "w", encoding="ascii") as fh:
            fh.write(secrets.token_hex(32))
        _log.info("generated secret at %s", path)
    return path.read_text(encoding="utf-8")
