"""Client-held sessions.

The session is a small JSON document sealed with an AEAD cipher and stored in
the user's cookie; the server keeps no session table. Rotating the secret
invalidates every outstanding session at once.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
import os
from dataclasses import asdict, dataclass
from typing import Any, Mapping

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from fastapi import Request, Response

from checkinator.config import const

__all__ = [
    "NONCE_SIZE",
    "Session",
    "SessionCodec",
    "SessionManager",
    "derive_key",
    "seal",
    "open_token",
]

_log = logging.getLogger("checkinator.sessions")

NONCE_SIZE = 12


def derive_key(secret: str | bytes) -> bytes:
    if isinstance(secret, str):
        secret = secret.encode("utf-8")
    return hashlib.sha256(secret).digest()


class SessionCodec:
    """Seal and open JSON payloads with ChaCha20-Poly1305."""

    def __init__(self, secret: str | bytes) -> None:
        self._aead = ChaCha20Poly1305(derive_key(secret))

    def seal(self, payload: Mapping[str, Any]) -> str:
        plaintext = json.dumps(dict(payload), separators=(",", ":")).encode("utf-8")
        nonce = os.urandom(NONCE_SIZE)
        sealed = nonce + self._aead.encrypt(nonce, plaintext, None)
        return base64.urlsafe_b64encode(sealed).decode("ascii")

    def open(self, token: str | None) -> dict[str, Any] | None:
        """Return the payload, or ``None`` if the token is missing or invalid."""

        if not token:
            return None
        try:
            sealed = base64.b64decode(token.encode("ascii"), altchars=b"-_", validate=True)
        except (binascii.Error, UnicodeEncodeError, ValueError):
            return None
        # Only the exact encoding of the sealed bytes is accepted.
        if base64.urlsafe_b64encode(sealed).decode("ascii") != token:
            return None
        if len(sealed) < NONCE_SIZE:
            return None
        nonce, ciphertext = sealed[:NONCE_SIZE], sealed[NONCE_SIZE:]
        try:
            plaintext = self._aead.decrypt(nonce, ciphertext, None)
        except InvalidTag:
            return None
        try:
            payload = json.loads(plaintext.decode("utf-8"))
        except ValueError:
            return None
        if not isinstance(payload, dict):
            return None
        return payload


def seal(secret: str | bytes, payload: Mapping[str, Any]) -> str:
    return SessionCodec(secret).seal(payload)


def open_token(secret: str | bytes, token: str | None) -> dict[str, Any] | None:
    return SessionCodec(secret).open(token)


@dataclass(slots=True)
class Session:
    """Confidential data stored in a user's cookie."""

    username: str = ""
    oauth_state: str = ""
    oauth_verifier: str = ""

    def to_payload(self) -> dict[str, str]:
        return asdict(self)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Session":
        def text(key: str) -> str:
            value = payload.get(key)
            return value if isinstance(value, str) else ""

        return cls(
            username=text("username"),
            oauth_state=text("oauth_state"),
            oauth_verifier=text("oauth_verifier"),
        )

    @property
    def logged_in(self) -> bool:
        return bool(self.username)


class SessionManager:
    """Reads and writes the session cookie on FastAPI requests and responses."""

    def __init__(self, secret: str | bytes, *, secure: bool, cookie_name: str = const.SESSION_COOKIE) -> None:
        self._codec = SessionCodec(secret)
        self.secure = secure
        self.cookie_name = cookie_name

    def get(self, request: Request) -> Session | None:
        payload = self._codec.open(request.cookies.get(self.cookie_name))
        if payload is None:
            return None
        return Session.from_payload(payload)

    def set(self, response: Response, session: Session) -> None:
        response.set_cookie(
            self.cookie_name,
            self._codec.seal(session.to_payload()),
            secure=self.secure,
            httponly=True,
            path="/",
        )
        _log.debug("session cookie issued", extra={"extra": {"logged_in": session.logged_in}})
