"""OAuth2 authorization code flow (with PKCE) against an OIDC provider."""
from __future__ import annotations

import base64
import hashlib
import logging
import secrets
from dataclasses import dataclass
from typing import Any, Mapping
from urllib.parse import urlencode

import httpx

from checkinator.services.errors import OAuthError
from checkinator.services.settings import Settings

__all__ = ["OAuthClient", "OAuthConfig", "generate_state", "generate_verifier", "s256_challenge"]

_log = logging.getLogger("checkinator.oauth")


def generate_state() -> str:
    return secrets.token_bytes(16).hex()


def generate_verifier() -> str:
    # 32 random bytes, base64url without padding: 43 characters.
    return base64.urlsafe_b64encode(secrets.token_bytes(32)).rstrip(b"=").decode("ascii")


def s256_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


@dataclass(frozen=True, slots=True)
class OAuthConfig:
    client_id: str
    client_secret: str
    auth_url: str
    token_url: str
    user_info_url: str
    redirect_url: str

    @classmethod
    def from_settings(cls, settings: Settings) -> "OAuthConfig":
        return cls(
            client_id=settings.oauth_client_id,
            client_secret=settings.oauth_client_secret,
            auth_url=settings.oauth_auth_url,
            token_url=settings.oauth_token_url,
            user_info_url=settings.oauth_user_info_url,
            redirect_url=settings.redirect_url,
        )


class OAuthClient:
    def __init__(
        self,
        config: OAuthConfig,
        *,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.config = config
        self.timeout = timeout
        self._transport = transport

    def authorization_url(self, state: str, verifier: str) -> str:
        params = {
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_url,
            "response_type": "code",
            "state": state,
            "access_type": "online",
            "code_challenge": s256_challenge(verifier),
            "code_challenge_method": "S256",
        }
        separator = "&" if "?" in self.config.auth_url else "?"
        return f"{self.config.auth_url}{separator}{urlencode(params)}"

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self.timeout, transport=self._transport)

    def _json(self, response: httpx.Response, what: str) -> Mapping[str, Any]:
        if response.status_code >= 400:
            raise OAuthError(f"{what} failed: HTTP {response.status_code}")
        try:
            content = response.json()
        except ValueError as exc:
            raise OAuthError(f"{what} returned invalid JSON") from exc
        if not isinstance(content, Mapping):
            raise OAuthError(f"{what} returned unexpected payload")
        return content

    def exchange(self, code: str, verifier: str) -> str:
        """Trade an authorization code for an access token."""

        form = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.config.redirect_url,
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "code_verifier": verifier,
        }
        try:
            with self._client() as client:
                response = client.post(self.config.token_url, data=form, headers={"Accept": "application/json"})
        except httpx.RequestError as exc:
            raise OAuthError(f"oauth exchange failed: {exc}") from exc
        token = self._json(response, "oauth exchange").get("access_token")
        if not isinstance(token, str) or not token:
            raise OAuthError("oauth exchange returned no access token")
        return token

    def userinfo(self, access_token: str) -> Mapping[str, Any]:
        try:
            with self._client() as client:
                response = client.get(
                    self.config.user_info_url,
                    headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
                )
        except httpx.RequestError as exc:
            raise OAuthError(f"could not get userinfo: {exc}") from exc
        return self._json(response, "userinfo")

    def username(self, code: str, verifier: str) -> str:
        """Run the exchange and return the provider's ``preferred_username``."""

        info = self.userinfo(self.exchange(code, verifier))
        username = info.get("preferred_username")
        if not isinstance(username, str) or not username:
            raise OAuthError("no username")
        _log.info("user %s logged in", username)
        return username
