"""Runtime settings: code defaults, then YAML file, then environment."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Mapping

import yaml

from checkinator.config import const
from checkinator.services.errors import ConfigError

__all__ = ["APIUser", "Settings"]


@dataclass(frozen=True, slots=True)
class APIUser:
    username: str
    password: str


def _coerce(value: Any, default: Any) -> Any:
    if isinstance(default, bool):
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
        return bool(value)
    if isinstance(default, int):
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"expected an integer, got {value!r}") from exc
    return "" if value is None else str(value)


@dataclass(frozen=True, slots=True)
class Settings:
    secret_file: str = const.SECRET_FILE
    listen_host: str = const.LISTEN_HOST
    listen_port: int = const.LISTEN_PORT
    public_address: str = const.PUBLIC_ADDRESS
    lease_file: str = const.LEASE_FILE
    db_file: str = const.DB_FILE
    oauth_client_id: str = ""
    oauth_client_secret: str = field(default="", repr=False)
    oauth_auth_url: str = const.OAUTH_AUTH_URL
    oauth_token_url: str = const.OAUTH_TOKEN_URL
    oauth_user_info_url: str = const.OAUTH_USER_INFO_URL
    api_users: str = field(default="", repr=False)
    space_name: str = const.SPACE_NAME
    space_url: str = const.SPACE_URL
    log_level: str = "INFO"
    log_json: bool = False

    @classmethod
    def from_sources(
        cls,
        config_path: str | Path | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> "Settings":
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}

        explicit = config_path is not None or bool(env.get(const.CONFIG_ENV))
        path = Path(config_path or env.get(const.CONFIG_ENV) or const.CONFIG_FILE)
        if path.exists():
            values.update(cls._load_yaml(path))
        elif explicit:
            raise ConfigError(f"config file {path} does not exist")

        for f in fields(cls):
            key = f"{const.ENV_PREFIX}{f.name.upper()}"
            if key in env:
                values[f.name] = env[key]
        return cls().with_overrides(**values)

    @staticmethod
    def _load_yaml(path: Path) -> dict[str, Any]:
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"could not parse {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"{path} must contain a mapping")
        return data

    def with_overrides(self, **overrides: Any) -> "Settings":
        known = {f.name: getattr(self, f.name) for f in fields(self)}
        unknown = set(overrides) - set(known)
        if unknown:
            raise ConfigError(f"unknown settings: {', '.join(sorted(unknown))}")
        coerced = {name: _coerce(value, known[name]) for name, value in overrides.items()}
        return replace(self, **coerced)

    @property
    def lease_paths(self) -> list[str]:
        # Kea's lease file cleanup rotates the live file into "<name>.2".
        return [self.lease_file, f"{self.lease_file}.2"]

    @property
    def secure_cookies(self) -> bool:
        return self.public_address.startswith("https://")

    @property
    def redirect_url(self) -> str:
        base = self.public_address if self.public_address.endswith("/") else f"{self.public_address}/"
        return f"{base}oauth/redirect"

    def parse_api_users(self) -> list[APIUser]:
        users: list[APIUser] = []
        if not self.api_users:
            return users
        for pair in self.api_users.split(","):
            pair = pair.strip()
            parts = pair.split(":")
            if len(parts) != 2:
                raise ConfigError(f"invalid user:password pair {pair}")
            users.append(APIUser(username=parts[0], password=parts[1]))
        return users

    def validate(self) -> None:
        if not self.oauth_client_id or not self.oauth_client_secret:
            raise ConfigError("oauth_client_id and oauth_client_secret must be set")
        self.parse_api_users()
