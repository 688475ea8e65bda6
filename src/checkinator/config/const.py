# src/checkinator/config/const.py
from __future__ import annotations

# Hard defaults; overridden by checkinator.yaml and CHECKINATOR_* variables.
SECRET_FILE: str = "checkinator.secret"
LISTEN_HOST: str = "0.0.0.0"
LISTEN_PORT: int = 8080
PUBLIC_ADDRESS: str = "https://at.lab.fa-fo.de/"
LEASE_FILE: str = "/var/lib/kea/dhcp4.leases"
DB_FILE: str = "checkinator.db"

OAUTH_AUTH_URL: str = "https://git.fa-fo.de/login/oauth/authorize"
OAUTH_TOKEN_URL: str = "https://git.fa-fo.de/login/oauth/access_token"
OAUTH_USER_INFO_URL: str = "https://git.fa-fo.de/login/oauth/userinfo"

SPACE_NAME: str = "FAFO"
SPACE_URL: str = "https://fa-fo.de/"

SESSION_COOKIE: str = "session2"
CONFIG_ENV: str = "CHECKINATOR_CONFIG"
CONFIG_FILE: str = "checkinator.yaml"
ENV_PREFIX: str = "CHECKINATOR_"
