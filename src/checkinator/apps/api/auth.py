from __future__ import annotations

import secrets
from typing import Sequence

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from checkinator.services.sessions import Session
from checkinator.services.settings import APIUser

_basic = HTTPBasic(auto_error=False)


class LoginRequired(Exception):
    """Raised by :func:`require_user`; answered with a redirect to the login view."""


def get_session(request: Request) -> Session | None:
    return request.app.state.checkinator.sessions.get(request)


def require_user(session: Session | None = Depends(get_session)) -> str:
    if session is None or not session.logged_in:
        raise LoginRequired()
    return session.username


def _authorized(users: Sequence[APIUser], username: str, password: str) -> bool:
    ok = False
    for user in users:
        name_ok = secrets.compare_digest(user.username.encode(), username.encode())
        pass_ok = secrets.compare_digest(user.password.encode(), password.encode())
        ok |= name_ok and pass_ok
    return ok


def require_api_user(
    request: Request,
    credentials: HTTPBasicCredentials | None = Depends(_basic),
) -> str:
    users = request.app.state.checkinator.api_users
    if credentials is None or not _authorized(users, credentials.username, credentials.password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": 'Basic realm="restricted", charset="UTF-8"'},
        )
    return credentials.username


def remote_host(request: Request) -> str:
    """Address of the connecting client, honouring a reverse proxy."""

    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client is None:
        return ""
    return request.client.host
