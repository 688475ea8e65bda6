# src/checkinator/apps/api/server.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

from fastapi import Depends, FastAPI, Request, status
from fastapi.responses import PlainTextResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel

from checkinator import __version__
from checkinator.apps.api.auth import LoginRequired, get_session, remote_host, require_api_user, require_user
from checkinator.services.devices.store import DeviceStore, SQLiteDeviceStore
from checkinator.services.errors import OAuthError, OwnershipConflict, OwnershipMismatch, StoreError
from checkinator.services.leases.reconciler import KeaLeaseFile
from checkinator.services.macaddr import parse_mac
from checkinator.services.oauth import OAuthClient, OAuthConfig, generate_state, generate_verifier
from checkinator.services.presence import PresenceService
from checkinator.services.secret import load_or_create_secret
from checkinator.services.sessions import Session, SessionManager
from checkinator.services.settings import APIUser, Settings

_log = logging.getLogger("checkinator.api")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))


class APIUserOut(BaseModel):
    login: str


class ActiveUsersOut(BaseModel):
    users: list[APIUserOut]


@dataclass(slots=True)
class Service:
    """Everything the views need, hung off ``app.state.checkinator``."""

    settings: Settings
    leases: KeaLeaseFile
    store: DeviceStore
    presence: PresenceService
    sessions: SessionManager
    oauth: OAuthClient
    api_users: list[APIUser]


def build_service(
    settings: Settings,
    *,
    store: DeviceStore | None = None,
    leases: KeaLeaseFile | None = None,
    oauth: OAuthClient | None = None,
    secret: str | None = None,
) -> Service:
    leases = leases or KeaLeaseFile(settings.lease_paths)
    store = store or SQLiteDeviceStore(settings.db_file)
    if secret is None:
        secret = load_or_create_secret(settings.secret_file)
    return Service(
        settings=settings,
        leases=leases,
        store=store,
        presence=PresenceService(leases, store),
        sessions=SessionManager(secret, secure=settings.secure_cookies),
        oauth=oauth or OAuthClient(OAuthConfig.from_settings(settings)),
        api_users=settings.parse_api_users(),
    )


def _service(request: Request) -> Service:
    return request.app.state.checkinator


def _page(request: Request, name: str, username: str, **context: object):
    settings = _service(request).settings
    return templates.TemplateResponse(
        request,
        name,
        {
            "username": username,
            "space_name": settings.space_name,
            "space_url": settings.space_url,
            **context,
        },
    )


def create_app(service: Service | None = None, settings: Settings | None = None) -> FastAPI:
    if service is None:
        service = build_service(settings or Settings.from_sources())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        close = getattr(service.store, "close", None)
        if close is not None:
            close()

    app = FastAPI(title="checkinator", version=__version__, lifespan=lifespan, docs_url=None, redoc_url=None)
    app.state.checkinator = service

    @app.exception_handler(LoginRequired)
    async def _login_required(request: Request, exc: LoginRequired):
        return RedirectResponse("/oauth/login", status_code=status.HTTP_302_FOUND)

    @app.exception_handler(StoreError)
    async def _store_error(request: Request, exc: StoreError):
        _log.error("store failure on %s: %s", request.url.path, exc)
        return PlainTextResponse(str(exc), status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    @app.exception_handler(OSError)
    async def _io_error(request: Request, exc: OSError):
        _log.error("I/O failure on %s: %s", request.url.path, exc)
        return PlainTextResponse(f"Can't get leases: {exc}", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    @app.get("/")
    def index(request: Request, username: str = Depends(require_user)):
        users = _service(request).presence.active_users()
        return _page(request, "index.html", username, users=users)

    @app.get("/api.json", response_model=ActiveUsersOut)
    def api_json(request: Request, _: str = Depends(require_api_user)):
        users = _service(request).presence.active_users()
        return ActiveUsersOut(users=[APIUserOut(login=user) for user in users])

    @app.get("/manage")
    def manage(request: Request, username: str = Depends(require_user)):
        devices = _service(request).store.get_devices_for_user(username)
        return _page(request, "manage.html", username, devices=devices)

    @app.get("/claim")
    def claim(request: Request, username: str = Depends(require_user)):
        svc = _service(request)
        host = remote_host(request)
        if not host:
            return PlainTextResponse("Can't get your IP address / host.", status_code=status.HTTP_400_BAD_REQUEST)
        lease = svc.presence.lease_for_address(host)
        if lease is None:
            return PlainTextResponse(
                "You must be present at the lab and be using local DNS to claim this device "
                f"(detected host: {host}).",
                status_code=status.HTTP_404_NOT_FOUND,
            )
        try:
            svc.store.claim_device(username, lease.mac_address, lease.hostname)
        except OwnershipConflict as exc:
            return PlainTextResponse(f"Could not claim device: {exc}", status_code=status.HTTP_409_CONFLICT)
        return RedirectResponse("/manage", status_code=status.HTTP_302_FOUND)

    @app.get("/unclaim/{mac}")
    def unclaim(request: Request, mac: str, username: str = Depends(require_user)):
        try:
            mac_address = parse_mac(mac)
        except ValueError:
            return PlainTextResponse("Invalid MAC address.", status_code=status.HTTP_400_BAD_REQUEST)
        try:
            _service(request).store.unclaim_device(username, mac_address)
        except OwnershipMismatch as exc:
            return PlainTextResponse(str(exc), status_code=status.HTTP_403_FORBIDDEN)
        return RedirectResponse("/manage", status_code=status.HTTP_302_FOUND)

    @app.get("/oauth/login")
    def oauth_login(request: Request):
        svc = _service(request)
        state = generate_state()
        verifier = generate_verifier()
        response = RedirectResponse(svc.oauth.authorization_url(state, verifier), status_code=status.HTTP_302_FOUND)
        svc.sessions.set(response, Session(oauth_state=state, oauth_verifier=verifier))
        return response

    @app.get("/oauth/redirect")
    def oauth_redirect(
        request: Request,
        code: str = "",
        state: str = "",
        session: Session | None = Depends(get_session),
    ):
        svc = _service(request)
        if session is None or not session.oauth_state or not session.oauth_verifier:
            return PlainTextResponse("no session", status_code=status.HTTP_400_BAD_REQUEST)
        if state != session.oauth_state:
            return PlainTextResponse("invalid session", status_code=status.HTTP_400_BAD_REQUEST)
        try:
            username = svc.oauth.username(code, session.oauth_verifier)
        except OAuthError as exc:
            _log.warning("oauth login failed: %s", exc)
            return PlainTextResponse(str(exc), status_code=status.HTTP_400_BAD_REQUEST)

        response = RedirectResponse("/", status_code=status.HTTP_302_FOUND)
        svc.sessions.set(response, Session(username=username))
        return response

    return app
