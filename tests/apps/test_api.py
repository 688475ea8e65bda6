from __future__ import annotations

import base64
from datetime import datetime, timezone
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest
from fastapi.testclient import TestClient

from checkinator.apps.api.server import build_service, create_app
from checkinator.services.oauth import OAuthClient, OAuthConfig
from checkinator.services.sessions import Session, SessionCodec
from checkinator.services.settings import Settings

SECRET = "test-secret"
FUTURE = int(datetime(2100, 1, 1, tzinfo=timezone.utc).timestamp())
MAC_A = "00:01:02:03:04:0a"
MAC_B = "00:01:02:03:04:0b"


def _provider(request: httpx.Request) -> httpx.Response:
    if request.url.path.endswith("/access_token"):
        form = parse_qs(request.content.decode())
        if form.get("code") != ["good-code"]:
            return httpx.Response(400, json={"error": "invalid_grant"})
        return httpx.Response(200, json={"access_token": "tok"})
    if request.url.path.endswith("/userinfo"):
        return httpx.Response(200, json={"preferred_username": "alice"})
    return httpx.Response(404)


@pytest.fixture()
def settings(tmp_path):
    leases = tmp_path / "dhcp4.leases"
    leases.write_text(
        "address,hwaddr,expire,hostname\n"
        f"10.0.0.10,{MAC_A},{FUTURE},alices-laptop\n"
        f"10.0.0.11,{MAC_B},{FUTURE},bobs-phone\n",
        encoding="utf-8",
    )
    return Settings(
        public_address="http://testserver/",
        lease_file=str(leases),
        db_file=str(tmp_path / "checkinator.db"),
        secret_file=str(tmp_path / "checkinator.secret"),
        oauth_client_id="cid",
        oauth_client_secret="csecret",
        api_users="bot:hunter2",
        space_name="TestLab",
    )


@pytest.fixture()
def service(settings):
    oauth = OAuthClient(OAuthConfig.from_settings(settings), transport=httpx.MockTransport(_provider))
    return build_service(settings, oauth=oauth, secret=SECRET)


@pytest.fixture()
def client(service):
    with TestClient(create_app(service), follow_redirects=False) as client:
        yield client


def _login(client: TestClient, username: str = "alice") -> None:
    client.cookies.set("session2", SessionCodec(SECRET).seal(Session(username=username).to_payload()))


def test_pages_require_login(client):
    for path in ("/", "/manage", "/claim", f"/unclaim/{MAC_A}"):
        response = client.get(path)
        assert response.status_code == 302
        assert response.headers["location"] == "/oauth/login"


def test_tampered_cookie_counts_as_logged_out(client):
    token = bytearray(base64.urlsafe_b64decode(SessionCodec(SECRET).seal(Session(username="alice").to_payload())))
    token[-1] ^= 0xFF
    client.cookies.set("session2", base64.urlsafe_b64encode(bytes(token)).decode())
    assert client.get("/").headers["location"] == "/oauth/login"


def test_claim_then_index_lists_user(client, service):
    _login(client)
    response = client.get("/claim", headers={"X-Forwarded-For": "10.0.0.10"})
    assert response.status_code == 302
    assert response.headers["location"] == "/manage"
    assert [d.hostname for d in service.store.get_devices_for_user("alice")] == ["alices-laptop"]

    page = client.get("/")
    assert page.status_code == 200
    assert "alice" in page.text
    assert "TestLab" in page.text

    manage = client.get("/manage")
    assert MAC_A in manage.text
    assert "alices-laptop" in manage.text


def test_claim_from_unknown_address(client):
    _login(client)
    response = client.get("/claim", headers={"X-Forwarded-For": "192.0.2.1"})
    assert response.status_code == 404
    assert "detected host: 192.0.2.1" in response.text


def test_claim_conflict(client, service):
    service.store.claim_device("bob", MAC_A, "mine")
    _login(client)
    response = client.get("/claim", headers={"X-Forwarded-For": "10.0.0.10"})
    assert response.status_code == 409
    assert "already claimed" in response.text
    assert [d.user_nickname for d in service.store.get_devices_for_mac_addresses([MAC_A])] == ["bob"]


def test_claim_from_ipv4_mapped_peer(client, service):
    _login(client)
    response = client.get("/claim", headers={"X-Forwarded-For": "::ffff:10.0.0.10"})
    assert response.status_code == 302
    assert [d.mac_address for d in service.store.get_devices_for_user("alice")] == [MAC_A]


def test_unclaim(client, service):
    service.store.claim_device("alice", MAC_A, "laptop")
    service.store.claim_device("bob", MAC_B, "phone")
    _login(client)

    assert client.get("/unclaim/not-a-mac").status_code == 400
    assert client.get(f"/unclaim/{MAC_B}").status_code == 403
    response = client.get(f"/unclaim/{MAC_A.upper()}")
    assert response.status_code == 302
    assert service.store.get_devices_for_user("alice") == []
    assert [d.user_nickname for d in service.store.get_devices_for_mac_addresses([MAC_B])] == ["bob"]


def test_api_json_requires_basic_auth(client, service):
    service.store.claim_device("alice", MAC_A, "laptop")
    response = client.get("/api.json")
    assert response.status_code == 401
    assert response.headers["www-authenticate"] == 'Basic realm="restricted", charset="UTF-8"'
    assert client.get("/api.json", auth=("bot", "wrong")).status_code == 401

    response = client.get("/api.json", auth=("bot", "hunter2"))
    assert response.status_code == 200
    assert response.json() == {"users": [{"login": "alice"}]}


def test_oauth_login_flow(client):
    response = client.get("/oauth/login")
    assert response.status_code == 302
    location = urlsplit(response.headers["location"])
    query = parse_qs(location.query)
    assert query["redirect_uri"] == ["http://testserver/oauth/redirect"]
    state = query["state"][0]

    set_cookie = response.headers["set-cookie"]
    assert "session2=" in set_cookie
    assert "HttpOnly" in set_cookie
    assert "Path=/" in set_cookie
    assert "Secure" not in set_cookie

    assert client.get("/oauth/redirect", params={"code": "good-code", "state": "forged"}).text == "invalid session"

    response = client.get("/oauth/redirect", params={"code": "good-code", "state": state})
    assert response.status_code == 302
    assert response.headers["location"] == "/"
    session = SessionCodec(SECRET).open(client.cookies.get("session2"))
    assert session == {"username": "alice", "oauth_state": "", "oauth_verifier": ""}
    assert client.get("/").status_code == 200


def test_oauth_redirect_without_session(client):
    response = client.get("/oauth/redirect", params={"code": "x", "state": "y"})
    assert response.status_code == 400
    assert response.text == "no session"


def test_oauth_exchange_failure(client):
    state = parse_qs(urlsplit(client.get("/oauth/login").headers["location"]).query)["state"][0]
    response = client.get("/oauth/redirect", params={"code": "bad-code", "state": state})
    assert response.status_code == 400
    assert "oauth exchange failed" in response.text


def test_secure_cookie_on_https(settings):
    settings = settings.with_overrides(public_address="https://at.example.org/")
    service = build_service(settings, secret=SECRET)
    with TestClient(create_app(service), follow_redirects=False) as client:
        assert "Secure" in client.get("/oauth/login").headers["set-cookie"]
