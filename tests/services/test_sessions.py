from __future__ import annotations

import base64
import string

import pytest

from checkinator.services.sessions import NONCE_SIZE, Session, SessionCodec, derive_key, open_token, seal

SECRET = "5f0c8e4c0d2b4f7c9a1e3b6d8f0a2c4e"


def _flip(token: str, index: int) -> str:
    raw = bytearray(base64.urlsafe_b64decode(token))
    raw[index] ^= 0x01
    return base64.urlsafe_b64encode(bytes(raw)).decode("ascii")


def test_seal_open_roundtrip():
    payload = {"username": "jane", "oauth_state": "", "oauth_verifier": ""}
    assert open_token(SECRET, seal(SECRET, payload)) == payload


def test_each_seal_uses_a_fresh_nonce():
    codec = SessionCodec(SECRET)
    first = codec.seal({"username": "jane"})
    second = codec.seal({"username": "jane"})
    assert first != second
    assert base64.urlsafe_b64decode(first)[:NONCE_SIZE] != base64.urlsafe_b64decode(second)[:NONCE_SIZE]


def test_open_with_other_secret_fails():
    token = seal(SECRET, {"username": "jane"})
    assert open_token("another secret", token) is None


@pytest.mark.parametrize("position", ["nonce", "ciphertext", "tag"])
def test_any_flipped_byte_is_detected(position):
    token = seal(SECRET, {"username": "jane"})
    size = len(base64.urlsafe_b64decode(token))
    index = {"nonce": 0, "ciphertext": NONCE_SIZE + 1, "tag": size - 1}[position]
    assert open_token(SECRET, _flip(token, index)) is None


def test_every_character_of_the_token_is_checked():
    codec = SessionCodec(SECRET)
    token = codec.seal({"username": "jane"})
    alphabet = string.ascii_letters + string.digits + "-_="
    for index, original in enumerate(token):
        for replacement in alphabet:
            if replacement == original:
                continue
            tampered = token[:index] + replacement + token[index + 1 :]
            assert codec.open(tampered) is None, (index, original, replacement)


@pytest.mark.parametrize(
    "mangle",
    [
        lambda t: t + "=",
        lambda t: t.rstrip("="),
        lambda t: " " + t,
        lambda t: t[:8] + "\n" + t[8:],
        lambda t: t.replace("-", "+").replace("_", "/"),
    ],
    ids=["extra-padding", "no-padding", "leading-space", "newline", "standard-alphabet"],
)
def test_non_canonical_encodings_are_rejected(mangle):
    codec = SessionCodec(SECRET)
    # 47 sealed bytes: the token always ends in a single "=".
    token = codec.seal({"username": "jane"})
    while mangle(token) == token:
        token = codec.seal({"username": "jane"})
    assert codec.open(mangle(token)) is None


def test_every_byte_is_authenticated():
    codec = SessionCodec(SECRET)
    token = codec.seal({"username": "jane"})
    size = len(base64.urlsafe_b64decode(token))
    for index in range(size):
        assert codec.open(_flip(token, index)) is None


@pytest.mark.parametrize(
    "token",
    [
        None,
        "",
        base64.urlsafe_b64encode(b"short").decode(),
        base64.urlsafe_b64encode(b"\x00" * (NONCE_SIZE - 1)).decode(),
        "not base64 at all!",
        "é",
    ],
)
def test_garbage_tokens_open_to_none(token):
    assert open_token(SECRET, token) is None


def test_non_object_payload_is_rejected():
    codec = SessionCodec(SECRET)
    # Sealing a list bypasses the mapping check on purpose.
    nonce = b"\x01" * NONCE_SIZE
    sealed = nonce + codec._aead.encrypt(nonce, b"[1, 2, 3]", None)
    assert codec.open(base64.urlsafe_b64encode(sealed).decode()) is None


def test_key_is_derived_not_raw():
    key = derive_key("short")
    assert len(key) == 32
    assert key != b"short".ljust(32, b"\x00")
    assert derive_key(b"short") == key


def test_session_payload_mapping():
    session = Session.from_payload({"username": "jane", "oauth_state": 5})
    assert session == Session(username="jane")
    assert session.logged_in
    assert Session().to_payload() == {"username": "", "oauth_state": "", "oauth_verifier": ""}
    assert not Session(oauth_state="abc").logged_in
