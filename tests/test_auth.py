"""
Unit tests for the identity provider. The REST API is stubbed.
"""
from unittest.mock import MagicMock, patch

import pytest
import requests

from identity import auth
from identity.auth import AuthError, IdentityProvider

SIGN_IN_PAYLOAD = {
    "localId": "uid123",
    "email": "jane@example.com",
    "displayName": "Jane",
    "idToken": "token-abc",
    "expiresIn": "3600",
}


def response(ok=True, payload=None):
    resp = MagicMock()
    resp.ok = ok
    resp.json.return_value = payload or {}
    return resp


@pytest.fixture
def provider():
    return IdentityProvider(api_key="test-key")


def test_sign_in(provider):
    with patch("identity.auth.requests.post", return_value=response(payload=SIGN_IN_PAYLOAD)) as post:
        user = provider.sign_in("jane@example.com", "secret")

    assert user.uid == "uid123"
    assert user.display_name == "Jane"
    assert provider.current_user == user
    assert provider.is_authenticated
    assert provider.id_token == "token-abc"

    url = post.call_args.args[0]
    assert url.endswith("/accounts:signInWithPassword")
    assert post.call_args.kwargs["params"] == {"key": "test-key"}
    assert post.call_args.kwargs["json"]["returnSecureToken"] is True


def test_sign_up_uses_sign_up_endpoint(provider):
    with patch("identity.auth.requests.post", return_value=response(payload=SIGN_IN_PAYLOAD)) as post:
        provider.sign_up("jane@example.com", "secret")
    assert post.call_args.args[0].endswith("/accounts:signUp")


@pytest.mark.parametrize("code, message", [
    ("EMAIL_NOT_FOUND", "No account found with this email"),
    ("INVALID_PASSWORD", "Incorrect password"),
    ("EMAIL_EXISTS", "Email is already in use"),
    ("WEAK_PASSWORD : Password should be at least 6 characters", "Password is too weak"),
    ("INVALID_EMAIL", "Invalid email address"),
    ("TOO_MANY_ATTEMPTS_TRY_LATER", "Too many failed attempts. Please try again later"),
    ("SOMETHING_ELSE", "An error occurred during authentication"),
])
def test_error_messages(provider, code, message):
    failed = response(ok=False, payload={"error": {"message": code}})
    with patch("identity.auth.requests.post", return_value=failed):
        with pytest.raises(AuthError) as exc:
            provider.sign_in("jane@example.com", "x")
    assert str(exc.value) == message
    assert not provider.is_authenticated


def test_network_failure(provider):
    with patch("identity.auth.requests.post", side_effect=requests.ConnectionError("down")):
        with pytest.raises(AuthError):
            provider.sign_in("jane@example.com", "secret")


def test_listeners_follow_session(provider):
    seen = []
    unsubscribe = provider.on_auth_state_changed(seen.append)
    with patch("identity.auth.requests.post", return_value=response(payload=SIGN_IN_PAYLOAD)):
        provider.sign_in("jane@example.com", "secret")
    provider.sign_out()
    unsubscribe()
    with patch("identity.auth.requests.post", return_value=response(payload=SIGN_IN_PAYLOAD)):
        provider.sign_in("jane@example.com", "secret")

    assert [u.uid if u else None for u in seen] == [None, "uid123", None]
    assert provider.id_token == "token-abc"


def test_sign_out_clears_session(provider):
    with patch("identity.auth.requests.post", return_value=response(payload=SIGN_IN_PAYLOAD)):
        provider.sign_in("jane@example.com", "secret")
    provider.sign_out()
    assert provider.current_user is None
    assert provider.id_token is None


def test_verify_token(provider):
    payload = {"users": [{"localId": "uid123", "email": "jane@example.com"}]}
    with patch("identity.auth.requests.post", return_value=response(payload=payload)) as post:
        user = provider.verify_token("token-abc")
    assert user.uid == "uid123"
    assert post.call_args.kwargs["json"] == {"idToken": "token-abc"}

    with patch("identity.auth.requests.post", return_value=response(payload={"users": []})):
        with pytest.raises(AuthError):
            provider.verify_token("stale")


def test_missing_api_key(monkeypatch):
    monkeypatch.setattr(auth, "FIREBASE_API_KEY", None)
    with pytest.raises(AuthError):
        IdentityProvider().sign_in("jane@example.com", "secret")
