from __future__ import annotations

import pytest
from firebase_admin import auth as firebase_auth

from tradelog.errors import AuthenticationError, ValidationFailure
from tradelog.owner import auth as owner_auth
from tradelog.owner.context import OwnerContext
from tradelog.owner.session import OwnerSession


def test_session_starts_signed_out():
    session = OwnerSession()
    assert session.owner_id is None
    with pytest.raises(ValidationFailure):
        session.require_owner()


def test_sign_in_and_out_notify_listeners_once_per_change():
    session = OwnerSession()
    changes = []
    remove = session.on_change(lambda prev, cur: changes.append((prev, cur)))

    session.sign_in("u1")
    session.sign_in("u1")
    session.sign_in(OwnerContext(uid="u2", claims={"email": "b@example.com"}))
    session.sign_out()
    session.sign_out()

    assert changes == [(None, "u1"), ("u1", "u2"), ("u2", None)]

    remove()
    session.sign_in("u3")
    assert len(changes) == 3
    assert session.require_owner() == "u3"


def test_sign_in_rejects_malformed_owner():
    session = OwnerSession()
    with pytest.raises(ValidationFailure):
        session.sign_in("a/b")
    assert session.owner_id is None


@pytest.fixture
def no_firebase_init(monkeypatch):
    monkeypatch.setattr(owner_auth, "init_firebase_admin", lambda **_: None)


def test_owner_from_id_token_strips_bearer_prefix(monkeypatch, no_firebase_init):
    seen = {}

    def _verify(token, check_revoked=False):  # noqa: FBT002
        seen["token"] = token
        seen["check_revoked"] = check_revoked
        return {"uid": "u1", "email": "a@example.com"}

    monkeypatch.setattr(firebase_auth, "verify_id_token", _verify)

    ctx = owner_auth.owner_from_id_token("Bearer abc.def.ghi", check_revoked=True)
    assert ctx.uid == "u1"
    assert ctx.claims["email"] == "a@example.com"
    assert seen == {"token": "abc.def.ghi", "check_revoked": True}


def test_owner_from_id_token_rejects_missing_token(no_firebase_init):
    with pytest.raises(AuthenticationError):
        owner_auth.owner_from_id_token("   ")


def test_owner_from_id_token_wraps_verification_errors(monkeypatch, no_firebase_init):
    def _verify(token, check_revoked=False):  # noqa: ARG001,FBT002
        raise ValueError("malformed")

    monkeypatch.setattr(firebase_auth, "verify_id_token", _verify)
    with pytest.raises(AuthenticationError) as ei:
        owner_auth.owner_from_id_token("bad")
    assert isinstance(ei.value.__cause__, ValueError)


def test_owner_from_id_token_requires_uid(monkeypatch, no_firebase_init):
    monkeypatch.setattr(firebase_auth, "verify_id_token", lambda token, check_revoked=False: {"email": "x"})
    with pytest.raises(AuthenticationError):
        owner_auth.owner_from_id_token("tok")
