"""
Tests for accounts, sign-in and the session user.
"""

import pytest

from estampa_fina.auth import AuthError, AuthProvider, Principal, resolve_session_user
from estampa_fina.security import build_session_token, read_session_token
from estampa_fina.store import ListenerHub


@pytest.fixture
def auth(db):
    return AuthProvider(db, events=ListenerHub())


@pytest.fixture
def account(auth):
    return auth.create_account("Ana@Exemplo.com", "segredo1", display_name="Ana")


class TestAccounts:
    def test_email_is_normalised(self, account):
        assert account.email == "ana@exemplo.com"
        assert account.display_name == "Ana"

    def test_duplicate_email(self, auth, account):
        with pytest.raises(AuthError):
            auth.create_account("ANA@exemplo.com", "outrasenha")

    def test_short_password(self, auth):
        with pytest.raises(AuthError):
            auth.create_account("b@exemplo.com", "123")

    def test_invalid_email(self, auth):
        with pytest.raises(AuthError):
            auth.create_account("sem-arroba", "segredo1")

    def test_account_count(self, auth, account):
        assert auth.account_count() == 1

    def test_delete(self, auth, account):
        auth.delete_account(account.uid)
        assert auth.get(account.uid) is None


class TestSignIn:
    def test_success(self, auth, account):
        principal = auth.sign_in_with_password("ana@exemplo.com", "segredo1")
        assert principal.uid == account.uid

    def test_wrong_password(self, auth, account):
        with pytest.raises(AuthError):
            auth.sign_in_with_password("ana@exemplo.com", "errada")

    def test_unknown_email(self, auth):
        with pytest.raises(AuthError):
            auth.sign_in_with_password("ninguem@exemplo.com", "segredo1")

    def test_state_changes_are_pushed(self, auth, account):
        events = []
        sub = auth.on_auth_state_changed(lambda uid, data: events.append((uid, data)))
        auth.sign_in_with_password("ana@exemplo.com", "segredo1")
        auth.sign_out(account.uid)
        sub.close()
        auth.sign_in_with_password("ana@exemplo.com", "segredo1")
        assert events == [
            (account.uid, {"event": "sign_in", "email": "ana@exemplo.com"}),
            (account.uid, None),
        ]

    def test_given_empty_hub_is_kept(self, db):
        events = ListenerHub()
        assert AuthProvider(db, events=events).events is events


class TestPasswords:
    def test_change_requires_current_password(self, auth, account):
        with pytest.raises(AuthError):
            auth.change_password(account.uid, "errada", "novasenha")
        auth.change_password(account.uid, "segredo1", "novasenha")
        auth.sign_in_with_password("ana@exemplo.com", "novasenha")

    def test_set_password_enforces_length(self, auth, account):
        with pytest.raises(AuthError):
            auth.set_password(account.uid, "123")

    def test_update_profile(self, auth, account):
        p = auth.update_profile(account.uid, display_name="Ana Paula", photo_url="/static/uploads/a.png")
        assert p.display_name == "Ana Paula"
        assert p.photo_url == "/static/uploads/a.png"


class TestSessionUser:
    def test_without_user_record_is_customer(self, store):
        user = resolve_session_user(store, Principal(uid="u1", email="x@y.com", display_name="X"))
        assert user.is_customer
        assert user.permissions == {}
        assert user.name == "X"

    def test_from_user_record(self, store):
        store.set("users", "u1", {
            "name": "Gerente", "role": "manager", "permissions": {"deleteUser": True}, "active": False,
        })
        user = resolve_session_user(store, Principal(uid="u1", email="g@y.com"))
        assert user.role == "manager"
        assert user.permissions == {"deleteUser": True}
        assert user.active is False
        assert user.email == "g@y.com"


class TestSessionTokens:
    def test_round_trip(self):
        assert read_session_token(build_session_token("u1")) == "u1"

    def test_plain_uid_is_not_a_session(self):
        assert read_session_token("u1") is None
        assert read_session_token("") is None

    def test_expired(self):
        assert read_session_token(build_session_token("u1"), max_age=-1) is None
