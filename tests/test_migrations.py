"""
Tests for first-run seeding and the activity log.
"""

from estampa_fina.activity import log_activity, recent_activity
from estampa_fina.auth import AuthProvider, SessionUser
from estampa_fina.migrations import seed_defaults
from estampa_fina.store import DocumentStore


class TestSeed:
    def test_bootstraps_admin_and_settings(self, db, monkeypatch):
        monkeypatch.setenv("ADMIN_EMAIL", "dono@loja.com")
        monkeypatch.setenv("ADMIN_PASSWORD", "senha123")
        seed_defaults(db)

        store = DocumentStore(db)
        assert store.get("settings", "main")["companyName"] == "Estampa Fina"
        users = store.list("users")
        assert len(users) == 1
        assert users[0]["role"] == "administrator"
        assert users[0]["permissions"]["editSettings"] is True
        AuthProvider(db).sign_in_with_password("dono@loja.com", "senha123")

    def test_runs_once(self, db, monkeypatch):
        monkeypatch.setenv("ADMIN_PASSWORD", "senha123")
        seed_defaults(db)
        seed_defaults(db)
        assert AuthProvider(db).account_count() == 1

    def test_without_password_skips_admin(self, db, monkeypatch):
        monkeypatch.delenv("ADMIN_PASSWORD", raising=False)
        seed_defaults(db)
        assert AuthProvider(db).account_count() == 0
        assert DocumentStore(db).exists("settings", "main")


def test_activity_log(store):
    actor = SessionUser(id="u1", name="Admin", email="a@x.com", role="administrator")
    log_activity(store, actor, "deleteProduct", "products/p1")
    log_activity(store, actor, "editSettings", "settings/main", "cores")
    entries = recent_activity(store, limit=5)
    assert {e["action"] for e in entries} == {"editSettings", "deleteProduct"}
    assert {e["actorName"] for e in entries} == {"Admin"}
    assert len(entries) == 2
