"""
Tests for the document store and its subscriptions.
"""

from datetime import datetime, timezone

import pytest

from estampa_fina.store import DocumentStore, ListenerHub, NotFound, StoreError, parse_timestamp


class TestDocuments:
    def test_add_and_get(self, store):
        doc_id = store.add("clients", {"name": "Ana"})
        assert store.get("clients", doc_id) == {"id": doc_id, "name": "Ana"}
        assert store.exists("clients", doc_id)

    def test_get_missing(self, store):
        assert store.get("clients", "nope") is None

    def test_set_replaces_and_merges(self, store):
        store.set("settings", "main", {"a": 1, "b": 2})
        store.set("settings", "main", {"b": 3}, merge=True)
        assert store.get("settings", "main") == {"id": "main", "a": 1, "b": 3}
        store.set("settings", "main", {"c": 4})
        assert store.get("settings", "main") == {"id": "main", "c": 4}

    def test_update_missing_raises(self, store):
        with pytest.raises(NotFound):
            store.update("orders", "ghost", {"status": "Completed"})

    def test_not_found_is_a_store_error(self):
        assert issubclass(NotFound, StoreError)

    def test_datetimes_are_stored_as_iso(self, store):
        when = datetime(2024, 1, 2, 3, 4, tzinfo=timezone.utc)
        store.set("orders", "o1", {"date": when, "items": [{"at": when}]})
        doc = store.get("orders", "o1")
        assert doc["date"] == when.isoformat()
        assert doc["items"][0]["at"] == when.isoformat()

    def test_id_is_not_persisted_in_data(self, store):
        store.set("clients", "c1", {"id": "other", "name": "Ana"})
        assert store.get("clients", "c1") == {"id": "c1", "name": "Ana"}

    def test_delete(self, store):
        store.set("clients", "c1", {"name": "Ana"})
        assert store.delete("clients", "c1") is True
        assert store.delete("clients", "c1") is False

    def test_collections_are_separate(self, store):
        store.set("clients", "x", {"name": "Cliente"})
        store.set("products", "x", {"name": "Produto"})
        assert store.get("clients", "x")["name"] == "Cliente"
        assert store.get("products", "x")["name"] == "Produto"


class TestQueries:
    @pytest.fixture(autouse=True)
    def seed(self, store):
        store.set("orders", "o1", {"clientId": "c1", "date": "2024-01-03T00:00:00+00:00"})
        store.set("orders", "o2", {"clientId": "c2", "date": "2024-01-01T00:00:00+00:00"})
        store.set("orders", "o3", {"clientId": "c1"})
        store.set("orders", "o4", {"clientId": "c1", "date": "2024-01-02T00:00:00+00:00"})

    def test_where(self, store):
        assert [d["id"] for d in store.list("orders", where={"clientId": "c1"})] == ["o1", "o3", "o4"]

    def test_order_by_puts_missing_last(self, store):
        ids = [d["id"] for d in store.list("orders", order_by="date", descending=True)]
        assert ids == ["o1", "o4", "o2", "o3"]

    def test_limit(self, store):
        assert len(store.list("orders", order_by="date", limit=2)) == 2

    def test_fetch_many(self, store):
        store.set("products", "p1", {"name": "Camiseta"})
        data = store.fetch_many("orders", "products", "clients")
        assert len(data["orders"]) == 4
        assert [p["id"] for p in data["products"]] == ["p1"]
        assert data["clients"] == []


class TestSubscriptions:
    def test_receives_writes(self, store):
        events = []
        store.on_snapshot("products", lambda coll, doc_id, data: events.append((doc_id, data)))
        store.set("products", "p1", {"name": "Camiseta"})
        store.update("products", "p1", {"currentStock": 3})
        store.delete("products", "p1")
        assert events == [
            ("p1", {"name": "Camiseta"}),
            ("p1", {"name": "Camiseta", "currentStock": 3}),
            ("p1", None),
        ]

    def test_document_filter(self, store):
        events = []
        store.on_snapshot("settings", lambda *args: events.append(args[1]), doc_id="main")
        store.set("settings", "other", {"x": 1})
        store.set("settings", "main", {"x": 2})
        assert events == ["main"]

    def test_close_stops_delivery(self, store, listeners):
        events = []
        sub = store.on_snapshot("clients", lambda *args: events.append(args))
        sub.close()
        sub.close()
        store.set("clients", "c1", {"name": "Ana"})
        assert events == []
        assert sub.active is False
        assert len(listeners) == 0

    def test_empty_hub_is_used_as_given(self, db):
        mine = ListenerHub()
        store = DocumentStore(db, mine)
        assert store.listeners is mine
        events = []
        mine.subscribe("clients", lambda *args: events.append(args[1]))
        store.set("clients", "c1", {"name": "Ana"})
        assert events == ["c1"]

    def test_context_manager(self, store, listeners):
        with store.on_snapshot("clients", lambda *args: None):
            assert len(listeners) == 1
        assert len(listeners) == 0

    def test_failing_listener_does_not_break_writes(self, store):
        def broken(*args):
            raise RuntimeError("boom")

        store.on_snapshot("clients", broken)
        store.set("clients", "c1", {"name": "Ana"})
        assert store.exists("clients", "c1")


class TestParseTimestamp:
    def test_variants(self):
        expected = datetime(2024, 1, 2, 3, 4, tzinfo=timezone.utc)
        assert parse_timestamp("2024-01-02T03:04:00Z") == expected
        assert parse_timestamp("2024-01-02T03:04:00") == expected
        assert parse_timestamp(datetime(2024, 1, 2, 3, 4)) == expected

    def test_garbage(self):
        assert parse_timestamp(None) is None
        assert parse_timestamp("") is None
        assert parse_timestamp("ontem") is None
