"""
Tests for notification read-state.
"""

import pytest

from estampa_fina.notifications import mark_all_read, mark_read, recent_notifications, unread_count
from estampa_fina.store import NotFound


@pytest.fixture
def seeded(store):
    store.set("notifications", "n1", {"title": "A", "read": False, "timestamp": "2024-06-01T10:00:00+00:00"})
    store.set("notifications", "n2", {"title": "B", "read": True, "timestamp": "2024-06-02T10:00:00+00:00"})
    store.set("notifications", "n3", {"title": "C", "timestamp": "2024-06-03T10:00:00+00:00"})
    return store


class TestReadState:
    def test_unread_count_treats_missing_flag_as_unread(self, seeded):
        assert unread_count(seeded) == 2

    def test_mark_read(self, seeded):
        assert mark_read(seeded, "n1") is True
        assert seeded.get("notifications", "n1")["read"] is True
        assert unread_count(seeded) == 1

    def test_mark_read_twice_writes_nothing(self, seeded, listeners):
        events = []
        listeners.subscribe("notifications", lambda *args: events.append(args[1]))
        mark_read(seeded, "n1")
        assert events == ["n1"]
        assert mark_read(seeded, "n1") is False
        assert events == ["n1"]

    def test_mark_missing(self, seeded):
        with pytest.raises(NotFound):
            mark_read(seeded, "ghost")

    def test_mark_all_read(self, seeded):
        assert mark_all_read(seeded) == 2
        assert unread_count(seeded) == 0
        assert mark_all_read(seeded) == 0

    def test_recent_newest_first(self, seeded):
        items = recent_notifications(seeded, limit=2)
        assert [n.id for n in items] == ["n3", "n2"]
        assert items[0].read is False
