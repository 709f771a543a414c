from __future__ import annotations

from .schemas import Notification
from .store import DocumentStore, NotFound


def recent_notifications(store: DocumentStore, limit: int = 10) -> list[Notification]:
    docs = store.list("notifications", order_by="timestamp", descending=True, limit=limit)
    return [Notification.model_validate(d) for d in docs]


def unread_count(store: DocumentStore) -> int:
    return sum(1 for d in store.list("notifications") if not d.get("read", False))


def mark_read(store: DocumentStore, notification_id: str) -> bool:
    """Set ``read``. Returns False when it was already read (nothing written)."""
    doc = store.get("notifications", notification_id)
    if doc is None:
        raise NotFound("notifications", notification_id)
    if doc.get("read"):
        return False
    store.update("notifications", notification_id, {"read": True})
    return True


def mark_all_read(store: DocumentStore) -> int:
    changed = 0
    for d in store.list("notifications"):
        if d.get("read"):
            continue
        store.update("notifications", d["id"], {"read": True})
        changed += 1
    return changed
