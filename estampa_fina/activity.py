from __future__ import annotations

import logging
from typing import Any

from .store import DocumentStore, utcnow_iso

logger = logging.getLogger(__name__)


def log_activity(store: DocumentStore, actor: Any, action: str, target: str = "", details: str = "") -> str:
    """Append an ``activityLogs`` entry for an administrative action."""
    entry = {
        "action": action,
        "actorId": getattr(actor, "id", ""),
        "actorName": getattr(actor, "name", ""),
        "target": target,
        "details": details,
        "timestamp": utcnow_iso(),
    }
    logger.info(f"{entry['actorName'] or entry['actorId']}: {action} {target}".strip())
    return store.add("activityLogs", entry)


def recent_activity(store: DocumentStore, limit: int = 20) -> list[dict]:
    return store.list("activityLogs", order_by="timestamp", descending=True, limit=limit)
