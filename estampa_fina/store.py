"""
Document store client.

Collections of flat JSON documents kept in the ``documents`` table. Every
write commits on its own and is then pushed to in-process listeners
registered with :meth:`DocumentStore.on_snapshot`.
"""
from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .models import Document

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """A read or write against the document store failed."""


class NotFound(StoreError):
    def __init__(self, collection: str, doc_id: str):
        super().__init__(f"{collection}/{doc_id} não encontrado.")
        self.collection = collection
        self.doc_id = doc_id


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Datetime, ISO string or missing -> aware UTC datetime or None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _encode(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode(v) for v in value]
    return value


# =========================
# LISTENERS
# =========================
Listener = Callable[[str, str, Optional[dict]], None]


class Subscription:
    """Handle returned by a subscribe call. ``close()`` stops delivery."""

    def __init__(self, hub: "ListenerHub", key: int):
        self._hub = hub
        self._key = key
        self.active = True

    def close(self) -> None:
        if self.active:
            self._hub._remove(self._key)
            self.active = False

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class ListenerHub:
    def __init__(self):
        self._lock = threading.Lock()
        self._seq = 0
        self._listeners: dict[int, tuple[str, Optional[str], Listener]] = {}

    def subscribe(self, collection: str, callback: Listener, doc_id: Optional[str] = None) -> Subscription:
        with self._lock:
            self._seq += 1
            key = self._seq
            self._listeners[key] = (collection, doc_id, callback)
        return Subscription(self, key)

    def _remove(self, key: int) -> None:
        with self._lock:
            self._listeners.pop(key, None)

    def publish(self, collection: str, doc_id: str, data: Optional[dict]) -> None:
        with self._lock:
            targets = [
                cb for (coll, wanted, cb) in self._listeners.values()
                if coll == collection and (wanted is None or wanted == doc_id)
            ]
        for cb in targets:
            try:
                cb(collection, doc_id, data)
            except Exception:
                logger.exception(f"Listener failed for {collection}/{doc_id}")

    def __len__(self) -> int:
        return len(self._listeners)


hub = ListenerHub()


# =========================
# CLIENT
# =========================
class DocumentStore:
    def __init__(self, db: Session, listeners: ListenerHub | None = None):
        self.db = db
        self.listeners = listeners if listeners is not None else hub

    def _row(self, collection: str, doc_id: str) -> Optional[Document]:
        return (
            self.db.query(Document)
            .filter(Document.collection == collection, Document.doc_id == doc_id)
            .first()
        )

    def _fail(self, op: str, collection: str, exc: Exception) -> StoreError:
        self.db.rollback()
        logger.error(f"Store {op} failed on {collection}: {exc}")
        return StoreError(f"Falha ao acessar {collection}.")

    def _commit(self, op: str, collection: str, doc_id: str, data: Optional[dict]) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            raise self._fail(op, collection, e) from e
        self.listeners.publish(collection, doc_id, data)

    # ---------- reads ----------
    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        try:
            row = self._row(collection, doc_id)
        except SQLAlchemyError as e:
            raise self._fail("get", collection, e) from e
        if not row:
            return None
        return {"id": row.doc_id, **(row.data or {})}

    def exists(self, collection: str, doc_id: str) -> bool:
        return self.get(collection, doc_id) is not None

    def list(
        self,
        collection: str,
        where: dict | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict]:
        try:
            rows = (
                self.db.query(Document)
                .filter(Document.collection == collection)
                .order_by(Document.id.asc())
                .all()
            )
        except SQLAlchemyError as e:
            raise self._fail("list", collection, e) from e

        docs = [{"id": r.doc_id, **(r.data or {})} for r in rows]
        if where:
            docs = [d for d in docs if all(d.get(k) == v for k, v in where.items())]
        if order_by:
            # documents missing the field sort last
            present = [d for d in docs if d.get(order_by) not in (None, "")]
            missing = [d for d in docs if d.get(order_by) in (None, "")]
            present.sort(key=lambda d: d[order_by], reverse=descending)
            docs = present + missing
        if limit is not None:
            docs = docs[:limit]
        return docs

    def fetch_many(self, *collections: str) -> dict[str, list[dict]]:
        """Load several collections for one view. Any failure fails the whole call."""
        return {name: self.list(name) for name in collections}

    # ---------- writes ----------
    def add(self, collection: str, data: dict) -> str:
        doc_id = uuid.uuid4().hex
        self.set(collection, doc_id, data)
        return doc_id

    def set(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> dict:
        payload = _encode(dict(data))
        payload.pop("id", None)
        try:
            row = self._row(collection, doc_id)
            if row is None:
                row = Document(collection=collection, doc_id=doc_id, data=payload)
                self.db.add(row)
            elif merge:
                row.data = {**(row.data or {}), **payload}
            else:
                row.data = payload
            saved = dict(row.data)
        except SQLAlchemyError as e:
            raise self._fail("set", collection, e) from e
        self._commit("set", collection, doc_id, saved)
        return {"id": doc_id, **saved}

    def update(self, collection: str, doc_id: str, changes: dict) -> dict:
        try:
            row = self._row(collection, doc_id)
        except SQLAlchemyError as e:
            raise self._fail("update", collection, e) from e
        if row is None:
            raise NotFound(collection, doc_id)
        payload = _encode(dict(changes))
        payload.pop("id", None)
        row.data = {**(row.data or {}), **payload}
        saved = dict(row.data)
        self._commit("update", collection, doc_id, saved)
        return {"id": doc_id, **saved}

    def delete(self, collection: str, doc_id: str) -> bool:
        try:
            row = self._row(collection, doc_id)
            if row is None:
                return False
            self.db.delete(row)
        except SQLAlchemyError as e:
            raise self._fail("delete", collection, e) from e
        self._commit("delete", collection, doc_id, None)
        return True

    # ---------- realtime ----------
    def on_snapshot(self, collection: str, callback: Listener, doc_id: str | None = None) -> Subscription:
        return self.listeners.subscribe(collection, callback, doc_id=doc_id)
