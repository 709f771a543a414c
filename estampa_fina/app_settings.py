from __future__ import annotations

import logging
from typing import Optional

from .schemas import AppSettings
from .store import DocumentStore, ListenerHub, Subscription, hub

logger = logging.getLogger(__name__)

SETTINGS_COLLECTION = "settings"
SETTINGS_ID = "main"

DEFAULT_SETTINGS = AppSettings(id=SETTINGS_ID)


def load_settings(store: DocumentStore) -> AppSettings:
    doc = store.get(SETTINGS_COLLECTION, SETTINGS_ID) or {}
    return AppSettings.model_validate({**DEFAULT_SETTINGS.to_doc(), **doc, "id": SETTINGS_ID})


def update_settings(store: DocumentStore, changes: dict) -> AppSettings:
    saved = store.set(SETTINGS_COLLECTION, SETTINGS_ID, changes, merge=True)
    return AppSettings.model_validate({**DEFAULT_SETTINGS.to_doc(), **saved})


class SettingsHolder:
    """
    Process-wide settings. Serves the defaults until ``load`` runs, then
    follows ``settings/main`` through a subscription until ``close``.
    """

    def __init__(self, listeners: ListenerHub | None = None):
        self.listeners = listeners if listeners is not None else hub
        self.current: AppSettings = DEFAULT_SETTINGS
        self.loaded = False
        self._subscription: Optional[Subscription] = None

    def load(self, store: DocumentStore) -> AppSettings:
        self.current = load_settings(store)
        self.loaded = True
        if self._subscription is None or not self._subscription.active:
            self._subscription = self.listeners.subscribe(SETTINGS_COLLECTION, self._on_change, doc_id=SETTINGS_ID)
        return self.current

    def _on_change(self, _collection: str, _doc_id: str, data: Optional[dict]) -> None:
        if data is None:
            self.current = DEFAULT_SETTINGS
        else:
            self.current = AppSettings.model_validate({**DEFAULT_SETTINGS.to_doc(), **data, "id": SETTINGS_ID})
        logger.info("Settings reloaded")

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
