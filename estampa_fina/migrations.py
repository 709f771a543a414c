from __future__ import annotations

import logging
import os

from sqlalchemy.orm import Session

from .app_settings import DEFAULT_SETTINGS, SETTINGS_COLLECTION, SETTINGS_ID
from .auth import AuthProvider
from .models import Base
from .permissions import Role, permissions_for_role
from .store import DocumentStore, utcnow_iso

logger = logging.getLogger(__name__)

def ensure_schema(engine):
    """Create tables for new databases."""
    Base.metadata.create_all(bind=engine)

def seed_defaults(db: Session):
    """Settings document and the first administrator."""
    store = DocumentStore(db)
    if not store.exists(SETTINGS_COLLECTION, SETTINGS_ID):
        store.set(SETTINGS_COLLECTION, SETTINGS_ID, DEFAULT_SETTINGS.to_doc())

    auth = AuthProvider(db)
    if auth.account_count() > 0:
        return

    email = os.getenv("ADMIN_EMAIL", "admin@estampafina.com").strip()
    password = os.getenv("ADMIN_PASSWORD", "").strip()
    if not password:
        logger.warning("No accounts and ADMIN_PASSWORD not set; skipping administrator bootstrap")
        return

    principal = auth.create_account(email, password, display_name="Administrador")
    store.set("users", principal.uid, {
        "name": "Administrador",
        "email": principal.email,
        "role": Role.ADMINISTRATOR.value,
        "permissions": permissions_for_role(Role.ADMINISTRATOR),
        "active": True,
        "createdAt": utcnow_iso(),
    })
    logger.info(f"Bootstrap administrator created: {principal.email}")
