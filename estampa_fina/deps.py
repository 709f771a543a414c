from __future__ import annotations

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from .app_settings import DEFAULT_SETTINGS
from .auth import AuthProvider, SessionUser, resolve_session_user
from .db import SessionLocal
from .permissions import can
from .schemas import AppSettings
from .security import read_session_token
from .store import DocumentStore

SESSION_COOKIE = "session"

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def get_store(db: Session = Depends(get_db)) -> DocumentStore:
    return DocumentStore(db)

def get_auth(db: Session = Depends(get_db)) -> AuthProvider:
    return AuthProvider(db)

def get_settings(request: Request) -> AppSettings:
    holder = getattr(request.app.state, "settings", None)
    return holder.current if holder is not None else DEFAULT_SETTINGS

def session_uid(request: Request):
    """uid from the signed session cookie; None when absent or tampered with."""
    return read_session_token(request.cookies.get(SESSION_COOKIE, ""))

def require_auth(
    request: Request,
    store: DocumentStore = Depends(get_store),
    auth: AuthProvider = Depends(get_auth),
) -> SessionUser:
    uid = session_uid(request)
    if not uid:
        raise HTTPException(status_code=401)

    principal = auth.get(uid)
    if not principal:
        raise HTTPException(status_code=401)

    user = resolve_session_user(store, principal)
    if not user.active:
        raise HTTPException(status_code=401)
    return user

def require_staff(user: SessionUser = Depends(require_auth)) -> SessionUser:
    if user.is_customer:
        raise HTTPException(status_code=403, detail="Área restrita à equipe.")
    return user

def require_capability(capability: str):
    """Dependency factory: 403 unless the session user holds ``capability``."""
    def _check(user: SessionUser = Depends(require_auth)) -> SessionUser:
        if not can(user, capability):
            raise HTTPException(status_code=403, detail="Sem permissão para aceder a esta página.")
        return user
    return _check
