from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from urllib.parse import quote

from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import RedirectResponse
from fastapi.staticfiles import StaticFiles

from .app_settings import DEFAULT_SETTINGS, SettingsHolder
from .auth import AuthProvider
from .db import SessionLocal, engine
from .migrations import ensure_schema, seed_defaults
from .permissions import PermissionDenied
from .routes import STATIC_DIR, router, templates
from .store import DocumentStore, StoreError

logger = logging.getLogger(__name__)

def configure_logging():
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "info").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

def _error_page(request: Request, message: str, status_code: int):
    holder = getattr(request.app.state, "settings", None)
    settings = holder.current if holder is not None else DEFAULT_SETTINGS
    return templates.TemplateResponse(
        request,
        "base.html",
        {"user": None, "settings": settings, "error": message, "title": "Erro"},
        status_code=status_code,
    )

def _startup(app: FastAPI):
    ensure_schema(engine)
    db = SessionLocal()
    try:
        seed_defaults(db)
        app.state.settings.load(DocumentStore(db))
        app.state.auth_subscription = AuthProvider(db).on_auth_state_changed(_log_auth_change)
    finally:
        db.close()

def _shutdown(app: FastAPI):
    app.state.settings.close()
    if app.state.auth_subscription is not None:
        app.state.auth_subscription.close()
        app.state.auth_subscription = None

@asynccontextmanager
async def lifespan(app: FastAPI):
    _startup(app)
    try:
        yield
    finally:
        _shutdown(app)

def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Estampa Fina", lifespan=lifespan)
    app.state.settings = SettingsHolder()
    app.state.auth_subscription = None

    # Static
    if not os.path.isdir(STATIC_DIR):
        os.makedirs(STATIC_DIR, exist_ok=True)
    app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")

    # Routes
    app.include_router(router)

    # health checks may use HEAD
    @app.head("/")
    async def _head_root():
        return {}

    @app.exception_handler(HTTPException)
    def http_exception_handler(request: Request, exc: HTTPException):
        if exc.status_code == 401:
            return RedirectResponse(url="/login", status_code=302)
        if exc.status_code == 403:
            return RedirectResponse(url=f"/dashboard?err={quote(str(exc.detail))}", status_code=302)
        return _error_page(request, exc.detail, exc.status_code)

    @app.exception_handler(PermissionDenied)
    def permission_denied_handler(request: Request, exc: PermissionDenied):
        back = "/users" if request.url.path.startswith("/users") else "/dashboard"
        return RedirectResponse(url=f"{back}?err={quote(exc.message)}", status_code=302)

    @app.exception_handler(StoreError)
    def store_error_handler(request: Request, exc: StoreError):
        return _error_page(request, str(exc), 503)

    return app

def _log_auth_change(uid: str, data):
    if data is None:
        logger.info(f"Signed out: {uid}")
    else:
        logger.info(f"Signed in: {data.get('email')} ({uid})")

app = create_app()
