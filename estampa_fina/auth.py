"""Authentication provider (accounts, sign-in, passwords) and the session user."""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .models import Credential
from .permissions import Role
from .schemas import UserRecord
from .security import MIN_PASSWORD_LENGTH, hash_password, verify_password
from .store import DocumentStore, ListenerHub, StoreError, Subscription

logger = logging.getLogger(__name__)

AUTH_CHANNEL = "auth"


class AuthError(Exception):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


@dataclass
class Principal:
    uid: str
    email: str
    display_name: str = ""
    photo_url: str = ""


@dataclass
class SessionUser:
    id: str
    name: str
    email: str
    role: str
    permissions: dict = field(default_factory=dict)
    active: bool = True
    photo_url: str = ""

    @property
    def is_customer(self) -> bool:
        return self.role == Role.CUSTOMER.value


auth_events = ListenerHub()


def _principal(c: Credential) -> Principal:
    return Principal(uid=c.uid, email=c.email, display_name=c.display_name or "", photo_url=c.photo_url or "")


class AuthProvider:
    def __init__(self, db: Session, events: ListenerHub | None = None):
        self.db = db
        self.events = events if events is not None else auth_events

    def _by_email(self, email: str) -> Optional[Credential]:
        return self.db.query(Credential).filter(func.lower(Credential.email) == email.strip().lower()).first()

    def _by_uid(self, uid: str) -> Optional[Credential]:
        return self.db.query(Credential).filter(Credential.uid == uid).first()

    def _save(self, op: str) -> None:
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise AuthError("Este email já está em uso.") from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Auth {op} failed: {e}")
            raise StoreError("Falha ao acessar contas.") from e

    def get(self, uid: str) -> Optional[Principal]:
        c = self._by_uid(uid)
        return _principal(c) if c else None

    def account_count(self) -> int:
        return self.db.query(func.count(Credential.id)).scalar() or 0

    def create_account(self, email: str, password: str, display_name: str = "", uid: str | None = None) -> Principal:
        email = (email or "").strip().lower()
        if not email or "@" not in email:
            raise AuthError("Email inválido.")
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise AuthError(f"A senha deve ter pelo menos {MIN_PASSWORD_LENGTH} caracteres.")
        if self._by_email(email):
            raise AuthError("Este email já está em uso.")
        c = Credential(
            uid=uid or uuid.uuid4().hex,
            email=email,
            password_hash=hash_password(password),
            display_name=(display_name or "").strip() or None,
        )
        self.db.add(c)
        self._save("create_account")
        logger.info(f"Account created for {email}")
        return _principal(c)

    def sign_in_with_password(self, email: str, password: str) -> Principal:
        c = self._by_email(email or "")
        if not c or not verify_password(password or "", c.password_hash):
            raise AuthError("Email ou senha inválidos.")
        principal = _principal(c)
        self.events.publish(AUTH_CHANNEL, principal.uid, {"event": "sign_in", "email": principal.email})
        return principal

    def sign_out(self, uid: str) -> None:
        self.events.publish(AUTH_CHANNEL, uid, None)

    def on_auth_state_changed(self, callback: Callable[[str, Optional[dict]], None]) -> Subscription:
        """``callback(uid, data)``; ``data`` is None on sign-out."""
        return self.events.subscribe(AUTH_CHANNEL, lambda _coll, uid, data: callback(uid, data))

    def change_password(self, uid: str, current_password: str, new_password: str) -> None:
        c = self._by_uid(uid)
        if not c:
            raise AuthError("Conta não encontrada.")
        # re-authentication
        if not verify_password(current_password or "", c.password_hash):
            raise AuthError("A senha atual está incorreta.")
        self.set_password(uid, new_password)

    def set_password(self, uid: str, new_password: str) -> None:
        if len(new_password or "") < MIN_PASSWORD_LENGTH:
            raise AuthError(f"A senha deve ter pelo menos {MIN_PASSWORD_LENGTH} caracteres.")
        c = self._by_uid(uid)
        if not c:
            raise AuthError("Conta não encontrada.")
        c.password_hash = hash_password(new_password)
        self._save("set_password")

    def update_profile(self, uid: str, display_name: str | None = None, photo_url: str | None = None) -> Principal:
        c = self._by_uid(uid)
        if not c:
            raise AuthError("Conta não encontrada.")
        if display_name is not None:
            c.display_name = display_name.strip() or None
        if photo_url is not None:
            c.photo_url = photo_url or None
        self._save("update_profile")
        return _principal(c)

    def delete_account(self, uid: str) -> None:
        c = self._by_uid(uid)
        if c:
            self.db.delete(c)
            self._save("delete_account")


def resolve_session_user(store: DocumentStore, principal: Principal) -> SessionUser:
    doc = store.get("users", principal.uid)
    if doc is None:
        # no application record: least privileged
        return SessionUser(
            id=principal.uid,
            name=principal.display_name or principal.email,
            email=principal.email,
            role=Role.CUSTOMER.value,
            permissions={},
            photo_url=principal.photo_url,
        )
    u = UserRecord.model_validate(doc)
    return SessionUser(
        id=principal.uid,
        name=u.name or principal.display_name or principal.email,
        email=u.email or principal.email,
        role=u.role,
        permissions=dict(u.permissions or {}),
        active=u.active,
        photo_url=u.photo_url or principal.photo_url,
    )
