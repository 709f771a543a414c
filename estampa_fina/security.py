from __future__ import annotations

import logging
import os
import secrets
from typing import Optional

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from passlib.context import CryptContext

logger = logging.getLogger(__name__)

# pbkdf2_sha256 is implemented by passlib itself; no native bcrypt backend needed
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

MIN_PASSWORD_LENGTH = 6

SESSION_SALT = "estampa-fina-session"
SESSION_MAX_AGE = int(os.getenv("SESSION_MAX_AGE", str(7 * 24 * 3600)))

SECRET_KEY = os.getenv("SECRET_KEY", "").strip()
if not SECRET_KEY:
    # sessions will not survive a restart or be shared between workers
    logger.warning("SECRET_KEY not set; using a random per-process key")
    SECRET_KEY = secrets.token_urlsafe(32)

def hash_password(pw: str) -> str:
    return pwd_context.hash(pw)

def verify_password(pw: str, pw_hash: str) -> bool:
    if not pw_hash:
        return False
    try:
        return pwd_context.verify(pw, pw_hash)
    except ValueError:
        # unknown/corrupt hash format
        return False

def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(SECRET_KEY)

def build_session_token(uid: str) -> str:
    return _serializer().dumps(uid, salt=SESSION_SALT)

def read_session_token(token: str, max_age: int = SESSION_MAX_AGE) -> Optional[str]:
    """The uid inside a signed session cookie, or None if forged or expired."""
    if not token:
        return None
    try:
        uid = _serializer().loads(token, salt=SESSION_SALT, max_age=max_age)
    except SignatureExpired:
        logger.info("Expired session cookie")
        return None
    except BadSignature:
        logger.warning("Rejected session cookie with a bad signature")
        return None
    return uid if isinstance(uid, str) else None
