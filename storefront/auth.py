import base64
import hmac
import json
import logging
import time
from hashlib import sha256
from typing import Optional

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import BadRequest, Conflict, Unauthorized
from .models import User, UserRole

logger = logging.getLogger(__name__)

COOKIE_NAME = "auth"
SESSION_TTL_SECONDS = 7 * 24 * 3600
INVALID_CREDENTIALS = "Invalid email or password"

_hasher = PasswordHasher()
# verified against for unknown emails so both login failures cost the same
_DUMMY_HASH = _hasher.hash("storefront-dummy-password")


# -----------------------------
# Passwords
# -----------------------------

def hash_password(password: str) -> str:
    return _hasher.hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    try:
        return _hasher.verify(password_hash, password)
    except (VerificationError, InvalidHashError):
        return False


# -----------------------------
# Session tokens
# -----------------------------

def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def _b64decode(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def sign_session_token(user_id: int, secret: str, ttl: int = SESSION_TTL_SECONDS, now: Optional[float] = None) -> str:
    issued = int(now if now is not None else time.time())
    payload = {"uid": user_id, "exp": issued + ttl}
    data = json.dumps(payload, separators=(",", ":")).encode()
    sig = hmac.new(secret.encode(), data, sha256).digest()
    return _b64encode(data) + "." + _b64encode(sig)


def verify_session_token(token: Optional[str], secret: str, now: Optional[float] = None) -> Optional[int]:
    """
    Return the user id bound to ``token``, or None if the token is
    missing, malformed, badly signed or expired.
    """
    if not token:
        return None
    try:
        data_b64, sig_b64 = token.split(".")
        data = _b64decode(data_b64)
        sig = _b64decode(sig_b64)
    except ValueError:
        return None

    expected = hmac.new(secret.encode(), data, sha256).digest()
    if not hmac.compare_digest(sig, expected):
        return None

    try:
        payload = json.loads(data.decode())
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None

    exp = payload.get("exp")
    uid = payload.get("uid")
    if not isinstance(exp, int) or not isinstance(uid, int):
        return None
    if (now if now is not None else time.time()) >= exp:
        return None
    return uid


# -----------------------------
# Accounts
# -----------------------------

def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def find_user_by_email(session: Session, email: str) -> Optional[User]:
    return session.execute(select(User).where(User.email == normalize_email(email))).scalar_one_or_none()


def register_user(session: Session, email: Optional[str], password: Optional[str]) -> User:
    email = normalize_email(email)
    if not email or not password:
        raise BadRequest("Email and password required")
    if find_user_by_email(session, email) is not None:
        raise Conflict("Email already in use")

    user = User(email=email, password_hash=hash_password(password), role=UserRole.USER)
    session.add(user)
    try:
        session.flush()
    except IntegrityError as e:
        # lost a race with a concurrent registration
        session.rollback()
        raise Conflict("Email already in use") from e
    session.refresh(user)
    logger.info("registered user %s", user.id)
    return user


def authenticate(session: Session, email: Optional[str], password: Optional[str]) -> User:
    user = find_user_by_email(session, email) if email else None
    if user is None:
        verify_password(_DUMMY_HASH, password or "")
        raise Unauthorized(INVALID_CREDENTIALS)
    if not verify_password(user.password_hash, password or ""):
        raise Unauthorized(INVALID_CREDENTIALS)
    return user


def resolve_user(session: Session, token: Optional[str], secret: str) -> Optional[User]:
    uid = verify_session_token(token, secret)
    if uid is None:
        return None
    return session.get(User, uid)
