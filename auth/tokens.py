"""
auth/tokens.py -- Session tokens and password hashing.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       the user id (sub), email, role, and expiry. Verification returns None on
       any failure -- bad signature, expired, malformed, missing claims, or an
       unknown role all look the same to the caller, so the response never
       tells an attacker which check failed.

  Passwords: bcrypt used directly. Every call to hash_password() draws a new
       salt; BCRYPT_ROUNDS sets the work factor. The _DUMMY_HASH constant
       enables timing equalization in authenticate_user() so response time does
       not reveal whether an email is registered [C1].

  SECRET_KEY: sourced from core.config.get_settings(). The Settings class
       refuses to start in production without one (see core/config.py).

Tokens are never stored server-side. Revocation happens through the live user
lookup in auth/dependencies.py, not through a deny-list.

Layer rule: no imports from api/ or audit/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from auth.models import Role, TokenClaims
from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("auditdesk.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    bcrypt only looks at the first 72 bytes. Registration and the CLI reject
    passwords longer than 72 bytes of UTF-8 so nothing is silently truncated.
    """
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed or empty stored hash
        return False


# Timing equalization dummy hash [C1]. Computed once at module load so the
# first login attempt is not measurably slower than later ones.
_DUMMY_HASH: str = hash_password("auditdesk_timing_dummy")


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(user_id: int, email: str, role: Role | str, expire_seconds: int = 0) -> str:
    """Encode a signed JWT with user identity and expiry.

    Args:
        user_id:        Numeric user ID, stored as the JWT subject.
        email:          Login email of the user.
        role:           User role at issue time.
        expire_seconds: Validity in seconds. If 0 (default), uses
                        Settings.token_expire_seconds (8 hours).
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    expire = datetime.now(timezone.utc) + timedelta(seconds=duration)
    payload = {
        "sub": str(user_id),
        "email": email,
        "role": Role(role).value,
        "exp": expire,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> TokenClaims | None:
    """Decode and verify a JWT. Returns the claims or None on any failure."""
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    try:
        return TokenClaims(
            user_id=int(payload["sub"]),
            email=str(payload["email"]),
            role=Role(payload["role"]),
            expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
        )
    except (KeyError, TypeError, ValueError):
        return None


def token_ttl_seconds() -> int:
    return _settings.token_expire_seconds


# ---------------------------------------------------------------------------
# User authentication (constant-time)
# ---------------------------------------------------------------------------


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Check an email/password pair with timing equalization.

    Always runs bcrypt whether or not the email exists:
    - Unknown email: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Returns the User when the password is correct, None otherwise. The account
    status is NOT checked here -- the login route reports inactive accounts
    separately, and only to callers who already proved the password.
    """
    user = store.get_by_email(email)
    if user is None or not user.password_hash:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user
