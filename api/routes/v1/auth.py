"""
api/routes/v1/auth.py -- Login, logout and director-only registration.

Routes:
  POST /api/v1/auth/login     -- email + password login; returns a bearer token
  POST /api/v1/auth/logout    -- stateless acknowledgement
  POST /api/v1/auth/register  -- create a user account (director only)

Security:
  [H2] POST /login is rate-limited per IP (LOGIN_RATE_LIMIT).
  [C1] authenticate_user() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on login responses.
  Wrong email and wrong password return the same "bad_credentials" error.
  "account_inactive" is only reported after the password was proven correct.
  POST /register checks for an existing email BEFORE hashing, so a duplicate
  costs no bcrypt round and writes nothing.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.limiter import LOGIN_RATE_LIMIT, limiter
from api.models import LoginRequest, LoginResponse, RegisterRequest, UserResponse
from auth.dependencies import DIRECTORS, require_roles
from auth.models import Principal, User
from auth.store import UserStore
from auth.tokens import authenticate_user, create_access_token, hash_password, token_ttl_seconds

logger = logging.getLogger("auditdesk.auth")

# Auth policy:
# - POST /api/v1/auth/login:     public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/logout:    public -- tokens are not stored server-side
# - POST /api/v1/auth/register:  requires director (require_roles(*DIRECTORS))
router = APIRouter()


def _no_store(status_code: int, content: dict, headers: dict | None = None) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=content, headers=headers)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@limiter.limit(LOGIN_RATE_LIMIT)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; return a signed access token.

    Uses authenticate_user() which includes timing equalization [C1]. Do NOT
    inline get_by_email() + verify_password() -- that re-introduces the
    timing attack.
    """
    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, body.email, body.password)
    if user is None:
        logger.info("Failed login for %s", body.email)
        return _no_store(
            401,
            {"error": {"code": "bad_credentials", "message": "Invalid email or password."}},
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not user.is_active:
        logger.info("Login refused for %s account %s", user.status.value, body.email)
        return _no_store(
            401,
            {"error": {"code": "account_inactive", "message": "This account is not active."}},
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_store.update_last_login(user.id)
    refreshed = user_store.get_by_id(user.id) or user
    token = create_access_token(user.id, user.email, user.role)
    logger.info("User %s logged in", user.id)
    return _no_store(
        200,
        LoginResponse(
            access_token=token,
            expires_in=token_ttl_seconds(),
            user=UserResponse.model_validate(refreshed),
        ).model_dump(mode="json"),
    )


@router.post("/auth/logout")
async def logout() -> JSONResponse:
    """Acknowledge logout. The client discards its token; nothing is revoked server-side."""
    return JSONResponse(content={"message": "Logged out."})


@router.post("/auth/register", response_model=UserResponse, status_code=201)
def register(
    request: Request,
    body: RegisterRequest,
    current_user: Principal = Depends(require_roles(*DIRECTORS)),
) -> UserResponse:
    """Create a user account. Director only.

    The email is checked first; a duplicate is a 409 with no password hashed.
    The IntegrityError branch covers a concurrent registration winning the
    race after that check.
    """
    user_store: UserStore = request.app.state.user_store
    conflict = HTTPException(
        status_code=409,
        detail={"code": "conflict", "message": "A user with that email already exists."},
    )
    if user_store.get_by_email(body.email) is not None:
        raise conflict

    new_user = User(
        email=body.email,
        first_name=body.first_name,
        last_name=body.last_name,
        role=body.role,
        password_hash=hash_password(body.password),
        phone=body.phone,
        department=body.department,
    )
    try:
        user_id = user_store.create_user(new_user)
    except IntegrityError as exc:
        raise conflict from exc

    logger.info("User %s registered by director %s (role=%s)", user_id, current_user.id, body.role.value)
    return UserResponse.model_validate(user_store.get_by_id(user_id))
