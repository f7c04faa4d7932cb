"""
auth/dependencies.py -- The access gate: bearer authentication + role checks.

Every protected operation passes through the same pipeline:

  1. Extract the bearer token from the Authorization header.
       absent / wrong scheme / empty        -> 401 missing_token
  2. Verify signature and expiry (auth/tokens.py).
       any failure                          -> 403 invalid_token
  3. Re-fetch the user from the UserStore by the token's user id.
       no such user, or status != active    -> 401 invalid_or_inactive_user
  4. Check the live role against the required role set (if any).
       role not in set                      -> 403 insufficient_permissions
  5. Hand a Principal to the route handler.

Step 3 runs on every request. There is no token deny-list, so this lookup is
what makes a suspension or deactivation take effect before the token expires.
Nothing here writes to the database and nothing is cached across requests.

authenticate_bearer() and authorize() are plain functions (usable from tests
and non-FastAPI callers). get_current_user() and require_roles() wrap them as
FastAPI dependencies.

Layer rule: no imports from api/ or audit/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable

from fastapi import HTTPException, Request

from auth.models import Principal, Role
from auth.store import UserStore
from auth.tokens import decode_access_token

# ---------------------------------------------------------------------------
# Role groups used by route policies
# ---------------------------------------------------------------------------

DIRECTORS: frozenset[Role] = frozenset({Role.director})
PLANNERS: frozenset[Role] = frozenset({Role.director, Role.senior_auditor})
ASSESSORS: frozenset[Role] = frozenset({Role.director, Role.senior_auditor, Role.auditor})
RESPONDERS: frozenset[Role] = frozenset({Role.director, Role.senior_auditor, Role.auditor, Role.management})

_BEARER_PREFIX = "bearer "


def _reject(status_code: int, code: str, message: str, **extra) -> HTTPException:
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return HTTPException(
        status_code=status_code,
        detail={"code": code, "message": message, **extra},
        headers=headers,
    )


def extract_bearer_token(authorization: str | None) -> str | None:
    """Return the token from an 'Authorization: Bearer <token>' value, or None."""
    if not authorization or not authorization.lower().startswith(_BEARER_PREFIX):
        return None
    token = authorization[len(_BEARER_PREFIX) :].strip()
    return token or None


def authenticate_bearer(authorization: str | None, user_store: UserStore) -> Principal:
    """Run steps 1-3 of the gate. Raises HTTPException on any failure."""
    token = extract_bearer_token(authorization)
    if token is None:
        raise _reject(401, "missing_token", "Access token required.")

    claims = decode_access_token(token)
    if claims is None:
        raise _reject(403, "invalid_token", "Invalid or expired token.")

    user = user_store.get_by_id(claims.user_id)
    if user is None or not user.is_active:
        raise _reject(401, "invalid_or_inactive_user", "Invalid or inactive user.")

    return Principal.from_user(user)


def authorize(principal: Principal, required_roles: Iterable[Role]) -> Principal:
    """Run step 4 of the gate. An empty role set admits any authenticated user."""
    allowed = frozenset(Role(r) for r in required_roles)
    if allowed and principal.role not in allowed:
        raise _reject(
            403,
            "insufficient_permissions",
            "Insufficient permissions for this resource.",
            required_roles=sorted(r.value for r in allowed),
            user_role=principal.role.value,
        )
    return principal


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------


def get_current_user(request: Request) -> Principal:
    """Require authentication; any role is accepted.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: Principal = Depends(get_current_user)): ...
    """
    user_store: UserStore = request.app.state.user_store
    return authenticate_bearer(request.headers.get("Authorization"), user_store)


def require_roles(*roles: Role) -> Callable[[Request], Principal]:
    """Build a dependency that requires authentication and one of roles.

    Use as a FastAPI dependency:
        @router.post("/plans")
        def route(user: Principal = Depends(require_roles(*PLANNERS))): ...
    """
    required = frozenset(roles)

    def dependency(request: Request) -> Principal:
        return authorize(get_current_user(request), required)

    return dependency
