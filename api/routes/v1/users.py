"""
api/routes/v1/users.py -- User directory, self-service profile, account status.

Routes:
  GET /api/v1/users              -- list all users, by last name (director only)
  GET /api/v1/users/profile      -- the caller's own record
  PUT /api/v1/users/profile      -- update the caller's own profile fields
  PUT /api/v1/users/{id}/status  -- activate / deactivate / suspend (director only)

Role is never writable here. A user's role is fixed at registration.

Security:
  [M4] PUT /users/{id}/status blocks changing your own status and
       deactivating the last active director.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import ProfileUpdate, UserResponse, UserStatusUpdate
from auth.dependencies import DIRECTORS, get_current_user, require_roles
from auth.models import Principal, Role, UserStatus
from auth.store import UserStore

logger = logging.getLogger("auditdesk.auth")

# Auth policy:
# - GET /api/v1/users:              requires director
# - GET /api/v1/users/profile:      requires auth (any role)
# - PUT /api/v1/users/profile:      requires auth (any role), own record only
# - PUT /api/v1/users/{id}/status:  requires director
router = APIRouter()


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "not_found", "message": "User not found."})


@router.get("/users", response_model=list[UserResponse])
def list_users(
    request: Request,
    current_user: Principal = Depends(require_roles(*DIRECTORS)),
) -> list[UserResponse]:
    user_store: UserStore = request.app.state.user_store
    return [UserResponse.model_validate(u) for u in user_store.list_users()]


@router.get("/users/profile", response_model=UserResponse)
def get_profile(
    request: Request,
    current_user: Principal = Depends(get_current_user),
) -> UserResponse:
    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_id(current_user.id)
    if user is None:
        raise _not_found()
    return UserResponse.model_validate(user)


@router.put("/users/profile", response_model=UserResponse)
def update_profile(
    request: Request,
    body: ProfileUpdate,
    current_user: Principal = Depends(get_current_user),
) -> UserResponse:
    """Update the caller's own profile. Only fields present in the body change."""
    user_store: UserStore = request.app.state.user_store
    updates = body.model_dump(exclude_unset=True)
    if not updates:
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "No fields to update."},
        )
    user_store.update_profile(current_user.id, **updates)
    return UserResponse.model_validate(user_store.get_by_id(current_user.id))


@router.put("/users/{user_id}/status", response_model=UserResponse)
def update_status(
    request: Request,
    user_id: int,
    body: UserStatusUpdate,
    current_user: Principal = Depends(require_roles(*DIRECTORS)),
) -> UserResponse:
    """Set a user's account status. Director only.

    The change applies on the target's next request: the access gate reads
    status live, so an outstanding token stops working immediately.
    """
    user_store: UserStore = request.app.state.user_store
    target = user_store.get_by_id(user_id)
    if target is None:
        raise _not_found()

    # [M4] Block changing your own status
    if target.id == current_user.id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_status_change", "message": "You cannot change your own account status."},
        )
    # [M4] Block deactivating the last active director
    if (
        target.role is Role.director
        and target.is_active
        and body.status is not UserStatus.active
        and user_store.count_active(Role.director) <= 1
    ):
        raise HTTPException(
            status_code=400,
            detail={"code": "last_director", "message": "Cannot deactivate the last active director."},
        )

    user_store.update_status(user_id, body.status)
    logger.info("User %s status set to %s by director %s", user_id, body.status.value, current_user.id)
    return UserResponse.model_validate(user_store.get_by_id(user_id))
