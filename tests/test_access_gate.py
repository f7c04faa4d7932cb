"""Unit tests for auth/dependencies.py -- the bearer access gate.

The gate is exercised through its plain functions (authenticate_bearer,
authorize) against a real in-memory UserStore. The HTTP mapping of the
same failures is covered in test_api_routes.py.
"""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException
from jose import jwt

from auth.dependencies import (
    ASSESSORS,
    DIRECTORS,
    PLANNERS,
    RESPONDERS,
    authenticate_bearer,
    authorize,
    extract_bearer_token,
)
from auth.models import Principal, Role, UserStatus
from auth.tokens import create_access_token


def _bearer(user) -> str:
    return f"Bearer {create_access_token(user.id, user.email, user.role)}"


def _rejection(exc_info) -> tuple[int, dict]:
    exc: HTTPException = exc_info.value
    return exc.status_code, exc.detail


class TestExtractBearerToken:
    @pytest.mark.parametrize("header", [None, "", "Basic dXNlcjpwYXNz", "Bearer", "Bearer ", "Token abc"])
    def test_missing(self, header) -> None:
        assert extract_bearer_token(header) is None

    def test_scheme_is_case_insensitive(self) -> None:
        assert extract_bearer_token("bearer abc.def.ghi") == "abc.def.ghi"
        assert extract_bearer_token("Bearer   abc.def.ghi  ") == "abc.def.ghi"


class TestAuthenticateBearer:
    def test_no_header_is_missing_token(self, user_store) -> None:
        with pytest.raises(HTTPException) as exc_info:
            authenticate_bearer(None, user_store)
        status, detail = _rejection(exc_info)
        assert status == 401
        assert detail["code"] == "missing_token"
        assert exc_info.value.headers == {"WWW-Authenticate": "Bearer"}

    def test_other_scheme_is_missing_token(self, user_store) -> None:
        with pytest.raises(HTTPException) as exc_info:
            authenticate_bearer("Basic dXNlcjpwYXNz", user_store)
        assert _rejection(exc_info) == (401, {"code": "missing_token", "message": "Access token required."})

    def test_garbage_token_is_invalid_token(self, user_store) -> None:
        with pytest.raises(HTTPException) as exc_info:
            authenticate_bearer("Bearer not-a-jwt", user_store)
        status, detail = _rejection(exc_info)
        assert status == 403
        assert detail["code"] == "invalid_token"

    def test_wrong_signature_is_invalid_token(self, user_store, make_user) -> None:
        user = make_user("sig@audit.test", Role.auditor)
        forged = jwt.encode(
            {
                "sub": str(user.id),
                "email": user.email,
                "role": "auditor",
                "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
            },
            "an-attacker-controlled-key-of-sufficient-length",
            algorithm="HS256",
        )
        with pytest.raises(HTTPException) as exc_info:
            authenticate_bearer(f"Bearer {forged}", user_store)
        assert _rejection(exc_info)[1]["code"] == "invalid_token"

    def test_unknown_user_rejected(self, user_store) -> None:
        token = create_access_token(9999, "ghost@audit.test", Role.director)
        with pytest.raises(HTTPException) as exc_info:
            authenticate_bearer(f"Bearer {token}", user_store)
        status, detail = _rejection(exc_info)
        assert status == 401
        assert detail["code"] == "invalid_or_inactive_user"

    @pytest.mark.parametrize("status", [UserStatus.suspended, UserStatus.inactive])
    def test_unexpired_token_of_non_active_user_rejected(self, user_store, make_user, status) -> None:
        user = make_user("later@audit.test", Role.auditor)
        header = _bearer(user)
        assert authenticate_bearer(header, user_store).id == user.id

        user_store.update_status(user.id, status)

        with pytest.raises(HTTPException) as exc_info:
            authenticate_bearer(header, user_store)
        assert _rejection(exc_info)[1]["code"] == "invalid_or_inactive_user"

    def test_principal_reflects_live_record(self, user_store, make_user) -> None:
        """Role and names come from the database, not from the token."""
        user = make_user("live@audit.test", Role.director, first_name="Dana", last_name="Reyes")
        stale = create_access_token(user.id, user.email, Role.board)
        principal = authenticate_bearer(f"Bearer {stale}", user_store)
        assert principal == Principal(
            id=user.id, email="live@audit.test", role=Role.director, first_name="Dana", last_name="Reyes"
        )


class TestAuthorize:
    def _principal(self, role: Role) -> Principal:
        return Principal(id=1, email="p@audit.test", role=role, first_name="P", last_name="Q")

    def test_empty_role_set_admits_anyone(self) -> None:
        for role in Role:
            assert authorize(self._principal(role), ()).role is role

    def test_role_outside_set_is_insufficient_permissions(self) -> None:
        with pytest.raises(HTTPException) as exc_info:
            authorize(self._principal(Role.auditor), PLANNERS)
        status, detail = _rejection(exc_info)
        assert status == 403
        assert detail["code"] == "insufficient_permissions"
        assert detail["required_roles"] == ["director", "senior_auditor"]
        assert detail["user_role"] == "auditor"

    @pytest.mark.parametrize(
        "group, admitted",
        [
            (DIRECTORS, {Role.director}),
            (PLANNERS, {Role.director, Role.senior_auditor}),
            (ASSESSORS, {Role.director, Role.senior_auditor, Role.auditor}),
            (RESPONDERS, {Role.director, Role.senior_auditor, Role.auditor, Role.management}),
        ],
    )
    def test_role_groups(self, group, admitted) -> None:
        for role in Role:
            if role in admitted:
                authorize(self._principal(role), group)
            else:
                with pytest.raises(HTTPException):
                    authorize(self._principal(role), group)
