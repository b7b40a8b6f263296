"""Tests for bearer token verification and user resolution."""

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.features.users.auth import verify_jwt_token
from app.features.users.dependencies import get_authorization_header, get_user_from_token
from tests.factories import make_user


def _token(payload: dict, secret: str = None) -> str:
    return jwt.encode(payload, secret or config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def _credentials(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


class TestVerifyJwtToken:

    def test_valid(self) -> None:
        assert verify_jwt_token(_token({"sub": "u1"}))["sub"] == "u1"

    def test_expired(self) -> None:
        expired = datetime.now(timezone.utc) - timedelta(minutes=5)
        with pytest.raises(HTTPException) as exc_info:
            verify_jwt_token(_token({"sub": "u1", "exp": expired}))
        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Token has expired"

    def test_bad_signature(self) -> None:
        with pytest.raises(HTTPException) as exc_info:
            verify_jwt_token(_token({"sub": "u1"}, secret="someone-else"))
        assert exc_info.value.status_code == 401

    def test_missing_sub(self) -> None:
        with pytest.raises(HTTPException) as exc_info:
            verify_jwt_token(_token({"email": "u@example.com"}))
        assert exc_info.value.status_code == 401

    def test_not_configured(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(config, "JWT_SECRET", None)
        with pytest.raises(HTTPException) as exc_info:
            verify_jwt_token("anything")
        assert exc_info.value.detail == "Bearer authentication is not configured"


class TestGetUserFromToken:

    async def test_no_credentials(self, db: AsyncSession) -> None:
        assert await get_user_from_token(None, db) is None

    async def test_known_user(self, db: AsyncSession) -> None:
        user = await make_user(db, "u@example.com")

        resolved = await get_user_from_token(_credentials(_token({"sub": user.id})), db)

        assert resolved.id == user.id

    async def test_unknown_user(self, db: AsyncSession) -> None:
        with pytest.raises(HTTPException) as exc_info:
            await get_user_from_token(_credentials(_token({"sub": "ghost"})), db)
        assert exc_info.value.status_code == 401

    async def test_inactive_user(self, db: AsyncSession) -> None:
        user = await make_user(db, "u@example.com", is_active=False)

        with pytest.raises(HTTPException) as exc_info:
            await get_user_from_token(_credentials(_token({"sub": user.id})), db)

        assert exc_info.value.status_code == 403


def test_rate_limit_key() -> None:
    class _Request:
        def __init__(self, headers):
            self.headers = headers

    assert get_authorization_header(_Request({"Authorization": "Bearer abc"})) == "Bearer abc"
    assert get_authorization_header(_Request({})) == "anonymous"
