"""Unit tests for authentication functions."""
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from fastapi import HTTPException
from jose import jwt

from common.auth import (
    authenticate_user,
    create_access_token,
    decode_token,
    get_password_hash,
    verify_password,
)
from common.config import get_settings
from common.models import RoleEnum, User

settings = get_settings()


def _db_returning(user):
    db = MagicMock()
    db.scalars.return_value.first.return_value = user
    return db


class TestPasswordHashing:
    """Test password hashing and verification."""

    def test_password_hash_and_verify(self):
        """Test that password can be hashed and verified."""
        password = "MySecurePassword123!"
        hashed = get_password_hash(password)

        assert hashed != password
        assert verify_password(password, hashed) is True
        assert verify_password("WrongPassword", hashed) is False

    def test_same_password_different_hashes(self):
        """Test that the same password generates different hashes (salt)."""
        hash1 = get_password_hash("TestPassword123")
        hash2 = get_password_hash("TestPassword123")

        assert hash1 != hash2
        assert verify_password("TestPassword123", hash1) is True


class TestJWTTokens:
    """Test JWT token creation and decoding."""

    def test_create_access_token(self):
        token = create_access_token({"sub": "driver@example.com", "role": "admin"})

        decoded = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        assert decoded["sub"] == "driver@example.com"
        assert decoded["role"] == "admin"
        assert "exp" in decoded

    def test_create_token_with_custom_expiry(self):
        token = create_access_token({"sub": "driver@example.com"}, timedelta(minutes=30))

        decoded = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        assert decoded["exp"] > datetime.now(timezone.utc).timestamp()

    def test_decode_token_invalid(self):
        with pytest.raises(HTTPException) as exc_info:
            decode_token("invalid.token.here")

        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Invalid token"

    def test_decode_token_expired(self):
        """Test decoding an expired token raises exception."""
        token = create_access_token({"sub": "driver@example.com"}, timedelta(hours=-1))

        with pytest.raises(HTTPException) as exc_info:
            decode_token(token)

        assert exc_info.value.status_code == 401


class TestUserAuthentication:
    """Test user authentication logic."""

    def _user(self, password: str) -> User:
        return User(
            id="user-1",
            name="Test User",
            email="test@example.com",
            role=RoleEnum.USER,
            hashed_password=get_password_hash(password),
        )

    def test_authenticate_user_success(self):
        db = _db_returning(self._user("TestPass123"))

        result = authenticate_user(db, "Test@Example.com", "TestPass123")

        assert result is not None
        assert result.email == "test@example.com"

    def test_authenticate_user_wrong_password(self):
        db = _db_returning(self._user("CorrectPassword"))

        assert authenticate_user(db, "test@example.com", "WrongPassword") is None

    def test_authenticate_user_not_found(self):
        db = _db_returning(None)

        assert authenticate_user(db, "nobody@example.com", "anypassword") is None
