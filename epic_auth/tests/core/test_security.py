"""
Tests for the security module.

This module contains tests for the security-related functions in the core package.
"""
from unittest.mock import MagicMock, patch
import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from epic_auth.core.security import (
    VERIFIED_TIME_KEY,
    TokenData,
    create_access_token,
    create_login_token,
    create_unverified_login_token,
    decode_access_token,
    hash_password,
    require_recent_verification,
    verify_password,
)
from epic_auth.db_objects.verification import upsert_verification

pytest_plugins = ('pytest_asyncio',)

BASE_TIME = 1_700_000_400


@pytest.mark.parametrize("purpose, should_raise", [
    ("login", False),
    ("unverified-login", False),
    ("reset-password", True),
    ("unknown", True),
])
def test_token_data_validation(purpose, should_raise):
    """Test TokenData validation with various inputs."""
    data = {"purpose": purpose, "user_id": "123"}
    if should_raise:
        with pytest.raises((ValueError, ValidationError)):
            TokenData(**data)
    else:
        assert TokenData(**data)


@pytest.mark.parametrize("password, has_error", [
    ("password123", False),
    ("", False),
    ("p@$$w0rd!", False),
    ("pässwörd", False),
    ("special@char", True),
])
def test_hash_and_verify_password(password, has_error):
    """Test password hashing and verification with various inputs."""
    if has_error:
        with pytest.raises(HTTPException):
            with patch("bcrypt.hashpw", side_effect=UnicodeEncodeError(
                "utf-8", "string", 69, 420, "string"
            )):
                hash_password(password)
    else:
        hashed = hash_password(password)
        assert verify_password(password, hashed)


@pytest.mark.parametrize("password, wrong_password", [
    ("password123", "wrongpass"),
    ("", "nonempty"),
    ("special@char", "special@chars"),
])
def test_verify_password_fail(password, wrong_password):
    """Test password verification fails for incorrect passwords."""
    hashed = hash_password(password)
    assert not verify_password(wrong_password, hashed)


def test_verify_password_without_hash():
    """Test an account without password never matches."""
    assert not verify_password("password123", None)


def test_login_tokens():
    """Test the purposes of the login tokens."""
    token = create_login_token("user-42")
    assert token.token_type == "bearer"
    assert str(token).startswith("bearer ")
    assert decode_access_token(str(token)) == TokenData(purpose="login", user_id="user-42")
    unverified = decode_access_token(create_unverified_login_token("user-42"), strict=False)
    assert unverified.purpose == "unverified-login"


@pytest.mark.parametrize("token, strict", [
    ("not-a-token", False),
    ("not-a-token", True),
])
def test_decode_invalid_token(token, strict):
    """Test invalid tokens are rejected."""
    with pytest.raises(HTTPException) as exc_info:
        decode_access_token(token, strict=strict)
    assert exc_info.value.status_code == 401


def test_decode_token_wrong_key():
    """Test a token signed with another key is rejected."""
    token = create_access_token(TokenData(purpose="login", user_id="user-42"), key="another-key")
    with pytest.raises(HTTPException):
        decode_access_token(token.access_token, strict=False)


def test_decode_expired_token():
    """Test an expired token is rejected."""
    token = create_access_token(TokenData(purpose="login", user_id="user-42"), exp=-1)
    with pytest.raises(HTTPException) as exc_info:
        decode_access_token(token.access_token, strict=False)
    assert exc_info.value.detail == "Token expired"


def _request(session: dict):
    request = MagicMock()
    request.session = session
    return request


@pytest.mark.asyncio
async def test_require_recent_verification_without_two_factor(db):
    """Test users without 2FA are never asked for a code."""
    await require_recent_verification(_request({}), db, "user-42", now=BASE_TIME)


@pytest.mark.asyncio
@pytest.mark.parametrize("session, allowed", [
    ({}, False),
    ({VERIFIED_TIME_KEY: BASE_TIME - 60}, True),
    ({VERIFIED_TIME_KEY: BASE_TIME - 7200}, True),
    ({VERIFIED_TIME_KEY: BASE_TIME - 7201}, False),
])
async def test_require_recent_verification(db, session, allowed):
    """Test users with 2FA need a code entered within the last two hours."""
    await upsert_verification(db, "2fa", "user-42", {
        "secret": "JBSWY3DPEHPK3PXP",
        "algorithm": "SHA1",
        "period": 30,
        "digits": 6,
        "char_set": "0123456789",
        "expires_at": None,
    })
    if allowed:
        await require_recent_verification(_request(session), db, "user-42", now=BASE_TIME)
    else:
        with pytest.raises(HTTPException) as exc_info:
            await require_recent_verification(_request(session), db, "user-42", now=BASE_TIME)
        assert exc_info.value.status_code == 403
        assert exc_info.value.detail["verify_url"].endswith("/auth/login/2fa")
