"""Tests for the authentication routes."""
from unittest.mock import AsyncMock, patch
import pytest
from fastapi import status
from fastapi.exceptions import HTTPException

from epic_auth.core.otp import derive_code
from epic_auth.core.security import TokenData, create_access_token
from epic_auth.core.verification import request_verification, submit_verification
from epic_auth.db_objects.verification import get_verification

pytest_plugins = ('pytest_asyncio',)


def _sent_code(sent_emails) -> str:
    return sent_emails.call_args.kwargs["otp_code"]


async def _enable_two_factor(db, user):
    prepared = await request_verification(db, "2fa-verify", user.id)
    await submit_verification(db, "2fa-verify", user.id, prepared.otp)
    return prepared.record


def _current_code(record) -> str:
    return derive_code(record.secret, record.algorithm, record.period, record.digits)


async def _login(client, user):
    return await client.post("/api/auth/login", data={
        "username": user.username,
        "password": "kodylovesyou",
    })


# ----- Registration ----- #


@pytest.mark.asyncio
async def test_register_and_verify_email(client, db, sent_emails):
    """Test the onboarding code marks the email as verified, once."""
    response = await client.post("/api/auth/register", json={
        "username": "Hannah",
        "email": "Hannah@Example.com",
        "password": "hannahlovesyou",
    })
    assert response.status_code == status.HTTP_201_CREATED
    assert response.json()["username"] == "hannah"
    assert response.json()["email_verified"] is False
    assert sent_emails.call_args.kwargs["recipient"] == "hannah@example.com"
    assert sent_emails.call_args.kwargs["verification_type"] == "onboarding"

    form = {"type": "onboarding", "target": "hannah@example.com", "code": _sent_code(sent_emails)}
    response = await client.post("/api/auth/verify", json=form)
    assert response.status_code == status.HTTP_200_OK

    response = await client.post("/api/auth/login", data={"username": "hannah", "password": "hannahlovesyou"})
    token = response.json()["access_token"]
    response = await client.post("/api/auth/onboarding/resend", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == status.HTTP_400_BAD_REQUEST

    response = await client.post("/api/auth/verify", json=form)
    assert response.status_code == status.HTTP_404_NOT_FOUND


@pytest.mark.asyncio
async def test_verify_link(client, sent_emails):
    """Test the link of the email verifies the code."""
    await client.post("/api/auth/register", json={
        "username": "hannah",
        "email": "hannah@example.com",
        "password": "hannahlovesyou",
    })
    response = await client.get("/api/auth/verify", params={
        "type": "onboarding",
        "target": "hannah@example.com",
        "code": _sent_code(sent_emails),
    })
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["message"] == "Your email has been verified."


@pytest.mark.asyncio
async def test_register_delivery_failed(client, db):
    """Test a failed email is reported and the code can be requested again."""
    with patch("epic_auth.api.routes.auth.send_verification_email",
               new_callable=AsyncMock, side_effect=HTTPException(status_code=502, detail="SMTP down")):
        response = await client.post("/api/auth/register", json={
            "username": "hannah",
            "email": "hannah@example.com",
            "password": "hannahlovesyou",
        })
    assert response.status_code == status.HTTP_502_BAD_GATEWAY
    assert await get_verification(db, "onboarding", "hannah@example.com") is not None


@pytest.mark.asyncio
async def test_resend_onboarding(client, db, user, auth_headers, sent_emails):
    """Test a new onboarding code replaces the previous one."""
    user.email_verified = False
    await db.commit()
    response = await client.post("/api/auth/onboarding/resend", headers=auth_headers)
    assert response.status_code == status.HTTP_202_ACCEPTED
    assert sent_emails.call_args.kwargs["recipient"] == user.email
    assert await get_verification(db, "onboarding", user.email) is not None


@pytest.mark.asyncio
async def test_verify_wrong_code(client, sent_emails):
    """Test a wrong code can be retried."""
    await client.post("/api/auth/register", json={
        "username": "hannah",
        "email": "hannah@example.com",
        "password": "hannahlovesyou",
    })
    code = _sent_code(sent_emails)
    wrong = "000000" if code != "000000" else "111111"
    form = {"type": "onboarding", "target": "hannah@example.com"}
    response = await client.post("/api/auth/verify", json={**form, "code": wrong})
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["detail"] == "Invalid code"
    response = await client.post("/api/auth/verify", json={**form, "code": code})
    assert response.status_code == status.HTTP_200_OK


@pytest.mark.asyncio
@pytest.mark.parametrize("form, expected_status", [
    ({"type": "2fa-verify", "target": "user-42", "code": "123456"}, status.HTTP_400_BAD_REQUEST),
    ({"type": "unknown", "target": "user-42", "code": "123456"}, status.HTTP_422_UNPROCESSABLE_ENTITY),
    ({"type": "onboarding", "target": "user-42", "code": "123"}, status.HTTP_422_UNPROCESSABLE_ENTITY),
    ({"type": "onboarding", "target": "nobody@example.com", "code": "123456"}, status.HTTP_404_NOT_FOUND),
])
async def test_verify_invalid_forms(client, form, expected_status):
    """Test the forms that cannot be verified."""
    response = await client.post("/api/auth/verify", json=form)
    assert response.status_code == expected_status


# ----- Login ----- #


@pytest.mark.asyncio
async def test_login(client, user):
    """Test a login without 2FA returns the access token."""
    response = await _login(client, user)
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["token_type"] == "bearer"
    assert response.json()["two_factor_required"] is False


@pytest.mark.asyncio
async def test_login_wrong_password(client, user):
    """Test a wrong password is rejected."""
    response = await client.post("/api/auth/login", data={"username": user.email, "password": "wrong"})
    assert response.status_code == status.HTTP_401_UNAUTHORIZED


@pytest.mark.asyncio
async def test_login_two_factor(client, db, user):
    """Test a login with 2FA needs a code, and the pending login completes once."""
    record = await _enable_two_factor(db, user)
    response = await _login(client, user)
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["access_token"] is None
    assert response.json()["two_factor_required"] is True

    code = _current_code(record)
    wrong = "000000" if code != "000000" else "111111"
    response = await client.post("/api/auth/login/2fa", json={"code": wrong})
    assert response.status_code == status.HTTP_400_BAD_REQUEST

    response = await client.post("/api/auth/login/2fa", json={"code": code})
    assert response.status_code == status.HTTP_200_OK
    token = response.json()["access_token"]
    assert token

    response = await client.post("/api/auth/login/2fa", json={"code": code})
    assert response.status_code == status.HTTP_404_NOT_FOUND
    # The 2FA stays enabled
    assert await get_verification(db, "2fa", user.id) is not None

    response = await client.get("/api/settings/two-factor", headers={"Authorization": f"Bearer {token}"})
    assert response.json() == {"is_two_factor_enabled": True}


@pytest.mark.asyncio
async def test_login_two_factor_link(client, db, user):
    """Test the pending login can be completed from the generic verify route."""
    record = await _enable_two_factor(db, user)
    await _login(client, user)
    response = await client.post("/api/auth/verify", json={
        "type": "2fa", "target": "someone-else", "code": _current_code(record)})
    assert response.status_code == status.HTTP_404_NOT_FOUND
    response = await client.post("/api/auth/verify", json={
        "type": "2fa", "target": user.id, "code": _current_code(record)})
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["access_token"]


@pytest.mark.asyncio
async def test_login_two_factor_expired_pending_login(client, db, user):
    """Test an expired pending login must be restarted."""
    record = await _enable_two_factor(db, user)
    expired = create_access_token(TokenData(purpose="unverified-login", user_id=user.id), exp=-1).access_token
    with patch("epic_auth.api.routes.auth.create_unverified_login_token", return_value=expired):
        response = await _login(client, user)
    assert response.json()["two_factor_required"] is True

    response = await client.post("/api/auth/login/2fa", json={"code": _current_code(record)})
    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.json()["detail"] == "Your login has expired, please log in again"
    response = await client.post("/api/auth/login/2fa", json={"code": _current_code(record)})
    assert response.json()["detail"] == "No pending login, please log in again"


@pytest.mark.asyncio
async def test_login_two_factor_without_pending_login(client):
    """Test a code without a pending login."""
    response = await client.post("/api/auth/login/2fa", json={"code": "123456"})
    assert response.status_code == status.HTTP_404_NOT_FOUND


@pytest.mark.asyncio
async def test_logout(client, db, user):
    """Test the logout drops the pending login."""
    record = await _enable_two_factor(db, user)
    await _login(client, user)
    response = await client.post("/api/auth/logout")
    assert response.status_code == status.HTTP_200_OK
    response = await client.post("/api/auth/login/2fa", json={"code": _current_code(record)})
    assert response.status_code == status.HTTP_404_NOT_FOUND


# ----- Password Reset ----- #


@pytest.mark.asyncio
async def test_forgot_password_unknown_user(client, sent_emails):
    """Test the response does not reveal unknown accounts."""
    response = await client.post("/api/auth/forgot-password", json={"username_or_email": "nobody"})
    assert response.status_code == status.HTTP_202_ACCEPTED
    sent_emails.assert_not_awaited()


@pytest.mark.asyncio
async def test_reset_password(client, user, sent_emails):
    """Test the password can be changed once the reset code is verified."""
    response = await client.post("/api/auth/reset-password", json={
        "password": "newpassword", "confirm_password": "newpassword"})
    assert response.status_code == status.HTTP_401_UNAUTHORIZED

    response = await client.post("/api/auth/forgot-password", json={"username_or_email": user.email})
    assert response.status_code == status.HTTP_202_ACCEPTED
    assert sent_emails.call_args.kwargs["recipient"] == user.email

    response = await client.post("/api/auth/verify", json={
        "type": "reset-password", "target": user.username, "code": _sent_code(sent_emails)})
    assert response.status_code == status.HTTP_200_OK

    response = await client.post("/api/auth/reset-password", json={
        "password": "newpassword", "confirm_password": "mismatch"})
    assert response.status_code == status.HTTP_400_BAD_REQUEST

    response = await client.post("/api/auth/reset-password", json={
        "password": "newpassword", "confirm_password": "newpassword"})
    assert response.status_code == status.HTTP_200_OK

    response = await client.post("/api/auth/login", data={"username": user.username, "password": "newpassword"})
    assert response.status_code == status.HTTP_200_OK
    response = await client.post("/api/auth/reset-password", json={
        "password": "another", "confirm_password": "another"})
    assert response.status_code == status.HTTP_401_UNAUTHORIZED
