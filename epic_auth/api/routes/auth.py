"""
Authentication logic for the API.

This module contains the routes for registering, logging in and out (with the
second step of a login when the 2FA is enabled), the generic verification
route reached from the links of the verification emails, and the password
reset flow.
"""
from typing import Awaitable, Callable
from fastapi import APIRouter, Query, Request
from fastapi.exceptions import HTTPException
from fastapi.params import Depends
from fastapi.responses import JSONResponse, Response
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession

from epic_auth.core.config import settings, logger
from epic_auth.core.db import get_async_db
from epic_auth.core.email import send_verification_email
from epic_auth.core.exceptions import NotFound
from epic_auth.core.security import (
    RESET_PASSWORD_KEY, UNVERIFIED_SESSION_KEY, VERIFIED_TIME_KEY,
    create_login_token, create_unverified_login_token, decode_access_token
)
from epic_auth.core.utils import generate_timestamp
from epic_auth.core.verification import (
    TWO_FA_TYPE, PreparedVerification, VerificationType,
    is_two_factor_enabled, request_verification, submit_verification
)
from epic_auth.db_objects.db_models import User as User_DB
from epic_auth.db_objects.user import (
    authenticate_user, create_user, get_current_user, get_user,
    get_user_by_email, get_user_by_username, get_user_by_username_or_email, update_user
)
from epic_auth.api.routes.change_email import handle_change_email_verification
from epic_auth.templates.schemas.user import LoginResponse, UserCreate, UserRead
from epic_auth.templates.schemas.verification import (
    CodeForm, ForgotPasswordForm, ResetPasswordForm, VerifyForm
)


router = APIRouter()

_optional_oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl=f"{settings.API_STR}/auth/login",
    auto_error=False
)


def _email_delivery(recipient: str, request: Request) -> Callable[[PreparedVerification], Awaitable[bool]]:
    async def _deliver(prepared: PreparedVerification) -> bool:
        return await send_verification_email(
            recipient=recipient,
            otp_code=prepared.otp,
            verify_url=prepared.verify_url,
            verification_type=prepared.record.type,
            expires_in=prepared.record.period,
            request=request
        )
    return _deliver


# ----- Registration ----- #


@router.post("/register", response_model=UserRead, status_code=201)
async def register(
    request: Request,
    user: UserCreate,
    db: AsyncSession = Depends(get_async_db),
):
    """
    Register a new user and send the onboarding code to their email.

    Returns
    -------
    UserRead
        The created user, whose email is not verified yet.
    """
    db_user = await create_user(db, user)
    await request_verification(
        db, "onboarding", db_user.email,
        deliver=_email_delivery(db_user.email, request)
    )
    return db_user


@router.post("/onboarding/resend", response_class=Response, status_code=202)
async def resend_onboarding(
    request: Request,
    current_user: User_DB = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Send a new onboarding code, the previous one stops working."""
    if current_user.email_verified:
        raise HTTPException(status_code=400, detail="Email already verified")
    await request_verification(
        db, "onboarding", current_user.email,
        deliver=_email_delivery(current_user.email, request)
    )
    return Response(status_code=202)


# ----- Login ----- #


@router.post("/login", response_model=LoginResponse)
async def login(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_async_db)
):
    """
    Login a user.

    Without 2FA, the access token is returned. With 2FA, no token is returned:
    a short-lived unverified login is stored in the cookie session and the code
    of the authenticator app must be posted to `/auth/login/2fa`.
    """
    user = await authenticate_user(db, form_data.username, form_data.password)
    request.session.pop(UNVERIFIED_SESSION_KEY, None)
    if await is_two_factor_enabled(db, user.id):
        request.session[UNVERIFIED_SESSION_KEY] = create_unverified_login_token(user.id)
        logger.debug(f"2FA required for {user.username}")
        return LoginResponse(
            two_factor_required=True,
            verify_url=f"{settings.API_STR}/auth/login/2fa"
        )
    token = create_login_token(user.id)
    return LoginResponse(access_token=token.access_token, token_type=token.token_type)


async def _handle_two_factor_verification(
    request: Request,
    db: AsyncSession,
    code: str,
    token: str | None,
    target: str | None = None
) -> LoginResponse:
    """
    Check a code of the authenticator app.

    Completes the pending login of the cookie session if there is one,
    otherwise re-verifies the logged in user. The `2fa` verification itself
    is never consumed, the pending login is: it can be completed only once.
    """
    unverified = request.session.get(UNVERIFIED_SESSION_KEY)
    if unverified:
        try:
            token_data = decode_access_token(unverified, strict=False)
        except HTTPException as e:
            request.session.pop(UNVERIFIED_SESSION_KEY, None)
            raise NotFound(
                TWO_FA_TYPE, target or "", detail="Your login has expired, please log in again"
            ) from e
        if token_data.purpose != "unverified-login":
            raise HTTPException(status_code=401, detail="Unauthorized")
    elif token:
        token_data = decode_access_token(token, strict=False)
        if token_data.purpose != "login":
            raise HTTPException(status_code=401, detail="Unauthorized")
    else:
        raise NotFound(TWO_FA_TYPE, target or "", detail="No pending login, please log in again")
    user_id = token_data.user_id
    if target is not None and target != user_id:
        raise NotFound(TWO_FA_TYPE, target)

    await submit_verification(db, TWO_FA_TYPE, user_id, code)
    if unverified:
        # The pending login completes once
        request.session.pop(UNVERIFIED_SESSION_KEY, None)
    await get_user(db, user_id)
    request.session[VERIFIED_TIME_KEY] = generate_timestamp()
    access_token = create_login_token(user_id)
    return LoginResponse(access_token=access_token.access_token, token_type=access_token.token_type)


@router.post("/login/2fa", response_model=LoginResponse)
async def login_two_factor(
    request: Request,
    form: CodeForm,
    token: str | None = Depends(_optional_oauth2_scheme),
    db: AsyncSession = Depends(get_async_db),
):
    """
    Verify the code of the authenticator app.

    Completes a login waiting for its second factor, or re-verifies a logged in
    user before a sensitive action (disable 2FA, change email).

    Raises
    ------
    NotFound
        404 if there is no pending login (never started, expired, or already completed).
    InvalidCode
        400 if the code is wrong, the pending login can be retried.
    """
    return await _handle_two_factor_verification(request, db, form.code, token)


@router.post("/logout", response_class=Response)
def logout(request: Request):
    """Clear the cookie session (pending login, verification state)."""
    request.session.clear()
    return Response(content="Logged out", status_code=200)


# ----- Generic Verification ----- #


async def _handle_onboarding_verification(
    request: Request, db: AsyncSession, form: VerifyForm, token: str | None   # pylint: disable=unused-argument
) -> Response:
    await submit_verification(db, "onboarding", form.target, form.code)
    db_user = await get_user_by_email(db, form.target, raise_error=False)
    if db_user is None:
        raise HTTPException(status_code=404, detail="User not found")
    await update_user(db, db_user, email_verified=True)
    return JSONResponse({"message": "Your email has been verified."})


async def _handle_reset_password_verification(
    request: Request, db: AsyncSession, form: VerifyForm, token: str | None   # pylint: disable=unused-argument
) -> Response:
    await submit_verification(db, "reset-password", form.target, form.code)
    db_user = await get_user_by_username(db, form.target)
    request.session[RESET_PASSWORD_KEY] = db_user.username
    return JSONResponse({
        "message": "Code verified, you can now choose a new password.",
        "reset_url": f"{settings.API_STR}/auth/reset-password",
    })


async def _handle_change_email_verification(
    request: Request, db: AsyncSession, form: VerifyForm, token: str | None
) -> Response:
    if not token:
        raise HTTPException(
            status_code=401, detail="Unauthorized", headers={"WWW-Authenticate": "Bearer"})
    db_user = await get_current_user(token, db)
    if db_user.id != form.target:
        raise NotFound("change-email", form.target)
    return await handle_change_email_verification(request, db, db_user, form.code)


async def _handle_login_verification(
    request: Request, db: AsyncSession, form: VerifyForm, token: str | None
) -> Response:
    response = await _handle_two_factor_verification(request, db, form.code, token, target=form.target)
    return JSONResponse(response.model_dump())


_VERIFICATION_HANDLERS = {
    "onboarding": _handle_onboarding_verification,
    "reset-password": _handle_reset_password_verification,
    "change-email": _handle_change_email_verification,
    TWO_FA_TYPE: _handle_login_verification,
}


async def _verify(request: Request, db: AsyncSession, form: VerifyForm, token: str | None) -> Response:
    handler = _VERIFICATION_HANDLERS.get(form.type)
    if handler is None:
        raise HTTPException(
            status_code=400,
            detail=f"{form.type} codes are verified from the two-factor settings"
        )
    return await handler(request, db, form, token)


@router.post("/verify", response_class=JSONResponse)
async def verify(
    request: Request,
    form: VerifyForm,
    token: str | None = Depends(_optional_oauth2_scheme),
    db: AsyncSession = Depends(get_async_db),
):
    """
    Verify a code of any flow.

    The flow is selected by `type`: onboarding marks the email as verified,
    reset-password allows `/auth/reset-password`, change-email applies the new
    email stored in the cookie session for the logged-in target user, 2fa
    completes a pending login.
    """
    return await _verify(request, db, form, token)


@router.get("/verify", response_class=JSONResponse)
async def verify_link(
    request: Request,
    verification_type: VerificationType = Query(alias="type"),
    target: str = Query(),
    code: str = Query(min_length=settings.OTP_LENGTH, max_length=settings.OTP_LENGTH),
    token: str | None = Depends(_optional_oauth2_scheme),
    db: AsyncSession = Depends(get_async_db),
):
    """Same as `POST /auth/verify`, with the fields in the query string (link of the emails)."""
    form = VerifyForm(type=verification_type, target=target, code=code)
    return await _verify(request, db, form, token)


# ----- Password Reset ----- #


@router.post("/forgot-password", response_class=JSONResponse, status_code=202)
async def forgot_password(
    request: Request,
    form: ForgotPasswordForm,
    db: AsyncSession = Depends(get_async_db),
):
    """
    Send a reset-password code to the email of the account.

    The response does not tell whether the account exists.
    """
    db_user = await get_user_by_username_or_email(db, form.username_or_email)
    if db_user is None:
        logger.debug("Password reset requested for an unknown account")
    else:
        await request_verification(
            db, "reset-password", db_user.username,
            deliver=_email_delivery(db_user.email, request)
        )
    return JSONResponse(
        status_code=202,
        content={"message": "If the account exists, a code has been sent to its email."}
    )


@router.post("/reset-password", response_class=Response)
async def reset_password(
    request: Request,
    form: ResetPasswordForm,
    db: AsyncSession = Depends(get_async_db),
):
    """
    Set a new password once a reset-password code was verified.

    Raises
    ------
    HTTPException
        401 if no reset-password code was verified in this session,
        400 if the passwords do not match.
    """
    username = request.session.get(RESET_PASSWORD_KEY)
    if not username:
        raise HTTPException(status_code=401, detail="Unauthorized")
    if form.password != form.confirm_password:
        raise HTTPException(status_code=400, detail="Passwords do not match")
    db_user = await get_user_by_username(db, username)
    await update_user(db, db_user, password=form.password)
    request.session.pop(RESET_PASSWORD_KEY, None)
    return Response(content="Password reset successful", status_code=200)
