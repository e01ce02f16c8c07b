"""
Two-factor authentication settings of the current user.

Enabling the 2FA creates a pending `2fa-verify` verification whose secret is
shown to the user (URI and QR code). The first code of the authenticator app
turns it into the permanent `2fa` verification.
"""
from io import BytesIO
import qrcode
from fastapi import APIRouter, Request
from fastapi.exceptions import HTTPException
from fastapi.params import Depends
from fastapi.responses import JSONResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from epic_auth.core.config import settings, logger
from epic_auth.core.db import get_async_db
from epic_auth.core.exceptions import NotFound
from epic_auth.core.security import VERIFIED_TIME_KEY, require_recent_verification
from epic_auth.core.utils import generate_timestamp
from epic_auth.core.verification import (
    TWO_FA_TYPE, TWO_FA_VERIFY_TYPE,
    cancel_verification, get_auth_uri, get_pending_verification,
    is_two_factor_enabled, request_verification, submit_verification
)
from epic_auth.db_objects.db_models import User as User_DB
from epic_auth.db_objects.user import get_current_user
from epic_auth.templates.schemas.verification import (
    CancelIntent, TwoFactorEnrollment, TwoFactorStatus, TwoFactorVerifyAction, VerifyIntent
)


router = APIRouter()


async def _get_enrollment_uri(db: AsyncSession, user: User_DB) -> str:
    record = await get_pending_verification(db, TWO_FA_VERIFY_TYPE, user.id)
    if record is None:
        raise NotFound(
            TWO_FA_VERIFY_TYPE, user.id,
            detail="No pending two-factor enrollment, please enable it again"
        )
    return get_auth_uri(record, account_name=user.email)


def _enrollment(uri: str) -> TwoFactorEnrollment:
    return TwoFactorEnrollment(
        otp_uri=uri,
        qr_code_url=f"{settings.API_STR}/settings/two-factor/verify/qr"
    )


@router.get("", response_model=TwoFactorStatus)
async def get_two_factor_status(
    current_user: User_DB = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Whether the 2FA of the current user is enabled."""
    return TwoFactorStatus(is_two_factor_enabled=await is_two_factor_enabled(db, current_user.id))


@router.post("", response_model=TwoFactorEnrollment, status_code=201)
async def enable_two_factor(
    current_user: User_DB = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """
    Start the 2FA enrollment.

    Returns
    -------
    TwoFactorEnrollment
        The `otpauth://` URI to add to an authenticator app and the URL of its QR code.
        Starting again replaces the secret of a pending enrollment.

    Raises
    ------
    HTTPException
        400 if the 2FA is already enabled.
    """
    if await is_two_factor_enabled(db, current_user.id):
        raise HTTPException(status_code=400, detail="Two-factor authentication is already enabled")
    prepared = await request_verification(db, TWO_FA_VERIFY_TYPE, current_user.id)
    return _enrollment(get_auth_uri(prepared.record, account_name=current_user.email))


@router.get("/verify", response_model=TwoFactorEnrollment)
async def get_two_factor_enrollment(
    current_user: User_DB = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """The pending enrollment, 404 if there is none (start again with `POST /settings/two-factor`)."""
    return _enrollment(await _get_enrollment_uri(db, current_user))


@router.get("/verify/qr", response_class=Response)
async def get_two_factor_qr(
    current_user: User_DB = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """
    Generate a QR code with the URI of the pending enrollment and return it as an image.

    Returns
    -------
    Response
        An HTTP response with the QR code image.
    """
    uri = await _get_enrollment_uri(db, current_user)
    qr = qrcode.make(uri)
    img_io = BytesIO()
    qr.save(img_io, 'PNG')
    img_io.seek(0)
    return Response(content=img_io.getvalue(), media_type="image/png")


async def _verify_enrollment(request: Request, db: AsyncSession, user: User_DB, intent: VerifyIntent):
    await submit_verification(db, TWO_FA_VERIFY_TYPE, user.id, intent.code)
    request.session[VERIFIED_TIME_KEY] = generate_timestamp()
    logger.info(f"2FA enabled for {user.username}")
    return JSONResponse({"message": "Two-factor authentication has been enabled."})


async def _cancel_enrollment(request: Request, db: AsyncSession, user: User_DB, intent: CancelIntent):   # pylint: disable=unused-argument
    await cancel_verification(db, TWO_FA_VERIFY_TYPE, user.id)
    return JSONResponse({"message": "Two-factor authentication setup cancelled."})


@router.post("/verify", response_class=JSONResponse)
async def verify_two_factor(
    request: Request,
    action: TwoFactorVerifyAction,
    current_user: User_DB = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """
    Complete or cancel the 2FA enrollment.

    The body is `{"intent": "verify", "code": "123456"}` or `{"intent": "cancel"}`.

    Raises
    ------
    NotFound
        404 if there is no pending enrollment.
    InvalidCode
        400 if the code is wrong, the enrollment stays pending.
    """
    match action.root:
        case VerifyIntent() as intent:
            return await _verify_enrollment(request, db, current_user, intent)
        case CancelIntent() as intent:
            return await _cancel_enrollment(request, db, current_user, intent)


@router.post("/disable", response_class=JSONResponse)
async def disable_two_factor(
    request: Request,
    current_user: User_DB = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """
    Disable the 2FA.

    Raises
    ------
    HTTPException
        403 if no code of the authenticator app was entered recently.
    """
    await require_recent_verification(request, db, current_user.id)
    await cancel_verification(db, TWO_FA_TYPE, current_user.id)
    logger.info(f"2FA disabled for {current_user.username}")
    return JSONResponse({"message": "Two-factor authentication has been disabled."})
