"""
Change of the email of the current user.

The new email receives a code, the change is applied once the code is
verified. The new email waits in the cookie session in the meantime and the
previous email is notified of the change.
"""
from fastapi import APIRouter, Request
from fastapi.exceptions import HTTPException
from fastapi.params import Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from epic_auth.core.config import settings, logger
from epic_auth.core.db import get_async_db
from epic_auth.core.email import send_email_change_notice, send_verification_email
from epic_auth.core.security import NEW_EMAIL_KEY, require_recent_verification
from epic_auth.core.verification import PreparedVerification, request_verification, submit_verification
from epic_auth.db_objects.db_models import User as User_DB
from epic_auth.db_objects.user import get_current_user, get_user_by_email, update_user
from epic_auth.templates.schemas.verification import ChangeEmailForm, CodeForm


router = APIRouter()


async def handle_change_email_verification(
    request: Request,
    db: AsyncSession,
    db_user: User_DB,
    code: str
) -> JSONResponse:
    """
    Verify a change-email code and apply the new email.

    :param Request request: The request, whose cookie session holds the new email.
    :param AsyncSession db: The current database session.
    :param User_DB db_user: The user changing their email.
    :param str code: The submitted code.
    :return JSONResponse: The confirmation message.
    :raises HTTPException: 403 if the 2FA of the user was not verified recently,
        400 if the new email is not in the session anymore. The code is not
        consumed in both cases.
    """
    await require_recent_verification(request, db, db_user.id)
    new_email = request.session.get(NEW_EMAIL_KEY)
    if not new_email:
        raise HTTPException(
            status_code=400,
            detail="You must submit a code on the same device that requested the email change."
        )
    await submit_verification(db, "change-email", db_user.id, code)
    previous_email = db_user.email
    await update_user(db, db_user, email=new_email, email_verified=True)
    request.session.pop(NEW_EMAIL_KEY, None)
    logger.info(f"Email changed for {db_user.username}")
    try:
        await send_email_change_notice(previous_email, new_email)
    except HTTPException as e:
        logger.error(f"Email change notice not sent to {previous_email}: {e.detail}")
    return JSONResponse({"message": f"Your email has been changed to {new_email}"})


@router.post("", response_class=JSONResponse, status_code=202)
async def request_email_change(
    request: Request,
    form: ChangeEmailForm,
    current_user: User_DB = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """
    Send a code to the new email.

    Raises
    ------
    HTTPException
        403 if the 2FA of the user was not verified recently,
        400 if the email is already in use.
    DeliveryFailed
        502 if the email could not be sent.
    """
    await require_recent_verification(request, db, current_user.id)
    if form.email == current_user.email or await get_user_by_email(db, form.email, raise_error=False):
        raise HTTPException(status_code=400, detail="This email is already in use.")

    async def _deliver(prepared: PreparedVerification) -> bool:
        return await send_verification_email(
            recipient=form.email,
            otp_code=prepared.otp,
            verify_url=prepared.verify_url,
            verification_type=prepared.record.type,
            expires_in=prepared.record.period,
            request=request
        )

    await request_verification(db, "change-email", current_user.id, deliver=_deliver)
    request.session[NEW_EMAIL_KEY] = form.email
    return JSONResponse(
        status_code=202,
        content={
            "message": f"A code has been sent to {form.email}",
            "verify_url": f"{settings.API_STR}/settings/change-email/verify",
        }
    )


@router.post("/verify", response_class=JSONResponse)
async def verify_email_change(
    request: Request,
    form: CodeForm,
    current_user: User_DB = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Verify the code sent to the new email and apply the change."""
    return await handle_change_email_verification(request, db, current_user, form.code)
