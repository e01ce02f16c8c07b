"""
Verification flows.

A verification is pending while a row exists for its `(type, target)` pair.
Requesting a code generates it, stores it (overwriting any previous code of
the same pair) and hands it to a delivery callback. Submitting a code checks
it and, on success, consumes the verification according to the policy of its
flow:

- one-shot flows (onboarding, reset-password, change-email) delete it,
- the 2FA enrollment moves it from `2fa-verify` to the permanent `2fa` type,
- the permanent `2fa` verification is kept, it holds the authenticator secret.

Cancelling deletes it. Expired verifications are deleted when submitted.
"""
from dataclasses import dataclass
from typing import Awaitable, Callable, Literal
from urllib.parse import urlencode
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi.exceptions import HTTPException

from epic_auth.core.config import settings, logger
from epic_auth.core.exceptions import DeliveryFailed, InvalidCode, NotFound, VerificationExpired
from epic_auth.core.otp import check_code, generate, get_totp_auth_uri, is_expired
from epic_auth.core.utils import generate_timestamp
from epic_auth.db_objects.db_models import Verification as Verification_DB
from epic_auth.db_objects.verification import (
    delete_verification, get_verification, update_verification_type, upsert_verification
)


VerificationType = Literal["onboarding", "reset-password", "change-email", "2fa", "2fa-verify"]

TWO_FA_TYPE = "2fa"
TWO_FA_VERIFY_TYPE = "2fa-verify"


@dataclass(frozen=True)
class FlowPolicy:
    """How the codes of a flow are generated and what happens once one is accepted."""
    kind: Literal["totp", "random"]
    period: int
    expires: bool
    on_success: Literal["delete", "transition", "keep"]
    next_type: str | None = None


FLOWS: dict[str, FlowPolicy] = {
    "onboarding": FlowPolicy("totp", settings.OTP_EMAIL_INTERVAL, True, "delete"),
    "reset-password": FlowPolicy("totp", settings.OTP_EMAIL_INTERVAL, True, "delete"),
    "change-email": FlowPolicy("totp", settings.OTP_EMAIL_INTERVAL, True, "delete"),
    TWO_FA_VERIFY_TYPE: FlowPolicy(
        "totp", settings.OTP_AUTHENTICATOR_INTERVAL, False, "transition", TWO_FA_TYPE),
    TWO_FA_TYPE: FlowPolicy("totp", settings.OTP_AUTHENTICATOR_INTERVAL, False, "keep"),
}


@dataclass
class PreparedVerification:
    """A pending verification together with the code to deliver."""
    record: Verification_DB
    otp: str
    verify_url: str


Deliver = Callable[[PreparedVerification], Awaitable[object]]


def get_flow(verification_type: str) -> FlowPolicy:
    """Return the policy of a flow, raise ValueError for an unknown type."""
    try:
        return FLOWS[verification_type]
    except KeyError as e:
        raise ValueError(f"Unknown verification type: {verification_type}") from e


def get_verify_url(verification_type: str, target: str, code: str | None = None) -> str:
    """The link that submits a code of a flow, the code is omitted when not given."""
    params = {"type": verification_type, "target": target}
    if code is not None:
        params["code"] = code
    return f"{settings.BASE_URL}{settings.API_STR}/auth/verify?{urlencode(params)}"


async def request_verification(
    db: AsyncSession,
    verification_type: str,
    target: str,
    deliver: Deliver | None = None,
    now: int | None = None,
    **overrides
) -> PreparedVerification:
    """
    Start (or restart) a verification and deliver its code.

    :param AsyncSession db: The current database session.
    :param str verification_type: The flow of the verification.
    :param str target: The subject of the verification (user id or email).
    :param Deliver deliver: Coroutine function receiving the prepared verification,
        typically sending the code by email. None when the code is shown to the
        user instead (authenticator enrollment).
    :param int now: The Unix time of the request, defaults to the current time.
    :param overrides: Generator options overriding the flow defaults
        (period, digits, algorithm, char_set).
    :return PreparedVerification: The stored verification, its code and its verify URL.
    :raises DeliveryFailed: If the delivery callback failed. The verification
        stays pending, requesting a new code supersedes it.
    """
    policy = get_flow(verification_type)
    now = generate_timestamp() if now is None else now
    options = {"period": policy.period, **overrides}
    generated = generate(policy.kind, now=now, **options)
    fields = generated.fields()
    fields["expires_at"] = now + generated.period if policy.expires else None

    record = await upsert_verification(db, verification_type, target, fields, now=now)
    logger.info(f"Verification requested: {verification_type} for {target}")
    prepared = PreparedVerification(
        record=record,
        otp=generated.otp,
        verify_url=get_verify_url(verification_type, target, generated.otp),
    )
    if deliver is not None:
        try:
            await deliver(prepared)
        except HTTPException as e:
            logger.error(f"Verification delivery failed: {verification_type} for {target} ({e.detail})")
            raise DeliveryFailed(verification_type, target) from e
    return prepared


async def submit_verification(
    db: AsyncSession,
    verification_type: str,
    target: str,
    code: str | int,
    now: int | None = None
) -> Verification_DB:
    """
    Check a submitted code and consume the verification on success.

    :param AsyncSession db: The current database session.
    :param str verification_type: The flow of the verification.
    :param str target: The subject of the verification.
    :param str code: The submitted code.
    :param int now: The Unix time of the submission, defaults to the current time.
    :return Verification_DB: The verification as it was before being consumed.
    :raises NotFound: If no verification is pending (never started, consumed,
        cancelled, expired, or consumed by a concurrent submission).
    :raises VerificationExpired: If the verification expired. It is deleted.
    :raises InvalidCode: If the code does not match. The verification is untouched.
    """
    policy = get_flow(verification_type)
    record = await get_verification(db, verification_type, target)
    if record is None:
        logger.info(f"No pending verification: {verification_type} for {target}")
        raise NotFound(verification_type, target)
    try:
        check_code(code, record, now=now)
    except VerificationExpired:
        logger.warning(f"Expired verification submitted: {verification_type} for {target}")
        await delete_verification(db, verification_type, target)
        raise
    except InvalidCode:
        logger.warning(f"Invalid code submitted: {verification_type} for {target}")
        raise

    match policy.on_success:
        case "delete":
            consumed = await delete_verification(db, verification_type, target)
        case "transition":
            consumed = await update_verification_type(
                db, verification_type, target, policy.next_type)
        case _:
            consumed = True
    if not consumed:
        logger.warning(f"Verification consumed concurrently: {verification_type} for {target}")
        raise NotFound(verification_type, target)
    logger.info(f"Verification succeeded: {verification_type} for {target}")
    return record


async def cancel_verification(db: AsyncSession, verification_type: str, target: str) -> None:
    """
    Cancel a pending verification. Cancelling a missing verification is a no-op.

    :param AsyncSession db: The current database session.
    :param str verification_type: The flow of the verification.
    :param str target: The subject of the verification.
    """
    if await delete_verification(db, verification_type, target):
        logger.info(f"Verification cancelled: {verification_type} for {target}")


async def get_pending_verification(
    db: AsyncSession,
    verification_type: str,
    target: str,
    now: int | None = None
) -> Verification_DB | None:
    """Return the pending verification of a pair, None if missing or expired."""
    record = await get_verification(db, verification_type, target)
    if record is None or is_expired(record, now):
        return None
    return record


async def is_two_factor_enabled(db: AsyncSession, user_id: str) -> bool:
    """Whether the user completed the 2FA enrollment."""
    return await get_verification(db, TWO_FA_TYPE, user_id) is not None


def get_auth_uri(record: Verification_DB, account_name: str, issuer: str | None = None) -> str:
    """The `otpauth://` URI of a time-based verification, for authenticator apps."""
    return get_totp_auth_uri(
        secret=record.secret,
        algorithm=record.algorithm,
        period=record.period,
        digits=record.digits,
        account_name=account_name,
        issuer=issuer or settings.PROJECT_NAME,
    )
