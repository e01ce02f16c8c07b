"""
Security utilities for the API.

This module contains the utilities for the authentication of the API: password
hashing, the JSON Web Tokens (JWT) used as access tokens and as short-lived
"unverified login" tokens while a 2FA code is pending, and the cookie session
keys shared by the verification routes.
"""
from datetime import datetime, timedelta, timezone
import re
from typing import Literal
from authlib.jose import jwt
from authlib.jose.errors import JoseError
import bcrypt
from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import HTTPException
from fastapi.security import OAuth2PasswordBearer
from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from epic_auth.core.config import settings
from epic_auth.core.utils import generate_timestamp
from epic_auth.core.verification import is_two_factor_enabled


ALGORITHM = settings.JWT_ALGORITHM
SECRET_KEY = settings.JWT_SECRET_KEY
ACCESS_TOKEN_EXPIRE_MINUTES = settings.JWT_EXP

# Cookie session keys
UNVERIFIED_SESSION_KEY = "unverified_session"
VERIFIED_TIME_KEY = "verified_time"
NEW_EMAIL_KEY = "new_email_address"
RESET_PASSWORD_KEY = "reset_password_username"


oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl=f"{settings.API_STR}/auth/login",
    auto_error=True
)


class Token(BaseModel):
    """
    A token returned from the authentication endpoints.

    Attributes
    ----------
    access_token : str
        The actual token to use in the Authorization header.
    token_type : str
        The type of the token, always "bearer".
    """
    access_token: str
    token_type: str

    def __str__(self) -> str:
        return f"{self.token_type} {self.access_token}"


class TokenData(BaseModel):
    """
    The data encoded in a JSON Web Token (JWT).

    Attributes
    ----------
    purpose : Literal["login", "unverified-login"]
        "login" for access tokens, "unverified-login" for a login waiting for its 2FA code.
    user_id : str
        The id of the user.
    """
    purpose: Literal["login", "unverified-login"]
    user_id: str


def hash_password(password: str) -> str:
    """
    Hashes a password using bcrypt.

    :param str password: The password to hash.
    :return str: The hashed password.

    :raises HTTPException: If the password cannot be encoded.
    """
    try:
        hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt())
    except UnicodeEncodeError as e:
        raise HTTPException(
            status_code=400,
            detail=f"Password must be a string. {e.reason}",
        ) from e
    return hashed.decode("utf-8")


def verify_password(plain_password: str, hashed_password: str | None) -> bool:
    """
    Verifies a password against a hashed password using bcrypt.

    :param str plain_password: The password to verify.
    :param str hashed_password: The hashed password to compare with.
    :return bool: True if the password matches the hash, False otherwise.
    """
    if not hashed_password:
        return False
    return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))


def create_access_token(
    sub: TokenData,
    exp: int = ACCESS_TOKEN_EXPIRE_MINUTES,
    key: str = SECRET_KEY
) -> Token:
    """
    Creates an access token for a given subject.

    :param TokenData sub: The subject to encode in the token.
    :param int, optional exp: The time to live of the token in minutes.
    :param str, optional key: The secret key to use for encoding.
    :return Token: The encoded token.
    """
    headers = {"alg": ALGORITHM, "token_type": "bearer"}
    payload = {
        "iss": settings.PROJECT_NAME,
        "sub": jsonable_encoder(sub),
        "exp": str(int(timedelta(minutes=exp).total_seconds())),
        "iat": str(int(datetime.now(timezone.utc).timestamp())),
    }
    encoded_jwt = jwt.encode(headers, payload, key)
    if isinstance(encoded_jwt, bytes):
        encoded_jwt = encoded_jwt.decode("utf-8")
    return Token(access_token=encoded_jwt, token_type="bearer")


def decode_access_token(token: str, strict: bool = True, key: str = SECRET_KEY) -> TokenData:
    """
    Decodes a JSON Web Token (JWT) based on the given token, strictness, and secret key.

    :param str token: The JWT to decode.
    :param bool strict: If True, the token must start with "Bearer " or an HTTPException will be raised.
    :param str key: The secret key used to decode the JWT. Defaults to SECRET_KEY.
    :return TokenData: The decoded JWT data.

    :raises HTTPException: If the token is invalid, expired, or has an invalid issuer.
    """
    if strict and not re.match('bearer ', token, re.I):
        raise HTTPException(
            status_code=401, detail="Invalid authorization")
    token = re.sub(re.escape("bearer "), "", token, flags=re.IGNORECASE)
    try:
        claims = jwt.decode(token, key)
    except JoseError as e:
        raise HTTPException(
            status_code=401,
            detail=f"Invalid token. {e}",
        ) from e
    if not claims:
        raise HTTPException(
            status_code=401,
            detail="Could not validate credentials",
        )
    if claims.get("iss") != settings.PROJECT_NAME:
        raise HTTPException(
            status_code=401,
            detail="Could not validate credentials | Invalid issuer",
        )
    iat = datetime.fromtimestamp(int(claims["iat"]), tz=timezone.utc)
    if iat > datetime.now(timezone.utc):
        raise HTTPException(
            status_code=401,
            detail="Token not yet valid",
        )
    exp = timedelta(seconds=int(claims["exp"]))
    if iat + exp < datetime.now(timezone.utc):
        raise HTTPException(
            status_code=401,
            detail="Token expired",
        )
    try:
        return TokenData(**claims["sub"])
    except (ValidationError, TypeError) as e:
        raise HTTPException(
            status_code=401,
            detail=f"Invalid token. {e}",
        ) from e


def create_login_token(user_id: str) -> Token:
    """Mint the access token of a fully authenticated user."""
    return create_access_token(sub=TokenData(purpose="login", user_id=user_id))


def create_unverified_login_token(user_id: str) -> str:
    """Mint the short-lived token of a login that still waits for its 2FA code."""
    token = create_access_token(
        sub=TokenData(purpose="unverified-login", user_id=user_id),
        exp=settings.UNVERIFIED_SESSION_EXP
    )
    return token.access_token


async def require_recent_verification(
    request: Request,
    db: AsyncSession,
    user_id: str,
    now: int | None = None
) -> None:
    """
    Require a recent 2FA verification before a sensitive action.

    Users without 2FA always pass. Users with 2FA must have entered a code
    within the last `REVERIFY_WINDOW` seconds.

    :param Request request: The request, whose cookie session holds the last verification time.
    :param AsyncSession db: The current database session.
    :param str user_id: The id of the current user.
    :param int now: The current Unix time, defaults to the current time.
    :raises HTTPException: 403 if a fresh 2FA code is required.
    """
    if not await is_two_factor_enabled(db, user_id):
        return
    now = generate_timestamp() if now is None else now
    verified_time = request.session.get(VERIFIED_TIME_KEY)
    if verified_time is not None and now - int(verified_time) <= settings.REVERIFY_WINDOW:
        return
    raise HTTPException(
        status_code=403,
        detail=jsonable_encoder({
            "message": "Please enter a code from your authenticator app to continue",
            "verify_url": f"{settings.API_STR}/auth/login/2fa",
        })
    )
