"""
This module contains the functions to interact with the users table in the database.

It provides the functions to create, read and update users needed by the
authentication and verification flows, and the dependency resolving the
current user from the access token.
"""
from fastapi import Depends, HTTPException
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from epic_auth.core.db import get_async_db
from epic_auth.core.security import decode_access_token, hash_password, oauth2_scheme, verify_password
from epic_auth.core.utils import generate_timestamp
from epic_auth.db_objects.db_models import User as User_DB
from epic_auth.templates.schemas.user import UserCreate


# ~~~~~ CRUD ~~~~~ #


# ------- Create ------- #


async def create_user(db: AsyncSession, user: UserCreate) -> User_DB:
    """
    Create a new user.

    :param AsyncSession db: The current database session.
    :param UserCreate user: The user to create.
    :return User_DB: The created user model object.
    :raises IntegrityError: If the username or the email is already taken.
    """
    db_user = User_DB(
        **user.model_dump(exclude={"password"}),
        hashed_password=hash_password(user.password)
    )
    db.add(db_user)
    await db.commit()
    await db.refresh(db_user)
    return db_user


# ------- Read ------- #


async def get_user(db: AsyncSession, user_id: str, raise_error: bool = True) -> User_DB | None:
    """
    Retrieve a user by their id.

    :param AsyncSession db: The current database session.
    :param str user_id: The id of the user to retrieve.
    :param bool raise_error: Whether to raise an HTTPException if the user is not found (default is True).
    :return User_DB: The user model object if found, else None if raise_error is False.
    :raises HTTPException: If the user is not found and `raise_error` is `True`.
    """
    result = await db.execute(select(User_DB).filter(User_DB.id == user_id))
    db_user = result.scalar()
    if not db_user and raise_error:
        raise HTTPException(status_code=404, detail="User not found")
    return db_user


async def get_user_by_username(db: AsyncSession, username: str, raise_error: bool = True) -> User_DB | None:
    """
    Retrieve a user by their username.

    :param AsyncSession db: The current database session.
    :param str username: The username of the user to retrieve.
    :param bool raise_error: Whether to raise an HTTPException if the user is not found (default is True).
    :return User_DB: The user model object if found, else None if raise_error is False.
    :raises HTTPException: If the user is not found and `raise_error` is `True`.
    """
    result = await db.execute(select(User_DB).filter(User_DB.username == username.lower()))
    db_user = result.scalar()
    if not db_user and raise_error:
        raise HTTPException(status_code=404, detail="User not found")
    return db_user


async def get_user_by_email(db: AsyncSession, email: str, raise_error: bool = True) -> User_DB | None:
    """
    Retrieve a user by their email.

    :param AsyncSession db: The current database session.
    :param str email: The email of the user to retrieve.
    :param bool raise_error: Whether to raise an HTTPException if the user is not found (default is True).
    :return User_DB: The user model object if found, else None if raise_error is False.
    :raises HTTPException: If the user is not found and `raise_error` is `True`.
    """
    result = await db.execute(select(User_DB).filter(User_DB.email == email.lower()))
    db_user = result.scalar()
    if not db_user and raise_error:
        raise HTTPException(status_code=404, detail="User not found")
    return db_user


async def get_user_by_username_or_email(db: AsyncSession, value: str) -> User_DB | None:
    """Retrieve a user by their username or their email, None if not found."""
    result = await db.execute(select(User_DB).filter(or_(
        User_DB.username == value.lower(),
        User_DB.email == value.lower()
    )))
    return result.scalar()


# ------- Update ------- #


async def update_user(db: AsyncSession, db_user: User_DB, **changes) -> User_DB:
    """
    Update an existing user's information.

    A `password` change is hashed before being stored.

    :param AsyncSession db: The current database session.
    :param User_DB db_user: The existing user object to be updated.
    :param changes: The columns to update.
    :return User_DB: The updated user object.
    :raises IntegrityError: If the new email or username is already taken.
    """
    if "password" in changes:
        changes["hashed_password"] = hash_password(changes.pop("password"))
    for key, value in changes.items():
        setattr(db_user, key, value)
    db_user.updated_at = generate_timestamp()
    db.add(db_user)
    await db.commit()
    await db.refresh(db_user)
    return db_user


# ----- Helper Functions ----- #


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_async_db)
) -> User_DB:
    """
    Get the current user from the token.

    :param str token: The token from the request header.
    :param AsyncSession db: The current database session.
    :return User_DB: The current user object if the token is valid, otherwise raises an HTTPException.
    """
    token_data = decode_access_token(token, strict=False)
    if token_data.purpose != "login":
        raise HTTPException(status_code=401, detail="Unauthorized")
    user = await get_user(db, token_data.user_id, raise_error=False)
    if not user:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user


async def authenticate_user(db: AsyncSession, username: str, password: str) -> User_DB:
    """
    Authenticate a user using their username/email and password.

    :param AsyncSession db: The database session.
    :param str username: The username or email of the user.
    :param str password: The password of the user.
    :raises HTTPException: 401 Unauthorized if the user is not found or the password is incorrect.
    :return User_DB: The user object if the user is found and the password is correct.
    """
    db_user = await get_user_by_username_or_email(db, username)
    if not db_user or not verify_password(password, db_user.hashed_password):
        raise HTTPException(
            status_code=401,
            detail="Invalid username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return db_user
