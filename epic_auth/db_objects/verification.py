"""
This module contains the functions to interact with the verifications table in the database.

A verification is unique per `(type, target)`. Creating one for an existing
pair overwrites it, and consuming one is a single conditional statement whose
row count tells whether this caller won the race.
"""
from fastapi import HTTPException
from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from epic_auth.core.config import logger
from epic_auth.core.utils import generate_timestamp, generate_uuid
from epic_auth.db_objects.db_models import Verification as Verification_DB


_UPSERT_INSERTS = {
    "sqlite": sqlite_insert,
    "postgresql": postgresql_insert,
}


# ~~~~~ CRUD ~~~~~ #


# ------- Create ------- #


async def upsert_verification(
    db: AsyncSession,
    verification_type: str,
    target: str,
    fields: dict,
    now: int | None = None
) -> Verification_DB:
    """
    Create or overwrite the verification of a `(type, target)` pair.

    The overwrite is atomic (`INSERT ... ON CONFLICT DO UPDATE`), concurrent
    calls for the same pair end with a single row, the last writer wins. The
    overwritten verification gets a new id.

    :param AsyncSession db: The current database session.
    :param str verification_type: The flow of the verification.
    :param str target: The subject of the verification.
    :param dict fields: secret, algorithm, period, digits, char_set and expires_at.
    :param int now: The creation timestamp, defaults to the current time.
    :return Verification_DB: The stored verification.
    """
    values = {
        "id": generate_uuid(),
        "type": verification_type,
        "target": target,
        **fields,
        "created_at": generate_timestamp() if now is None else now,
    }
    dialect = db.get_bind().dialect.name
    insert = _UPSERT_INSERTS.get(dialect)
    if insert is None:
        logger.debug(f"No native upsert for {dialect}, replacing the verification in one transaction")
        await db.execute(
            delete(Verification_DB)
            .where(Verification_DB.type == verification_type, Verification_DB.target == target)
            .execution_options(synchronize_session=False)
        )
        db.add(Verification_DB(**values))
    else:
        stmt = insert(Verification_DB).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Verification_DB.type, Verification_DB.target],
            set_={
                key: stmt.excluded[key]
                for key in values
                if key not in ("type", "target")
            }
        )
        await db.execute(stmt)
    await db.commit()
    return await get_verification(db, verification_type, target, raise_error=True)


# ------- Read ------- #


async def get_verification(
    db: AsyncSession,
    verification_type: str,
    target: str,
    raise_error: bool = False
) -> Verification_DB | None:
    """
    Retrieve the verification of a `(type, target)` pair.

    :param AsyncSession db: The current database session.
    :param str verification_type: The flow of the verification.
    :param str target: The subject of the verification.
    :param bool raise_error: Whether to raise an HTTPException if the verification is not found.
    :return Verification_DB: The verification, None if not found and `raise_error` is False.
    :raises HTTPException: If the verification is not found and `raise_error` is `True`.
    """
    result = await db.execute(
        select(Verification_DB)
        .filter(Verification_DB.type == verification_type, Verification_DB.target == target)
        .execution_options(populate_existing=True)
    )
    db_verification = result.scalar()
    if not db_verification and raise_error:
        raise HTTPException(status_code=404, detail="Verification not found")
    return db_verification


async def get_verification_by_id(
    db: AsyncSession,
    verification_id: str,
    raise_error: bool = False
) -> Verification_DB | None:
    """
    Retrieve a verification by its id.

    :param AsyncSession db: The current database session.
    :param str verification_id: The id of the verification.
    :param bool raise_error: Whether to raise an HTTPException if the verification is not found.
    :return Verification_DB: The verification, None if not found and `raise_error` is False.
    :raises HTTPException: If the verification is not found and `raise_error` is `True`.
    """
    result = await db.execute(
        select(Verification_DB)
        .filter(Verification_DB.id == verification_id)
        .execution_options(populate_existing=True)
    )
    db_verification = result.scalar()
    if not db_verification and raise_error:
        raise HTTPException(status_code=404, detail="Verification not found")
    return db_verification


# ------- Update ------- #


async def update_verification_type(
    db: AsyncSession,
    verification_type: str,
    target: str,
    new_type: str
) -> bool:
    """
    Atomically change the type of a verification.

    Any verification already stored for `(new_type, target)` is replaced, in
    the same transaction.

    :param AsyncSession db: The current database session.
    :param str verification_type: The current type of the verification.
    :param str target: The subject of the verification.
    :param str new_type: The type to move the verification to.
    :return bool: False if there was no verification to move (nothing is changed).
    """
    await db.execute(
        delete(Verification_DB)
        .where(Verification_DB.type == new_type, Verification_DB.target == target)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(
        update(Verification_DB)
        .where(Verification_DB.type == verification_type, Verification_DB.target == target)
        .values(type=new_type, expires_at=None)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        return False
    await db.commit()
    return True


# ------- Delete ------- #


async def delete_verification(db: AsyncSession, verification_type: str, target: str) -> bool:
    """
    Delete the verification of a `(type, target)` pair.

    :param AsyncSession db: The current database session.
    :param str verification_type: The flow of the verification.
    :param str target: The subject of the verification.
    :return bool: True if a verification was deleted, False if there was none.
    """
    result = await db.execute(
        delete(Verification_DB)
        .where(Verification_DB.type == verification_type, Verification_DB.target == target)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount > 0


async def delete_expired_verifications(db: AsyncSession, now: int | None = None) -> int:
    """
    Delete the verifications whose absolute expiry is in the past.

    :param AsyncSession db: The current database session.
    :param int now: The reference timestamp, defaults to the current time.
    :return int: The number of deleted verifications.
    """
    now = generate_timestamp() if now is None else now
    result = await db.execute(
        delete(Verification_DB)
        .where(Verification_DB.expires_at.is_not(None), Verification_DB.expires_at < now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount
