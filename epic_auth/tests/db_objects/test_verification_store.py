"""Tests for the verifications table functions."""
import pytest
from fastapi.exceptions import HTTPException
from sqlalchemy import func, select

from epic_auth.db_objects.db_models import Verification
from epic_auth.db_objects.verification import (
    delete_expired_verifications,
    delete_verification,
    get_verification,
    get_verification_by_id,
    update_verification_type,
    upsert_verification,
)

pytest_plugins = ('pytest_asyncio',)


def _fields(secret="JBSWY3DPEHPK3PXP", expires_at=None):
    return {
        "secret": secret,
        "algorithm": "SHA1",
        "period": 30,
        "digits": 6,
        "char_set": "0123456789",
        "expires_at": expires_at,
    }


async def _count(db) -> int:
    return (await db.execute(select(func.count()).select_from(Verification))).scalar()


@pytest.mark.asyncio
async def test_upsert_overwrites(db):
    """Test a pair holds a single verification, the last write wins."""
    first = await upsert_verification(db, "2fa-verify", "user-42", _fields("A" * 32), now=10)
    first_id = first.id
    second = await upsert_verification(db, "2fa-verify", "user-42", _fields("B" * 32), now=20)
    assert await _count(db) == 1
    assert second.id != first_id
    assert second.secret == "B" * 32
    assert second.created_at == 20
    assert await get_verification_by_id(db, first_id) is None
    assert (await get_verification_by_id(db, second.id)).secret == "B" * 32


@pytest.mark.asyncio
async def test_upsert_distinct_pairs(db):
    """Test the type and the target both identify a verification."""
    await upsert_verification(db, "onboarding", "kody@example.com", _fields())
    await upsert_verification(db, "change-email", "kody@example.com", _fields())
    await upsert_verification(db, "onboarding", "hannah@example.com", _fields())
    assert await _count(db) == 3


@pytest.mark.asyncio
async def test_get_verification_raise_error(db):
    """Test the lookup of a missing verification."""
    assert await get_verification(db, "2fa", "nobody") is None
    with pytest.raises(HTTPException) as exc_info:
        await get_verification(db, "2fa", "nobody", raise_error=True)
    assert exc_info.value.status_code == 404
    with pytest.raises(HTTPException):
        await get_verification_by_id(db, "missing", raise_error=True)


@pytest.mark.asyncio
async def test_update_verification_type(db):
    """Test the type change replaces the destination and clears the expiry."""
    await upsert_verification(db, "2fa", "user-42", _fields("OLD" + "A" * 29))
    await upsert_verification(db, "2fa-verify", "user-42", _fields("NEW" + "A" * 29, expires_at=100))
    assert await update_verification_type(db, "2fa-verify", "user-42", "2fa")
    moved = await get_verification(db, "2fa", "user-42")
    assert moved.secret.startswith("NEW")
    assert moved.expires_at is None
    assert await get_verification(db, "2fa-verify", "user-42") is None
    assert await _count(db) == 1


@pytest.mark.asyncio
async def test_update_verification_type_missing(db):
    """Test nothing changes when there is nothing to move."""
    await upsert_verification(db, "2fa", "user-42", _fields())
    assert not await update_verification_type(db, "2fa-verify", "user-42", "2fa")
    assert await get_verification(db, "2fa", "user-42") is not None


@pytest.mark.asyncio
async def test_delete_verification(db):
    """Test the row count tells whether something was deleted."""
    await upsert_verification(db, "onboarding", "kody@example.com", _fields())
    assert await delete_verification(db, "onboarding", "kody@example.com")
    assert not await delete_verification(db, "onboarding", "kody@example.com")


@pytest.mark.asyncio
async def test_delete_expired_verifications(db):
    """Test only the verifications past their expiry are purged."""
    await upsert_verification(db, "onboarding", "expired@example.com", _fields(expires_at=100))
    await upsert_verification(db, "onboarding", "pending@example.com", _fields(expires_at=300))
    await upsert_verification(db, "2fa", "user-42", _fields())
    assert await delete_expired_verifications(db, now=200) == 1
    assert await get_verification(db, "onboarding", "expired@example.com") is None
    assert await _count(db) == 2
