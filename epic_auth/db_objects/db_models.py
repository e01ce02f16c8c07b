"""This module contains the SQLAlchemy models for the application."""
import json
from sqlalchemy import Boolean, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from epic_auth.core.utils import generate_timestamp, generate_uuid
from epic_auth.db_objects._base import Base

# pylint: disable=R0903


class User(Base):
    """Users model."""
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )
    username: Mapped[str] = mapped_column(
        String,
        nullable=False,
        unique=True
    )
    name: Mapped[str | None]
    email: Mapped[str] = mapped_column(
        String,
        nullable=False,
        unique=True
    )
    email_verified: Mapped[bool] = mapped_column(
        Boolean,
        default=False
    )
    hashed_password: Mapped[str | None]
    created_at: Mapped[int] = mapped_column(
        Integer,
        default=generate_timestamp
    )
    updated_at: Mapped[int] = mapped_column(
        Integer,
        default=generate_timestamp,
        onupdate=generate_timestamp
    )

    def __repr__(self) -> str:
        repr_dict = {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "email_verified": self.email_verified,
        }
        return f"User({json.dumps(repr_dict, indent=4)})"


class Verification(Base):
    """
    Pending verifications model.

    A row exists while a verification is pending for a `(type, target)` pair.
    The `2fa` type is the permanent marker of an enabled two-factor auth and
    holds the authenticator secret.
    """
    __tablename__ = "verifications"
    __table_args__ = (
        UniqueConstraint("type", "target"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    target: Mapped[str] = mapped_column(String, nullable=False)
    secret: Mapped[str] = mapped_column(String, nullable=False)
    algorithm: Mapped[str] = mapped_column(String(16), nullable=False)
    period: Mapped[int] = mapped_column(Integer, nullable=False)
    digits: Mapped[int] = mapped_column(Integer, nullable=False)
    char_set: Mapped[str] = mapped_column(String, nullable=False)
    expires_at: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[int] = mapped_column(
        Integer,
        default=generate_timestamp
    )

    def __repr__(self) -> str:
        repr_dict = {
            "id": self.id,
            "type": self.type,
            "target": self.target,
            "algorithm": self.algorithm,
            "period": self.period,
            "digits": self.digits,
            "expires_at": self.expires_at,
        }
        return f"Verification({json.dumps(repr_dict, indent=4)})"
