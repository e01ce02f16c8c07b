"""This module contains the SQLAlchemy base class."""
from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase

# pylint: disable=R0903


class Base(AsyncAttrs, DeclarativeBase):
    """
    The base class for all SQLAlchemy models.

    Constraints get deterministic names so the `(type, target)` unique
    constraint of the verifications can be targeted by name.
    """
    metadata = MetaData(naming_convention={
        "ix": "ix_%(column_0_label)s",
        "uq": "uq_%(table_name)s_%(column_0_name)s_%(column_1_name)s",
        "pk": "pk_%(table_name)s",
    })
