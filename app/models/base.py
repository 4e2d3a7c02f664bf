"""
Base SQLAlchemy Models

Includes the declarative base and the epoch timestamp mixin shared by the
transcript index tables.
"""

import time
from sqlalchemy import Double, MetaData
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Naming convention for constraints to avoid migration issues
INDEXES_NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=INDEXES_NAMING_CONVENTION)


class EpochCreatedMixin:
    """
    created_at stored as UNIX seconds (double precision).

    Age comparisons (pending job expiry, negative cache sweep) are plain
    float arithmetic, identical on MySQL and SQLite.
    """

    created_at: Mapped[float] = mapped_column(
        Double,
        default=time.time,
        nullable=False,
        index=True,
    )
