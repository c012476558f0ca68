"""SQLAlchemy ORM models.

The starter kit ships without tables. Declaring models on ``Base`` makes the
environment gate require a working database connection.
"""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def has_entity_mappings() -> bool:
    """True when at least one ORM model is mapped."""
    return bool(Base.metadata.tables)
