"""
Base model class for all SQLAlchemy models.

WHY: Every Supabase table uses a UUID primary key and created/updated
timestamps; the mixins keep those columns identical across models.
"""

import uuid
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase


# WHY: JSONB in Postgres, plain JSON on SQLite so the test suite can create
# the same tables in memory.
JSONType = JSON().with_variant(JSONB(), "postgresql")


def generate_uuid() -> str:
    """Default for UUID primary keys, stored as strings."""
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class TimestampMixin:
    """Mixin to add created_at and updated_at timestamps (naive UTC)."""

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class PrimaryKeyMixin:
    """Mixin to add a UUID string primary key."""

    id = Column(String(36), primary_key=True, default=generate_uuid, index=True)
