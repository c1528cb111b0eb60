"""SQLAlchemy ORM models for the system (configuration) database."""

import uuid
from datetime import datetime

import uuid_utils as uuid7_lib
from sqlalchemy import DateTime, Integer, String, Text, Uuid, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

DEFAULT_TABLE_PREFIX = "analytics_"


def _uuid7() -> uuid.UUID:
    """Generate a UUIDv7 (time-ordered) for use as default PK value."""
    return uuid.UUID(bytes=uuid7_lib.uuid7().bytes)


class Base(DeclarativeBase):
    """Base class for all ORM models."""


# ──────────────────────────────────────────────
# Multi-Tenant Configuration
# ──────────────────────────────────────────────


class Project(Base):
    """A tenant: routing target and table namespace for its devices.

    Empty ``db_host`` means the tenant's tables live in the system store.
    """

    __tablename__ = "analytics_projects"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=_uuid7)
    project_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    project_name: Mapped[str] = mapped_column(String(200))
    db_host: Mapped[str | None] = mapped_column(String(255))
    db_port: Mapped[int | None] = mapped_column(Integer)
    db_name: Mapped[str | None] = mapped_column(String(100))
    db_user: Mapped[str | None] = mapped_column(String(100))
    # Decrypted with the configured SecretCipher; plaintext by default.
    db_password_encrypted: Mapped[str | None] = mapped_column(Text)
    table_prefix: Mapped[str] = mapped_column(
        String(64), default=DEFAULT_TABLE_PREFIX
    )
    is_active: Mapped[bool] = mapped_column(default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
