"""
Base model classes for ReleaseHub.

Provides SQLAlchemy declarative base and shared mixins.
"""
import uuid
from datetime import datetime
from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


def enum_values(enum_cls) -> list[str]:
    """Persist enum values ("InProgress") rather than member names."""
    return [member.value for member in enum_cls]


class TimestampMixin:
    """
    Mixin that adds created_at and modified_at timestamps to models.

    created_at falls back to the server clock; repositories stamp it from the
    injected clock so ordering and sweeps are deterministic.
    """
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )
    modified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )


class TenantScopedMixin(TimestampMixin):
    """
    Columns shared by every tenant-owned entity.

    SECURITY: rows are only ever read through TenantScopedRepository, which
    adds the tenant_id predicate. Querying these tables directly leaks data
    between tenants.
    """
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_id: Mapped[str] = mapped_column(
        String(36),
        unique=True,
        nullable=False,
        default=lambda: str(uuid.uuid4())
    )
    tenant_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("tenants.id"),
        nullable=False,
        index=True
    )
    created_by: Mapped[str] = mapped_column(String(255), nullable=False, default="system")
    modified_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
