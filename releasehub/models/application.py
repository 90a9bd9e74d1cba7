"""
Application and Version models.

Catalog entities the deployment lifecycle refers to. Managing them is plain
CRUD; the lifecycle only needs to look them up within a tenant.
"""
import enum
from datetime import datetime
from sqlalchemy import String, Text, Integer, DateTime, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column
from releasehub.models.base import Base, TenantScopedMixin, enum_values


class VersionStatus(str, enum.Enum):
    """Version release status enum."""
    DRAFT = "Draft"
    RELEASED = "Released"
    DEPRECATED = "Deprecated"
    ARCHIVED = "Archived"


class Application(Base, TenantScopedMixin):
    """A deployable application owned by a tenant."""
    __tablename__ = "applications"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    repository_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    def __repr__(self):
        return f"<Application(id={self.id}, name={self.name}, tenant_id={self.tenant_id})>"


class Version(Base, TenantScopedMixin):
    """A released (or draft) version of an application."""
    __tablename__ = "versions"

    application_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("applications.id"),
        nullable=False,
        index=True
    )
    version_number: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[VersionStatus] = mapped_column(
        SQLEnum(VersionStatus, native_enum=False, values_callable=enum_values),
        nullable=False,
        default=VersionStatus.DRAFT
    )
    release_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<Version(id={self.id}, application_id={self.application_id}, number={self.version_number})>"
