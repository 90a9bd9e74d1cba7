"""
Tenant model.

Represents a tenant in the multi-tenant system. The only entity that is not
itself tenant-scoped.
"""
from datetime import datetime
from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from releasehub.models.base import Base


class Tenant(Base):
    """
    Tenant owning applications, environments, deployments and webhooks.

    Each tenant has its own data isolation; see TenantScopedMixin.
    """
    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    subscription_plan: Mapped[str] = mapped_column(String(50), nullable=False, default="Free")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )

    def __repr__(self):
        return f"<Tenant(id={self.id}, name={self.name}, code={self.code})>"
