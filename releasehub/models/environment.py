"""
Environment model.

Environments are tenant-level and ordered; promotion always moves a
version to the environment with the next higher order.
"""
from sqlalchemy import String, Text, Integer, Index, text
from sqlalchemy.orm import Mapped, mapped_column
from releasehub.models.base import Base, TenantScopedMixin


class Environment(Base, TenantScopedMixin):
    """Deployment target such as dev, staging or production."""
    __tablename__ = "environments"
    __table_args__ = (
        # One live environment per tier; soft-deleted rows free their order
        Index(
            "ix_environments_tenant_order",
            "tenant_id",
            "order",
            unique=True,
            postgresql_where=text("is_deleted = false"),
            sqlite_where=text("is_deleted = 0"),
        ),
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    order: Mapped[int] = mapped_column("order", Integer, nullable=False, default=0)
    config: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self):
        return f"<Environment(id={self.id}, name={self.name}, order={self.order})>"
