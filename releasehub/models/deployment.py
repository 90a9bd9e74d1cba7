"""
Deployment models.

SECURITY: All queries MUST include tenant_id filter.
Go through TenantScopedRepository rather than selecting these tables directly.
"""
import enum
from datetime import datetime
from sqlalchemy import String, Text, Integer, BigInteger, DateTime, ForeignKey, Index, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column
from releasehub.models.base import Base, TenantScopedMixin, enum_values


class DeploymentStatus(str, enum.Enum):
    """Deployment status enum."""
    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    SUCCESS = "Success"
    FAILED = "Failed"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    DeploymentStatus.SUCCESS,
    DeploymentStatus.FAILED,
    DeploymentStatus.CANCELLED,
})


class DeploymentEventType(str, enum.Enum):
    """Kinds of entries in a deployment's audit trail."""
    CREATED = "Created"
    CONFIRMED = "Confirmed"
    STATUS_CHANGED = "StatusChanged"
    PROMOTED = "Promoted"
    PROMOTED_TO = "PromotedTo"
    DELETED = "Deleted"


class Deployment(Base, TenantScopedMixin):
    """
    One attempt to run a Version in an Environment.

    Status only changes through DeploymentLifecycleService; completed_at and
    duration_ms are populated exactly when the status is terminal.
    """
    __tablename__ = "deployments"
    __table_args__ = (
        Index("ix_deployments_tenant_status", "tenant_id", "status"),
    )

    application_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("applications.id"),
        nullable=False,
        index=True
    )
    version_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("versions.id"),
        nullable=False,
        index=True
    )
    environment_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("environments.id"),
        nullable=False,
        index=True
    )
    status: Mapped[DeploymentStatus] = mapped_column(
        SQLEnum(DeploymentStatus, native_enum=False, values_callable=enum_values),
        nullable=False,
        default=DeploymentStatus.PENDING
    )
    deployed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deployed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self):
        return f"<Deployment(id={self.id}, environment_id={self.environment_id}, status={self.status})>"


class DeploymentEvent(Base, TenantScopedMixin):
    """
    Append-only audit entry for a deployment.

    Rows are inserted and never updated or deleted.
    """
    __tablename__ = "deployment_events"

    deployment_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("deployments.id"),
        nullable=False,
        index=True
    )
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    event_metadata: Mapped[str | None] = mapped_column("metadata", Text, nullable=True)

    def __repr__(self):
        return f"<DeploymentEvent(id={self.id}, deployment_id={self.deployment_id}, type={self.event_type})>"
