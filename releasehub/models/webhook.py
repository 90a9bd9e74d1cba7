"""
Webhook Models

Webhook subscriptions and the ledger of outbound delivery attempts.
"""
import enum
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text
from releasehub.models.base import Base, TenantScopedMixin


WILDCARD_EVENT = "*"
DEFAULT_EVENTS = "deployment.completed"


class DeliveryStatus(str, enum.Enum):
    """Webhook delivery status enum."""
    PENDING = "Pending"
    SENT = "Sent"
    FAILED = "Failed"


class Webhook(Base, TenantScopedMixin):
    """
    Application-scoped subscription to deployment events.

    "Deleting" a webhook clears is_active so its delivery history stays
    attributable.
    """
    __tablename__ = "webhooks"
    __table_args__ = (
        Index("ix_webhooks_tenant_active", "tenant_id", "is_active", "is_deleted"),
    )

    application_id = Column(Integer, ForeignKey("applications.id"), nullable=False, index=True)
    url = Column(String(2048), nullable=False)
    secret = Column(String(255), nullable=False)
    events = Column(String(1000), nullable=False, default=DEFAULT_EVENTS)  # comma separated, "*" for all
    is_active = Column(Boolean, nullable=False, default=True)
    max_retries = Column(Integer, nullable=False, default=5)

    def subscribed_events(self) -> list[str]:
        return [e.strip() for e in (self.events or "").split(",") if e.strip()]

    def matches(self, event_type: str) -> bool:
        subscribed = self.subscribed_events()
        return WILDCARD_EVENT in subscribed or event_type in subscribed

    def __repr__(self):
        return f"<Webhook(id={self.id}, url={self.url}, active={self.is_active})>"


class WebhookEvent(Base, TenantScopedMixin):
    """
    One delivery ledger entry: a payload bound for one webhook.

    Mutated in place by delivery attempts, never deleted. claimed_at is the
    lease held by the attempt currently in flight.
    """
    __tablename__ = "webhook_events"
    __table_args__ = (
        Index("ix_webhook_events_sweep", "delivery_status", "next_retry_at"),
    )

    webhook_id = Column(Integer, ForeignKey("webhooks.id"), nullable=False, index=True)
    event_type = Column(String(100), nullable=False)
    payload = Column(Text, nullable=False)
    delivery_status = Column(String(20), nullable=False, default=DeliveryStatus.PENDING.value)
    response_status_code = Column(Integer, nullable=True)
    response_body = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    next_retry_at = Column(DateTime(timezone=True), nullable=True)
    claimed_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<WebhookEvent(id={self.id}, webhook_id={self.webhook_id}, status={self.delivery_status})>"
