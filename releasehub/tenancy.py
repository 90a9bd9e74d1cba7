"""
Tenant context for a unit of work.

A TenantContext is established once per inbound request (from the bearer
token) and handed to repositories and services explicitly. Work that
outlives the request is described by a TenantTask, captured before the
hand-off and turned back into a TenantContext by whoever executes it.
Nothing here relies on ambient state crossing a task boundary.
"""
from dataclasses import dataclass, field
from typing import Any

import structlog

from releasehub.exceptions import TenantIsolationError


SYSTEM_USER = "system"
PLATFORM_ADMIN_ROLE = "platform_admin"


@dataclass(frozen=True)
class TenantContext:
    """Identity of the tenant and acting user for one unit of work."""

    tenant_id: str
    user_id: str = SYSTEM_USER
    cross_tenant: bool = False

    def __post_init__(self):
        if not self.cross_tenant and not self.tenant_id:
            raise TenantIsolationError("Tenant context requires a tenant id")

    @classmethod
    def for_operator(cls, user_id: str = SYSTEM_USER) -> "TenantContext":
        """Cross-tenant context for platform-level administration."""
        return cls(tenant_id="", user_id=user_id, cross_tenant=True)

    @classmethod
    def from_claims(cls, tenant_id: str, user_id: str, role: str | None = None) -> "TenantContext":
        if role == PLATFORM_ADMIN_ROLE:
            return cls(tenant_id=tenant_id or "", user_id=user_id, cross_tenant=True)
        return cls(tenant_id=tenant_id, user_id=user_id)

    def for_tenant(self, tenant_id: str) -> "TenantContext":
        """Narrow to one tenant, keeping the acting user."""
        return TenantContext(tenant_id=tenant_id, user_id=self.user_id)

    def task(self, kind: str, **payload) -> "TenantTask":
        """Capture this context into a message for background execution."""
        if self.cross_tenant:
            raise TenantIsolationError("Background work must be scoped to a single tenant")
        return TenantTask(kind=kind, tenant_id=self.tenant_id, user_id=self.user_id, payload=payload)

    def bind_logging(self) -> None:
        structlog.contextvars.bind_contextvars(
            tenant_id=self.tenant_id or None,
            user_id=self.user_id,
        )


@dataclass(frozen=True)
class TenantTask:
    """
    Serializable unit of background work carrying its own tenant identity.

    The payload must be JSON-compatible so the task can travel through a
    queue unchanged.
    """

    kind: str
    tenant_id: str
    user_id: str
    payload: dict[str, Any] = field(default_factory=dict)

    def context(self) -> TenantContext:
        """Re-establish the originating tenant context."""
        return TenantContext(tenant_id=self.tenant_id, user_id=self.user_id)

    def follow_up(self, kind: str, **payload) -> "TenantTask":
        """A further task on behalf of the same tenant and user."""
        return TenantTask(kind=kind, tenant_id=self.tenant_id, user_id=self.user_id, payload=payload)

    def to_message(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "payload": self.payload,
        }

    @classmethod
    def from_message(cls, message: dict[str, Any]) -> "TenantTask":
        try:
            return cls(
                kind=message["kind"],
                tenant_id=message["tenant_id"],
                user_id=message.get("user_id") or SYSTEM_USER,
                payload=dict(message.get("payload") or {}),
            )
        except KeyError as e:
            raise TenantIsolationError(f"Task message is missing {e.args[0]}") from e
