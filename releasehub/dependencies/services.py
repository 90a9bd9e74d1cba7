"""
Service dependencies for FastAPI.

Each request gets services bound to its own session and TenantContext.
Tests override get_db, get_clock and get_webhook_dispatcher.
"""
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from releasehub.clock import Clock, system_clock
from releasehub.database import get_db
from releasehub.dependencies.auth import get_tenant_context
from releasehub.services.deployment_service import DeploymentLifecycleService
from releasehub.services.dispatch import WebhookDispatcher, get_dispatcher
from releasehub.services.webhook_service import WebhookDeliveryService
from releasehub.tenancy import TenantContext


def get_clock() -> Clock:
    return system_clock


def get_webhook_dispatcher() -> WebhookDispatcher:
    return get_dispatcher()


async def get_deployment_service(
    db: AsyncSession = Depends(get_db),
    context: TenantContext = Depends(get_tenant_context),
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
    clock: Clock = Depends(get_clock),
) -> DeploymentLifecycleService:
    return DeploymentLifecycleService(db, context, dispatcher, clock)


async def get_webhook_service(
    db: AsyncSession = Depends(get_db),
    context: TenantContext = Depends(get_tenant_context),
    clock: Clock = Depends(get_clock),
) -> WebhookDeliveryService:
    return WebhookDeliveryService(db, context, clock)
