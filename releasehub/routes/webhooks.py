"""
Webhook API routes.

Provides endpoints for registering webhook URLs per application and
inspecting their delivery history.
"""
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel

from releasehub.clock import as_utc
from releasehub.dependencies.auth import require_admin, require_platform_admin
from releasehub.dependencies.services import get_webhook_service
from releasehub.models.webhook import Webhook, WebhookEvent
from releasehub.services.webhook_service import WebhookDeliveryService


router = APIRouter(prefix="/api", tags=["webhooks"])


class RegisterWebhookRequest(BaseModel):
    """Request model for registering a webhook."""
    url: str
    secret: str
    events: str | None = None  # comma separated, "*" for all
    max_retries: int | None = None


class WebhookResponse(BaseModel):
    """Webhook without its secret."""
    id: int
    application_id: int
    url: str
    events: str
    is_active: bool
    max_retries: int


class WebhookDeliveryResponse(BaseModel):
    id: int
    event_type: str
    delivery_status: str
    response_status_code: int | None = None
    response_body: str | None = None
    retry_count: int
    delivered_at: str | None = None
    next_retry_at: str | None = None
    created_at: str | None = None


def _iso(value):
    value = as_utc(value)
    return value.isoformat() if value else None


def webhook_to_response(webhook: Webhook) -> WebhookResponse:
    return WebhookResponse(
        id=webhook.id,
        application_id=webhook.application_id,
        url=webhook.url,
        events=webhook.events,
        is_active=webhook.is_active,
        max_retries=webhook.max_retries,
    )


def delivery_to_response(event: WebhookEvent) -> WebhookDeliveryResponse:
    return WebhookDeliveryResponse(
        id=event.id,
        event_type=event.event_type,
        delivery_status=event.delivery_status,
        response_status_code=event.response_status_code,
        response_body=event.response_body,
        retry_count=event.retry_count,
        delivered_at=_iso(event.delivered_at),
        next_retry_at=_iso(event.next_retry_at),
        created_at=_iso(event.created_at),
    )


@router.get("/applications/{application_id}/webhooks", response_model=list[WebhookResponse])
async def list_webhooks(
    application_id: int,
    service: WebhookDeliveryService = Depends(get_webhook_service),
):
    webhooks = await service.list_webhooks(application_id)
    return [webhook_to_response(w) for w in webhooks]


@router.post(
    "/applications/{application_id}/webhooks",
    response_model=WebhookResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin)],
)
async def register_webhook(
    application_id: int,
    request: RegisterWebhookRequest,
    service: WebhookDeliveryService = Depends(get_webhook_service),
):
    """
    Register a webhook for an application.

    The webhook will receive signed POST requests for the deployment events
    it subscribes to (deployment.completed by default).
    """
    webhook = await service.register_webhook(
        application_id,
        request.url,
        request.secret,
        events=request.events,
        max_retries=request.max_retries,
    )
    return webhook_to_response(webhook)


@router.delete("/webhooks/{webhook_id}", response_model=WebhookResponse, dependencies=[Depends(require_admin)])
async def deactivate_webhook(
    webhook_id: int,
    service: WebhookDeliveryService = Depends(get_webhook_service),
):
    """Deactivate a webhook. Its delivery history is kept."""
    webhook = await service.deactivate_webhook(webhook_id)
    return webhook_to_response(webhook)


@router.get("/webhooks/{webhook_id}/deliveries", response_model=list[WebhookDeliveryResponse])
async def delivery_history(
    webhook_id: int,
    take: int = Query(50, ge=1, le=500),
    service: WebhookDeliveryService = Depends(get_webhook_service),
):
    events = await service.delivery_history(webhook_id, take=take)
    return [delivery_to_response(e) for e in events]


@router.post("/webhooks/retry", response_model=dict, dependencies=[Depends(require_platform_admin)])
async def retry_webhooks(
    service: WebhookDeliveryService = Depends(get_webhook_service),
):
    """Run the retry sweep now, across all tenants (platform admin tokens are cross-tenant)."""
    retried = await service.retry_pending()
    return {"retried": retried}
