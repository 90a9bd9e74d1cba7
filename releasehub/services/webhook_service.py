"""
Webhook Service

Delivers deployment events to subscribed endpoints: signed, at-least-once,
retried with exponential backoff by a periodic sweep.

SECURITY: All queries MUST include tenant_id filter.
Every query here goes through TenantScopedRepository.
"""
import json
import hmac
import hashlib
from datetime import datetime, timedelta
from typing import Any

import httpx
from sqlalchemy import and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from releasehub import metrics
from releasehub.clock import Clock, system_clock
from releasehub.config import Settings, settings as default_settings
from releasehub.exceptions import DeliveryFailure, NotFoundError, ValidationError
from releasehub.logging_config import get_logger
from releasehub.models.application import Application
from releasehub.models.webhook import DEFAULT_EVENTS, DeliveryStatus, Webhook, WebhookEvent
from releasehub.repositories.scoped import TenantScopedRepository
from releasehub.tenancy import TenantContext


logger = get_logger(component="webhooks")


def generate_webhook_signature(payload: str, secret: str) -> str:
    """Generate HMAC-SHA256 signature for webhook payload, lower-case hex."""
    return hmac.new(
        secret.encode(),
        payload.encode(),
        hashlib.sha256
    ).hexdigest()


def serialize_payload(payload: Any) -> str:
    """Serialize once; the stored string is exactly what gets signed and sent."""
    return json.dumps(payload, default=str)


def next_retry_time(now: datetime, retry_count: int, base_minutes: int = 1) -> datetime:
    """Exponential backoff: base * 2^retry_count minutes after now."""
    return now + timedelta(minutes=base_minutes * (2 ** retry_count))


def truncate(body: str | None, limit: int) -> str | None:
    if body is None:
        return None
    return body[:limit]


class WebhookDeliveryService:
    """
    Webhook delivery engine for one tenant context.

    Delivery failures never raise out of trigger/deliver/retry_pending; they
    are recorded on the WebhookEvent and picked up by the next sweep.
    """

    def __init__(
        self,
        db: AsyncSession,
        context: TenantContext,
        clock: Clock = system_clock,
        http_client: httpx.AsyncClient | None = None,
        config: Settings = default_settings,
    ):
        self.db = db
        self.context = context
        self.clock = clock
        self.http_client = http_client
        self.config = config
        self.webhooks = TenantScopedRepository(db, Webhook, context, clock)
        self.events = TenantScopedRepository(db, WebhookEvent, context, clock)
        self.applications = TenantScopedRepository(db, Application, context, clock)

    def _for_tenant(self, tenant_id: str) -> "WebhookDeliveryService":
        return WebhookDeliveryService(
            self.db,
            self.context.for_tenant(tenant_id),
            clock=self.clock,
            http_client=self.http_client,
            config=self.config,
        )

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def register_webhook(
        self,
        application_id: int,
        url: str,
        secret: str,
        events: str | None = None,
        max_retries: int | None = None,
    ) -> Webhook:
        """Subscribe an endpoint to an application's deployment events."""
        application = await self.applications.get(application_id)
        if application is None:
            raise NotFoundError.for_entity("Application", application_id)
        if not url.startswith(("http://", "https://")):
            raise ValidationError("Webhook URL must be an absolute http(s) URL", url=url)
        if not secret:
            raise ValidationError("Webhook secret is required")
        if max_retries is None:
            max_retries = self.config.WEBHOOK_DEFAULT_MAX_RETRIES
        if max_retries < 0:
            raise ValidationError("max_retries must not be negative", max_retries=max_retries)

        webhook = Webhook(
            tenant_id=application.tenant_id,
            application_id=application_id,
            url=url,
            secret=secret,
            events=events or DEFAULT_EVENTS,
            is_active=True,
            max_retries=max_retries,
        )
        self.webhooks.add(webhook)
        await self.db.commit()
        await self.db.refresh(webhook)
        logger.info("webhook_registered", webhook_id=webhook.id, application_id=application_id, events=webhook.events)
        return webhook

    async def deactivate_webhook(self, webhook_id: int) -> Webhook:
        """Soft-delete: the subscription stops matching, history is kept."""
        webhook = await self.webhooks.get(webhook_id)
        if webhook is None:
            raise NotFoundError.for_entity("Webhook", webhook_id)
        await self.webhooks.conditional_update(webhook_id, {}, {"is_active": False})
        await self.db.commit()
        await self.db.refresh(webhook)
        logger.info("webhook_deactivated", webhook_id=webhook_id)
        return webhook

    async def list_webhooks(self, application_id: int) -> list[Webhook]:
        return await self.webhooks.find_all(
            Webhook.application_id == application_id,
            order_by=Webhook.id,
        )

    async def delivery_history(self, webhook_id: int, take: int = 50) -> list[WebhookEvent]:
        """Most recent delivery records for a webhook."""
        if not await self.webhooks.exists(webhook_id):
            raise NotFoundError.for_entity("Webhook", webhook_id)
        return await self.events.find_all(
            WebhookEvent.webhook_id == webhook_id,
            order_by=(WebhookEvent.created_at.desc(), WebhookEvent.id.desc()),
            limit=take,
        )

    # ------------------------------------------------------------------
    # Trigger
    # ------------------------------------------------------------------

    async def trigger(self, application_id: int, event_type: str, payload: Any) -> list[int]:
        """
        Record one Pending WebhookEvent per matching active webhook.

        Returns the new event ids; the caller schedules a delivery attempt
        for each of them independently.
        """
        webhooks = await self.webhooks.find_all(
            Webhook.application_id == application_id,
            Webhook.is_active.is_(True),
            order_by=Webhook.id,
        )
        matching = [w for w in webhooks if w.matches(event_type)]
        if not matching:
            logger.debug("no_matching_webhooks", application_id=application_id, event_type=event_type)
            return []

        body = serialize_payload(payload)
        now = self.clock.now()
        created = []
        for webhook in matching:
            event = WebhookEvent(
                tenant_id=webhook.tenant_id,
                webhook_id=webhook.id,
                event_type=event_type,
                payload=body,
                delivery_status=DeliveryStatus.PENDING.value,
                retry_count=0,
            )
            self.events.add(event, now=now)
            created.append(event)
        await self.db.commit()

        ids = [event.id for event in created]
        logger.info(
            "webhook_events_queued",
            application_id=application_id,
            event_type=event_type,
            webhook_event_ids=ids,
        )
        return ids

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def _claim(self, event_id: int, now: datetime) -> bool:
        """
        Take the delivery lease for one event.

        Only one attempt holds the lease; an expired lease (crashed attempt)
        can be taken over. Failed events are only claimable once their
        backoff window has elapsed.
        """
        lease_cutoff = now - timedelta(seconds=self.config.WEBHOOK_CLAIM_LEASE_SECONDS)
        stmt = (
            self.events.update_query()
            .where(
                WebhookEvent.id == event_id,
                WebhookEvent.delivery_status != DeliveryStatus.SENT.value,
                or_(WebhookEvent.claimed_at.is_(None), WebhookEvent.claimed_at < lease_cutoff),
                or_(
                    WebhookEvent.delivery_status != DeliveryStatus.FAILED.value,
                    WebhookEvent.next_retry_at.is_(None),
                    WebhookEvent.next_retry_at <= now,
                ),
            )
            .values(claimed_at=now)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()
        return result.rowcount > 0

    async def _finish(self, event: WebhookEvent, claimed_at: datetime, **values) -> bool:
        """Persist an attempt outcome and release the lease in one write."""
        values["claimed_at"] = None
        updated = await self.events.conditional_update(event.id, {"claimed_at": claimed_at}, values)
        await self.db.commit()
        await self.db.refresh(event)
        if not updated:
            logger.warning("webhook_lease_lost", webhook_event_id=event.id)
        return updated

    async def _post(self, url: str, content: bytes, headers: dict[str, str]) -> httpx.Response:
        if self.http_client is not None:
            return await self.http_client.post(
                url,
                content=content,
                headers=headers,
                timeout=self.config.WEBHOOK_TIMEOUT_SECONDS,
            )
        async with httpx.AsyncClient(timeout=self.config.WEBHOOK_TIMEOUT_SECONDS) as client:
            return await client.post(url, content=content, headers=headers)

    async def _send(self, webhook: Webhook, event: WebhookEvent) -> httpx.Response:
        signature = generate_webhook_signature(event.payload, webhook.secret)
        headers = {
            "Content-Type": "application/json",
            "X-Webhook-Signature": signature,
            "X-Webhook-Event": event.event_type,
            "X-Webhook-Id": str(event.id),
        }
        response = await self._post(webhook.url, event.payload.encode(), headers)
        if not response.is_success:
            raise DeliveryFailure(response.status_code, response.text)
        return response

    async def deliver(self, webhook_event_id: int) -> WebhookEvent | None:
        """
        Make one delivery attempt for a WebhookEvent.

        Sent events are left alone. Never raises: failures are persisted
        with the next retry time, or as permanent once retries run out.
        """
        log = logger.bind(webhook_event_id=webhook_event_id, tenant_id=self.context.tenant_id)
        event = await self.events.get(webhook_event_id)
        if event is None:
            log.warning("webhook_event_not_found")
            return None
        if event.delivery_status == DeliveryStatus.SENT.value:
            log.debug("webhook_event_already_sent")
            return event

        claimed_at = self.clock.now()
        if not await self._claim(event.id, claimed_at):
            log.info("webhook_event_not_claimable")
            await self.db.refresh(event)
            return event
        await self.db.refresh(event)

        webhook = await self.webhooks.get(event.webhook_id)
        if webhook is None or not webhook.is_active:
            log.warning("webhook_missing_or_inactive", webhook_id=event.webhook_id)
            await self._finish(
                event,
                claimed_at,
                delivery_status=DeliveryStatus.FAILED.value,
                next_retry_at=None,
                response_body="Webhook not found or inactive",
            )
            metrics.track_webhook_failed(event.tenant_id)
            return event

        log = log.bind(webhook_id=webhook.id, url=webhook.url)

        if event.retry_count >= webhook.max_retries:
            log.warning("webhook_max_retries_exceeded", max_retries=webhook.max_retries)
            await self._finish(
                event,
                claimed_at,
                delivery_status=DeliveryStatus.FAILED.value,
                next_retry_at=None,
            )
            metrics.track_webhook_failed(event.tenant_id)
            return event

        limit = self.config.WEBHOOK_RESPONSE_BODY_LIMIT
        try:
            response = await self._send(webhook, event)
        except DeliveryFailure as e:
            return await self._record_failure(
                event, webhook, claimed_at, log,
                response_status_code=e.status_code,
                response_body=truncate(e.body, limit),
                error=str(e),
            )
        except Exception as e:
            return await self._record_failure(
                event, webhook, claimed_at, log,
                response_status_code=None,
                response_body=truncate(f"Exception: {e}", limit),
                error=repr(e),
            )

        await self._finish(
            event,
            claimed_at,
            delivery_status=DeliveryStatus.SENT.value,
            response_status_code=response.status_code,
            response_body=truncate(response.text, limit),
            delivered_at=self.clock.now(),
            next_retry_at=None,
        )
        metrics.track_webhook_sent(event.tenant_id, "sent")
        log.info("webhook_delivered", status_code=response.status_code)
        return event

    async def _record_failure(
        self,
        event: WebhookEvent,
        webhook: Webhook,
        claimed_at: datetime,
        log,
        response_status_code: int | None,
        response_body: str | None,
        error: str,
    ) -> WebhookEvent:
        retry_count = event.retry_count + 1
        now = self.clock.now()
        if retry_count < webhook.max_retries:
            next_retry_at = next_retry_time(now, retry_count, self.config.WEBHOOK_BACKOFF_BASE_MINUTES)
        else:
            next_retry_at = None

        await self._finish(
            event,
            claimed_at,
            delivery_status=DeliveryStatus.FAILED.value,
            retry_count=retry_count,
            response_status_code=response_status_code,
            response_body=response_body,
            next_retry_at=next_retry_at,
        )
        metrics.track_webhook_sent(event.tenant_id, "failed")

        if next_retry_at is None:
            metrics.track_webhook_failed(event.tenant_id)
            log.error(
                "webhook_failed_permanently",
                retry_count=retry_count,
                max_retries=webhook.max_retries,
                error=error,
            )
        else:
            log.warning(
                "webhook_retry_scheduled",
                retry_count=retry_count,
                max_retries=webhook.max_retries,
                next_retry_at=next_retry_at.isoformat(),
                error=error,
            )
        return event

    # ------------------------------------------------------------------
    # Retry sweep
    # ------------------------------------------------------------------

    async def due_for_retry(self, limit: int | None = None) -> list[WebhookEvent]:
        """
        Events the sweep should re-drive.

        Failed events whose backoff has elapsed, plus Pending events whose
        first attempt never finished, skipping anything under a live lease.
        """
        now = self.clock.now()
        lease_cutoff = now - timedelta(seconds=self.config.WEBHOOK_CLAIM_LEASE_SECONDS)
        return await self.events.find_all(
            or_(
                and_(
                    WebhookEvent.delivery_status == DeliveryStatus.FAILED.value,
                    WebhookEvent.next_retry_at.is_not(None),
                    WebhookEvent.next_retry_at <= now,
                ),
                and_(
                    WebhookEvent.delivery_status == DeliveryStatus.PENDING.value,
                    WebhookEvent.created_at <= lease_cutoff,
                ),
            ),
            or_(WebhookEvent.claimed_at.is_(None), WebhookEvent.claimed_at < lease_cutoff),
            order_by=(WebhookEvent.next_retry_at, WebhookEvent.id),
            limit=limit or self.config.WEBHOOK_SWEEP_BATCH_SIZE,
        )

    async def retry_pending(self) -> int:
        """
        Re-attempt every event due for retry.

        With a cross-tenant context this sweeps all tenants, re-establishing
        each event's own tenant context before delivering it.
        """
        due = [(event.id, event.tenant_id) for event in await self.due_for_retry()]
        metrics.track_retry_sweep()
        logger.info("webhook_retry_sweep", count=len(due), cross_tenant=self.context.cross_tenant)

        for event_id, tenant_id in due:
            engine = self._for_tenant(tenant_id) if self.context.cross_tenant else self
            await engine.deliver(event_id)
        return len(due)


