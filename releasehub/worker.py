"""
ARQ Background Worker for ReleaseHub.

Runs webhook work handed off by the API and the periodic retry sweep.
Every job re-establishes its tenant context from the task message it was
given; nothing is inherited from whoever enqueued it.

Run with: arq releasehub.worker.WorkerSettings
"""
import asyncio

import httpx
import structlog
from arq import cron
from arq.connections import RedisSettings

from releasehub import metrics
from releasehub.clock import Clock, system_clock
from releasehub.config import settings
from releasehub.database import AsyncSessionLocal
from releasehub.logging_config import get_logger
from releasehub.sentry_config import capture_exception, configure_sentry
from releasehub.services.dispatch import (
    DELIVER_JOB,
    DELIVER_WEBHOOK_EVENT,
    run_delivery,
    run_deployment_event,
)
from releasehub.services.webhook_service import WebhookDeliveryService
from releasehub.tenancy import TenantContext, TenantTask


logger = get_logger(component="worker")


def _session_factory(ctx: dict):
    return ctx.get("session_factory") or AsyncSessionLocal


def _clock(ctx: dict) -> Clock:
    return ctx.get("clock") or system_clock


async def trigger_deployment_webhooks(ctx: dict, message: dict) -> dict:
    """Create delivery records for a deployment event and enqueue one delivery job per record."""
    structlog.contextvars.clear_contextvars()
    task = TenantTask.from_message(message)
    try:
        ids = await run_deployment_event(
            task,
            _session_factory(ctx),
            clock=_clock(ctx),
            http_client=ctx.get("http_client"),
        )
    except Exception:
        logger.exception("webhook_trigger_failed", tenant_id=task.tenant_id)
        capture_exception()
        raise

    for webhook_event_id in ids:
        follow_up = task.follow_up(DELIVER_WEBHOOK_EVENT, webhook_event_id=webhook_event_id)
        await ctx["redis"].enqueue_job(DELIVER_JOB, follow_up.to_message())

    return {"status": "queued", "webhook_event_ids": ids}


async def deliver_webhook_event(ctx: dict, message: dict) -> dict:
    """One delivery attempt. Failures are recorded on the event, not raised."""
    structlog.contextvars.clear_contextvars()
    task = TenantTask.from_message(message)
    try:
        event = await run_delivery(
            task, _session_factory(ctx), clock=_clock(ctx), http_client=ctx.get("http_client")
        )
    except Exception:
        # The lease expires and the retry sweep picks the event up again
        logger.exception("webhook_delivery_crashed", tenant_id=task.tenant_id, **task.payload)
        capture_exception()
        raise

    if event is None:
        return {"status": "missing", "webhook_event_id": task.payload["webhook_event_id"]}
    return {"status": event.delivery_status, "webhook_event_id": event.id, "retry_count": event.retry_count}


async def retry_pending_webhooks(ctx: dict) -> dict:
    """
    Cron: hand each delivery due for retry to its own job, across all tenants.

    Attempts run as separate deliver_webhook_event jobs so a hung endpoint
    only holds up its own attempt.
    """
    structlog.contextvars.clear_contextvars()
    operator = TenantContext.for_operator()
    try:
        async with _session_factory(ctx)() as db:
            engine = WebhookDeliveryService(db, operator, clock=_clock(ctx), http_client=ctx.get("http_client"))
            due = [(event.id, event.tenant_id) for event in await engine.due_for_retry()]

        for webhook_event_id, tenant_id in due:
            task = TenantTask(
                kind=DELIVER_WEBHOOK_EVENT,
                tenant_id=tenant_id,
                user_id=operator.user_id,
                payload={"webhook_event_id": webhook_event_id},
            )
            await ctx["redis"].enqueue_job(DELIVER_JOB, task.to_message())
    except Exception:
        logger.exception("webhook_retry_sweep_failed")
        capture_exception()
        raise

    metrics.track_retry_sweep()
    logger.info("webhook_retry_sweep_enqueued", count=len(due))
    return {"status": "queued", "webhook_event_ids": [webhook_event_id for webhook_event_id, _ in due]}


async def startup(ctx: dict):
    configure_sentry()
    ctx["http_client"] = httpx.AsyncClient(timeout=settings.WEBHOOK_TIMEOUT_SECONDS)
    logger.info("worker_started", redis=settings.REDIS_URL)


async def shutdown(ctx: dict):
    client = ctx.pop("http_client", None)
    if client is not None:
        await client.aclose()
    logger.info("worker_stopped")


# Register functions for ARQ
ARQ_FUNCTIONS = [
    trigger_deployment_webhooks,
    deliver_webhook_event,
    retry_pending_webhooks,
]


def sweep_minutes(interval: int) -> set[int]:
    """Minutes of the hour at which the retry sweep runs."""
    interval = max(1, min(interval, 60))
    return set(range(0, 60, interval))


async def main():
    """Run the worker using arq cli."""
    print("Use: arq releasehub.worker.WorkerSettings")
    print(f"Redis: {settings.REDIS_URL}")


class WorkerSettings:
    """Settings for ARQ worker - use with 'arq releasehub.worker.WorkerSettings'"""
    redis_settings = RedisSettings.from_dsn(settings.REDIS_URL)
    job_timeout = 300
    # Deliveries retry through the sweep, not through ARQ
    max_tries = 1
    functions = ARQ_FUNCTIONS
    cron_jobs = [
        cron(
            retry_pending_webhooks,
            minute=sweep_minutes(settings.WEBHOOK_RETRY_SWEEP_MINUTES),
            unique=True,
        ),
    ]
    on_startup = startup
    on_shutdown = shutdown


if __name__ == "__main__":
    asyncio.run(main())
