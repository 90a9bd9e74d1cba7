"""
Hand-off of webhook work to background execution.

The lifecycle manager never delivers webhooks itself. It captures its
tenant context into a TenantTask and gives it to a dispatcher; whichever
unit of work runs the task rebuilds the context from the message. Only the
message crosses the boundary.
"""
import asyncio
import contextvars
from typing import Protocol

import httpx
from arq import ArqRedis, create_pool
from arq.connections import RedisSettings
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from releasehub.clock import Clock, system_clock
from releasehub.config import Settings, settings as default_settings
from releasehub.logging_config import get_logger
from releasehub.sentry_config import capture_exception
from releasehub.services.webhook_service import WebhookDeliveryService
from releasehub.tenancy import TenantTask


logger = get_logger(component="dispatch")

DEPLOYMENT_EVENT = "deployment_event"
DELIVER_WEBHOOK_EVENT = "deliver_webhook_event"

# ARQ job names, see releasehub/worker.py
TRIGGER_JOB = "trigger_deployment_webhooks"
DELIVER_JOB = "deliver_webhook_event"


class WebhookDispatcher(Protocol):
    async def dispatch(self, task: TenantTask) -> None:
        ...


async def run_deployment_event(
    task: TenantTask,
    session_factory: async_sessionmaker[AsyncSession],
    clock: Clock = system_clock,
    http_client: httpx.AsyncClient | None = None,
    config: Settings = default_settings,
) -> list[int]:
    """Create delivery records for one deployment event under the task's tenant."""
    context = task.context()
    context.bind_logging()
    async with session_factory() as db:
        engine = WebhookDeliveryService(db, context, clock=clock, http_client=http_client, config=config)
        return await engine.trigger(
            task.payload["application_id"],
            task.payload["event_type"],
            task.payload["payload"],
        )


async def run_delivery(
    task: TenantTask,
    session_factory: async_sessionmaker[AsyncSession],
    clock: Clock = system_clock,
    http_client: httpx.AsyncClient | None = None,
    config: Settings = default_settings,
):
    """One delivery attempt in its own session under the task's tenant."""
    context = task.context()
    context.bind_logging()
    async with session_factory() as db:
        engine = WebhookDeliveryService(db, context, clock=clock, http_client=http_client, config=config)
        return await engine.deliver(task.payload["webhook_event_id"])


class InProcessDispatcher:
    """
    Runs webhook work as asyncio tasks on the current event loop.

    Each task starts from an empty contextvars.Context, so the only tenant
    identity it has is the one in the message.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = system_clock,
        http_client: httpx.AsyncClient | None = None,
        config: Settings = default_settings,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.http_client = http_client
        self.config = config
        self._tasks: set[asyncio.Task] = set()

    async def dispatch(self, task: TenantTask) -> None:
        message = task.to_message()
        self._spawn(self._run_event(message))

    def _spawn(self, coro) -> asyncio.Task:
        background = asyncio.create_task(coro, context=contextvars.Context())
        self._tasks.add(background)
        background.add_done_callback(self._tasks.discard)
        return background

    async def _run_event(self, message: dict) -> None:
        task = TenantTask.from_message(message)
        try:
            ids = await run_deployment_event(
                task, self.session_factory, self.clock, self.http_client, self.config
            )
        except Exception:
            logger.exception("webhook_trigger_failed", tenant_id=task.tenant_id, kind=task.kind)
            capture_exception()
            return
        # Deliveries to different webhooks run independently of each other
        for webhook_event_id in ids:
            follow_up = task.follow_up(DELIVER_WEBHOOK_EVENT, webhook_event_id=webhook_event_id)
            self._spawn(self._run_delivery(follow_up.to_message()))

    async def _run_delivery(self, message: dict) -> None:
        task = TenantTask.from_message(message)
        try:
            await run_delivery(task, self.session_factory, self.clock, self.http_client, self.config)
        except Exception:
            logger.exception("webhook_delivery_crashed", tenant_id=task.tenant_id, **task.payload)
            capture_exception()

    async def drain(self) -> None:
        """Wait for all outstanding work, including deliveries it spawns."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class ArqDispatcher:
    """Enqueues webhook work on the ARQ Redis queue."""

    def __init__(self, redis_settings: RedisSettings | None = None):
        self.redis_settings = redis_settings or RedisSettings.from_dsn(default_settings.REDIS_URL)
        self._pool: ArqRedis | None = None

    async def _get_pool(self) -> ArqRedis:
        if self._pool is None:
            self._pool = await create_pool(self.redis_settings)
        return self._pool

    async def dispatch(self, task: TenantTask) -> None:
        pool = await self._get_pool()
        job = await pool.enqueue_job(TRIGGER_JOB, task.to_message())
        logger.info(
            "webhook_trigger_enqueued",
            job_id=job.job_id if job else None,
            tenant_id=task.tenant_id,
            event_type=task.payload.get("event_type"),
        )

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.aclose()
            self._pool = None


_dispatcher: WebhookDispatcher | None = None


def get_dispatcher() -> WebhookDispatcher:
    """Process-wide dispatcher chosen by WEBHOOK_DISPATCH_MODE."""
    global _dispatcher
    if _dispatcher is None:
        if default_settings.WEBHOOK_DISPATCH_MODE == "inprocess":
            from releasehub.database import AsyncSessionLocal
            _dispatcher = InProcessDispatcher(AsyncSessionLocal)
        else:
            _dispatcher = ArqDispatcher()
    return _dispatcher
