"""
Sentry configuration for error tracking.

Captures unhandled exceptions with tenant/user context.
"""
import sentry_sdk
import structlog
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from releasehub.config import settings
from releasehub.logging_config import get_logger


logger = get_logger(component="sentry")


def configure_sentry():
    """
    Initialize Sentry with FastAPI and SQLAlchemy integrations.

    Requires SENTRY_DSN environment variable to be set.
    """
    dsn = settings.SENTRY_DSN

    if not dsn:
        logger.warning("sentry_disabled", reason="SENTRY_DSN not set")
        return

    sentry_sdk.init(
        dsn=dsn,
        integrations=[
            FastApiIntegration(),
            SqlalchemyIntegration(),
        ],
        before_send=add_context,
        # Sample rate: capture 10% of transactions for performance monitoring
        traces_sample_rate=0.1,
        environment=settings.ENVIRONMENT,
        release=settings.APP_VERSION,
    )

    logger.info("sentry_initialized", environment=settings.ENVIRONMENT)


def add_context(event, hint):
    """
    Tag error events with the tenant and user of the unit of work.

    The values come from the structlog context bound by the request
    middleware or by the background job that re-established the tenant.
    """
    bound = structlog.contextvars.get_contextvars()
    tags = event.setdefault("tags", {})
    if bound.get("tenant_id"):
        tags["tenant_id"] = bound["tenant_id"]
    if bound.get("user_id"):
        event.setdefault("user", {})["id"] = bound["user_id"]
    return event


def capture_exception(exc_info=None):
    """
    Capture an exception to Sentry.

    Usage:
        try:
            # some code
        except Exception:
            capture_exception()
    """
    if sentry_sdk.get_client().is_active():
        sentry_sdk.capture_exception(exc_info)
