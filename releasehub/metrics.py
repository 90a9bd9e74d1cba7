"""
Prometheus metrics.

Counters are updated by the services and exposed by routes/metrics.py.
"""
from prometheus_client import Counter, Histogram

# ============================================
# HTTP Request Metrics
# ============================================

http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

http_request_duration = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# ============================================
# Business Metrics - Deployments
# ============================================

deployment_transitions = Counter(
    'deployment_transitions_total',
    'Deployment status transitions applied',
    ['tenant_id', 'status']
)

deployment_transitions_rejected = Counter(
    'deployment_transitions_rejected_total',
    'Deployment transitions rejected by the lifecycle rules',
    ['tenant_id']
)

deployment_promotions = Counter(
    'deployment_promotions_total',
    'Deployments promoted to the next environment',
    ['tenant_id']
)

# ============================================
# Webhook Metrics
# ============================================

webhooks_sent = Counter(
    'webhooks_sent_total',
    'Total webhook delivery attempts',
    ['tenant_id', 'status']
)

webhooks_failed = Counter(
    'webhooks_failed_total',
    'Webhook events that exhausted their retries',
    ['tenant_id']
)

webhook_retry_sweeps = Counter(
    'webhook_retry_sweeps_total',
    'Retry sweeps run'
)


def track_request(method: str, endpoint: str, status: int, duration_seconds: float):
    """
    Record HTTP request metrics.

    Call this after each request.
    """
    http_requests_total.labels(
        method=method,
        endpoint=endpoint,
        status=status
    ).inc()

    http_request_duration.labels(
        method=method,
        endpoint=endpoint
    ).observe(duration_seconds)


def track_transition(tenant_id: str, status: str):
    deployment_transitions.labels(tenant_id=tenant_id, status=status).inc()


def track_transition_rejected(tenant_id: str):
    deployment_transitions_rejected.labels(tenant_id=tenant_id).inc()


def track_promotion(tenant_id: str):
    deployment_promotions.labels(tenant_id=tenant_id).inc()


def track_webhook_sent(tenant_id: str, status: str):
    """Record a webhook delivery attempt and its outcome."""
    webhooks_sent.labels(tenant_id=tenant_id, status=status).inc()


def track_webhook_failed(tenant_id: str):
    """Record a webhook event that will not be retried."""
    webhooks_failed.labels(tenant_id=tenant_id).inc()


def track_retry_sweep():
    webhook_retry_sweeps.inc()
