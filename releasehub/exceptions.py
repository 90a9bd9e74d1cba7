"""
Domain exceptions.

The HTTP layer maps each kind to a status code; services raise them
synchronously so callers can tell a missing entity from an illegal
transition from malformed input.
"""


class ReleaseHubError(Exception):
    """Base class for errors surfaced to callers of the core services."""

    code = "ERROR"
    status_code = 500

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details


class NotFoundError(ReleaseHubError):
    """Entity does not exist or lies outside the caller's tenant."""

    code = "NOT_FOUND"
    status_code = 404

    @classmethod
    def for_entity(cls, entity_name: str, entity_id) -> "NotFoundError":
        return cls(f"{entity_name} with ID {entity_id} was not found.", entity=entity_name, id=entity_id)


class InvalidStateError(ReleaseHubError):
    """Requested transition or promotion violates the deployment lifecycle."""

    code = "INVALID_STATE"
    status_code = 409


class ValidationError(ReleaseHubError):
    """Malformed input, e.g. a version that belongs to another application."""

    code = "VALIDATION_ERROR"
    status_code = 400


class TenantIsolationError(ReleaseHubError):
    """A data access was attempted without a usable tenant context."""

    code = "TENANT_ISOLATION"
    status_code = 403

    def __init__(self, message: str = "Access denied: Tenant isolation violation.", **details):
        super().__init__(message, **details)


class DeliveryFailure(Exception):
    """
    A webhook endpoint answered with a non-success status.

    Internal to the delivery engine: caught there and recorded on the
    WebhookEvent, never propagated to whoever triggered the delivery.
    """

    def __init__(self, status_code: int, body: str):
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code
        self.body = body
