"""
Deployment lifecycle service.

Owns every status change of a Deployment: creation, confirmation, status
updates and promotion to the next environment. Each change is a conditional
UPDATE on the status that was read, followed by an audit event and a webhook
hand-off.

SECURITY: All queries MUST include tenant_id filter.
Every query here goes through TenantScopedRepository.
"""
import json
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from releasehub import metrics
from releasehub.clock import Clock, as_utc, system_clock
from releasehub.exceptions import InvalidStateError, NotFoundError, ValidationError
from releasehub.logging_config import get_logger
from releasehub.models.application import Application, Version
from releasehub.models.deployment import (
    Deployment,
    DeploymentEvent,
    DeploymentEventType,
    DeploymentStatus,
)
from releasehub.models.environment import Environment
from releasehub.repositories.scoped import scoped
from releasehub.sentry_config import capture_exception
from releasehub.services.dispatch import DEPLOYMENT_EVENT, WebhookDispatcher
from releasehub.services.transitions import parse_status, resolve_transition
from releasehub.tenancy import TenantContext


logger = get_logger(component="deployments")

PENDING_EVENT = "deployment.pending"
PROMOTED_EVENT = "deployment.promoted"
COMPLETED_EVENT = "deployment.completed"


def status_event_type(status: DeploymentStatus) -> str:
    """deployment.inprogress, deployment.success, ..."""
    return f"deployment.{status.value.lower()}"


def _iso(value: datetime | None) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value else None


def deployment_payload(deployment: Deployment, event_type: str, occurred_at: datetime) -> dict[str, Any]:
    """JSON-compatible webhook body describing a deployment."""
    return {
        "event": event_type,
        "occurred_at": _iso(occurred_at),
        "tenant_id": deployment.tenant_id,
        "deployment": {
            "id": deployment.external_id,
            "application_id": deployment.application_id,
            "version_id": deployment.version_id,
            "environment_id": deployment.environment_id,
            "status": deployment.status.value,
            "deployed_at": _iso(deployment.deployed_at),
            "deployed_by": deployment.deployed_by,
            "completed_at": _iso(deployment.completed_at),
            "duration_ms": deployment.duration_ms,
            "notes": deployment.notes,
        },
    }


class DeploymentLifecycleService:
    """State machine for deployments within one tenant context."""

    def __init__(
        self,
        db: AsyncSession,
        context: TenantContext,
        dispatcher: WebhookDispatcher,
        clock: Clock = system_clock,
    ):
        self.db = db
        self.context = context
        self.dispatcher = dispatcher
        self.clock = clock
        (
            self.deployments,
            self.events,
            self.applications,
            self.versions,
            self.environments,
        ) = scoped(db, context, clock, Deployment, DeploymentEvent, Application, Version, Environment)

    async def _require(self, repo, entity_id: int, entity_name: str):
        entity = await repo.get(entity_id)
        if entity is None:
            raise NotFoundError.for_entity(entity_name, entity_id)
        return entity

    def _append_event(
        self,
        deployment: Deployment,
        event_type: DeploymentEventType,
        message: str,
        now: datetime,
        metadata: dict | None = None,
    ) -> DeploymentEvent:
        event = DeploymentEvent(
            tenant_id=deployment.tenant_id,
            deployment_id=deployment.id,
            event_type=event_type.value,
            message=message,
            timestamp=now,
            event_metadata=json.dumps(metadata) if metadata else None,
        )
        self.events.add(event, now=now)
        return event

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, deployment_id: int) -> Deployment:
        return await self._require(self.deployments, deployment_id, "Deployment")

    async def get_by_external_id(self, external_id: str) -> Deployment:
        deployment = await self.deployments.get_by_external_id(external_id)
        if deployment is None:
            raise NotFoundError.for_entity("Deployment", external_id)
        return deployment

    async def list_deployments(
        self,
        skip: int = 0,
        take: int = 50,
        status: str | DeploymentStatus | None = None,
    ) -> tuple[list[Deployment], int]:
        """Page of deployments, newest first, with the total matching count."""
        criteria = []
        if status is not None:
            criteria.append(Deployment.status == parse_status(status))
        items = await self.deployments.find_all(
            *criteria,
            order_by=(Deployment.created_at.desc(), Deployment.id.desc()),
            offset=skip,
            limit=take,
        )
        total = await self.deployments.count(*criteria)
        return items, total

    async def history(self, deployment_id: int) -> list[DeploymentEvent]:
        """Audit trail of a deployment in the order it happened."""
        await self._require(self.deployments, deployment_id, "Deployment")
        return await self.events.find_all(
            DeploymentEvent.deployment_id == deployment_id,
            order_by=(DeploymentEvent.timestamp, DeploymentEvent.id),
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_pending(
        self,
        application_id: int,
        version_id: int,
        environment_id: int,
        notes: str | None = None,
    ) -> Deployment:
        """
        Create a Pending deployment of a version into an environment.

        Args:
            application_id: Application being deployed
            version_id: Version of that application
            environment_id: Target environment
            notes: Free-text notes

        Returns:
            The new Deployment
        """
        application = await self._require(self.applications, application_id, "Application")
        version = await self._require(self.versions, version_id, "Version")
        environment = await self._require(self.environments, environment_id, "Environment")
        if version.application_id != application.id:
            raise ValidationError(
                f"Version {version_id} does not belong to application {application_id}",
                version_id=version_id,
                application_id=application_id,
            )
        if environment.tenant_id != application.tenant_id:
            raise NotFoundError.for_entity("Environment", environment_id)

        now = self.clock.now()
        deployment = Deployment(
            tenant_id=application.tenant_id,
            application_id=application.id,
            version_id=version.id,
            environment_id=environment.id,
            status=DeploymentStatus.PENDING,
            notes=notes,
        )
        self.deployments.add(deployment, now=now)
        await self.db.flush()
        self._append_event(
            deployment,
            DeploymentEventType.CREATED,
            f"Deployment of version {version.version_number} to {environment.name} created",
            now,
        )
        await self.db.commit()
        await self.db.refresh(deployment)

        metrics.track_transition(deployment.tenant_id, DeploymentStatus.PENDING.value)
        logger.info(
            "deployment_created",
            deployment_id=deployment.id,
            application_id=application_id,
            version_id=version_id,
            environment_id=environment_id,
        )
        await self._notify(deployment, [PENDING_EVENT], now)
        return deployment

    async def confirm(self, deployment_id: int, confirmation_notes: str | None = None) -> Deployment:
        """Pending -> InProgress, recording who started the deployment and when."""
        deployment = await self._require(self.deployments, deployment_id, "Deployment")
        observed = deployment.status
        self._check_transition(deployment, DeploymentStatus.IN_PROGRESS)

        now = self.clock.now()
        values = {
            "status": DeploymentStatus.IN_PROGRESS,
            "deployed_at": now,
            "deployed_by": self.context.user_id,
            "completed_at": None,
            "duration_ms": None,
        }
        if confirmation_notes:
            values["notes"] = confirmation_notes

        await self._apply(
            deployment,
            observed,
            values,
            now,
            DeploymentEventType.CONFIRMED,
            f"Deployment confirmed by {self.context.user_id}",
        )
        await self._notify(deployment, [status_event_type(DeploymentStatus.IN_PROGRESS)], now)
        return deployment

    async def update_status(
        self,
        deployment_id: int,
        target_status: str | DeploymentStatus,
        notes: str | None = None,
        duration_ms: int | None = None,
    ) -> Deployment:
        """
        Move a deployment to another status.

        Entering a terminal status stamps completed_at and a duration: the
        caller's value if given, otherwise the time since deployed_at.
        """
        target = parse_status(target_status)
        if duration_ms is not None and duration_ms < 0:
            raise ValidationError("duration_ms must not be negative", duration_ms=duration_ms)

        deployment = await self._require(self.deployments, deployment_id, "Deployment")
        observed = deployment.status
        self._check_transition(deployment, target)

        now = self.clock.now()
        values: dict[str, Any] = {"status": target}
        if target == DeploymentStatus.IN_PROGRESS:
            values["completed_at"] = None
            values["duration_ms"] = None
            if deployment.deployed_at is None:
                values["deployed_at"] = now
                values["deployed_by"] = self.context.user_id
        elif target.is_terminal:
            values["completed_at"] = now
            if duration_ms is None and deployment.deployed_at is not None:
                elapsed = now - as_utc(deployment.deployed_at)
                duration_ms = int(elapsed.total_seconds() * 1000)
            values["duration_ms"] = duration_ms
        if notes:
            values["notes"] = notes

        await self._apply(
            deployment,
            observed,
            values,
            now,
            DeploymentEventType.STATUS_CHANGED,
            f"Status changed from {observed.value} to {target.value}",
            metadata={"from": observed.value, "to": target.value, "duration_ms": values.get("duration_ms")},
        )

        event_types = [status_event_type(target)]
        if target.is_terminal:
            event_types.append(COMPLETED_EVENT)
        await self._notify(deployment, event_types, now)
        return deployment

    async def promote(
        self,
        source_deployment_id: int,
        target_environment_id: int,
        notes: str | None = None,
    ) -> Deployment:
        """
        Deploy a successful deployment's version to the next environment.

        Environments are promoted through strictly in order; skipping a tier
        is rejected. The new deployment starts InProgress.
        """
        source = await self._require(self.deployments, source_deployment_id, "Deployment")
        if source.status != DeploymentStatus.SUCCESS:
            metrics.track_transition_rejected(source.tenant_id)
            raise InvalidStateError(
                f"Only successful deployments can be promoted; deployment is {source.status.value}",
                current=source.status.value,
            )

        target_env = await self._require(self.environments, target_environment_id, "Environment")
        if target_env.tenant_id != source.tenant_id:
            raise NotFoundError.for_entity("Environment", target_environment_id)
        source_env = await self._require(self.environments, source.environment_id, "Environment")

        following = await self.environments.find_all(
            Environment.tenant_id == source.tenant_id,
            Environment.order > source_env.order,
            order_by=(Environment.order, Environment.id),
            limit=1,
        )
        if not following:
            metrics.track_transition_rejected(source.tenant_id)
            raise InvalidStateError(
                f"{source_env.name} is the last environment; there is nothing to promote to",
                environment_id=source_env.id,
            )
        next_env = following[0]
        if next_env.id != target_env.id:
            metrics.track_transition_rejected(source.tenant_id)
            raise InvalidStateError(
                f"Deployments from {source_env.name} can only be promoted to {next_env.name}",
                expected_environment_id=next_env.id,
                requested_environment_id=target_env.id,
            )

        now = self.clock.now()
        promoted = Deployment(
            tenant_id=source.tenant_id,
            application_id=source.application_id,
            version_id=source.version_id,
            environment_id=target_env.id,
            status=DeploymentStatus.IN_PROGRESS,
            deployed_at=now,
            deployed_by=self.context.user_id,
            notes=notes,
        )
        self.deployments.add(promoted, now=now)
        await self.db.flush()
        self._append_event(
            promoted,
            DeploymentEventType.PROMOTED,
            f"Promoted from {source_env.name} to {target_env.name}",
            now,
            metadata={"source_deployment_id": source.external_id},
        )
        self._append_event(
            source,
            DeploymentEventType.PROMOTED_TO,
            f"Promoted to {target_env.name}",
            now,
            metadata={"promoted_deployment_id": promoted.external_id},
        )
        await self.db.commit()
        await self.db.refresh(promoted)

        metrics.track_promotion(promoted.tenant_id)
        metrics.track_transition(promoted.tenant_id, DeploymentStatus.IN_PROGRESS.value)
        logger.info(
            "deployment_promoted",
            source_deployment_id=source.id,
            deployment_id=promoted.id,
            from_environment=source_env.name,
            to_environment=target_env.name,
        )
        await self._notify(promoted, [PROMOTED_EVENT], now)
        return promoted

    async def soft_delete(self, deployment_id: int) -> None:
        """Hide a deployment from reads. Its events are kept."""
        deployment = await self._require(self.deployments, deployment_id, "Deployment")
        now = self.clock.now()
        if not await self.deployments.soft_delete(deployment.id):
            await self.db.rollback()
            raise NotFoundError.for_entity("Deployment", deployment_id)
        self._append_event(deployment, DeploymentEventType.DELETED, "Deployment deleted", now)
        await self.db.commit()
        logger.info("deployment_deleted", deployment_id=deployment_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_transition(self, deployment: Deployment, target: DeploymentStatus) -> None:
        try:
            resolve_transition(deployment.status, target)
        except InvalidStateError:
            metrics.track_transition_rejected(deployment.tenant_id)
            logger.info(
                "deployment_transition_rejected",
                deployment_id=deployment.id,
                current=deployment.status.value,
                requested=target.value,
            )
            raise

    async def _apply(
        self,
        deployment: Deployment,
        observed: DeploymentStatus,
        values: dict[str, Any],
        now: datetime,
        event_type: DeploymentEventType,
        message: str,
        metadata: dict | None = None,
    ) -> None:
        """Write a transition only if the status is still the one we read."""
        values["modified_at"] = now
        deployment_id, tenant_id = deployment.id, deployment.tenant_id
        updated = await self.deployments.conditional_update(deployment_id, {"status": observed}, values)
        if not updated:
            # rollback expires every loaded instance
            await self.db.rollback()
            metrics.track_transition_rejected(tenant_id)
            logger.warning(
                "deployment_concurrent_modification",
                deployment_id=deployment_id,
                observed=observed.value,
                requested=values["status"].value,
            )
            raise InvalidStateError(
                "Deployment was modified concurrently; reload and retry",
                current=observed.value,
                requested=values["status"].value,
            )
        self._append_event(deployment, event_type, message, now, metadata)
        await self.db.commit()
        await self.db.refresh(deployment)

        metrics.track_transition(deployment.tenant_id, deployment.status.value)
        logger.info(
            "deployment_status_changed",
            deployment_id=deployment.id,
            previous=observed.value,
            status=deployment.status.value,
        )

    async def _notify(self, deployment: Deployment, event_types: list[str], now: datetime) -> None:
        """Hand webhook work to the dispatcher. Failures never undo the transition."""
        context = self.context
        if context.cross_tenant:
            context = context.for_tenant(deployment.tenant_id)
        for event_type in event_types:
            task = context.task(
                DEPLOYMENT_EVENT,
                application_id=deployment.application_id,
                event_type=event_type,
                payload=deployment_payload(deployment, event_type, now),
            )
            try:
                await self.dispatcher.dispatch(task)
            except Exception:
                logger.exception(
                    "webhook_dispatch_failed",
                    deployment_id=deployment.id,
                    event_type=event_type,
                )
                capture_exception()
