"""
Deployment API routes.

Deployments are addressed by their external id; the lifecycle service works
with internal ids.
"""
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel

from releasehub.clock import as_utc
from releasehub.dependencies.auth import require_admin
from releasehub.dependencies.services import get_deployment_service
from releasehub.models.deployment import Deployment, DeploymentEvent
from releasehub.services.deployment_service import DeploymentLifecycleService


router = APIRouter(prefix="/api/deployments", tags=["deployments"])


# Pydantic models for request/response
class CreateDeploymentRequest(BaseModel):
    """Request model for creating a pending deployment."""
    application_id: int
    version_id: int
    environment_id: int
    notes: str | None = None


class ConfirmDeploymentRequest(BaseModel):
    notes: str | None = None


class UpdateStatusRequest(BaseModel):
    """Request model for a status change. status uses the boundary strings (InProgress, Success, ...)."""
    status: str
    notes: str | None = None
    duration_ms: int | None = None


class PromoteDeploymentRequest(BaseModel):
    target_environment_id: int
    notes: str | None = None


class DeploymentResponse(BaseModel):
    """Response model for a deployment."""
    id: str
    application_id: int
    version_id: int
    environment_id: int
    status: str
    deployed_at: str | None = None
    deployed_by: str | None = None
    completed_at: str | None = None
    duration_ms: int | None = None
    notes: str | None = None
    created_at: str | None = None
    created_by: str | None = None


class DeploymentListResponse(BaseModel):
    items: list[DeploymentResponse]
    total: int
    skip: int
    take: int


class DeploymentEventResponse(BaseModel):
    """Response model for one audit entry."""
    id: str
    event_type: str
    message: str | None = None
    timestamp: str
    metadata: str | None = None
    created_by: str | None = None


def _iso(value):
    value = as_utc(value)
    return value.isoformat() if value else None


def deployment_to_response(deployment: Deployment) -> DeploymentResponse:
    """Convert Deployment model to DeploymentResponse."""
    return DeploymentResponse(
        id=deployment.external_id,
        application_id=deployment.application_id,
        version_id=deployment.version_id,
        environment_id=deployment.environment_id,
        status=deployment.status.value,
        deployed_at=_iso(deployment.deployed_at),
        deployed_by=deployment.deployed_by,
        completed_at=_iso(deployment.completed_at),
        duration_ms=deployment.duration_ms,
        notes=deployment.notes,
        created_at=_iso(deployment.created_at),
        created_by=deployment.created_by,
    )


def event_to_response(event: DeploymentEvent) -> DeploymentEventResponse:
    return DeploymentEventResponse(
        id=event.external_id,
        event_type=event.event_type,
        message=event.message,
        timestamp=_iso(event.timestamp),
        metadata=event.event_metadata,
        created_by=event.created_by,
    )


@router.get("", response_model=DeploymentListResponse)
async def list_deployments(
    skip: int = Query(0, ge=0),
    take: int = Query(50, ge=1, le=200),
    status_filter: str | None = Query(None, alias="status"),
    service: DeploymentLifecycleService = Depends(get_deployment_service),
):
    """List deployments of the caller's tenant, newest first."""
    items, total = await service.list_deployments(skip=skip, take=take, status=status_filter)
    return DeploymentListResponse(
        items=[deployment_to_response(d) for d in items],
        total=total,
        skip=skip,
        take=take,
    )


@router.post("", response_model=DeploymentResponse, status_code=status.HTTP_201_CREATED)
async def create_deployment(
    request: CreateDeploymentRequest,
    service: DeploymentLifecycleService = Depends(get_deployment_service),
):
    """Create a deployment in Pending status."""
    deployment = await service.create_pending(
        request.application_id,
        request.version_id,
        request.environment_id,
        request.notes,
    )
    return deployment_to_response(deployment)


@router.get("/{external_id}", response_model=DeploymentResponse)
async def get_deployment(
    external_id: str,
    service: DeploymentLifecycleService = Depends(get_deployment_service),
):
    deployment = await service.get_by_external_id(external_id)
    return deployment_to_response(deployment)


@router.post("/{external_id}/confirm", response_model=DeploymentResponse)
async def confirm_deployment(
    external_id: str,
    request: ConfirmDeploymentRequest | None = None,
    service: DeploymentLifecycleService = Depends(get_deployment_service),
):
    """Start a pending deployment (Pending -> InProgress)."""
    deployment = await service.get_by_external_id(external_id)
    deployment = await service.confirm(deployment.id, request.notes if request else None)
    return deployment_to_response(deployment)


@router.put("/{external_id}/status", response_model=DeploymentResponse)
async def update_deployment_status(
    external_id: str,
    request: UpdateStatusRequest,
    service: DeploymentLifecycleService = Depends(get_deployment_service),
):
    deployment = await service.get_by_external_id(external_id)
    deployment = await service.update_status(
        deployment.id,
        request.status,
        notes=request.notes,
        duration_ms=request.duration_ms,
    )
    return deployment_to_response(deployment)


@router.post("/{external_id}/promote", response_model=DeploymentResponse, status_code=status.HTTP_201_CREATED)
async def promote_deployment(
    external_id: str,
    request: PromoteDeploymentRequest,
    service: DeploymentLifecycleService = Depends(get_deployment_service),
):
    """Promote a successful deployment to the next environment."""
    source = await service.get_by_external_id(external_id)
    promoted = await service.promote(source.id, request.target_environment_id, request.notes)
    return deployment_to_response(promoted)


@router.get("/{external_id}/events", response_model=list[DeploymentEventResponse])
async def deployment_history(
    external_id: str,
    service: DeploymentLifecycleService = Depends(get_deployment_service),
):
    deployment = await service.get_by_external_id(external_id)
    events = await service.history(deployment.id)
    return [event_to_response(e) for e in events]


@router.delete("/{external_id}", status_code=status.HTTP_204_NO_CONTENT, dependencies=[Depends(require_admin)])
async def delete_deployment(
    external_id: str,
    service: DeploymentLifecycleService = Depends(get_deployment_service),
):
    """Soft delete. The audit trail is kept."""
    deployment = await service.get_by_external_id(external_id)
    await service.soft_delete(deployment.id)
