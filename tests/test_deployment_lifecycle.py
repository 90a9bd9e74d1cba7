"""
Deployment lifecycle tests: creation, confirmation, status updates,
history and soft delete.
"""
from datetime import timedelta

import pytest

from conftest import FailingDispatcher
from releasehub.clock import as_utc
from releasehub.exceptions import InvalidStateError, NotFoundError, ValidationError
from releasehub.models.deployment import Deployment, DeploymentEvent, DeploymentEventType, DeploymentStatus
from releasehub.services.deployment_service import DeploymentLifecycleService


async def test_create_pending(lifecycle, tenant_a, dispatcher, clock):
    deployment = await lifecycle.create_pending(
        tenant_a.application_id, tenant_a.version_id, tenant_a.dev_id, notes="first rollout"
    )

    assert deployment.status == DeploymentStatus.PENDING
    assert deployment.tenant_id == tenant_a.tenant_id
    assert deployment.created_by == "alice"
    assert deployment.notes == "first rollout"
    assert deployment.deployed_at is None
    assert deployment.completed_at is None
    assert as_utc(deployment.created_at) == clock.now()

    history = await lifecycle.history(deployment.id)
    assert [e.event_type for e in history] == [DeploymentEventType.CREATED.value]
    assert dispatcher.event_types == ["deployment.pending"]


async def test_create_requires_visible_entities(lifecycle, tenant_a):
    with pytest.raises(NotFoundError):
        await lifecycle.create_pending(9999, tenant_a.version_id, tenant_a.dev_id)
    with pytest.raises(NotFoundError):
        await lifecycle.create_pending(tenant_a.application_id, 9999, tenant_a.dev_id)
    with pytest.raises(NotFoundError):
        await lifecycle.create_pending(tenant_a.application_id, tenant_a.version_id, 9999)


async def test_create_rejects_version_of_another_application(lifecycle, tenant_a):
    with pytest.raises(ValidationError):
        await lifecycle.create_pending(tenant_a.application_id, tenant_a.other_version_id, tenant_a.dev_id)


async def test_repeat_deployments_are_allowed(lifecycle, tenant_a):
    first = await lifecycle.create_pending(tenant_a.application_id, tenant_a.version_id, tenant_a.dev_id)
    second = await lifecycle.create_pending(tenant_a.application_id, tenant_a.version_id, tenant_a.dev_id)
    assert first.id != second.id
    assert first.external_id != second.external_id


async def test_confirm(lifecycle, tenant_a, dispatcher, clock):
    deployment = await lifecycle.create_pending(
        tenant_a.application_id, tenant_a.version_id, tenant_a.dev_id, notes="original"
    )
    clock.advance(minutes=1)

    confirmed = await lifecycle.confirm(deployment.id, "go")

    assert confirmed.status == DeploymentStatus.IN_PROGRESS
    assert as_utc(confirmed.deployed_at) == clock.now()
    assert confirmed.deployed_by == "alice"
    assert confirmed.notes == "go"
    assert dispatcher.event_types == ["deployment.pending", "deployment.inprogress"]


async def test_confirm_keeps_notes_without_confirmation_notes(lifecycle, tenant_a):
    deployment = await lifecycle.create_pending(
        tenant_a.application_id, tenant_a.version_id, tenant_a.dev_id, notes="original"
    )
    confirmed = await lifecycle.confirm(deployment.id, "")
    assert confirmed.notes == "original"


async def test_confirm_only_from_pending(lifecycle, tenant_a):
    deployment = await lifecycle.create_pending(tenant_a.application_id, tenant_a.version_id, tenant_a.dev_id)
    await lifecycle.confirm(deployment.id)

    with pytest.raises(InvalidStateError):
        await lifecycle.confirm(deployment.id)


async def test_confirm_missing_deployment(lifecycle):
    with pytest.raises(NotFoundError):
        await lifecycle.confirm(424242)


async def test_full_lifecycle_computes_duration(lifecycle, tenant_a, dispatcher, clock):
    deployment = await lifecycle.create_pending(tenant_a.application_id, tenant_a.version_id, tenant_a.dev_id)
    await lifecycle.confirm(deployment.id)
    clock.advance(seconds=90, milliseconds=250)

    done = await lifecycle.update_status(deployment.id, "Success", notes="all green")

    assert done.status == DeploymentStatus.SUCCESS
    assert as_utc(done.completed_at) == clock.now()
    assert done.duration_ms == 90250
    assert done.notes == "all green"
    assert dispatcher.event_types[-2:] == ["deployment.success", "deployment.completed"]

    history = await lifecycle.history(deployment.id)
    assert [e.event_type for e in history] == ["Created", "Confirmed", "StatusChanged"]


async def test_caller_duration_wins(lifecycle, tenant_a, clock):
    deployment = await lifecycle.create_pending(tenant_a.application_id, tenant_a.version_id, tenant_a.dev_id)
    await lifecycle.confirm(deployment.id)
    clock.advance(minutes=10)

    done = await lifecycle.update_status(deployment.id, DeploymentStatus.FAILED, duration_ms=1234)
    assert done.duration_ms == 1234


async def test_cancel_pending_has_no_duration(lifecycle, tenant_a, dispatcher, clock):
    deployment = await lifecycle.create_pending(tenant_a.application_id, tenant_a.version_id, tenant_a.dev_id)
    cancelled = await lifecycle.update_status(deployment.id, "Cancelled")

    assert cancelled.status == DeploymentStatus.CANCELLED
    assert as_utc(cancelled.completed_at) == clock.now()
    assert cancelled.duration_ms is None
    assert dispatcher.event_types[-2:] == ["deployment.cancelled", "deployment.completed"]


async def test_update_to_in_progress_sets_deployed_at(lifecycle, tenant_a, clock):
    deployment = await lifecycle.create_pending(tenant_a.application_id, tenant_a.version_id, tenant_a.dev_id)
    started = await lifecycle.update_status(deployment.id, "InProgress")

    assert started.status == DeploymentStatus.IN_PROGRESS
    assert as_utc(started.deployed_at) == clock.now()
    assert started.completed_at is None
    assert started.duration_ms is None


async def test_negative_duration_rejected(lifecycle, tenant_a):
    deployment = await lifecycle.create_pending(tenant_a.application_id, tenant_a.version_id, tenant_a.dev_id)
    await lifecycle.confirm(deployment.id)

    with pytest.raises(ValidationError):
        await lifecycle.update_status(deployment.id, "Success", duration_ms=-1)


async def test_unknown_status_rejected(lifecycle, tenant_a):
    deployment = await lifecycle.create_pending(tenant_a.application_id, tenant_a.version_id, tenant_a.dev_id)
    with pytest.raises(ValidationError):
        await lifecycle.update_status(deployment.id, "Rolling")


async def test_success_requires_in_progress(lifecycle, tenant_a):
    deployment = await lifecycle.create_pending(tenant_a.application_id, tenant_a.version_id, tenant_a.dev_id)
    with pytest.raises(InvalidStateError):
        await lifecycle.update_status(deployment.id, "Success")


@pytest.mark.parametrize("terminal", ["Success", "Failed", "Cancelled"])
async def test_terminal_states_are_immutable(lifecycle, tenant_a, dispatcher, terminal):
    deployment = await lifecycle.create_pending(tenant_a.application_id, tenant_a.version_id, tenant_a.dev_id)
    await lifecycle.confirm(deployment.id)
    await lifecycle.update_status(deployment.id, terminal)
    dispatched = len(dispatcher.tasks)

    for target in ["Pending", "InProgress", "Success", "Failed", "Cancelled"]:
        with pytest.raises(InvalidStateError):
            await lifecycle.update_status(deployment.id, target)
    with pytest.raises(InvalidStateError):
        await lifecycle.confirm(deployment.id)

    reloaded = await lifecycle.get(deployment.id)
    assert reloaded.status.value == terminal
    assert len(dispatcher.tasks) == dispatched


async def test_stale_status_is_rejected(lifecycle, tenant_a, db_session, context_a, dispatcher, clock, monkeypatch):
    deployment = await lifecycle.create_pending(tenant_a.application_id, tenant_a.version_id, tenant_a.dev_id)
    deployment_id = deployment.id
    stale = Deployment(
        id=deployment_id,
        tenant_id=deployment.tenant_id,
        application_id=deployment.application_id,
        version_id=deployment.version_id,
        environment_id=deployment.environment_id,
        status=DeploymentStatus.PENDING,
    )

    # Another request wins the race
    other = DeploymentLifecycleService(db_session, context_a, dispatcher, clock)
    await other.confirm(deployment_id)

    async def stale_require(repo, entity_id, entity_name):
        return stale

    monkeypatch.setattr(lifecycle, "_require", stale_require)
    with pytest.raises(InvalidStateError, match="modified concurrently"):
        await lifecycle.confirm(deployment_id)

    monkeypatch.undo()
    reloaded = await lifecycle.get(deployment_id)
    assert reloaded.status == DeploymentStatus.IN_PROGRESS
    confirmations = [e for e in await lifecycle.history(deployment_id) if e.event_type == "Confirmed"]
    assert len(confirmations) == 1


async def test_dispatch_failure_does_not_fail_transition(db_session, context_a, clock, tenant_a):
    service = DeploymentLifecycleService(db_session, context_a, FailingDispatcher(), clock)
    deployment = await service.create_pending(tenant_a.application_id, tenant_a.version_id, tenant_a.dev_id)
    confirmed = await service.confirm(deployment.id)
    assert confirmed.status == DeploymentStatus.IN_PROGRESS


async def test_webhook_payload_describes_deployment(lifecycle, tenant_a, dispatcher):
    deployment = await lifecycle.create_pending(tenant_a.application_id, tenant_a.version_id, tenant_a.dev_id)
    task = dispatcher.tasks[0]

    assert task.tenant_id == tenant_a.tenant_id
    assert task.user_id == "alice"
    assert task.payload["application_id"] == tenant_a.application_id
    body = task.payload["payload"]
    assert body["event"] == "deployment.pending"
    assert body["deployment"]["id"] == deployment.external_id
    assert body["deployment"]["status"] == "Pending"


async def test_history_is_ordered(lifecycle, tenant_a, clock):
    deployment = await lifecycle.create_pending(tenant_a.application_id, tenant_a.version_id, tenant_a.dev_id)
    clock.advance(seconds=5)
    await lifecycle.confirm(deployment.id)
    clock.advance(seconds=5)
    await lifecycle.update_status(deployment.id, "Failed", notes="smoke tests red")

    history = await lifecycle.history(deployment.id)
    stamps = [as_utc(e.timestamp) for e in history]
    assert stamps == sorted(stamps)
    assert stamps[-1] - stamps[0] == timedelta(seconds=10)


async def test_history_of_missing_deployment(lifecycle):
    with pytest.raises(NotFoundError):
        await lifecycle.history(31337)


async def test_list_deployments(lifecycle, tenant_a, clock):
    first = await lifecycle.create_pending(tenant_a.application_id, tenant_a.version_id, tenant_a.dev_id)
    clock.advance(seconds=1)
    second = await lifecycle.create_pending(tenant_a.application_id, tenant_a.version_id, tenant_a.staging_id)
    await lifecycle.confirm(second.id)

    items, total = await lifecycle.list_deployments()
    assert total == 2
    assert [d.id for d in items] == [second.id, first.id]

    items, total = await lifecycle.list_deployments(status="InProgress")
    assert total == 1
    assert items[0].id == second.id

    items, total = await lifecycle.list_deployments(skip=1, take=1)
    assert total == 2
    assert [d.id for d in items] == [first.id]


async def test_soft_delete_hides_deployment_but_keeps_events(lifecycle, tenant_a, db_session, context_a):
    deployment = await lifecycle.create_pending(tenant_a.application_id, tenant_a.version_id, tenant_a.dev_id)
    await lifecycle.soft_delete(deployment.id)

    with pytest.raises(NotFoundError):
        await lifecycle.get(deployment.id)
    items, total = await lifecycle.list_deployments()
    assert total == 0

    events = await lifecycle.events.find_all(DeploymentEvent.deployment_id == deployment.id)
    assert [e.event_type for e in events] == ["Created", "Deleted"]
