"""
HTTP API tests: routing by external id, error mapping and auth.
"""
import pytest

from conftest import TENANT_A, TENANT_B, auth_headers


ALICE = auth_headers("alice", TENANT_A)
ADMIN = auth_headers("ada", TENANT_A, role="admin")
BOB = auth_headers("bob", TENANT_B)
ROOT = auth_headers("root", "", role="platform_admin")


async def create(test_client, seed, environment_id=None, headers=ALICE):
    response = await test_client.post(
        "/api/deployments",
        json={
            "application_id": seed.application_id,
            "version_id": seed.version_id,
            "environment_id": environment_id or seed.dev_id,
            "notes": "via api",
        },
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()


async def test_root_and_health(test_client):
    assert (await test_client.get("/")).json()["status"] == "running"
    assert (await test_client.get("/health")).json()["status"] == "healthy"


async def test_metrics_endpoint(test_client):
    response = await test_client.get("/metrics")
    assert response.status_code == 200
    assert "http_requests_total" in response.text


async def test_missing_token_is_rejected(test_client):
    response = await test_client.get("/api/deployments")
    assert response.status_code in (401, 403)


async def test_invalid_token_is_rejected(test_client):
    response = await test_client.get("/api/deployments", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


async def test_deployment_flow(test_client, tenant_a, dispatcher, clock):
    created = await create(test_client, tenant_a)
    assert created["status"] == "Pending"
    assert created["created_by"] == "alice"
    external_id = created["id"]

    fetched = await test_client.get(f"/api/deployments/{external_id}", headers=ALICE)
    assert fetched.json()["id"] == external_id

    confirmed = await test_client.post(f"/api/deployments/{external_id}/confirm", json={"notes": "go"}, headers=ALICE)
    assert confirmed.status_code == 200
    assert confirmed.json()["status"] == "InProgress"
    assert confirmed.json()["deployed_by"] == "alice"

    clock.advance(seconds=30)
    done = await test_client.put(
        f"/api/deployments/{external_id}/status", json={"status": "Success"}, headers=ALICE
    )
    assert done.status_code == 200
    assert done.json()["status"] == "Success"
    assert done.json()["duration_ms"] == 30000

    events = await test_client.get(f"/api/deployments/{external_id}/events", headers=ALICE)
    assert [e["event_type"] for e in events.json()] == ["Created", "Confirmed", "StatusChanged"]

    promoted = await test_client.post(
        f"/api/deployments/{external_id}/promote",
        json={"target_environment_id": tenant_a.staging_id},
        headers=ALICE,
    )
    assert promoted.status_code == 201
    assert promoted.json()["environment_id"] == tenant_a.staging_id
    assert promoted.json()["status"] == "InProgress"

    listing = await test_client.get("/api/deployments", headers=ALICE)
    assert listing.json()["total"] == 2
    filtered = await test_client.get("/api/deployments", params={"status": "Success"}, headers=ALICE)
    assert [d["id"] for d in filtered.json()["items"]] == [external_id]

    assert dispatcher.event_types == [
        "deployment.pending",
        "deployment.inprogress",
        "deployment.success",
        "deployment.completed",
        "deployment.promoted",
    ]


async def test_unknown_deployment_is_404(test_client, tenant_a):
    response = await test_client.get("/api/deployments/does-not-exist", headers=ALICE)
    assert response.status_code == 404
    body = response.json()
    assert body["code"] == "NOT_FOUND"
    assert body["message"]
    assert body["timestamp"]


async def test_invalid_transition_is_409(test_client, tenant_a):
    created = await create(test_client, tenant_a)
    response = await test_client.put(
        f"/api/deployments/{created['id']}/status", json={"status": "Success"}, headers=ALICE
    )
    assert response.status_code == 409
    assert response.json()["code"] == "INVALID_STATE"


async def test_skipping_an_environment_is_409(test_client, tenant_a):
    created = await create(test_client, tenant_a)
    await test_client.post(f"/api/deployments/{created['id']}/confirm", headers=ALICE)
    await test_client.put(f"/api/deployments/{created['id']}/status", json={"status": "Success"}, headers=ALICE)

    response = await test_client.post(
        f"/api/deployments/{created['id']}/promote",
        json={"target_environment_id": tenant_a.prod_id},
        headers=ALICE,
    )
    assert response.status_code == 409


@pytest.mark.parametrize("body", [{"status": "Paused"}, {"status": "Success", "duration_ms": -5}])
async def test_bad_status_update_is_400(test_client, tenant_a, body):
    created = await create(test_client, tenant_a)
    await test_client.post(f"/api/deployments/{created['id']}/confirm", headers=ALICE)

    response = await test_client.put(f"/api/deployments/{created['id']}/status", json=body, headers=ALICE)
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"


async def test_version_of_another_application_is_400(test_client, tenant_a):
    response = await test_client.post(
        "/api/deployments",
        json={
            "application_id": tenant_a.application_id,
            "version_id": tenant_a.other_version_id,
            "environment_id": tenant_a.dev_id,
        },
        headers=ALICE,
    )
    assert response.status_code == 400


async def test_other_tenant_sees_404(test_client, tenant_a, tenant_b):
    created = await create(test_client, tenant_a)

    for method, path in [
        ("GET", f"/api/deployments/{created['id']}"),
        ("POST", f"/api/deployments/{created['id']}/confirm"),
        ("GET", f"/api/deployments/{created['id']}/events"),
    ]:
        response = await test_client.request(method, path, headers=BOB)
        assert response.status_code == 404, path

    listing = await test_client.get("/api/deployments", headers=BOB)
    assert listing.json()["total"] == 0


async def test_delete_requires_admin(test_client, tenant_a):
    created = await create(test_client, tenant_a)

    assert (await test_client.delete(f"/api/deployments/{created['id']}", headers=ALICE)).status_code == 403
    assert (await test_client.delete(f"/api/deployments/{created['id']}", headers=ADMIN)).status_code == 204
    assert (await test_client.get(f"/api/deployments/{created['id']}", headers=ALICE)).status_code == 404


async def test_webhook_endpoints(test_client, tenant_a, receiver):
    path = f"/api/applications/{tenant_a.application_id}/webhooks"
    payload = {"url": "https://hooks.example.com", "secret": "s3cr3t", "events": "*", "max_retries": 2}

    assert (await test_client.post(path, json=payload, headers=ALICE)).status_code == 403

    registered = await test_client.post(path, json=payload, headers=ADMIN)
    assert registered.status_code == 201
    webhook = registered.json()
    assert "secret" not in webhook
    assert webhook["events"] == "*"
    assert webhook["max_retries"] == 2

    listed = await test_client.get(path, headers=ALICE)
    assert [w["id"] for w in listed.json()] == [webhook["id"]]

    deliveries = await test_client.get(f"/api/webhooks/{webhook['id']}/deliveries", headers=ALICE)
    assert deliveries.json() == []

    deactivated = await test_client.delete(f"/api/webhooks/{webhook['id']}", headers=ADMIN)
    assert deactivated.status_code == 200
    assert deactivated.json()["is_active"] is False


async def test_webhook_registration_for_unknown_application(test_client, tenant_a, tenant_b):
    response = await test_client.post(
        f"/api/applications/{tenant_b.application_id}/webhooks",
        json={"url": "https://hooks.example.com", "secret": "s3cr3t"},
        headers=ADMIN,
    )
    assert response.status_code == 404


async def test_retry_sweep_requires_platform_admin(test_client, tenant_a):
    assert (await test_client.post("/api/webhooks/retry", headers=ADMIN)).status_code == 403

    response = await test_client.post("/api/webhooks/retry", headers=ROOT)
    assert response.status_code == 200
    assert response.json() == {"retried": 0}
