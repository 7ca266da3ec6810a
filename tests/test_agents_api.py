"""HTTP tests for the agent management router."""

from __future__ import annotations

import uuid


def _create_payload(**overrides):
    payload = {
        "agent_id": "pulse_check",
        "name": "Engineering Weekly Pulse",
        "config": {
            "tone_preset": "friendly_peer",
            "audience_type": "department",
            "target_department": "Engineering",
        },
        "schedule": {"cadence": "weekly", "timezone": "America/New_York"},
    }
    payload.update(overrides)
    return payload


def test_templates_are_visible_to_every_employee(api) -> None:
    response = api.client.get("/api/agents/templates", headers=api.header("employee"))

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == len(body["items"])
    assert "pulse_check" in {item["id"] for item in body["items"]}


def test_requests_without_token_are_rejected(api) -> None:
    response = api.client.get("/api/agents/templates")
    assert response.status_code == 401


def test_instance_lifecycle(api) -> None:
    admin = api.header("admin")

    created = api.client.post("/api/agents/instances", json=_create_payload(), headers=admin)
    assert created.status_code == 201, created.text
    instance = created.json()
    assert instance["status"] == "active"
    assert instance["created_by"] == str(api.auth.users["admin"])
    assert sorted(instance["target_employee_ids"]) == sorted(
        [str(api.auth.users["employee"]), str(api.auth.users["peer"])]
    )
    assert instance["config"]["audience"] == {"type": "department", "department": "Engineering"}
    assert instance["schedule"]["cadence"] == "weekly"

    listed = api.client.get("/api/agents/instances", headers=admin).json()
    assert listed["total"] == 1

    paused = api.client.patch(
        f"/api/agents/instances/{instance['id']}/status", json={"status": "paused"}, headers=admin
    )
    assert paused.status_code == 200
    assert paused.json()["status"] == "paused"

    run = api.client.post(f"/api/agents/instances/{instance['id']}/run", headers=admin)
    assert run.status_code == 400
    assert run.json()["detail"]["state"] == "paused"

    api.client.patch(
        f"/api/agents/instances/{instance['id']}/status", json={"status": "active"}, headers=admin
    )
    run = api.client.post(f"/api/agents/instances/{instance['id']}/run", headers=admin)
    assert run.status_code == 200
    assert len(run.json()["conversations"]) == 2
    assert run.json()["run"]["messages_sent"] == 2

    rerun = api.client.post(f"/api/agents/instances/{instance['id']}/run", headers=admin)
    assert rerun.json()["conversations"] == []
    assert rerun.json()["skipped"] == 2

    detail = api.client.get(f"/api/agents/instances/{instance['id']}", headers=admin).json()
    assert detail["stats"] == {
        "conversations": 2,
        "active_conversations": 2,
        "completed_conversations": 0,
        "messages": 2,
        "avg_sentiment_score": 0.0,
        "escalations": 0,
        "participation_rate": 1.0,
    }


def test_update_config_rederives_targets(api) -> None:
    admin = api.header("admin")
    instance = api.client.post("/api/agents/instances", json=_create_payload(), headers=admin).json()

    response = api.client.put(
        f"/api/agents/instances/{instance['id']}/config",
        json={"config": {"audience_type": "department", "target_department": "Sales"}},
        headers=admin,
    )

    assert response.status_code == 200
    assert response.json()["target_employee_ids"] == [str(api.auth.users["sales"])]


def test_validation_errors_name_the_field(api) -> None:
    admin = api.header("admin")

    unknown = api.client.post(
        "/api/agents/instances", json=_create_payload(agent_id="astrologer"), headers=admin
    )
    assert unknown.status_code == 400
    assert unknown.json()["detail"]["field"] == "agent_id"

    missing_department = api.client.post(
        "/api/agents/instances",
        json=_create_payload(config={"audience_type": "department"}),
        headers=admin,
    )
    assert missing_department.status_code == 400
    assert missing_department.json()["detail"]["field"] == "target_department"

    bad_cadence = api.client.post(
        "/api/agents/instances",
        json=_create_payload(schedule={"cadence": "hourly"}),
        headers=admin,
    )
    assert bad_cadence.json()["detail"]["field"] == "cadence"

    missing_name = api.client.post(
        "/api/agents/instances",
        json={"agent_id": "pulse_check", "config": {"audience_type": "all"}},
        headers=admin,
    )
    assert missing_name.status_code == 400
    assert missing_name.json()["detail"]["field"] == "name"


def test_employees_cannot_manage_instances(api) -> None:
    employee = api.header("employee")

    assert api.client.get("/api/agents/instances", headers=employee).status_code == 403
    response = api.client.post("/api/agents/instances", json=_create_payload(), headers=employee)
    assert response.status_code == 403
    assert response.json()["detail"] == "Insufficient permissions. Admin access required."


def test_unknown_instance_is_404(api) -> None:
    response = api.client.get(f"/api/agents/instances/{uuid.uuid4()}", headers=api.header("admin"))
    assert response.status_code == 404


def test_instances_are_isolated_between_companies(api) -> None:
    instance = api.client.post(
        "/api/agents/instances", json=_create_payload(), headers=api.header("admin")
    ).json()
    other_company = api.auth.create_company("Globex")
    other_admin = api.header("admin", other_company)

    assert api.client.get("/api/agents/instances", headers=other_admin).json()["total"] == 0
    response = api.client.get(f"/api/agents/instances/{instance['id']}", headers=other_admin)
    assert response.status_code == 404


def test_run_due_uses_scheduled_run_type(api) -> None:
    admin = api.header("admin")
    api.client.post(
        "/api/agents/instances",
        json=_create_payload(schedule={"cadence": "once"}),
        headers=admin,
    )
    api.stack.clock.advance(hours=1)

    response = api.client.post("/api/agents/run-due", headers=admin)

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 1
    assert body["items"][0]["run_type"] == "scheduled"
    assert api.client.post("/api/agents/run-due", headers=admin).json()["total"] == 0


def test_deactivated_admin_loses_access(api) -> None:
    api.auth.deactivate("admin")
    response = api.client.get("/api/agents/instances", headers=api.header("admin"))
    assert response.status_code == 401
