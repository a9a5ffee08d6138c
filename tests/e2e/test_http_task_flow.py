"""E2E HTTP tests for tasks, progress, reviews and dashboards."""

import pytest

from tests.e2e.conftest import application_body, lead_headers

API = "/api/v1"


async def approved_lead(http_client, advocate_headers, email: str, status: str = "approved"):
    """Submit an application, move it to status, and return the lead."""
    response = await http_client.post(f"{API}/applications", json=application_body(email))
    application_id = response.json()["data"]["id"]
    response = await http_client.post(
        f"{API}/applications/{application_id}/transitions",
        json={"status": status},
        headers=advocate_headers,
    )
    assert response.status_code == 200
    return response.json()["data"]["lead"]


async def create_task(http_client, advocate_headers, **fields) -> dict:
    body = {"title": "Write a blog post", "description": "Share what you built.", "type": "weekly"}
    body.update(fields)
    response = await http_client.post(f"{API}/tasks", json=body, headers=advocate_headers)
    assert response.status_code == 201
    return response.json()["data"]


@pytest.mark.e2e
@pytest.mark.asyncio
async def test_overdue_flow(http_client, advocate_headers, clock):
    """One lead finishes, the other never acts: the task stays overdue."""
    l1 = await approved_lead(http_client, advocate_headers, "l1@x.com")
    l2 = await approved_lead(http_client, advocate_headers, "l2@x.com")
    due = clock.now.replace(day=11).isoformat()
    task = await create_task(
        http_client, advocate_headers, assigned_to=[l1["id"], l2["id"]], due_date=due
    )
    assert task["status"] == "pending"
    assert task["days_until_due"] == 1

    progress_url = f"{API}/tasks/{task['id']}/progress"
    response = await http_client.put(
        progress_url, json={"status": "in_progress"}, headers=lead_headers("l1@x.com")
    )
    assert response.json()["data"]["task"]["status"] == "in_progress"

    clock.advance(days=2)
    response = await http_client.get(f"{API}/tasks/{task['id']}", headers=advocate_headers)
    assert response.json()["data"]["status"] == "overdue"
    assert response.json()["data"]["is_overdue"] is True

    response = await http_client.put(
        progress_url, json={"status": "completed"}, headers=lead_headers("l1@x.com")
    )
    data = response.json()["data"]
    assert data["record"]["status"] == "completed"
    assert data["task"]["status"] == "overdue"
    assert data["task"]["completion_rate"] == 50.0

    response = await http_client.get(
        f"{API}/tasks/{task['id']}/assignees/{l2['id']}/status", headers=advocate_headers
    )
    assert response.json()["data"]["status"] == "overdue"


@pytest.mark.e2e
@pytest.mark.asyncio
async def test_date_only_due_date(http_client, advocate_headers, clock):
    """A date-only due date is read as midnight UTC."""
    lead = await approved_lead(http_client, advocate_headers, "l1@x.com")

    task = await create_task(
        http_client, advocate_headers, assigned_to=[lead["id"]], due_date="2025-03-20"
    )
    clock.advance(days=11)
    response = await http_client.get(f"{API}/tasks/{task['id']}", headers=advocate_headers)

    assert task["due_date"] == "2025-03-20T00:00:00Z"
    assert task["days_until_due"] == 10
    assert response.json()["data"]["status"] == "overdue"


@pytest.mark.e2e
@pytest.mark.asyncio
async def test_submission_review_flow(http_client, advocate_headers):
    """Review needs a submission and leaves the other assignee alone."""
    l1 = await approved_lead(http_client, advocate_headers, "l1@x.com")
    l2 = await approved_lead(http_client, advocate_headers, "l2@x.com")
    task = await create_task(
        http_client,
        advocate_headers,
        assigned_to=[l1["id"], l2["id"]],
        submission_required=True,
        submission_type="url",
    )
    review_url = f"{API}/tasks/{task['id']}/reviews"

    response = await http_client.post(
        review_url, json={"lead_id": l1["id"], "decision": "approved"}, headers=advocate_headers
    )
    assert response.status_code == 404
    assert response.json()["errorKind"] == "NotFound"

    await http_client.put(
        f"{API}/tasks/{task['id']}/progress",
        json={"status": "completed", "submission_url": "https://blog.example.com/post"},
        headers=lead_headers("l1@x.com"),
    )
    response = await http_client.post(
        review_url,
        json={"lead_id": l1["id"], "decision": "approved", "notes": "Nice"},
        headers=advocate_headers,
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["record"]["review"]["status"] == "approved"
    records = {r["lead_id"]: r for r in data["task"]["completions"]}
    assert records[l2["id"]]["status"] == "pending"
    assert records[l2["id"]]["review"] is None


@pytest.mark.e2e
@pytest.mark.asyncio
async def test_lead_cannot_update_other_record(http_client, advocate_headers):
    l1 = await approved_lead(http_client, advocate_headers, "l1@x.com")
    l2 = await approved_lead(http_client, advocate_headers, "l2@x.com")
    task = await create_task(http_client, advocate_headers, assigned_to=[l1["id"], l2["id"]])

    response = await http_client.put(
        f"{API}/tasks/{task['id']}/progress",
        json={"status": "completed", "lead_id": l2["id"]},
        headers=lead_headers("l1@x.com"),
    )

    assert response.status_code == 403


@pytest.mark.e2e
@pytest.mark.asyncio
async def test_lead_cannot_create_task(http_client, advocate_headers):
    await approved_lead(http_client, advocate_headers, "l1@x.com")

    response = await http_client.post(
        f"{API}/tasks",
        json={"title": "t", "description": "d", "type": "weekly"},
        headers=lead_headers("l1@x.com"),
    )

    assert response.status_code == 403


@pytest.mark.e2e
@pytest.mark.asyncio
async def test_assign_unassign(http_client, advocate_headers):
    lead = await approved_lead(http_client, advocate_headers, "l1@x.com")
    task = await create_task(http_client, advocate_headers)
    assignees_url = f"{API}/tasks/{task['id']}/assignees"

    body = {"lead_id": lead["id"]}
    first = await http_client.post(assignees_url, json=body, headers=advocate_headers)
    again = await http_client.post(assignees_url, json=body, headers=advocate_headers)
    assert first.json()["data"]["assigned_to"] == [lead["id"]]
    assert again.json()["data"]["completions"] == first.json()["data"]["completions"]

    removed = await http_client.delete(f"{assignees_url}/{lead['id']}", headers=advocate_headers)
    assert removed.json()["data"]["assigned_to"] == []
    assert removed.json()["data"]["completions"] == []

    missing = await http_client.delete(f"{assignees_url}/{lead['id']}", headers=advocate_headers)
    assert missing.status_code == 404


@pytest.mark.e2e
@pytest.mark.asyncio
async def test_task_listing(http_client, advocate_headers, clock):
    lead = await approved_lead(http_client, advocate_headers, "l1@x.com")
    later = await create_task(
        http_client,
        advocate_headers,
        assigned_to=[lead["id"]],
        due_date=clock.now.replace(day=20).isoformat(),
    )
    sooner = await create_task(
        http_client,
        advocate_headers,
        assigned_to_all=True,
        type="training",
        due_date=clock.now.replace(day=15).isoformat(),
    )
    retired = await create_task(http_client, advocate_headers, assigned_to=[lead["id"]])
    await http_client.post(f"{API}/tasks/{retired['id']}/deactivate", headers=advocate_headers)
    headers = lead_headers("l1@x.com")

    mine = await http_client.get(f"{API}/tasks", params={"lead_id": lead["id"]}, headers=headers)
    training = await http_client.get(f"{API}/tasks", params={"type": "training"}, headers=headers)

    assert [t["id"] for t in mine.json()["data"]] == [sooner["id"], later["id"]]
    assert [t["id"] for t in training.json()["data"]] == [sooner["id"]]
    assert training.json()["data"][0]["status"] == "n/a"


@pytest.mark.e2e
@pytest.mark.asyncio
async def test_lead_dashboard(http_client, advocate_headers):
    candidate = await approved_lead(
        http_client, advocate_headers, "c@x.com", status="under_review"
    )
    lead = await approved_lead(http_client, advocate_headers, "l1@x.com", status="onboarded")
    onboarding = await create_task(
        http_client, advocate_headers, assigned_to=[lead["id"]], type="onboarding"
    )
    await create_task(http_client, advocate_headers, assigned_to=[lead["id"]], type="onboarding")
    await http_client.put(
        f"{API}/tasks/{onboarding['id']}/progress",
        json={"status": "completed"},
        headers=lead_headers("l1@x.com"),
    )

    denied = await http_client.get(f"{API}/dashboard/lead", headers=lead_headers("c@x.com"))
    response = await http_client.get(f"{API}/dashboard/lead", headers=lead_headers("l1@x.com"))

    assert candidate["can_access_dashboard"] is False
    assert denied.status_code == 403
    data = response.json()["data"]
    assert data["lead"]["id"] == lead["id"]
    assert len(data["tasks"]["completed"]) == 1
    assert len(data["tasks"]["pending"]) == 1
    assert data["onboarding"]["percentage"] == 50.0
    assert data["performance"]["metrics"]["tasks_completed"] == 1
    assert data["lead"]["onboarding_progress"]["completion_percentage"] == 50.0


@pytest.mark.e2e
@pytest.mark.asyncio
async def test_advocate_dashboard_and_rebuild(http_client, advocate_headers):
    lead = await approved_lead(http_client, advocate_headers, "l1@x.com", status="onboarded")
    await approved_lead(http_client, advocate_headers, "c@x.com", status="under_review")
    late = await create_task(
        http_client, advocate_headers, assigned_to=[lead["id"]], due_date="2025-03-09"
    )
    task = await create_task(http_client, advocate_headers, assigned_to=[lead["id"]])
    await http_client.put(
        f"{API}/tasks/{task['id']}/progress",
        json={"status": "completed"},
        headers=lead_headers("l1@x.com"),
    )

    response = await http_client.get(f"{API}/dashboard/advocate", headers=advocate_headers)
    denied = await http_client.get(f"{API}/dashboard/advocate", headers=lead_headers("l1@x.com"))
    rebuilt = await http_client.post(
        f"{API}/admin/leads/{lead['id']}/rebuild-metrics", headers=advocate_headers
    )

    data = response.json()["data"]
    assert data["applications"]["total"] == 2
    assert data["applications"]["pending_review"] == 1
    assert data["leads"]["by_bucket"]["active"] == 1
    assert data["leads"]["by_bucket"]["candidate"] == 1
    assert [r["lead_id"] for r in data["leaderboard"]] == [lead["id"]]
    assert data["tasks"]["by_status"]["completed"] == 1
    assert [t["id"] for t in data["overdue_tasks"]] == [late["id"]]
    assert denied.status_code == 403
    assert rebuilt.json()["data"]["performance_metrics"]["tasks_completed"] == 1
