"""
End-to-end tests through the HTTP API backed by the SQLite store.

Tests cover:
- Authentication (401 handling, login, /api/auth/me)
- Error response shape for typed service errors
- The full membership / hours / archive lifecycle of a project
- List query parameters, comments and the hours report
"""

import logging

from fastapi.testclient import TestClient

from tests.conftest import TEST_PASSWORD, auth_headers_for

logger = logging.getLogger(__name__)


def _login(client: TestClient, email: str) -> dict:
    response = client.post("/api/auth/login", json={"email": email, "password": TEST_PASSWORD})
    assert response.status_code == 200, response.json()
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def _create_project(client, headers, **extra) -> dict:
    body = {"name": "Website", "description": "Relaunch", **extra}
    response = client.post("/api/projects", json=body, headers=headers)
    assert response.status_code == 201, response.json()
    return response.json()


# ============== Authentication ==============


def test_health(client: TestClient):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_requests_without_token_are_rejected(client: TestClient):
    response = client.get("/api/projects")
    assert response.status_code == 401, f"Expected 401, got {response.status_code}"
    assert response.json()["detail"] == "Not authenticated"


def test_invalid_token_is_rejected(client: TestClient):
    response = client.get("/api/projects", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


def test_login_and_me(client: TestClient, sql_people):
    headers = _login(client, "manager@test.com")
    response = client.get("/api/auth/me", headers=headers)
    assert response.status_code == 200
    assert response.json()["email"] == "manager@test.com"
    assert response.json()["role"] == "manager"
    logger.info("✓ Login issued a working access token")


def test_login_with_wrong_password(client: TestClient, sql_people):
    response = client.post("/api/auth/login", json={"email": "manager@test.com", "password": "wrong"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid email or password"


# ============== Error shape ==============


def test_permission_denied_shape(client: TestClient, sql_people):
    response = client.post(
        "/api/projects", json={"name": "X", "description": "Y"}, headers=auth_headers_for(sql_people.staff)
    )
    assert response.status_code == 403
    assert response.json() == {"detail": "insufficient role", "error": "permission_denied"}


def test_not_found_shape(client: TestClient, sql_people):
    response = client.get("/api/projects/999", headers=auth_headers_for(sql_people.admin))
    assert response.status_code == 404
    assert response.json() == {"detail": "Project not found", "error": "not_found"}


def test_validation_failed_shape(client: TestClient, sql_people):
    response = client.post("/api/projects", json={"name": "X"}, headers=auth_headers_for(sql_people.manager))
    assert response.status_code == 400
    assert response.json()["error"] == "validation_failed"


# ============== Project lifecycle ==============


def test_membership_hours_and_archive_lifecycle(client: TestClient, sql_people):
    """Creator logs hours, a collaborator joins and logs hours, then the project is archived."""
    manager_headers = _login(client, "manager@test.com")
    staff_headers = _login(client, "staff@test.com")
    manager_id, staff_id = sql_people.manager.id, sql_people.staff.id

    project = _create_project(client, manager_headers)
    assert project["status"] == "active"

    response = client.post(f"/api/projects/{project['id']}/tasks", json={"title": "Homepage"}, headers=manager_headers)
    assert response.status_code == 201, response.json()
    task = response.json()
    assert task["assigned_to"] == [manager_id]

    response = client.put(f"/api/tasks/{task['id']}", json={"hours": 3}, headers=manager_headers)
    assert response.status_code == 200, response.json()

    response = client.post(
        f"/api/projects/{project['id']}/members", json={"user_ids": [staff_id]}, headers=manager_headers
    )
    assert response.status_code == 200, response.json()
    assert {m["user_id"]: m["role"] for m in response.json()} == {manager_id: "creator", staff_id: "collaborator"}

    response = client.put(
        f"/api/tasks/{task['id']}", json={"assigned_to": [manager_id, staff_id]}, headers=manager_headers
    )
    assert response.status_code == 200, response.json()

    response = client.put(f"/api/tasks/{task['id']}", json={"hours": 2}, headers=staff_headers)
    assert response.status_code == 200, response.json()

    response = client.get(f"/api/tasks/{task['id']}/hours", headers=staff_headers)
    assert response.status_code == 200
    hours = response.json()
    assert hours["total_hours"] == 5
    assert hours["per_assignee"] == [
        {"user_id": manager_id, "hours": 3},
        {"user_id": staff_id, "hours": 2},
    ]

    response = client.patch(f"/api/projects/{project['id']}/archive", headers=manager_headers)
    assert response.status_code == 200, response.json()
    assert response.json()["status"] == "archived"

    response = client.put(f"/api/tasks/{task['id']}", json={"title": "Too late"}, headers=manager_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Project is archived and read-only."

    response = client.get(f"/api/tasks/{task['id']}", headers=manager_headers)
    assert response.json()["archived"] is True
    assert response.json()["title"] == "Homepage"
    logger.info("✓ Lifecycle ended with an archived, read-only project")


def test_creator_cannot_be_removed_by_admin(client: TestClient, sql_people):
    project = _create_project(client, auth_headers_for(sql_people.manager))
    response = client.delete(
        f"/api/projects/{project['id']}/members/{sql_people.manager.id}",
        headers=auth_headers_for(sql_people.admin),
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Cannot remove the project creator"


def test_update_project_via_put(client: TestClient, sql_people):
    headers = auth_headers_for(sql_people.manager)
    project = _create_project(client, headers)
    response = client.put(f"/api/projects/{project['id']}", json={"status": "hold"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["status"] == "hold"

    response = client.post(f"/api/projects/{project['id']}/tasks", json={"title": "Paused"}, headers=headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Tasks can only be assigned to active projects."


def test_project_visibility_in_listing(client: TestClient, sql_people):
    _create_project(client, auth_headers_for(sql_people.manager))

    assert len(client.get("/api/projects", headers=auth_headers_for(sql_people.hr)).json()) == 1
    assert client.get("/api/projects", headers=auth_headers_for(sql_people.staff)).json() == []
    assert client.get("/api/projects", headers=auth_headers_for(sql_people.outsider)).json() == []


# ============== Tasks ==============


def test_list_tasks_query_parameters(client: TestClient, sql_people):
    headers = auth_headers_for(sql_people.manager)
    project = _create_project(client, headers)
    for title, priority in (("Low", "low"), ("High", "high"), ("Mid", 5)):
        response = client.post(
            f"/api/projects/{project['id']}/tasks", json={"title": title, "priority": priority}, headers=headers
        )
        assert response.status_code == 201, response.json()

    response = client.get(
        f"/api/projects/{project['id']}/tasks",
        params={"sortBy": "priority", "sortOrder": "asc", "page": 1, "limit": 2},
        headers=headers,
    )
    assert response.status_code == 200, response.json()
    body = response.json()
    assert [t["title"] for t in body["tasks"]] == ["Low", "Mid"]
    assert body["pagination"]["total"] == 3
    assert body["pagination"]["has_next"] is True

    response = client.get(f"/api/projects/{project['id']}/tasks", params={"priority": "high"}, headers=headers)
    assert [t["title"] for t in response.json()["tasks"]] == ["High"]

    response = client.get(f"/api/projects/{project['id']}/tasks", params={"sortBy": "name"}, headers=headers)
    assert response.status_code == 400


def test_stale_version_returns_conflict(client: TestClient, sql_people):
    headers = auth_headers_for(sql_people.manager)
    project = _create_project(client, headers)
    task = client.post(f"/api/projects/{project['id']}/tasks", json={"title": "T"}, headers=headers).json()

    first = client.put(f"/api/tasks/{task['id']}", json={"title": "A", "version": task["version"]}, headers=headers)
    assert first.status_code == 200
    assert first.json()["version"] == task["version"] + 1

    second = client.put(f"/api/tasks/{task['id']}", json={"title": "B", "version": task["version"]}, headers=headers)
    assert second.status_code == 409
    assert second.json()["error"] == "concurrent_modification"


def test_subtasks_endpoint(client: TestClient, sql_people):
    headers = auth_headers_for(sql_people.manager)
    project = _create_project(client, headers)
    parent = client.post(f"/api/projects/{project['id']}/tasks", json={"title": "Parent"}, headers=headers).json()
    child = client.post(
        f"/api/projects/{project['id']}/tasks", json={"title": "Child", "parent_id": parent["id"]}, headers=headers
    ).json()

    response = client.get(f"/api/tasks/{parent['id']}/subtasks", headers=headers)
    assert [t["id"] for t in response.json()] == [child["id"]]


# ============== Comments and reports ==============


def test_comment_thread(client: TestClient, sql_people):
    headers = auth_headers_for(sql_people.manager)
    project = _create_project(client, headers)
    task = client.post(f"/api/projects/{project['id']}/tasks", json={"title": "T"}, headers=headers).json()

    root = client.post(f"/api/tasks/{task['id']}/comments", json={"content": "Kickoff"}, headers=headers)
    assert root.status_code == 201
    reply = client.post(
        f"/api/tasks/{task['id']}/comments", json={"content": "Done", "parent_id": root.json()["id"]}, headers=headers
    )
    assert reply.status_code == 201

    edited = client.put(f"/api/comments/{root.json()['id']}", json={"content": "Kickoff!"}, headers=headers)
    assert edited.json()["edited"] is True

    thread = client.get(f"/api/tasks/{task['id']}/comments", headers=headers).json()
    assert thread[0]["content"] == "Kickoff!"
    assert [r["content"] for r in thread[0]["replies"]] == ["Done"]


def test_hours_report(client: TestClient, sql_people):
    headers = auth_headers_for(sql_people.manager)
    project = _create_project(client, headers)
    other = _create_project(client, headers, name="Empty")
    task = client.post(f"/api/projects/{project['id']}/tasks", json={"title": "T"}, headers=headers).json()
    client.put(f"/api/tasks/{task['id']}", json={"hours": 4.5}, headers=headers)

    response = client.get("/api/reports/hours", headers=headers)
    assert response.status_code == 200
    assert response.json() == {
        "total_hours": 4.5,
        "per_project": [
            {"project_id": project["id"], "project_name": "Website", "hours": 4.5},
            {"project_id": other["id"], "project_name": "Empty", "hours": 0},
        ],
    }

    response = client.get("/api/reports/hours", params={"projectId": other["id"]}, headers=headers)
    assert response.json()["total_hours"] == 0


# ============== Users and notifications ==============


def test_user_directory_search(client: TestClient, sql_people):
    response = client.get("/api/users", params={"search": "staff"}, headers=auth_headers_for(sql_people.staff))
    assert response.status_code == 200, response.json()
    assert [u["email"] for u in response.json()] == ["another@test.com", "staff@test.com"]
    assert "password_hash" not in response.json()[0]

    response = client.get("/api/users", params={"limit": "abc"}, headers=auth_headers_for(sql_people.staff))
    assert response.status_code == 400


def test_assignable_users_endpoint(client: TestClient, sql_people):
    headers = auth_headers_for(sql_people.manager)
    project = _create_project(client, headers, user_ids=[sql_people.staff.id])

    response = client.get(f"/api/projects/{project['id']}/assignable-users", headers=headers)
    assert response.status_code == 200
    assert [u["id"] for u in response.json()] == [sql_people.manager.id, sql_people.staff.id]

    response = client.get(
        f"/api/projects/{project['id']}/assignable-users", headers=auth_headers_for(sql_people.another)
    )
    assert response.status_code == 403


def test_invitation_and_comment_notifications(client: TestClient, sql_people):
    manager_headers = auth_headers_for(sql_people.manager)
    staff_headers = auth_headers_for(sql_people.staff)
    project = _create_project(client, manager_headers)

    response = client.post(
        f"/api/projects/{project['id']}/members",
        json={"user_ids": [sql_people.staff.id], "message": "Welcome"},
        headers=manager_headers,
    )
    assert response.status_code == 200, response.json()

    task = client.post(
        f"/api/projects/{project['id']}/tasks",
        json={"title": "Homepage", "assigned_to": [sql_people.staff.id]},
        headers=manager_headers,
    ).json()
    client.post(f"/api/tasks/{task['id']}/comments", json={"content": "Please review"}, headers=manager_headers)

    response = client.get("/api/notifications", headers=staff_headers)
    assert response.status_code == 200, response.json()
    body = response.json()
    assert [n["kind"] for n in body["notifications"]] == ["comment", "invitation"]
    assert body["notifications"][1]["message"].startswith('Manager User has invited you to join the project "Website"')
    assert body["pagination"] == {"limit": 50, "offset": 0}

    sent = client.get("/api/notifications/created", params={"limit": 1}, headers=manager_headers).json()
    assert [n["kind"] for n in sent["notifications"]] == ["comment"]
    logger.info("✓ Invitations and comments reached the staff member's inbox")


def test_user_hours_report(client: TestClient, sql_people):
    headers = auth_headers_for(sql_people.manager)
    project = _create_project(client, headers)
    task = client.post(f"/api/projects/{project['id']}/tasks", json={"title": "T"}, headers=headers).json()
    client.put(f"/api/tasks/{task['id']}", json={"hours": 2.25}, headers=headers)

    response = client.get("/api/reports/hours/by-user", headers=headers)
    assert response.status_code == 200
    assert response.json() == {
        "total_hours": 2.25,
        "per_assignee": [{"user_id": sql_people.manager.id, "user_name": "Manager User", "hours": 2.25}],
    }


def test_oversized_hours_are_neutralized(client: TestClient, sql_people):
    headers = auth_headers_for(sql_people.manager)
    project = _create_project(client, headers)
    task = client.post(f"/api/projects/{project['id']}/tasks", json={"title": "T"}, headers=headers).json()

    response = client.put(
        f"/api/tasks/{task['id']}",
        content='{"hours": 1' + "0" * 400 + "}",
        headers={**headers, "Content-Type": "application/json"},
    )
    assert response.status_code == 200, response.json()
    assert response.json()["time_tracking"]["total_hours"] == 0
