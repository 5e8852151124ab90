from __future__ import annotations

import pytest
from sqlalchemy import select

from accessgate.domain.models import AuditEvent, Project, ProjectMember, Task
from accessgate.domain.roles import RoleKind
from accessgate.tests.utils.auth import bearer_headers
from accessgate.tests.utils.seed import add_member, create_account, create_project, create_task, create_team


@pytest.mark.asyncio
async def test_create_and_fetch_project(client, session) -> None:
    team = await create_team(session)
    headers = bearer_headers(RoleKind.MANAGER, team.manager.id)

    response = await client.post(
        "/v1/manager/projects",
        json={"code": "ALPHA", "title": "Alpha launch", "description": "First release"},
        headers={**headers, "X-Request-Id": "req-create-1"},
    )
    assert response.status_code == 201
    created = response.json()["data"]
    assert created["organization_id"] == team.organization_id
    assert created["owner_id"] == team.manager.id
    assert created["status"] == "active"
    assert created["version"] == 1
    assert "deleted_at" not in created

    response = await client.get(f"/v1/manager/projects/{created['id']}", headers=headers)
    assert response.status_code == 200
    assert response.json()["data"]["code"] == "ALPHA"

    events = (await session.execute(select(AuditEvent))).scalars().all()
    assert [(event.event_type, event.request_id) for event in events] == [("project.created", "req-create-1")]


@pytest.mark.asyncio
async def test_server_fields_in_create_payload_are_rejected(client, session) -> None:
    team = await create_team(session)
    headers = bearer_headers(RoleKind.MANAGER, team.manager.id)

    response = await client.post(
        "/v1/manager/projects",
        json={"code": "X", "title": "X", "organization_id": "someone-else"},
        headers=headers,
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_blank_title_is_a_validation_error(client, session) -> None:
    team = await create_team(session)
    headers = bearer_headers(RoleKind.MANAGER, team.manager.id)

    response = await client.post("/v1/manager/projects", json={"code": "X", "title": "   "}, headers=headers)

    assert response.status_code == 400
    assert response.json()["error"] == {
        "code": "VALIDATION_ERROR",
        "message": "title must not be blank",
        "details": {"field": "title"},
    }


@pytest.mark.asyncio
async def test_duplicate_code_within_organization_conflicts(client, session) -> None:
    team = await create_team(session)
    other = await create_team(session, "Other")
    await create_project(session, organization_id=team.organization_id, owner_id=team.manager.id, code="ALPHA")

    response = await client.post(
        "/v1/manager/projects",
        json={"code": "ALPHA", "title": "Again"},
        headers=bearer_headers(RoleKind.MANAGER, team.manager.id),
    )
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "DUPLICATE"

    # Codes are unique per organization, not globally.
    response = await client.post(
        "/v1/manager/projects",
        json={"code": "ALPHA", "title": "Theirs"},
        headers=bearer_headers(RoleKind.MANAGER, other.manager.id),
    )
    assert response.status_code == 201


@pytest.mark.asyncio
async def test_search_by_title_returns_only_matches(client, session) -> None:
    team = await create_team(session)
    for code, title in (("P1", "Alpha Plan"), ("P2", "Beta Plan"), ("P3", "Alpha Report")):
        await create_project(
            session, organization_id=team.organization_id, owner_id=team.manager.id, code=code, title=title
        )

    response = await client.post(
        "/v1/manager/projects/search",
        json={"search": "Alpha"},
        headers=bearer_headers(RoleKind.MANAGER, team.manager.id),
    )

    assert response.status_code == 200
    body = response.json()
    assert {item["title"] for item in body["data"]} == {"Alpha Plan", "Alpha Report"}
    assert body["pagination"]["records"] == 2
    assert body["meta"]["api_version"] == "v1"


@pytest.mark.asyncio
async def test_unknown_filter_fields_are_ignored(client, session) -> None:
    team = await create_team(session)
    await create_project(session, organization_id=team.organization_id, owner_id=team.manager.id)

    response = await client.post(
        "/v1/manager/projects/search",
        json={"organization_id": "spoofed", "favourite_colour": "blue"},
        headers=bearer_headers(RoleKind.MANAGER, team.manager.id),
    )

    assert response.status_code == 200
    assert response.json()["pagination"]["records"] == 1


@pytest.mark.asyncio
async def test_scopes_are_exclusive_between_organizations_and_members(client, session) -> None:
    team = await create_team(session)
    outsider = await create_team(session, "Outsider")
    joined = await create_project(
        session, organization_id=team.organization_id, owner_id=team.manager.id, title="Joined"
    )
    await create_project(session, organization_id=team.organization_id, owner_id=team.manager.id, title="Private")
    foreign = await create_project(
        session, organization_id=outsider.organization_id, owner_id=outsider.manager.id, title="Foreign"
    )
    await add_member(session, joined, team.developer)

    manager_view = await client.post(
        "/v1/manager/projects/search", json={}, headers=bearer_headers(RoleKind.MANAGER, team.manager.id)
    )
    developer_view = await client.post(
        "/v1/developer/projects/search", json={}, headers=bearer_headers(RoleKind.DEVELOPER, team.developer.id)
    )
    designer_view = await client.post(
        "/v1/designer/projects/search", json={}, headers=bearer_headers(RoleKind.DESIGNER, team.designer.id)
    )

    assert {item["title"] for item in manager_view.json()["data"]} == {"Joined", "Private"}
    assert {item["title"] for item in developer_view.json()["data"]} == {"Joined"}
    assert designer_view.json()["data"] == []
    assert designer_view.json()["pagination"]["records"] == 0

    response = await client.get(
        f"/v1/manager/projects/{foreign}", headers=bearer_headers(RoleKind.MANAGER, team.manager.id)
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_changing_organization_is_privilege_escalation(client, session) -> None:
    team = await create_team(session)
    project_id = await create_project(
        session, organization_id=team.organization_id, owner_id=team.manager.id, title="Original"
    )

    response = await client.patch(
        f"/v1/manager/projects/{project_id}",
        json={"title": "Stolen", "organization_id": "another-org"},
        headers=bearer_headers(RoleKind.MANAGER, team.manager.id),
    )

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "PRIVILEGE_ESCALATION"
    stored = await session.get(Project, project_id, populate_existing=True)
    assert stored.title == "Original"


@pytest.mark.asyncio
async def test_other_organization_cannot_update_project(client, session) -> None:
    team = await create_team(session)
    outsider = await create_team(session, "Outsider")
    project_id = await create_project(
        session, organization_id=team.organization_id, owner_id=team.manager.id, title="Original"
    )

    response = await client.patch(
        f"/v1/manager/projects/{project_id}",
        json={"title": "Hijacked"},
        headers=bearer_headers(RoleKind.MANAGER, outsider.manager.id),
    )

    assert response.status_code == 403
    stored = await session.get(Project, project_id, populate_existing=True)
    assert (stored.title, stored.version) == ("Original", 1)


@pytest.mark.asyncio
async def test_archived_project_is_locked(client, session) -> None:
    team = await create_team(session)
    project_id = await create_project(session, organization_id=team.organization_id, owner_id=team.manager.id)
    headers = bearer_headers(RoleKind.MANAGER, team.manager.id)

    response = await client.patch(f"/v1/manager/projects/{project_id}", json={"status": "archived"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["data"]["version"] == 2

    response = await client.patch(f"/v1/manager/projects/{project_id}", json={"title": "Revived"}, headers=headers)
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "RESOURCE_LOCKED"

    response = await client.post(
        "/v1/manager/tasks", json={"project_id": project_id, "title": "Late work"}, headers=headers
    )
    assert response.status_code == 409

    stored = await session.get(Project, project_id, populate_existing=True)
    assert (stored.title, stored.status, stored.version) == ("Project", "archived", 2)


@pytest.mark.asyncio
async def test_stale_version_is_rejected(client, session) -> None:
    team = await create_team(session)
    project_id = await create_project(session, organization_id=team.organization_id, owner_id=team.manager.id)
    headers = bearer_headers(RoleKind.MANAGER, team.manager.id)

    response = await client.patch(
        f"/v1/manager/projects/{project_id}", json={"title": "First", "version": 1}, headers=headers
    )
    assert response.status_code == 200

    response = await client.patch(
        f"/v1/manager/projects/{project_id}", json={"title": "Second", "version": 1}, headers=headers
    )
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "VERSION_CONFLICT"
    assert response.json()["error"]["details"] == {"expected_version": 1, "current_version": 2}


@pytest.mark.asyncio
async def test_delete_cascades_to_tasks_and_hides_project(client, session) -> None:
    team = await create_team(session)
    project_id = await create_project(session, organization_id=team.organization_id, owner_id=team.manager.id)
    await add_member(session, project_id, team.developer)
    task_id = await create_task(
        session, organization_id=team.organization_id, project_id=project_id, creator_id=team.manager.id
    )
    headers = bearer_headers(RoleKind.MANAGER, team.manager.id)

    response = await client.delete(f"/v1/manager/projects/{project_id}", headers=headers)
    assert response.status_code == 204

    assert (await client.get(f"/v1/manager/projects/{project_id}", headers=headers)).status_code == 404
    assert (await client.get(f"/v1/manager/tasks/{task_id}", headers=headers)).status_code == 404
    assert (await client.delete(f"/v1/manager/projects/{project_id}", headers=headers)).status_code == 404

    search = await client.post("/v1/manager/tasks/search", json={}, headers=headers)
    assert search.json()["pagination"]["records"] == 0

    # Rows stay in place for recovery; only deleted_at marks them.
    task = await session.get(Task, task_id, populate_existing=True)
    link = (
        await session.execute(
            select(ProjectMember)
            .where(ProjectMember.project_id == project_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one()
    assert task.deleted_at is not None
    assert link.deleted_at is not None

    deleted_view = await client.post(
        "/v1/manager/projects/search", json={"include_deleted": True}, headers=headers
    )
    assert [item["id"] for item in deleted_view.json()["data"]] == [project_id]
    assert "deleted_at" in deleted_view.json()["data"][0]


@pytest.mark.asyncio
async def test_code_can_be_reused_after_delete(client, session) -> None:
    team = await create_team(session)
    await create_project(
        session, organization_id=team.organization_id, owner_id=team.manager.id, code="ALPHA", deleted=True
    )

    response = await client.post(
        "/v1/manager/projects",
        json={"code": "ALPHA", "title": "Second life"},
        headers=bearer_headers(RoleKind.MANAGER, team.manager.id),
    )

    assert response.status_code == 201


@pytest.mark.asyncio
async def test_member_management(client, session) -> None:
    team = await create_team(session)
    outsider = await create_team(session, "Outsider")
    project_id = await create_project(session, organization_id=team.organization_id, owner_id=team.manager.id)
    headers = bearer_headers(RoleKind.MANAGER, team.manager.id)

    response = await client.post(
        f"/v1/manager/projects/{project_id}/members", json={"member_id": team.designer.id}, headers=headers
    )
    assert response.status_code == 201
    assert response.json()["data"]["member_role"] == "designer"

    response = await client.post(
        f"/v1/manager/projects/{project_id}/members", json={"member_id": team.designer.id}, headers=headers
    )
    assert response.status_code == 409

    # Accounts from another organization cannot be added.
    response = await client.post(
        f"/v1/manager/projects/{project_id}/members", json={"member_id": outsider.developer.id}, headers=headers
    )
    assert response.status_code == 404

    designer_headers = bearer_headers(RoleKind.DESIGNER, team.designer.id)
    response = await client.get(f"/v1/designer/projects/{project_id}/members", headers=designer_headers)
    assert response.status_code == 200
    assert [item["member_id"] for item in response.json()["data"]] == [team.designer.id]

    response = await client.delete(f"/v1/manager/projects/{project_id}/members/{team.designer.id}", headers=headers)
    assert response.status_code == 204

    response = await client.get(f"/v1/designer/projects/{project_id}", headers=designer_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_removing_member_unassigns_open_tasks(client, session) -> None:
    team = await create_team(session)
    project_id = await create_project(session, organization_id=team.organization_id, owner_id=team.manager.id)
    await add_member(session, project_id, team.developer)
    open_task = await create_task(
        session,
        organization_id=team.organization_id,
        project_id=project_id,
        creator_id=team.manager.id,
        assignee_id=team.developer.id,
    )
    done_task = await create_task(
        session,
        organization_id=team.organization_id,
        project_id=project_id,
        creator_id=team.manager.id,
        assignee_id=team.developer.id,
        status="completed",
    )

    response = await client.delete(
        f"/v1/manager/projects/{project_id}/members/{team.developer.id}",
        headers=bearer_headers(RoleKind.MANAGER, team.manager.id),
    )
    assert response.status_code == 204

    assert (await session.get(Task, open_task, populate_existing=True)).assignee_id is None
    assert (await session.get(Task, done_task, populate_existing=True)).assignee_id == team.developer.id
    remaining = await session.execute(select(ProjectMember).where(ProjectMember.project_id == project_id))
    assert remaining.first() is None


@pytest.mark.asyncio
async def test_deactivated_member_cannot_be_added(client, session) -> None:
    team = await create_team(session)
    former = await create_account(session, RoleKind.DEVELOPER, team.organization_id, deleted=True)
    project_id = await create_project(session, organization_id=team.organization_id, owner_id=team.manager.id)

    response = await client.post(
        f"/v1/manager/projects/{project_id}/members",
        json={"member_id": former.id},
        headers=bearer_headers(RoleKind.MANAGER, team.manager.id),
    )

    assert response.status_code == 404
