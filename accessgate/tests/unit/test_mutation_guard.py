from __future__ import annotations

from types import SimpleNamespace
from uuid import uuid4

import pytest

from accessgate.core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from accessgate.domain.models import Project, Task
from accessgate.services.access import (
    MutationPolicy,
    TenantScope,
    apply_changes,
    check_version,
    commit_guarded,
    ensure_unique,
    load_for_mutation,
    require_reference,
)
from accessgate.services.tasks import MANAGER_POLICY, MEMBER_POLICY
from accessgate.tests.utils.seed import add_member, create_project, create_task, create_team


POLICY = MutationPolicy(
    resource="task",
    scope=TenantScope(Task.organization_id),
    mutable_fields=frozenset({"title", "status", "description"}),
    locked_fields=frozenset({"organization_id"}),
    required_text_fields=frozenset({"title"}),
    terminal_statuses=frozenset({"completed", "cancelled"}),
    transitions={"open": frozenset({"completed", "cancelled"})},
)


def _row(**overrides) -> SimpleNamespace:
    fields = {"organization_id": "org-1", "title": "Draft", "status": "open", "description": None, "version": 1}
    fields.update(overrides)
    return SimpleNamespace(**fields)


def test_apply_changes_updates_only_mutable_fields() -> None:
    row = _row()

    updated = apply_changes(row, {"title": "Final", "creator_id": "someone", "description": None}, POLICY)

    assert updated == ["title"]
    assert row.title == "Final"
    assert not hasattr(row, "creator_id")


def test_echoing_a_locked_field_unchanged_is_allowed() -> None:
    row = _row()
    assert apply_changes(row, {"organization_id": "org-1", "title": "Next"}, POLICY) == ["title"]


def test_changing_a_locked_field_is_privilege_escalation() -> None:
    row = _row()

    with pytest.raises(AuthorizationError) as excinfo:
        apply_changes(row, {"organization_id": "org-2", "title": "Moved"}, POLICY)

    assert excinfo.value.code == "PRIVILEGE_ESCALATION"
    assert row.title == "Draft"
    assert row.organization_id == "org-1"


@pytest.mark.parametrize("title", [None, "", "   "])
def test_blank_required_text_is_rejected_without_side_effects(title: str | None) -> None:
    row = _row()

    with pytest.raises(ValidationError):
        apply_changes(row, {"title": title, "description": "changed"}, POLICY)

    assert row.description is None


def test_disallowed_transition_is_a_conflict() -> None:
    row = _row(status="open")

    with pytest.raises(ConflictError) as excinfo:
        apply_changes(row, {"status": "blocked", "title": "Other"}, POLICY)

    assert excinfo.value.code == "INVALID_TRANSITION"
    assert (row.status, row.title) == ("open", "Draft")


def test_check_version_compares_expected_value() -> None:
    check_version(_row(version=3), None)
    check_version(_row(version=3), 3)
    with pytest.raises(ConflictError) as excinfo:
        check_version(_row(version=3), 2)
    assert excinfo.value.code == "VERSION_CONFLICT"


async def _seed_task(session, **task_fields):
    team = await create_team(session)
    project_id = await create_project(session, organization_id=team.organization_id, owner_id=team.manager.id)
    task_id = await create_task(
        session,
        organization_id=team.organization_id,
        project_id=project_id,
        creator_id=team.manager.id,
        **task_fields,
    )
    return team, project_id, task_id


@pytest.mark.asyncio
async def test_missing_row_is_not_found(session) -> None:
    team, _project_id, _task_id = await _seed_task(session)

    with pytest.raises(NotFoundError):
        await load_for_mutation(
            session, model=Task, resource_id=str(uuid4()), actor=team.manager, policy=MANAGER_POLICY
        )


@pytest.mark.asyncio
async def test_soft_deleted_row_is_not_found(session) -> None:
    team, _project_id, task_id = await _seed_task(session, deleted=True)

    with pytest.raises(NotFoundError):
        await load_for_mutation(session, model=Task, resource_id=task_id, actor=team.manager, policy=MANAGER_POLICY)


@pytest.mark.asyncio
async def test_out_of_scope_row_is_forbidden(session) -> None:
    _team, _project_id, task_id = await _seed_task(session)
    outsider = await create_team(session, "Elsewhere")

    with pytest.raises(AuthorizationError):
        await load_for_mutation(
            session, model=Task, resource_id=task_id, actor=outsider.manager, policy=MANAGER_POLICY
        )


@pytest.mark.asyncio
async def test_hidden_policy_reports_out_of_scope_rows_as_missing(session) -> None:
    team, _project_id, task_id = await _seed_task(session)

    with pytest.raises(NotFoundError):
        await load_for_mutation(
            session, model=Task, resource_id=task_id, actor=team.developer, policy=MEMBER_POLICY
        )


@pytest.mark.asyncio
async def test_member_with_live_link_may_load(session) -> None:
    team, project_id, task_id = await _seed_task(session)
    await add_member(session, project_id, team.developer)

    task = await load_for_mutation(
        session, model=Task, resource_id=task_id, actor=team.developer, policy=MEMBER_POLICY
    )

    assert task.id == task_id


@pytest.mark.asyncio
async def test_terminal_row_is_locked(session) -> None:
    team, _project_id, task_id = await _seed_task(session, status="cancelled")

    with pytest.raises(ConflictError) as excinfo:
        await load_for_mutation(session, model=Task, resource_id=task_id, actor=team.manager, policy=MANAGER_POLICY)

    assert excinfo.value.code == "RESOURCE_LOCKED"


@pytest.mark.asyncio
async def test_concurrent_write_is_detected_at_commit(database) -> None:
    async with database.session() as seed_session:
        team, _project_id, task_id = await _seed_task(seed_session)

    async with database.session() as first, database.session() as second:
        stale = await first.get(Task, task_id)
        fresh = await second.get(Task, task_id)
        fresh.status = "in_progress"
        await commit_guarded(second, resource="task")

        stale.title = "Overwritten"
        with pytest.raises(ConflictError) as excinfo:
            await commit_guarded(first, resource="task")

    assert excinfo.value.code == "VERSION_CONFLICT"
    async with database.session() as check:
        stored = await check.get(Task, task_id)
        assert (stored.title, stored.status, stored.version) == ("Task", "in_progress", 2)


@pytest.mark.asyncio
async def test_require_reference_respects_tenant_and_soft_delete(session) -> None:
    team = await create_team(session)
    outsider = await create_team(session, "Elsewhere")
    live = await create_project(session, organization_id=team.organization_id, owner_id=team.manager.id)
    deleted = await create_project(
        session, organization_id=team.organization_id, owner_id=team.manager.id, deleted=True
    )

    project = await require_reference(
        session, model=Project, reference_id=live, organization_id=team.organization_id, label="Project"
    )
    assert project.id == live

    for reference_id, organization_id in ((deleted, team.organization_id), (live, outsider.organization_id)):
        with pytest.raises(NotFoundError):
            await require_reference(
                session,
                model=Project,
                reference_id=reference_id,
                organization_id=organization_id,
                label="Project",
            )


@pytest.mark.asyncio
async def test_ensure_unique_ignores_deleted_rows_and_self(session) -> None:
    team = await create_team(session)
    scope = [Project.organization_id == team.organization_id]
    await create_project(
        session, organization_id=team.organization_id, owner_id=team.manager.id, code="OLD", deleted=True
    )
    live = await create_project(session, organization_id=team.organization_id, owner_id=team.manager.id, code="LIVE")

    await ensure_unique(session, model=Project, column=Project.code, value="OLD", scope=scope, label="Code")
    await ensure_unique(
        session, model=Project, column=Project.code, value="LIVE", scope=scope, label="Code", exclude_id=live
    )
    with pytest.raises(ConflictError) as excinfo:
        await ensure_unique(session, model=Project, column=Project.code, value="LIVE", scope=scope, label="Code")
    assert excinfo.value.code == "DUPLICATE"
