from __future__ import annotations

import pytest
from sqlalchemy import select

from accessgate.core.errors import ValidationError
from accessgate.domain.models import Task
from accessgate.services.access import (
    SortSpec,
    TenantScope,
    build_predicates,
    paginate,
    resolve_window,
)
from accessgate.tests.utils.seed import create_project, create_task, create_team


SORT = SortSpec(columns={"created_at": Task.created_at, "title": Task.title}, tie_breaker=Task.id)


async def _seed_tasks(session, count: int):
    team = await create_team(session)
    project_id = await create_project(session, organization_id=team.organization_id, owner_id=team.manager.id)
    for index in range(count):
        await create_task(
            session,
            organization_id=team.organization_id,
            project_id=project_id,
            creator_id=team.manager.id,
            title=f"Task {index:02d}",
        )
    predicates = build_predicates(
        model=Task, actor=team.manager, scope=TenantScope(Task.organization_id), fields={}, filters={}
    )
    return team, predicates


def test_window_defaults_when_page_and_limit_absent() -> None:
    window = resolve_window(None, None, default_limit=20, max_limit=100)
    assert (window.page, window.limit, window.offset) == (1, 20, 0)


def test_window_clamps_limit_to_cap() -> None:
    window = resolve_window(2, 500, default_limit=20, max_limit=100)
    assert (window.page, window.limit, window.offset) == (2, 100, 100)


@pytest.mark.parametrize("limit", [0, -1])
def test_non_positive_limit_is_rejected(limit: int) -> None:
    with pytest.raises(ValidationError):
        resolve_window(1, limit, default_limit=20, max_limit=100)


@pytest.mark.parametrize("page", [0, -3])
def test_non_positive_page_is_rejected(page: int) -> None:
    with pytest.raises(ValidationError):
        resolve_window(page, 10, default_limit=20, max_limit=100)


def test_unknown_sort_falls_back_to_default_with_tie_breaker() -> None:
    clauses = SORT.order_by("password_hash", "sideways")
    rendered = [str(clause) for clause in clauses]
    assert rendered == ["tasks.created_at DESC", "tasks.id DESC"]


def test_allowed_sort_and_order_are_honored() -> None:
    rendered = [str(clause) for clause in SORT.order_by("title", "asc")]
    assert rendered == ["tasks.title ASC", "tasks.id ASC"]


@pytest.mark.asyncio
async def test_twenty_five_rows_split_into_three_pages(session) -> None:
    _team, predicates = await _seed_tasks(session, 25)

    first = await paginate(
        session,
        model=Task,
        predicates=predicates,
        window=resolve_window(1, 10, default_limit=20, max_limit=100),
        order_by=SORT.order_by(None),
    )
    last = await paginate(
        session,
        model=Task,
        predicates=predicates,
        window=resolve_window(3, 10, default_limit=20, max_limit=100),
        order_by=SORT.order_by(None),
    )

    assert len(first.data) == 10
    assert first.pagination.model_dump() == {"current": 1, "limit": 10, "records": 25, "pages": 3}
    assert len(last.data) == 5
    assert last.pagination.current == 3


@pytest.mark.asyncio
async def test_iterating_all_pages_yields_every_row_once(session) -> None:
    _team, predicates = await _seed_tasks(session, 23)
    expected = set((await session.execute(select(Task.id).where(*predicates))).scalars().all())

    seen: list[str] = []
    page_number = 1
    while True:
        page = await paginate(
            session,
            model=Task,
            predicates=predicates,
            window=resolve_window(page_number, 7, default_limit=20, max_limit=100),
            order_by=SORT.order_by("title", "asc"),
        )
        seen.extend(task.id for task in page.data)
        if page_number >= page.pagination.pages:
            break
        page_number += 1

    assert page_number == 4
    assert len(seen) == len(expected) == 23
    assert set(seen) == expected


@pytest.mark.asyncio
async def test_page_past_the_end_is_empty_not_an_error(session) -> None:
    _team, predicates = await _seed_tasks(session, 3)

    page = await paginate(
        session,
        model=Task,
        predicates=predicates,
        window=resolve_window(5, 10, default_limit=20, max_limit=100),
        order_by=SORT.order_by(None),
    )

    assert page.data == []
    assert page.pagination.records == 3
    assert page.pagination.pages == 1


@pytest.mark.asyncio
async def test_empty_result_reports_zero_pages(session) -> None:
    _team, predicates = await _seed_tasks(session, 0)

    page = await paginate(
        session,
        model=Task,
        predicates=predicates,
        window=resolve_window(None, None, default_limit=20, max_limit=100),
        order_by=SORT.order_by(None),
    )

    assert page.as_dict() == {
        "pagination": {"current": 1, "limit": 20, "records": 0, "pages": 0},
        "data": [],
    }
