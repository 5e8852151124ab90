from __future__ import annotations

import asyncio
from dataclasses import dataclass
import sys

from sqlalchemy import select

from accessgate.domain.models import Designer, Developer, Manager, Organization, Project, ProjectMember, Task
from accessgate.domain.roles import RoleKind
from accessgate.persistence.db import Database
from accessgate.services.auth.tokens import issue_access_token


DEMO_ORGANIZATION_ID = "00000000-0000-4000-8000-000000000001"
DEMO_PROJECT_ID = "00000000-0000-4000-8000-000000000100"


@dataclass(frozen=True)
class DemoAccount:
    id: str
    role: RoleKind
    email: str
    name: str


@dataclass(frozen=True)
class DemoTask:
    id: str
    title: str
    status: str
    priority: int
    assignee_id: str | None


DEMO_ACCOUNTS = (
    DemoAccount("00000000-0000-4000-8000-000000000010", RoleKind.MANAGER, "mara@demo.test", "Mara Manager"),
    DemoAccount("00000000-0000-4000-8000-000000000020", RoleKind.DEVELOPER, "dev@demo.test", "Dana Developer"),
    DemoAccount("00000000-0000-4000-8000-000000000030", RoleKind.DESIGNER, "des@demo.test", "Dorian Designer"),
)

DEMO_TASKS = (
    DemoTask("00000000-0000-4000-8000-000000001001", "Alpha login flow", "in_progress", 2, DEMO_ACCOUNTS[1].id),
    DemoTask("00000000-0000-4000-8000-000000001002", "Alpha onboarding mockups", "open", 3, DEMO_ACCOUNTS[2].id),
    DemoTask("00000000-0000-4000-8000-000000001003", "Release checklist", "open", 4, None),
)

_MODELS = {RoleKind.MANAGER: Manager, RoleKind.DEVELOPER: Developer, RoleKind.DESIGNER: Designer}


async def seed_demo() -> int:
    database = Database.from_settings()
    try:
        await database.create_all()
        async with database.session() as session:
            if await session.get(Organization, DEMO_ORGANIZATION_ID) is not None:
                print("Demo organization already seeded; skipping.")
                return _print_tokens()

            session.add(Organization(id=DEMO_ORGANIZATION_ID, name="Demo Studio"))
            for account in DEMO_ACCOUNTS:
                model = _MODELS[account.role]
                session.add(
                    model(
                        id=account.id,
                        organization_id=DEMO_ORGANIZATION_ID,
                        email=account.email,
                        name=account.name,
                    )
                )
            # Accounts must exist before projects reference the owner.
            await session.flush()

            manager = DEMO_ACCOUNTS[0]
            session.add(
                Project(
                    id=DEMO_PROJECT_ID,
                    organization_id=DEMO_ORGANIZATION_ID,
                    owner_id=manager.id,
                    code="ALPHA",
                    title="Alpha launch",
                    description="First public release",
                )
            )
            await session.flush()
            for index, account in enumerate(DEMO_ACCOUNTS[1:], start=1):
                session.add(
                    ProjectMember(
                        id=f"00000000-0000-4000-8000-00000000020{index}",
                        project_id=DEMO_PROJECT_ID,
                        member_id=account.id,
                        member_role=account.role.value,
                    )
                )
            for task in DEMO_TASKS:
                session.add(
                    Task(
                        id=task.id,
                        organization_id=DEMO_ORGANIZATION_ID,
                        project_id=DEMO_PROJECT_ID,
                        creator_id=manager.id,
                        assignee_id=task.assignee_id,
                        title=task.title,
                        status=task.status,
                        priority=task.priority,
                    )
                )
            await session.commit()

            seeded = await session.execute(select(Task.id).where(Task.project_id == DEMO_PROJECT_ID))
            print(f"Seeded demo organization with {len(seeded.all())} tasks.")
    finally:
        await database.dispose()
    return _print_tokens()


def _print_tokens() -> int:
    for account in DEMO_ACCOUNTS:
        token = issue_access_token(subject_id=account.id, role=account.role)
        print(f"{account.role.value} {account.email}")
        print(f"  {token}")
    return 0


def main() -> int:
    # Surface clear failures and exit non-zero so dev scripts can detect issues.
    try:
        return asyncio.run(seed_demo())
    except Exception as exc:  # noqa: BLE001 - surface any setup or DB errors
        print(f"seed_demo failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
