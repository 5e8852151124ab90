"""Offset pagination over a scoped predicate.

The count and the windowed fetch run as two statements without snapshot
isolation. Writes landing between them can make ``records`` disagree with the
rows actually served across pages; callers treat the envelope as eventually
consistent.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Mapping, Sequence, TypeVar

from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from accessgate.core.errors import ValidationError


T = TypeVar("T")
U = TypeVar("U")

_ORDERS = ("asc", "desc")


class Pagination(BaseModel):
    current: int
    limit: int
    records: int
    pages: int


@dataclass
class Page(Generic[T]):
    pagination: Pagination
    data: list[T] = field(default_factory=list)

    def map(self, fn: Callable[[T], U]) -> "Page[U]":
        return Page(pagination=self.pagination, data=[fn(item) for item in self.data])

    def as_dict(self) -> dict[str, Any]:
        return {"pagination": self.pagination.model_dump(), "data": list(self.data)}


@dataclass(frozen=True)
class PageWindow:
    page: int
    limit: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def resolve_window(
    page: int | None,
    limit: int | None,
    *,
    default_limit: int,
    max_limit: int,
) -> PageWindow:
    # Absent values fall back to defaults; explicit non-positive values are caller errors.
    if page is None:
        page = 1
    elif page < 1:
        raise ValidationError("page must be >= 1", details={"page": page})
    if limit is None:
        limit = default_limit
    elif limit < 1:
        raise ValidationError("limit must be >= 1", details={"limit": limit})
    return PageWindow(page=page, limit=min(limit, max_limit))


@dataclass(frozen=True)
class SortSpec:
    """Allow-listed sort columns with a default; unknown names fall back silently."""

    columns: Mapping[str, Any]
    default: str = "created_at"
    default_order: str = "desc"
    tie_breaker: Any = None

    def order_by(self, sort: str | None, order: str | None = None) -> list[Any]:
        key = sort if sort in self.columns else self.default
        direction = order if order in _ORDERS else self.default_order
        column = self.columns[key]
        clauses = [column.asc() if direction == "asc" else column.desc()]
        if self.tie_breaker is not None:
            clauses.append(self.tie_breaker.asc() if direction == "asc" else self.tie_breaker.desc())
        return clauses


async def paginate(
    session: AsyncSession,
    *,
    model: Any,
    predicates: Sequence[ColumnElement[bool]],
    window: PageWindow,
    order_by: Sequence[Any],
) -> Page[Any]:
    count_stmt = select(func.count()).select_from(model).where(*predicates)
    records = int((await session.execute(count_stmt)).scalar() or 0)
    rows: list[Any] = []
    if records > window.offset:
        stmt = (
            select(model)
            .where(*predicates)
            .order_by(*order_by)
            .offset(window.offset)
            .limit(window.limit)
        )
        rows = list((await session.execute(stmt)).scalars().all())
    pagination = Pagination(
        current=window.page,
        limit=window.limit,
        records=records,
        pages=math.ceil(records / window.limit),
    )
    return Page(pagination=pagination, data=rows)
