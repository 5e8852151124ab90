from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Iterable


class FieldKind(str, Enum):
    VALUE = "value"
    TIMESTAMP = "timestamp"
    DATE = "date"


def to_iso(value: datetime) -> str:
    # Some backends hand back naive datetimes; stored values are always UTC.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def to_iso_date(value: date | datetime) -> str:
    if isinstance(value, datetime):
        value = value.date()
    return value.isoformat()


@dataclass(frozen=True)
class FieldPolicy:
    """Wire policy for one output field.

    ``nullable`` fields emit ``None`` for null columns, ``optional`` fields drop
    the key instead. A null column on a field that is neither violates the
    row's contract.
    """

    name: str
    kind: FieldKind = FieldKind.VALUE
    nullable: bool = False
    optional: bool = False
    source: str | None = None


def value(name: str, *, nullable: bool = False, optional: bool = False, source: str | None = None) -> FieldPolicy:
    return FieldPolicy(name=name, nullable=nullable, optional=optional, source=source)


def timestamp(name: str, *, nullable: bool = False, optional: bool = False) -> FieldPolicy:
    return FieldPolicy(name=name, kind=FieldKind.TIMESTAMP, nullable=nullable, optional=optional)


def date_field(name: str, *, nullable: bool = False, optional: bool = False) -> FieldPolicy:
    return FieldPolicy(name=name, kind=FieldKind.DATE, nullable=nullable, optional=optional)


@dataclass(frozen=True)
class RecordMapper:
    fields: tuple[FieldPolicy, ...]

    def map(self, row: Any) -> dict[str, Any]:
        record: dict[str, Any] = {}
        for policy in self.fields:
            raw = getattr(row, policy.source or policy.name)
            if raw is None:
                if policy.optional:
                    continue
                if policy.nullable:
                    record[policy.name] = None
                    continue
                raise ValueError(f"Field {policy.name} is null but declared required")
            if policy.kind is FieldKind.TIMESTAMP:
                record[policy.name] = to_iso(raw)
            elif policy.kind is FieldKind.DATE:
                record[policy.name] = to_iso_date(raw)
            else:
                record[policy.name] = raw
        return record

    def map_many(self, rows: Iterable[Any]) -> list[dict[str, Any]]:
        return [self.map(row) for row in rows]
