"""Record types for the task query and dependency engine.

Tasks, custom fields and dependency edges are plain dataclasses that
serialize to YAML/JSON-friendly dicts via ``to_dict()`` / ``from_dict()``.
Custom field values are a closed variant (:data:`FieldValue`) rather than an
untyped blob; they are produced by the registry in
:mod:`taskboard_engine.task_engine.custom_fields`.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import date
from enum import Enum
from typing import Any, ClassVar, Optional, Union

from ..utils import _day_iso, _generate_id, _now_iso, _parse_day


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class CustomFieldType(str, Enum):
    """Declared type of a user-defined custom field."""

    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    DROPDOWN = "dropdown"


class DependencyType(str, Enum):
    """How a dependency edge was declared.

    ``blocked_by`` on (task, depends_on): task depends on depends_on.
    ``blocks`` on (task, depends_on): depends_on depends on task.
    """

    BLOCKS = "blocks"
    BLOCKED_BY = "blocked_by"


def canonical_pair(task_id: str, depends_on_task_id: str, dep_type: DependencyType) -> tuple[str, str]:
    """Return ``(dependent_id, prerequisite_id)`` for a declared edge."""
    if DependencyType(dep_type) == DependencyType.BLOCKED_BY:
        return task_id, depends_on_task_id
    return depends_on_task_id, task_id


# ---------------------------------------------------------------------------
# Custom field values (closed variant)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TextValue:
    value: str
    kind: ClassVar[CustomFieldType] = CustomFieldType.TEXT

    def to_raw(self) -> Any:
        return self.value


@dataclass(frozen=True)
class NumberValue:
    value: Union[int, float]
    kind: ClassVar[CustomFieldType] = CustomFieldType.NUMBER

    def to_raw(self) -> Any:
        return self.value


@dataclass(frozen=True)
class DateValue:
    value: date
    kind: ClassVar[CustomFieldType] = CustomFieldType.DATE

    def to_raw(self) -> Any:
        return self.value.isoformat()


@dataclass(frozen=True)
class DropdownValue:
    value: str
    kind: ClassVar[CustomFieldType] = CustomFieldType.DROPDOWN

    def to_raw(self) -> Any:
        return self.value


FieldValue = Union[TextValue, NumberValue, DateValue, DropdownValue]


def field_value_from_raw(kind: str, raw: Any) -> FieldValue:
    """Rebuild a stored value.  Only used for data the registry already accepted."""
    field_type = CustomFieldType(kind)
    if field_type == CustomFieldType.TEXT:
        return TextValue(str(raw))
    if field_type == CustomFieldType.NUMBER:
        return NumberValue(raw if isinstance(raw, (int, float)) else float(raw))
    if field_type == CustomFieldType.DATE:
        day = _parse_day(raw)
        if day is None:
            raise ValueError(f"Stored date value {raw!r} is not a valid date")
        return DateValue(day)
    return DropdownValue(str(raw))


# ---------------------------------------------------------------------------
# Reference records
# ---------------------------------------------------------------------------

class _SimpleRecord:
    """Shared (de)serialization for flat reference records."""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)  # type: ignore[call-overload]

    @classmethod
    def from_dict(cls, data: dict[str, Any]):
        known = {f.name for f in fields(cls)}  # type: ignore[arg-type]
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class TaskList(_SimpleRecord):
    name: str
    id: str = field(default_factory=lambda: _generate_id("list"))
    created_at: str = field(default_factory=_now_iso)


@dataclass
class Status(_SimpleRecord):
    name: str
    list_id: str
    order_index: int = 0
    id: str = field(default_factory=lambda: _generate_id("status"))


@dataclass
class Priority(_SimpleRecord):
    """A priority level; lower ``order_index`` sorts first."""

    name: str
    order_index: int = 0
    id: str = field(default_factory=lambda: _generate_id("prio"))


@dataclass
class Member(_SimpleRecord):
    name: str
    id: str = field(default_factory=lambda: _generate_id("user"))


@dataclass
class Tag(_SimpleRecord):
    name: str
    id: str = field(default_factory=lambda: _generate_id("tag"))


# ---------------------------------------------------------------------------
# Task
# ---------------------------------------------------------------------------

@dataclass
class Task:
    """A task on a list.

    ``order_position`` is the default sort key and the secondary key of
    every other ordering.
    """

    title: str
    list_id: str
    id: str = field(default_factory=lambda: _generate_id("task"))
    description: str = ""
    status_id: Optional[str] = None
    priority_id: Optional[str] = None
    due_date: Optional[date] = None
    order_position: int = 0
    is_archived: bool = False
    assignee_ids: list[str] = field(default_factory=list)
    tag_ids: list[str] = field(default_factory=list)
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["due_date"] = _day_iso(self.due_date)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        d = dict(data)
        return cls(
            id=str(d.pop("id", None) or _generate_id("task")),
            title=str(d.pop("title", "")),
            list_id=str(d.pop("list_id", "")),
            description=str(d.pop("description", "") or ""),
            status_id=d.pop("status_id", None),
            priority_id=d.pop("priority_id", None),
            due_date=_parse_day(d.pop("due_date", None)),
            order_position=int(d.pop("order_position", 0) or 0),
            is_archived=bool(d.pop("is_archived", False)),
            assignee_ids=list(d.pop("assignee_ids", []) or []),
            tag_ids=list(d.pop("tag_ids", []) or []),
            created_at=str(d.pop("created_at", None) or _now_iso()),
            updated_at=str(d.pop("updated_at", None) or _now_iso()),
        )

    def touch(self) -> None:
        """Bump ``updated_at`` to now."""
        self.updated_at = _now_iso()


# ---------------------------------------------------------------------------
# Custom fields
# ---------------------------------------------------------------------------

@dataclass
class CustomField:
    """A typed, user-defined attribute owned by a list."""

    name: str
    type: CustomFieldType
    list_id: str
    config: Optional[dict[str, Any]] = None
    id: str = field(default_factory=lambda: _generate_id("cf"))
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)

    @property
    def options(self) -> list[Any]:
        raw = (self.config or {}).get("options")
        return list(raw) if isinstance(raw, list) else []

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CustomField":
        return cls(
            id=str(data.get("id") or _generate_id("cf")),
            name=str(data.get("name", "")),
            type=CustomFieldType(str(data.get("type", "text"))),
            list_id=str(data.get("list_id", "")),
            config=dict(data["config"]) if isinstance(data.get("config"), dict) else None,
            created_at=str(data.get("created_at") or _now_iso()),
            updated_at=str(data.get("updated_at") or _now_iso()),
        )


@dataclass
class CustomFieldValue:
    """The value of one custom field on one task (unique per pair)."""

    task_id: str
    custom_field_id: str
    value: FieldValue
    id: str = field(default_factory=lambda: _generate_id("cfv"))
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "custom_field_id": self.custom_field_id,
            "kind": self.value.kind.value,
            "value": self.value.to_raw(),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CustomFieldValue":
        return cls(
            id=str(data.get("id") or _generate_id("cfv")),
            task_id=str(data.get("task_id", "")),
            custom_field_id=str(data.get("custom_field_id", "")),
            value=field_value_from_raw(str(data.get("kind", "text")), data.get("value")),
            created_at=str(data.get("created_at") or _now_iso()),
            updated_at=str(data.get("updated_at") or _now_iso()),
        )


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

@dataclass
class TaskDependency:
    """A dependency edge exactly as it was declared.

    The declared shape is kept so callers can see who declared the edge and
    how; graph code works on :attr:`dependent_id` / :attr:`prerequisite_id`.
    """

    task_id: str
    depends_on_task_id: str
    type: DependencyType
    id: str = field(default_factory=lambda: _generate_id("dep"))
    created_at: str = field(default_factory=_now_iso)

    @property
    def dependent_id(self) -> str:
        return canonical_pair(self.task_id, self.depends_on_task_id, self.type)[0]

    @property
    def prerequisite_id(self) -> str:
        return canonical_pair(self.task_id, self.depends_on_task_id, self.type)[1]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "depends_on_task_id": self.depends_on_task_id,
            "type": self.type.value,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TaskDependency":
        return cls(
            id=str(data.get("id") or _generate_id("dep")),
            task_id=str(data.get("task_id", "")),
            depends_on_task_id=str(data.get("depends_on_task_id", "")),
            type=DependencyType(str(data.get("type", "blocked_by"))),
            created_at=str(data.get("created_at") or _now_iso()),
        )


# ---------------------------------------------------------------------------
# Query rows
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TaskView:
    """A task joined with the related data filters and sort keys look at."""

    task: Task
    assignee_names: tuple[str, ...] = ()
    priority_rank: Optional[int] = None
    custom_values: dict[str, FieldValue] = field(default_factory=dict)
