"""Sort planner.

Turns a requested ``(sort field, direction, custom field)`` triple into a
:class:`SortPlan`: an ordered list of sort keys the store applies to the
rows that survived filtering.  Rows with no value for a key always sort
after rows that have one, whichever way the key is ordered.
"""

from __future__ import annotations

import functools
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Optional, Union

from ..utils import _parse_iso
from .errors import NotFoundError, ValidationError
from .model import CustomField, TaskView


class SortField(str, Enum):
    DUE_DATE = "dueDate"
    PRIORITY = "priority"
    CREATED_AT = "createdAt"
    UPDATED_AT = "updatedAt"
    TITLE = "title"
    ORDER_POSITION = "orderPosition"
    ASSIGNEE = "assignee"
    CUSTOM_FIELD = "customField"


class SortDirection(str, Enum):
    ASC = "ASC"
    DESC = "DESC"


@dataclass(frozen=True)
class SortKey:
    label: str
    extract: Callable[[TaskView], Any] = field(compare=False)
    direction: SortDirection = SortDirection.ASC

    def describe(self) -> str:
        return f"{self.label} {self.direction.value}"


def _compare(key: SortKey, left: TaskView, right: TaskView) -> int:
    a = key.extract(left)
    b = key.extract(right)
    # Missing values go last in both directions.
    if a is None and b is None:
        return 0
    if a is None:
        return 1
    if b is None:
        return -1
    if a == b:
        return 0
    result = -1 if a < b else 1
    return -result if key.direction == SortDirection.DESC else result


@dataclass(frozen=True)
class SortPlan:
    keys: tuple[SortKey, ...]

    def compare(self, left: TaskView, right: TaskView) -> int:
        for key in self.keys:
            result = _compare(key, left, right)
            if result:
                return result
        return 0

    def apply(self, rows: Iterable[TaskView]) -> list[TaskView]:
        return sorted(rows, key=functools.cmp_to_key(self.compare))

    def describe(self) -> list[str]:
        return [k.describe() for k in self.keys]


# ---------------------------------------------------------------------------
# Key extractors
# ---------------------------------------------------------------------------

def _order_position(row: TaskView) -> int:
    return row.task.order_position


def _created_at(row: TaskView) -> Any:
    return _parse_iso(row.task.created_at)


def _updated_at(row: TaskView) -> Any:
    return _parse_iso(row.task.updated_at)


def _task_id(row: TaskView) -> str:
    return row.task.id


ORDER_POSITION_KEY = SortKey(SortField.ORDER_POSITION.value, _order_position)
TIE_BREAK_KEY = SortKey("id", _task_id)

_SIMPLE_EXTRACTORS: dict[SortField, Callable[[TaskView], Any]] = {
    SortField.DUE_DATE: lambda r: r.task.due_date,
    SortField.PRIORITY: lambda r: r.priority_rank,
    SortField.CREATED_AT: _created_at,
    SortField.UPDATED_AT: _updated_at,
    SortField.TITLE: lambda r: r.task.title.lower(),
    SortField.ORDER_POSITION: _order_position,
}


def _assignee_extractor(direction: SortDirection) -> Callable[[TaskView], Any]:
    # ASC looks at the alphabetically first assignee, DESC at the last.
    pick = min if direction == SortDirection.ASC else max

    def extract(row: TaskView) -> Optional[str]:
        return pick(row.assignee_names) if row.assignee_names else None

    return extract


def _custom_field_extractor(cf: CustomField) -> Callable[[TaskView], Any]:
    cf_id = cf.id

    def extract(row: TaskView) -> Any:
        value = row.custom_values.get(cf_id)
        return value.value if value is not None else None

    return extract


def default_plan() -> SortPlan:
    """``orderPosition ASC, createdAt ASC`` with the id tie-break."""
    return SortPlan((
        ORDER_POSITION_KEY,
        SortKey(SortField.CREATED_AT.value, _created_at),
        TIE_BREAK_KEY,
    ))


def due_date_plan() -> SortPlan:
    """Calendar ordering: due date, then order position."""
    return SortPlan((
        SortKey(SortField.DUE_DATE.value, _SIMPLE_EXTRACTORS[SortField.DUE_DATE]),
        ORDER_POSITION_KEY,
        TIE_BREAK_KEY,
    ))


def parse_sort_field(raw: Union[str, SortField, None]) -> Optional[SortField]:
    if raw is None or raw == "":
        return None
    try:
        return SortField(raw)
    except ValueError:
        valid = [f.value for f in SortField]
        raise ValidationError(f"Unknown sort field '{raw}'. Valid values: {valid}") from None


def parse_sort_direction(raw: Union[str, SortDirection, None], default: str = "ASC") -> SortDirection:
    value = raw if raw else default
    try:
        return SortDirection(str(value.value if isinstance(value, SortDirection) else value).upper())
    except ValueError:
        raise ValidationError(f"Sort direction must be ASC or DESC, got '{raw}'") from None


class SortPlanner:
    """Build :class:`SortPlan` objects, resolving custom fields as needed.

    Parameters
    ----------
    resolve_field:
        Callable returning the :class:`CustomField` for an id, or ``None``.
    """

    def __init__(self, resolve_field: Callable[[str], Optional[CustomField]]) -> None:
        self._resolve_field = resolve_field

    def plan(
        self,
        sort_field: Union[str, SortField, None] = None,
        direction: Union[str, SortDirection, None] = SortDirection.ASC,
        custom_field_id: Optional[str] = None,
        list_id: Optional[str] = None,
    ) -> SortPlan:
        primary_field = parse_sort_field(sort_field)
        sort_direction = parse_sort_direction(direction)
        if primary_field is None:
            return default_plan()

        if primary_field == SortField.CUSTOM_FIELD:
            cf = self._custom_field(custom_field_id, list_id)
            primary = SortKey(f"customField[{cf.name}]", _custom_field_extractor(cf), sort_direction)
        elif primary_field == SortField.ASSIGNEE:
            primary = SortKey(primary_field.value, _assignee_extractor(sort_direction), sort_direction)
        else:
            primary = SortKey(primary_field.value, _SIMPLE_EXTRACTORS[primary_field], sort_direction)

        keys = [primary]
        if primary_field != SortField.ORDER_POSITION:
            keys.append(ORDER_POSITION_KEY)
        keys.append(TIE_BREAK_KEY)
        return SortPlan(tuple(keys))

    def _custom_field(self, custom_field_id: Optional[str], list_id: Optional[str]) -> CustomField:
        if not custom_field_id:
            raise ValidationError("customFieldId is required when sorting by custom field")
        cf = self._resolve_field(custom_field_id)
        if cf is None:
            raise NotFoundError("Custom field", custom_field_id)
        if list_id and cf.list_id != list_id:
            raise ValidationError("Custom field does not belong to the specified list")
        return cf
