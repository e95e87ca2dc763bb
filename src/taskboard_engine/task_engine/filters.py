"""Filter compiler: recursive filter trees -> executable predicates.

A filter is a tree of :class:`FilterGroup` nodes (AND/OR) holding
:class:`FilterCondition` leaves.  :class:`FilterCompiler` validates the whole
tree up front (fields, operators, operands, custom field references) and
emits a :class:`Predicate` expression tree.  Predicates are evaluated by the
store against :class:`~taskboard_engine.task_engine.model.TaskView` rows, so
the compiler never touches persistence itself.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Callable, Iterable, Optional, Union

from ..utils import _parse_day
from .errors import ValidationError
from .model import CustomField, CustomFieldType, TaskView

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Filter AST
# ---------------------------------------------------------------------------

class FilterField(str, Enum):
    ASSIGNEE = "assignee"
    STATUS = "status"
    PRIORITY = "priority"
    TAG = "tag"
    DUE_DATE = "dueDate"
    LIST = "list"
    IS_ARCHIVED = "isArchived"
    CUSTOM_FIELD = "customField"


class FilterOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    IN = "in"
    NOT_IN = "not_in"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"


class FilterLogic(str, Enum):
    AND = "and"
    OR = "or"


_OPERATOR_ALIASES = {
    "=": FilterOperator.EQUALS,
    "==": FilterOperator.EQUALS,
    "!=": FilterOperator.NOT_EQUALS,
    ">": FilterOperator.GREATER_THAN,
    "<": FilterOperator.LESS_THAN,
    ">=": FilterOperator.GREATER_THAN_OR_EQUAL,
    "<=": FilterOperator.LESS_THAN_OR_EQUAL,
}

_NULL_CHECKS = {FilterOperator.IS_NULL, FilterOperator.IS_NOT_NULL}
_MEMBERSHIP = {FilterOperator.IN, FilterOperator.NOT_IN}
_ORDERING = {
    FilterOperator.GREATER_THAN,
    FilterOperator.LESS_THAN,
    FilterOperator.GREATER_THAN_OR_EQUAL,
    FilterOperator.LESS_THAN_OR_EQUAL,
}
_IDENTITY = {FilterOperator.EQUALS, FilterOperator.NOT_EQUALS} | _MEMBERSHIP | _NULL_CHECKS

_FIELD_OPERATORS: dict[FilterField, set[FilterOperator]] = {
    FilterField.ASSIGNEE: _IDENTITY,
    FilterField.STATUS: _IDENTITY,
    FilterField.PRIORITY: _IDENTITY,
    FilterField.LIST: _IDENTITY,
    FilterField.TAG: _IDENTITY,
    FilterField.DUE_DATE: {FilterOperator.EQUALS} | _ORDERING | _NULL_CHECKS,
    FilterField.IS_ARCHIVED: {FilterOperator.EQUALS, FilterOperator.NOT_EQUALS},
}

_CUSTOM_FIELD_OPERATORS: dict[CustomFieldType, set[FilterOperator]] = {
    CustomFieldType.TEXT: _IDENTITY | {FilterOperator.CONTAINS},
    CustomFieldType.DROPDOWN: _IDENTITY | {FilterOperator.CONTAINS},
    CustomFieldType.NUMBER: _IDENTITY | _ORDERING,
    CustomFieldType.DATE: {FilterOperator.EQUALS, FilterOperator.NOT_EQUALS} | _ORDERING | _NULL_CHECKS,
}


@dataclass(frozen=True)
class FilterCondition:
    field: FilterField
    operator: FilterOperator
    value: Any = None
    custom_field_id: Optional[str] = None


@dataclass(frozen=True)
class FilterGroup:
    logic: FilterLogic = FilterLogic.AND
    conditions: tuple[FilterCondition, ...] = ()
    groups: tuple["FilterGroup", ...] = ()


FilterNode = Union[FilterCondition, FilterGroup]


@dataclass(frozen=True)
class FilterScope:
    """Mandatory base scope applied to every filter query."""

    list_id: Optional[str] = None
    include_archived: bool = False


def _parse_enum(enum_cls: type[Enum], raw: Any, what: str) -> Any:
    try:
        return enum_cls(raw)
    except ValueError:
        valid = [e.value for e in enum_cls]  # type: ignore[attr-defined]
        raise ValidationError(f"Unknown {what} '{raw}'. Valid values: {valid}") from None


def parse_condition(data: Any) -> FilterCondition:
    """Build a :class:`FilterCondition` from a JSON-style mapping."""
    if not isinstance(data, dict):
        raise ValidationError("Filter condition must be an object")
    field_ = _parse_enum(FilterField, data.get("field"), "filter field")
    raw_op = data.get("operator")
    operator = _OPERATOR_ALIASES.get(raw_op) if isinstance(raw_op, str) else None
    if operator is None:
        operator = _parse_enum(FilterOperator, raw_op, "filter operator")
    cf_id = data.get("customFieldId", data.get("custom_field_id"))
    if field_ == FilterField.CUSTOM_FIELD and not cf_id:
        raise ValidationError("customFieldId is required when field is 'customField'")
    return FilterCondition(
        field=field_,
        operator=operator,
        value=data.get("value"),
        custom_field_id=str(cf_id) if cf_id else None,
    )


def parse_filter_group(data: Any) -> FilterGroup:
    """Build a :class:`FilterGroup` tree from a JSON-style mapping.

    ``logic`` is case-insensitive and defaults to ``and``; ``conditions`` and
    ``groups`` default to empty.
    """
    if isinstance(data, FilterGroup):
        return data
    if not isinstance(data, dict):
        raise ValidationError("Filter group must be an object")
    raw_logic = data.get("logic") or FilterLogic.AND.value
    logic = _parse_enum(FilterLogic, str(raw_logic).lower(), "filter logic")
    conditions = data.get("conditions") or []
    groups = data.get("groups") or []
    if not isinstance(conditions, list) or not isinstance(groups, list):
        raise ValidationError("'conditions' and 'groups' must be arrays")
    return FilterGroup(
        logic=logic,
        conditions=tuple(parse_condition(c) for c in conditions),
        groups=tuple(parse_filter_group(g) for g in groups),
    )


def collect_custom_field_ids(group: FilterGroup) -> list[str]:
    """Custom field ids referenced anywhere in *group*, in first-seen order."""
    seen: dict[str, None] = {}
    stack = [group]
    while stack:
        current = stack.pop()
        for cond in current.conditions:
            if cond.field == FilterField.CUSTOM_FIELD:
                if not cond.custom_field_id:
                    raise ValidationError("customFieldId is required when field is 'customField'")
                seen.setdefault(cond.custom_field_id, None)
        stack.extend(reversed(current.groups))
    return list(seen)


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------

class Predicate:
    """A composable boolean test over a :class:`TaskView`."""

    def __call__(self, row: TaskView) -> bool:
        raise NotImplementedError

    def describe(self) -> str:
        raise NotImplementedError

    def __and__(self, other: "Predicate") -> "Predicate":
        return And((self, other))

    def __or__(self, other: "Predicate") -> "Predicate":
        return Or((self, other))

    def __invert__(self) -> "Predicate":
        return Not(self)

    def __repr__(self) -> str:
        return f"<Predicate {self.describe()}>"


@dataclass(frozen=True, repr=False)
class Const(Predicate):
    result: bool

    def __call__(self, row: TaskView) -> bool:
        return self.result

    def describe(self) -> str:
        return "TRUE" if self.result else "FALSE"


TRUE = Const(True)
FALSE = Const(False)


@dataclass(frozen=True, repr=False)
class And(Predicate):
    """Conjunction; the empty conjunction is true."""

    parts: tuple[Predicate, ...] = ()

    def __call__(self, row: TaskView) -> bool:
        return all(p(row) for p in self.parts)

    def describe(self) -> str:
        if not self.parts:
            return "TRUE"
        return "(" + " AND ".join(p.describe() for p in self.parts) + ")"


@dataclass(frozen=True, repr=False)
class Or(Predicate):
    """Disjunction; the empty disjunction is false."""

    parts: tuple[Predicate, ...] = ()

    def __call__(self, row: TaskView) -> bool:
        return any(p(row) for p in self.parts)

    def describe(self) -> str:
        if not self.parts:
            return "FALSE"
        return "(" + " OR ".join(p.describe() for p in self.parts) + ")"


@dataclass(frozen=True, repr=False)
class Not(Predicate):
    inner: Predicate

    def __call__(self, row: TaskView) -> bool:
        return not self.inner(row)

    def describe(self) -> str:
        return f"NOT {self.inner.describe()}"


@dataclass(frozen=True, repr=False)
class Test(Predicate):
    """Leaf predicate: a labelled row test."""

    label: str
    test: Callable[[TaskView], bool] = field(compare=False)

    def __call__(self, row: TaskView) -> bool:
        return bool(self.test(row))

    def describe(self) -> str:
        return self.label


def scope_predicate(scope: FilterScope) -> Predicate:
    parts: list[Predicate] = []
    if scope.list_id:
        list_id = scope.list_id
        parts.append(Test(f"list = {list_id}", lambda r: r.task.list_id == list_id))
    if not scope.include_archived:
        parts.append(Test("isArchived = False", lambda r: not r.task.is_archived))
    return And(tuple(parts))


def search_predicate(query: str) -> Predicate:
    """Case-insensitive substring match over title and description."""
    needle = query.lower()
    return Test(
        f"text contains {query!r}",
        lambda r: needle in r.task.title.lower() or needle in (r.task.description or "").lower(),
    )


# ---------------------------------------------------------------------------
# Operand coercion
# ---------------------------------------------------------------------------

def _describe(cond: FilterCondition) -> str:
    name = cond.field.value
    if cond.custom_field_id:
        name = f"customField[{cond.custom_field_id}]"
    return f"{name} {cond.operator.value}"


def _require_value(cond: FilterCondition) -> Any:
    if cond.value is None:
        raise ValidationError(f"Filter '{_describe(cond)}' requires a value")
    return cond.value


def _scalar(cond: FilterCondition) -> Any:
    value = _require_value(cond)
    if isinstance(value, (list, tuple)):
        raise ValidationError(f"Filter '{_describe(cond)}' expects a single value, not a list")
    return value


def _listed(cond: FilterCondition) -> list[Any]:
    value = _require_value(cond)
    return list(value) if isinstance(value, (list, tuple)) else [value]


def _id_set(cond: FilterCondition, lists_allowed: bool = False) -> frozenset[str]:
    if cond.operator in _MEMBERSHIP or lists_allowed:
        return frozenset(str(v) for v in _listed(cond))
    return frozenset([str(_scalar(cond))])


def _number(cond: FilterCondition, raw: Any) -> float:
    if isinstance(raw, bool):
        raise ValidationError(f"Filter '{_describe(cond)}' expects a number, got {raw!r}")
    try:
        number = float(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"Filter '{_describe(cond)}' expects a number, got {raw!r}") from None
    if number != number:
        raise ValidationError(f"Filter '{_describe(cond)}' expects a number, got {raw!r}")
    return number


def _day(cond: FilterCondition, raw: Any) -> date:
    day = _parse_day(raw)
    if day is None:
        raise ValidationError(f"Filter '{_describe(cond)}' expects an ISO-8601 date, got {raw!r}")
    return day


def _boolean(cond: FilterCondition) -> bool:
    value = _scalar(cond)
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in {"true", "false"}:
        return value.lower() == "true"
    raise ValidationError(f"Filter '{_describe(cond)}' expects a boolean, got {value!r}")


_COMPARATORS: dict[FilterOperator, Callable[[Any, Any], bool]] = {
    FilterOperator.EQUALS: lambda a, b: a == b,
    FilterOperator.NOT_EQUALS: lambda a, b: a != b,
    FilterOperator.GREATER_THAN: lambda a, b: a > b,
    FilterOperator.LESS_THAN: lambda a, b: a < b,
    FilterOperator.GREATER_THAN_OR_EQUAL: lambda a, b: a >= b,
    FilterOperator.LESS_THAN_OR_EQUAL: lambda a, b: a <= b,
}


# ---------------------------------------------------------------------------
# Compiler
# ---------------------------------------------------------------------------

class FilterCompiler:
    """Compile filter trees into predicates.

    Parameters
    ----------
    resolve_field:
        Callable returning the :class:`CustomField` for an id, or ``None``.
    """

    def __init__(self, resolve_field: Callable[[str], Optional[CustomField]]) -> None:
        self._resolve_field = resolve_field

    def compile(self, group: Optional[FilterGroup], scope: FilterScope) -> Predicate:
        """Return the predicate for *group* within *scope*.

        Every validation failure is raised here, before the store runs
        anything.  An absent group matches everything in scope.
        """
        base = scope_predicate(scope)
        if group is None:
            return base
        fields = self.resolve_custom_fields(collect_custom_field_ids(group), scope.list_id)
        predicate = And((base, self._compile_group(group, fields)))
        logger.debug("Compiled filter: %s", predicate.describe())
        return predicate

    def resolve_custom_fields(self, field_ids: Iterable[str], list_id: Optional[str]) -> dict[str, CustomField]:
        resolved: dict[str, CustomField] = {}
        missing: list[str] = []
        for cf_id in field_ids:
            cf = self._resolve_field(cf_id)
            if cf is None:
                missing.append(cf_id)
                continue
            if list_id and cf.list_id != list_id:
                raise ValidationError(f"Custom field {cf_id} does not belong to the specified list")
            resolved[cf_id] = cf
        if missing:
            raise ValidationError(f"Custom field(s) not found: {', '.join(missing)}")
        return resolved

    # -- tree ---------------------------------------------------------------

    def _compile_group(self, group: FilterGroup, fields: dict[str, CustomField]) -> Predicate:
        parts = [self._compile_condition(c, fields) for c in group.conditions]
        parts.extend(self._compile_group(g, fields) for g in group.groups)
        if group.logic == FilterLogic.OR:
            return Or(tuple(parts))
        return And(tuple(parts))

    def _compile_condition(self, cond: FilterCondition, fields: dict[str, CustomField]) -> Predicate:
        if cond.field == FilterField.CUSTOM_FIELD:
            return self._custom_field(cond, fields[str(cond.custom_field_id)])
        allowed = _FIELD_OPERATORS[cond.field]
        if cond.operator not in allowed:
            raise ValidationError(
                f"Operator '{cond.operator.value}' is not supported for field '{cond.field.value}'. "
                f"Supported: {sorted(o.value for o in allowed)}"
            )
        if cond.field == FilterField.ASSIGNEE:
            return self._collection(cond, lambda r: r.task.assignee_ids)
        if cond.field == FilterField.TAG:
            return self._collection(cond, lambda r: r.task.tag_ids)
        if cond.field == FilterField.STATUS:
            return self._reference(cond, lambda r: r.task.status_id)
        if cond.field == FilterField.PRIORITY:
            return self._reference(cond, lambda r: r.task.priority_id)
        if cond.field == FilterField.LIST:
            return self._reference(cond, lambda r: r.task.list_id)
        if cond.field == FilterField.DUE_DATE:
            return self._due_date(cond)
        return self._archived(cond)

    # -- standard fields ----------------------------------------------------

    @staticmethod
    def _collection(cond: FilterCondition, get: Callable[[TaskView], list[str]]) -> Predicate:
        """Existence tests over a task's assignee or tag ids."""
        name = cond.field.value
        op = cond.operator
        if op == FilterOperator.IS_NULL:
            return Test(f"{name} is empty", lambda r: not get(r))
        if op == FilterOperator.IS_NOT_NULL:
            return Test(f"{name} is not empty", lambda r: bool(get(r)))
        # Tag conditions take a list operand with any operator.
        ids = _id_set(cond, lists_allowed=cond.field == FilterField.TAG)
        exists = Test(f"{name} has any of {sorted(ids)}", lambda r: any(i in ids for i in get(r)))
        if op in {FilterOperator.NOT_EQUALS, FilterOperator.NOT_IN}:
            return Not(exists)
        return exists

    @staticmethod
    def _reference(cond: FilterCondition, get: Callable[[TaskView], Optional[str]]) -> Predicate:
        name = cond.field.value
        op = cond.operator
        if op == FilterOperator.IS_NULL:
            return Test(f"{name} is null", lambda r: get(r) is None)
        if op == FilterOperator.IS_NOT_NULL:
            return Test(f"{name} is not null", lambda r: get(r) is not None)
        ids = _id_set(cond)
        if op in {FilterOperator.NOT_EQUALS, FilterOperator.NOT_IN}:
            # An unset reference never matches a negated test.
            return Test(
                f"{name} set and not in {sorted(ids)}",
                lambda r: get(r) is not None and get(r) not in ids,
            )
        return Test(f"{name} in {sorted(ids)}", lambda r: get(r) in ids)

    @staticmethod
    def _due_date(cond: FilterCondition) -> Predicate:
        op = cond.operator
        if op == FilterOperator.IS_NULL:
            return Test("dueDate is null", lambda r: r.task.due_date is None)
        if op == FilterOperator.IS_NOT_NULL:
            return Test("dueDate is not null", lambda r: r.task.due_date is not None)
        operand = _day(cond, _scalar(cond))
        compare = _COMPARATORS[op]
        return Test(
            f"dueDate {op.value} {operand.isoformat()}",
            lambda r: r.task.due_date is not None and compare(r.task.due_date, operand),
        )

    @staticmethod
    def _archived(cond: FilterCondition) -> Predicate:
        wanted = _boolean(cond)
        if cond.operator == FilterOperator.NOT_EQUALS:
            wanted = not wanted
        return Test(f"isArchived = {wanted}", lambda r: r.task.is_archived == wanted)

    # -- custom fields ------------------------------------------------------

    def _custom_field(self, cond: FilterCondition, cf: CustomField) -> Predicate:
        allowed = _CUSTOM_FIELD_OPERATORS[cf.type]
        if cond.operator not in allowed:
            raise ValidationError(
                f"Operator '{cond.operator.value}' is not supported for {cf.type.value} "
                f"custom field '{cf.name}'. Supported: {sorted(o.value for o in allowed)}"
            )
        cf_id = cf.id
        label = f"customField[{cf.name}]"

        def stored(row: TaskView) -> Any:
            value = row.custom_values.get(cf_id)
            return value.value if value is not None else None

        op = cond.operator
        if op == FilterOperator.IS_NULL:
            return Test(f"{label} is null", lambda r: stored(r) is None)
        if op == FilterOperator.IS_NOT_NULL:
            return Test(f"{label} is not null", lambda r: stored(r) is not None)

        if cf.type in {CustomFieldType.TEXT, CustomFieldType.DROPDOWN}:
            coerce: Callable[[Any], Any] = str
        elif cf.type == CustomFieldType.NUMBER:
            coerce = lambda raw: _number(cond, raw)  # noqa: E731
        else:
            coerce = lambda raw: _day(cond, raw)  # noqa: E731

        if op in _MEMBERSHIP:
            options = frozenset(coerce(v) for v in _listed(cond))
            if op == FilterOperator.IN:
                return Test(
                    f"{label} in {sorted(options, key=str)}",
                    lambda r: stored(r) is not None and stored(r) in options,
                )
            return Test(
                f"{label} not in {sorted(options, key=str)}",
                lambda r: stored(r) is None or stored(r) not in options,
            )

        operand = coerce(_scalar(cond))
        if op == FilterOperator.CONTAINS:
            needle = str(operand).lower()
            return Test(
                f"{label} contains {operand!r}",
                lambda r: stored(r) is not None and needle in str(stored(r)).lower(),
            )
        compare = _COMPARATORS[op]
        return Test(
            f"{label} {op.value} {operand!r}",
            lambda r: stored(r) is not None and compare(stored(r), operand),
        )
