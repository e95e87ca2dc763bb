"""Task engine: filtered queries, custom field values and dependency management.

This is the primary entry-point for callers (HTTP API, CLI).  It wraps
:class:`BoardStore` with the business rules: filter compilation, sort
planning, custom field validation, acyclic dependency insertion and the
task maintenance operations those features rely on.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional, Union

from ..config import (
    get_default_sort_direction,
    get_events_enabled,
    get_lock_timeout,
    load_engine_config,
)
from ..constants import ARTIFACTS_DIR, EVENTS_FILE, STATE_DIR_NAME
from ..io_utils import _append_event, _read_jsonl_tail
from ..utils import _now_iso, _parse_day
from . import custom_fields as registry
from .dependencies import DependencyGraphManager
from .errors import NotFoundError, ValidationError
from .filters import (
    FilterCompiler,
    FilterGroup,
    FilterScope,
    Test,
    parse_filter_group,
    scope_predicate,
    search_predicate,
)
from .interfaces import BoardRepository
from .model import (
    CustomField,
    CustomFieldValue,
    Member,
    Priority,
    Status,
    Tag,
    Task,
    TaskDependency,
    TaskList,
)
from .sorting import SortPlanner, due_date_plan
from .store import BoardStore

logger = logging.getLogger(__name__)

_UPDATABLE_TASK_FIELDS = {"title", "description", "status_id", "priority_id", "due_date", "order_position"}


def _require(record: Any, kind: str, record_id: str) -> Any:
    if record is None:
        raise NotFoundError(kind, record_id)
    return record


def _require_name(value: Any, what: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{what} must be a non-empty string")
    return value.strip()


def _check_page(limit: Optional[int], offset: int) -> None:
    if limit is not None and limit < 0:
        raise ValidationError("limit must be zero or positive")
    if offset < 0:
        raise ValidationError("offset must be zero or positive")


class TaskEngine:
    """Query and mutate the task board.

    Parameters
    ----------
    state_dir:
        Path to the ``.taskboard/`` directory.
    config:
        Parsed engine configuration (see :mod:`taskboard_engine.config`).
    """

    def __init__(self, state_dir: Path, config: Optional[dict[str, Any]] = None) -> None:
        self._config = dict(config or {})
        self._state_dir = state_dir
        self.store = BoardStore(state_dir, lock_timeout=get_lock_timeout(self._config))
        self.events_enabled = get_events_enabled(self._config)
        self.default_sort_direction = get_default_sort_direction(self._config)
        self._events_path = state_dir / ARTIFACTS_DIR / EVENTS_FILE

    @classmethod
    def for_project(cls, project_dir: Path) -> "TaskEngine":
        """Build an engine for ``<project_dir>/.taskboard`` using its config file."""
        project_dir = project_dir.resolve()
        config, err = load_engine_config(project_dir)
        if err:
            logger.warning("Ignoring unreadable engine config: %s", err)
        return cls(project_dir / STATE_DIR_NAME, config)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _emit_event(self, event_type: str, task_id: Optional[str] = None, **details: Any) -> None:
        """Append a runtime event for downstream consumers."""
        if not self.events_enabled:
            return
        payload: dict[str, Any] = {"ts": _now_iso(), "type": event_type}
        if task_id:
            payload["task_id"] = task_id
        if details:
            payload["details"] = details
        try:
            _append_event(self._events_path, payload)
        except OSError:
            logger.exception("Failed to append event %s for %s", event_type, task_id)

    def get_recent_events(self, limit: int = 100) -> list[dict[str, Any]]:
        return _read_jsonl_tail(self._events_path, limit)

    def get_task_events(self, task_id: str, limit: int = 100) -> list[dict[str, Any]]:
        events = self.get_recent_events(limit=max(limit * 5, limit))
        filtered = [e for e in events if str(e.get("task_id")) == task_id]
        return filtered[-limit:]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _require_list(self, repo: BoardRepository, list_id: Optional[str]) -> None:
        if list_id:
            _require(repo.get_list(list_id), "List", list_id)

    def filter_tasks(
        self,
        list_id: Optional[str] = None,
        filters: Union[FilterGroup, dict[str, Any], None] = None,
        include_archived: bool = False,
        sort_field: Optional[str] = None,
        sort_direction: Optional[str] = None,
        custom_field_id: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Task]:
        """Return the tasks matching *filters* within the scope, ordered and paginated.

        Every validation problem (malformed filter tree, bad operator or
        operand, unknown or foreign custom field, bad sort spec) is raised
        before the query runs.
        """
        group = parse_filter_group(filters) if filters is not None else None
        _check_page(limit, offset)
        snap = self.store.read_snapshot()
        self._require_list(snap, list_id)
        predicate = FilterCompiler(snap.get_custom_field).compile(
            group, FilterScope(list_id=list_id, include_archived=include_archived)
        )
        plan = SortPlanner(snap.get_custom_field).plan(
            sort_field, sort_direction or self.default_sort_direction, custom_field_id, list_id
        )
        logger.debug("filter_tasks: %s ordered by %s", predicate.describe(), plan.describe())
        return snap.query_tasks(predicate, plan, limit=limit, offset=offset)

    def search_tasks(
        self,
        query: str,
        list_id: Optional[str] = None,
        sort_field: Optional[str] = None,
        sort_direction: Optional[str] = None,
        custom_field_id: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Task]:
        """Case-insensitive substring search over title and description.

        Archived tasks are never returned.
        """
        text = _require_name(query, "Search query")
        _check_page(limit, offset)
        snap = self.store.read_snapshot()
        self._require_list(snap, list_id)
        predicate = scope_predicate(FilterScope(list_id=list_id)) & search_predicate(text)
        plan = SortPlanner(snap.get_custom_field).plan(
            sort_field, sort_direction or self.default_sort_direction, custom_field_id, list_id
        )
        return snap.query_tasks(predicate, plan, limit=limit, offset=offset)

    def get_tasks_for_calendar(self, list_id: str, start: Any, end: Any) -> list[Task]:
        """Non-archived tasks of a list due within ``[start, end]`` (calendar days)."""
        start_day = _parse_day(start)
        end_day = _parse_day(end)
        if start_day is None or end_day is None:
            raise ValidationError("start and end must be ISO-8601 dates")
        if start_day > end_day:
            raise ValidationError("start must not be after end")
        snap = self.store.read_snapshot()
        _require(snap.get_list(list_id), "List", list_id)
        in_range = Test(
            f"dueDate between {start_day.isoformat()} and {end_day.isoformat()}",
            lambda r: r.task.due_date is not None and start_day <= r.task.due_date <= end_day,
        )
        return snap.query_tasks(scope_predicate(FilterScope(list_id=list_id)) & in_range, due_date_plan())

    # ------------------------------------------------------------------
    # Custom fields
    # ------------------------------------------------------------------

    def create_custom_field(
        self,
        list_id: str,
        name: str,
        field_type: str,
        config: Optional[dict[str, Any]] = None,
    ) -> CustomField:
        name = _require_name(name, "Custom field name")
        kind = registry.parse_field_type(field_type)
        checked_config = registry.validate_config(kind, config)
        with self.store.transaction() as tx:
            _require(tx.get_list(list_id), "List", list_id)
            if any(cf.name == name for cf in tx.custom_fields(list_id)):
                raise ValidationError(f"A custom field named '{name}' already exists in this list")
            field = tx.save_custom_field(
                CustomField(name=name, type=kind, list_id=list_id, config=checked_config)
            )
        self._emit_event("custom_field.created", custom_field_id=field.id, list_id=list_id)
        logger.info("Created %s custom field %s (%s) on list %s", kind.value, field.id, name, list_id)
        return field

    def get_custom_field(self, custom_field_id: str) -> CustomField:
        snap = self.store.read_snapshot()
        return _require(snap.get_custom_field(custom_field_id), "Custom field", custom_field_id)

    def list_custom_fields(self, list_id: str) -> list[CustomField]:
        snap = self.store.read_snapshot()
        _require(snap.get_list(list_id), "List", list_id)
        return snap.custom_fields(list_id)

    def update_custom_field(self, custom_field_id: str, changes: dict[str, Any]) -> CustomField:
        """Rename a field or replace its config.

        The declared type is fixed once created.  A config change is rejected
        if any stored value would no longer type-check against it.
        """
        unknown = set(changes) - {"name", "config", "type"}
        if unknown:
            raise ValidationError(f"Unsupported custom field fields: {sorted(unknown)}")
        with self.store.transaction() as tx:
            field = _require(tx.get_custom_field(custom_field_id), "Custom field", custom_field_id)
            if "type" in changes and registry.parse_field_type(changes["type"]) != field.type:
                raise ValidationError("Custom field type cannot be changed")
            if "name" in changes:
                name = _require_name(changes["name"], "Custom field name")
                clash = [cf for cf in tx.custom_fields(field.list_id) if cf.name == name and cf.id != field.id]
                if clash:
                    raise ValidationError(f"A custom field named '{name}' already exists in this list")
                field.name = name
            if "config" in changes:
                field.config = registry.validate_config(field.type, changes["config"])
                stored = [v.value for v in tx.custom_field_values(custom_field_id=field.id)]
                registry.revalidate_stored(field, stored)
            field.updated_at = _now_iso()
            tx.save_custom_field(field)
        self._emit_event("custom_field.updated", custom_field_id=field.id, fields=sorted(changes))
        return field

    def delete_custom_field(self, custom_field_id: str) -> None:
        with self.store.transaction() as tx:
            if not tx.remove_custom_field(custom_field_id):
                raise NotFoundError("Custom field", custom_field_id)
        self._emit_event("custom_field.deleted", custom_field_id=custom_field_id)

    # ------------------------------------------------------------------
    # Custom field values
    # ------------------------------------------------------------------

    def create_custom_field_value(self, task_id: str, custom_field_id: str, value: Any) -> CustomFieldValue:
        """Set a custom field on a task for the first time."""
        with self.store.transaction() as tx:
            task = _require(tx.get_task(task_id), "Task", task_id)
            field = _require(tx.get_custom_field(custom_field_id), "Custom field", custom_field_id)
            if field.list_id != task.list_id:
                raise ValidationError("Custom field does not belong to the task's list")
            if tx.find_custom_field_value(task_id, custom_field_id) is not None:
                raise ValidationError(
                    "A value for this custom field already exists for this task. Use update instead."
                )
            typed = registry.validate(value, field)
            record = tx.save_custom_field_value(
                CustomFieldValue(task_id=task_id, custom_field_id=custom_field_id, value=typed)
            )
        self._emit_event("custom_field_value.created", task_id, custom_field_id=custom_field_id)
        return record

    def update_custom_field_value(self, value_id: str, value: Any) -> CustomFieldValue:
        """Replace a stored value; an invalid value leaves the old one in place."""
        with self.store.transaction() as tx:
            record = _require(tx.get_custom_field_value(value_id), "Custom field value", value_id)
            field = _require(
                tx.get_custom_field(record.custom_field_id), "Custom field", record.custom_field_id
            )
            record.value = registry.validate(value, field)
            record.updated_at = _now_iso()
            tx.save_custom_field_value(record)
        self._emit_event(
            "custom_field_value.updated", record.task_id, custom_field_id=record.custom_field_id
        )
        return record

    def get_custom_field_value(self, value_id: str) -> CustomFieldValue:
        snap = self.store.read_snapshot()
        return _require(snap.get_custom_field_value(value_id), "Custom field value", value_id)

    def list_task_custom_field_values(self, task_id: str) -> list[CustomFieldValue]:
        snap = self.store.read_snapshot()
        _require(snap.get_task(task_id), "Task", task_id)
        return snap.custom_field_values(task_id=task_id)

    def remove_custom_field_value(self, value_id: str) -> None:
        with self.store.transaction() as tx:
            record = _require(tx.get_custom_field_value(value_id), "Custom field value", value_id)
            tx.remove_custom_field_value(value_id)
        self._emit_event(
            "custom_field_value.deleted", record.task_id, custom_field_id=record.custom_field_id
        )

    # ------------------------------------------------------------------
    # Dependencies
    # ------------------------------------------------------------------

    def create_dependency(self, task_id: str, depends_on_task_id: str, dep_type: Any) -> TaskDependency:
        """Add a dependency edge, rejecting self links, duplicates and cycles.

        The duplicate check, the cycle search and the insert share one store
        transaction, so two concurrent calls cannot jointly close a cycle.
        """
        with self.store.transaction() as tx:
            dependency = DependencyGraphManager(tx).create(task_id, depends_on_task_id, dep_type)
        self._emit_event(
            "dependency.created",
            dependency.dependent_id,
            dependency_id=dependency.id,
            prerequisite_id=dependency.prerequisite_id,
            type=dependency.type.value,
        )
        return dependency

    def find_task_dependencies(self, task_id: str) -> dict[str, list[TaskDependency]]:
        return DependencyGraphManager(self.store.read_snapshot()).find_task_dependencies(task_id)

    def get_dependency(self, dependency_id: str) -> TaskDependency:
        snap = self.store.read_snapshot()
        return _require(snap.get_dependency(dependency_id), "Dependency", dependency_id)

    def remove_dependency(self, dependency_id: str) -> None:
        with self.store.transaction() as tx:
            dependency = _require(tx.get_dependency(dependency_id), "Dependency", dependency_id)
            tx.remove_dependency(dependency_id)
        self._emit_event("dependency.deleted", dependency.dependent_id, dependency_id=dependency_id)

    def get_dependency_graph(self, task_id: Optional[str] = None) -> dict[str, list[str]]:
        return DependencyGraphManager(self.store.read_snapshot()).graph(task_id)

    def get_execution_order(self, list_id: str) -> list[list[str]]:
        snap = self.store.read_snapshot()
        _require(snap.get_list(list_id), "List", list_id)
        return DependencyGraphManager(snap).execution_order(list_id)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    @staticmethod
    def _check_task_refs(tx: BoardRepository, list_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        """Validate and coerce task attributes referencing other records."""
        out = dict(changes)
        if "title" in out:
            out["title"] = _require_name(out["title"], "Task title")
        if "description" in out:
            out["description"] = str(out["description"] or "")
        if out.get("status_id") is not None:
            status = _require(tx.get_status(out["status_id"]), "Status", out["status_id"])
            if status.list_id != list_id:
                raise ValidationError("Status does not belong to the task's list")
        if out.get("priority_id") is not None:
            _require(tx.get_priority(out["priority_id"]), "Priority", out["priority_id"])
        if out.get("due_date") is not None:
            day = _parse_day(out["due_date"])
            if day is None:
                raise ValidationError(f"due_date {out['due_date']!r} is not a valid ISO-8601 date")
            out["due_date"] = day
        if "order_position" in out:
            position = out["order_position"]
            if isinstance(position, bool) or not isinstance(position, int):
                raise ValidationError("order_position must be an integer")
        return out

    def create_task(
        self,
        list_id: str,
        title: str,
        description: str = "",
        status_id: Optional[str] = None,
        priority_id: Optional[str] = None,
        due_date: Any = None,
        order_position: Optional[int] = None,
        assignee_ids: Optional[list[str]] = None,
        tag_ids: Optional[list[str]] = None,
    ) -> Task:
        """Create and persist a new task, returning it.

        Without an explicit ``order_position`` the task goes to the end of
        its list.
        """
        fields: dict[str, Any] = {
            "title": title,
            "description": description,
            "status_id": status_id,
            "priority_id": priority_id,
            "due_date": due_date,
        }
        if order_position is not None:
            fields["order_position"] = order_position
        with self.store.transaction() as tx:
            _require(tx.get_list(list_id), "List", list_id)
            checked = self._check_task_refs(tx, list_id, fields)
            for member_id in assignee_ids or []:
                _require(tx.get_member(member_id), "Member", member_id)
            for tag_id in tag_ids or []:
                _require(tx.get_tag(tag_id), "Tag", tag_id)
            if "order_position" not in checked:
                positions = [t.order_position for t in tx.tasks() if t.list_id == list_id]
                checked["order_position"] = max(positions) + 1 if positions else 0
            task = tx.save_task(Task(
                list_id=list_id,
                assignee_ids=list(dict.fromkeys(assignee_ids or [])),
                tag_ids=list(dict.fromkeys(tag_ids or [])),
                **checked,
            ))
        self._emit_event("task.created", task.id, list_id=list_id)
        logger.info("Created task %s: %s", task.id, task.title)
        return task

    def get_task(self, task_id: str) -> Task:
        snap = self.store.read_snapshot()
        return _require(snap.get_task(task_id), "Task", task_id)

    def update_task(self, task_id: str, changes: dict[str, Any]) -> Task:
        """Apply partial updates to a task and return it."""
        unknown = set(changes) - _UPDATABLE_TASK_FIELDS
        if unknown:
            raise ValidationError(f"Unsupported task fields: {sorted(unknown)}")
        with self.store.transaction() as tx:
            task = _require(tx.get_task(task_id), "Task", task_id)
            for key, value in self._check_task_refs(tx, task.list_id, changes).items():
                setattr(task, key, value)
            task.touch()
            tx.save_task(task)
        self._emit_event("task.updated", task.id, fields=sorted(changes))
        return task

    def delete_task(self, task_id: str) -> None:
        """Delete a task with its custom field values and dependency edges."""
        with self.store.transaction() as tx:
            if not tx.remove_task(task_id):
                raise NotFoundError("Task", task_id)
        self._emit_event("task.deleted", task_id)

    def _mutate_task(self, task_id: str, event_type: str, mutate: Any, **details: Any) -> Task:
        with self.store.transaction() as tx:
            task = _require(tx.get_task(task_id), "Task", task_id)
            mutate(tx, task)
            task.touch()
            tx.save_task(task)
        self._emit_event(event_type, task.id, **details)
        return task

    def archive_task(self, task_id: str) -> Task:
        return self._mutate_task(task_id, "task.archived", lambda tx, t: setattr(t, "is_archived", True))

    def unarchive_task(self, task_id: str) -> Task:
        return self._mutate_task(task_id, "task.unarchived", lambda tx, t: setattr(t, "is_archived", False))

    def assign_task(self, task_id: str, member_id: str) -> Task:
        def mutate(tx: BoardRepository, task: Task) -> None:
            _require(tx.get_member(member_id), "Member", member_id)
            if member_id not in task.assignee_ids:
                task.assignee_ids.append(member_id)

        return self._mutate_task(task_id, "task.assigned", mutate, member_id=member_id)

    def unassign_task(self, task_id: str, member_id: str) -> Task:
        def mutate(tx: BoardRepository, task: Task) -> None:
            if member_id not in task.assignee_ids:
                raise ValidationError(f"Member {member_id} is not assigned to task {task.id}")
            task.assignee_ids.remove(member_id)

        return self._mutate_task(task_id, "task.unassigned", mutate, member_id=member_id)

    def add_tag(self, task_id: str, tag_id: str) -> Task:
        def mutate(tx: BoardRepository, task: Task) -> None:
            _require(tx.get_tag(tag_id), "Tag", tag_id)
            if tag_id not in task.tag_ids:
                task.tag_ids.append(tag_id)

        return self._mutate_task(task_id, "task.tagged", mutate, tag_id=tag_id)

    def remove_tag(self, task_id: str, tag_id: str) -> Task:
        def mutate(tx: BoardRepository, task: Task) -> None:
            if tag_id not in task.tag_ids:
                raise ValidationError(f"Tag {tag_id} is not on task {task.id}")
            task.tag_ids.remove(tag_id)

        return self._mutate_task(task_id, "task.untagged", mutate, tag_id=tag_id)

    # ------------------------------------------------------------------
    # Reference records
    # ------------------------------------------------------------------

    def create_list(self, name: str) -> TaskList:
        with self.store.transaction() as tx:
            task_list = tx.save_list(TaskList(name=_require_name(name, "List name")))
        self._emit_event("list.created", list_id=task_list.id)
        return task_list

    def get_list(self, list_id: str) -> TaskList:
        return _require(self.store.read_snapshot().get_list(list_id), "List", list_id)

    def list_lists(self) -> list[TaskList]:
        return self.store.read_snapshot().lists()

    def create_status(self, list_id: str, name: str, order_index: Optional[int] = None) -> Status:
        name = _require_name(name, "Status name")
        with self.store.transaction() as tx:
            _require(tx.get_list(list_id), "List", list_id)
            if order_index is None:
                order_index = len(tx.statuses(list_id))
            status = tx.save_status(Status(name=name, list_id=list_id, order_index=order_index))
        return status

    def list_statuses(self, list_id: str) -> list[Status]:
        snap = self.store.read_snapshot()
        _require(snap.get_list(list_id), "List", list_id)
        return snap.statuses(list_id)

    def create_priority(self, name: str, order_index: Optional[int] = None) -> Priority:
        name = _require_name(name, "Priority name")
        with self.store.transaction() as tx:
            if order_index is None:
                order_index = len(tx.priorities())
            priority = tx.save_priority(Priority(name=name, order_index=order_index))
        return priority

    def list_priorities(self) -> list[Priority]:
        return self.store.read_snapshot().priorities()

    def create_member(self, name: str) -> Member:
        with self.store.transaction() as tx:
            return tx.save_member(Member(name=_require_name(name, "Member name")))

    def list_members(self) -> list[Member]:
        return self.store.read_snapshot().members()

    def create_tag(self, name: str) -> Tag:
        with self.store.transaction() as tx:
            return tx.save_tag(Tag(name=_require_name(name, "Tag name")))

    def list_tags(self) -> list[Tag]:
        return self.store.read_snapshot().tags()
