"""File-based board store with process- and thread-safe locking.

Keeps every board record (lists, statuses, priorities, members, tags, tasks,
custom fields, custom field values and dependency edges) in a single YAML
document (``board.yaml``) inside the project's ``.taskboard/`` directory.
All reads and writes go through :meth:`BoardStore.transaction`, which holds
an exclusive file lock for the whole read-check-write sequence, so checks
made inside a transaction cannot be invalidated by a concurrent writer.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

from filelock import FileLock, Timeout

from ..constants import DEFAULT_LOCK_TIMEOUT, STORE_FILE, STORE_FORMAT_VERSION, STORE_LOCK_FILE
from ..io_utils import _atomic_write_yaml, _load_data_with_error
from .errors import TaskEngineError
from .filters import Predicate
from .interfaces import BoardRepository
from .model import (
    CustomField,
    CustomFieldValue,
    DependencyType,
    FieldValue,
    Member,
    Priority,
    Status,
    Tag,
    Task,
    TaskDependency,
    TaskList,
    TaskView,
)
from .sorting import SortPlan

# Collection name in the YAML document -> record type.  Order is the order
# collections are written in.
_COLLECTIONS: dict[str, Any] = {
    "lists": TaskList,
    "statuses": Status,
    "priorities": Priority,
    "members": Member,
    "tags": Tag,
    "tasks": Task,
    "custom_fields": CustomField,
    "custom_field_values": CustomFieldValue,
    "dependencies": TaskDependency,
}


def _load_board(path: Path) -> dict[str, dict[str, Any]]:
    data, err = _load_data_with_error(path, {})
    if err:
        # Refuse to continue rather than overwrite a corrupted board.
        raise TaskEngineError(f"Cannot load board store: {err}")
    board: dict[str, dict[str, Any]] = {}
    for name, record_cls in _COLLECTIONS.items():
        raw = data.get(name)
        items = raw if isinstance(raw, list) else []
        records = (record_cls.from_dict(item) for item in items if isinstance(item, dict))
        board[name] = {r.id: r for r in records}
    return board


def _dump_board(board: dict[str, dict[str, Any]]) -> dict[str, Any]:
    payload: dict[str, Any] = {"version": STORE_FORMAT_VERSION}
    for name in _COLLECTIONS:
        payload[name] = [record.to_dict() for record in board.get(name, {}).values()]
    return payload


# ---------------------------------------------------------------------------
# BoardStore
# ---------------------------------------------------------------------------

class BoardStore:
    """Thread-safe, file-backed store for board records.

    Parameters
    ----------
    state_dir:
        Path to the ``.taskboard/`` directory for the project.
    lock_timeout:
        Seconds to wait for the store lock before giving up.
    """

    def __init__(self, state_dir: Path, lock_timeout: float = DEFAULT_LOCK_TIMEOUT) -> None:
        self._state_dir = state_dir
        self._store_path = state_dir / STORE_FILE
        self._lock_path = state_dir / STORE_LOCK_FILE
        self._lock_timeout = lock_timeout
        self._file_lock = FileLock(str(self._lock_path), timeout=lock_timeout)
        self._thread_lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._store_path

    @contextmanager
    def _locked(self) -> Iterator[None]:
        self._state_dir.mkdir(parents=True, exist_ok=True)
        with self._thread_lock:
            try:
                self._file_lock.acquire()
            except Timeout:
                raise TaskEngineError(
                    f"Timed out after {self._lock_timeout}s waiting for {self._lock_path.name}"
                ) from None
            try:
                yield
            finally:
                self._file_lock.release()

    @contextmanager
    def transaction(self) -> Iterator["_BoardTx"]:
        """Acquire the lock, load the board, yield a transaction, save on exit.

        Nothing is written if the body raises, so a failed check leaves the
        board untouched::

            with store.transaction() as tx:
                task = tx.get_task("task-abc123")
                task.is_archived = True
                tx.save_task(task)
        """
        with self._locked():
            tx = _BoardTx(_load_board(self._store_path))
            yield tx
            if tx.dirty:
                _atomic_write_yaml(self._store_path, _dump_board(tx.board))

    def read_snapshot(self) -> "_BoardTx":
        """Return a read-only view of the board (no lock held after return)."""
        with self._locked():
            return _BoardTx(_load_board(self._store_path), read_only=True)


class _BoardTx(BoardRepository):
    """In-memory transaction over the whole board.

    Mutations are collected and flushed back to disk when the
    ``transaction`` context-manager exits.
    """

    def __init__(self, board: dict[str, dict[str, Any]], read_only: bool = False) -> None:
        self.board = board
        self.read_only = read_only
        self.dirty = False

    # -- generic helpers ----------------------------------------------------

    def _get(self, name: str, record_id: str) -> Any:
        return self.board[name].get(record_id)

    def _all(self, name: str) -> list[Any]:
        return list(self.board[name].values())

    def _put(self, name: str, record: Any) -> Any:
        if self.read_only:
            raise TaskEngineError("Cannot modify a read-only board snapshot")
        self.board[name][record.id] = record
        self.dirty = True
        return record

    def _drop(self, name: str, record_id: str) -> bool:
        if self.read_only:
            raise TaskEngineError("Cannot modify a read-only board snapshot")
        if self.board[name].pop(record_id, None) is None:
            return False
        self.dirty = True
        return True

    # -- reference records --------------------------------------------------

    def get_list(self, list_id: str) -> Optional[TaskList]:
        return self._get("lists", list_id)

    def lists(self) -> list[TaskList]:
        return self._all("lists")

    def save_list(self, task_list: TaskList) -> TaskList:
        return self._put("lists", task_list)

    def get_status(self, status_id: str) -> Optional[Status]:
        return self._get("statuses", status_id)

    def statuses(self, list_id: Optional[str] = None) -> list[Status]:
        found = self._all("statuses")
        if list_id is not None:
            found = [s for s in found if s.list_id == list_id]
        return sorted(found, key=lambda s: s.order_index)

    def save_status(self, status: Status) -> Status:
        return self._put("statuses", status)

    def get_priority(self, priority_id: str) -> Optional[Priority]:
        return self._get("priorities", priority_id)

    def priorities(self) -> list[Priority]:
        return sorted(self._all("priorities"), key=lambda p: p.order_index)

    def save_priority(self, priority: Priority) -> Priority:
        return self._put("priorities", priority)

    def get_member(self, member_id: str) -> Optional[Member]:
        return self._get("members", member_id)

    def members(self) -> list[Member]:
        return self._all("members")

    def save_member(self, member: Member) -> Member:
        return self._put("members", member)

    def get_tag(self, tag_id: str) -> Optional[Tag]:
        return self._get("tags", tag_id)

    def tags(self) -> list[Tag]:
        return self._all("tags")

    def save_tag(self, tag: Tag) -> Tag:
        return self._put("tags", tag)

    # -- tasks --------------------------------------------------------------

    def get_task(self, task_id: str) -> Optional[Task]:
        return self._get("tasks", task_id)

    def tasks(self) -> list[Task]:
        return self._all("tasks")

    def save_task(self, task: Task) -> Task:
        return self._put("tasks", task)

    def remove_task(self, task_id: str) -> bool:
        if not self._drop("tasks", task_id):
            return False
        for value in self.custom_field_values(task_id=task_id):
            self._drop("custom_field_values", value.id)
        for dep in self._all("dependencies"):
            if task_id in (dep.task_id, dep.depends_on_task_id):
                self._drop("dependencies", dep.id)
        return True

    def _view_builder(self):
        ranks = {p.id: p.order_index for p in self._all("priorities")}
        names = {m.id: m.name for m in self._all("members")}
        values: dict[str, dict[str, FieldValue]] = defaultdict(dict)
        for v in self._all("custom_field_values"):
            values[v.task_id][v.custom_field_id] = v.value

        def build(task: Task) -> TaskView:
            return TaskView(
                task=task,
                assignee_names=tuple(names[a] for a in task.assignee_ids if a in names),
                priority_rank=ranks.get(task.priority_id) if task.priority_id else None,
                custom_values=dict(values.get(task.id, {})),
            )

        return build

    def query_tasks(
        self,
        predicate: Predicate,
        plan: SortPlan,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Task]:
        build = self._view_builder()
        rows = [row for row in map(build, self._all("tasks")) if predicate(row)]
        ordered = plan.apply(rows)
        start = max(offset, 0)
        end = start + limit if limit is not None else None
        return [row.task for row in ordered[start:end]]

    # -- custom fields ------------------------------------------------------

    def get_custom_field(self, custom_field_id: str) -> Optional[CustomField]:
        return self._get("custom_fields", custom_field_id)

    def custom_fields(self, list_id: Optional[str] = None) -> list[CustomField]:
        found = self._all("custom_fields")
        if list_id is not None:
            found = [cf for cf in found if cf.list_id == list_id]
        return found

    def save_custom_field(self, custom_field: CustomField) -> CustomField:
        return self._put("custom_fields", custom_field)

    def remove_custom_field(self, custom_field_id: str) -> bool:
        if not self._drop("custom_fields", custom_field_id):
            return False
        for value in self.custom_field_values(custom_field_id=custom_field_id):
            self._drop("custom_field_values", value.id)
        return True

    def get_custom_field_value(self, value_id: str) -> Optional[CustomFieldValue]:
        return self._get("custom_field_values", value_id)

    def find_custom_field_value(self, task_id: str, custom_field_id: str) -> Optional[CustomFieldValue]:
        for value in self._all("custom_field_values"):
            if value.task_id == task_id and value.custom_field_id == custom_field_id:
                return value
        return None

    def custom_field_values(
        self,
        task_id: Optional[str] = None,
        custom_field_id: Optional[str] = None,
    ) -> list[CustomFieldValue]:
        out: list[CustomFieldValue] = []
        for value in self._all("custom_field_values"):
            if task_id is not None and value.task_id != task_id:
                continue
            if custom_field_id is not None and value.custom_field_id != custom_field_id:
                continue
            out.append(value)
        return out

    def save_custom_field_value(self, value: CustomFieldValue) -> CustomFieldValue:
        return self._put("custom_field_values", value)

    def remove_custom_field_value(self, value_id: str) -> bool:
        return self._drop("custom_field_values", value_id)

    # -- dependencies -------------------------------------------------------

    def get_dependency(self, dependency_id: str) -> Optional[TaskDependency]:
        return self._get("dependencies", dependency_id)

    def dependencies(self) -> list[TaskDependency]:
        return self._all("dependencies")

    def find_dependency(
        self,
        task_id: str,
        depends_on_task_id: str,
        dep_type: DependencyType,
    ) -> Optional[TaskDependency]:
        for dep in self._all("dependencies"):
            if dep.task_id == task_id and dep.depends_on_task_id == depends_on_task_id and dep.type == dep_type:
                return dep
        return None

    def save_dependency(self, dependency: TaskDependency) -> TaskDependency:
        return self._put("dependencies", dependency)

    def remove_dependency(self, dependency_id: str) -> bool:
        return self._drop("dependencies", dependency_id)
