"""Dependency graph manager.

Edges are stored as declared (``task``, ``depends_on_task``, ``type``); every
graph algorithm here works on the derived relation *dependent depends on
prerequisite* (see :func:`~taskboard_engine.task_engine.model.canonical_pair`).
The relation is kept acyclic: a breadth-first search runs before every
insertion, inside the same store transaction as the insert.
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from typing import Any, Optional

from .errors import NotFoundError, ValidationError
from .interfaces import BoardRepository
from .model import DependencyType, Task, TaskDependency, canonical_pair

logger = logging.getLogger(__name__)


def parse_dependency_type(raw: Any) -> DependencyType:
    try:
        return DependencyType(str(raw.value if isinstance(raw, DependencyType) else raw))
    except ValueError:
        valid = [t.value for t in DependencyType]
        raise ValidationError(f"Dependency type must be one of {valid}, got '{raw}'") from None


def prerequisite_map(edges: list[TaskDependency]) -> dict[str, list[str]]:
    """Adjacency ``{dependent_id: [prerequisite_id, ...]}`` over *edges*."""
    graph: dict[str, list[str]] = defaultdict(list)
    for edge in edges:
        prereqs = graph[edge.dependent_id]
        if edge.prerequisite_id not in prereqs:
            prereqs.append(edge.prerequisite_id)
    return graph


class DependencyGraphManager:
    """Validate and apply dependency mutations against one repository view.

    The manager is meant to be built on the repository of an open store
    transaction, so the checks and the insert see the same edges.
    """

    def __init__(self, repo: BoardRepository) -> None:
        self._repo = repo

    def create(self, task_id: str, depends_on_task_id: str, dep_type: Any) -> TaskDependency:
        """Validate and persist a new edge.

        Raises :class:`ValidationError` for self dependencies, cross-list
        edges, duplicates and cycles, and :class:`NotFoundError` when either
        task is missing.
        """
        kind = parse_dependency_type(dep_type)
        if task_id == depends_on_task_id:
            raise ValidationError("A task cannot depend on itself")

        task = self._require_task(task_id)
        depends_on = self._require_task(depends_on_task_id)
        if task.list_id != depends_on.list_id:
            raise ValidationError("Tasks must be in the same list to create dependencies")

        if self._repo.find_dependency(task_id, depends_on_task_id, kind) is not None:
            raise ValidationError("This dependency already exists")

        source, target = canonical_pair(task_id, depends_on_task_id, kind)
        if self.would_cycle(source, target):
            raise ValidationError("This dependency would create a circular dependency")

        dependency = TaskDependency(task_id=task_id, depends_on_task_id=depends_on_task_id, type=kind)
        self._repo.save_dependency(dependency)
        logger.info("Added dependency %s: %s depends on %s", dependency.id, source, target)
        return dependency

    def would_cycle(self, source: str, target: str) -> bool:
        """Return True if making *source* depend on *target* closes a cycle.

        That is the case exactly when *source* is already reachable from
        *target* through existing prerequisite links.
        """
        graph = prerequisite_map(self._repo.dependencies())
        visited: set[str] = set()
        queue: deque[str] = deque([target])
        while queue:
            current = queue.popleft()
            if current == source:
                return True
            if current in visited:
                continue
            visited.add(current)
            queue.extend(graph.get(current, []))
        return False

    def find_task_dependencies(self, task_id: str) -> dict[str, list[TaskDependency]]:
        """Edges touching *task_id*, split by direction.

        ``blocked_by`` holds edges where the task is the dependent (whichever
        way they were declared); ``blocking`` holds edges where it is the
        prerequisite.  Both are ordered by creation time.
        """
        self._require_task(task_id)
        blocking: list[TaskDependency] = []
        blocked_by: list[TaskDependency] = []
        for edge in self._repo.dependencies():
            if edge.dependent_id == task_id:
                blocked_by.append(edge)
            elif edge.prerequisite_id == task_id:
                blocking.append(edge)
        blocking.sort(key=lambda e: e.created_at)
        blocked_by.sort(key=lambda e: e.created_at)
        return {"blocking": blocking, "blocked_by": blocked_by}

    def graph(self, task_id: Optional[str] = None) -> dict[str, list[str]]:
        """Return adjacency list: ``{task_id: [prerequisite_ids]}``.

        If *task_id* is given, return only its connected component (following
        links in both directions).
        """
        full: dict[str, list[str]] = {t.id: [] for t in self._repo.tasks()}
        full.update(prerequisite_map(self._repo.dependencies()))
        if task_id is None:
            return full
        self._require_task(task_id)
        dependents: dict[str, list[str]] = defaultdict(list)
        for node, prereqs in full.items():
            for prereq in prereqs:
                dependents[prereq].append(node)
        visited: set[str] = set()
        queue: deque[str] = deque([task_id])
        sub: dict[str, list[str]] = {}
        while queue:
            nid = queue.popleft()
            if nid in visited:
                continue
            visited.add(nid)
            sub[nid] = list(full.get(nid, []))
            queue.extend(full.get(nid, []))
            queue.extend(d for d in dependents.get(nid, []) if d not in visited)
        return sub

    def execution_order(self, list_id: str) -> list[list[str]]:
        """Topological sort of a list's open tasks into batches (Kahn's algorithm).

        Each batch only depends on earlier batches; within a batch tasks are
        ordered by ``order_position``.
        """
        task_map = {t.id: t for t in self._repo.tasks() if t.list_id == list_id and not t.is_archived}
        in_degree: dict[str, int] = {tid: 0 for tid in task_map}
        adj: dict[str, list[str]] = defaultdict(list)
        for dependent, prereqs in prerequisite_map(self._repo.dependencies()).items():
            if dependent not in task_map:
                continue
            for prereq in prereqs:
                if prereq in task_map:
                    adj[prereq].append(dependent)
                    in_degree[dependent] += 1

        def position(tid: str) -> tuple[int, str]:
            return task_map[tid].order_position, tid

        batches: list[list[str]] = []
        queue = sorted((tid for tid, deg in in_degree.items() if deg == 0), key=position)
        while queue:
            batches.append(list(queue))
            next_queue: list[str] = []
            for tid in queue:
                for neighbor in adj.get(tid, []):
                    in_degree[neighbor] -= 1
                    if in_degree[neighbor] == 0:
                        next_queue.append(neighbor)
            queue = sorted(next_queue, key=position)

        remaining = [tid for tid, deg in in_degree.items() if deg > 0]
        if remaining:
            logger.warning("Dependency cycle detected among tasks: %s", remaining)
        return batches

    def _require_task(self, task_id: str) -> Task:
        task = self._repo.get_task(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        return task
