"""Tests for the task engine facade (task_engine/engine.py)."""

from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Any

import pytest

from taskboard_engine.task_engine.engine import TaskEngine
from taskboard_engine.task_engine.errors import NotFoundError, ValidationError
from taskboard_engine.task_engine.model import NumberValue, TextValue


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    d = tmp_path / ".taskboard"
    d.mkdir()
    return d


@pytest.fixture
def engine(state_dir: Path) -> TaskEngine:
    return TaskEngine(state_dir)


@pytest.fixture
def list_id(engine: TaskEngine) -> str:
    return engine.create_list("Sprint 1").id


def _titles(tasks: list[Any]) -> list[str]:
    return [t.title for t in tasks]


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------

class TestScenarios:
    def test_due_date_filter(self, engine: TaskEngine, list_id: str) -> None:
        high = engine.create_priority("High", order_index=0)
        low = engine.create_priority("Low", order_index=1)
        engine.create_task(list_id, "A", priority_id=high.id, due_date="2024-01-01")
        engine.create_task(list_id, "B", priority_id=low.id, due_date="2024-02-01")

        filters = {"conditions": [{"field": "dueDate", "operator": "greater_than", "value": "2024-01-15"}]}
        assert _titles(engine.filter_tasks(list_id=list_id, filters=filters)) == ["B"]

    def test_points_field_validation_and_sorting(self, engine: TaskEngine, list_id: str) -> None:
        points = engine.create_custom_field(list_id, "Points", "number")
        a = engine.create_task(list_id, "A")
        b = engine.create_task(list_id, "B")
        engine.create_task(list_id, "C")

        with pytest.raises(ValidationError, match="must be a number"):
            engine.create_custom_field_value(a.id, points.id, "abc")
        engine.create_custom_field_value(a.id, points.id, 5)
        engine.create_custom_field_value(b.id, points.id, 8)

        asc = engine.filter_tasks(list_id=list_id, sort_field="customField", sort_direction="ASC",
                                  custom_field_id=points.id)
        desc = engine.filter_tasks(list_id=list_id, sort_field="customField", sort_direction="DESC",
                                   custom_field_id=points.id)
        assert _titles(asc) == ["A", "B", "C"]
        assert _titles(desc) == ["B", "A", "C"]

    def test_create_then_update_custom_value(self, engine: TaskEngine, list_id: str) -> None:
        points = engine.create_custom_field(list_id, "Points", "number")
        task = engine.create_task(list_id, "A")
        value = engine.create_custom_field_value(task.id, points.id, 3)

        engine.update_custom_field_value(value.id, 5)
        assert engine.get_custom_field_value(value.id).value == NumberValue(5)

        with pytest.raises(ValidationError):
            engine.update_custom_field_value(value.id, "five")
        assert engine.get_custom_field_value(value.id).value == NumberValue(5)

    def test_identical_inputs_identical_output(self, engine: TaskEngine, list_id: str) -> None:
        for title in ("one", "two", "three"):
            engine.create_task(list_id, title, order_position=0)
        filters = {"logic": "and", "conditions": [{"field": "assignee", "operator": "is_null"}]}
        first = [t.id for t in engine.filter_tasks(list_id=list_id, filters=filters)]
        second = [t.id for t in engine.filter_tasks(list_id=list_id, filters=filters)]
        assert first == second
        assert len(first) == 3

    def test_empty_groups(self, engine: TaskEngine, list_id: str) -> None:
        engine.create_task(list_id, "A")
        engine.create_task(list_id, "B")
        assert len(engine.filter_tasks(list_id=list_id, filters={"logic": "and"})) == 2
        assert engine.filter_tasks(list_id=list_id, filters={"logic": "or"}) == []


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

class TestFilterTasks:
    def test_archived_excluded_by_default(self, engine: TaskEngine, list_id: str) -> None:
        engine.create_task(list_id, "Open")
        archived = engine.create_task(list_id, "Old")
        engine.archive_task(archived.id)
        assert _titles(engine.filter_tasks(list_id=list_id)) == ["Open"]
        assert _titles(engine.filter_tasks(list_id=list_id, include_archived=True)) == ["Open", "Old"]
        engine.unarchive_task(archived.id)
        assert _titles(engine.filter_tasks(list_id=list_id)) == ["Open", "Old"]

    def test_filter_by_members_and_tags(self, engine: TaskEngine, list_id: str) -> None:
        ana = engine.create_member("Ana")
        bug = engine.create_tag("bug")
        t1 = engine.create_task(list_id, "Fix login", assignee_ids=[ana.id])
        engine.create_task(list_id, "Write docs")
        engine.add_tag(t1.id, bug.id)

        filters = {
            "logic": "or",
            "conditions": [
                {"field": "tag", "operator": "in", "value": [bug.id]},
                {"field": "assignee", "operator": "equals", "value": ana.id},
            ],
        }
        assert _titles(engine.filter_tasks(list_id=list_id, filters=filters)) == ["Fix login"]

        engine.remove_tag(t1.id, bug.id)
        engine.unassign_task(t1.id, ana.id)
        assert engine.filter_tasks(list_id=list_id, filters=filters) == []

    def test_negated_status_and_priority_skip_unset(self, engine: TaskEngine, list_id: str) -> None:
        open_status = engine.create_status(list_id, "Open")
        done = engine.create_status(list_id, "Done")
        prio = engine.create_priority("P")
        other = engine.create_priority("Q")
        engine.create_task(list_id, "with-other", status_id=done.id, priority_id=other.id)
        engine.create_task(list_id, "no-status")

        by_status = {"conditions": [{"field": "status", "operator": "not_equals", "value": open_status.id}]}
        by_priority = {"conditions": [{"field": "priority", "operator": "not_in", "value": [prio.id]}]}
        assert _titles(engine.filter_tasks(list_id=list_id, filters=by_status)) == ["with-other"]
        assert _titles(engine.filter_tasks(list_id=list_id, filters=by_priority)) == ["with-other"]

    def test_pagination(self, engine: TaskEngine, list_id: str) -> None:
        for i in range(5):
            engine.create_task(list_id, f"T{i}")
        assert _titles(engine.filter_tasks(list_id=list_id, limit=2, offset=1)) == ["T1", "T2"]
        with pytest.raises(ValidationError, match="offset"):
            engine.filter_tasks(list_id=list_id, offset=-1)

    def test_unknown_list(self, engine: TaskEngine) -> None:
        with pytest.raises(NotFoundError, match="List nope not found"):
            engine.filter_tasks(list_id="nope")

    def test_custom_field_from_other_list_rejected(self, engine: TaskEngine, list_id: str) -> None:
        other = engine.create_list("Other")
        field = engine.create_custom_field(other.id, "Notes", "text")
        filters = {"conditions": [{"field": "customField", "customFieldId": field.id, "operator": "is_null"}]}
        with pytest.raises(ValidationError, match="does not belong"):
            engine.filter_tasks(list_id=list_id, filters=filters)

    def test_sort_by_priority_with_config_default_direction(self, state_dir: Path) -> None:
        engine = TaskEngine(state_dir, {"query": {"default_sort_direction": "desc"}})
        lst = engine.create_list("L")
        high = engine.create_priority("High")
        low = engine.create_priority("Low")
        engine.create_task(lst.id, "none")
        engine.create_task(lst.id, "high", priority_id=high.id)
        engine.create_task(lst.id, "low", priority_id=low.id)
        assert _titles(engine.filter_tasks(list_id=lst.id, sort_field="priority")) == ["low", "high", "none"]

    def test_sort_by_assignee(self, engine: TaskEngine, list_id: str) -> None:
        zoe = engine.create_member("Zoe")
        adam = engine.create_member("Adam")
        engine.create_task(list_id, "nobody")
        engine.create_task(list_id, "zoe", assignee_ids=[zoe.id])
        engine.create_task(list_id, "adam", assignee_ids=[adam.id])
        assert _titles(engine.filter_tasks(list_id=list_id, sort_field="assignee")) == ["adam", "zoe", "nobody"]


class TestSearchAndCalendar:
    def test_search_is_case_insensitive(self, engine: TaskEngine, list_id: str) -> None:
        engine.create_task(list_id, "Fix Login page")
        engine.create_task(list_id, "Docs", description="explain the LOGIN flow")
        engine.create_task(list_id, "Unrelated")
        old = engine.create_task(list_id, "login legacy")
        engine.archive_task(old.id)
        assert _titles(engine.search_tasks("login")) == ["Fix Login page", "Docs"]

    def test_search_requires_query(self, engine: TaskEngine) -> None:
        with pytest.raises(ValidationError, match="Search query"):
            engine.search_tasks("   ")

    def test_calendar_range_is_inclusive(self, engine: TaskEngine, list_id: str) -> None:
        engine.create_task(list_id, "late", due_date="2024-03-10", order_position=0)
        engine.create_task(list_id, "first", due_date="2024-03-01", order_position=5)
        engine.create_task(list_id, "same-day", due_date="2024-03-01", order_position=9)
        engine.create_task(list_id, "outside", due_date="2024-04-01")
        engine.create_task(list_id, "undated")
        tasks = engine.get_tasks_for_calendar(list_id, "2024-03-01", date(2024, 3, 10))
        assert _titles(tasks) == ["first", "same-day", "late"]

    def test_calendar_bad_range(self, engine: TaskEngine, list_id: str) -> None:
        with pytest.raises(ValidationError, match="start must not be after end"):
            engine.get_tasks_for_calendar(list_id, "2024-03-10", "2024-03-01")
        with pytest.raises(ValidationError, match="ISO-8601"):
            engine.get_tasks_for_calendar(list_id, "soon", "2024-03-01")


# ---------------------------------------------------------------------------
# Custom fields and values
# ---------------------------------------------------------------------------

class TestCustomFields:
    def test_create_requires_valid_definition(self, engine: TaskEngine, list_id: str) -> None:
        with pytest.raises(ValidationError, match="must be one of"):
            engine.create_custom_field(list_id, "Flag", "checkbox")
        with pytest.raises(ValidationError, match="options"):
            engine.create_custom_field(list_id, "Size", "dropdown")
        with pytest.raises(NotFoundError):
            engine.create_custom_field("nope", "Notes", "text")

    def test_duplicate_name_in_list(self, engine: TaskEngine, list_id: str) -> None:
        engine.create_custom_field(list_id, "Notes", "text")
        with pytest.raises(ValidationError, match="already exists"):
            engine.create_custom_field(list_id, "Notes", "number")

    def test_list_and_get(self, engine: TaskEngine, list_id: str) -> None:
        field = engine.create_custom_field(list_id, "Size", "dropdown", {"options": ["S", "M"]})
        assert [f.id for f in engine.list_custom_fields(list_id)] == [field.id]
        assert engine.get_custom_field(field.id).options == ["S", "M"]

    def test_type_is_immutable(self, engine: TaskEngine, list_id: str) -> None:
        field = engine.create_custom_field(list_id, "Points", "number")
        with pytest.raises(ValidationError, match="cannot be changed"):
            engine.update_custom_field(field.id, {"type": "text"})
        renamed = engine.update_custom_field(field.id, {"name": "Story points", "type": "number"})
        assert renamed.name == "Story points"

    def test_config_change_must_keep_values_valid(self, engine: TaskEngine, list_id: str) -> None:
        field = engine.create_custom_field(list_id, "Size", "dropdown", {"options": ["S", "M", "L"]})
        task = engine.create_task(list_id, "A")
        engine.create_custom_field_value(task.id, field.id, "L")

        with pytest.raises(ValidationError, match="Value must be one of: S, M"):
            engine.update_custom_field(field.id, {"config": {"options": ["S", "M"]}})
        assert engine.get_custom_field(field.id).options == ["S", "M", "L"]

        engine.update_custom_field(field.id, {"config": {"options": ["S", "M", "L", "XL"]}})
        assert engine.get_custom_field(field.id).options == ["S", "M", "L", "XL"]

    def test_delete_field_cascades_values(self, engine: TaskEngine, list_id: str) -> None:
        field = engine.create_custom_field(list_id, "Notes", "text")
        task = engine.create_task(list_id, "A")
        value = engine.create_custom_field_value(task.id, field.id, "hi")
        engine.delete_custom_field(field.id)
        with pytest.raises(NotFoundError):
            engine.get_custom_field_value(value.id)
        with pytest.raises(NotFoundError):
            engine.delete_custom_field(field.id)


class TestCustomFieldValues:
    def test_second_create_rejected(self, engine: TaskEngine, list_id: str) -> None:
        field = engine.create_custom_field(list_id, "Notes", "text")
        task = engine.create_task(list_id, "A")
        engine.create_custom_field_value(task.id, field.id, "first")
        with pytest.raises(ValidationError, match="Use update instead"):
            engine.create_custom_field_value(task.id, field.id, "second")

    def test_field_must_belong_to_task_list(self, engine: TaskEngine, list_id: str) -> None:
        other = engine.create_list("Other")
        field = engine.create_custom_field(other.id, "Notes", "text")
        task = engine.create_task(list_id, "A")
        with pytest.raises(ValidationError, match="task's list"):
            engine.create_custom_field_value(task.id, field.id, "x")

    def test_dropdown_error_lists_options(self, engine: TaskEngine, list_id: str) -> None:
        field = engine.create_custom_field(list_id, "Size", "dropdown", {"options": ["S", "M"]})
        task = engine.create_task(list_id, "A")
        with pytest.raises(ValidationError, match="Value must be one of: S, M"):
            engine.create_custom_field_value(task.id, field.id, "XL")

    def test_missing_records(self, engine: TaskEngine, list_id: str) -> None:
        field = engine.create_custom_field(list_id, "Notes", "text")
        with pytest.raises(NotFoundError, match="Task"):
            engine.create_custom_field_value("nope", field.id, "x")
        task = engine.create_task(list_id, "A")
        with pytest.raises(NotFoundError, match="Custom field"):
            engine.create_custom_field_value(task.id, "nope", "x")
        with pytest.raises(NotFoundError):
            engine.update_custom_field_value("nope", "x")

    def test_list_and_remove(self, engine: TaskEngine, list_id: str) -> None:
        notes = engine.create_custom_field(list_id, "Notes", "text")
        points = engine.create_custom_field(list_id, "Points", "number")
        task = engine.create_task(list_id, "A")
        v1 = engine.create_custom_field_value(task.id, notes.id, "hello")
        engine.create_custom_field_value(task.id, points.id, 2)

        values = engine.list_task_custom_field_values(task.id)
        assert {v.custom_field_id for v in values} == {notes.id, points.id}
        assert engine.get_custom_field_value(v1.id).value == TextValue("hello")

        engine.remove_custom_field_value(v1.id)
        assert [v.custom_field_id for v in engine.list_task_custom_field_values(task.id)] == [points.id]
        # The pair is free again.
        engine.create_custom_field_value(task.id, notes.id, "again")


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

class TestTasks:
    def test_create_assigns_next_position(self, engine: TaskEngine, list_id: str) -> None:
        first = engine.create_task(list_id, "A")
        second = engine.create_task(list_id, "B")
        pinned = engine.create_task(list_id, "C", order_position=10)
        after = engine.create_task(list_id, "D")
        assert (first.order_position, second.order_position, pinned.order_position) == (0, 1, 10)
        assert after.order_position == 11

    def test_create_validates_references(self, engine: TaskEngine, list_id: str) -> None:
        other = engine.create_list("Other")
        foreign_status = engine.create_status(other.id, "Todo")
        with pytest.raises(NotFoundError):
            engine.create_task("nope", "A")
        with pytest.raises(ValidationError, match="Task title"):
            engine.create_task(list_id, "  ")
        with pytest.raises(ValidationError, match="Status does not belong"):
            engine.create_task(list_id, "A", status_id=foreign_status.id)
        with pytest.raises(NotFoundError, match="Member"):
            engine.create_task(list_id, "A", assignee_ids=["ghost"])
        with pytest.raises(ValidationError, match="due_date"):
            engine.create_task(list_id, "A", due_date="someday")
        assert engine.filter_tasks(list_id=list_id) == []

    def test_update_and_clear(self, engine: TaskEngine, list_id: str) -> None:
        status = engine.create_status(list_id, "Doing")
        task = engine.create_task(list_id, "A", due_date="2024-05-01")
        updated = engine.update_task(task.id, {"title": "A2", "status_id": status.id, "due_date": None})
        assert updated.title == "A2"
        assert updated.status_id == status.id
        assert updated.due_date is None
        assert engine.get_task(task.id).title == "A2"

    def test_update_rejects_unknown_fields(self, engine: TaskEngine, list_id: str) -> None:
        task = engine.create_task(list_id, "A")
        with pytest.raises(ValidationError, match="Unsupported task fields"):
            engine.update_task(task.id, {"list_id": "elsewhere"})

    def test_delete(self, engine: TaskEngine, list_id: str) -> None:
        task = engine.create_task(list_id, "A")
        engine.delete_task(task.id)
        with pytest.raises(NotFoundError):
            engine.get_task(task.id)
        with pytest.raises(NotFoundError):
            engine.delete_task(task.id)

    def test_assign_is_idempotent(self, engine: TaskEngine, list_id: str) -> None:
        member = engine.create_member("Ana")
        task = engine.create_task(list_id, "A")
        engine.assign_task(task.id, member.id)
        assert engine.assign_task(task.id, member.id).assignee_ids == [member.id]
        with pytest.raises(NotFoundError):
            engine.assign_task(task.id, "ghost")

    def test_due_date_round_trip(self, engine: TaskEngine, list_id: str) -> None:
        task = engine.create_task(list_id, "A", due_date="2024-06-30T22:00:00Z")
        assert engine.get_task(task.id).due_date == date(2024, 6, 30)
        assert engine.get_task(task.id).to_dict()["due_date"] == "2024-06-30"

    def test_reference_listings(self, engine: TaskEngine, list_id: str) -> None:
        engine.create_status(list_id, "Todo")
        engine.create_status(list_id, "Done")
        assert [s.name for s in engine.list_statuses(list_id)] == ["Todo", "Done"]
        engine.create_priority("Low", order_index=5)
        engine.create_priority("High", order_index=1)
        assert [p.name for p in engine.list_priorities()] == ["High", "Low"]
        assert [tl.id for tl in engine.list_lists()] == [list_id]


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

class TestEvents:
    def test_events_are_recorded(self, engine: TaskEngine, list_id: str) -> None:
        task = engine.create_task(list_id, "A")
        other = engine.create_task(list_id, "B")
        engine.create_dependency(task.id, other.id, "blocked_by")

        types = [e["type"] for e in engine.get_recent_events()]
        assert "list.created" in types
        assert "task.created" in types
        assert types[-1] == "dependency.created"

        task_events = engine.get_task_events(task.id)
        assert [e["type"] for e in task_events] == ["task.created", "dependency.created"]

    def test_events_can_be_disabled(self, state_dir: Path) -> None:
        engine = TaskEngine(state_dir, {"events": {"enabled": False}})
        engine.create_list("Quiet")
        assert engine.get_recent_events() == []

    def test_for_project_reads_config(self, tmp_path: Path) -> None:
        state = tmp_path / ".taskboard"
        state.mkdir()
        (state / "config.yaml").write_text("events:\n  enabled: false\n", encoding="utf-8")
        engine = TaskEngine.for_project(tmp_path)
        assert engine.events_enabled is False
