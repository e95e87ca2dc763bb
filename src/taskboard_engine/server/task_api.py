"""Task API endpoints: filtered queries, dependencies and custom field values.

This module provides FastAPI router factories mounted by the main
``create_app`` factory.  Engine errors are not caught here; the app-level
exception handlers map them to HTTP status codes.  Handlers are plain
functions so FastAPI runs the blocking store calls in its thread pool.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

from fastapi import APIRouter, Query
from loguru import logger

from ..task_engine.engine import TaskEngine
from .models import (
    AssignRequest,
    CreateCustomFieldRequest,
    CreateCustomFieldValueRequest,
    CreateDependencyRequest,
    CreateTaskRequest,
    CustomFieldResponse,
    CustomFieldValueResponse,
    DependencyGraphResponse,
    DependencyResponse,
    ExecutionOrderResponse,
    FilterTasksRequest,
    NamedRequest,
    OrderedNamedRequest,
    SearchTasksRequest,
    TagRequest,
    TaskDependenciesResponse,
    TaskListResponse,
    TaskResponse,
    UpdateCustomFieldRequest,
    UpdateCustomFieldValueRequest,
    UpdateTaskRequest,
)

EngineResolver = Callable[[Optional[str]], TaskEngine]


def _task_list(tasks: list[Any]) -> TaskListResponse:
    data = [t.to_dict() for t in tasks]
    return TaskListResponse(tasks=data, total=len(data))


# ---------------------------------------------------------------------------
# /api/v1/tasks
# ---------------------------------------------------------------------------

def create_task_router(get_engine: EngineResolver) -> APIRouter:
    """Create the task API router.

    Parameters
    ----------
    get_engine:
        A callable ``(project_dir_param: str | None) -> TaskEngine`` that
        resolves the engine for the current request's project directory.
    """
    router = APIRouter(prefix="/api/v1/tasks", tags=["tasks"])

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @router.post("/filter", response_model=TaskListResponse)
    def filter_tasks(
        body: FilterTasksRequest,
        project_dir: Optional[str] = Query(None),
        sort_field: Optional[str] = Query(None, alias="sortField"),
        sort_direction: Optional[str] = Query(None, alias="sortDirection"),
        custom_field_id: Optional[str] = Query(None, alias="customFieldId"),
        limit: Optional[int] = Query(None, ge=0),
        offset: int = Query(0, ge=0),
    ) -> TaskListResponse:
        engine = get_engine(project_dir)
        tasks = engine.filter_tasks(
            list_id=body.list_id,
            filters=body.filters,
            include_archived=body.include_archived,
            sort_field=sort_field,
            sort_direction=sort_direction,
            custom_field_id=custom_field_id,
            limit=limit,
            offset=offset,
        )
        return _task_list(tasks)

    @router.post("/search", response_model=TaskListResponse)
    def search_tasks(
        body: SearchTasksRequest,
        project_dir: Optional[str] = Query(None),
        sort_field: Optional[str] = Query(None, alias="sortField"),
        sort_direction: Optional[str] = Query(None, alias="sortDirection"),
        custom_field_id: Optional[str] = Query(None, alias="customFieldId"),
    ) -> TaskListResponse:
        engine = get_engine(project_dir)
        tasks = engine.search_tasks(
            body.query,
            list_id=body.list_id,
            sort_field=sort_field,
            sort_direction=sort_direction,
            custom_field_id=custom_field_id,
        )
        return _task_list(tasks)

    @router.get("/calendar", response_model=TaskListResponse)
    def get_calendar(
        list_id: str = Query(alias="listId"),
        start: str = Query(...),
        end: str = Query(...),
        project_dir: Optional[str] = Query(None),
    ) -> TaskListResponse:
        engine = get_engine(project_dir)
        return _task_list(engine.get_tasks_for_calendar(list_id, start, end))

    # ------------------------------------------------------------------
    # Dependencies
    # ------------------------------------------------------------------

    @router.post("/dependencies", response_model=DependencyResponse, status_code=201)
    def create_dependency(
        body: CreateDependencyRequest,
        project_dir: Optional[str] = Query(None),
    ) -> DependencyResponse:
        engine = get_engine(project_dir)
        dependency = engine.create_dependency(body.task_id, body.depends_on_task_id, body.type)
        logger.info("Dependency {} created ({} {} {})", dependency.id, body.task_id, body.type, body.depends_on_task_id)
        return DependencyResponse(dependency=dependency.to_dict())

    @router.get("/dependencies/graph", response_model=DependencyGraphResponse)
    def get_dependency_graph(
        task_id: Optional[str] = Query(None, alias="taskId"),
        project_dir: Optional[str] = Query(None),
    ) -> DependencyGraphResponse:
        engine = get_engine(project_dir)
        return DependencyGraphResponse(graph=engine.get_dependency_graph(task_id))

    @router.get("/dependencies/{dependency_id}", response_model=DependencyResponse)
    def get_dependency(
        dependency_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> DependencyResponse:
        engine = get_engine(project_dir)
        return DependencyResponse(dependency=engine.get_dependency(dependency_id).to_dict())

    @router.delete("/dependencies/{dependency_id}")
    def delete_dependency(
        dependency_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, str]:
        engine = get_engine(project_dir)
        engine.remove_dependency(dependency_id)
        return {"status": "deleted"}

    # ------------------------------------------------------------------
    # Custom field values
    # ------------------------------------------------------------------

    @router.post("/custom-field-values", response_model=CustomFieldValueResponse, status_code=201)
    def create_custom_field_value(
        body: CreateCustomFieldValueRequest,
        project_dir: Optional[str] = Query(None),
    ) -> CustomFieldValueResponse:
        engine = get_engine(project_dir)
        record = engine.create_custom_field_value(body.task_id, body.custom_field_id, body.value)
        return CustomFieldValueResponse(value=record.to_dict())

    @router.get("/custom-field-values/{value_id}", response_model=CustomFieldValueResponse)
    def get_custom_field_value(
        value_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> CustomFieldValueResponse:
        engine = get_engine(project_dir)
        return CustomFieldValueResponse(value=engine.get_custom_field_value(value_id).to_dict())

    @router.put("/custom-field-values/{value_id}", response_model=CustomFieldValueResponse)
    def update_custom_field_value(
        value_id: str,
        body: UpdateCustomFieldValueRequest,
        project_dir: Optional[str] = Query(None),
    ) -> CustomFieldValueResponse:
        engine = get_engine(project_dir)
        record = engine.update_custom_field_value(value_id, body.value)
        return CustomFieldValueResponse(value=record.to_dict())

    @router.delete("/custom-field-values/{value_id}")
    def delete_custom_field_value(
        value_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, str]:
        engine = get_engine(project_dir)
        engine.remove_custom_field_value(value_id)
        return {"status": "deleted"}

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    @router.post("", response_model=TaskResponse, status_code=201)
    def create_task(
        body: CreateTaskRequest,
        project_dir: Optional[str] = Query(None),
    ) -> TaskResponse:
        engine = get_engine(project_dir)
        task = engine.create_task(**body.model_dump())
        return TaskResponse(task=task.to_dict())

    @router.get("/{task_id}", response_model=TaskResponse)
    def get_task(
        task_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> TaskResponse:
        engine = get_engine(project_dir)
        return TaskResponse(task=engine.get_task(task_id).to_dict())

    @router.patch("/{task_id}", response_model=TaskResponse)
    def update_task(
        task_id: str,
        body: UpdateTaskRequest,
        project_dir: Optional[str] = Query(None),
    ) -> TaskResponse:
        engine = get_engine(project_dir)
        # Only fields present in the body change; an explicit null clears.
        task = engine.update_task(task_id, body.model_dump(exclude_unset=True))
        return TaskResponse(task=task.to_dict())

    @router.delete("/{task_id}")
    def delete_task(
        task_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, str]:
        engine = get_engine(project_dir)
        engine.delete_task(task_id)
        return {"status": "deleted"}

    @router.post("/{task_id}/archive", response_model=TaskResponse)
    def archive_task(
        task_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> TaskResponse:
        engine = get_engine(project_dir)
        return TaskResponse(task=engine.archive_task(task_id).to_dict())

    @router.post("/{task_id}/unarchive", response_model=TaskResponse)
    def unarchive_task(
        task_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> TaskResponse:
        engine = get_engine(project_dir)
        return TaskResponse(task=engine.unarchive_task(task_id).to_dict())

    @router.post("/{task_id}/assign", response_model=TaskResponse)
    def assign_task(
        task_id: str,
        body: AssignRequest,
        project_dir: Optional[str] = Query(None),
    ) -> TaskResponse:
        engine = get_engine(project_dir)
        return TaskResponse(task=engine.assign_task(task_id, body.member_id).to_dict())

    @router.post("/{task_id}/unassign", response_model=TaskResponse)
    def unassign_task(
        task_id: str,
        body: AssignRequest,
        project_dir: Optional[str] = Query(None),
    ) -> TaskResponse:
        engine = get_engine(project_dir)
        return TaskResponse(task=engine.unassign_task(task_id, body.member_id).to_dict())

    @router.post("/{task_id}/tags", response_model=TaskResponse)
    def add_tag(
        task_id: str,
        body: TagRequest,
        project_dir: Optional[str] = Query(None),
    ) -> TaskResponse:
        engine = get_engine(project_dir)
        return TaskResponse(task=engine.add_tag(task_id, body.tag_id).to_dict())

    @router.delete("/{task_id}/tags/{tag_id}", response_model=TaskResponse)
    def remove_tag(
        task_id: str,
        tag_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> TaskResponse:
        engine = get_engine(project_dir)
        return TaskResponse(task=engine.remove_tag(task_id, tag_id).to_dict())

    @router.get("/{task_id}/dependencies", response_model=TaskDependenciesResponse)
    def get_task_dependencies(
        task_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> TaskDependenciesResponse:
        engine = get_engine(project_dir)
        found = engine.find_task_dependencies(task_id)
        return TaskDependenciesResponse(
            blocking=[d.to_dict() for d in found["blocking"]],
            blocked_by=[d.to_dict() for d in found["blocked_by"]],
        )

    @router.get("/{task_id}/custom-field-values")
    def list_task_custom_field_values(
        task_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        values = engine.list_task_custom_field_values(task_id)
        return {"values": [v.to_dict() for v in values]}

    @router.get("/{task_id}/events")
    def get_task_events(
        task_id: str,
        limit: int = Query(100, ge=1),
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        return {"events": engine.get_task_events(task_id, limit=limit)}

    return router


# ---------------------------------------------------------------------------
# /api/v1/lists
# ---------------------------------------------------------------------------

def create_list_router(get_engine: EngineResolver) -> APIRouter:
    """Lists, their statuses and their custom field definitions."""
    router = APIRouter(prefix="/api/v1/lists", tags=["lists"])

    @router.post("", status_code=201)
    def create_list(
        body: NamedRequest,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        return {"list": engine.create_list(body.name).to_dict()}

    @router.get("")
    def list_lists(project_dir: Optional[str] = Query(None)) -> dict[str, Any]:
        engine = get_engine(project_dir)
        return {"lists": [tl.to_dict() for tl in engine.list_lists()]}

    @router.get("/custom-fields/{custom_field_id}", response_model=CustomFieldResponse)
    def get_custom_field(
        custom_field_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> CustomFieldResponse:
        engine = get_engine(project_dir)
        return CustomFieldResponse(custom_field=engine.get_custom_field(custom_field_id).to_dict())

    @router.patch("/custom-fields/{custom_field_id}", response_model=CustomFieldResponse)
    def update_custom_field(
        custom_field_id: str,
        body: UpdateCustomFieldRequest,
        project_dir: Optional[str] = Query(None),
    ) -> CustomFieldResponse:
        engine = get_engine(project_dir)
        field = engine.update_custom_field(custom_field_id, body.model_dump(exclude_unset=True))
        return CustomFieldResponse(custom_field=field.to_dict())

    @router.delete("/custom-fields/{custom_field_id}")
    def delete_custom_field(
        custom_field_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, str]:
        engine = get_engine(project_dir)
        engine.delete_custom_field(custom_field_id)
        return {"status": "deleted"}

    @router.get("/{list_id}")
    def get_list(
        list_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        return {"list": engine.get_list(list_id).to_dict()}

    @router.post("/{list_id}/custom-fields", response_model=CustomFieldResponse, status_code=201)
    def create_custom_field(
        list_id: str,
        body: CreateCustomFieldRequest,
        project_dir: Optional[str] = Query(None),
    ) -> CustomFieldResponse:
        engine = get_engine(project_dir)
        field = engine.create_custom_field(list_id, body.name, body.type, body.config)
        return CustomFieldResponse(custom_field=field.to_dict())

    @router.get("/{list_id}/custom-fields")
    def list_custom_fields(
        list_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        return {"custom_fields": [cf.to_dict() for cf in engine.list_custom_fields(list_id)]}

    @router.post("/{list_id}/statuses", status_code=201)
    def create_status(
        list_id: str,
        body: OrderedNamedRequest,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        return {"status": engine.create_status(list_id, body.name, body.order_index).to_dict()}

    @router.get("/{list_id}/statuses")
    def list_statuses(
        list_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        return {"statuses": [s.to_dict() for s in engine.list_statuses(list_id)]}

    @router.get("/{list_id}/execution-order", response_model=ExecutionOrderResponse)
    def get_execution_order(
        list_id: str,
        project_dir: Optional[str] = Query(None),
    ) -> ExecutionOrderResponse:
        engine = get_engine(project_dir)
        return ExecutionOrderResponse(batches=engine.get_execution_order(list_id))

    return router


# ---------------------------------------------------------------------------
# /api/v1/members, /api/v1/tags, /api/v1/priorities
# ---------------------------------------------------------------------------

def create_reference_router(get_engine: EngineResolver) -> APIRouter:
    """Board-wide reference records that filters and sorts refer to."""
    router = APIRouter(prefix="/api/v1", tags=["reference"])

    @router.post("/members", status_code=201)
    def create_member(
        body: NamedRequest,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        return {"member": engine.create_member(body.name).to_dict()}

    @router.get("/members")
    def list_members(project_dir: Optional[str] = Query(None)) -> dict[str, Any]:
        engine = get_engine(project_dir)
        return {"members": [m.to_dict() for m in engine.list_members()]}

    @router.post("/tags", status_code=201)
    def create_tag(
        body: NamedRequest,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        return {"tag": engine.create_tag(body.name).to_dict()}

    @router.get("/tags")
    def list_tags(project_dir: Optional[str] = Query(None)) -> dict[str, Any]:
        engine = get_engine(project_dir)
        return {"tags": [t.to_dict() for t in engine.list_tags()]}

    @router.post("/priorities", status_code=201)
    def create_priority(
        body: OrderedNamedRequest,
        project_dir: Optional[str] = Query(None),
    ) -> dict[str, Any]:
        engine = get_engine(project_dir)
        return {"priority": engine.create_priority(body.name, body.order_index).to_dict()}

    @router.get("/priorities")
    def list_priorities(project_dir: Optional[str] = Query(None)) -> dict[str, Any]:
        engine = get_engine(project_dir)
        return {"priorities": [p.to_dict() for p in engine.list_priorities()]}

    return router
