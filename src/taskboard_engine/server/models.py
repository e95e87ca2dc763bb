"""Pydantic request and response models for the task API.

Request bodies accept the camelCase keys clients send (``listId``,
``customFieldId``...) as well as the snake_case attribute names.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

class FilterTasksRequest(_Body):
    """Body of ``POST /api/v1/tasks/filter``.

    ``filters`` is the raw filter tree; it is validated by the engine so that
    malformed trees come back as 400 with a readable message.
    """

    list_id: Optional[str] = Field(None, alias="listId")
    filters: Optional[dict[str, Any]] = None
    include_archived: bool = Field(False, alias="includeArchived")


class SearchTasksRequest(_Body):
    query: str
    list_id: Optional[str] = Field(None, alias="listId")


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

class CreateTaskRequest(_Body):
    list_id: str = Field(alias="listId")
    title: str
    description: str = ""
    status_id: Optional[str] = Field(None, alias="statusId")
    priority_id: Optional[str] = Field(None, alias="priorityId")
    due_date: Optional[str] = Field(None, alias="dueDate")
    order_position: Optional[int] = Field(None, alias="orderPosition")
    assignee_ids: list[str] = Field(default_factory=list, alias="assigneeIds")
    tag_ids: list[str] = Field(default_factory=list, alias="tagIds")


class UpdateTaskRequest(_Body):
    title: Optional[str] = None
    description: Optional[str] = None
    status_id: Optional[str] = Field(None, alias="statusId")
    priority_id: Optional[str] = Field(None, alias="priorityId")
    due_date: Optional[str] = Field(None, alias="dueDate")
    order_position: Optional[int] = Field(None, alias="orderPosition")


class AssignRequest(_Body):
    member_id: str = Field(alias="memberId")


class TagRequest(_Body):
    tag_id: str = Field(alias="tagId")


class TaskResponse(BaseModel):
    task: dict[str, Any]


class TaskListResponse(BaseModel):
    tasks: list[dict[str, Any]]
    total: int


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

class CreateDependencyRequest(_Body):
    task_id: str = Field(alias="taskId")
    depends_on_task_id: str = Field(alias="dependsOnTaskId")
    type: str


class DependencyResponse(BaseModel):
    dependency: dict[str, Any]


class TaskDependenciesResponse(BaseModel):
    blocking: list[dict[str, Any]]
    blocked_by: list[dict[str, Any]]


class DependencyGraphResponse(BaseModel):
    graph: dict[str, list[str]]


class ExecutionOrderResponse(BaseModel):
    batches: list[list[str]]


# ---------------------------------------------------------------------------
# Custom fields
# ---------------------------------------------------------------------------

class CreateCustomFieldRequest(_Body):
    name: str
    type: str
    config: Optional[dict[str, Any]] = None


class UpdateCustomFieldRequest(_Body):
    name: Optional[str] = None
    type: Optional[str] = None
    config: Optional[dict[str, Any]] = None


class CustomFieldResponse(BaseModel):
    custom_field: dict[str, Any]


class CreateCustomFieldValueRequest(_Body):
    task_id: str = Field(alias="taskId")
    custom_field_id: str = Field(alias="customFieldId")
    value: Any = None


class UpdateCustomFieldValueRequest(_Body):
    value: Any = None


class CustomFieldValueResponse(BaseModel):
    value: dict[str, Any]


# ---------------------------------------------------------------------------
# Reference records
# ---------------------------------------------------------------------------

class NamedRequest(_Body):
    name: str


class OrderedNamedRequest(_Body):
    name: str
    order_index: Optional[int] = Field(None, alias="orderIndex")
