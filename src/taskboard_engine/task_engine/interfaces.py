from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from .filters import Predicate
from .model import (
    CustomField,
    CustomFieldValue,
    DependencyType,
    Member,
    Priority,
    Status,
    Tag,
    Task,
    TaskDependency,
    TaskList,
)
from .sorting import SortPlan


class BoardRepository(ABC):
    """Record access the engine needs from a persistence backend.

    Implementations are used inside a single store transaction; every read
    sees the writes made earlier in the same transaction.
    """

    # -- reference records --------------------------------------------------

    @abstractmethod
    def get_list(self, list_id: str) -> Optional[TaskList]:
        raise NotImplementedError

    @abstractmethod
    def lists(self) -> list[TaskList]:
        raise NotImplementedError

    @abstractmethod
    def save_list(self, task_list: TaskList) -> TaskList:
        raise NotImplementedError

    @abstractmethod
    def get_status(self, status_id: str) -> Optional[Status]:
        raise NotImplementedError

    @abstractmethod
    def statuses(self, list_id: Optional[str] = None) -> list[Status]:
        raise NotImplementedError

    @abstractmethod
    def save_status(self, status: Status) -> Status:
        raise NotImplementedError

    @abstractmethod
    def get_priority(self, priority_id: str) -> Optional[Priority]:
        raise NotImplementedError

    @abstractmethod
    def priorities(self) -> list[Priority]:
        raise NotImplementedError

    @abstractmethod
    def save_priority(self, priority: Priority) -> Priority:
        raise NotImplementedError

    @abstractmethod
    def get_member(self, member_id: str) -> Optional[Member]:
        raise NotImplementedError

    @abstractmethod
    def members(self) -> list[Member]:
        raise NotImplementedError

    @abstractmethod
    def save_member(self, member: Member) -> Member:
        raise NotImplementedError

    @abstractmethod
    def get_tag(self, tag_id: str) -> Optional[Tag]:
        raise NotImplementedError

    @abstractmethod
    def tags(self) -> list[Tag]:
        raise NotImplementedError

    @abstractmethod
    def save_tag(self, tag: Tag) -> Tag:
        raise NotImplementedError

    # -- tasks --------------------------------------------------------------

    @abstractmethod
    def get_task(self, task_id: str) -> Optional[Task]:
        raise NotImplementedError

    @abstractmethod
    def tasks(self) -> list[Task]:
        raise NotImplementedError

    @abstractmethod
    def save_task(self, task: Task) -> Task:
        raise NotImplementedError

    @abstractmethod
    def remove_task(self, task_id: str) -> bool:
        """Delete a task together with its custom field values and edges."""
        raise NotImplementedError

    @abstractmethod
    def query_tasks(
        self,
        predicate: Predicate,
        plan: SortPlan,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Task]:
        raise NotImplementedError

    # -- custom fields ------------------------------------------------------

    @abstractmethod
    def get_custom_field(self, custom_field_id: str) -> Optional[CustomField]:
        raise NotImplementedError

    @abstractmethod
    def custom_fields(self, list_id: Optional[str] = None) -> list[CustomField]:
        raise NotImplementedError

    @abstractmethod
    def save_custom_field(self, custom_field: CustomField) -> CustomField:
        raise NotImplementedError

    @abstractmethod
    def remove_custom_field(self, custom_field_id: str) -> bool:
        """Delete a custom field together with all of its values."""
        raise NotImplementedError

    @abstractmethod
    def get_custom_field_value(self, value_id: str) -> Optional[CustomFieldValue]:
        raise NotImplementedError

    @abstractmethod
    def find_custom_field_value(self, task_id: str, custom_field_id: str) -> Optional[CustomFieldValue]:
        raise NotImplementedError

    @abstractmethod
    def custom_field_values(
        self,
        task_id: Optional[str] = None,
        custom_field_id: Optional[str] = None,
    ) -> list[CustomFieldValue]:
        raise NotImplementedError

    @abstractmethod
    def save_custom_field_value(self, value: CustomFieldValue) -> CustomFieldValue:
        raise NotImplementedError

    @abstractmethod
    def remove_custom_field_value(self, value_id: str) -> bool:
        raise NotImplementedError

    # -- dependencies -------------------------------------------------------

    @abstractmethod
    def get_dependency(self, dependency_id: str) -> Optional[TaskDependency]:
        raise NotImplementedError

    @abstractmethod
    def dependencies(self) -> list[TaskDependency]:
        raise NotImplementedError

    @abstractmethod
    def find_dependency(
        self,
        task_id: str,
        depends_on_task_id: str,
        dep_type: DependencyType,
    ) -> Optional[TaskDependency]:
        raise NotImplementedError

    @abstractmethod
    def save_dependency(self, dependency: TaskDependency) -> TaskDependency:
        raise NotImplementedError

    @abstractmethod
    def remove_dependency(self, dependency_id: str) -> bool:
        raise NotImplementedError
