"""Provide the public `taskboard_engine` package exports."""

from __future__ import annotations

from .task_engine.engine import TaskEngine
from .task_engine.errors import NotFoundError, TaskEngineError, ValidationError

__all__ = ["NotFoundError", "TaskEngine", "TaskEngineError", "ValidationError"]
