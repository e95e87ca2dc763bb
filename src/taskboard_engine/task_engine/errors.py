"""Error taxonomy for the task query and dependency engine.

Authorization failures are decided upstream and have no counterpart here.
"""

from __future__ import annotations


class TaskEngineError(Exception):
    """Base class for all engine errors."""


class NotFoundError(TaskEngineError, LookupError):
    """A referenced record (task, list, custom field, value, edge...) is absent."""

    def __init__(self, kind: str, record_id: str) -> None:
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind} {record_id} not found")


class ValidationError(TaskEngineError, ValueError):
    """Input was rejected before any store mutation took place."""
