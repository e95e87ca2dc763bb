"""Task query and dependency engine.

This package provides the record model, the filter compiler, the sort
planner, the custom field registry, the dependency graph manager and the
file-backed board store behind :class:`~.engine.TaskEngine`.
"""
