"""Load optional engine configuration from `.taskboard/config.yaml`."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from .constants import CONFIG_FILE, DEFAULT_LOCK_TIMEOUT, DEFAULT_SORT_DIRECTION, STATE_DIR_NAME
from .io_utils import _load_data_with_error


def load_engine_config(project_dir: Path) -> tuple[dict[str, Any], str | None]:
    """Load the optional engine config file.

    Args:
        project_dir: Directory holding the ``.taskboard/`` state directory.

    Returns:
        A tuple of `(config, error_message)`. If the file is missing, returns `({}, None)`.
    """
    project_dir = project_dir.resolve()
    path = project_dir / STATE_DIR_NAME / CONFIG_FILE
    if not path.exists():
        return {}, None
    data, err = _load_data_with_error(path, {})
    if err:
        return {}, err
    return data, None


def _get_nested(config: dict[str, Any], *keys: str) -> Any:
    cur: Any = config
    for key in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def get_store_config(config: dict[str, Any]) -> dict[str, Any]:
    """Extract the `store` configuration block, or an empty dict."""
    raw = _get_nested(config, "store")
    return raw if isinstance(raw, dict) else {}


def get_lock_timeout(config: dict[str, Any]) -> float:
    """Return the store lock acquisition timeout in seconds.

    Non-positive or non-numeric values fall back to the default.
    """
    raw = get_store_config(config).get("lock_timeout")
    if isinstance(raw, bool) or not isinstance(raw, (int, float)) or raw <= 0:
        return float(DEFAULT_LOCK_TIMEOUT)
    return float(raw)


def get_events_enabled(config: dict[str, Any]) -> bool:
    raw = _get_nested(config, "events", "enabled")
    return raw if isinstance(raw, bool) else True


VALID_SORT_DIRECTIONS = {"ASC", "DESC"}


def get_default_sort_direction(config: dict[str, Any]) -> str:
    """Extract `query.default_sort_direction`, or ``ASC`` when unset/invalid."""
    raw = _get_nested(config, "query", "default_sort_direction")
    if isinstance(raw, str) and raw.upper() in VALID_SORT_DIRECTIONS:
        return raw.upper()
    return DEFAULT_SORT_DIRECTION
