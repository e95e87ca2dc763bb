from __future__ import annotations

from pathlib import Path

from taskboard_engine.config import (
    get_default_sort_direction,
    get_events_enabled,
    get_lock_timeout,
    load_engine_config,
)


def test_missing_config_is_empty(tmp_path: Path) -> None:
    assert load_engine_config(tmp_path) == ({}, None)


def test_load_config_file(tmp_path: Path) -> None:
    state = tmp_path / ".taskboard"
    state.mkdir()
    (state / "config.yaml").write_text(
        "store:\n  lock_timeout: 5\nquery:\n  default_sort_direction: desc\n",
        encoding="utf-8",
    )
    config, err = load_engine_config(tmp_path)
    assert err is None
    assert get_lock_timeout(config) == 5.0
    assert get_default_sort_direction(config) == "DESC"
    assert get_events_enabled(config) is True


def test_unreadable_config_reports_error(tmp_path: Path) -> None:
    state = tmp_path / ".taskboard"
    state.mkdir()
    (state / "config.yaml").write_text("store: [oops\n", encoding="utf-8")
    config, err = load_engine_config(tmp_path)
    assert config == {}
    assert err is not None and "YAMLError" in err


def test_invalid_values_fall_back_to_defaults() -> None:
    config = {
        "store": {"lock_timeout": -1},
        "events": {"enabled": "yes"},
        "query": {"default_sort_direction": "sideways"},
    }
    assert get_lock_timeout(config) == 30.0
    assert get_events_enabled(config) is True
    assert get_default_sort_direction(config) == "ASC"
    assert get_lock_timeout({"store": {"lock_timeout": True}}) == 30.0
