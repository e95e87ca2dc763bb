from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from taskboard_engine.cli import main


def _run(capsys: pytest.CaptureFixture[str], project: Path, *argv: str) -> Any:
    rc = main(['--project-dir', str(project), *argv])
    out = capsys.readouterr().out
    assert rc == 0, out
    return json.loads(out)


def test_list_task_create_and_list(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    list_id = _run(capsys, tmp_path, 'list', 'create', 'Sprint')['list']['id']
    task = _run(capsys, tmp_path, 'task', 'create', list_id, 'CLI Task', '--due-date', '2024-04-01')['task']
    assert task['due_date'] == '2024-04-01'

    tasks = _run(capsys, tmp_path, 'task', 'list', '--list-id', list_id)['tasks']
    assert [t['title'] for t in tasks] == ['CLI Task']
    assert (tmp_path / '.taskboard' / 'board.yaml').exists()


def test_filter_with_json_tree(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    list_id = _run(capsys, tmp_path, 'list', 'create', 'Sprint')['list']['id']
    _run(capsys, tmp_path, 'task', 'create', list_id, 'A', '--due-date', '2024-01-01')
    _run(capsys, tmp_path, 'task', 'create', list_id, 'B', '--due-date', '2024-02-01')

    tree = json.dumps({'conditions': [{'field': 'dueDate', 'operator': 'greater_than', 'value': '2024-01-15'}]})
    data = _run(capsys, tmp_path, 'task', 'filter', '--list-id', list_id, '--filters', tree)
    assert data['total'] == 1
    assert data['tasks'][0]['title'] == 'B'

    filters_file = tmp_path / 'filters.json'
    filters_file.write_text(json.dumps({'logic': 'or'}), encoding='utf-8')
    data = _run(capsys, tmp_path, 'task', 'filter', '--list-id', list_id, '--filters-file', str(filters_file))
    assert data['total'] == 0


def test_field_set_creates_then_updates(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    list_id = _run(capsys, tmp_path, 'list', 'create', 'Sprint')['list']['id']
    task_id = _run(capsys, tmp_path, 'task', 'create', list_id, 'A')['task']['id']
    field_id = _run(capsys, tmp_path, 'field', 'create', list_id, 'Points', 'number')['custom_field']['id']

    first = _run(capsys, tmp_path, 'field', 'set', task_id, field_id, '3')['value']
    second = _run(capsys, tmp_path, 'field', 'set', task_id, field_id, '5')['value']
    assert first['id'] == second['id']
    assert second['value'] == 5


def test_dependency_commands(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    list_id = _run(capsys, tmp_path, 'list', 'create', 'Sprint')['list']['id']
    a = _run(capsys, tmp_path, 'task', 'create', list_id, 'A')['task']['id']
    b = _run(capsys, tmp_path, 'task', 'create', list_id, 'B')['task']['id']

    dep = _run(capsys, tmp_path, 'dep', 'add', a, b)['dependency']
    assert dep['type'] == 'blocked_by'
    listing = _run(capsys, tmp_path, 'dep', 'list', a)
    assert [d['id'] for d in listing['blocked_by']] == [dep['id']]

    rc = main(['--project-dir', str(tmp_path), 'dep', 'add', b, a])
    captured = capsys.readouterr()
    assert rc == 1
    assert 'circular dependency' in captured.err


def test_errors_return_nonzero(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(['--project-dir', str(tmp_path), 'task', 'create', 'nope', 'Orphan']) == 1
    assert 'List nope not found' in capsys.readouterr().err

    assert main(['--project-dir', str(tmp_path), 'task', 'filter', '--filters', '[1, 2]']) == 1
    assert 'must be a JSON object' in capsys.readouterr().err

    assert main(['--project-dir', str(tmp_path), 'task', 'search', ' ']) == 1
