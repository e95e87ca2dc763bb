from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from .task_engine.engine import TaskEngine
from .task_engine.errors import TaskEngineError


def _resolve_project_dir(project_dir: Optional[str]) -> Path:
    return Path(project_dir).expanduser().resolve() if project_dir else Path.cwd().resolve()


def _engine(args: argparse.Namespace) -> TaskEngine:
    return TaskEngine.for_project(_resolve_project_dir(args.project_dir))


def _emit(payload: Any) -> int:
    sys.stdout.write(json.dumps(payload, indent=2) + '\n')
    return 0


def _parse_json_arg(raw: str) -> Any:
    """Interpret a CLI value as JSON when it parses, else as a plain string."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _load_filters(args: argparse.Namespace) -> Optional[dict[str, Any]]:
    if args.filters_file:
        raw = Path(args.filters_file).read_text(encoding='utf-8')
    elif args.filters:
        raw = args.filters
    else:
        return None
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError('Filter tree must be a JSON object')
    return data


def _list_create(args: argparse.Namespace) -> int:
    task_list = _engine(args).create_list(args.name)
    return _emit({'list': task_list.to_dict()})


def _task_create(args: argparse.Namespace) -> int:
    task = _engine(args).create_task(
        args.list_id,
        args.title,
        description=args.description or '',
        status_id=args.status_id,
        priority_id=args.priority_id,
        due_date=args.due_date,
        order_position=args.order_position,
        assignee_ids=args.assignee or [],
        tag_ids=args.tag or [],
    )
    return _emit({'task': task.to_dict()})


def _task_list(args: argparse.Namespace) -> int:
    tasks = _engine(args).filter_tasks(list_id=args.list_id, include_archived=args.include_archived)
    return _emit({'tasks': [t.to_dict() for t in tasks]})


def _task_filter(args: argparse.Namespace) -> int:
    tasks = _engine(args).filter_tasks(
        list_id=args.list_id,
        filters=_load_filters(args),
        include_archived=args.include_archived,
        sort_field=args.sort_field,
        sort_direction=args.sort_direction,
        custom_field_id=args.custom_field_id,
        limit=args.limit,
        offset=args.offset,
    )
    return _emit({'tasks': [t.to_dict() for t in tasks], 'total': len(tasks)})


def _task_search(args: argparse.Namespace) -> int:
    tasks = _engine(args).search_tasks(
        args.query,
        list_id=args.list_id,
        sort_field=args.sort_field,
        sort_direction=args.sort_direction,
        custom_field_id=args.custom_field_id,
    )
    return _emit({'tasks': [t.to_dict() for t in tasks], 'total': len(tasks)})


def _field_create(args: argparse.Namespace) -> int:
    config = {'options': args.option} if args.option else None
    field = _engine(args).create_custom_field(args.list_id, args.name, args.type, config)
    return _emit({'custom_field': field.to_dict()})


def _field_set(args: argparse.Namespace) -> int:
    engine = _engine(args)
    value = _parse_json_arg(args.value)
    existing = [
        v for v in engine.list_task_custom_field_values(args.task_id)
        if v.custom_field_id == args.custom_field_id
    ]
    if existing:
        record = engine.update_custom_field_value(existing[0].id, value)
    else:
        record = engine.create_custom_field_value(args.task_id, args.custom_field_id, value)
    return _emit({'value': record.to_dict()})


def _dep_add(args: argparse.Namespace) -> int:
    dependency = _engine(args).create_dependency(args.task_id, args.depends_on, args.type)
    return _emit({'dependency': dependency.to_dict()})


def _dep_list(args: argparse.Namespace) -> int:
    found = _engine(args).find_task_dependencies(args.task_id)
    return _emit({key: [d.to_dict() for d in edges] for key, edges in found.items()})


def _server(args: argparse.Namespace) -> int:
    try:
        import uvicorn

        from .server import create_app
    except ImportError:
        sys.stderr.write("Install server extras: pip install 'taskboard-engine[server]'\n")
        return 1

    project_dir = _resolve_project_dir(args.project_dir)
    logger.info("Serving taskboard for {} on {}:{}", project_dir, args.host, args.port)
    app = create_app(project_dir=project_dir)
    uvicorn.run(app, host=args.host, port=args.port, reload=args.reload)
    return 0


def _add_sort_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument('--sort-field', default=None)
    parser.add_argument('--sort-direction', default=None, choices=['ASC', 'DESC', 'asc', 'desc'])
    parser.add_argument('--custom-field-id', default=None, help='Custom field to sort by (with --sort-field customField)')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Taskboard engine CLI')
    parser.add_argument('--project-dir', default=None, help='Target project directory (default: current working directory)')
    subparsers = parser.add_subparsers(dest='command', required=True)

    server = subparsers.add_parser('server', help='Start the HTTP API server')
    server.add_argument('--host', default='127.0.0.1')
    server.add_argument('--port', default=8000, type=int)
    server.add_argument('--reload', action='store_true')
    server.set_defaults(func=_server)

    list_parser = subparsers.add_parser('list', help='Manage lists')
    list_sub = list_parser.add_subparsers(dest='list_command', required=True)
    list_create = list_sub.add_parser('create')
    list_create.add_argument('name')
    list_create.set_defaults(func=_list_create)

    task = subparsers.add_parser('task', help='Create and query tasks')
    task_sub = task.add_subparsers(dest='task_command', required=True)

    task_create = task_sub.add_parser('create')
    task_create.add_argument('list_id')
    task_create.add_argument('title')
    task_create.add_argument('--description', default='')
    task_create.add_argument('--status-id', default=None)
    task_create.add_argument('--priority-id', default=None)
    task_create.add_argument('--due-date', default=None, help='ISO-8601 date')
    task_create.add_argument('--order-position', default=None, type=int)
    task_create.add_argument('--assignee', action='append', help='Member id (repeatable)')
    task_create.add_argument('--tag', action='append', help='Tag id (repeatable)')
    task_create.set_defaults(func=_task_create)

    task_list = task_sub.add_parser('list')
    task_list.add_argument('--list-id', default=None)
    task_list.add_argument('--include-archived', action='store_true')
    task_list.set_defaults(func=_task_list)

    task_filter = task_sub.add_parser('filter', help='Run a filter tree (JSON) against tasks')
    task_filter.add_argument('--list-id', default=None)
    task_filter.add_argument('--filters', default=None, help='Filter tree as a JSON object')
    task_filter.add_argument('--filters-file', default=None, help='Path to a JSON file holding the filter tree')
    task_filter.add_argument('--include-archived', action='store_true')
    task_filter.add_argument('--limit', default=None, type=int)
    task_filter.add_argument('--offset', default=0, type=int)
    _add_sort_args(task_filter)
    task_filter.set_defaults(func=_task_filter)

    task_search = task_sub.add_parser('search')
    task_search.add_argument('query')
    task_search.add_argument('--list-id', default=None)
    _add_sort_args(task_search)
    task_search.set_defaults(func=_task_search)

    field = subparsers.add_parser('field', help='Custom fields and their values')
    field_sub = field.add_subparsers(dest='field_command', required=True)

    field_create = field_sub.add_parser('create')
    field_create.add_argument('list_id')
    field_create.add_argument('name')
    field_create.add_argument('type', choices=['text', 'number', 'date', 'dropdown'])
    field_create.add_argument('--option', action='append', help='Dropdown option (repeatable)')
    field_create.set_defaults(func=_field_create)

    field_set = field_sub.add_parser('set', help='Create or update a task\'s value for a custom field')
    field_set.add_argument('task_id')
    field_set.add_argument('custom_field_id')
    field_set.add_argument('value', help='Value; parsed as JSON when possible')
    field_set.set_defaults(func=_field_set)

    dep = subparsers.add_parser('dep', help='Task dependencies')
    dep_sub = dep.add_subparsers(dest='dep_command', required=True)

    dep_add = dep_sub.add_parser('add')
    dep_add.add_argument('task_id')
    dep_add.add_argument('depends_on')
    dep_add.add_argument('--type', default='blocked_by', choices=['blocked_by', 'blocks'])
    dep_add.set_defaults(func=_dep_add)

    dep_list = dep_sub.add_parser('list')
    dep_list.add_argument('task_id')
    dep_list.set_defaults(func=_dep_list)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    handler = getattr(args, 'func', None)
    if handler is None:
        parser.print_help()
        return 1
    try:
        return int(handler(args) or 0)
    except (TaskEngineError, ValueError) as exc:
        sys.stderr.write(str(exc) + '\n')
        return 1


if __name__ == '__main__':
    raise SystemExit(main())
