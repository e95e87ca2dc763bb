"""FastAPI web server for the taskboard engine."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from ..task_engine.engine import TaskEngine
from ..task_engine.errors import NotFoundError, TaskEngineError, ValidationError
from .task_api import create_list_router, create_reference_router, create_task_router


def create_app(
    project_dir: Optional[Path] = None,
    enable_cors: bool = True,
) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        project_dir: Default project directory.
        enable_cors: Whether to enable CORS.

    Returns:
        Configured FastAPI app.
    """
    app = FastAPI(
        title="Taskboard Engine",
        description="Task filtering, sorting, custom fields and dependency management",
        version="0.1.0",
    )

    if enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.state.default_project_dir = project_dir

    def _get_project_dir(project_dir_param: Optional[str] = None) -> Path:
        """Get project directory from parameter or default."""
        if project_dir_param:
            return Path(project_dir_param)
        if app.state.default_project_dir:
            return app.state.default_project_dir
        return Path.cwd()

    def _get_engine(project_dir_param: Optional[str] = None) -> TaskEngine:
        return TaskEngine.for_project(_get_project_dir(project_dir_param))

    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ValidationError)
    async def _invalid(request: Request, exc: ValidationError) -> JSONResponse:
        logger.info("Rejected {} {}: {}", request.method, request.url.path, exc)
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(TaskEngineError)
    async def _engine_error(request: Request, exc: TaskEngineError) -> JSONResponse:
        logger.error("Engine failure on {} {}: {}", request.method, request.url.path, exc)
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    @app.get("/")
    async def root() -> dict[str, str]:
        return {"name": "taskboard-engine", "status": "ok"}

    @app.get("/api/v1/events")
    def recent_events(limit: int = 100, project_dir: Optional[str] = None) -> dict[str, list]:
        return {"events": _get_engine(project_dir).get_recent_events(limit=limit)}

    app.include_router(create_task_router(_get_engine))
    app.include_router(create_list_router(_get_engine))
    app.include_router(create_reference_router(_get_engine))

    return app
