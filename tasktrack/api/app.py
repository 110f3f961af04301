"""
TaskTrack HTTP API — FastAPI application.

Maps the TaskService operations onto REST endpoints under /api/v1.
Authentication: ``X-API-Key: <user_id>.<secret>`` on every /api route.

Run:
    tasktrack run
Or:
    uvicorn tasktrack.api.app:create_app --factory --port 8000

Errors are returned as the TaskTrackError ``to_dict()`` body:
    ValidationError 422 | AuthorizationError 403 (401 when unauthenticated)
    NotFoundError 404   | StateError 409
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import sessionmaker

from tasktrack import __version__
from tasktrack.engine.config import Settings, get_settings
from tasktrack.engine.context import ExecutionContext
from tasktrack.engine.errors import AuthorizationError, TaskTrackError
from tasktrack.engine.logging import log, log_web_api_request
from tasktrack.notifications.dispatcher import NotificationDispatcher
from tasktrack.security.auth import AuthService
from tasktrack.tasks.schemas import (
    AssignRequest,
    CommentCreate,
    CommentRead,
    DashboardRead,
    Priority,
    Status,
    TaskRead,
    UserRead,
)
from tasktrack.tasks.service import TaskService

logger = logging.getLogger("tasktrack.api.app")


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_service(request: Request) -> TaskService:
    return request.app.state.service


def get_actor(request: Request) -> ExecutionContext:
    """
    Resolve the API key header (X-API-Key by default) to an ExecutionContext.
    Raises 401 if the key is missing or invalid.

    Plain ``def`` so FastAPI runs the bcrypt check in its threadpool.
    """
    header = request.app.state.settings.security.api_key_header
    x_api_key = request.headers.get(header)
    if not x_api_key:
        raise HTTPException(
            status_code=401,
            detail={"error": "missing_api_key", "message": "X-API-Key header is required"},
        )
    auth: AuthService = request.app.state.auth
    ctx = auth.authenticate_api_key(x_api_key)
    if ctx is None:
        raise HTTPException(
            status_code=401,
            detail={"error": "invalid_api_key", "message": "Invalid API key"},
        )
    request.state.actor_id = ctx.actor_id
    return ctx


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

router = APIRouter()


@router.get("/users/me", response_model=UserRead)
def read_me(ctx: ExecutionContext = Depends(get_actor), service: TaskService = Depends(get_service)):
    return service.current_user(ctx)


@router.post("/tasks", response_model=TaskRead, status_code=201)
def create_task(
    body: dict,
    ctx: ExecutionContext = Depends(get_actor),
    service: TaskService = Depends(get_service),
):
    # Raw dict so TaskCreate validation errors surface as ValidationError bodies
    return service.create_task(body, ctx).task


@router.get("/tasks", response_model=List[TaskRead])
def list_tasks(
    status: Optional[Status] = None,
    priority: Optional[Priority] = None,
    assignee_id: Optional[int] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    ctx: ExecutionContext = Depends(get_actor),
    service: TaskService = Depends(get_service),
):
    return service.list_tasks(
        ctx, status=status, priority=priority, assignee_id=assignee_id, limit=limit, offset=offset,
    )


@router.get("/tasks/{task_id}", response_model=TaskRead)
def get_task(task_id: int, ctx: ExecutionContext = Depends(get_actor), service: TaskService = Depends(get_service)):
    return service.get_task(task_id, ctx)


@router.patch("/tasks/{task_id}", response_model=TaskRead)
def edit_task(
    task_id: int,
    body: dict,
    ctx: ExecutionContext = Depends(get_actor),
    service: TaskService = Depends(get_service),
):
    return service.edit_task(task_id, body, ctx).task


@router.delete("/tasks/{task_id}", status_code=204)
def delete_task(task_id: int, ctx: ExecutionContext = Depends(get_actor), service: TaskService = Depends(get_service)):
    service.delete_task(task_id, ctx)
    return Response(status_code=204)


@router.post("/tasks/{task_id}/assign", response_model=TaskRead)
def assign_task(
    task_id: int,
    body: AssignRequest,
    ctx: ExecutionContext = Depends(get_actor),
    service: TaskService = Depends(get_service),
):
    return service.assign_task(task_id, body.assignee_id, ctx).task


@router.post("/tasks/{task_id}/start", response_model=TaskRead)
def start_task(task_id: int, ctx: ExecutionContext = Depends(get_actor), service: TaskService = Depends(get_service)):
    return service.start_task(task_id, ctx).task


@router.post("/tasks/{task_id}/complete", response_model=TaskRead)
def complete_task(task_id: int, ctx: ExecutionContext = Depends(get_actor), service: TaskService = Depends(get_service)):
    return service.complete_task(task_id, ctx).task


@router.post("/tasks/{task_id}/archive", response_model=TaskRead)
def archive_task(task_id: int, ctx: ExecutionContext = Depends(get_actor), service: TaskService = Depends(get_service)):
    return service.archive_task(task_id, ctx).task


@router.get("/tasks/{task_id}/comments", response_model=List[CommentRead])
def list_comments(task_id: int, ctx: ExecutionContext = Depends(get_actor), service: TaskService = Depends(get_service)):
    return service.list_comments(task_id, ctx)


@router.post("/tasks/{task_id}/comments", response_model=CommentRead, status_code=201)
def add_comment(
    task_id: int,
    body: CommentCreate,
    ctx: ExecutionContext = Depends(get_actor),
    service: TaskService = Depends(get_service),
):
    return service.add_comment(task_id, body.content, ctx)


@router.delete("/comments/{comment_id}", status_code=204)
def delete_comment(comment_id: int, ctx: ExecutionContext = Depends(get_actor), service: TaskService = Depends(get_service)):
    service.delete_comment(comment_id, ctx)
    return Response(status_code=204)


@router.get("/dashboard", response_model=DashboardRead)
def dashboard(ctx: ExecutionContext = Depends(get_actor), service: TaskService = Depends(get_service)):
    summary = service.dashboard(ctx)
    return DashboardRead(
        counts_by_status=summary.counts_by_status,
        overdue_count=summary.overdue_count,
        assigned_incomplete=[TaskRead.model_validate(t) for t in summary.assigned_incomplete],
        recent_activity=[TaskRead.model_validate(t) for t in summary.recent_activity],
    )


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> FastAPI:
    """
    Build the FastAPI app.

    Missing collaborators are created from tasktrack.yaml: the database is
    initialised from ``settings.database`` and the dispatcher hands off to
    the Celery worker.
    """
    settings = settings or get_settings()
    if session_factory is None:
        from tasktrack.db.session import init_db
        session_factory = init_db(settings.database)
    if dispatcher is None:
        dispatcher = NotificationDispatcher(session_factory)

    app = FastAPI(
        title=settings.api.title,
        description="Task management API — users, tasks, comments, notifications",
        version=__version__,
    )
    app.state.settings = settings
    app.state.auth = AuthService(session_factory)
    app.state.service = TaskService(session_factory, dispatcher, settings)
    app.state.started_at = datetime.now(timezone.utc)

    if settings.api.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.api.cors_origins,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(TaskTrackError)
    async def handle_tasktrack_error(request: Request, exc: TaskTrackError) -> JSONResponse:
        status_code = exc.status_code
        if isinstance(exc, AuthorizationError) and exc.unauthenticated:
            status_code = 401
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    @app.middleware("http")
    async def request_log(request: Request, call_next):
        started = time.monotonic()
        response = await call_next(request)
        duration_ms = round((time.monotonic() - started) * 1000, 2)
        log(log_web_api_request(
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=duration_ms,
            actor_id=getattr(request.state, "actor_id", None),
        ))
        return response

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """Public health check — no auth required."""
        uptime = (datetime.now(timezone.utc) - app.state.started_at).total_seconds()
        return HealthResponse(status="healthy", version=__version__, uptime_seconds=uptime)

    app.include_router(router, prefix=settings.api.prefix)
    return app
