"""HTTP API for users, groups, and group-scoped tasks."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

import anyio
from fastapi import Depends, FastAPI, File, Request, UploadFile, status
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, Field, field_validator

from .application import TaskBoard, build_taskboard
from .config import Settings, load_settings
from .credentials import build_token_dependency
from .errors import TaskboardError, UnauthenticatedError, ValidationError
from .identity import normalise_email
from .models import Group, GroupDetail, GroupUpdate, TaskStatus, TaskView, User, UserSummary

logger = logging.getLogger("taskboard.service")


class UserSummaryResponse(BaseModel):
    id: int
    username: str
    email: str


class GroupResponse(BaseModel):
    id: int
    name: str
    members: List[UserSummaryResponse]
    created_at: datetime


class UserResponse(BaseModel):
    id: int
    username: str
    email: str
    group_id: Optional[int]
    group: Optional[GroupResponse] = None
    created_at: datetime


class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=30)
    email: str = Field(..., max_length=254)
    password: str = Field(..., min_length=6, max_length=256)

    @field_validator("email")
    @classmethod
    def _normalise_email(cls, value: str) -> str:
        try:
            return normalise_email(value)
        except ValidationError as exc:
            raise ValueError(str(exc)) from exc


class LoginRequest(BaseModel):
    email: str = Field(..., max_length=254)
    password: str = Field(..., min_length=6, max_length=256)


class TokenResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    expires_in: int


class GroupCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    member_ids: List[int] = Field(..., min_length=1)


class GroupUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    add_members: Optional[List[int]] = None
    remove_members: Optional[List[int]] = None


class GroupUpdateResponse(BaseModel):
    group_id: int
    deleted: bool
    message: Optional[str] = None
    group: Optional[GroupResponse] = None
    skipped_members: List[int] = Field(default_factory=list)


class MessageResponse(BaseModel):
    message: str


class TaskCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=10_000)
    status: Optional[TaskStatus] = None
    due_date: Optional[datetime] = None
    assigned_to: Optional[int] = None


class TaskUpdateRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=10_000)
    status: Optional[TaskStatus] = None
    due_date: Optional[datetime] = None
    assigned_to: Optional[int] = None


class TaskResponse(BaseModel):
    id: int
    title: str
    description: Optional[str]
    status: TaskStatus
    due_date: Optional[datetime]
    group_id: int
    created_by: Optional[UserSummaryResponse]
    assigned_to: Optional[UserSummaryResponse]
    attachments: List[str]
    created_at: Optional[datetime]


class AttachmentResponse(BaseModel):
    file_path: str
    task: TaskResponse


def _summary_to_response(summary: UserSummary) -> UserSummaryResponse:
    return UserSummaryResponse(id=summary.id, username=summary.username, email=summary.email)


def _group_to_response(group: Group, members: Sequence[UserSummary]) -> GroupResponse:
    return GroupResponse(
        id=group.id,
        name=group.name,
        members=[_summary_to_response(member) for member in members],
        created_at=group.created_at,
    )


def _detail_to_response(detail: GroupDetail) -> GroupResponse:
    return _group_to_response(detail.group, detail.members)


def _task_to_response(view: TaskView) -> TaskResponse:
    task = view.task
    return TaskResponse(
        id=task.id,
        title=task.title,
        description=task.description,
        status=task.status,
        due_date=task.due_date,
        group_id=task.group_id,
        created_by=_summary_to_response(view.creator) if view.creator else None,
        assigned_to=_summary_to_response(view.assignee) if view.assignee else None,
        attachments=list(task.attachments),
        created_at=task.created_at,
    )


def _update_to_response(outcome: GroupUpdate) -> GroupUpdateResponse:
    if outcome.deleted or outcome.group is None:
        return GroupUpdateResponse(
            group_id=outcome.group_id,
            deleted=True,
            message="Group has been deleted as it has no members",
            skipped_members=list(outcome.skipped),
        )
    return GroupUpdateResponse(
        group_id=outcome.group_id,
        deleted=False,
        group=_group_to_response(outcome.group, outcome.members),
        skipped_members=list(outcome.skipped),
    )


def _build_current_user(board: TaskBoard) -> Callable[..., User]:
    token_dependency = build_token_dependency(board.credentials)

    def dependency(user_id: int = Depends(token_dependency)) -> User:
        user = board.identity.find_user(user_id)
        if user is None:
            raise UnauthenticatedError("Token refers to an unknown user")
        return user

    return dependency


def register_api_routes(
    app: FastAPI,
    board: TaskBoard,
    *,
    current_user: Callable[..., User],
    scope_task_reads: bool = True,
) -> None:
    """Expose the JSON API endpoints on the provided FastAPI application."""

    @app.get("/healthz")
    def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    @app.post("/users/register", status_code=status.HTTP_201_CREATED, response_model=UserResponse)
    def register(request: RegisterRequest) -> UserResponse:
        user = board.identity.register(request.username, request.email, request.password)
        return UserResponse(
            id=user.id,
            username=user.username,
            email=user.email,
            group_id=user.group_id,
            created_at=user.created_at,
        )

    @app.post("/users/login", response_model=TokenResponse)
    def login(request: LoginRequest) -> TokenResponse:
        token = board.identity.login(request.email, request.password)
        return TokenResponse(
            token=token,
            expires_in=int(board.credentials.token_ttl.total_seconds()),
        )

    @app.get("/users/available", response_model=List[UserSummaryResponse])
    def available_users(_: User = Depends(current_user)) -> List[UserSummaryResponse]:
        return [_summary_to_response(summary) for summary in board.identity.list_available()]

    @app.get("/users/me", response_model=UserResponse)
    def me(caller: User = Depends(current_user)) -> UserResponse:
        user, detail = board.groups.get_user_with_group(caller.id)
        group = _detail_to_response(detail) if detail is not None else None
        return UserResponse(
            id=user.id,
            username=user.username,
            email=user.email,
            group_id=user.group_id,
            group=group,
            created_at=user.created_at,
        )

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------
    @app.post("/groups", status_code=status.HTTP_201_CREATED, response_model=GroupResponse)
    def create_group(request: GroupCreateRequest, user: User = Depends(current_user)) -> GroupResponse:
        detail = board.groups.create_group_with_members(request.name, request.member_ids)
        logger.info("User %s created group %s", user.id, detail.group.id)
        return _detail_to_response(detail)

    @app.get("/groups", response_model=List[GroupResponse])
    def list_groups(_: User = Depends(current_user)) -> List[GroupResponse]:
        return [
            _group_to_response(group, members)
            for group, members in board.groups.list_groups_with_members()
        ]

    @app.post("/groups/leave", response_model=GroupUpdateResponse)
    def leave_group(user: User = Depends(current_user)) -> GroupUpdateResponse:
        outcome = board.groups.leave_group(user.id)
        response = _update_to_response(outcome)
        response.message = "You have left the group"
        return response

    @app.get("/groups/{group_id}", response_model=GroupResponse)
    def get_group(group_id: int, _: User = Depends(current_user)) -> GroupResponse:
        return _detail_to_response(board.groups.get_group_with_members(group_id))

    @app.get("/groups/{group_id}/members", response_model=List[UserSummaryResponse])
    def get_members(group_id: int, _: User = Depends(current_user)) -> List[UserSummaryResponse]:
        return [_summary_to_response(member) for member in board.groups.get_members(group_id)]

    @app.patch("/groups/{group_id}", response_model=GroupUpdateResponse)
    def update_group(
        group_id: int,
        request: GroupUpdateRequest,
        user: User = Depends(current_user),
    ) -> GroupUpdateResponse:
        outcome = board.groups.update_group(
            group_id,
            name=request.name,
            add_members=request.add_members,
            remove_members=request.remove_members,
        )
        logger.info("User %s updated group %s (deleted=%s)", user.id, group_id, outcome.deleted)
        return _update_to_response(outcome)

    @app.post("/groups/{group_id}/join", response_model=GroupResponse)
    def join_group(group_id: int, user: User = Depends(current_user)) -> GroupResponse:
        return _detail_to_response(board.groups.join_group_with_members(group_id, user.id))

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------
    @app.get("/tasks", response_model=List[TaskResponse])
    def list_tasks(user: User = Depends(current_user)) -> List[TaskResponse]:
        return [_task_to_response(view) for view in board.tasks.list_tasks_for_group(user.id)]

    @app.post("/tasks", status_code=status.HTTP_201_CREATED, response_model=TaskResponse)
    def create_task(request: TaskCreateRequest, user: User = Depends(current_user)) -> TaskResponse:
        task = board.tasks.create_task(
            user.id,
            title=request.title,
            description=request.description,
            status=request.status,
            due_date=request.due_date,
            assigned_to=request.assigned_to,
        )
        return _task_to_response(board.tasks.get_task(task.id))

    @app.get("/tasks/orphaned", response_model=List[TaskResponse])
    def orphaned_tasks(_: User = Depends(current_user)) -> List[TaskResponse]:
        return [
            _task_to_response(TaskView(task=task, creator=None, assignee=None))
            for task in board.tasks.find_orphaned_tasks()
        ]

    @app.get("/tasks/{task_id}", response_model=TaskResponse)
    def get_task(task_id: int, user: User = Depends(current_user)) -> TaskResponse:
        viewer = user.id if scope_task_reads else None
        return _task_to_response(board.tasks.get_task(task_id, viewer_id=viewer))

    @app.put("/tasks/{task_id}", response_model=TaskResponse)
    def update_task(
        task_id: int,
        request: TaskUpdateRequest,
        _: User = Depends(current_user),
    ) -> TaskResponse:
        fields = request.model_dump(exclude_unset=True)
        board.tasks.update_task(task_id, **fields)
        return _task_to_response(board.tasks.get_task(task_id))

    @app.delete("/tasks/{task_id}", response_model=MessageResponse)
    def delete_task(task_id: int, _: User = Depends(current_user)) -> MessageResponse:
        board.tasks.delete_task(task_id)
        return MessageResponse(message="Task deleted successfully")

    @app.post("/tasks/upload/{task_id}", response_model=AttachmentResponse)
    async def upload_attachment(
        task_id: int,
        file: UploadFile = File(...),
        _: User = Depends(current_user),
    ) -> AttachmentResponse:
        await anyio.to_thread.run_sync(board.tasks.get_task, task_id)
        data = await file.read()
        reference = await anyio.to_thread.run_sync(
            board.blobs.store, file.filename or "attachment", data
        )
        try:
            await anyio.to_thread.run_sync(board.tasks.add_attachment, task_id, reference)
        except Exception:
            await anyio.to_thread.run_sync(board.blobs.discard, reference)
            raise
        view = await anyio.to_thread.run_sync(board.tasks.get_task, task_id)
        return AttachmentResponse(file_path=reference, task=_task_to_response(view))


def create_app(
    *,
    settings: Settings | None = None,
    board: TaskBoard | None = None,
) -> FastAPI:
    """Instantiate the FastAPI application for the task board."""

    app_settings = settings or load_settings()
    app_board = board or build_taskboard(app_settings)
    app_board.blobs.ensure_directory()

    app = FastAPI(
        title="Taskboard API",
        version="0.1.0",
        description="Group-scoped task tracking with membership-consistent groups.",
    )
    app.state.settings = app_settings
    app.state.board = app_board

    @app.exception_handler(TaskboardError)
    async def handle_taskboard_error(_: Request, exc: TaskboardError) -> JSONResponse:
        headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, UnauthenticatedError) else None
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

    register_api_routes(
        app,
        app_board,
        current_user=_build_current_user(app_board),
        scope_task_reads=app_settings.scope_task_reads,
    )
    app.mount(
        app_board.blobs.url_prefix,
        StaticFiles(directory=str(app_board.blobs.directory), check_dir=False),
        name="uploads",
    )
    return app


__all__ = ["create_app", "register_api_routes"]
