"""Task API endpoints."""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field

from agent_runner.core.auth import get_user_id, verify_api_key
from agent_runner.core.errors import NotFoundError, RateLimitExceededError, ValidationError
from agent_runner.services import TaskService
from agent_runner.services.git import GitError

router = APIRouter(dependencies=[Depends(verify_api_key)])


class TaskCreate(BaseModel):
    """Request model for creating a task."""

    prompt: str
    repo_url: str
    selected_agent: str = "claude"
    selected_model: str | None = None
    install_dependencies: bool = False
    max_duration: int | None = Field(default=None, description="Minutes")
    keep_alive: bool = False
    id: str | None = Field(default=None, description="Optional client-chosen task ID")


class TaskContinue(BaseModel):
    message: str


class TaskResponse(BaseModel):
    """Response model for task data."""

    model_config = {"from_attributes": True}

    id: str
    prompt: str
    title: str | None
    repo_url: str
    selected_agent: str
    selected_model: str | None
    install_dependencies: bool
    max_duration: int
    keep_alive: bool
    status: str
    progress: int
    status_message: str | None
    error: str | None
    branch_name: str | None
    sandbox_id: str | None
    sandbox_url: str | None
    preview_url: str | None
    agent_session_id: str | None
    pr_url: str | None
    pr_number: int | None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None


class PullRequestCreate(BaseModel):
    """Request model for opening a pull request from the task branch."""

    title: str | None = Field(default=None, description="Defaults to the task title")
    body: str | None = None
    base_branch: str = "main"


class PullRequestResponse(BaseModel):
    pr_url: str
    pr_number: int
    already_exists: bool


class TaskListResponse(BaseModel):
    tasks: list[TaskResponse]
    total: int
    limit: int
    offset: int


class MessageResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: str
    task_id: str
    role: str
    content: str
    created_at: datetime


class TaskLogResponse(BaseModel):
    model_config = {"from_attributes": True}

    type: str
    message: str
    created_at: datetime


class TaskLogListResponse(BaseModel):
    logs: list[TaskLogResponse]
    total: int
    limit: int
    offset: int


def _rate_limited(e: RateLimitExceededError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail={
            "error": "Rate limit exceeded",
            "message": str(e),
            "remaining": e.remaining,
            "total": e.total,
            "reset_at": e.reset_at.isoformat(),
        },
    )


def _not_found(e: NotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


def _bad_request(e: ValidationError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.post("/tasks", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
def create_task(task_data: TaskCreate, user_id: str = Depends(get_user_id)):
    """Create a task and start running it in the background."""
    try:
        task = TaskService.create_task(
            user_id=user_id,
            prompt=task_data.prompt,
            repo_url=task_data.repo_url,
            selected_agent=task_data.selected_agent,
            selected_model=task_data.selected_model,
            install_dependencies=task_data.install_dependencies,
            max_duration=task_data.max_duration,
            keep_alive=task_data.keep_alive,
            task_id=task_data.id,
        )
    except ValidationError as e:
        raise _bad_request(e) from e
    except RateLimitExceededError as e:
        raise _rate_limited(e) from e

    return TaskResponse.model_validate(task)


@router.get("/tasks", response_model=TaskListResponse)
def list_tasks(limit: int = 100, offset: int = 0, user_id: str = Depends(get_user_id)):
    """List the caller's tasks, newest first."""
    tasks, total = TaskService.list_tasks(user_id, limit=limit, offset=offset)
    return TaskListResponse(
        tasks=[TaskResponse.model_validate(task) for task in tasks],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/tasks/{task_id}", response_model=TaskResponse)
def get_task(task_id: str, user_id: str = Depends(get_user_id)):
    try:
        task = TaskService.get_task_by_id(task_id, user_id=user_id)
    except NotFoundError as e:
        raise _not_found(e) from e
    return TaskResponse.model_validate(task)


@router.post(
    "/tasks/{task_id}/continue",
    response_model=MessageResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def continue_task(
    task_id: str, body: TaskContinue, user_id: str = Depends(get_user_id)
):
    """Send a follow-up message to a completed or failed task."""
    try:
        message = TaskService.continue_task(task_id, user_id, body.message)
    except NotFoundError as e:
        raise _not_found(e) from e
    except ValidationError as e:
        raise _bad_request(e) from e
    except RateLimitExceededError as e:
        raise _rate_limited(e) from e
    return MessageResponse.model_validate(message)


@router.post("/tasks/{task_id}/stop", response_model=TaskResponse)
def stop_task(task_id: str, user_id: str = Depends(get_user_id)):
    """Stop a running task before its agent starts."""
    try:
        task = TaskService.stop_task(task_id, user_id)
    except NotFoundError as e:
        raise _not_found(e) from e
    except ValidationError as e:
        raise _bad_request(e) from e
    return TaskResponse.model_validate(task)


@router.post("/tasks/{task_id}/pr", response_model=PullRequestResponse)
def create_pull_request(
    task_id: str, body: PullRequestCreate, user_id: str = Depends(get_user_id)
):
    """Open a pull request from the task branch. Repeat calls return the same PR."""
    try:
        task, already_exists = TaskService.create_pull_request(
            task_id,
            user_id,
            title=body.title,
            body=body.body,
            base_branch=body.base_branch,
        )
    except NotFoundError as e:
        raise _not_found(e) from e
    except ValidationError as e:
        raise _bad_request(e) from e
    except GitError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e)) from e

    return PullRequestResponse(
        pr_url=task.pr_url, pr_number=task.pr_number, already_exists=already_exists
    )


@router.post("/tasks/{task_id}/stop-sandbox", response_model=TaskResponse)
def stop_sandbox(task_id: str, user_id: str = Depends(get_user_id)):
    """Shut down a kept-alive sandbox. Follow-ups then start a fresh one."""
    try:
        task = TaskService.release_sandbox(task_id, user_id)
    except NotFoundError as e:
        raise _not_found(e) from e
    except ValidationError as e:
        raise _bad_request(e) from e
    return TaskResponse.model_validate(task)


@router.delete("/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_task(task_id: str, user_id: str = Depends(get_user_id)):
    try:
        TaskService.delete_task(task_id, user_id)
    except NotFoundError as e:
        raise _not_found(e) from e
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/tasks/{task_id}/messages", response_model=list[MessageResponse])
def list_messages(task_id: str, user_id: str = Depends(get_user_id)):
    try:
        TaskService.get_task_by_id(task_id, user_id=user_id)
    except NotFoundError as e:
        raise _not_found(e) from e
    return [MessageResponse.model_validate(m) for m in TaskService.list_messages(task_id)]


@router.get("/tasks/{task_id}/logs", response_model=TaskLogListResponse)
def get_task_logs(
    task_id: str,
    limit: int = 100,
    offset: int = 0,
    user_id: str = Depends(get_user_id),
):
    """Get execution logs for a task with pagination."""
    try:
        TaskService.get_task_by_id(task_id, user_id=user_id)
    except NotFoundError as e:
        raise _not_found(e) from e

    logs, total = TaskService.get_task_logs(task_id, limit=limit, offset=offset)
    return TaskLogListResponse(
        logs=[TaskLogResponse.model_validate(log) for log in logs],
        total=total,
        limit=limit,
        offset=offset,
    )
