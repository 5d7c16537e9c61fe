"""Task model and lifecycle status."""

import secrets
import string
from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import Column, DateTime, String, Text
from sqlmodel import Field, SQLModel

from agent_runner.core.config import settings

_ID_ALPHABET = string.ascii_letters + string.digits


def generate_id(length: int = 12) -> str:
    """Generate an opaque, URL-safe identifier."""
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


def utcnow() -> datetime:
    return datetime.now(UTC)


class TaskStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"
    STOPPED = "stopped"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.ERROR, TaskStatus.STOPPED}
)

# A stopped run that is already past its last checkpoint still settles.
ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset(
        {TaskStatus.PROCESSING, TaskStatus.STOPPED, TaskStatus.ERROR}
    ),
    TaskStatus.PROCESSING: frozenset(
        {TaskStatus.COMPLETED, TaskStatus.ERROR, TaskStatus.STOPPED}
    ),
    TaskStatus.COMPLETED: frozenset({TaskStatus.PROCESSING}),
    TaskStatus.ERROR: frozenset({TaskStatus.PROCESSING}),
    TaskStatus.STOPPED: frozenset({TaskStatus.COMPLETED, TaskStatus.ERROR}),
}


def can_transition(current: TaskStatus, new: TaskStatus) -> bool:
    return current == new or new in ALLOWED_TRANSITIONS[current]


class Task(SQLModel, table=True):
    """A user request executed by a coding agent in a sandbox."""

    __tablename__ = "tasks"

    # Primary key and timestamps
    id: str = Field(
        default_factory=generate_id,
        primary_key=True,
        description="Opaque task identifier",
    )
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), index=True),
        description="Timestamp when the task was created",
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True)),
        description="Timestamp when the task was last updated",
    )
    completed_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
        description="Timestamp when the task last reached a terminal status",
    )
    deleted_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
        description="Soft delete marker",
    )

    # Request
    user_id: str = Field(index=True, description="Owner of the task")
    prompt: str = Field(
        sa_column=Column(Text, nullable=False),
        description="Natural language description of the change",
    )
    title: str | None = Field(default=None, description="Short display title")
    repo_url: str = Field(description="GitHub repository URL to clone")
    selected_agent: str = Field(default="claude", description="Agent CLI to run")
    selected_model: str | None = Field(
        default=None, description="Model override passed to the agent"
    )
    install_dependencies: bool = Field(
        default=False, description="Install project dependencies in the sandbox"
    )
    max_duration: int = Field(
        default_factory=lambda: settings.max_sandbox_duration,
        description="Maximum run duration in minutes",
    )
    keep_alive: bool = Field(
        default=False, description="Keep the sandbox running after the run"
    )

    # Lifecycle
    status: str = Field(
        default=TaskStatus.PENDING.value,
        sa_column=Column(String, index=True, nullable=False),
        description="pending, processing, completed, error or stopped",
    )
    progress: int = Field(default=0, description="Progress percentage 0-100")
    status_message: str | None = Field(
        default=None, description="Human readable description of the current step"
    )
    error: str | None = Field(
        default=None,
        sa_column=Column(Text, nullable=True),
        description="Failure description for error and stopped tasks",
    )

    # Execution environment
    branch_name: str | None = Field(default=None, description="Target git branch")
    sandbox_id: str | None = Field(default=None, description="Live sandbox ID")
    sandbox_url: str | None = Field(
        default=None, description="Public URL of the sandbox dev server"
    )
    preview_url: str | None = Field(default=None, description="Preview deployment")
    agent_session_id: str | None = Field(
        default=None, description="Agent session ID used to resume conversations"
    )

    # Pull request
    pr_url: str | None = Field(default=None, description="Pull request for the branch")
    pr_number: int | None = Field(default=None, description="Pull request number")
