"""Task log model for storing user-visible execution logs."""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import Column, DateTime, ForeignKey, String, Text
from sqlmodel import Field, SQLModel

from agent_runner.models.task import utcnow


class LogType(str, Enum):
    INFO = "info"
    COMMAND = "command"
    ERROR = "error"
    SUCCESS = "success"


class TaskLog(SQLModel, table=True):
    """Log entry for task execution."""

    __tablename__ = "task_logs"

    id: UUID = Field(
        default_factory=uuid4,
        primary_key=True,
        description="Unique identifier for the log entry",
    )
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True)),
        description="Timestamp when the log entry was created",
    )

    task_id: str = Field(
        sa_column=Column(
            String, ForeignKey("tasks.id", ondelete="CASCADE"), index=True
        ),
        description="ID of the task this log belongs to",
    )

    type: str = Field(
        sa_column=Column(String, nullable=False),
        description="Entry type: info, command, error or success",
    )
    message: str = Field(
        sa_column=Column(Text, nullable=False),
        description="Log line with secrets redacted",
    )
