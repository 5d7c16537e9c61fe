"""Conversation messages exchanged within a task."""

from datetime import datetime
from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, String, Text
from sqlmodel import Field, SQLModel

from agent_runner.models.task import generate_id, utcnow


class MessageRole(str, Enum):
    USER = "user"
    AGENT = "agent"


class TaskMessage(SQLModel, table=True):
    """A user prompt or agent response. Append-only."""

    __tablename__ = "task_messages"

    id: str = Field(default_factory=generate_id, primary_key=True)
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), index=True),
    )
    task_id: str = Field(
        sa_column=Column(
            String, ForeignKey("tasks.id", ondelete="CASCADE"), index=True
        ),
    )
    role: str = Field(sa_column=Column(String, nullable=False))
    content: str = Field(sa_column=Column(Text, nullable=False))
