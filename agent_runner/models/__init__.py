"""Database models."""

from .connector import Connector
from .task import Task, TaskStatus
from .task_log import LogType, TaskLog
from .task_message import MessageRole, TaskMessage

__all__ = [
    "Connector",
    "LogType",
    "MessageRole",
    "Task",
    "TaskLog",
    "TaskMessage",
    "TaskStatus",
]
