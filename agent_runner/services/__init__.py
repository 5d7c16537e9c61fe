"""Business logic services."""

from .connector import ConnectorService
from .git import GitService
from .rate_limit import RateLimitService
from .sandbox import SandboxService
from .task import TaskService

__all__ = [
    "ConnectorService",
    "GitService",
    "RateLimitService",
    "SandboxService",
    "TaskService",
]
