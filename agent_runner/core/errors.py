"""Core exception classes for the application."""

from datetime import datetime


class NotFoundError(Exception):
    """Raised when a resource is not found."""


class ValidationError(Exception):
    """Raised when validation fails."""


class InvalidStatusTransitionError(ValidationError):
    """Raised when a task status write is not allowed from the current status."""


class RateLimitExceededError(Exception):
    """Raised when a user has used up their daily message allowance."""

    def __init__(self, remaining: int, total: int, reset_at: datetime):
        self.remaining = remaining
        self.total = total
        self.reset_at = reset_at
        super().__init__(
            f"You have reached the daily limit of {total} messages "
            f"(tasks + follow-ups). Your limit will reset at {reset_at.isoformat()}"
        )


class TaskRunError(Exception):
    """Base class for failures raised while a task run is in progress."""


class ProvisioningError(TaskRunError):
    """Raised when a sandbox could not be prepared for the task."""


class AgentExecutionError(TaskRunError):
    """Raised when the coding agent fails inside the sandbox."""


class PublishError(TaskRunError):
    """Raised when the agent's changes could not be pushed."""


class TaskTimeoutError(TaskRunError):
    """Raised when a run exceeds its maximum duration."""

    def __init__(self, minutes: int):
        self.minutes = minutes
        super().__init__(f"Task execution timed out after {minutes} minutes")
