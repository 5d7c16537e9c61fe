"""Per-task progress reporting."""

import logging
import re

from agent_runner.models import LogType

logger = logging.getLogger(__name__)

_SECRET_PATTERNS = [
    # Anthropic / OpenAI style keys
    re.compile(r"sk-(?:ant-)?[A-Za-z0-9_\-]{16,}"),
    # GitHub tokens
    re.compile(r"\b(?:ghp|gho|ghu|ghs|ghr)_[A-Za-z0-9]{20,}"),
    re.compile(r"\bgithub_pat_[A-Za-z0-9_]{20,}"),
    # Bearer tokens
    re.compile(r"(?<=Bearer )[A-Za-z0-9._\-]{12,}"),
]

# Credentials embedded in URLs, e.g. https://<token>:x-oauth-basic@github.com
_URL_CREDENTIALS = re.compile(r"(https?://)([^:@/\s]+)(:[^@/\s]*)?@")

# KEY=value / TOKEN: value / SECRET="value"
_ASSIGNMENT = re.compile(
    r"\b([A-Z0-9_]*(?:KEY|TOKEN|SECRET|PASSWORD)[A-Z0-9_]*)(\s*[=:]\s*)([\"']?)([^\s\"']{8,})\3"
)


def _mask(value: str) -> str:
    if len(value) <= 8:
        return "*" * len(value)
    return f"{value[:4]}{'*' * min(len(value) - 8, 16)}{value[-4:]}"


def redact_sensitive_info(text: str) -> str:
    """Mask API keys and tokens, keeping the first and last four characters."""
    if not text:
        return text

    redacted = _URL_CREDENTIALS.sub(lambda m: f"{m.group(1)}***@", text)
    for pattern in _SECRET_PATTERNS:
        redacted = pattern.sub(lambda m: _mask(m.group(0)), redacted)
    return _ASSIGNMENT.sub(
        lambda m: f"{m.group(1)}{m.group(2)}{m.group(3)}{_mask(m.group(4))}{m.group(3)}",
        redacted,
    )


class TaskLogger:
    """Observer for everything a run reports about itself.

    Log lines are persisted as :class:`TaskLog` rows with secrets redacted;
    progress and status messages are written to the task. Persistence
    failures are logged and swallowed so that reporting never fails a run.
    """

    def __init__(self, task_id: str):
        self.task_id = task_id

    def _append(self, log_type: LogType, message: str) -> None:
        from agent_runner.services.task import TaskService

        safe_message = redact_sensitive_info(message)
        try:
            TaskService.add_log(self.task_id, log_type, safe_message)
        except Exception as e:
            logger.warning(f"Failed to write log for task {self.task_id}: {e}")

    def info(self, message: str) -> None:
        self._append(LogType.INFO, message)

    def command(self, message: str) -> None:
        self._append(LogType.COMMAND, message)

    def error(self, message: str) -> None:
        self._append(LogType.ERROR, message)

    def success(self, message: str) -> None:
        self._append(LogType.SUCCESS, message)

    def update_progress(self, progress: int, message: str) -> None:
        """Record a progress step on the task and in its log."""
        from agent_runner.services.task import TaskService

        try:
            TaskService.update_task(
                self.task_id, progress=progress, status_message=message
            )
        except Exception as e:
            logger.warning(
                f"Failed to update progress for task {self.task_id}: {e}"
            )
        self.info(message)
