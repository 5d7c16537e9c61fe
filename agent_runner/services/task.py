"""Task service for business logic."""

import logging
from datetime import UTC, datetime

from sqlalchemy import func, update
from sqlmodel import select

from agent_runner.core.config import settings
from agent_runner.core.database import get_session
from agent_runner.core.errors import (
    InvalidStatusTransitionError,
    NotFoundError,
    ValidationError,
)
from agent_runner.models import (
    LogType,
    MessageRole,
    Task,
    TaskLog,
    TaskMessage,
    TaskStatus,
)
from agent_runner.models.task import can_transition
from agent_runner.services.agents import SUPPORTED_AGENTS
from agent_runner.services.git import GitService
from agent_runner.services.rate_limit import RateLimitService
from agent_runner.services.sandbox import SandboxService
from agent_runner.services.text_generation import fallback_title

logger = logging.getLogger(__name__)

# Fields that update_task and update_task_status may write.
UPDATABLE_FIELDS = frozenset(
    {
        "title",
        "progress",
        "status_message",
        "error",
        "branch_name",
        "sandbox_id",
        "sandbox_url",
        "preview_url",
        "agent_session_id",
        "pr_url",
        "pr_number",
    }
)


def _parse_status(status: str | TaskStatus) -> TaskStatus:
    try:
        return TaskStatus(status)
    except ValueError as e:
        raise ValidationError(f"Invalid task status: {status}") from e


class TaskService:
    """Service for task-related business logic."""

    @staticmethod
    def create_task(
        user_id: str,
        prompt: str,
        repo_url: str,
        selected_agent: str = "claude",
        selected_model: str | None = None,
        install_dependencies: bool = False,
        max_duration: int | None = None,
        keep_alive: bool = False,
        task_id: str | None = None,
    ) -> Task:
        """Create a new task and queue it for execution.

        Raises:
            ValidationError: If the request is malformed
            RateLimitExceededError: If the user has no messages left today
        """
        prompt = (prompt or "").strip()
        if not prompt:
            raise ValidationError("Prompt is required")
        if not repo_url:
            raise ValidationError("Repository URL is required")
        try:
            repo_url = GitService.parse_github_url(repo_url)[0]
        except ValueError as e:
            raise ValidationError(str(e)) from e
        if selected_agent not in SUPPORTED_AGENTS:
            raise ValidationError(f"Unsupported agent: {selected_agent}")

        if max_duration is None:
            max_duration = settings.max_sandbox_duration
        if not 1 <= max_duration <= settings.max_sandbox_duration:
            raise ValidationError(
                f"max_duration must be between 1 and {settings.max_sandbox_duration} minutes"
            )

        RateLimitService.enforce(user_id)

        with get_session() as session:
            task = Task(
                user_id=user_id,
                prompt=prompt,
                repo_url=repo_url,
                selected_agent=selected_agent,
                selected_model=selected_model,
                install_dependencies=install_dependencies,
                max_duration=max_duration,
                keep_alive=keep_alive,
                status=TaskStatus.PENDING.value,
            )
            if task_id:
                task.id = task_id
            session.add(task)
            session.add(
                TaskMessage(
                    task_id=task.id, role=MessageRole.USER.value, content=prompt
                )
            )
            session.commit()
            session.refresh(task)

        logger.info(f"Created task {task.id} for user {user_id} ({selected_agent})")

        # Queue jobs after commit so workers can see the row
        from agent_runner.tasks import (
            generate_branch_name_job,
            generate_title_job,
            run_task_job,
        )

        generate_branch_name_job.delay(task.id)
        generate_title_job.delay(task.id)
        run_task_job.delay(task.id)

        return task

    @staticmethod
    def continue_task(task_id: str, user_id: str, message: str) -> TaskMessage:
        """Add a follow-up message to a finished task and queue it to run again.

        Raises:
            ValidationError: If the message is empty, the task has no branch or
                is not in a state that can be continued
            NotFoundError: If the task does not exist for this user
            RateLimitExceededError: If the user has no messages left today
        """
        message = (message or "").strip()
        if not message:
            raise ValidationError("Message is required")

        task = TaskService.get_task_by_id(task_id, user_id=user_id)
        if not task.branch_name:
            raise ValidationError("Task does not have a branch to continue from")

        status = TaskStatus(task.status)
        if status not in (TaskStatus.COMPLETED, TaskStatus.ERROR):
            raise ValidationError(f"Task cannot be continued while {status.value}")

        RateLimitService.enforce(user_id)

        task_message = TaskService.add_message(task_id, MessageRole.USER, message)
        TaskService.update_task_status(
            task_id,
            TaskStatus.PROCESSING,
            progress=0,
            status_message="Queued follow-up",
            error=None,
        )

        from agent_runner.tasks import continue_task_job

        continue_task_job.delay(task_id, message, task_message.id)

        return task_message

    @staticmethod
    def get_task_by_id(
        task_id: str, user_id: str | None = None, include_deleted: bool = False
    ) -> Task:
        """Get task by ID, optionally scoped to its owner."""
        with get_session() as session:
            statement = select(Task).where(Task.id == task_id)
            if user_id is not None:
                statement = statement.where(Task.user_id == user_id)
            if not include_deleted:
                statement = statement.where(Task.deleted_at.is_(None))
            task = session.execute(statement).scalar_one_or_none()

            if task is None:
                raise NotFoundError(f"Task with id {task_id} not found")

            return task

    @staticmethod
    def list_tasks(
        user_id: str, limit: int = 100, offset: int = 0
    ) -> tuple[list[Task], int]:
        """List a user's tasks, newest first."""
        with get_session() as session:
            filters = (Task.user_id == user_id, Task.deleted_at.is_(None))

            count_statement = select(func.count()).select_from(Task).where(*filters)
            total = session.execute(count_statement).scalar()

            statement = (
                select(Task)
                .where(*filters)
                .order_by(Task.created_at.desc())
                .offset(offset)
                .limit(limit)
            )
            tasks = session.execute(statement).scalars().all()

            return list(tasks), total

    @staticmethod
    def update_task(task_id: str, **fields) -> Task:
        """Write non-status fields of a task."""
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update task fields: {sorted(unknown)}")

        with get_session() as session:
            task = session.execute(
                select(Task).where(Task.id == task_id)
            ).scalar_one_or_none()
            if task is None:
                raise NotFoundError(f"Task with id {task_id} not found")

            for name, value in fields.items():
                setattr(task, name, value)
            task.updated_at = datetime.now(UTC)

            session.add(task)
            session.commit()
            session.refresh(task)
            return task

    @staticmethod
    def update_task_status(
        task_id: str, status: str | TaskStatus, **fields
    ) -> Task:
        """Move a task to ``status`` and write any extra fields alongside.

        Terminal statuses stamp ``completed_at``; re-entering ``processing``
        clears it.

        Raises:
            ValidationError: If ``status`` is not a task status
            InvalidStatusTransitionError: If the move is not allowed
        """
        new_status = _parse_status(status)
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update task fields: {sorted(unknown)}")

        with get_session() as session:
            task = session.execute(
                select(Task).where(Task.id == task_id)
            ).scalar_one_or_none()
            if task is None:
                raise NotFoundError(f"Task with id {task_id} not found")

            current = TaskStatus(task.status)
            if not can_transition(current, new_status):
                raise InvalidStatusTransitionError(
                    f"Cannot move task {task_id} from {current.value} to {new_status.value}"
                )

            now = datetime.now(UTC)
            task.status = new_status.value
            if new_status.is_terminal:
                task.completed_at = now
            elif new_status == TaskStatus.PROCESSING:
                task.completed_at = None
            for name, value in fields.items():
                setattr(task, name, value)
            task.updated_at = now

            session.add(task)
            session.commit()
            session.refresh(task)
            return task

    @staticmethod
    def start_task(task_id: str, **fields) -> Task | None:
        """Move a pending task to processing.

        The status check and the write are one conditional UPDATE, so a task
        is started at most once even when its run job is delivered twice.

        Returns:
            The started task, or None if it is missing or no longer pending
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update task fields: {sorted(unknown)}")

        with get_session() as session:
            result = session.execute(
                update(Task)
                .where(
                    Task.id == task_id,
                    Task.status == TaskStatus.PENDING.value,
                    Task.deleted_at.is_(None),
                )
                .values(
                    status=TaskStatus.PROCESSING.value,
                    updated_at=datetime.now(UTC),
                    **fields,
                )
            )
            session.commit()
            if result.rowcount == 0:
                return None

        return TaskService.get_task_by_id(task_id)

    @staticmethod
    def get_status(task_id: str) -> TaskStatus | None:
        """Read only the persisted status, or None if the task is gone."""
        with get_session() as session:
            value = session.execute(
                select(Task.status).where(Task.id == task_id)
            ).scalar_one_or_none()
        return TaskStatus(value) if value is not None else None

    @staticmethod
    def claim_branch_name(task_id: str, branch_name: str) -> str:
        """Set the branch name only if none is stored yet.

        Returns:
            The branch name that is persisted after the call, which is the
            earlier value when another writer got there first.
        """
        with get_session() as session:
            session.execute(
                update(Task)
                .where(Task.id == task_id, Task.branch_name.is_(None))
                .values(branch_name=branch_name, updated_at=datetime.now(UTC))
            )
            session.commit()
            stored = session.execute(
                select(Task.branch_name).where(Task.id == task_id)
            ).scalar_one_or_none()

        if stored is None:
            raise NotFoundError(f"Task with id {task_id} not found")
        if stored != branch_name:
            logger.info(
                f"Task {task_id} already has branch {stored}, ignoring {branch_name}"
            )
        return stored

    @staticmethod
    def stop_task(task_id: str, user_id: str) -> Task:
        """Request cancellation. The running job observes it at its next checkpoint."""
        task = TaskService.get_task_by_id(task_id, user_id=user_id)
        if TaskStatus(task.status) != TaskStatus.PROCESSING:
            raise ValidationError("Can only stop tasks that are currently processing")

        task = TaskService.update_task_status(
            task_id,
            TaskStatus.STOPPED,
            error="Task was stopped by user",
            status_message="Task was stopped by user",
        )
        TaskService.add_log(task_id, LogType.ERROR, "Task was stopped by user")
        return task

    @staticmethod
    def create_pull_request(
        task_id: str,
        user_id: str,
        title: str | None = None,
        body: str | None = None,
        base_branch: str = "main",
    ) -> tuple[Task, bool]:
        """Open a pull request from the task branch, once.

        Returns:
            tuple[Task, bool]: (task, already_existed)

        Raises:
            ValidationError: If the task has no branch
            NotFoundError: If the task does not exist for this user
            GitError: If GitHub rejects the pull request
        """
        task = TaskService.get_task_by_id(task_id, user_id=user_id)
        if not task.branch_name:
            raise ValidationError("Task does not have a branch to open a pull request from")
        if task.pr_url:
            return task, True

        title = (title or "").strip() or task.title or fallback_title(task.prompt)
        if body is None:
            body = f"{task.prompt}\n\nChanges made by the {task.selected_agent} agent."

        try:
            pr_url, pr_number = GitService.create_pull_request(
                task.repo_url,
                head=task.branch_name,
                title=title,
                body=body,
                base=base_branch,
                github_token=settings.github_token,
            )
        except ValueError as e:
            raise ValidationError(str(e)) from e

        task = TaskService.update_task(task_id, pr_url=pr_url, pr_number=pr_number)
        return task, False

    @staticmethod
    def release_sandbox(task_id: str, user_id: str) -> Task:
        """Shut down the task's sandbox and forget it.

        A sandbox that already expired counts as released.

        Raises:
            ValidationError: If the task has no sandbox or is still processing
            NotFoundError: If the task does not exist for this user
        """
        task = TaskService.get_task_by_id(task_id, user_id=user_id)
        if not task.sandbox_id:
            raise ValidationError("Sandbox is not active")
        if TaskStatus(task.status) == TaskStatus.PROCESSING:
            raise ValidationError("Cannot release the sandbox while the task is processing")

        try:
            sandbox = SandboxService.connect_sandbox(task.sandbox_id)
        except Exception as e:
            logger.info(f"Sandbox {task.sandbox_id} of task {task_id} is already gone: {e}")
        else:
            SandboxService.shutdown(sandbox)

        return TaskService.update_task(task_id, sandbox_id=None, sandbox_url=None)

    @staticmethod
    def delete_task(task_id: str, user_id: str) -> None:
        """Soft delete a task."""
        task = TaskService.get_task_by_id(task_id, user_id=user_id)
        with get_session() as session:
            session.execute(
                update(Task)
                .where(Task.id == task.id)
                .values(deleted_at=datetime.now(UTC))
            )
        logger.info(f"Deleted task {task_id}")

    @staticmethod
    def add_message(
        task_id: str, role: str | MessageRole, content: str
    ) -> TaskMessage:
        with get_session() as session:
            message = TaskMessage(
                task_id=task_id, role=MessageRole(role).value, content=content
            )
            session.add(message)
            session.commit()
            session.refresh(message)
            return message

    @staticmethod
    def list_messages(task_id: str) -> list[TaskMessage]:
        """All messages of a task in the order they were written."""
        with get_session() as session:
            statement = (
                select(TaskMessage)
                .where(TaskMessage.task_id == task_id)
                .order_by(TaskMessage.created_at.asc())
            )
            return list(session.execute(statement).scalars().all())

    @staticmethod
    def add_log(task_id: str, log_type: str | LogType, message: str) -> TaskLog:
        with get_session() as session:
            entry = TaskLog(task_id=task_id, type=LogType(log_type).value, message=message)
            session.add(entry)
            session.commit()
            session.refresh(entry)
            return entry

    @staticmethod
    def get_task_logs(
        task_id: str, limit: int = 100, offset: int = 0
    ) -> tuple[list[TaskLog], int]:
        """Get log entries for a task with pagination, oldest first."""
        with get_session() as session:
            count_statement = (
                select(func.count())
                .select_from(TaskLog)
                .where(TaskLog.task_id == task_id)
            )
            total = session.execute(count_statement).scalar()

            statement = (
                select(TaskLog)
                .where(TaskLog.task_id == task_id)
                .order_by(TaskLog.created_at.asc())
                .offset(offset)
                .limit(limit)
            )
            logs = session.execute(statement).scalars().all()

            return list(logs), total
