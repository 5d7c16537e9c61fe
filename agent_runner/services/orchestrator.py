"""Task lifecycle orchestration.

A run moves a task from ``pending`` through ``processing`` to exactly one
terminal status. Follow-ups are queued with the task already back in
``processing``. The terminal statuses are:

* ``completed`` when the agent succeeded and its changes were pushed,
* ``error`` on any provisioning, agent, publish or unexpected failure and
  when the run exceeds the task's ``max_duration``,
* ``stopped`` when a stop request is seen at a checkpoint. The stop request
  already wrote the status, so the run only winds down.

Stop requests are only honoured before the agent starts. After any outcome
the sandbox is released unless the task is kept alive.
"""

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError

from e2b_code_interpreter import Sandbox

from agent_runner.core.config import settings
from agent_runner.core.errors import (
    AgentExecutionError,
    NotFoundError,
    ProvisioningError,
    PublishError,
    TaskTimeoutError,
)
from agent_runner.models import MessageRole, Task, TaskMessage, TaskStatus
from agent_runner.services.agents import AgentExecutor, AgentRequest
from agent_runner.services.connector import ConnectorService
from agent_runner.services.git import GitService
from agent_runner.services.port_detection import detect_port_from_repo
from agent_runner.services.prompt import build_follow_up_prompt, sanitize_prompt
from agent_runner.services.provisioning import (
    ProvisioningRequest,
    ProvisioningResult,
    SandboxProvisioner,
)
from agent_runner.services.sandbox import SandboxService
from agent_runner.services.sandbox_registry import SandboxRegistry
from agent_runner.services.task import TaskService
from agent_runner.services.task_logger import TaskLogger, redact_sensitive_info
from agent_runner.services.text_generation import (
    fallback_branch_name,
    resolve_commit_message,
)

logger = logging.getLogger(__name__)

TIMEOUT_WARNING_LEAD_SECONDS = 60


class RunContext:
    """State shared between a run's worker thread and its supervisor.

    The first terminal outcome wins: once the run has settled (or the
    watchdog abandoned it) later outcomes are dropped.
    """

    def __init__(self, task_id: str):
        self.task_id = task_id
        self._lock = threading.Lock()
        self._settled = False
        self._abandoned = False

    @property
    def abandoned(self) -> bool:
        return self._abandoned

    def stop_requested(self) -> bool:
        """True when the run should wind down without writing a result."""
        if self._abandoned:
            return True
        try:
            return TaskService.get_status(self.task_id) == TaskStatus.STOPPED
        except Exception as e:
            logger.warning(f"Could not read status of task {self.task_id}: {e}")
            return False

    def settle(self) -> bool:
        """Claim the right to write the terminal outcome."""
        with self._lock:
            if self._settled:
                return False
            self._settled = True
            return True

    def abandon(self) -> bool:
        """Claim the outcome for the watchdog. False if the run settled first."""
        with self._lock:
            if self._settled:
                return False
            self._settled = True
            self._abandoned = True
            return True


class Watchdog:
    """Runs a callable against a deadline, with a warning shortly before it."""

    def __init__(
        self,
        seconds: float,
        on_warning: Callable[[], None] | None = None,
        warning_lead: float = TIMEOUT_WARNING_LEAD_SECONDS,
    ):
        self.seconds = seconds
        self.on_warning = on_warning
        self.warning_lead = warning_lead

    def run(self, fn: Callable, *args):
        """Return ``fn(*args)``, or raise ``FuturesTimeoutError`` at the deadline.

        The callable keeps running on its worker thread after a timeout.
        """
        warning = None
        if self.on_warning is not None:
            warning = threading.Timer(
                max(self.seconds - self.warning_lead, 0), self.on_warning
            )
            warning.daemon = True
            warning.start()

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="task-run")
        try:
            future = executor.submit(fn, *args)
            return future.result(timeout=self.seconds)
        finally:
            if warning is not None:
                warning.cancel()
            executor.shutdown(wait=False)


class TaskOrchestrator:
    """Drives task runs. One instance per worker process."""

    def __init__(
        self,
        registry: SandboxRegistry,
        provisioner: SandboxProvisioner | None = None,
        executor: AgentExecutor | None = None,
        publisher=GitService,
        branch_wait_seconds: float | None = None,
        poll_interval: float | None = None,
    ):
        self.registry = registry
        self.provisioner = provisioner or SandboxProvisioner(registry)
        self.executor = executor or AgentExecutor()
        self.publisher = publisher
        self.branch_wait_seconds = (
            settings.branch_name_wait_seconds
            if branch_wait_seconds is None
            else branch_wait_seconds
        )
        self.poll_interval = (
            settings.branch_name_poll_interval if poll_interval is None else poll_interval
        )

    # Entry points

    def run_task(self, task_id: str) -> None:
        """Execute a new task. Never raises."""
        try:
            task = TaskService.start_task(
                task_id, progress=10, status_message="Initializing task execution..."
            )
        except NotFoundError as e:
            logger.warning(f"Not running task {task_id}: {e}")
            return
        if task is None:
            # Redelivered job, or the task was stopped or deleted first
            logger.warning(f"Not running task {task_id}: it is missing or not pending")
            return

        task_logger = TaskLogger(task_id)
        task_logger.info("Initializing task execution...")
        self._supervise(task, task_logger, self._run_fresh)

    def continue_task(
        self, task_id: str, message: str, message_id: str | None = None
    ) -> None:
        """Execute a follow-up on an existing task branch. Never raises."""
        try:
            task = TaskService.get_task_by_id(task_id)
        except NotFoundError as e:
            logger.warning(f"Not continuing task {task_id}: {e}")
            return
        # Queuing the follow-up moved the task to processing
        if TaskStatus(task.status) != TaskStatus.PROCESSING:
            logger.warning(f"Not continuing task {task_id}: it is {task.status}")
            return

        task_logger = TaskLogger(task_id)
        task_logger.info("Processing follow-up message...")
        self._supervise(task, task_logger, self._run_continue, message, message_id)

    # Supervision

    def _deadline_seconds(self, task: Task) -> float:
        return task.max_duration * 60

    def _supervise(self, task: Task, task_logger: TaskLogger, body, *args) -> None:
        context = RunContext(task.id)
        watchdog = Watchdog(
            self._deadline_seconds(task),
            on_warning=lambda: task_logger.info(
                "Task is approaching timeout, will complete soon"
            ),
        )
        try:
            watchdog.run(body, task, context, task_logger, *args)
        except FuturesTimeoutError:
            if context.abandon():
                error = str(TaskTimeoutError(task.max_duration))
                logger.warning(f"Task {task.id}: {error}")
                task_logger.error(error)
                self._write_status(
                    task.id, TaskStatus.ERROR, error=error, status_message=error
                )
                self._release_sandbox(task.id, task.keep_alive)
        except Exception:
            logger.exception(f"Unexpected failure supervising task {task.id}")

    def _write_status(self, task_id: str, status: TaskStatus, **fields) -> None:
        try:
            TaskService.update_task_status(task_id, status, **fields)
        except Exception as e:
            logger.error(f"Failed to set task {task_id} to {status.value}: {e}")

    def _settle(self, context: RunContext, status: TaskStatus, **fields) -> None:
        if context.settle():
            self._write_status(context.task_id, status, **fields)

    def _fail(self, context: RunContext, task_logger: TaskLogger, error: str) -> None:
        if context.abandoned:
            return
        # Command output can echo the authenticated clone URL
        error = redact_sensitive_info(error)
        logger.error(f"Task {context.task_id} failed: {error}")
        task_logger.error(error)
        self._settle(context, TaskStatus.ERROR, error=error, status_message=error)

    def _wind_down(self, context: RunContext, task_logger: TaskLogger) -> None:
        """Stop outcome: the stored status is left as the stop request wrote it."""
        if context.settle():
            task_logger.info("Task was stopped, skipping remaining steps")

    def _release_sandbox(self, task_id: str, keep_alive: bool) -> None:
        """Shut down the task's sandbox unless kept alive. Safe to call twice."""
        if keep_alive:
            return
        sandbox = self.registry.unregister(task_id)
        if sandbox is None:
            return
        try:
            SandboxService.shutdown(sandbox)
        except Exception as e:
            logger.warning(f"Failed to shut down sandbox for task {task_id}: {e}")

    # Run bodies (executed on the watchdog thread)

    def _run_fresh(
        self, task: Task, context: RunContext, task_logger: TaskLogger
    ) -> None:
        try:
            if context.stop_requested():
                return self._wind_down(context, task_logger)

            branch_name = self._resolve_branch_name(task, task_logger)
            if context.stop_requested():
                return self._wind_down(context, task_logger)

            task_logger.update_progress(15, "Creating sandbox environment")
            result = self._provision(task, branch_name, task_logger, context)
            if result.cancelled:
                return self._wind_down(context, task_logger)
            if context.stop_requested():
                return self._wind_down(context, task_logger)

            self._execute_and_publish(
                task,
                context,
                task_logger,
                sandbox=result.sandbox,
                branch_name=result.branch_name,
                prompt=sanitize_prompt(task.prompt),
                is_resumed=False,
                session_id=None,
                commit_agent=task.selected_agent,
            )
        except Exception as e:
            self._fail(context, task_logger, str(e) or type(e).__name__)
        finally:
            self._release_sandbox(task.id, task.keep_alive)

    def _run_continue(
        self,
        task: Task,
        context: RunContext,
        task_logger: TaskLogger,
        message: str,
        message_id: str | None,
    ) -> None:
        try:
            if context.stop_requested():
                return self._wind_down(context, task_logger)

            sandbox = None
            if task.sandbox_id and task.keep_alive:
                sandbox = self._reconnect(task, task_logger)
            is_resumed = sandbox is not None

            if sandbox is None:
                task_logger.update_progress(15, "Creating sandbox environment")
                result = self._provision(task, task.branch_name, task_logger, context)
                if result.cancelled:
                    return self._wind_down(context, task_logger)
                sandbox = result.sandbox
                if context.stop_requested():
                    return self._wind_down(context, task_logger)
            else:
                task_logger.update_progress(40, "Resumed existing sandbox")

            history = self._history_before(task.id, message, message_id)
            self._execute_and_publish(
                task,
                context,
                task_logger,
                sandbox=sandbox,
                branch_name=task.branch_name,
                prompt=build_follow_up_prompt(message, history, is_resumed),
                is_resumed=is_resumed,
                session_id=task.agent_session_id if is_resumed else None,
                commit_agent=f"{task.selected_agent} agent follow-up",
                commit_prompt=message,
            )
        except Exception as e:
            self._fail(context, task_logger, str(e) or type(e).__name__)
        finally:
            self._release_sandbox(task.id, task.keep_alive)

    # Steps

    def _resolve_branch_name(self, task: Task, task_logger: TaskLogger) -> str:
        """Wait briefly for the generated branch name, else claim a fallback.

        Whichever name is stored first is used.
        """
        if task.branch_name:
            return task.branch_name

        # Names are only generated when the AI gateway is configured
        wait_seconds = self.branch_wait_seconds if settings.ai_gateway_api_key else 0
        deadline = time.monotonic() + wait_seconds
        while time.monotonic() < deadline:
            current = TaskService.get_task_by_id(task.id).branch_name
            if current:
                task_logger.info(f"Using generated branch name: {current}")
                return current
            time.sleep(self.poll_interval)

        branch_name = TaskService.claim_branch_name(
            task.id, fallback_branch_name(task.id)
        )
        task_logger.info(f"Using branch name: {branch_name}")
        return branch_name

    def _provision(
        self,
        task: Task,
        branch_name: str | None,
        task_logger: TaskLogger,
        context: RunContext,
    ) -> ProvisioningResult:
        request = ProvisioningRequest(
            task_id=task.id,
            repo_url=task.repo_url,
            agent=task.selected_agent,
            timeout=int(self._deadline_seconds(task)),
            branch_name=branch_name,
            install_dependencies=task.install_dependencies,
            port=detect_port_from_repo(task.repo_url, settings.github_token),
        )
        result = self.provisioner.provision(request, task_logger, context.stop_requested)
        if result.cancelled:
            return result
        if not result.success:
            raise ProvisioningError(result.error or "Failed to create sandbox")

        fields = {"sandbox_id": result.sandbox.sandbox_id, "sandbox_url": result.domain}
        if not branch_name and result.branch_name:
            fields["branch_name"] = TaskService.claim_branch_name(
                task.id, result.branch_name
            )
            result.branch_name = fields["branch_name"]
        TaskService.update_task(task.id, **fields)
        return result

    def _reconnect(self, task: Task, task_logger: TaskLogger) -> Sandbox | None:
        sandbox = self.registry.lookup(task.id)
        if sandbox is not None:
            if SandboxService.is_alive(sandbox):
                task_logger.info("Reusing running sandbox")
                return sandbox
            # Expired since the last run
            self.registry.unregister(task.id)
            logger.info(f"Dropped stale sandbox {sandbox.sandbox_id} for task {task.id}")

        try:
            sandbox = SandboxService.connect_sandbox(task.sandbox_id)
        except Exception as e:
            logger.warning(f"Could not reconnect to sandbox {task.sandbox_id}: {e}")
            task_logger.info("Previous sandbox is no longer available, creating a new one")
            return None

        self.registry.register(task.id, sandbox)
        task_logger.info(f"Reconnected to sandbox {task.sandbox_id}")
        return sandbox

    def _history_before(
        self, task_id: str, message: str, message_id: str | None
    ) -> list[TaskMessage]:
        messages = TaskService.list_messages(task_id)
        if message_id is not None:
            for index, entry in enumerate(messages):
                if entry.id == message_id:
                    return messages[:index]
        if (
            messages
            and messages[-1].role == MessageRole.USER.value
            and messages[-1].content == message
        ):
            return messages[:-1]
        return messages

    def _execute_and_publish(
        self,
        task: Task,
        context: RunContext,
        task_logger: TaskLogger,
        *,
        sandbox: Sandbox,
        branch_name: str,
        prompt: str,
        is_resumed: bool,
        session_id: str | None,
        commit_agent: str,
        commit_prompt: str | None = None,
    ) -> None:
        task_logger.update_progress(50, "Installing and executing agent")
        result = self.executor.execute(
            AgentRequest(
                sandbox=sandbox,
                prompt=prompt,
                agent=task.selected_agent,
                model=task.selected_model,
                connectors=ConnectorService.get_connected_configs(task.user_id),
                session_id=session_id,
                is_resumed=is_resumed,
                timeout=int(self._deadline_seconds(task)),
            ),
            task_logger,
        )
        if context.abandoned:
            return

        if result.session_id:
            TaskService.update_task(task.id, agent_session_id=result.session_id)
        if not result.success:
            raise AgentExecutionError(result.error or "Agent execution failed")
        if result.agent_response:
            TaskService.add_message(task.id, MessageRole.AGENT, result.agent_response)

        task_logger.update_progress(80, "Pushing changes")
        commit_message = resolve_commit_message(
            commit_prompt or task.prompt, GitService.repo_name(task.repo_url), commit_agent
        )
        push = self.publisher.push_changes(sandbox, branch_name, commit_message, task_logger)
        if push.push_failed:
            raise PublishError("Failed to push changes to repository")
        if context.abandoned:
            return

        task_logger.success("Task completed successfully")
        self._settle(
            context,
            TaskStatus.COMPLETED,
            progress=100,
            status_message="Task completed successfully",
            error=None,
        )
