"""Task run Celery jobs."""

import logging

from agent_runner.celery_app import app
from agent_runner.services.orchestrator import TaskOrchestrator
from agent_runner.services.sandbox_registry import SandboxRegistry

logger = logging.getLogger(__name__)

_orchestrator: TaskOrchestrator | None = None


def get_orchestrator() -> TaskOrchestrator:
    """The worker process's orchestrator, created with its own sandbox registry."""
    global _orchestrator

    if _orchestrator is None:
        _orchestrator = TaskOrchestrator(SandboxRegistry())
    return _orchestrator


@app.task(name="agent_runner.tasks.runs.run_task_job")
def run_task_job(task_id: str) -> None:
    """Run a newly created task.

    Failures are recorded on the task by the orchestrator, so the job is not
    retried.
    """
    logger.info(f"Starting run for task {task_id}")
    get_orchestrator().run_task(task_id)


@app.task(name="agent_runner.tasks.runs.continue_task_job")
def continue_task_job(task_id: str, message: str, message_id: str | None = None) -> None:
    """Run a follow-up message on an existing task."""
    logger.info(f"Starting follow-up for task {task_id}")
    get_orchestrator().continue_task(task_id, message, message_id)
