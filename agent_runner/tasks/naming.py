"""Branch name and title generation jobs.

These race the task run: the run waits briefly for a generated branch name
and otherwise claims its own. Both sides write the branch name only if none
is stored yet.
"""

import logging

from agent_runner.celery_app import app
from agent_runner.core.config import settings
from agent_runner.core.errors import NotFoundError
from agent_runner.services.git import GitService
from agent_runner.services.task import TaskService
from agent_runner.services.text_generation import (
    TextGenerationError,
    fallback_title,
    generate_branch_name,
    generate_title,
)

logger = logging.getLogger(__name__)


@app.task(name="agent_runner.tasks.naming.generate_branch_name_job")
def generate_branch_name_job(task_id: str) -> str | None:
    if not settings.ai_gateway_api_key:
        return None

    try:
        task = TaskService.get_task_by_id(task_id)
    except NotFoundError:
        logger.warning(f"Task {task_id} disappeared before branch naming")
        return None
    if task.branch_name:
        return task.branch_name

    try:
        name = generate_branch_name(
            task.prompt, GitService.repo_name(task.repo_url), task.selected_agent
        )
    except TextGenerationError as e:
        logger.warning(f"Branch name generation failed for task {task_id}: {e}")
        return None

    return TaskService.claim_branch_name(task_id, name)


@app.task(name="agent_runner.tasks.naming.generate_title_job")
def generate_title_job(task_id: str) -> str | None:
    try:
        task = TaskService.get_task_by_id(task_id)
    except NotFoundError:
        logger.warning(f"Task {task_id} disappeared before title generation")
        return None

    title = fallback_title(task.prompt)
    if settings.ai_gateway_api_key:
        try:
            title = generate_title(task.prompt, GitService.repo_name(task.repo_url))
        except TextGenerationError as e:
            logger.warning(f"Title generation failed for task {task_id}: {e}")

    TaskService.update_task(task_id, title=title)
    return title
