"""Background jobs."""

from .naming import generate_branch_name_job, generate_title_job
from .runs import continue_task_job, run_task_job

__all__ = [
    "continue_task_job",
    "generate_branch_name_job",
    "generate_title_job",
    "run_task_job",
]
