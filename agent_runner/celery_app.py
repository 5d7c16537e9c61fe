"""Celery application configuration."""

import logging

from celery import Celery
from celery.signals import setup_logging

from agent_runner.core.config import settings

app = Celery("agent-runner")

app.conf.update(
    # Broker configuration
    broker_url=settings.celery_broker_url,
    broker_connection_retry_on_startup=True,
    broker_connection_retry=True,
    broker_connection_max_retries=10,
    # Result backend - disabled (fire-and-forget, state tracked in the database)
    result_backend=None,
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    # Task execution
    task_track_started=True,
    task_acks_late=True,  # Acknowledge after task completion
    worker_prefetch_multiplier=1,  # Only fetch one task at a time
    # Task routing
    task_routes={
        "agent_runner.tasks.runs.*": {"queue": "task_runs"},
        "agent_runner.tasks.naming.*": {"queue": "naming"},
    },
)

# Imports agent_runner.tasks, which registers every job
app.autodiscover_tasks(["agent_runner"])


@setup_logging.connect
def configure_logging(**kwargs):
    logging.basicConfig(level=settings.log_level)
