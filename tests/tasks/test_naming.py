"""Tests for the branch name and title jobs."""

import pytest

from agent_runner.core.config import settings
from agent_runner.services import TaskService
from agent_runner.services.text_generation import TextGenerationError
from agent_runner.tasks.naming import generate_branch_name_job, generate_title_job
from tests.conftest import create_test_task


@pytest.fixture
def gateway_configured(mocker):
    mocker.patch.object(settings, "ai_gateway_api_key", "gw-test-key")


def test_branch_name_job_without_gateway(mocker):
    generate = mocker.patch("agent_runner.tasks.naming.generate_branch_name")
    task = create_test_task()

    assert generate_branch_name_job(task.id) is None
    generate.assert_not_called()
    assert TaskService.get_task_by_id(task.id).branch_name is None


def test_branch_name_job_claims_generated_name(mocker, gateway_configured):
    generate = mocker.patch(
        "agent_runner.tasks.naming.generate_branch_name",
        return_value="feature/health-endpoint-a1b2c3",
    )
    task = create_test_task(prompt="add a health endpoint")

    assert generate_branch_name_job(task.id) == "feature/health-endpoint-a1b2c3"
    generate.assert_called_once_with("add a health endpoint", "repo", "claude")
    assert TaskService.get_task_by_id(task.id).branch_name == "feature/health-endpoint-a1b2c3"


def test_branch_name_job_loses_to_existing_name(mocker, gateway_configured):
    mocker.patch(
        "agent_runner.tasks.naming.generate_branch_name",
        return_value="feature/late-a1b2c3",
    )
    task = create_test_task()
    TaskService.claim_branch_name(task.id, "agent/2026-01-01T00-00-00-abcdefgh")

    result = generate_branch_name_job(task.id)

    assert result == "agent/2026-01-01T00-00-00-abcdefgh"


def test_branch_name_job_generation_failure(mocker, gateway_configured):
    mocker.patch(
        "agent_runner.tasks.naming.generate_branch_name",
        side_effect=TextGenerationError("bad name"),
    )
    task = create_test_task()

    assert generate_branch_name_job(task.id) is None
    assert TaskService.get_task_by_id(task.id).branch_name is None


def test_branch_name_job_missing_task(gateway_configured):
    assert generate_branch_name_job("missing") is None


def test_title_job_uses_fallback_without_gateway():
    task = create_test_task(prompt="Add a   health endpoint")

    assert generate_title_job(task.id) == "Add a health endpoint"
    assert TaskService.get_task_by_id(task.id).title == "Add a health endpoint"


def test_title_job_uses_gateway(mocker, gateway_configured):
    mocker.patch("agent_runner.tasks.naming.generate_title", return_value="Health endpoint")
    task = create_test_task()

    assert generate_title_job(task.id) == "Health endpoint"


def test_title_job_falls_back_on_failure(mocker, gateway_configured):
    mocker.patch(
        "agent_runner.tasks.naming.generate_title",
        side_effect=TextGenerationError("gateway down"),
    )
    task = create_test_task(prompt="Fix login")

    assert generate_title_job(task.id) == "Fix login"
