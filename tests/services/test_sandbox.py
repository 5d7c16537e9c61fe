"""Tests for SandboxService."""

import pytest

from agent_runner.services.sandbox import PROJECT_DIR, SandboxService


@pytest.fixture
def sandbox(mocker):
    sandbox = mocker.Mock()
    sandbox.sandbox_id = "sbx-1"
    return sandbox


@pytest.mark.parametrize("running", [True, False])
def test_is_alive(sandbox, running):
    sandbox.is_running.return_value = running

    assert SandboxService.is_alive(sandbox) is running


def test_is_alive_when_unreachable(sandbox):
    sandbox.is_running.side_effect = ConnectionError("sandbox not found")

    assert SandboxService.is_alive(sandbox) is False


def test_run_in_project_quotes_args(sandbox):
    sandbox.commands.run.return_value.exit_code = 0
    sandbox.commands.run.return_value.stdout = "ok"
    sandbox.commands.run.return_value.stderr = None

    result = SandboxService.run_in_project(sandbox, ["git", "commit", "-m", "Add tests"])

    assert result.success
    assert result.stdout == "ok"
    assert result.stderr == ""
    sandbox.commands.run.assert_called_once_with(
        "git commit -m 'Add tests'", cwd=PROJECT_DIR
    )


def test_shutdown_kills_after_failed_cleanup(sandbox):
    sandbox.commands.run.side_effect = TimeoutError("cleanup timed out")

    SandboxService.shutdown(sandbox)

    sandbox.kill.assert_called_once()
