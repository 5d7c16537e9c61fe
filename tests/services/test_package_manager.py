"""Tests for dependency installation."""

import pytest

from agent_runner.services import package_manager
from agent_runner.services.package_manager import (
    detect_package_manager,
    install_dependencies,
)
from agent_runner.services.sandbox import CommandResult

OK = CommandResult(exit_code=0)
FAILED = CommandResult(exit_code=1, stderr="ERR_PNPM_OUTDATED_LOCKFILE")


@pytest.fixture
def task_logger(mocker):
    return mocker.Mock()


def _files(mocker, present: set[str], extra: dict[str, CommandResult] | None = None):
    """Patch run_command so ``test -f`` only succeeds for ``present``."""
    extra = extra or {}

    def run_command(sandbox, command, **kwargs):
        if command.startswith("test -f "):
            name = command.rsplit("/", 1)[-1]
            return OK if name in present else CommandResult(exit_code=1)
        return extra.get(command, OK)

    return mocker.patch.object(
        package_manager.SandboxService, "run_command", side_effect=run_command
    )


@pytest.mark.parametrize(
    "present, expected",
    [
        ({"pnpm-lock.yaml", "package-lock.json"}, "pnpm"),
        ({"yarn.lock"}, "yarn"),
        ({"package-lock.json"}, "npm"),
        (set(), "npm"),
    ],
)
def test_detect_package_manager(mocker, present, expected):
    _files(mocker, present)

    assert detect_package_manager(mocker.Mock()) == expected


def test_install_node_dependencies_with_pnpm(mocker, task_logger):
    _files(mocker, {"package.json", "pnpm-lock.yaml"})
    run_in_project = mocker.patch.object(
        package_manager.SandboxService, "run_in_project", return_value=OK
    )

    result = install_dependencies(mocker.Mock(), task_logger)

    assert result.success is True
    assert result.package_manager == "pnpm"
    commands = [call.args[1] for call in run_in_project.call_args_list]
    assert commands == [
        ["pnpm", "config", "set", "store-dir", "/tmp/pnpm-store"],
        ["pnpm", "install", "--frozen-lockfile"],
    ]


def test_install_node_dependencies_installs_missing_manager(mocker, task_logger):
    run_command = _files(
        mocker, {"package.json", "yarn.lock"}, {"which yarn": CommandResult(exit_code=1)}
    )
    mocker.patch.object(package_manager.SandboxService, "run_in_project", return_value=OK)

    result = install_dependencies(mocker.Mock(), task_logger)

    assert result.success is True
    commands = [call.args[1] for call in run_command.call_args_list]
    assert "npm install -g yarn" in commands


def test_install_node_dependencies_falls_back_to_npm(mocker, task_logger):
    _files(mocker, {"package.json", "pnpm-lock.yaml"})
    run_in_project = mocker.patch.object(
        package_manager.SandboxService,
        "run_in_project",
        side_effect=[OK, FAILED, OK],
    )

    result = install_dependencies(mocker.Mock(), task_logger)

    assert result.success is True
    assert result.package_manager == "npm"
    assert run_in_project.call_args_list[-1].args[1] == [
        "npm",
        "install",
        "--no-audit",
        "--no-fund",
    ]


def test_install_node_dependencies_failure(mocker, task_logger):
    _files(mocker, {"package.json"})
    mocker.patch.object(
        package_manager.SandboxService, "run_in_project", return_value=FAILED
    )

    result = install_dependencies(mocker.Mock(), task_logger)

    assert result.success is False
    assert result.error == "Failed to install Node.js dependencies"


def test_install_python_dependencies(mocker, task_logger):
    _files(mocker, {"requirements.txt"})
    run_in_project = mocker.patch.object(
        package_manager.SandboxService, "run_in_project", return_value=OK
    )

    result = install_dependencies(mocker.Mock(), task_logger)

    assert result.success is True
    assert result.package_manager == "pip"
    assert run_in_project.call_args.args[1] == [
        "python3",
        "-m",
        "pip",
        "install",
        "-r",
        "requirements.txt",
    ]


def test_install_python_dependencies_bootstraps_pip(mocker, task_logger):
    run_command = _files(
        mocker,
        {"requirements.txt"},
        {"python3 -m pip --version": CommandResult(exit_code=1)},
    )
    mocker.patch.object(package_manager.SandboxService, "run_in_project", return_value=OK)

    install_dependencies(mocker.Mock(), task_logger)

    commands = [call.args[1] for call in run_command.call_args_list]
    assert "python3 -m ensurepip --upgrade" in commands


def test_install_dependencies_without_manifest(mocker, task_logger):
    _files(mocker, set())

    assert install_dependencies(mocker.Mock(), task_logger) is None
