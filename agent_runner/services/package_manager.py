"""Dependency installation inside the sandbox."""

import logging
from dataclasses import dataclass

from e2b_code_interpreter import Sandbox

from agent_runner.core.config import settings
from agent_runner.services.sandbox import PROJECT_DIR, SandboxService
from agent_runner.services.task_logger import TaskLogger

logger = logging.getLogger(__name__)

DEFAULT_PACKAGE_MANAGER = "npm"

# Checked in order; the first lockfile present wins
LOCKFILES = [
    ("pnpm-lock.yaml", "pnpm"),
    ("yarn.lock", "yarn"),
    ("package-lock.json", "npm"),
]

INSTALL_COMMANDS = {
    "pnpm": ["pnpm", "install", "--frozen-lockfile"],
    "yarn": ["yarn", "install", "--frozen-lockfile"],
    "npm": ["npm", "install", "--no-audit", "--no-fund"],
}


@dataclass
class InstallResult:
    success: bool
    package_manager: str | None = None
    error: str | None = None


def _project_file_exists(sandbox: Sandbox, name: str) -> bool:
    result = SandboxService.run_command(sandbox, f"test -f {PROJECT_DIR}/{name}")
    return result.success


def detect_package_manager(sandbox: Sandbox) -> str:
    for lockfile, manager in LOCKFILES:
        if _project_file_exists(sandbox, lockfile):
            return manager
    return DEFAULT_PACKAGE_MANAGER


def _ensure_installed(sandbox: Sandbox, manager: str, task_logger: TaskLogger) -> bool:
    if manager == DEFAULT_PACKAGE_MANAGER:
        return True
    if SandboxService.run_command(sandbox, f"which {manager}").success:
        return True

    task_logger.info(f"Installing {manager}...")
    result = SandboxService.run_command(
        sandbox, f"npm install -g {manager}", timeout=settings.install_timeout
    )
    if not result.success:
        task_logger.error(f"Failed to install {manager}: {result.output}")
    return result.success


def _run_node_install(
    sandbox: Sandbox, manager: str, task_logger: TaskLogger
) -> bool:
    if not _ensure_installed(sandbox, manager, task_logger):
        return False
    if manager == "pnpm":
        SandboxService.run_in_project(
            sandbox, ["pnpm", "config", "set", "store-dir", "/tmp/pnpm-store"]
        )

    command = INSTALL_COMMANDS[manager]
    task_logger.command(" ".join(command))
    result = SandboxService.run_in_project(
        sandbox, command, timeout=settings.install_timeout
    )
    if not result.success:
        task_logger.error(f"{manager} install failed: {result.output[-500:]}")
    return result.success


def install_node_dependencies(
    sandbox: Sandbox, task_logger: TaskLogger
) -> InstallResult:
    """Install with the lockfile's manager, retrying once with npm on failure."""
    manager = detect_package_manager(sandbox)
    task_logger.info(f"Detected package manager: {manager}")

    if _run_node_install(sandbox, manager, task_logger):
        task_logger.success("Dependencies installed")
        return InstallResult(success=True, package_manager=manager)

    if manager != DEFAULT_PACKAGE_MANAGER:
        task_logger.info(f"Retrying dependency install with {DEFAULT_PACKAGE_MANAGER}")
        if _run_node_install(sandbox, DEFAULT_PACKAGE_MANAGER, task_logger):
            task_logger.success("Dependencies installed")
            return InstallResult(success=True, package_manager=DEFAULT_PACKAGE_MANAGER)

    return InstallResult(
        success=False,
        package_manager=manager,
        error="Failed to install Node.js dependencies",
    )


def install_python_dependencies(
    sandbox: Sandbox, task_logger: TaskLogger
) -> InstallResult:
    if not SandboxService.run_command(sandbox, "python3 -m pip --version").success:
        task_logger.info("Bootstrapping pip...")
        SandboxService.run_command(
            sandbox, "python3 -m ensurepip --upgrade", timeout=settings.install_timeout
        )

    command = ["python3", "-m", "pip", "install", "-r", "requirements.txt"]
    task_logger.command(" ".join(command))
    result = SandboxService.run_in_project(
        sandbox, command, timeout=settings.install_timeout
    )
    if not result.success:
        task_logger.error(f"pip install failed: {result.output[-500:]}")
        return InstallResult(
            success=False,
            package_manager="pip",
            error="Failed to install Python dependencies",
        )

    task_logger.success("Dependencies installed")
    return InstallResult(success=True, package_manager="pip")


def install_dependencies(sandbox: Sandbox, task_logger: TaskLogger) -> InstallResult | None:
    """Install from package.json, else requirements.txt.

    Returns None when the project has neither manifest.
    """
    if _project_file_exists(sandbox, "package.json"):
        return install_node_dependencies(sandbox, task_logger)
    if _project_file_exists(sandbox, "requirements.txt"):
        return install_python_dependencies(sandbox, task_logger)
    task_logger.info("No dependency manifest found")
    return None
