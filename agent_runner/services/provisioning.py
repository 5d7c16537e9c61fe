"""Sandbox provisioning for a task run."""

import json
import logging
import shlex
from collections.abc import Callable
from dataclasses import dataclass

from e2b_code_interpreter import Sandbox

from agent_runner.core.config import settings
from agent_runner.services.git import GitService
from agent_runner.services.package_manager import detect_package_manager, install_dependencies
from agent_runner.services.sandbox import PROJECT_DIR, SandboxService
from agent_runner.services.sandbox_registry import SandboxRegistry
from agent_runner.services.task_logger import TaskLogger, redact_sensitive_info
from agent_runner.services.text_generation import fallback_branch_name

logger = logging.getLogger(__name__)

# Agent -> credential settings, any one of which is enough
AGENT_CREDENTIALS = {
    "claude": ("anthropic_api_key",),
    "codex": ("openai_api_key", "ai_gateway_api_key"),
    "cursor": ("cursor_api_key",),
    "gemini": ("gemini_api_key",),
    "opencode": ("openai_api_key", "anthropic_api_key"),
}

# Setting -> environment variable inside the sandbox
SANDBOX_ENV = {
    "anthropic_api_key": "ANTHROPIC_API_KEY",
    "openai_api_key": "OPENAI_API_KEY",
    "gemini_api_key": "GEMINI_API_KEY",
    "cursor_api_key": "CURSOR_API_KEY",
    "ai_gateway_api_key": "AI_GATEWAY_API_KEY",
    "github_token": "GITHUB_TOKEN",
}


@dataclass
class ProvisioningRequest:
    task_id: str
    repo_url: str
    agent: str
    timeout: int  # sandbox lifetime in seconds
    branch_name: str | None = None
    install_dependencies: bool = False
    port: int = 3000


@dataclass
class ProvisioningResult:
    success: bool
    sandbox: Sandbox | None = None
    domain: str | None = None
    branch_name: str | None = None
    cancelled: bool = False
    error: str | None = None


def missing_credentials(agent: str) -> list[str]:
    """Names of environment variables that must be set before provisioning."""
    missing = []
    options = AGENT_CREDENTIALS.get(agent, ())
    if options and not any(getattr(settings, name) for name in options):
        missing.append(" or ".join(SANDBOX_ENV[name] for name in options))
    if not settings.github_token:
        missing.append("GITHUB_TOKEN")
    if not settings.e2b_api_key:
        missing.append("E2B_API_KEY")
    return missing


def sandbox_envs() -> dict[str, str]:
    envs = {}
    for name, env_name in SANDBOX_ENV.items():
        value = getattr(settings, name)
        if value:
            envs[env_name] = value
    if settings.github_token:
        envs["GH_TOKEN"] = settings.github_token
    return envs


class SandboxProvisioner:
    """Creates and prepares a sandbox for a task.

    Steps: validate credentials, create the sandbox, clone, install
    dependencies, start the dev server, configure git, check out the branch.
    ``is_cancelled`` is consulted between steps; a cancelled result may still
    carry the sandbox so the caller can release it.
    """

    def __init__(self, registry: SandboxRegistry):
        self.registry = registry

    def provision(
        self,
        request: ProvisioningRequest,
        task_logger: TaskLogger,
        is_cancelled: Callable[[], bool],
    ) -> ProvisioningResult:
        if is_cancelled():
            return ProvisioningResult(success=False, cancelled=True)

        task_logger.update_progress(20, "Validating environment")
        missing = missing_credentials(request.agent)
        if missing:
            error = f"Missing required environment variables: {', '.join(missing)}"
            task_logger.error(error)
            return ProvisioningResult(success=False, error=error)

        try:
            clone_url = GitService.authenticated_url(
                request.repo_url, settings.github_token
            )
        except ValueError as e:
            return ProvisioningResult(success=False, error=str(e))

        task_logger.update_progress(25, "Creating sandbox")
        try:
            sandbox = SandboxService.create_sandbox(
                timeout=request.timeout, envs=sandbox_envs()
            )
        except Exception as e:
            detail = redact_sensitive_info(str(e))
            logger.error(f"Sandbox creation failed for task {request.task_id}: {detail}")
            task_logger.error("Failed to create sandbox")
            return ProvisioningResult(
                success=False, error=f"Failed to create sandbox: {detail}"
            )
        self.registry.register(request.task_id, sandbox)
        task_logger.success(f"Sandbox created: {sandbox.sandbox_id}")

        if is_cancelled():
            return ProvisioningResult(success=False, sandbox=sandbox, cancelled=True)

        try:
            return self._prepare(sandbox, clone_url, request, task_logger, is_cancelled)
        except Exception as e:
            detail = redact_sensitive_info(str(e))
            logger.error(f"Provisioning failed for task {request.task_id}: {detail}")
            return ProvisioningResult(
                success=False, sandbox=sandbox, error=f"Provisioning failed: {detail}"
            )

    def _prepare(
        self,
        sandbox: Sandbox,
        clone_url: str,
        request: ProvisioningRequest,
        task_logger: TaskLogger,
        is_cancelled: Callable[[], bool],
    ) -> ProvisioningResult:
        task_logger.command(f"git clone --depth 1 {clone_url} {PROJECT_DIR}")
        cloned = SandboxService.run_command(
            sandbox,
            shlex.join(["git", "clone", "--depth", "1", clone_url, PROJECT_DIR]),
            timeout=300,
        )
        if not cloned.success:
            task_logger.error("Failed to clone repository")
            return ProvisioningResult(
                success=False,
                sandbox=sandbox,
                error="Failed to clone repository: "
                f"{redact_sensitive_info(cloned.output)[-500:]}",
            )
        task_logger.update_progress(30, "Repository cloned")

        domain = None
        if request.install_dependencies:
            task_logger.update_progress(35, "Installing dependencies")
            installed = install_dependencies(sandbox, task_logger)
            if installed is not None and not installed.success:
                task_logger.info(
                    f"Warning: {installed.error}, continuing without dependencies"
                )
            if is_cancelled():
                return ProvisioningResult(success=False, sandbox=sandbox, cancelled=True)
            if installed is not None and installed.success:
                domain = self._start_dev_server(sandbox, request.port, task_logger)

        if is_cancelled():
            return ProvisioningResult(success=False, sandbox=sandbox, cancelled=True)

        self._configure_git(sandbox)
        self._ensure_initial_commit(sandbox, task_logger)

        branch_name = request.branch_name or fallback_branch_name(request.task_id)
        error = self._checkout_branch(sandbox, branch_name, task_logger)
        if error:
            return ProvisioningResult(success=False, sandbox=sandbox, error=error)

        task_logger.update_progress(40, "Sandbox ready")
        return ProvisioningResult(
            success=True, sandbox=sandbox, domain=domain, branch_name=branch_name
        )

    def _start_dev_server(
        self, sandbox: Sandbox, port: int, task_logger: TaskLogger
    ) -> str | None:
        content = SandboxService.read_file(sandbox, f"{PROJECT_DIR}/package.json")
        if not content:
            return None
        try:
            package_json = json.loads(content)
        except ValueError:
            task_logger.info("package.json is not valid JSON, skipping dev server")
            return None
        if not (package_json.get("scripts") or {}).get("dev"):
            return None

        dependencies = {
            **(package_json.get("dependencies") or {}),
            **(package_json.get("devDependencies") or {}),
        }
        args = [detect_package_manager(sandbox), "run", "dev"]
        if "vite" in dependencies:
            args += ["--", "--host", "--port", str(port)]

        task_logger.command(shlex.join(args))
        SandboxService.start_background(
            sandbox,
            shlex.join(args),
            on_stdout=lambda line: task_logger.info(f"[SERVER] {line.rstrip()}"),
            on_stderr=lambda line: task_logger.info(f"[SERVER] {line.rstrip()}"),
        )
        domain = SandboxService.get_domain(sandbox, port)
        task_logger.success(f"Dev server starting at {domain}")
        return domain

    def _configure_git(self, sandbox: Sandbox) -> None:
        for key, value in (
            ("user.name", settings.git_author_name),
            ("user.email", settings.git_author_email),
        ):
            SandboxService.run_in_project(sandbox, ["git", "config", key, value])

    def _ensure_initial_commit(self, sandbox: Sandbox, task_logger: TaskLogger) -> None:
        if SandboxService.run_in_project(sandbox, ["git", "rev-parse", "HEAD"]).success:
            return

        task_logger.info("Repository is empty, creating initial commit")
        SandboxService.run_in_project(sandbox, ["git", "checkout", "-b", "main"])
        SandboxService.run_command(
            sandbox, "printf '# Project\\n' > README.md", cwd=PROJECT_DIR
        )
        SandboxService.run_in_project(sandbox, ["git", "add", "README.md"])
        SandboxService.run_in_project(
            sandbox, ["git", "commit", "-m", "Initial commit"]
        )
        SandboxService.run_in_project(sandbox, ["git", "push", "-u", "origin", "main"])

    def _checkout_branch(
        self, sandbox: Sandbox, branch_name: str, task_logger: TaskLogger
    ) -> str | None:
        """Check out ``branch_name``, creating it if it exists nowhere yet."""
        if SandboxService.run_in_project(sandbox, ["git", "checkout", branch_name]).success:
            task_logger.info(f"Checked out existing branch {branch_name}")
            return None

        remote = SandboxService.run_in_project(
            sandbox, ["git", "ls-remote", "--exit-code", "--heads", "origin", branch_name]
        )
        if remote.success:
            fetched = SandboxService.run_in_project(
                sandbox,
                ["git", "fetch", "--depth", "1", "origin", f"{branch_name}:{branch_name}"],
            )
            if fetched.success and SandboxService.run_in_project(
                sandbox, ["git", "checkout", branch_name]
            ).success:
                task_logger.info(f"Checked out remote branch {branch_name}")
                return None

        created = SandboxService.run_in_project(
            sandbox, ["git", "checkout", "-b", branch_name]
        )
        if not created.success:
            task_logger.error(f"Failed to create branch {branch_name}")
            detail = redact_sensitive_info(created.output)
            return f"Failed to create branch {branch_name}: {detail}"
        task_logger.info(f"Created branch {branch_name}")
        return None
