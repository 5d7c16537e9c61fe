"""Sandbox service for E2B sandbox operations."""

import logging
import shlex
from collections.abc import Callable
from dataclasses import dataclass

from e2b import CommandExitException
from e2b_code_interpreter import Sandbox

from agent_runner.core.config import settings

logger = logging.getLogger(__name__)

PROJECT_DIR = "/home/user/project"

# Processes started by installs, dev servers and agents
_CLEANUP_COMMAND = "pkill -f 'node|python|npm|yarn|pnpm' || true"


@dataclass
class CommandResult:
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        return (self.stderr or self.stdout or "").strip()


def _api_params() -> dict:
    params = {}
    if settings.e2b_api_key:
        params["api_key"] = settings.e2b_api_key
    if settings.e2b_domain:
        params["domain"] = settings.e2b_domain
    return params


class SandboxService:
    """Service for E2B sandbox operations."""

    @staticmethod
    def create_sandbox(timeout: int, envs: dict[str, str] | None = None) -> Sandbox:
        """Create a new sandbox.

        Args:
            timeout: Sandbox lifetime in seconds
            envs: Environment variables for every command in the sandbox
        """
        kwargs = {"timeout": timeout, "envs": envs or {}, **_api_params()}
        if settings.sandbox_template:
            kwargs["template"] = settings.sandbox_template

        sandbox = Sandbox.create(**kwargs)
        logger.info(f"Created sandbox {sandbox.sandbox_id} with {timeout}s timeout")
        return sandbox

    @staticmethod
    def connect_sandbox(sandbox_id: str) -> Sandbox:
        """Reconnect to a running sandbox. Raises if it no longer exists."""
        sandbox = Sandbox.connect(sandbox_id, **_api_params())
        logger.info(f"Reconnected to sandbox {sandbox_id}")
        return sandbox

    @staticmethod
    def is_alive(sandbox: Sandbox) -> bool:
        """Whether the sandbox is still running. Errors count as not running."""
        try:
            return sandbox.is_running()
        except Exception as e:
            logger.warning(f"Could not reach sandbox {sandbox.sandbox_id}: {e}")
            return False

    @staticmethod
    def run_command(
        sandbox: Sandbox,
        command: str,
        timeout: int | None = None,
        cwd: str | None = None,
        on_stdout: Callable[[str], None] | None = None,
        on_stderr: Callable[[str], None] | None = None,
    ) -> CommandResult:
        """Run a command in the sandbox.

        Thin wrapper around ``sandbox.commands.run()`` that turns non-zero exit
        codes into a result instead of an exception. Command timeouts still
        raise ``e2b.TimeoutException``.
        """
        kwargs = {}
        if timeout is not None:
            kwargs["timeout"] = timeout
        if cwd is not None:
            kwargs["cwd"] = cwd
        if on_stdout is not None:
            kwargs["on_stdout"] = on_stdout
        if on_stderr is not None:
            kwargs["on_stderr"] = on_stderr

        try:
            result = sandbox.commands.run(command, **kwargs)
        except CommandExitException as e:
            return CommandResult(
                exit_code=e.exit_code,
                stdout=getattr(e, "stdout", "") or "",
                stderr=getattr(e, "stderr", "") or str(e),
            )
        return CommandResult(
            exit_code=result.exit_code,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
        )

    @staticmethod
    def run_in_project(
        sandbox: Sandbox, args: list[str], timeout: int | None = None, **kwargs
    ) -> CommandResult:
        """Run ``args`` (quoted) from the cloned project directory."""
        return SandboxService.run_command(
            sandbox, shlex.join(args), timeout=timeout, cwd=PROJECT_DIR, **kwargs
        )

    @staticmethod
    def start_background(
        sandbox: Sandbox,
        command: str,
        on_stdout: Callable[[str], None] | None = None,
        on_stderr: Callable[[str], None] | None = None,
    ):
        """Start a long-running process and return without waiting for it."""
        return sandbox.commands.run(
            command,
            background=True,
            cwd=PROJECT_DIR,
            on_stdout=on_stdout,
            on_stderr=on_stderr,
        )

    @staticmethod
    def read_file(sandbox: Sandbox, path: str) -> str | None:
        """Read a file, returning None when it does not exist."""
        result = SandboxService.run_command(sandbox, f"test -f {shlex.quote(path)}")
        if not result.success:
            return None
        return sandbox.files.read(path)

    @staticmethod
    def get_domain(sandbox: Sandbox, port: int) -> str:
        return f"https://{sandbox.get_host(port)}"

    @staticmethod
    def shutdown(sandbox: Sandbox) -> None:
        """Stop project processes, then kill the sandbox.

        Process cleanup is best effort; ``kill`` errors propagate.
        """
        try:
            SandboxService.run_command(sandbox, _CLEANUP_COMMAND, timeout=10)
        except Exception as e:
            logger.warning(f"Process cleanup failed in {sandbox.sandbox_id}: {e}")
        sandbox.kill()
        logger.info(f"Killed sandbox {sandbox.sandbox_id}")
