"""Coding agent execution inside a sandbox."""

import json
import logging
import shlex
from collections.abc import Callable
from dataclasses import dataclass, field

from e2b import TimeoutException
from e2b_code_interpreter import Sandbox

from agent_runner.services.connector import McpServerConfig
from agent_runner.services.sandbox import PROJECT_DIR, SandboxService
from agent_runner.services.task_logger import TaskLogger, redact_sensitive_info

logger = logging.getLogger(__name__)

DEFAULT_CLAUDE_MODEL = "claude-sonnet-4-5-20250929"


@dataclass
class AgentRequest:
    sandbox: Sandbox
    prompt: str
    agent: str
    model: str | None = None
    connectors: list[McpServerConfig] = field(default_factory=list)
    session_id: str | None = None
    is_resumed: bool = False
    timeout: int | None = None  # seconds


@dataclass
class AgentResult:
    success: bool
    agent_response: str | None = None
    session_id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class AgentCli:
    """How to install and invoke one agent CLI."""

    binary: str
    install_command: str
    build_args: Callable[[AgentRequest], list[str]]


def _claude_args(request: AgentRequest) -> list[str]:
    args = [
        "claude",
        "-p",
        "--model",
        request.model or DEFAULT_CLAUDE_MODEL,
        "--dangerously-skip-permissions",
        "--output-format",
        "stream-json",
        "--verbose",
    ]
    if request.session_id:
        args += ["--resume", request.session_id]
    elif request.is_resumed:
        args.append("--continue")
    return args + [request.prompt]


def _codex_args(request: AgentRequest) -> list[str]:
    args = ["codex", "exec", "--dangerously-bypass-approvals-and-sandbox"]
    if request.model:
        args += ["--model", request.model]
    if request.is_resumed:
        args += ["resume", "--last"]
    return args + [request.prompt]


def _cursor_args(request: AgentRequest) -> list[str]:
    args = ["cursor-agent", "-p", "--force", "--output-format", "stream-json"]
    if request.model:
        args += ["--model", request.model]
    if request.session_id:
        args += ["--resume", request.session_id]
    return args + [request.prompt]


def _gemini_args(request: AgentRequest) -> list[str]:
    args = ["gemini"]
    if request.model:
        args += ["-m", request.model]
    return args + ["--yolo", "-o", "json", "-p", request.prompt]


def _opencode_args(request: AgentRequest) -> list[str]:
    args = ["opencode", "run"]
    if request.model:
        args += ["--model", request.model]
    if request.session_id:
        args += ["--session", request.session_id]
    elif request.is_resumed:
        args.append("--continue")
    return args + [request.prompt]


AGENT_CLIS: dict[str, AgentCli] = {
    "claude": AgentCli(
        "claude", "npm install -g @anthropic-ai/claude-code", _claude_args
    ),
    "codex": AgentCli("codex", "npm install -g @openai/codex", _codex_args),
    "cursor": AgentCli(
        "cursor-agent", "curl https://cursor.com/install -fsS | bash", _cursor_args
    ),
    "gemini": AgentCli("gemini", "npm install -g @google/gemini-cli", _gemini_args),
    "opencode": AgentCli("opencode", "npm install -g opencode-ai", _opencode_args),
}

SUPPORTED_AGENTS = tuple(AGENT_CLIS)

# Cursor installs into ~/.local/bin
_PATH_PREFIX = 'export PATH="$HOME/.local/bin:$PATH"; '


class AgentOutputParser:
    """Collects the response and session id from streamed agent output.

    Agents emitting JSON lines (Claude and Cursor stream-json, Gemini json)
    are parsed; anything else is forwarded verbatim.
    """

    def __init__(self, task_logger: TaskLogger):
        self.task_logger = task_logger
        self.session_id: str | None = None
        self.result: str | None = None
        self._assistant_text: list[str] = []
        self._plain_lines: list[str] = []
        self._buffer = ""

    def feed(self, chunk: str) -> None:
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split("\n")
        for line in lines:
            self._handle_line(line)

    def close(self) -> None:
        if self._buffer:
            self._handle_line(self._buffer)
            self._buffer = ""

    def _handle_line(self, line: str) -> None:
        line = line.strip()
        if not line:
            return
        try:
            event = json.loads(line)
        except ValueError:
            self._plain_lines.append(line)
            self.task_logger.info(line)
            return
        if not isinstance(event, dict):
            self._plain_lines.append(line)
            return
        self._handle_event(event)

    def _handle_event(self, event: dict) -> None:
        session_id = event.get("session_id") or event.get("sessionId")
        if session_id:
            self.session_id = session_id

        event_type = event.get("type")
        if event_type == "assistant":
            for block in (event.get("message") or {}).get("content") or []:
                if block.get("type") == "text" and block.get("text"):
                    self._assistant_text.append(block["text"])
                    self.task_logger.info(block["text"])
                elif block.get("type") == "tool_use":
                    self.task_logger.info(f"Using tool: {block.get('name')}")
        elif event_type == "result" or "response" in event:
            result = event.get("result") or event.get("response")
            if isinstance(result, str):
                self.result = result

    @property
    def response(self) -> str | None:
        if self.result:
            return self.result
        if self._assistant_text:
            return "\n\n".join(self._assistant_text)
        if self._plain_lines:
            return "\n".join(self._plain_lines[-50:])
        return None


class AgentExecutor:
    """Runs the selected agent CLI against the cloned project."""

    def execute(self, request: AgentRequest, task_logger: TaskLogger) -> AgentResult:
        cli = AGENT_CLIS.get(request.agent)
        if cli is None:
            return AgentResult(success=False, error=f"Unknown agent type: {request.agent}")

        if not self._ensure_cli(request.sandbox, cli, task_logger):
            return AgentResult(
                success=False, error=f"Failed to install {request.agent} CLI"
            )

        if request.connectors:
            self._configure_mcp(request, task_logger)

        args = cli.build_args(request)
        # Prompt omitted from the log line; it is already in the task messages
        task_logger.command(f"{shlex.join(args[:-1])} <prompt>")

        parser = AgentOutputParser(task_logger)
        try:
            result = SandboxService.run_command(
                request.sandbox,
                _PATH_PREFIX + shlex.join(args),
                timeout=request.timeout,
                cwd=PROJECT_DIR,
                on_stdout=parser.feed,
                on_stderr=lambda line: task_logger.info(line.rstrip()),
            )
        except TimeoutException:
            logger.warning(f"{request.agent} timed out after {request.timeout}s")
            return AgentResult(success=False, error="Agent execution timed out")
        except Exception as e:
            detail = redact_sensitive_info(str(e))
            logger.error(f"{request.agent} failed: {detail}")
            return AgentResult(success=False, error=f"Agent execution failed: {detail}")
        parser.close()

        if not parser.response and result.stdout:
            parser.feed(result.stdout)
            parser.close()

        if not result.success:
            detail = result.stderr.strip() or parser.response or f"exit code {result.exit_code}"
            detail = redact_sensitive_info(detail)
            task_logger.error(f"{request.agent} exited with code {result.exit_code}")
            return AgentResult(
                success=False,
                session_id=parser.session_id,
                error=f"{request.agent} failed: {detail[-500:]}",
            )

        task_logger.success(f"{request.agent} finished")
        return AgentResult(
            success=True,
            agent_response=parser.response,
            session_id=parser.session_id or request.session_id,
        )

    def _ensure_cli(
        self, sandbox: Sandbox, cli: AgentCli, task_logger: TaskLogger
    ) -> bool:
        check = SandboxService.run_command(sandbox, f"{_PATH_PREFIX}which {cli.binary}")
        if check.success:
            return True

        task_logger.info(f"Installing {cli.binary}...")
        install = SandboxService.run_command(sandbox, cli.install_command, timeout=300)
        if not install.success:
            task_logger.error(f"Failed to install {cli.binary}: {install.output[-500:]}")
            return False
        return True

    def _configure_mcp(self, request: AgentRequest, task_logger: TaskLogger) -> None:
        if request.agent != "claude":
            task_logger.info(
                f"MCP connectors are not configured for {request.agent}, skipping"
            )
            return

        for server in request.connectors:
            args = ["claude", "mcp", "add"]
            if server.type == "local":
                for key, value in server.env.items():
                    args += ["--env", f"{key}={value}"]
                args += [server.name, "--", *shlex.split(server.command or "")]
            else:
                args += ["--transport", "http", server.name, server.base_url or ""]
                if server.oauth_client_secret:
                    args += [
                        "--header",
                        f"Authorization: Bearer {server.oauth_client_secret}",
                    ]
                if server.oauth_client_id:
                    args += ["--header", f"X-Client-ID: {server.oauth_client_id}"]

            task_logger.info(f"Adding MCP server: {server.name}")
            result = SandboxService.run_command(
                request.sandbox, shlex.join(args), cwd=PROJECT_DIR
            )
            if not result.success:
                task_logger.error(f"Failed to add MCP server {server.name}")
