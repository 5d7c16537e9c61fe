"""Tests for prompt preparation."""

from agent_runner.models import TaskMessage
from agent_runner.services.prompt import build_follow_up_prompt, sanitize_prompt


def _message(role: str, content: str) -> TaskMessage:
    return TaskMessage(task_id="task-1", role=role, content=content)


def test_sanitize_prompt():
    assert sanitize_prompt("echo `whoami` $HOME C:\\dir") == "echo 'whoami' HOME C:dir"


def test_sanitize_prompt_escapes_leading_dashes():
    assert sanitize_prompt("--help\nok\n-v") == " --help\nok\n -v"


def test_follow_up_without_history():
    assert build_follow_up_prompt("add tests", [], is_resumed=False) == "add tests"


def test_follow_up_resumed_skips_history():
    history = [_message("user", "add login")]

    assert build_follow_up_prompt("add tests", history, is_resumed=True) == "add tests"


def test_follow_up_includes_recent_history():
    history = [_message("user", f"message {i}") for i in range(7)]
    history.append(_message("agent", "y" * 600))

    prompt = build_follow_up_prompt("add tests", history, is_resumed=False)

    assert prompt.startswith("add tests\n\n---\n\nFor context")
    assert "message 2" not in prompt
    assert "User: message 3" in prompt
    assert "Agent: " + "y" * 500 + "..." in prompt
    assert "y" * 501 not in prompt
