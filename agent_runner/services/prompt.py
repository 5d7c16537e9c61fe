"""Prompt preparation for command-line agents."""

import re

from agent_runner.models import MessageRole, TaskMessage

HISTORY_MESSAGE_LIMIT = 5
HISTORY_MESSAGE_LENGTH = 500

_HISTORY_HEADER = (
    "\n\n---\n\nFor context, here is the conversation history from this session:\n\n"
)


def sanitize_prompt(prompt: str) -> str:
    """Keep user text from being read as shell syntax or CLI flags."""
    sanitized = prompt.replace("`", "'").replace("$", "").replace("\\", "")
    return re.sub(r"^-", " -", sanitized, flags=re.MULTILINE)


def build_follow_up_prompt(
    message: str, history: list[TaskMessage], is_resumed: bool
) -> str:
    """Sanitized follow-up, with recent history appended unless resumed.

    ``history`` holds the task's earlier messages, oldest first, excluding
    ``message`` itself. A resumed agent session already holds the history.
    """
    prompt = sanitize_prompt(message)
    if is_resumed or not history:
        return prompt

    lines = []
    for entry in history[-HISTORY_MESSAGE_LIMIT:]:
        role = "User" if entry.role == MessageRole.USER.value else "Agent"
        content = entry.content
        if len(content) > HISTORY_MESSAGE_LENGTH:
            content = content[:HISTORY_MESSAGE_LENGTH] + "..."
        lines.append(f"{role}: {sanitize_prompt(content)}")

    return prompt + _HISTORY_HEADER + "\n\n".join(lines)
