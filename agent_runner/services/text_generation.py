"""AI-generated commit messages, branch names and titles with fallbacks."""

import logging
import re
import secrets
import string
from datetime import UTC, datetime

import httpx

from agent_runner.core.config import settings

logger = logging.getLogger(__name__)

MAX_COMMIT_MESSAGE_LENGTH = 72
MAX_BRANCH_NAME_LENGTH = 50
MAX_TITLE_LENGTH = 60

_BRANCH_BASE = re.compile(r"^[a-z0-9\-/]+$")
_HASH_ALPHABET = string.ascii_lowercase + string.digits


class TextGenerationError(Exception):
    """Raised when the AI gateway is unavailable or returns unusable text."""


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def _complete(system: str, prompt: str, max_tokens: int = 100) -> str:
    if not settings.ai_gateway_api_key:
        raise TextGenerationError("AI_GATEWAY_API_KEY is not configured")

    try:
        response = httpx.post(
            f"{settings.ai_gateway_url.rstrip('/')}/chat/completions",
            headers={"Authorization": f"Bearer {settings.ai_gateway_api_key}"},
            json={
                "model": settings.ai_gateway_model,
                "temperature": 0.3,
                "max_tokens": max_tokens,
                "messages": [
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
            },
            timeout=30.0,
        )
        response.raise_for_status()
        text = response.json()["choices"][0]["message"]["content"]
    except (httpx.HTTPError, KeyError, IndexError, ValueError) as e:
        raise TextGenerationError(f"AI gateway request failed: {e}") from e

    text = (text or "").strip().strip("\"'`").strip()
    if not text:
        raise TextGenerationError("AI gateway returned an empty response")
    return text


# Commit messages


def fallback_commit_message(prompt: str) -> str:
    """Deterministic commit message derived from the prompt. Never empty."""
    message = " ".join((prompt or "").split())
    if not message:
        return "Apply agent changes"
    return _truncate(message, MAX_COMMIT_MESSAGE_LENGTH)


def generate_commit_message(prompt: str, repo_name: str, agent: str) -> str:
    system = (
        "You write git commit messages. Reply with a single imperative line "
        f"of at most {MAX_COMMIT_MESSAGE_LENGTH} characters and nothing else."
    )
    text = _complete(
        system,
        f"Repository: {repo_name}\nAgent: {agent}\nChange request: {prompt}",
    )
    return _truncate(text.splitlines()[0].strip(), MAX_COMMIT_MESSAGE_LENGTH)


def resolve_commit_message(prompt: str, repo_name: str, agent: str) -> str:
    """AI commit message when configured, otherwise the fallback."""
    if settings.ai_gateway_api_key:
        try:
            message = generate_commit_message(prompt, repo_name, agent)
            if message:
                return message
        except Exception as e:
            logger.warning(f"Commit message generation failed, using fallback: {e}")
    return fallback_commit_message(prompt)


# Branch names


def _short_hash(length: int = 6) -> str:
    return "".join(secrets.choice(_HASH_ALPHABET) for _ in range(length))


def fallback_branch_name(task_id: str, now: datetime | None = None) -> str:
    """``agent/<timestamp>-<task id prefix>``."""
    now = now or datetime.now(UTC)
    timestamp = now.strftime("%Y-%m-%dT%H-%M-%S")
    return f"agent/{timestamp}-{task_id[:8]}"


def generate_branch_name(prompt: str, repo_name: str, agent: str) -> str:
    system = (
        "You name git branches. Reply with a short lowercase branch name "
        "using only a-z, 0-9, '-' and '/', such as feature/add-login. "
        "Reply with the name only."
    )
    base = _complete(
        system, f"Repository: {repo_name}\nAgent: {agent}\nChange request: {prompt}"
    ).lower()
    base = base.strip("-/")
    if not _BRANCH_BASE.match(base):
        raise TextGenerationError(f"Invalid branch name generated: {base!r}")

    # Room for "-" and the hash
    base = base[: MAX_BRANCH_NAME_LENGTH - 7].rstrip("-/")
    return f"{base}-{_short_hash()}"


# Titles


def fallback_title(prompt: str) -> str:
    title = " ".join((prompt or "").split())
    return _truncate(title, MAX_TITLE_LENGTH) or "Untitled task"


def generate_title(prompt: str, repo_name: str) -> str:
    system = (
        "You write short titles for coding tasks. Reply with a title of at "
        f"most {MAX_TITLE_LENGTH} characters and nothing else."
    )
    text = _complete(system, f"Repository: {repo_name}\nTask: {prompt}")
    return _truncate(text.splitlines()[0].strip(), MAX_TITLE_LENGTH)
