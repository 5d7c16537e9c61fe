"""Dev server port detection from package.json."""

import base64
import json
import logging
import re

import httpx

from agent_runner.services.git import GitService

logger = logging.getLogger(__name__)

DEFAULT_PORT = 3000
VITE_PORT = 5173

# Framework dependency -> default dev server port
_FRAMEWORK_PORTS = [
    ("vite", VITE_PORT),
    ("astro", 4321),
    ("@angular/core", 4200),
    ("gatsby", 8000),
]

_PORT_FLAG = re.compile(r"(?:--port|-p)[ =](\d{2,5})")


def detect_port(package_json: dict) -> int:
    """Return the port the project's dev server listens on."""
    scripts = package_json.get("scripts") or {}
    dev_script = scripts.get("dev") or ""
    match = _PORT_FLAG.search(dev_script)
    if match:
        return int(match.group(1))

    dependencies = {
        **(package_json.get("dependencies") or {}),
        **(package_json.get("devDependencies") or {}),
    }
    for name, port in _FRAMEWORK_PORTS:
        if name in dependencies:
            return port
    return DEFAULT_PORT


def detect_port_from_repo(repo_url: str, github_token: str | None = None) -> int:
    """Fetch package.json through the GitHub contents API and detect the port.

    Any failure (private repo without token, missing file, bad JSON) yields
    the default port.
    """
    try:
        _, org_repo = GitService.parse_github_url(repo_url)
        headers = {"Accept": "application/vnd.github+json"}
        if github_token:
            headers["Authorization"] = f"Bearer {github_token}"

        response = httpx.get(
            f"https://api.github.com/repos/{org_repo}/contents/package.json",
            headers=headers,
            timeout=10.0,
        )
        response.raise_for_status()
        content = base64.b64decode(response.json()["content"]).decode()
        return detect_port(json.loads(content))
    except Exception as e:
        logger.info(f"Using default port {DEFAULT_PORT} for {repo_url}: {e}")
        return DEFAULT_PORT
