"""API client service for interacting with the Agent Runner API."""

import os
import time
from typing import Any

import httpx

FINAL_STATUSES = ("completed", "error", "stopped")


class ApiClientService:
    """Service for Agent Runner API client operations."""

    @staticmethod
    def get_client(
        base_url: str | None = None,
        api_key: str | None = None,
        user_id: str | None = None,
    ) -> httpx.Client:
        """Get configured HTTP client.

        Args:
            base_url: API base URL (defaults to AGENT_RUNNER_URL or http://localhost:8000)
            api_key: API key (defaults to API_SECRET_KEY)
            user_id: Caller identity (defaults to AGENT_RUNNER_USER_ID or "cli")
        """
        if base_url is None:
            base_url = os.getenv("AGENT_RUNNER_URL", "http://localhost:8000")
        if api_key is None:
            api_key = os.getenv("API_SECRET_KEY", "")
        if user_id is None:
            user_id = os.getenv("AGENT_RUNNER_USER_ID", "cli")

        return httpx.Client(
            base_url=base_url,
            headers={"X-API-Key": api_key, "X-User-Id": user_id},
            timeout=30.0,
        )

    @staticmethod
    def _request(
        method: str, path: str, client: httpx.Client | None = None, **kwargs
    ) -> Any:
        should_close = client is None
        if client is None:
            client = ApiClientService.get_client()

        try:
            response = client.request(method, path, **kwargs)
            response.raise_for_status()
            if response.status_code == 204:
                return None
            return response.json()
        finally:
            if should_close:
                client.close()

    @staticmethod
    def create_task(
        prompt: str,
        repo_url: str,
        selected_agent: str = "claude",
        selected_model: str | None = None,
        install_dependencies: bool = False,
        max_duration: int | None = None,
        keep_alive: bool = False,
        client: httpx.Client | None = None,
    ) -> dict[str, Any]:
        """Create a new task.

        Raises:
            httpx.HTTPStatusError: If the API rejects the request (400, 429, ...)
        """
        payload: dict[str, Any] = {
            "prompt": prompt,
            "repo_url": repo_url,
            "selected_agent": selected_agent,
            "install_dependencies": install_dependencies,
            "keep_alive": keep_alive,
        }
        if selected_model is not None:
            payload["selected_model"] = selected_model
        if max_duration is not None:
            payload["max_duration"] = max_duration

        return ApiClientService._request("POST", "/v1/tasks", client, json=payload)

    @staticmethod
    def continue_task(
        task_id: str, message: str, client: httpx.Client | None = None
    ) -> dict[str, Any]:
        return ApiClientService._request(
            "POST", f"/v1/tasks/{task_id}/continue", client, json={"message": message}
        )

    @staticmethod
    def stop_task(task_id: str, client: httpx.Client | None = None) -> dict[str, Any]:
        return ApiClientService._request("POST", f"/v1/tasks/{task_id}/stop", client)

    @staticmethod
    def create_pull_request(
        task_id: str,
        title: str | None = None,
        base_branch: str = "main",
        client: httpx.Client | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"base_branch": base_branch}
        if title is not None:
            payload["title"] = title
        return ApiClientService._request(
            "POST", f"/v1/tasks/{task_id}/pr", client, json=payload
        )

    @staticmethod
    def stop_sandbox(task_id: str, client: httpx.Client | None = None) -> dict[str, Any]:
        return ApiClientService._request(
            "POST", f"/v1/tasks/{task_id}/stop-sandbox", client
        )

    @staticmethod
    def get_task(task_id: str, client: httpx.Client | None = None) -> dict[str, Any]:
        """Get task by ID.

        Raises:
            httpx.HTTPStatusError: If API request fails (e.g., 404 for not found)
        """
        return ApiClientService._request("GET", f"/v1/tasks/{task_id}", client)

    @staticmethod
    def list_tasks(
        limit: int = 10, offset: int = 0, client: httpx.Client | None = None
    ) -> dict[str, Any]:
        return ApiClientService._request(
            "GET", "/v1/tasks", client, params={"limit": limit, "offset": offset}
        )

    @staticmethod
    def get_task_logs(
        task_id: str, limit: int = 100, offset: int = 0, client: httpx.Client | None = None
    ) -> dict[str, Any]:
        return ApiClientService._request(
            "GET",
            f"/v1/tasks/{task_id}/logs",
            client,
            params={"limit": limit, "offset": offset},
        )

    @staticmethod
    def wait_for_task(
        task_id: str,
        timeout: int = 600,
        poll_interval: int = 5,
        client: httpx.Client | None = None,
    ) -> dict[str, Any]:
        """Poll until the task reaches a final status.

        Raises:
            TimeoutError: If task doesn't finish within timeout period
            httpx.HTTPStatusError: If the API returns an error
        """
        start_time = time.time()

        while True:
            if time.time() - start_time > timeout:
                raise TimeoutError(f"Task {task_id} did not complete within {timeout}s")

            task = ApiClientService.get_task(task_id, client=client)
            if task["status"] in FINAL_STATUSES:
                return task

            time.sleep(poll_interval)
