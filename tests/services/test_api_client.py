"""Tests for ApiClientService."""

import os

import httpx
import pytest

from agent_runner.services.api_client import ApiClientService

TASK = {
    "id": "abcdefghijkl",
    "prompt": "Test prompt",
    "repo_url": "https://github.com/test/repo.git",
    "status": "pending",
}


def _response(mocker, json_data=None, status_code=200):
    response = mocker.Mock()
    response.status_code = status_code
    response.json.return_value = json_data
    response.raise_for_status.return_value = None
    return response


@pytest.fixture
def mock_client(mocker):
    client = mocker.Mock(spec=httpx.Client)
    mocker.patch.object(ApiClientService, "get_client", return_value=client)
    return client


def test_get_client_default_values(mocker):
    """Test get_client with default values from environment."""
    mocker.patch.dict(
        os.environ,
        {
            "AGENT_RUNNER_URL": "http://test.example.com",
            "API_SECRET_KEY": "test-key",
            "AGENT_RUNNER_USER_ID": "alice",
        },
    )

    client = ApiClientService.get_client()

    assert isinstance(client, httpx.Client)
    assert str(client.base_url) == "http://test.example.com"
    assert client.headers["X-API-Key"] == "test-key"
    assert client.headers["X-User-Id"] == "alice"
    assert client.timeout.read == 30.0
    client.close()


def test_get_client_with_explicit_values():
    """Test get_client with explicitly provided values."""
    client = ApiClientService.get_client(
        base_url="http://custom.example.com", api_key="custom-key", user_id="bob"
    )

    assert str(client.base_url) == "http://custom.example.com"
    assert client.headers["X-API-Key"] == "custom-key"
    assert client.headers["X-User-Id"] == "bob"
    client.close()


def test_get_client_fallback_defaults(mocker):
    """Test get_client falls back to defaults when env vars not set."""
    mocker.patch.dict(os.environ, {"API_SECRET_KEY": ""})
    os.environ.pop("AGENT_RUNNER_URL", None)
    os.environ.pop("AGENT_RUNNER_USER_ID", None)

    client = ApiClientService.get_client()

    assert str(client.base_url) == "http://localhost:8000"
    assert client.headers["X-User-Id"] == "cli"
    client.close()


def test_create_task_success(mocker, mock_client):
    """Test creating a task successfully."""
    mock_client.request.return_value = _response(mocker, TASK, status_code=201)

    task = ApiClientService.create_task(
        prompt="Test prompt",
        repo_url="https://github.com/test/repo.git",
        selected_agent="codex",
        max_duration=20,
    )

    assert task["id"] == "abcdefghijkl"
    mock_client.request.assert_called_once_with(
        "POST",
        "/v1/tasks",
        json={
            "prompt": "Test prompt",
            "repo_url": "https://github.com/test/repo.git",
            "selected_agent": "codex",
            "install_dependencies": False,
            "keep_alive": False,
            "max_duration": 20,
        },
    )
    mock_client.close.assert_called_once()


def test_create_task_with_provided_client(mocker):
    """A caller-supplied client is used and left open."""
    client = mocker.Mock(spec=httpx.Client)
    client.request.return_value = _response(mocker, TASK, status_code=201)

    ApiClientService.create_task("Test prompt", "https://github.com/test/repo.git", client=client)

    client.request.assert_called_once()
    client.close.assert_not_called()


def test_create_task_http_error(mocker, mock_client):
    """Test create_task surfaces HTTP errors such as 429."""
    response = _response(mocker, {"detail": {"message": "limit"}}, status_code=429)
    response.raise_for_status.side_effect = httpx.HTTPStatusError(
        "429 Too Many Requests", request=mocker.Mock(), response=response
    )
    mock_client.request.return_value = response

    with pytest.raises(httpx.HTTPStatusError):
        ApiClientService.create_task("Test prompt", "https://github.com/test/repo.git")
    mock_client.close.assert_called_once()


def test_continue_task(mocker, mock_client):
    mock_client.request.return_value = _response(
        mocker, {"id": "m1", "role": "user", "content": "More"}, status_code=202
    )

    ApiClientService.continue_task("abcdefghijkl", "More")

    mock_client.request.assert_called_once_with(
        "POST", "/v1/tasks/abcdefghijkl/continue", json={"message": "More"}
    )


def test_stop_task(mocker, mock_client):
    mock_client.request.return_value = _response(mocker, {**TASK, "status": "stopped"})

    assert ApiClientService.stop_task("abcdefghijkl")["status"] == "stopped"
    mock_client.request.assert_called_once_with("POST", "/v1/tasks/abcdefghijkl/stop")


def test_create_pull_request(mocker, mock_client):
    mock_client.request.return_value = _response(
        mocker,
        {"pr_url": "https://github.com/test/repo/pull/3", "pr_number": 3, "already_exists": False},
    )

    data = ApiClientService.create_pull_request("abcdefghijkl", title="Add tests")

    assert data["pr_number"] == 3
    mock_client.request.assert_called_once_with(
        "POST",
        "/v1/tasks/abcdefghijkl/pr",
        json={"base_branch": "main", "title": "Add tests"},
    )


def test_create_pull_request_default_title(mocker, mock_client):
    mock_client.request.return_value = _response(mocker, {"pr_number": 3})

    ApiClientService.create_pull_request("abcdefghijkl", base_branch="develop")

    mock_client.request.assert_called_once_with(
        "POST", "/v1/tasks/abcdefghijkl/pr", json={"base_branch": "develop"}
    )


def test_stop_sandbox(mocker, mock_client):
    mock_client.request.return_value = _response(mocker, {**TASK, "sandbox_id": None})

    assert ApiClientService.stop_sandbox("abcdefghijkl")["sandbox_id"] is None
    mock_client.request.assert_called_once_with(
        "POST", "/v1/tasks/abcdefghijkl/stop-sandbox"
    )


def test_list_tasks(mocker, mock_client):
    mock_client.request.return_value = _response(mocker, {"tasks": [TASK], "total": 1})

    data = ApiClientService.list_tasks(limit=5)

    assert data["total"] == 1
    mock_client.request.assert_called_once_with(
        "GET", "/v1/tasks", params={"limit": 5, "offset": 0}
    )


def test_get_task_logs(mocker, mock_client):
    mock_client.request.return_value = _response(mocker, {"logs": [], "total": 0})

    ApiClientService.get_task_logs("abcdefghijkl", limit=10, offset=5)

    mock_client.request.assert_called_once_with(
        "GET", "/v1/tasks/abcdefghijkl/logs", params={"limit": 10, "offset": 5}
    )


def test_no_content_returns_none(mocker):
    client = mocker.Mock(spec=httpx.Client)
    client.request.return_value = _response(mocker, status_code=204)

    assert ApiClientService._request("DELETE", "/v1/tasks/x", client) is None


@pytest.mark.parametrize("status", ["completed", "error", "stopped"])
def test_wait_for_task_final_immediately(mocker, status):
    mock_get = mocker.patch.object(
        ApiClientService, "get_task", return_value={**TASK, "status": status}
    )
    mock_sleep = mocker.patch("agent_runner.services.api_client.time.sleep")

    task = ApiClientService.wait_for_task("abcdefghijkl")

    assert task["status"] == status
    mock_get.assert_called_once()
    mock_sleep.assert_not_called()


def test_wait_for_task_polling_until_completed(mocker):
    mocker.patch.object(
        ApiClientService,
        "get_task",
        side_effect=[
            {**TASK, "status": "pending"},
            {**TASK, "status": "processing"},
            {**TASK, "status": "completed"},
        ],
    )
    mock_sleep = mocker.patch("agent_runner.services.api_client.time.sleep")

    task = ApiClientService.wait_for_task("abcdefghijkl", poll_interval=2)

    assert task["status"] == "completed"
    assert mock_sleep.call_count == 2
    mock_sleep.assert_called_with(2)


def test_wait_for_task_timeout(mocker):
    mocker.patch.object(
        ApiClientService, "get_task", return_value={**TASK, "status": "processing"}
    )
    mocker.patch("agent_runner.services.api_client.time.sleep")
    mocker.patch(
        "agent_runner.services.api_client.time.time", side_effect=[0, 0, 5, 11]
    )

    with pytest.raises(TimeoutError, match="did not complete within 10s"):
        ApiClientService.wait_for_task("abcdefghijkl", timeout=10)
