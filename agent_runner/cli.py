"""Agent Runner CLI - command-line interface for the Agent Runner API."""

from pathlib import Path

import httpx
import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from agent_runner.services.api_client import ApiClientService
from agent_runner.services.git import GitError, GitService

# Load .env file from project root
load_dotenv(Path(__file__).parent.parent / ".env")

app = typer.Typer(help="Agent Runner CLI")
task_app = typer.Typer(help="Task management commands")
app.add_typer(task_app, name="task")

console = Console()

STATUS_STYLES = {
    "pending": "dim",
    "processing": "yellow",
    "completed": "green",
    "error": "red",
    "stopped": "magenta",
}


def _fail(error: httpx.HTTPStatusError) -> None:
    try:
        detail = error.response.json().get("detail")
    except ValueError:
        detail = error.response.text
    if isinstance(detail, dict):
        detail = detail.get("message", detail)
    console.print(f"[red]✗[/red] {error.response.status_code}: {detail}")
    raise typer.Exit(1)


def _status(status: str) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


@task_app.command("create")
def create_task(
    prompt: str = typer.Argument(..., help="What the agent should change"),
    repo: str = typer.Option(
        None, "--repo", help="Repository URL or org/name (defaults to current git repo)"
    ),
    agent: str = typer.Option("claude", "--agent", "-a", help="Agent CLI to run"),
    model: str = typer.Option(None, "--model", "-m", help="Model override"),
    install: bool = typer.Option(
        False, "--install/--no-install", help="Install project dependencies"
    ),
    max_duration: int = typer.Option(None, "--max-duration", help="Minutes"),
    keep_alive: bool = typer.Option(
        False, "--keep-alive", help="Keep the sandbox running for follow-ups"
    ),
):
    """Create a new task."""
    try:
        repo_url = (
            GitService.normalize_repo_url(repo) if repo else GitService.get_current_repo()[0]
        )
    except (GitError, ValueError) as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(1) from e

    try:
        task = ApiClientService.create_task(
            prompt,
            repo_url,
            selected_agent=agent,
            selected_model=model,
            install_dependencies=install,
            max_duration=max_duration,
            keep_alive=keep_alive,
        )
    except httpx.HTTPStatusError as e:
        _fail(e)

    console.print(f"[green]✓[/green] Task created: [bold]{task['id']}[/bold]")
    console.print(f"  Status: {_status(task['status'])}")
    console.print(f"  Repository: {task['repo_url']}")
    console.print(f"  Agent: {task['selected_agent']}")


@task_app.command("continue")
def continue_task(
    task_id: str = typer.Argument(..., help="Task ID"),
    message: str = typer.Argument(..., help="Follow-up message"),
):
    """Send a follow-up message to a finished task."""
    try:
        ApiClientService.continue_task(task_id, message)
    except httpx.HTTPStatusError as e:
        _fail(e)
    console.print(f"[green]✓[/green] Follow-up queued for [bold]{task_id}[/bold]")


@task_app.command("stop")
def stop_task(task_id: str = typer.Argument(..., help="Task ID")):
    """Stop a running task."""
    try:
        task = ApiClientService.stop_task(task_id)
    except httpx.HTTPStatusError as e:
        _fail(e)
    console.print(f"Task {task_id}: {_status(task['status'])}")


@task_app.command("pr")
def create_pull_request(
    task_id: str = typer.Argument(..., help="Task ID"),
    title: str = typer.Option(None, "--title", help="Defaults to the task title"),
    base: str = typer.Option("main", "--base", help="Branch to merge into"),
):
    """Open a pull request from the task branch."""
    try:
        data = ApiClientService.create_pull_request(task_id, title=title, base_branch=base)
    except httpx.HTTPStatusError as e:
        _fail(e)

    if data["already_exists"]:
        console.print(f"Pull request #{data['pr_number']} already exists")
    else:
        console.print(f"[green]✓[/green] Opened pull request #{data['pr_number']}")
    console.print(f"  {data['pr_url']}")


@task_app.command("stop-sandbox")
def stop_sandbox(task_id: str = typer.Argument(..., help="Task ID")):
    """Shut down a kept-alive sandbox."""
    try:
        ApiClientService.stop_sandbox(task_id)
    except httpx.HTTPStatusError as e:
        _fail(e)
    console.print(f"[green]✓[/green] Sandbox for {task_id} stopped")


@task_app.command("list")
def list_tasks(
    limit: int = typer.Option(10, "--limit", "-n", help="Number of tasks to show"),
):
    """List recent tasks."""
    data = ApiClientService.list_tasks(limit=limit)
    tasks = data["tasks"]

    if not tasks:
        console.print("[yellow]No tasks found[/yellow]")
        return

    table = Table(title=f"Recent Tasks (showing {len(tasks)} of {data['total']})")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Progress", justify="right")
    table.add_column("Title", style="white")
    table.add_column("Created", style="dim")

    for task in tasks:
        title = task["title"] or task["prompt"]
        if len(title) > 50:
            title = title[:50] + "..."
        table.add_row(
            task["id"],
            _status(task["status"]),
            f"{task['progress']}%",
            title,
            task["created_at"][:10],
        )

    console.print(table)


@task_app.command("get")
def get_task(task_id: str = typer.Argument(..., help="Task ID")):
    """Get task details."""
    try:
        task = ApiClientService.get_task(task_id)
    except httpx.HTTPStatusError as e:
        _fail(e)

    console.print(f"[bold]Task {task['id']}[/bold]")
    if task.get("title"):
        console.print(f"  Title: {task['title']}")
    console.print(f"  Status: {_status(task['status'])} ({task['progress']}%)")
    if task.get("status_message"):
        console.print(f"  Step: {task['status_message']}")
    console.print(f"  Repository: {task['repo_url']}")
    console.print(f"  Agent: {task['selected_agent']}")
    if task.get("branch_name"):
        console.print(f"  Branch: [cyan]{task['branch_name']}[/cyan]")
    if task.get("sandbox_url"):
        console.print(f"  Sandbox: {task['sandbox_url']}")
    if task.get("pr_url"):
        console.print(f"  Pull request: {task['pr_url']}")
    console.print(f"  Created: {task['created_at']}")

    console.print(f"\n[bold]Prompt:[/bold]\n{task['prompt']}")

    if task.get("error"):
        console.print(f"\n[bold red]Error:[/bold red]\n{task['error']}")


@task_app.command("logs")
def get_logs(
    task_id: str = typer.Argument(..., help="Task ID"),
    limit: int = typer.Option(100, "--limit", "-n", help="Number of entries"),
):
    """Show task execution logs."""
    try:
        data = ApiClientService.get_task_logs(task_id, limit=limit)
    except httpx.HTTPStatusError as e:
        _fail(e)

    if not data["logs"]:
        console.print("[yellow]No logs found[/yellow]")
        return

    styles = {"command": "cyan", "error": "red", "success": "green", "info": "white"}
    for entry in data["logs"]:
        style = styles.get(entry["type"], "white")
        console.print(f"[dim]{entry['created_at'][11:19]}[/dim] [{style}]{entry['message']}[/{style}]")


@task_app.command("wait")
def wait_task(
    task_id: str = typer.Argument(..., help="Task ID"),
    timeout: int = typer.Option(600, "--timeout", "-t", help="Timeout in seconds"),
):
    """Wait for a task to finish."""
    try:
        task = ApiClientService.wait_for_task(task_id, timeout=timeout)
    except TimeoutError as e:
        console.print(f"[red]✗[/red] Timeout after {timeout}s")
        raise typer.Exit(1) from e

    if task["status"] == "completed":
        console.print("[green]✓[/green] Task completed")
        if task.get("branch_name"):
            console.print(f"  Branch: [cyan]{task['branch_name']}[/cyan]")
        return

    console.print(f"[red]✗[/red] Task {task['status']}")
    if task.get("error"):
        console.print(f"  {task['error']}")
    raise typer.Exit(1)


if __name__ == "__main__":
    app()
