#!/usr/bin/env python3
"""
Devlog CLI Tool
Part of the Dashboard API Service

Command line client for the dashboard API: sync commits, manage
repositories, draft summaries and publish posts.
"""

import asyncio
import json
import sys
from typing import Any, Dict, Optional

import click
import httpx
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.text import Text

from config.settings import get_settings

console = Console()


class DevlogAPIError(Exception):
    """The API answered with an error body or could not be reached."""


class DevlogCLI:
    """HTTP client for the dashboard API."""

    def __init__(self, base_url: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        settings = get_settings()
        self.base_url = (base_url or f"http://localhost:{settings.service.port}").rstrip("/")
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=float(settings.service.request_timeout),
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self.client.request(method, f"/api{path}", **kwargs)
        except httpx.ConnectError:
            raise DevlogAPIError(f"Could not connect to the dashboard API at {self.base_url}. Is it running?")

        try:
            data = response.json()
        except ValueError:
            data = None

        if response.status_code >= 400:
            message = data.get("error") if isinstance(data, dict) else None
            raise DevlogAPIError(f"API Error ({response.status_code}): {message or response.text or 'Unknown error'}")
        return data

    async def sync(self) -> Dict[str, Any]:
        return await self._request("POST", "/sync")

    async def list_repositories(self):
        return await self._request("GET", "/repositories")

    async def add_repository(self, owner: str, name: str, description: Optional[str] = None):
        payload = {"owner": owner, "name": name}
        if description:
            payload["description"] = description
        return await self._request("POST", "/repositories", json=payload)

    async def stats(self) -> Dict[str, Any]:
        return await self._request("GET", "/dashboard/stats")

    async def generate_summary(self, since: Optional[str] = None, save_draft: bool = False):
        payload: Dict[str, Any] = {"saveDraft": save_draft}
        if since:
            payload["sinceDate"] = since
        return await self._request("POST", "/generate-summary", json=payload)

    async def publish(self, post_id: int) -> Dict[str, Any]:
        return await self._request("POST", f"/publish/{post_id}")

    async def health(self) -> Dict[str, Any]:
        try:
            response = await self.client.get("/api/health")
        except httpx.ConnectError:
            raise DevlogAPIError(f"Could not connect to the dashboard API at {self.base_url}. Is it running?")
        return {"status_code": response.status_code, **response.json()}


def display_sync_result(result: Dict[str, Any]):
    content = (
        f"📦 Repositories processed: {result.get('repositoriesProcessed', 0)}\n"
        f"🆕 New commits: {result.get('newCommits', 0)}"
    )
    errors = result.get("errors") or []
    style = "yellow" if errors else "green"
    console.print(Panel(content, title=Text("🔄 Sync Complete", style=f"bold {style}"), border_style=style))
    for error in errors:
        console.print(f"[yellow]⚠️  {error}[/yellow]")


def display_repositories(repositories):
    if not repositories:
        console.print(Panel("No repositories registered.", title="📁 Repositories"))
        return

    table = Table(title="📁 Repositories", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="cyan", width=6)
    table.add_column("Repository", style="green")
    table.add_column("Active", style="yellow", width=8)
    table.add_column("Last Sync", style="blue", width=20)

    for repo in repositories:
        table.add_row(
            str(repo.get("id", "N/A")),
            f"{repo.get('owner')}/{repo.get('name')}",
            "yes" if repo.get("isActive") else "no",
            (repo.get("lastSyncTime") or "never")[:19],
        )
    console.print(table)


def display_stats(stats: Dict[str, Any]):
    content = f"""
    📁 Active repositories: {stats.get('activeRepos', 0)}
    🆕 Commits this week: {stats.get('newCommits', 0)}
    📰 Posts published: {stats.get('postsPublished', 0)}
    🤖 AI tokens used: {stats.get('aiUsage', 0)}
    """
    console.print(Panel(content, title=Text("📊 Dashboard", style="bold blue"), border_style="blue"))


def display_summary(summary: Dict[str, Any]):
    console.print(Panel(summary.get("content") or "(empty)", title=summary.get("title", "Summary"), border_style="green"))
    if summary.get("summary"):
        console.print(f"[bold]Summary:[/bold] {summary['summary']}")
    console.print(f"[dim]Tags: {', '.join(summary.get('tags', []))} | Tokens: {summary.get('tokensUsed', 0)}[/dim]")
    if summary.get("postId") is not None:
        console.print(f"[green]✅ Saved as draft #{summary['postId']}[/green]")


@click.group()
@click.version_option(version="1.0.0")
@click.option("--api-url", envvar="DEVLOG_API_URL", default=None, help="Dashboard API base URL")
@click.pass_context
def cli(ctx, api_url: Optional[str]):
    """Devlog CLI - Sync commits and publish devlogs to Hive."""
    ctx.ensure_object(dict)
    ctx.obj["api_url"] = api_url


def _run(coro_factory):
    async def run():
        try:
            await coro_factory()
        except Exception as e:
            console.print(f"[red]❌ Error: {str(e)}[/red]")
            sys.exit(1)

    asyncio.run(run())


@cli.command()
@click.pass_context
def sync(ctx):
    """Sync commits from all active repositories."""
    async def run():
        async with DevlogCLI(ctx.obj["api_url"]) as client:
            with Progress(SpinnerColumn(), TextColumn("[progress.description]{task.description}"), console=console) as progress:
                task = progress.add_task("Syncing commits...", total=None)
                result = await client.sync()
                progress.update(task, completed=True)
            display_sync_result(result)

    _run(run)


@cli.command()
@click.pass_context
def repos(ctx):
    """List registered repositories."""
    async def run():
        async with DevlogCLI(ctx.obj["api_url"]) as client:
            display_repositories(await client.list_repositories())

    _run(run)


@cli.command("add-repo")
@click.argument("full_name")
@click.option("--description", "-d", help="Repository description")
@click.pass_context
def add_repo(ctx, full_name: str, description: Optional[str]):
    """Register a repository given as OWNER/NAME."""
    owner, _, name = full_name.partition("/")
    if not owner or not name:
        console.print("[red]❌ Error: repository must be given as OWNER/NAME[/red]")
        sys.exit(1)

    async def run():
        async with DevlogCLI(ctx.obj["api_url"]) as client:
            repo = await client.add_repository(owner, name, description)
            console.print(f"[green]✅ Registered {repo['owner']}/{repo['name']} (id {repo['id']})[/green]")

    _run(run)


@cli.command()
@click.pass_context
def stats(ctx):
    """Show dashboard statistics."""
    async def run():
        async with DevlogCLI(ctx.obj["api_url"]) as client:
            display_stats(await client.stats())

    _run(run)


@cli.command()
@click.option("--since", "-s", help="ISO date to start from (default: 7 days ago)")
@click.option("--save", is_flag=True, help="Store the result as a draft post")
@click.option("--json-output", is_flag=True, help="Print the raw JSON response")
@click.pass_context
def summary(ctx, since: Optional[str], save: bool, json_output: bool):
    """Generate a devlog summary from recent commits."""
    async def run():
        async with DevlogCLI(ctx.obj["api_url"]) as client:
            result = await client.generate_summary(since, save)
            if json_output:
                console.print(json.dumps(result, indent=2))
            else:
                display_summary(result)

    _run(run)


@cli.command()
@click.argument("post_id", type=int)
@click.pass_context
def publish(ctx, post_id: int):
    """Publish a stored post to Hive."""
    async def run():
        async with DevlogCLI(ctx.obj["api_url"]) as client:
            result = await client.publish(post_id)
            console.print(f"[green]✅ Published: {result.get('postUrl')}[/green]")

    _run(run)


@cli.command()
@click.pass_context
def health(ctx):
    """Check the status of the dashboard API."""
    async def run():
        async with DevlogCLI(ctx.obj["api_url"]) as client:
            data = await client.health()
            if data.get("status_code") == 200:
                console.print("[green]✅ Dashboard API is running[/green]")
            else:
                console.print("[red]❌ Dashboard API is unhealthy[/red]")
            for service, state in (data.get("services") or {}).items():
                console.print(f"[dim]{service}: {state}[/dim]")
            for warning in (data.get("configuration") or {}).get("warnings", []):
                console.print(f"[yellow]⚠️  {warning}[/yellow]")
            if data.get("status_code") != 200:
                sys.exit(1)

    _run(run)


if __name__ == "__main__":
    cli()
