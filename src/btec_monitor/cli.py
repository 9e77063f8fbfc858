"""Command-line interface for btec-monitor."""

import asyncio
import functools
import json
import logging
import sys
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .client import GenerationClient
from .config import ConfigManager, TrackerConfig, apply_cli_overrides
from .errors import TrackerError
from .monitor import Monitor
from .tracker import JobTracker

console = Console()


def setup_logging(verbose: bool = False):
    """Configure logging with rich handler."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[
            RichHandler(console=console, rich_tracebacks=True, show_path=False, show_time=False)
        ],
    )


def connection_options(f):
    """Options shared by every command that talks to the service."""

    @click.option("--api-url", help="Generation service base URL")
    @click.option("--ws-url", help="Push channel WebSocket URL")
    @click.option("--token", help="Bearer token")
    @click.option("--no-verify-ssl", is_flag=True, help="Skip SSL verification")
    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        return f(*args, **kwargs)

    return wrapper


def build_config(
    ctx,
    api_url: Optional[str],
    ws_url: Optional[str],
    token: Optional[str],
    no_verify_ssl: bool,
    **extra,
) -> TrackerConfig:
    config = apply_cli_overrides(
        ctx.obj,
        api_url=api_url,
        ws_url=ws_url,
        token=token,
        verify_ssl=False if no_verify_ssl else None,
        **extra,
    )
    return TrackerConfig.from_dict(config)


def run_or_exit(coro):
    """Run a coroutine, turning service errors into a red message and exit 1."""
    try:
        return asyncio.run(coro)
    except TrackerError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@click.group()
@click.option("--config", type=click.Path(exists=True), help="Configuration file")
@click.option("--verbose", is_flag=True, help="Enable verbose logging")
@click.pass_context
def main(ctx, config: Optional[str], verbose: bool):
    """btec-monitor - Follow BTEC assignment generation jobs."""
    setup_logging(verbose)
    ctx.obj = ConfigManager.find_config("monitor", config) or {}


@main.command()
@connection_options
@click.pass_context
def assignments(ctx, api_url, ws_url, token, no_verify_ssl):
    """List assignments and their current jobs."""
    config = build_config(ctx, api_url, ws_url, token, no_verify_ssl)

    async def fetch():
        async with GenerationClient(config) as client:
            return await client.list_assignments()

    items = run_or_exit(fetch())

    table = Table(title="Assignments")
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    table.add_column("Level")
    table.add_column("Grade")
    table.add_column("Status", style="green")
    table.add_column("Job")
    for a in items:
        table.add_row(
            a.id, a.title, str(a.level), a.target_grade.value, a.status.value, a.current_job_id or "-"
        )
    console.print(table)


@main.command()
@click.argument("assignment_id")
@connection_options
@click.pass_context
def start(ctx, assignment_id: str, api_url, ws_url, token, no_verify_ssl):
    """Start generation for a DRAFT assignment."""
    config = build_config(ctx, api_url, ws_url, token, no_verify_ssl)

    async def start_generation():
        async with GenerationClient(config) as client:
            tracker = JobTracker(client, assignment_id, config)
            return await tracker.start_generation()

    job_id = run_or_exit(start_generation())
    console.print(f"[green]✓ Generation started[/green] job {job_id}")
    console.print(f"[cyan]Follow it with:[/cyan] btec-monitor watch {assignment_id}")


@main.command()
@click.argument("job_id")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
@connection_options
@click.pass_context
def status(ctx, job_id: str, as_json: bool, api_url, ws_url, token, no_verify_ssl):
    """Show a generation job's status."""
    config = build_config(ctx, api_url, ws_url, token, no_verify_ssl)

    async def fetch():
        async with GenerationClient(config) as client:
            return await client.get_status(job_id)

    job = run_or_exit(fetch())

    if as_json:
        click.echo(
            json.dumps(
                {
                    "jobId": job.job_id,
                    "status": job.status.value,
                    "currentStage": job.current_stage,
                    "progress": job.progress,
                    "currentWordCount": job.current_word_count,
                    "targetWordCount": job.target_word_count,
                    "errorMessage": job.error_message,
                },
                indent=2,
            )
        )
        return

    console.print(f"[green]Job:[/green] {job.job_id}")
    console.print(f"[green]Status:[/green] {job.status.value}")
    console.print(f"[green]Stage:[/green] {job.current_stage or '-'}")
    console.print(f"[green]Progress:[/green] {job.progress}%")
    console.print(f"[green]Words:[/green] {job.current_word_count:,} / {job.target_word_count:,}")
    if job.error_message:
        console.print(f"[red]Error:[/red] {job.error_message}")


def _control(ctx, action: str, job_id: str, api_url, ws_url, token, no_verify_ssl):
    config = build_config(ctx, api_url, ws_url, token, no_verify_ssl)

    async def send():
        async with GenerationClient(config) as client:
            await getattr(client, action)(job_id)

    run_or_exit(send())
    console.print(f"[green]✓ {action.capitalize()} requested for job {job_id}[/green]")


@main.command()
@click.argument("job_id")
@connection_options
@click.pass_context
def pause(ctx, job_id: str, api_url, ws_url, token, no_verify_ssl):
    """Pause a running job."""
    _control(ctx, "pause", job_id, api_url, ws_url, token, no_verify_ssl)


@main.command()
@click.argument("job_id")
@connection_options
@click.pass_context
def resume(ctx, job_id: str, api_url, ws_url, token, no_verify_ssl):
    """Resume a paused job."""
    _control(ctx, "resume", job_id, api_url, ws_url, token, no_verify_ssl)


@main.command()
@click.argument("job_id")
@connection_options
@click.pass_context
def cancel(ctx, job_id: str, api_url, ws_url, token, no_verify_ssl):
    """Cancel a job."""
    _control(ctx, "cancel", job_id, api_url, ws_url, token, no_verify_ssl)


@main.command()
@click.argument("job_id")
@connection_options
@click.pass_context
def retry(ctx, job_id: str, api_url, ws_url, token, no_verify_ssl):
    """Re-queue a failed job."""
    _control(ctx, "retry", job_id, api_url, ws_url, token, no_verify_ssl)


@main.command()
@click.argument("assignment_id")
@click.option("--no-auto-refresh", is_flag=True, help="Disable the job status refresh loop")
@connection_options
@click.pass_context
def watch(ctx, assignment_id: str, no_auto_refresh: bool, api_url, ws_url, token, no_verify_ssl):
    """Start the monitoring TUI for an assignment."""
    config = build_config(
        ctx,
        api_url,
        ws_url,
        token,
        no_verify_ssl,
        auto_refresh=False if no_auto_refresh else None,
    )
    monitor = Monitor(config, assignment_id)

    try:
        destination = run_or_exit(monitor.start())
    except KeyboardInterrupt:
        console.print("\n[yellow]Closing monitor...[/yellow]")
        return

    if destination == "review":
        console.print(f"[green]✓ Assignment {assignment_id} is ready for review[/green]")
    elif destination == "dashboard":
        console.print("[yellow]Returning to dashboard[/yellow]")


if __name__ == "__main__":
    main()
