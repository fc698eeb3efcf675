"""Command-line interface for Timebox."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import typer

from timebox import FocusService, InvalidTransition, ActivityNotFound, load_settings, write_default_settings
from timebox.workspace import log_path, workspace_root

app = typer.Typer(help="Timeboxed focus sessions and scheduled activities.")


def setup_logging(root: Path, level: str, to_stdout: bool = False) -> None:
    """Log to timebox.log in the workspace, and to stdout while serving."""
    root.mkdir(parents=True, exist_ok=True)
    handlers: list[logging.Handler] = [logging.FileHandler(str(log_path(root)))]
    if to_stdout:
        handlers.append(logging.StreamHandler(sys.stdout))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        handlers=handlers,
        force=True,
    )


def _root(root: Optional[Path]) -> Path:
    return root.expanduser().resolve() if root else workspace_root()


def _service(root: Path) -> FocusService:
    settings = load_settings(root)
    setup_logging(root, settings.log_level)
    return FocusService(root=root, settings=settings)


async def _run_and_flush(service: FocusService, call):
    try:
        return await call
    finally:
        await service.flush()


RootOption = typer.Option(None, "--root", path_type=Path, help="Workspace directory (defaults to $TIMEBOX_ROOT).")


@app.command()
def init(root: Optional[Path] = RootOption) -> None:
    """Create timebox.yaml with default settings."""
    path = write_default_settings(_root(root))
    typer.echo(f"Settings: {path}")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind the API."),
    port: int = typer.Option(8770, "--port", min=1, max=65535, help="TCP port for the API."),
    root: Optional[Path] = RootOption,
) -> None:
    """Run the timer, the monitor and the control API until interrupted."""
    import uvicorn

    from api.app import create_app

    workspace = _root(root)
    settings = load_settings(workspace)
    setup_logging(workspace, settings.log_level, to_stdout=True)
    service = FocusService(root=workspace, settings=settings)
    uvicorn.run(create_app(service), host=host, port=port, log_level=settings.log_level.lower())


@app.command()
def add(
    title: str = typer.Argument(..., help="What you will work on."),
    start: str = typer.Option(..., "--start", help="Planned start, ISO 8601 (e.g. 2026-03-01T09:00)."),
    minutes: int = typer.Option(25, "--minutes", min=1, help="Planned duration in minutes."),
    task_type: str = typer.Option("work", "--type", help="Free-form category."),
    root: Optional[Path] = RootOption,
) -> None:
    """Schedule a new activity."""
    service = _service(_root(root))
    data = {"title": title, "plannedStart": start, "plannedDurationMinutes": minutes, "taskType": task_type}
    activity, errors = asyncio.run(_run_and_flush(service, service.create_activity(data)))
    if errors:
        for error in errors:
            typer.echo(f"Error: {error}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Scheduled {activity.id}: {activity.title} at {activity.planned_start.isoformat()}")


@app.command("list")
def list_command(
    status: Optional[str] = typer.Option(None, "--status", help="Only show activities with this status."),
    root: Optional[Path] = RootOption,
) -> None:
    """List activities by planned start."""
    service = _service(_root(root))
    items = asyncio.run(service.list_activities(status))
    if not items:
        typer.echo("No activities.")
        return
    for a in items:
        typer.echo(
            f"{a.id}  {a.planned_start.strftime('%Y-%m-%d %H:%M')}  "
            f"{a.planned_duration_minutes:>4}m  {a.status:<10} {a.title}"
        )


@app.command()
def cancel(
    activity_id: str = typer.Argument(..., help="Activity id."),
    root: Optional[Path] = RootOption,
) -> None:
    """Cancel a scheduled activity."""
    service = _service(_root(root))
    try:
        activity = asyncio.run(_run_and_flush(service, service.cancel_activity(activity_id)))
    except (ActivityNotFound, InvalidTransition) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Cancelled {activity.id}: {activity.title}")


@app.command()
def remove(
    activity_id: str = typer.Argument(..., help="Activity id."),
    root: Optional[Path] = RootOption,
) -> None:
    """Delete an activity record."""
    service = _service(_root(root))
    try:
        deleted = asyncio.run(_run_and_flush(service, service.delete_activity(activity_id)))
    except InvalidTransition as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)
    if not deleted:
        typer.echo(f"Error: Activity not found: {activity_id}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Removed {activity_id}")


if __name__ == "__main__":
    app()
