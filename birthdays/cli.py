"""
Birthdays CLI - Command line interface for running jobs.

Usage:
    birthdays --help                 Show all commands
    birthdays scan                   Run the daily scan for today (UTC)
    birthdays scan --date 2025-01-01 Run the scan for a given UTC day
    birthdays dispatch               Run one dispatch pass
    birthdays timezone-check Asia/Tokyo 2025-01-01
    birthdays serve --reload         Start the API server
"""

import asyncio
from datetime import datetime

import typer

app = typer.Typer(
    name="birthdays",
    help="Birthdays CLI - Job runner for birthday greetings",
    no_args_is_help=True,
)


def _print_error(message: str) -> None:
    """Print an error message to stderr."""
    typer.echo(f"❌ {message}", err=True)


def _parse_date(value: str):
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        _print_error(f"Invalid date: {value} (expected YYYY-MM-DD)")
        raise typer.Exit(code=2) from None


@app.command()
def scan(
    date: str | None = typer.Option(None, "--date", "-d", help="UTC day to scan (YYYY-MM-DD)"),
):
    """Run the daily scan (schedule today's birthday messages)."""
    from birthdays.jobs.scan import main

    asyncio.run(main(scan_date=_parse_date(date) if date else None))


@app.command()
def dispatch(
    concurrency: int | None = typer.Option(
        None, "--concurrency", "-c", min=1, help="Concurrent deliveries"
    ),
):
    """Run one dispatch pass (deliver due messages)."""
    from birthdays.jobs.dispatch import main

    asyncio.run(main(concurrency=concurrency))


@app.command("timezone-check")
def timezone_check(
    timezone: str = typer.Argument(..., help="IANA timezone, e.g. Asia/Tokyo"),
    date: str = typer.Argument(..., help="Birthday (YYYY-MM-DD)"),
):
    """Show the UTC dispatch instant for a birthday in a timezone."""
    from birthdays.core.datetime_utils import resolve_dispatch_instant
    from birthdays.core.exceptions import InvalidTimezone

    try:
        dispatch_at = resolve_dispatch_instant(_parse_date(date), timezone)
    except InvalidTimezone as e:
        _print_error(str(e))
        raise typer.Exit(code=1) from None

    typer.echo(f"{dispatch_at:%Y-%m-%d %H:%M:%S} UTC")


@app.command()
def serve(
    reload: bool = typer.Option(False, "--reload", "-r", help="Enable auto-reload"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to run on"),
):
    """Start the API server (the scheduler runs inside it)."""
    import uvicorn

    uvicorn.run("birthdays.main:app", host="0.0.0.0", port=port, reload=reload)


if __name__ == "__main__":
    app()
