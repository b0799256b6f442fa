"""Command-line interface for teamsync support operations."""

import asyncio
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from teamsync.api.v1.webhooks import cleanup_old_events
from teamsync.circle.gateway import CircleGateway
from teamsync.errors import TeamError
from teamsync.logging_config import configure_logging, get_logger
from teamsync.settings import settings
from teamsync.storage.db import db
from teamsync.teams.dashboard import DashboardService
from teamsync.teams.invites import InviteService
from teamsync.teams.sync import StatusSyncService

# Configure logging
configure_logging()
logger = get_logger(__name__)

# Create Typer app
app = typer.Typer(
    name="teamsync",
    help="teamsync - Team subscriptions, seats and Circle access",
    no_args_is_help=True,
)

# Rich console for pretty output
console = Console()


@app.command("init")
def init_database() -> None:
    """Initialize the database and create tables."""
    console.print("[bold blue]Initializing database...[/bold blue]")
    db.create_tables()
    console.print("[bold green]✓[/bold green] Database initialized successfully")


@app.command("sync")
def sync_team(
    team_id: Annotated[int, typer.Argument(help="Team ID to sync")],
) -> None:
    """Sync invite status for a team's pending members with Circle."""
    service = StatusSyncService(CircleGateway(), db)
    try:
        updated = asyncio.run(service.sync_team(team_id))
    except TeamError as e:
        console.print(f"[bold red]✗[/bold red] {e.message}")
        raise typer.Exit(1)

    console.print(f"[bold green]✓[/bold green] {updated} member(s) updated")


@app.command("remove-member")
def remove_member(
    team_id: Annotated[int, typer.Argument(help="Team ID")],
    email: Annotated[str, typer.Argument(help="Member email")],
) -> None:
    """Remove a member from a team and degrade their Circle access."""
    service = InviteService(CircleGateway(), db)
    try:
        asyncio.run(service.revoke(team_id, email))
    except TeamError as e:
        console.print(f"[bold red]✗[/bold red] {e.message}")
        raise typer.Exit(1)

    console.print(f"[bold green]✓[/bold green] Removed {email} from team {team_id}")


@app.command("dashboard")
def show_dashboard(
    email: Annotated[str, typer.Argument(help="Team leader email")],
) -> None:
    """Show the active teams led by an email."""
    try:
        teams = DashboardService(db).teams_for_leader(email)
    except TeamError as e:
        console.print(f"[yellow]{e.message}[/yellow]")
        raise typer.Exit(1)

    for team in teams:
        console.print(
            f"[bold]Team {team['id']}[/bold] ({team['access_type']}, {team['invite_mode']}) "
            f"seats {team['seats_used']}/{team['seat_limit']}"
        )
        console.print(f"  Invite link: {team['invite_link'] or 'N/A'}")

        table = Table()
        table.add_column("Email", style="green")
        table.add_column("Invite status")
        table.add_column("Joined")
        for member in team["members"]:
            table.add_row(member["email"], member["invite_status"], member["joined_at"] or "N/A")
        console.print(table)


@app.command("tags")
def list_tags() -> None:
    """List the Circle community's member tags."""
    tags = asyncio.run(CircleGateway().list_tags())
    if tags is None:
        console.print("[bold red]✗[/bold red] Could not reach Circle")
        raise typer.Exit(1)

    table = Table(title="Circle member tags")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="green")
    for tag in tags:
        table.add_row(str(tag["id"]), tag["name"] or "")
    console.print(table)


@app.command("cleanup-events")
def cleanup_events(
    days: Annotated[int, typer.Option("--days", "-d", help="Days of webhook history to keep")] = settings.webhook_event_retention_days,
) -> None:
    """Purge processed webhook event records older than ``days``."""
    deleted = cleanup_old_events(db, days=days)
    console.print(f"[bold green]✓[/bold green] Deleted {deleted} webhook event record(s)")


if __name__ == "__main__":
    app()
