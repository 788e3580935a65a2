"""Command-line interface for refloop."""

from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from refloop.logging_config import configure_logging, get_logger
from refloop.referral.clicks import click_tracker
from refloop.referral.errors import ReferralError
from refloop.referral.leaderboard import leaderboard_builder
from refloop.referral.monthly import monthly_prize_selector
from refloop.referral.rewards import claim_processor
from refloop.settings import settings
from refloop.storage.db import db

# Configure logging
configure_logging()
logger = get_logger(__name__)

# Create Typer app
app = typer.Typer(
    name="refloop",
    help="refloop - referral tracking, rewards and leaderboards",
    no_args_is_help=True,
)

# Rich console for pretty output
console = Console()

CRON_JOBS = [
    {
        "name": "Rebuild Weekly Leaderboard",
        "schedule": "0 0 * * 1",
        "endpoint": "/api/v1/referrals/rebuild-leaderboard",
        "command": "rebuild-leaderboard",
    },
    {
        "name": "Cleanup Old Clicks",
        "schedule": "0 2 * * 0",
        "endpoint": "/api/v1/referrals/cleanup",
        "command": "cleanup-clicks",
    },
    {
        "name": "Process Monthly Prizes",
        "schedule": "0 1 1 * *",
        "endpoint": "/api/v1/referrals/monthly-prizes",
        "command": "monthly-prize",
    },
]


def _fail(exc: ReferralError) -> None:
    console.print(f"[bold red]✗[/bold red] {exc.message}")
    raise typer.Exit(code=1)


@app.command("init")
def init_database() -> None:
    """Initialize the database and create tables."""
    console.print("[bold blue]Initializing database...[/bold blue]")
    db.create_tables()
    console.print("[bold green]✓[/bold green] Database initialized successfully")


@app.command("rebuild-leaderboard")
def rebuild_leaderboard() -> None:
    """Recalculate the current ISO week's leaderboard."""
    try:
        summary = leaderboard_builder.rebuild()
    except ReferralError as e:
        _fail(e)

    console.print(
        f"[bold green]✓[/bold green] Week [bold]{summary['week_id']}[/bold]: "
        f"{summary['users_ranked']} referrers ranked"
    )
    top = summary["top_user"]
    if top:
        console.print(f"  Top: user {top['user_id']} with {top['points']} points")


@app.command("monthly-prize")
def monthly_prize() -> None:
    """Award the previous month's grand prize."""
    try:
        summary = monthly_prize_selector.compute()
    except ReferralError as e:
        _fail(e)

    prize = summary["prize"]
    if summary["already_awarded"]:
        console.print(f"[yellow]Prize for {summary['month_key']} already awarded[/yellow]")
    elif prize is None:
        console.print(f"[yellow]No qualified referrers for {summary['month_key']}[/yellow]")
        return
    else:
        console.print(
            f"[bold green]✓[/bold green] {summary['month_key']}: "
            f"{summary['qualified_users']} qualified"
        )
    console.print(
        f"  Winner: user {prize['winner_user_id']} ({prize['referrals_count']} referrals), "
        f"reward #{prize['reward_id']}"
    )


@app.command("cleanup-clicks")
def cleanup_clicks() -> None:
    """Delete referral clicks older than the retention window."""
    try:
        summary = click_tracker.cleanup_old_clicks()
    except ReferralError as e:
        _fail(e)

    console.print(
        f"[bold green]✓[/bold green] Deleted {summary['deleted_records']} clicks "
        f"older than {summary['cutoff']}"
    )


@app.command("approve-reward")
def approve_reward(
    reward_id: Annotated[int, typer.Argument(help="Reward ID to approve")],
) -> None:
    """Approve a pending reward so its owner can claim it."""
    try:
        reward = claim_processor.approve(reward_id)
    except ReferralError as e:
        _fail(e)

    console.print(f"[bold green]✓[/bold green] Reward #{reward.id} is {reward.status}")


@app.command("cron-schedule")
def cron_schedule(
    base_url: Annotated[str, typer.Option("--base-url", help="Public API base URL")] = "",
) -> None:
    """Show the recommended scheduler configuration."""
    base_url = (base_url or settings.app_base_url).rstrip("/")

    table = Table(title="Referral cron jobs")
    table.add_column("Job", style="cyan")
    table.add_column("Schedule", style="green")
    table.add_column("Endpoint")
    table.add_column("CLI")

    for job in CRON_JOBS:
        table.add_row(job["name"], job["schedule"], job["endpoint"], f"refloop {job['command']}")

    console.print(table)
    console.print("\nExample:")
    console.print(
        f'  curl -X POST "{base_url}{CRON_JOBS[0]["endpoint"]}" -H "X-Cron-Secret: $CRON_SECRET"',
        markup=False,
    )
    if not settings.cron_secret:
        console.print("\n[yellow]CRON_SECRET is not set; scheduler endpoints reject every call[/yellow]")


if __name__ == "__main__":
    app()
