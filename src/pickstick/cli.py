from __future__ import annotations

import json
import logging
import random
import signal
import threading
from pathlib import Path
from typing import Callable, Optional

import click

from .errors import PoolError
from .pool import PoolService, create_pool
from .settings import AppSettings, get_settings

LOGGER = logging.getLogger(__name__)


def _env_file_option(func: Callable) -> Callable:
    return click.option(
        "--env-file",
        type=click.Path(path_type=Path, dir_okay=False, exists=False, readable=True),
        default=".env",
        show_default=True,
        help="Path to the .env file to load.",
    )(func)


def _load(env_file: Path) -> tuple[AppSettings, PoolService]:
    settings = get_settings(env_file)
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return settings, create_pool(settings)


def _echo_json(payload: object) -> None:
    click.echo(json.dumps(payload, indent=2, default=str))


def _env_rows(settings: AppSettings) -> list[tuple[str, str]]:
    return [
        ("DATABASE_URL", settings.masked_database_url),
        ("DATA_ROOT", str(settings.data_root)),
        ("LOG_LEVEL", settings.log_level),
        ("POOL_TIMEZONE", settings.pool_timezone),
        ("SCOREBOARD_URL", settings.scoreboard_url),
        ("FEED_TIMEOUT_SECONDS", str(settings.feed_timeout_seconds)),
        ("ACTIVE_POLL_SECONDS", str(settings.active_poll_seconds)),
        ("IDLE_POLL_SECONDS", str(settings.idle_poll_seconds)),
        ("ACTIVE_RECHECK_SECONDS", str(settings.active_recheck_seconds)),
        ("SEASON_WEEKS", str(settings.season_weeks)),
    ]


@click.group()
def cli() -> None:
    """Weekly NFL pick-and-stick pool CLI."""


@cli.command()
@_env_file_option
def env(env_file: Path) -> None:
    """Show the current environment configuration."""

    settings = get_settings(env_file)
    rows = _env_rows(settings)
    width = max(len(key) for key, _ in rows)
    for key, value in rows:
        click.echo(f"{key.ljust(width)} : {value}")


@cli.group()
def db() -> None:
    """Database setup."""


@db.command("init")
@click.option("--no-teams", is_flag=True, help="Skip loading the bundled NFL team catalog.")
@_env_file_option
def db_init(no_teams: bool, env_file: Path) -> None:
    """Create tables and load the NFL team catalog."""

    _, pool = _load(env_file)
    written = pool.init_db(load_teams=not no_teams)
    click.echo(f"Database ready ({written} teams written)")


@cli.group()
def participants() -> None:
    """Pool participants."""


@participants.command("add")
@click.argument("username")
@click.option("--first-name", default="", help="Participant first name.")
@click.option("--last-name", default="", help="Participant last name.")
@_env_file_option
def participants_add(username: str, first_name: str, last_name: str, env_file: Path) -> None:
    """Register a participant."""

    _, pool = _load(env_file)
    participant_id = pool.add_participant(username, first_name, last_name)
    click.echo(f"Added participant {username} (id {participant_id})")


@participants.command("list")
@_env_file_option
def participants_list(env_file: Path) -> None:
    """List participants."""

    _, pool = _load(env_file)
    for row in pool.list_participants():
        click.echo(f"{row['id']:>4}  {row['username']:<20} {row['name']}")


@cli.group()
def week() -> None:
    """Week resolution and admin."""


@week.command("current")
@_env_file_option
def week_current(env_file: Path) -> None:
    """Print the current week."""

    _, pool = _load(env_file)
    click.echo(str(pool.current_week()))


@week.command("punishment")
@click.option("--week", "week_number", type=int, required=True, help="Week number.")
@click.option("--set", "text", type=str, default=None, help="New punishment text.")
@_env_file_option
def week_punishment(week_number: int, text: Optional[str], env_file: Path) -> None:
    """Show or set a week's punishment."""

    _, pool = _load(env_file)
    try:
        if text is not None:
            pool.set_punishment(week_number, text)
        click.echo(pool.get_punishment(week_number) or "(none)")
    except PoolError as exc:
        raise click.ClickException(str(exc)) from exc


@week.command("reset")
@click.option("--week", "week_number", type=int, required=True, help="Week number.")
@click.confirmation_option(prompt="Delete every pick for this week?")
@_env_file_option
def week_reset(week_number: int, env_file: Path) -> None:
    """Delete a week's picks and clear its lock and simulated flags."""

    _, pool = _load(env_file)
    try:
        removed = pool.reset_week(week_number)
    except PoolError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Removed {removed} picks from week {week_number}")


@cli.group()
def draft() -> None:
    """Draft order, seeding and team assignment."""


@draft.command("order")
@click.option("--week", "week_number", type=int, required=True, help="Week number.")
@click.option("--seed", type=int, default=None, help="Random seed for the week 1 shuffle.")
@_env_file_option
def draft_order(week_number: int, seed: Optional[int], env_file: Path) -> None:
    """Show the ranked draft order without writing picks."""

    _, pool = _load(env_file)
    if seed is not None:
        pool.rng = random.Random(seed)
    try:
        order = pool.draft_order(week_number)
    except PoolError as exc:
        raise click.ClickException(str(exc)) from exc
    for position, participant_id in enumerate(order, start=1):
        click.echo(f"{position:>2}. participant {participant_id}")


@draft.command("seed")
@click.option("--week", "week_number", type=int, required=True, help="Week number.")
@click.option("--seed", type=int, default=None, help="Random seed for the week 1 shuffle.")
@_env_file_option
def draft_seed(week_number: int, seed: Optional[int], env_file: Path) -> None:
    """Create the week's empty pick rows if none exist."""

    _, pool = _load(env_file)
    if seed is not None:
        pool.rng = random.Random(seed)
    try:
        state = pool.seed_draft(week_number)
    except PoolError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Week {week_number} has {len(state['picks'])} picks")


@draft.command("show")
@click.option("--week", "week_number", type=int, required=True, help="Week number.")
@_env_file_option
def draft_show(week_number: int, env_file: Path) -> None:
    """Print the week's draft state as JSON."""

    _, pool = _load(env_file)
    try:
        _echo_json(pool.draft_state(week_number))
    except PoolError as exc:
        raise click.ClickException(str(exc)) from exc


@draft.command("assign")
@click.option("--week", "week_number", type=int, required=True, help="Week number.")
@click.option("--pick", "pick_id", type=int, required=True, help="Pick id to fill.")
@click.option("--team", "team_id", type=int, required=True, help="Team id to assign.")
@_env_file_option
def draft_assign(week_number: int, pick_id: int, team_id: int, env_file: Path) -> None:
    """Assign a team to a pick (rejected once the draft is locked)."""

    _, pool = _load(env_file)
    try:
        state = pool.assign_team(week_number, pick_id, team_id)
    except PoolError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Pick {pick_id} → team {team_id} ({len(state['available_teams'])} teams still available)")


@draft.command("lock-status")
@click.option("--week", "week_number", type=int, required=True, help="Week number.")
@_env_file_option
def draft_lock_status(week_number: int, env_file: Path) -> None:
    """Re-evaluate and print the week's draft lock."""

    _, pool = _load(env_file)
    try:
        locked = pool.lock_status(week_number)
    except PoolError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo("locked" if locked else "unlocked")


@draft.command("unlock")
@click.option("--week", "week_number", type=int, required=True, help="Week number.")
@_env_file_option
def draft_unlock(week_number: int, env_file: Path) -> None:
    """Admin: clear the week's draft lock."""

    _, pool = _load(env_file)
    try:
        pool.unlock(week_number)
    except PoolError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Draft unlocked for week {week_number}")


@cli.group()
def scores() -> None:
    """Live score sync."""


@scores.command("sync")
@click.option("--week", "week_number", type=int, default=None, help="Week to sync (defaults to current week).")
@_env_file_option
def scores_sync(week_number: Optional[int], env_file: Path) -> None:
    """Run one score sync immediately."""

    _, pool = _load(env_file)
    try:
        report = pool.trigger_sync(week_number)
    except PoolError as exc:
        raise click.ClickException(str(exc)) from exc
    _echo_json(report.as_dict())
    if not report.ok:
        raise click.ClickException(f"Feed error: {report.feed_error}")


@scores.command("run")
@_env_file_option
def scores_run(env_file: Path) -> None:
    """Run the background score scheduler until interrupted."""

    _, pool = _load(env_file)
    scheduler = pool.scheduler
    if scheduler is None:  # pragma: no cover - create_pool always wires one
        raise click.ClickException("No scheduler configured")

    stopped = threading.Event()

    def _shutdown(signum, frame) -> None:  # pragma: no cover - signal handler
        stopped.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)
    scheduler.start()
    click.echo("Score scheduler running; Ctrl-C to stop")
    try:
        while not stopped.wait(60):
            LOGGER.debug("Scheduler status: %s", scheduler.status())
    finally:
        scheduler.stop(timeout=30)
        pool.close()


@scores.command("leaderboard")
@click.option("--week", "week_number", type=int, required=True, help="Week number.")
@_env_file_option
def scores_leaderboard(week_number: int, env_file: Path) -> None:
    """Show participants' weekly totals, best first."""

    _, pool = _load(env_file)
    try:
        rows = pool.leaderboard(week_number)
    except PoolError as exc:
        raise click.ClickException(str(exc)) from exc
    if not rows:
        click.echo(f"No scores recorded for week {week_number}")
        return
    for rank, row in enumerate(rows, start=1):
        click.echo(
            f"{rank:>2}. {row['name']:<24} {row['current_points']:>4} pts "
            f"({row['completed_games']}/{row['total_games']} games final)"
        )


@scores.command("board")
@click.option("--week", "week_number", type=int, required=True, help="Week number.")
@_env_file_option
def scores_board(week_number: int, env_file: Path) -> None:
    """Show the week's games with their latest scores."""

    _, pool = _load(env_file)
    try:
        rows = pool.scoreboard(week_number)
    except PoolError as exc:
        raise click.ClickException(str(exc)) from exc
    for row in rows:
        status = "Final" if row["is_complete"] else (
            f"{row['period']} {row['clock'] or ''}".strip() if row["is_live"] else "Not Started"
        )
        click.echo(
            f"{row['away_team']} {row['away_score']} @ {row['home_team']} {row['home_score']} | {status}"
        )


@cli.group()
def sim() -> None:
    """Draft simulation."""


@sim.command("run")
@click.option("--week", "week_number", type=int, required=True, help="Week to simulate.")
@click.option("--seed", type=int, default=None, help="Random seed for reproducible draws.")
@_env_file_option
def sim_run(week_number: int, seed: Optional[int], env_file: Path) -> None:
    """Fill a skipped week's draft and lock it."""

    _, pool = _load(env_file)
    if seed is not None:
        pool.rng = random.Random(seed)
    try:
        result = pool.simulate(week_number)
    except PoolError as exc:
        raise click.ClickException(str(exc)) from exc

    for slot in result.picks:
        click.echo(f"R{slot.round}.{slot.order_in_round} participant {slot.participant_id}: {slot.reasoning}")
    winner = result.projected_winner
    click.echo(f"Simulated {len(result.picks)} picks for week {week_number}; projected winner: {winner}")


