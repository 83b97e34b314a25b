#!/usr/bin/env python3
"""
PATS Ledger Management CLI

Operator commands for sessions, the ledger and the database.
"""

import json
import logging

import click
from flask.cli import with_appcontext
from flask_migrate import migrate, upgrade
from sqlalchemy import text

from pats import create_app, db
from pats.errors import PATSError
from pats.models import PATSSession, UserLedgerEntry
from pats.services.grading import grading_engine
from pats.services.ledger_service import ledger_service
from pats.services.session_manager import session_manager
from pats.services.standings import standings_service
from pats.utils.cache_utils import get_cache_stats
from pats.utils.scoring import StatDelta
from pats.utils.timezone_utils import convert_to_app_timezone

app = create_app()


@click.group()
def cli():
    """PATS Ledger Management CLI"""
    pass


def fail(message):
    click.echo(f"❌ {message}")
    raise SystemExit(1)


# Session Commands
@cli.group()
def session():
    """Session management commands"""
    pass


@session.command("list")
@with_appcontext
def list_sessions():
    """List active sessions"""
    sessions = PATSSession.query.filter_by(status="active").all()
    if not sessions:
        click.echo("No active sessions.")
        return

    click.echo("Active sessions:")
    for s in sessions:
        graded = sum(1 for game in s.games if game.graded)
        owner = f" (owner {s.owner_id})" if s.owner_id else ""
        click.echo(
            f"  #{s.id} {s.kind}{owner} {s.date}: "
            f"{graded}/{len(s.games)} graded, {len(s.participant_ids)} participants"
        )


@session.command()
@click.option("--limit", type=int, default=10, help="Number of sessions to show")
@with_appcontext
def history(limit):
    """List closed sessions, newest first"""
    sessions = session_manager.get_history(limit)
    if not sessions:
        click.echo("No closed sessions.")
        return

    for s in sessions:
        click.echo(f"  #{s.id} {s.kind} {s.date} closed {convert_to_app_timezone(s.closed_at):%Y-%m-%d %H:%M}")


@session.command()
@click.argument("session_id", type=int)
@click.option(
    "--fallback",
    type=click.Path(exists=True, dir_okay=False),
    help="JSON file of fallback results [{game_id, home_score, away_score}]",
)
@with_appcontext
def close(session_id, fallback):
    """Close a session and freeze its results"""
    fallback_results = None
    if fallback:
        with open(fallback) as f:
            fallback_results = json.load(f)

    try:
        closed = session_manager.close_session(session_id, fallback_results)
    except PATSError as e:
        fail(e.message)

    click.echo(f"✅ Closed session {session_id}")
    for user_id, result in closed.items():
        dd = " (DD)" if result["used_double_down"] else ""
        click.echo(
            f"   {user_id}: {result['wins']}-{result['losses']}-{result['pushes']}"
            f", missed {result['missed_picks']}{dd}"
        )


@session.command()
@click.argument("session_id", type=int, required=False)
@with_appcontext
def reopen(session_id):
    """Reopen a closed session (default: most recently closed)"""
    try:
        reopened = session_manager.reopen_session(session_id)
    except PATSError as e:
        fail(e.message)
    click.echo(f"✅ Reopened session {reopened.id} ({reopened.date})")


@session.command()
@click.argument("session_id", type=int)
@click.option("--reason", help="Why the session is being voided")
@with_appcontext
def void(session_id, reason):
    """⚠️  Void an active session and revert everything it applied"""
    if not click.confirm(f"Void session {session_id}? Its picks will be deleted."):
        click.echo("Cancelled.")
        return

    try:
        summary = session_manager.void_session(session_id, reason=reason)
    except PATSError as e:
        fail(e.message)
    click.echo(
        f"✅ Voided session {session_id}, "
        f"{summary['reverted_stat_writes']} grade records reverted"
    )


@session.command()
@click.argument("session_id", type=int)
@with_appcontext
def standings(session_id):
    """Show current standings for a session"""
    try:
        data = standings_service.get_standings(session_id, force_refresh=True)
    except PATSError as e:
        fail(e.message)

    click.echo(f"Standings for session {session_id} ({data['date']}, {data['status']})")
    for row in data["standings"]:
        click.echo(
            f"  {row['rank']:>2}. {row['username'] or row['user_id']}: "
            f"{row['wins']}-{row['losses']}-{row['pushes']} "
            f"({row['win_percentage']}%) pending {row['pending']} missed {row['missed']}"
        )


# Ledger Commands
@cli.group()
def ledger():
    """Ledger management commands"""
    pass


@ledger.command()
@click.argument("user_id")
@click.option("--username", help="Display name")
@click.option("--wins", type=int, default=0)
@click.option("--losses", type=int, default=0)
@click.option("--pushes", type=int, default=0)
@with_appcontext
def add(user_id, username, wins, losses, pushes):
    """Add a user to the ledger"""
    try:
        ledger_service.add_user(user_id, username, wins, losses, pushes)
    except PATSError as e:
        fail(e.message)
    click.echo(f"✅ Added {user_id} ({wins}-{losses}-{pushes})")


@ledger.command()
@click.argument("user_id")
@click.argument("assignments", nargs=-1, required=True)
@click.option("--month", help="Edit the YYYY-MM bucket instead of all-time")
@with_appcontext
def edit(user_id, assignments, month):
    """Set counters directly, e.g. total_wins=10 total_losses=4"""
    fields = {}
    for assignment in assignments:
        name, sep, value = assignment.partition("=")
        if not sep:
            fail(f"Expected field=value, got '{assignment}'")
        fields[name] = value

    try:
        entry = ledger_service.edit_user(user_id, month_key=month, **fields)
    except PATSError as e:
        fail(e.message)
    click.echo(f"✅ Updated {entry.user_id}")


@ledger.command()
@click.argument("user_id")
@with_appcontext
def delete(user_id):
    """⚠️  Delete a user's ledger entry and monthly buckets"""
    if not click.confirm(f"Delete ledger entry for {user_id}?"):
        click.echo("Cancelled.")
        return

    try:
        ledger_service.delete_user(user_id)
    except PATSError as e:
        fail(e.message)
    click.echo(f"✅ Deleted {user_id}")


@ledger.command()
@click.argument("user_id")
@click.option("--month", help="Also show the YYYY-MM bucket")
@with_appcontext
def show(user_id, month):
    """Show one user's ledger"""
    try:
        stats = ledger_service.get_user_stats(user_id, month)
    except PATSError as e:
        fail(e.message)
    click.echo(json.dumps(stats, indent=2))


@ledger.command()
@click.option("--month", help="YYYY-MM (default: all-time)")
@with_appcontext
def leaderboard(month):
    """Show the leaderboard"""
    try:
        rows = ledger_service.get_leaderboard(month, force_refresh=True)
    except PATSError as e:
        fail(e.message)

    click.echo(f"Leaderboard ({month or 'all-time'})")
    for row in rows:
        click.echo(
            f"  {row['rank']:>2}. {row['username'] or row['user_id']}: "
            f"{row['total_wins']}-{row['total_losses']}-{row['total_pushes']} "
            f"({row['win_percentage']}%)"
        )


@ledger.command()
@with_appcontext
def verify():
    """Check every closed session's snapshot against its applied grades"""
    mismatches = 0
    sessions = session_manager.get_history()

    for s in sessions:
        applied = grading_engine.applied_totals(s.id)
        for result in s.closed_results:
            if applied.get(result.user_id, StatDelta()) != result.delta:
                mismatches += 1
                click.echo(
                    f"❌ Session {s.id} user {result.user_id}: "
                    f"snapshot {result.delta.to_dict()} "
                    f"applied {applied.get(result.user_id, StatDelta()).to_dict()}"
                )

    if mismatches:
        logging.error(f"Ledger verification found {mismatches} mismatches")
        raise SystemExit(1)
    click.echo(f"✅ {len(sessions)} closed sessions verified")


# Database Commands
@cli.group()
def db_cmd():
    """Database commands"""
    pass


@db_cmd.command()
@with_appcontext
def init_db():
    """Initialize database tables"""
    try:
        db.create_all()
        click.echo("✅ Database tables created successfully!")
    except Exception as e:
        click.echo(f"❌ Error initializing database: {str(e)}")


@db_cmd.command()
@with_appcontext
def reset():
    """⚠️  DANGER: Drop and recreate all tables"""
    if not click.confirm("This will DELETE ALL DATA. Are you sure?"):
        click.echo("Cancelled.")
        return

    try:
        db.drop_all()
        db.create_all()
        click.echo("✅ Database reset successfully!")
    except Exception as e:
        click.echo(f"❌ Error resetting database: {str(e)}")


@db_cmd.command()
@click.option("-m", "--message", required=True, help="Migration message")
@with_appcontext
def create_migration(message):
    """Create a new migration"""
    try:
        migrate(message=message)
        click.echo(f"✅ Migration created: {message}")
    except Exception as e:
        click.echo(f"❌ Error creating migration: {str(e)}")


@db_cmd.command()
@click.option("--revision", default="head", help="Revision to upgrade to")
@with_appcontext
def apply_migrations(revision):
    """Apply migrations to database"""
    try:
        upgrade(revision=revision)
        click.echo(f"✅ Migrations applied to {revision}")
    except Exception as e:
        click.echo(f"❌ Error applying migrations: {str(e)}")


# Info Commands
@cli.command()
@with_appcontext
def status():
    """Show application status"""
    click.echo("🏈 PATS Ledger Status")
    click.echo("=" * 40)

    try:
        db.session.execute(text("SELECT 1"))
        click.echo("✅ Database: Connected")
    except Exception as e:
        click.echo(f"❌ Database: Error - {str(e)}")

    active = PATSSession.query.filter_by(status="active").all()
    if active:
        for s in active:
            graded = sum(1 for game in s.games if game.graded)
            click.echo(f"✅ Active {s.kind} session #{s.id}: {graded}/{len(s.games)} graded")
    else:
        click.echo("⚠️  Active sessions: None")

    closed_count = PATSSession.query.filter_by(status="closed").count()
    click.echo(f"📚 Closed sessions: {closed_count}")

    user_count = UserLedgerEntry.query.count()
    click.echo(f"👥 Ledger users: {user_count}")

    cache_stats = get_cache_stats()
    click.echo(
        f"🗄️  Cache: {cache_stats['type']} "
        f"(standings {cache_stats['standings_timeout']}s, "
        f"leaderboard {cache_stats['leaderboard_timeout']}s)"
    )


if __name__ == "__main__":
    with app.app_context():
        cli()
