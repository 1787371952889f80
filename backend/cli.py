#!/usr/bin/env python3
"""
CLI for the listing phone pipeline

Commands:
    fetch-next       - Harvest the record at the cursor (one step)
    fetch-latest-id  - Show the highest catalog id on the first listing page
    backfill         - Catch the cursor up to the latest id with parallel forced steps
    transfer-one     - Reconcile the oldest pending harvested record
    transfer-bulk    - Apply every recent record whose post is known
    transfer-drain   - Bulk then single transfers until nothing is left
    title-refresh    - Refresh one business title
    sessions-add     - Register an upstream header set
    sessions-list    - List registered header sets
    status           - Cursor position and backlog counts

Usage:
    python cli.py fetch-next --force
    python cli.py backfill --start-id 19015 --concurrency 10
    python cli.py sessions-add arka --file headers.txt --label "ops laptop"
"""

import json
import logging
import sys

import click


def get_app_context():
    """Get Flask app context for database access."""
    from app import create_app
    app = create_app()
    return app.app_context()


def _echo_json(data):
    click.echo(json.dumps(data, indent=2, ensure_ascii=False, default=str))


@click.group()
@click.version_option(version="1.0.0", prog_name="phone-pipeline-cli")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
def cli(verbose):
    """Listing phone pipeline CLI - fetch, transfer and session management."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy').setLevel(logging.WARNING)


# =============================================================================
# Fetch
# =============================================================================

@cli.command("fetch-next")
@click.option("--force", is_flag=True, help="Ignore kill switches, cursor lock and backoff")
def fetch_next(force):
    """Harvest the record at the cursor."""
    with get_app_context():
        from services.arka_phone_fetch import ArkaPhoneFetcher

        result = ArkaPhoneFetcher().fetch_next(force=force)
        _echo_json(result.to_dict())
        if result.kind == 'error':
            sys.exit(1)


@cli.command("fetch-latest-id")
def fetch_latest_id():
    """Show the highest catalog id on the first listing page."""
    with get_app_context():
        from services.arka_phone_fetch import ArkaPhoneFetcher

        latest = ArkaPhoneFetcher().fetch_latest_id()
        if latest is None:
            click.secho("Unable to determine latest Arka id", fg="red")
            sys.exit(1)
        click.echo(latest)


@cli.command("backfill")
@click.option("--start-id", type=int, default=None, help="Raise the cursor to at least this id")
@click.option("--max-id", type=int, default=None, help="Stop at this id (default: latest id)")
@click.option("--concurrency", type=int, default=10, show_default=True, help="Forced steps per round")
def backfill(start_id, max_id, concurrency):
    """Catch the cursor up to the latest catalog id."""
    with get_app_context():
        from services.arka_phone_fetch import ArkaPhoneFetcher

        summary = ArkaPhoneFetcher().run_backfill(start_id=start_id, max_id=max_id, concurrency=concurrency)
        _echo_json(summary)
        if summary.get('aborted'):
            sys.exit(1)


# =============================================================================
# Transfer
# =============================================================================

@cli.command("transfer-one")
@click.option("--force", is_flag=True, help="Ignore kill switches")
def transfer_one(force):
    """Reconcile the oldest pending harvested record."""
    with get_app_context():
        from services.arka_phone_transfer import ArkaPhoneTransferService

        result = ArkaPhoneTransferService().transfer_one(force=force)
        _echo_json(result.to_dict())


@cli.command("transfer-bulk")
@click.option("--force", is_flag=True, help="Ignore kill switches")
def transfer_bulk(force):
    """Apply every recent record whose post exists and lacks a phone."""
    with get_app_context():
        from services.arka_phone_transfer import ArkaPhoneTransferService

        result = ArkaPhoneTransferService().transfer_missing_posts(force=force)
        _echo_json(result.to_dict())


@cli.command("transfer-drain")
def transfer_drain():
    """Bulk transfers until exhausted, then single transfers."""
    with get_app_context():
        from services.arka_phone_transfer import ArkaPhoneTransferService

        _echo_json(ArkaPhoneTransferService().drain())


@cli.command("title-refresh")
def title_refresh():
    """Refresh the stalest business title."""
    with get_app_context():
        from services.business_title_refresh import BusinessTitleRefresher

        result = BusinessTitleRefresher().refresh_one(force=True)
        if result is None:
            click.echo("Nothing to refresh")
            return
        _echo_json(result.to_dict())


# =============================================================================
# Sessions
# =============================================================================

@cli.command("sessions-add")
@click.argument("service", type=click.Choice(["arka", "divar"]))
@click.option("--file", "headers_file", type=click.File("r"), default="-",
              help="Header lines (Key: Value or curl -H '...'); stdin by default")
@click.option("--label", default=None, help="Label shown in sessions-list")
def sessions_add(service, headers_file, label):
    """
    Register an upstream header set.

    SERVICE: arka (catalog) or divar (brand lookup)
    """
    headers_raw = headers_file.read()
    with get_app_context():
        from services.session_provider import SessionProvider

        try:
            row = SessionProvider().register(service, headers_raw, label=label)
        except ValueError as e:
            click.secho(f"Error: {e}", fg="red")
            sys.exit(1)
        click.secho(f"Registered {service} session {row.id} ({len(row.headers)} headers)", fg="green")


@cli.command("sessions-list")
@click.option("--service", type=click.Choice(["arka", "divar"]), default=None)
def sessions_list(service):
    """List registered header sets, newest first."""
    with get_app_context():
        from services.session_provider import SessionProvider

        _echo_json([s.to_dict() for s in SessionProvider().list_sessions(service)])


@cli.command("status")
def status():
    """Cursor position and backlog counts."""
    with get_app_context():
        from services.health import pipeline_status

        _echo_json(pipeline_status())


if __name__ == "__main__":
    cli()
