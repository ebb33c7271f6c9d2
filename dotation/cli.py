"""
Custom Flask CLI commands.

These commands are registered with the app via ``register_commands()``
in the application factory.  Run them with ``flask <command_name>``.

Usage::

    flask db-check              # Verify database connectivity and tables
    flask assets-sync           # Pull equipment from the asset system
    flask assets-retry-pending  # Replay failed status pushes
    flask seed-dev-users        # One local user per role for dev login
"""

import click
from flask import current_app
from flask.cli import with_appcontext
from sqlalchemy import inspect

from dotation.extensions import db
from dotation.models.user import ROLE_NAMES, User

_EXPECTED_TABLES = (
    "app_user",
    "equipment",
    "allocation",
    "allocation_item",
    "equipment_return",
    "returned_item",
    "audit_log",
    "asset_sync_log",
    "pending_sync",
)


@click.command("db-check")
@with_appcontext
def db_check_command():
    """
    Verify database connectivity and confirm the expected tables exist.

    Useful for confirming DATABASE_URL is correct and that
    ``flask db upgrade`` has been run.
    """
    click.echo("=" * 60)
    click.echo("  Dotation - Database Connectivity Check")
    click.echo("=" * 60)

    db_uri = db.engine.url.render_as_string(hide_password=True)
    click.echo(f"\n  Connection string: {db_uri}\n")

    # -- Step 1: Basic connectivity ----------------------------------------
    click.echo("[1/2] Testing connection...")
    try:
        row = db.session.execute(db.text("SELECT 1 AS connected")).fetchone()
        if row and row[0] == 1:
            click.secho("      ✓ Connected successfully.", fg="green")
        else:
            click.secho("      ✗ Unexpected result from test query.", fg="red")
            return
    except Exception as exc:  # pylint: disable=broad-exception-caught
        click.secho(f"      ✗ Connection failed: {exc}", fg="red")
        click.echo("\n  Troubleshooting tips:")
        click.echo("    - Is the database server running?")
        click.echo("    - Is ODBC Driver 18 for SQL Server installed?")
        click.echo("    - Does your .env DATABASE_URL match your server config?")
        return

    # -- Step 2: Tables ----------------------------------------------------
    click.echo("[2/2] Checking tables...\n")
    try:
        existing = set(inspect(db.engine).get_table_names())
    except Exception as exc:  # pylint: disable=broad-exception-caught
        click.secho(f"      ✗ Table check failed: {exc}", fg="red")
        return

    missing = [name for name in _EXPECTED_TABLES if name not in existing]
    for name in _EXPECTED_TABLES:
        mark = "✗" if name in missing else "✓"
        click.echo(f"      {mark} {name}")

    if missing:
        click.secho(
            f"\n      {len(missing)} table(s) missing. Run: flask db upgrade",
            fg="red",
        )
        return

    click.echo("\n" + "=" * 60)
    click.secho("  All checks passed. Database is ready.", fg="green", bold=True)
    click.echo("=" * 60)


@click.command("assets-sync")
@click.option("--schema", "schema_name", default=None, help="Asset schema name.")
@click.option("--object-type", "object_type_name", default=None, help="Object type name.")
@click.option("--object-type-id", default=None, help="Object type ID (wins over names).")
@click.option("--limit", default=1000, show_default=True, help="Maximum objects to pull.")
@click.option(
    "--no-auto-detect",
    "auto_detect",
    is_flag=True,
    flag_value=False,
    default=True,
    help="Do not detect attribute IDs from the first object.",
)
@with_appcontext
def assets_sync_command(schema_name, object_type_name, object_type_id, limit, auto_detect):
    """Pull every object of one type from the asset system."""
    from dotation.services import asset_sync_service  # pylint: disable=import-outside-toplevel

    schema_name = schema_name or current_app.config["ASSETS_DEFAULT_SCHEMA"]
    object_type_name = object_type_name or current_app.config["ASSETS_DEFAULT_OBJECT_TYPE"]
    if object_type_id:
        click.echo(f"Starting asset sync for object type {object_type_id}...")
    else:
        click.echo(f"Starting asset sync for {schema_name} / {object_type_name}...")

    log = asset_sync_service.sync_all_from_external(
        object_type_id=object_type_id,
        schema_name=schema_name,
        object_type_name=object_type_name,
        auto_detect=auto_detect,
        limit=limit,
    )
    click.echo(f"Status: {log.status}")
    click.echo(
        f"Processed: {log.records_processed}  "
        f"Created: {log.records_created}  "
        f"Updated: {log.records_updated}  "
        f"Skipped: {log.records_skipped}  "
        f"Errors: {log.records_errors}"
    )
    if log.error_message:
        click.secho(f"Error: {log.error_message}", fg="red")


@click.command("assets-retry-pending")
@click.option("--limit", default=100, show_default=True, help="Maximum rows to replay.")
@with_appcontext
def assets_retry_pending_command(limit):
    """Replay status pushes that failed earlier."""
    from dotation.services import asset_sync_service  # pylint: disable=import-outside-toplevel

    stats = asset_sync_service.retry_pending_syncs(limit=limit)
    click.echo(
        f"Processed: {stats['processed']}  "
        f"Resolved: {stats['resolved']}  "
        f"Failed: {stats['failed']}"
    )


@click.command("seed-dev-users")
@with_appcontext
def seed_dev_users_command():
    """
    Create (or reactivate) one local user per role for ``/auth/dev-login``.

    Emails are ``dev.<role>@localhost``.
    """
    for role_name in ROLE_NAMES:
        email = f"dev.{role_name}@localhost"
        user = User.query.filter_by(email=email).first()
        if user is None:
            user = User(
                email=email,
                display_name=f"Dev {role_name.capitalize()}",
                given_name="Dev",
                surname=role_name.capitalize(),
                role_name=role_name,
            )
            db.session.add(user)
            click.secho(f"  ✓ Created {email}", fg="green")
        else:
            user.role_name = role_name
            user.is_active = True
            click.echo(f"  - {email} already exists")
    db.session.commit()


def register_commands(app):
    """Register all custom CLI commands with the Flask application."""
    app.cli.add_command(db_check_command)
    app.cli.add_command(assets_sync_command)
    app.cli.add_command(assets_retry_pending_command)
    app.cli.add_command(seed_dev_users_command)
