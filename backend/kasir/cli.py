# Overview: Flask CLI command groups for bootstrap and user maintenance.

# backend/kasir/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--username admin --password secret123]
#   Idempotent bootstrap: creates tables and the first ADMIN account.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list
#   List all operators with role and status.
# - python -m flask users create --username kasir1 --display-name "Kasir 1" --password secret123 --role PETUGAS
#   Create an operator (prompts if options are omitted).

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .services.auth_service import create_user, PasswordValidationError
from .validation import ConflictError, ValidationError, USER_ROLES


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--username', default='admin', help='Admin username')
@click.option('--display-name', default='Administrator', help='Admin display name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Admin password')
@with_appcontext
def init_system(username, display_name, password):
    """
    Create the schema and the first ADMIN account.

    Safe to re-run: an existing admin is left untouched.
    """
    click.echo("START Initializing kasir...")

    db.create_all()
    click.echo("PASS Schema ready")

    existing = User.live().filter(User.role == "ADMIN").first()
    if existing:
        click.echo(f"PASS Using existing admin: {existing.username} (ID: {existing.id})")
        return

    try:
        user = create_user(
            patch={"username": username, "display_name": display_name, "role": "ADMIN"},
            password=password,
        )
    except (PasswordValidationError, ConflictError) as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)

    click.echo(f"PASS Created admin: {user.username} (ID: {user.id})")
    click.echo("SECURITY Password securely hashed with bcrypt")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('list')
@with_appcontext
def list_users_cli():
    users = User.live().order_by(User.id.asc()).all()
    if not users:
        click.echo("No users found. Run 'python -m flask system init' first.")
        return
    for u in users:
        click.echo(f"{u.id:>4}  {u.username:<20} {u.role:<8} {u.status:<8} {u.display_name}")


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--display-name', prompt=True, help='Display name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(USER_ROLES)), prompt=True, help='Role')
@with_appcontext
def create_user_cli(username, display_name, password, role):
    """Create an operator account."""
    try:
        user = create_user(
            patch={"username": username, "display_name": display_name, "role": role},
            password=password,
        )
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        return
    except (ConflictError, ValidationError) as e:
        click.echo(f"FAIL Failed to create user: {str(e)}")
        return

    click.echo(f"PASS Created user: {user.username} with role '{user.role}'")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
