from cprportal.app import create_app, db

import click
from flask import current_app
from flask.cli import FlaskGroup
from sqlalchemy import func

from cprportal.constants import ROLE_SYSADMIN
from cprportal.models import User
from cprportal.services.billing import mark_overdue as run_overdue_sweep
from cprportal.services.system_config import seed_default_configurations
from cprportal.shared.mail_utils import normalize_email
from cprportal.shared.passwords import password_problem


cli = FlaskGroup(create_app=create_app)


@cli.command("init_db")
def init_db():
    """Create all tables and seed the default configuration."""
    db.create_all()
    added = seed_default_configurations()
    click.echo(f"Tables created, {added} configuration entries seeded")


@cli.command("seed_config")
def seed_config():
    added = seed_default_configurations()
    click.echo(f"{added} configuration entries seeded")


@cli.command("create_sysadmin")
@click.option("--username", required=True)
@click.option("--email", "email", required=True)
@click.option("--password", required=True)
def create_sysadmin(username: str, email: str, password: str):
    """Create a system administrator account."""
    normalized = normalize_email(email)
    if not normalized:
        click.echo("Invalid email address", err=True)
        raise SystemExit(1)
    problem = password_problem(password)
    if problem:
        click.echo(problem, err=True)
        raise SystemExit(1)
    taken = (
        db.session.query(User.id)
        .filter(
            (func.lower(User.username) == username.lower())
            | (func.lower(User.email) == normalized)
        )
        .first()
    )
    if taken:
        click.echo("Username or email already exists", err=True)
        raise SystemExit(1)
    user = User(username=username, email=normalized, role=ROLE_SYSADMIN)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    current_app.logger.info(f"[CLI-SYSADMIN] user={user.id}")
    click.echo(f"Created sysadmin {username} (id={user.id})")


@cli.command("mark_overdue")
def mark_overdue():
    """Flag unpaid invoices past their due date as overdue."""
    updated = run_overdue_sweep()
    click.echo(f"{updated} invoices marked overdue")


if __name__ == "__main__":
    cli()
