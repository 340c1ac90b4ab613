"""Flask CLI commands for operators.

Usage:
    flask --app app create-user owner@example.com --password s3cretpass
    flask --app app create-user ops@example.com --admin --admin-tenant
"""

from __future__ import annotations

import sys
from typing import Optional

import click
from flask.cli import with_appcontext

from errors import AppError
from services.auth import provision_user


@click.command("create-user")
@click.argument("email")
@click.option(
    "--password",
    prompt=True,
    hide_input=True,
    confirmation_prompt=True,
    help="Password (at least 8 characters).",
)
@click.option("--admin", is_flag=True, help="Grant ROLE_ADMIN.")
@click.option("--tenant-id", type=int, default=None, help="Add the user to an existing tenant.")
@click.option("--admin-tenant", is_flag=True, help="Mark the user's tenant as an admin tenant.")
@with_appcontext
def create_user_command(
    email: str,
    password: str,
    admin: bool,
    tenant_id: Optional[int],
    admin_tenant: bool,
):
    """Create a verified, active user."""
    try:
        user = provision_user(
            email,
            password,
            admin=admin,
            tenant_id=tenant_id,
            admin_tenant=admin_tenant,
        )
    except AppError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)
    roles = ", ".join(sorted(role.value for role in user.role_set))
    click.echo(f"Created user {user.email} (id={user.id}, tenant={user.tenant_id}, roles={roles})")


def register_commands(app):
    app.cli.add_command(create_user_command)
