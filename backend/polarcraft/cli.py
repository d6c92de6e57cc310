"""
cli.py — Maintenance commands, registered on app.cli by create_app().

    flask --app backend.wsgi cleanup-tokens
    flask --app backend.wsgi create-admin <username>
    flask --app backend.wsgi init-db
"""

from __future__ import annotations

import click
from flask import Flask
from sqlalchemy import select

from backend.polarcraft.extensions import db
from backend.polarcraft.models.user import ROLE_ADMIN, User


def register_cli(app: Flask) -> None:

    @app.cli.command("cleanup-tokens")
    def cleanup_tokens() -> None:
        """Delete expired/revoked refresh tokens and used/expired reset tokens."""
        from backend.polarcraft.routes.admin import run_cleanup

        result = run_cleanup(db.session)
        db.session.commit()
        click.echo(
            f"Removed {result['refreshTokens']} refresh tokens "
            f"and {result['resetTokens']} password reset tokens."
        )

    @app.cli.command("create-admin")
    @click.argument("username")
    def create_admin(username: str) -> None:
        """Promote an existing user to the admin role."""
        user = db.session.execute(
            select(User).where(User.username == username)
        ).scalar_one_or_none()
        if user is None:
            raise click.ClickException(f"User '{username}' not found.")

        if user.role == ROLE_ADMIN:
            click.echo(f"User '{username}' is already an admin.")
            return

        user.role = ROLE_ADMIN
        db.session.commit()
        app.logger.info("User %s promoted to admin", user.id)
        click.echo(f"User '{username}' is now an admin.")

    @app.cli.command("init-db")
    def init_db() -> None:
        """Create all tables directly (local development without Alembic)."""
        db.create_all()
        click.echo("Database tables created.")
