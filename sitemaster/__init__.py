"""
sitemaster/__init__.py

Flask application factory for the SiteMaster construction-site backend.

Layout:
- billing / annotations: plain functions, no database access.
- services: workflows over an injected Store (SqlStore here, InMemoryStore in tests).
- SQLite by default; any SQLAlchemy URL works (DATABASE_URL), migrations via Flask-Migrate.

This app exposes no HTTP routes. It owns configuration, the database session,
logging, the AI provider and the maintenance CLI.
"""

from __future__ import annotations

import click
from flask import Flask, current_app

from .extensions import db, migrate
from .logging_config import configure_logging

# Module imports kept inside create_app() / commands where possible to reduce import side effects.


def create_app(config_name: str = "default") -> Flask:
    """Create and configure the Flask application."""
    from config import CONFIGS

    app = Flask(__name__)
    app.config.from_object(CONFIGS[config_name])

    configure_logging(app)

    # Extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Models must be imported before create_all()/migrations see the metadata
    from . import models  # noqa: F401
    from .ai import build_assistant

    app.extensions["sitemaster_assistant"] = build_assistant(app.config)

    # ----------------------------------------------------------------------
    # CLI
    # ----------------------------------------------------------------------
    @app.cli.command("seed-data")
    def seed_data_command():
        """Seed default projects, tasks and parties."""
        from .seed import seed_defaults

        db.create_all()
        seed_defaults()
        click.echo(f"{app.config['APP_NAME']}: default projects, tasks and parties seeded.")

    @app.cli.command("annotate-dprs")
    def annotate_dprs_command():
        """Re-run material leakage detection over every stored DPR."""
        service = get_service()
        dprs = service.store.load("dprs")
        service.store.save("dprs", dprs)
        service.store.commit()
        flagged = sum(1 for d in dprs if d.leakage_alert)
        click.echo(f"{len(dprs)} DPR(s) annotated, {flagged} with leakage alerts.")

    @app.cli.command("audit-trail")
    @click.option("--limit", default=20, show_default=True, help="Number of latest entries to show.")
    def audit_trail_command(limit: int):
        """Print the latest audit entries."""
        entries = get_service().audit.entries()
        for entry in entries[-limit:]:
            line = f"{entry.timestamp:%Y-%m-%d %H:%M:%S}  {entry.action:<32} {entry.performed_by} ({entry.role}) -> {entry.target_id}"
            if entry.remarks:
                line += f"  [{entry.remarks}]"
            click.echo(line)

    @app.cli.command("site-summary")
    @click.argument("project_id")
    def site_summary_command(project_id: str):
        """Print the AI executive summary for a project."""
        from .errors import NotFoundError

        try:
            click.echo(get_service().site_summary(project_id))
        except NotFoundError as exc:
            raise click.ClickException(str(exc)) from exc

    return app


def get_service():
    """SiteService bound to the current app's database session and AI provider."""
    from .repositories import SqlStore
    from .services import SiteService

    return SiteService(SqlStore(), assistant=current_app.extensions["sitemaster_assistant"])
