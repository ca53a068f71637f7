"""Typer CLI root application with serve command."""

import typer

from academy_crm.core.config import get_settings
from academy_crm.core.logging import setup_logging

app = typer.Typer(name="academy-crm", help="Academy CRM lead import CLI")


@app.callback()
def _main_callback() -> None:
    """Initialize logging for all CLI commands."""
    settings = get_settings()
    setup_logging(settings.log_level, log_dir=settings.log_dir, json_logs=settings.log_json)


@app.command()
def serve(
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload for development"),
    host: str = typer.Option("0.0.0.0", "--host", help="Bind host"),  # noqa: S104
    port: int = typer.Option(8000, "--port", help="Bind port"),
) -> None:
    """Start the API server."""
    import uvicorn

    uvicorn.run(
        "academy_crm.main:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


def _register_subcommands() -> None:
    """Register all CLI subcommand groups."""
    from academy_crm.cli.db_cmd import db_app
    from academy_crm.cli.import_cmd import import_app

    app.add_typer(db_app, name="db", help="Database migration commands")
    app.add_typer(import_app, name="import", help="Lead import commands")


_register_subcommands()
