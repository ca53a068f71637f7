"""Database migration CLI commands using Alembic programmatically."""

from pathlib import Path
from typing import TYPE_CHECKING

import typer
from loguru import logger

if TYPE_CHECKING:
    from alembic.config import Config

db_app = typer.Typer()


def _alembic_config(config_file: Path) -> "Config":
    from alembic.config import Config

    if not config_file.exists():
        typer.echo(f"Alembic config not found: {config_file}", err=True)
        raise typer.Exit(code=1)
    return Config(str(config_file))


@db_app.command()
def upgrade(
    revision: str = typer.Argument("head", help="Target revision"),
    config_file: Path = typer.Option(Path("alembic.ini"), "--config", help="Path to alembic.ini"),  # noqa: B008
) -> None:
    """Apply lead import migrations up to the target revision."""
    from alembic import command

    config = _alembic_config(config_file)
    logger.info(f"Upgrading database to {revision}")
    command.upgrade(config, revision)
    logger.info("Database upgrade complete")


@db_app.command()
def downgrade(
    revision: str = typer.Argument("-1", help="Target revision"),
    config_file: Path = typer.Option(Path("alembic.ini"), "--config", help="Path to alembic.ini"),  # noqa: B008
) -> None:
    """Roll lead import migrations back to the target revision."""
    from alembic import command

    config = _alembic_config(config_file)
    logger.info(f"Downgrading database to {revision}")
    command.downgrade(config, revision)
    logger.info("Database downgrade complete")


@db_app.command()
def current(
    config_file: Path = typer.Option(Path("alembic.ini"), "--config", help="Path to alembic.ini"),  # noqa: B008
) -> None:
    """Show the revision the database is at."""
    from alembic import command

    command.current(_alembic_config(config_file), verbose=True)
