"""
Command line interface for Gantt Manager.

``serve`` starts the REST API under uvicorn, ``import`` loads a YAML task tree
into the database and ``export`` writes the current tree back out as YAML.
"""

import logging
import os
import socket
from typing import Any, Dict, Optional

import click
import uvicorn
import yaml

from .database import GanttDatabase
from .errors import GanttError
from .importer import export_gantt, import_gantt_from_file, load_gantt_yaml
from .models import ROOT_ID

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = "gantt.db"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080


def check_port_available(host: str, port: int) -> bool:
    """Return True if ``port`` can be bound on ``host``."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
            return True
        except OSError:
            return False


def validate_gantt_yaml(file_path: str) -> Dict[str, Any]:
    """
    Parse and sanity-check a Gantt YAML file before importing it.

    Raises:
        click.BadParameter: If the file is not valid Gantt YAML
    """
    try:
        data = load_gantt_yaml(file_path)
    except FileNotFoundError:
        raise click.BadParameter(f"YAML file not found: {file_path}")
    except yaml.YAMLError as e:
        raise click.BadParameter(f"Invalid YAML format: {e}")

    if not isinstance(data, dict):
        raise click.BadParameter("Gantt YAML must be a mapping with 'tasks' and 'links'")
    if not isinstance(data.get("tasks", []), list):
        raise click.BadParameter("YAML 'tasks' must be a list")
    return data


def print_startup_banner(host: str, port: int, db_path: str) -> None:
    click.echo("Gantt Manager API")
    click.echo(f"  Database: {db_path}")
    click.echo(f"  REST API: http://{host}:{port}")
    click.echo(f"  Health:   http://{host}:{port}/healthz")


def _report_import(stats: Dict[str, Any]) -> None:
    click.echo(f"Imported {stats['tasks_created']} tasks and {stats['links_created']} links")
    for error in stats["errors"]:
        click.echo(f"  warning: {error}", err=True)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def main(verbose: bool):
    """Gantt Manager: task tree and dependency link backend."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command()
@click.option("--db-path", default=DEFAULT_DB_PATH, show_default=True, envvar="DATABASE_PATH",
              help="SQLite database file")
@click.option("--reset", is_flag=True, help="Drop and recreate all tables on startup")
@click.option("--host", default=DEFAULT_HOST, show_default=True)
@click.option("--port", default=DEFAULT_PORT, show_default=True, type=int)
@click.option("--import", "import_file", type=click.Path(dir_okay=False),
              help="YAML file to import before starting")
def serve(db_path: str, reset: bool, host: str, port: int, import_file: Optional[str]):
    """Start the REST API server."""
    if not check_port_available(host, port):
        raise click.ClickException(f"Port {port} on {host} is already in use")

    if import_file:
        validate_gantt_yaml(import_file)
        db = GanttDatabase(db_path, reset=reset)
        try:
            _report_import(import_gantt_from_file(db, import_file))
        finally:
            db.close()
        # Tables were already reset before the import
        reset = False

    # The API module reads its configuration from the environment at startup
    os.environ["DATABASE_PATH"] = db_path
    os.environ["RESET_ON_START"] = "1" if reset else "0"

    logger.info(f"Starting API on {host}:{port} with database {db_path}")
    print_startup_banner(host, port, db_path)
    uvicorn.run("gantt_manager.api:app", host=host, port=port, log_level="info")


@main.command("import")
@click.argument("yaml_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--db-path", default=DEFAULT_DB_PATH, show_default=True, envvar="DATABASE_PATH")
@click.option("--parent", default=ROOT_ID, show_default=True, type=int,
              help="Existing task to import under (0 = top level)")
@click.option("--reset", is_flag=True, help="Drop and recreate all tables first")
def import_command(yaml_file: str, db_path: str, parent: int, reset: bool):
    """Import a YAML task tree with links."""
    validate_gantt_yaml(yaml_file)
    db = GanttDatabase(db_path, reset=reset)
    try:
        stats = import_gantt_from_file(db, yaml_file, parent=parent)
    except GanttError as e:
        raise click.ClickException(e.message)
    finally:
        db.close()
    _report_import(stats)


@main.command("export")
@click.option("--db-path", default=DEFAULT_DB_PATH, show_default=True, envvar="DATABASE_PATH")
@click.option("--output", "-o", type=click.Path(dir_okay=False), help="Output file (default stdout)")
def export_command(db_path: str, output: Optional[str]):
    """Export the task tree and links as YAML."""
    db = GanttDatabase(db_path)
    try:
        data = export_gantt(db)
    finally:
        db.close()

    text = yaml.safe_dump(data, sort_keys=False, allow_unicode=True)
    if output:
        with open(output, "w", encoding="utf-8") as f:
            f.write(text)
        click.echo(f"Exported {len(data['links'])} links and task tree to {output}")
    else:
        click.echo(text, nl=False)


if __name__ == "__main__":
    main()
