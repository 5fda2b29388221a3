"""
Command Line Interface for the Project Board

Click command group that starts the REST/WebSocket API or the MCP server,
seeds boards from YAML, and runs the trash operations directly against a
database file.

Usage:
    project-board serve --port 8080
    project-board mcp --transport stdio
    project-board import board.yaml
    project-board delete-project 3 --actor-id 7 --actor-name Alice
    project-board restore-project 3
    project-board trash --standalone-only
"""

import json
import logging
import socket
import sys
from contextlib import contextmanager
from typing import Any, Dict

import click

from . import archive
from .database import BoardDatabase
from .exceptions import ArchiveError
from .importer import import_board_from_file

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = "project_board.db"


def check_port_available(host: str, port: int) -> bool:
    """Return True when nothing is bound to host:port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
            return True
        except OSError:
            return False


def print_startup_banner(host: str, port: int, db_path: str) -> None:
    """Print server endpoints to stderr so stdout stays clean."""
    click.echo("=" * 60, err=True)
    click.echo("Project Board API", err=True)
    click.echo("=" * 60, err=True)
    click.echo(f"REST API:   http://{host}:{port}/api", err=True)
    click.echo(f"WebSocket:  ws://{host}:{port}/ws/updates", err=True)
    click.echo(f"Health:     http://{host}:{port}/healthz", err=True)
    click.echo(f"Database:   {db_path}", err=True)
    click.echo("=" * 60, err=True)


def _echo_json(data: Dict[str, Any]) -> None:
    click.echo(json.dumps(data, indent=2))


@contextmanager
def _open_database(ctx: click.Context):
    try:
        db = BoardDatabase(ctx.obj["db_path"])
    except RuntimeError as e:
        raise click.ClickException(str(e))
    try:
        yield db
    finally:
        db.close()


@contextmanager
def _archive_errors(action: str):
    """Turn core archive errors into a non-zero CLI exit."""
    try:
        yield
    except ArchiveError as e:
        logger.error(f"{action} failed: {e}")
        raise click.ClickException(f"{type(e).__name__}: {e.message}")


@click.group()
@click.option('--db-path', envvar='DATABASE_PATH', default=DEFAULT_DB_PATH, show_default=True,
              help='SQLite database file')
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
@click.pass_context
def main(ctx, db_path, verbose):
    """Project board with soft-delete and restore."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        stream=sys.stderr,
        format='%(asctime)s %(name)s %(levelname)s %(message)s',
    )
    ctx.ensure_object(dict)
    ctx.obj["db_path"] = db_path


@main.command()
@click.option('--host', default='127.0.0.1', show_default=True, help='Bind address')
@click.option('--port', default=8080, show_default=True, type=click.IntRange(1, 65535), help='API port')
@click.pass_context
def serve(ctx, host, port):
    """Run the REST API and WebSocket server."""
    import uvicorn
    from . import api

    if not check_port_available(host, port):
        raise click.ClickException(f"Port {port} on {host} is already in use")

    api.DB_PATH = ctx.obj["db_path"]
    print_startup_banner(host, port, api.DB_PATH)
    uvicorn.run(api.app, host=host, port=port, log_level="info")


@main.command()
@click.option('--transport', type=click.Choice(['stdio', 'sse', 'http']), default='stdio',
              show_default=True, help='MCP transport')
@click.option('--host', default='127.0.0.1', show_default=True, help='Bind address for sse/http')
@click.option('--port', default=8081, show_default=True, type=click.IntRange(1, 65535),
              help='Port for sse/http')
@click.pass_context
def mcp(ctx, transport, host, port):
    """Run the MCP server exposing the trash tools."""
    from .api import connection_manager
    from .mcp_server import create_mcp_server

    with _open_database(ctx) as db:
        server = create_mcp_server(db, connection_manager)
        server.start_server_sync(transport=transport, host=host, port=port)


@main.command(name='import')
@click.argument('yaml_file', type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def import_cmd(ctx, yaml_file):
    """Seed projects, buckets and tasks from a YAML file."""
    with _open_database(ctx) as db:
        try:
            stats = import_board_from_file(db, yaml_file)
        except (ValueError, RuntimeError) as e:
            raise click.ClickException(str(e))
    for error in stats["errors"]:
        click.echo(f"warning: {error}", err=True)
    _echo_json(stats)


@main.command(name='delete-project')
@click.argument('project_id', type=click.IntRange(min=1))
@click.option('--actor-id', type=int, default=None, help='User performing the delete')
@click.option('--actor-name', default=None, help='Display name recorded on the tombstone')
@click.pass_context
def delete_project_cmd(ctx, project_id, actor_id, actor_name):
    """Move a project with its buckets and tasks to the trash."""
    with _open_database(ctx) as db, _archive_errors("delete-project"):
        result = archive.delete_project(db, project_id, actor_id, actor_name)
    _echo_json({
        "project_id": project_id,
        "name": result.project.name,
        "bucket_ids": [bucket.id for bucket in result.buckets],
        "task_ids": [task.id for task in result.tasks],
    })


@main.command(name='delete-task')
@click.argument('task_id', type=click.IntRange(min=1))
@click.option('--actor-id', type=int, default=None, help='User performing the delete')
@click.option('--actor-name', default=None, help='Display name recorded on the tombstone')
@click.pass_context
def delete_task_cmd(ctx, task_id, actor_id, actor_name):
    """Move a single task to the trash."""
    with _open_database(ctx) as db, _archive_errors("delete-task"):
        task = archive.delete_task(db, task_id, actor_id, actor_name)
    _echo_json({"task_id": task.id, "title": task.title, "project_id": task.project_id})


@main.command(name='restore-project')
@click.argument('project_id', type=click.IntRange(min=1))
@click.pass_context
def restore_project_cmd(ctx, project_id):
    """Restore a deleted project with the buckets and tasks removed with it."""
    with _open_database(ctx) as db, _archive_errors("restore-project"):
        result = archive.restore_project(db, project_id)
    _echo_json({
        "project_id": result.project.id,
        "name": result.project.name,
        "bucket_ids": [bucket.id for bucket in result.buckets],
        "task_ids": [task.id for task in result.tasks],
    })


@main.command(name='restore-task')
@click.argument('task_id', type=click.IntRange(min=1))
@click.pass_context
def restore_task_cmd(ctx, task_id):
    """Restore a single deleted task into its project."""
    with _open_database(ctx) as db, _archive_errors("restore-task"):
        task = archive.restore_task(db, task_id)
    _echo_json({
        "task_id": task.id,
        "title": task.title,
        "project_id": task.project_id,
        "bucket_id": task.bucket_id,
    })


@main.command()
@click.option('--project-id', type=click.IntRange(min=1), default=None,
              help='Only task tombstones of this project')
@click.option('--standalone-only', is_flag=True, help='Only tasks deleted on their own')
@click.pass_context
def trash(ctx, project_id, standalone_only):
    """List deleted projects and tasks."""
    with _open_database(ctx) as db:
        projects = [] if project_id is not None else db.list_deleted_projects()
        tasks = db.list_deleted_tasks(project_id=project_id, standalone_only=standalone_only)
    _echo_json({
        "projects": [
            {"id": p.id, "name": p.name, "deleted_at": p.deleted_at, "deleted_by_name": p.deleted_by_name}
            for p in projects
        ],
        "tasks": [
            {
                "id": t.id,
                "title": t.title,
                "project_id": t.project_id,
                "deleted_by_project": t.deleted_by_project,
                "deleted_at": t.deleted_at,
            }
            for t in tasks
        ],
    })


if __name__ == '__main__':
    main()
