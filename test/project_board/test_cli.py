"""
Test suite for the click CLI.

Runs the trash commands end to end against a temporary database through
CliRunner; the server commands are checked with uvicorn and the MCP server
patched out.
"""

import json
import socket
import sqlite3
from unittest.mock import patch

from click.testing import CliRunner

from project_board.cli import main, check_port_available
from project_board.database import BoardDatabase


def _invoke(db_path, *args):
    return CliRunner().invoke(main, ['--db-path', db_path, *args])


class TestTrashCommands:
    """delete/restore/trash commands."""

    def test_project_round_trip(self, db_path, temp_db, seeded_board):
        project_id = str(seeded_board["project_id"])

        result = _invoke(db_path, 'delete-project', project_id, '--actor-id', '7', '--actor-name', 'Alice')
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["bucket_ids"] == seeded_board["bucket_ids"]
        assert data["task_ids"] == seeded_board["task_ids"]

        result = _invoke(db_path, 'trash')
        assert result.exit_code == 0, result.output
        assert [p["id"] for p in json.loads(result.output)["projects"]] == [seeded_board["project_id"]]

        result = _invoke(db_path, 'restore-project', project_id)
        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["task_ids"] == seeded_board["task_ids"]
        assert temp_db.get_project(seeded_board["project_id"]) is not None

    def test_task_round_trip(self, db_path, seeded_board):
        task_id = str(seeded_board["task_ids"][0])

        result = _invoke(db_path, 'delete-task', task_id, '--actor-name', 'Bob')
        assert result.exit_code == 0, result.output

        result = _invoke(db_path, 'trash', '--standalone-only')
        assert [t["id"] for t in json.loads(result.output)["tasks"]] == [int(task_id)]

        result = _invoke(db_path, 'restore-task', task_id)
        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["bucket_id"] == seeded_board["bucket_ids"][0]

    def test_not_found_exits_non_zero(self, db_path, temp_db):
        result = _invoke(db_path, 'restore-project', '42')
        assert result.exit_code == 1
        assert "NotFoundError" in result.output

    def test_invalid_id(self, db_path):
        result = _invoke(db_path, 'delete-task', '0')
        assert result.exit_code == 2

    def test_db_path_from_environment(self, db_path, seeded_board):
        result = CliRunner().invoke(
            main, ['delete-task', str(seeded_board["task_ids"][1])], env={'DATABASE_PATH': db_path}
        )
        assert result.exit_code == 0, result.output


class TestImportCommand:
    """import command."""

    def test_import(self, db_path, temp_db, tmp_path):
        board = tmp_path / "board.yaml"
        board.write_text("projects:\n  - name: Imported\n    buckets:\n      - title: Inbox\n")

        result = _invoke(db_path, 'import', str(board))

        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["projects_created"] == 1
        assert [p.name for p in temp_db.get_all_projects()] == ["Imported"]

    def test_import_missing_file(self, db_path):
        result = _invoke(db_path, 'import', '/nonexistent/board.yaml')
        assert result.exit_code == 2


class TestServerCommands:
    """serve and mcp commands with the servers patched out."""

    def test_serve(self, db_path):
        with patch('uvicorn.run') as mock_run, \
                patch('project_board.cli.check_port_available', return_value=True):
            result = _invoke(db_path, 'serve', '--port', '9123')

        assert result.exit_code == 0, result.output
        assert mock_run.call_args.kwargs["port"] == 9123

    def test_serve_port_in_use(self, db_path):
        with patch('project_board.cli.check_port_available', return_value=False):
            result = _invoke(db_path, 'serve', '--port', '9123')
        assert result.exit_code == 1
        assert "already in use" in result.output

    def test_mcp(self, db_path):
        with patch('project_board.mcp_server.ProjectBoardMCPServer.start_server_sync') as mock_start:
            result = _invoke(db_path, 'mcp', '--transport', 'sse', '--port', '9124')

        assert result.exit_code == 0, result.output
        mock_start.assert_called_once_with(transport='sse', host='127.0.0.1', port=9124)

    def test_mcp_invalid_transport(self, db_path):
        result = _invoke(db_path, 'mcp', '--transport', 'carrier-pigeon')
        assert result.exit_code == 2


class TestPortCheck:
    """Port availability helper."""

    def test_port_in_use(self):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(('127.0.0.1', 0))
            sock.listen(1)
            port = sock.getsockname()[1]
            assert not check_port_available('127.0.0.1', port)


class TestStoreErrors:
    """Store failures surface as a clean CLI error."""

    def test_locked_database(self, db_path, seeded_board):
        db = BoardDatabase(db_path, busy_timeout_ms=0)
        other = sqlite3.connect(db_path, isolation_level=None, timeout=0)
        other.execute("BEGIN IMMEDIATE")
        try:
            with patch('project_board.cli.BoardDatabase', return_value=db):
                result = _invoke(db_path, 'delete-task', str(seeded_board["task_ids"][0]))
        finally:
            other.execute("ROLLBACK")
            other.close()

        assert result.exit_code == 1
        assert "TransactionFailure" in result.output
        assert not isinstance(result.exception, sqlite3.Error)
