"""
Shared fixtures for the project board test suite.

Provides an isolated temporary database per test, the reference board
(one project, two buckets, two tasks) used across the archive, API, tool
and CLI tests, and a mocked WebSocket manager.
"""

import os
import sys
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..', 'src'))

from project_board.api import ConnectionManager
from project_board.database import BoardDatabase
from project_board.models import CustomFieldConfig


def _remove_database_files(path: str) -> None:
    for suffix in ("", "-wal", "-shm"):
        Path(path + suffix).unlink(missing_ok=True)


@pytest.fixture
def db_path():
    """Path to a fresh temporary database file, removed after the test."""
    fd, path = tempfile.mkstemp(suffix='.db')
    os.close(fd)
    yield path
    _remove_database_files(path)


@pytest.fixture
def temp_db(db_path):
    db = BoardDatabase(db_path)
    yield db
    db.close()


@pytest.fixture
def seeded_board(temp_db):
    """
    Project 1 with B1 (position 0), B2 (position 1), T1 in B1 and T2 in B2.

    B1 carries a custom field definition and T1 carries values for it so that
    round trips cover the JSON columns.
    """
    project_id = temp_db.create_project(
        "Website Relaunch", description="Q3 relaunch", owner_id=7
    )
    bucket1_id = temp_db.create_bucket(
        project_id,
        "To Do",
        position=0,
        custom_fields_config=[
            CustomFieldConfig(key="client", label="Client", required=True),
            CustomFieldConfig(key="size", label="Size", type="select", options=["S", "M", "L"]),
        ],
    )
    bucket2_id = temp_db.create_bucket(project_id, "Done", position=1)
    task1_id = temp_db.create_task(
        project_id,
        "Draft landing copy",
        bucket_id=bucket1_id,
        position=0,
        priority="high",
        assigned_users=[7, 9],
        checklist=[{"text": "Outline", "done": True}],
        history=["created by Alice"],
        custom_fields="client=Acme||size=M",
    )
    task2_id = temp_db.create_task(project_id, "Ship assets", bucket_id=bucket2_id, position=0)

    return {
        "project_id": project_id,
        "bucket_ids": [bucket1_id, bucket2_id],
        "task_ids": [task1_id, task2_id],
    }


@pytest.fixture
def mock_websocket_manager():
    """Mock ConnectionManager for isolated testing."""
    manager = MagicMock(spec=ConnectionManager)
    manager.broadcast = AsyncMock()
    return manager
