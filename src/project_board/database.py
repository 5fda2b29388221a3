"""
Board Database Layer with Tombstone Store

Provides SQLite-based storage (WAL mode) for the live project board
(projects → buckets → tasks) and for the tombstone tables that back
soft-delete and restore (deleted_projects, deleted_tasks).

Row-level helpers take an open cursor so that multi-step operations can run
inside a single transaction opened with BoardDatabase.transaction().
"""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any, List, Iterable, Set

from .exceptions import ConflictError, TransactionFailure
from .models import Project, Bucket, Task, DeletedProject, DeletedTask, CustomFieldConfig

logger = logging.getLogger(__name__)

PROJECT_COLUMNS = [
    "id", "name", "description", "status", "start_date", "end_date",
    "owner_id", "last_modified_by",
]
BUCKET_COLUMNS = ["id", "title", "project_id", "position", "custom_fields_config"]
TASK_COLUMNS = [
    "id", "title", "description", "status", "priority", "project_id", "bucket_id",
    "assignee_id", "assigned_users", "estimate_hours", "estimate_minutes", "history",
    "checklist", "attachments", "start_date", "due_date", "position", "created_at",
    "custom_fields",
]
DELETION_COLUMNS = ["deleted_at", "deleted_by", "deleted_by_name"]
DELETED_PROJECT_COLUMNS = PROJECT_COLUMNS + ["buckets"] + DELETION_COLUMNS
DELETED_TASK_COLUMNS = TASK_COLUMNS + ["deleted_by_project"] + DELETION_COLUMNS

# Columns holding JSON arrays; read back as [] when missing or malformed
JSON_COLUMNS = {"custom_fields_config", "assigned_users", "history", "checklist", "attachments", "buckets"}
BOOLEAN_COLUMNS = {"deleted_by_project"}


def utc_now_str() -> str:
    """Current UTC time as an ISO string with a Z suffix."""
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + 'Z'


def _parse_json_array(text: Optional[str]) -> List[Any]:
    if not text:
        return []
    try:
        value = json.loads(text)
    except (ValueError, TypeError):
        return []
    return value if isinstance(value, list) else []


def _decode_row(row: sqlite3.Row) -> Dict[str, Any]:
    """
    Convert a stored row into model field values.

    NULL columns are left out so the model defaults apply.
    """
    data = {key: value for key, value in dict(row).items() if value is not None}
    for column in JSON_COLUMNS & data.keys():
        data[column] = _parse_json_array(data[column])
    for column in BOOLEAN_COLUMNS & data.keys():
        data[column] = bool(data[column])
    return data


def _encode_value(column: str, value: Any) -> Any:
    if column in JSON_COLUMNS:
        return json.dumps(value if value is not None else [])
    if column in BOOLEAN_COLUMNS:
        return 1 if value else 0
    return value


def insert_row(cursor: sqlite3.Cursor, table: str, columns: List[str], data: Dict[str, Any]) -> int:
    """Insert one row using the given column order and return its rowid."""
    placeholders = ", ".join("?" for _ in columns)
    cursor.execute(
        f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
        tuple(_encode_value(column, data.get(column)) for column in columns),
    )
    return cursor.lastrowid


def _insert_with_id(cursor: sqlite3.Cursor, table: str, columns: List[str], data: Dict[str, Any]) -> None:
    """Insert a row with an explicit id; a duplicate identity raises ConflictError."""
    try:
        insert_row(cursor, table, columns, data)
    except sqlite3.IntegrityError as e:
        if "UNIQUE" in str(e) or "PRIMARY KEY" in str(e):
            raise ConflictError(
                f"{table} row {data.get('id')} already exists",
                entity=table,
                entity_id=data.get("id"),
            ) from e
        raise


def row_exists(cursor: sqlite3.Cursor, table: str, row_id: int) -> bool:
    cursor.execute(f"SELECT 1 FROM {table} WHERE id = ?", (row_id,))
    return cursor.fetchone() is not None


# Live store helpers


def fetch_project(cursor: sqlite3.Cursor, project_id: int) -> Optional[Project]:
    cursor.execute("SELECT * FROM projects WHERE id = ?", (project_id,))
    row = cursor.fetchone()
    return Project(**_decode_row(row)) if row else None


def fetch_buckets(cursor: sqlite3.Cursor, project_id: int) -> List[Bucket]:
    cursor.execute(
        "SELECT * FROM buckets WHERE project_id = ? ORDER BY position ASC, id ASC",
        (project_id,),
    )
    return [Bucket(**_decode_row(row)) for row in cursor.fetchall()]


def fetch_bucket(cursor: sqlite3.Cursor, bucket_id: int) -> Optional[Bucket]:
    cursor.execute("SELECT * FROM buckets WHERE id = ?", (bucket_id,))
    row = cursor.fetchone()
    return Bucket(**_decode_row(row)) if row else None


def fetch_live_bucket_ids(cursor: sqlite3.Cursor, project_id: int) -> Set[int]:
    cursor.execute("SELECT id FROM buckets WHERE project_id = ?", (project_id,))
    return {row[0] for row in cursor.fetchall()}


def fetch_tasks(cursor: sqlite3.Cursor, project_id: int) -> List[Task]:
    cursor.execute(
        "SELECT * FROM tasks WHERE project_id = ? ORDER BY position ASC, id ASC",
        (project_id,),
    )
    return [Task(**_decode_row(row)) for row in cursor.fetchall()]


def fetch_task(cursor: sqlite3.Cursor, task_id: int) -> Optional[Task]:
    cursor.execute("SELECT * FROM tasks WHERE id = ?", (task_id,))
    row = cursor.fetchone()
    return Task(**_decode_row(row)) if row else None


def insert_project(cursor: sqlite3.Cursor, project: Project) -> None:
    _insert_with_id(cursor, "projects", PROJECT_COLUMNS, project.model_dump(mode="json"))


def insert_bucket(cursor: sqlite3.Cursor, bucket: Bucket) -> None:
    _insert_with_id(cursor, "buckets", BUCKET_COLUMNS, bucket.model_dump(mode="json"))


def insert_task(cursor: sqlite3.Cursor, task: Task) -> None:
    _insert_with_id(cursor, "tasks", TASK_COLUMNS, task.model_dump(mode="json"))


def delete_tasks_by_project(cursor: sqlite3.Cursor, project_id: int) -> int:
    cursor.execute("DELETE FROM tasks WHERE project_id = ?", (project_id,))
    return cursor.rowcount


def delete_buckets_by_project(cursor: sqlite3.Cursor, project_id: int) -> int:
    cursor.execute("DELETE FROM buckets WHERE project_id = ?", (project_id,))
    return cursor.rowcount


def delete_project_row(cursor: sqlite3.Cursor, project_id: int) -> int:
    cursor.execute("DELETE FROM projects WHERE id = ?", (project_id,))
    return cursor.rowcount


def delete_task_row(cursor: sqlite3.Cursor, task_id: int) -> int:
    cursor.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
    return cursor.rowcount


# Tombstone store helpers


def fetch_deleted_project(cursor: sqlite3.Cursor, project_id: int) -> Optional[DeletedProject]:
    cursor.execute("SELECT * FROM deleted_projects WHERE id = ?", (project_id,))
    row = cursor.fetchone()
    return DeletedProject(**_decode_row(row)) if row else None


def fetch_deleted_task(cursor: sqlite3.Cursor, task_id: int) -> Optional[DeletedTask]:
    cursor.execute("SELECT * FROM deleted_tasks WHERE id = ?", (task_id,))
    row = cursor.fetchone()
    return DeletedTask(**_decode_row(row)) if row else None


def fetch_cascaded_tasks(cursor: sqlite3.Cursor, project_id: int) -> List[DeletedTask]:
    """Task tombstones written by the cascade delete of project_id."""
    cursor.execute(
        """
        SELECT * FROM deleted_tasks
        WHERE project_id = ? AND deleted_by_project = 1
        ORDER BY position ASC, id ASC
        """,
        (project_id,),
    )
    return [DeletedTask(**_decode_row(row)) for row in cursor.fetchall()]


def insert_deleted_project(cursor: sqlite3.Cursor, tombstone: DeletedProject) -> None:
    _insert_with_id(cursor, "deleted_projects", DELETED_PROJECT_COLUMNS, tombstone.model_dump(mode="json"))


def insert_deleted_tasks(cursor: sqlite3.Cursor, tombstones: Iterable[DeletedTask]) -> None:
    for tombstone in tombstones:
        _insert_with_id(cursor, "deleted_tasks", DELETED_TASK_COLUMNS, tombstone.model_dump(mode="json"))


def delete_deleted_project(cursor: sqlite3.Cursor, project_id: int) -> int:
    cursor.execute("DELETE FROM deleted_projects WHERE id = ?", (project_id,))
    return cursor.rowcount


def delete_deleted_tasks(cursor: sqlite3.Cursor, task_ids: Iterable[int]) -> int:
    cursor.executemany("DELETE FROM deleted_tasks WHERE id = ?", [(task_id,) for task_id in task_ids])
    return cursor.rowcount


def select_deleted_projects(cursor: sqlite3.Cursor) -> List[DeletedProject]:
    cursor.execute("SELECT * FROM deleted_projects ORDER BY deleted_at DESC, id DESC")
    return [DeletedProject(**_decode_row(row)) for row in cursor.fetchall()]


def select_deleted_tasks(
    cursor: sqlite3.Cursor, project_id: Optional[int] = None, standalone_only: bool = False
) -> List[DeletedTask]:
    query = "SELECT * FROM deleted_tasks WHERE 1 = 1"
    params: List[Any] = []
    if project_id is not None:
        query += " AND project_id = ?"
        params.append(project_id)
    if standalone_only:
        query += " AND deleted_by_project = 0"
    query += " ORDER BY deleted_at DESC, id DESC"
    cursor.execute(query, params)
    return [DeletedTask(**_decode_row(row)) for row in cursor.fetchall()]


class BoardDatabase:
    """
    SQLite database for the project board and its tombstone store.

    Features:
    - WAL mode for concurrent read/write access
    - Explicit BEGIN IMMEDIATE transactions for multi-step operations
    - Thread-safe access to a single shared connection
    - Foreign keys enforced; children must be removed before parents
    """

    def __init__(self, db_path: str, busy_timeout_ms: int = 5000):
        """
        Initialize BoardDatabase with SQLite WAL mode configuration.

        Args:
            db_path: Path to SQLite database file
            busy_timeout_ms: How long a writer waits for the database lock
        """
        self.db_path = Path(db_path)
        self.busy_timeout_ms = busy_timeout_ms
        self._connection_lock = threading.RLock()
        self._connection: Optional[sqlite3.Connection] = None

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_database()

    def _initialize_database(self, drop_existing: bool = False) -> None:
        """Open the connection, configure pragmas and create the schema."""
        try:
            # Autocommit mode; transaction boundaries are explicit
            self._connection = sqlite3.connect(
                str(self.db_path),
                isolation_level=None,
                check_same_thread=False,
            )
            self._connection.row_factory = sqlite3.Row

            cursor = self._connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute(f"PRAGMA busy_timeout={int(self.busy_timeout_ms)}")
            cursor.execute("PRAGMA foreign_keys=ON")

            if drop_existing:
                self._drop_existing_tables()

            self._create_schema()

        except sqlite3.Error as e:
            logger.error(f"Failed to initialize database at {self.db_path}: {e}")
            raise RuntimeError(f"Failed to initialize database at {self.db_path}: {e}")

    def _create_schema(self) -> None:
        """Create live and tombstone tables with indexes."""
        cursor = self._connection.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS projects (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                description TEXT,
                status TEXT NOT NULL DEFAULT 'active',
                start_date TEXT,
                end_date TEXT,
                owner_id INTEGER,
                last_modified_by INTEGER
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS buckets (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                project_id INTEGER NOT NULL,
                position INTEGER NOT NULL DEFAULT 0,
                custom_fields_config TEXT NOT NULL DEFAULT '[]',
                FOREIGN KEY (project_id) REFERENCES projects (id),
                CONSTRAINT json_custom_fields_config CHECK (json_valid(custom_fields_config) AND json_type(custom_fields_config) = 'array')
            )
        """)

        # bucket_id is detached rather than cascaded when a bucket goes away
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS tasks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                description TEXT,
                status TEXT NOT NULL DEFAULT 'todo',
                priority TEXT NOT NULL DEFAULT 'medium',
                project_id INTEGER NOT NULL,
                bucket_id INTEGER,
                assignee_id INTEGER,
                assigned_users TEXT NOT NULL DEFAULT '[]',
                estimate_hours INTEGER DEFAULT 0,
                estimate_minutes INTEGER DEFAULT 0,
                history TEXT NOT NULL DEFAULT '[]',
                checklist TEXT NOT NULL DEFAULT '[]',
                attachments TEXT NOT NULL DEFAULT '[]',
                start_date TEXT,
                due_date TEXT,
                position INTEGER NOT NULL DEFAULT 0,
                created_at TEXT,
                custom_fields TEXT,
                FOREIGN KEY (project_id) REFERENCES projects (id),
                FOREIGN KEY (bucket_id) REFERENCES buckets (id) ON DELETE SET NULL,
                CONSTRAINT json_assigned_users CHECK (json_valid(assigned_users) AND json_type(assigned_users) = 'array'),
                CONSTRAINT json_history CHECK (json_valid(history) AND json_type(history) = 'array'),
                CONSTRAINT json_checklist CHECK (json_valid(checklist) AND json_type(checklist) = 'array'),
                CONSTRAINT json_attachments CHECK (json_valid(attachments) AND json_type(attachments) = 'array')
            )
        """)

        # Tombstones keep the original identity, so ids are never generated here
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS deleted_projects (
                id INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                description TEXT,
                status TEXT,
                start_date TEXT,
                end_date TEXT,
                owner_id INTEGER,
                last_modified_by INTEGER,
                buckets TEXT NOT NULL DEFAULT '[]',
                deleted_at TEXT NOT NULL,
                deleted_by INTEGER,
                deleted_by_name TEXT,
                CONSTRAINT json_buckets CHECK (json_valid(buckets) AND json_type(buckets) = 'array')
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS deleted_tasks (
                id INTEGER PRIMARY KEY,
                title TEXT NOT NULL,
                description TEXT,
                status TEXT,
                priority TEXT,
                project_id INTEGER,
                bucket_id INTEGER,
                assignee_id INTEGER,
                assigned_users TEXT NOT NULL DEFAULT '[]',
                estimate_hours INTEGER,
                estimate_minutes INTEGER,
                history TEXT NOT NULL DEFAULT '[]',
                checklist TEXT NOT NULL DEFAULT '[]',
                attachments TEXT NOT NULL DEFAULT '[]',
                start_date TEXT,
                due_date TEXT,
                position INTEGER NOT NULL DEFAULT 0,
                created_at TEXT,
                custom_fields TEXT,
                deleted_by_project INTEGER NOT NULL DEFAULT 0 CHECK (deleted_by_project IN (0, 1)),
                deleted_at TEXT NOT NULL,
                deleted_by INTEGER,
                deleted_by_name TEXT
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_buckets_project_position
            ON buckets(project_id, position)
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_tasks_project_position
            ON tasks(project_id, position)
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_tasks_bucket_id
            ON tasks(bucket_id)
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_deleted_tasks_project_cascade
            ON deleted_tasks(project_id, deleted_by_project)
        """)

    def _drop_existing_tables(self) -> None:
        """Drop all tables, children before parents."""
        cursor = self._connection.cursor()
        cursor.execute("DROP TABLE IF EXISTS deleted_tasks")
        cursor.execute("DROP TABLE IF EXISTS deleted_projects")
        cursor.execute("DROP TABLE IF EXISTS tasks")
        cursor.execute("DROP TABLE IF EXISTS buckets")
        cursor.execute("DROP TABLE IF EXISTS projects")

    def initialize_fresh(self) -> None:
        """Reinitialize with a clean slate, dropping all existing tables first."""
        if self._connection:
            self.close()
        self._initialize_database(drop_existing=True)

    @contextmanager
    def transaction(self):
        """
        Run a block as one write transaction and yield its cursor.

        BEGIN IMMEDIATE takes the database write lock up front, so reads made
        inside the block cannot be invalidated by another writer before commit.
        Any exception rolls back every write made in the block; store errors
        are re-raised as TransactionFailure.
        """
        with self._connection_lock:
            cursor = self._connection.cursor()
            try:
                cursor.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                # No transaction was opened, so there is nothing to roll back
                logger.warning(f"Could not begin transaction: {e}")
                raise TransactionFailure(f"Database error: {e}") from e
            try:
                yield cursor
                cursor.execute("COMMIT")
            except sqlite3.Error as e:
                cursor.execute("ROLLBACK")
                logger.warning(f"Transaction rolled back after store error: {e}")
                raise TransactionFailure(f"Database error: {e}") from e
            except Exception:
                cursor.execute("ROLLBACK")
                raise

    # Live CRUD primitives used by the application layers

    def create_project(
        self,
        name: str,
        description: Optional[str] = None,
        status: str = "active",
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        owner_id: Optional[int] = None,
    ) -> int:
        """Create a new project and return its ID."""
        with self.transaction() as cursor:
            return insert_row(cursor, "projects", PROJECT_COLUMNS[1:], {
                "name": name,
                "description": description,
                "status": status,
                "start_date": start_date or utc_now_str(),
                "end_date": end_date,
                "owner_id": owner_id,
                "last_modified_by": owner_id,
            })

    def create_bucket(
        self,
        project_id: int,
        title: str,
        position: Optional[int] = None,
        custom_fields_config: Optional[List[CustomFieldConfig]] = None,
    ) -> int:
        """Create a bucket at the given position, or after the last bucket."""
        with self.transaction() as cursor:
            if position is None:
                cursor.execute(
                    "SELECT COALESCE(MAX(position) + 1, 0) FROM buckets WHERE project_id = ?",
                    (project_id,),
                )
                position = cursor.fetchone()[0]
            config = [
                field.model_dump(mode="json") if isinstance(field, CustomFieldConfig) else field
                for field in (custom_fields_config or [])
            ]
            return insert_row(cursor, "buckets", BUCKET_COLUMNS[1:], {
                "title": title,
                "project_id": project_id,
                "position": position,
                "custom_fields_config": config,
            })

    def create_task(
        self,
        project_id: int,
        title: str,
        bucket_id: Optional[int] = None,
        position: Optional[int] = None,
        **fields: Any,
    ) -> int:
        """
        Create a task within a project and return its ID.

        Args:
            project_id: Owning project
            title: Task title
            bucket_id: Optional bucket on the project's board
            position: Ordering key; defaults to the end of the project
            **fields: Any other task column (status, priority, history, ...)
        """
        unknown = set(fields) - set(TASK_COLUMNS[1:])
        if unknown:
            raise ValueError(f"Unknown task fields: {sorted(unknown)}")

        created_at = fields.pop("created_at", None) or utc_now_str()

        with self.transaction() as cursor:
            if position is None:
                cursor.execute(
                    "SELECT COALESCE(MAX(position) + 1, 0) FROM tasks WHERE project_id = ?",
                    (project_id,),
                )
                position = cursor.fetchone()[0]
            data = Task(
                id=0,
                title=title,
                project_id=project_id,
                bucket_id=bucket_id,
                position=position,
                created_at=created_at,
                **fields,
            ).model_dump(mode="json")
            return insert_row(cursor, "tasks", TASK_COLUMNS[1:], data)

    def get_project(self, project_id: int) -> Optional[Project]:
        with self._connection_lock:
            return fetch_project(self._connection.cursor(), project_id)

    def get_all_projects(self) -> List[Project]:
        with self._connection_lock:
            cursor = self._connection.cursor()
            cursor.execute("SELECT * FROM projects ORDER BY id ASC")
            return [Project(**_decode_row(row)) for row in cursor.fetchall()]

    def get_buckets(self, project_id: int) -> List[Bucket]:
        with self._connection_lock:
            return fetch_buckets(self._connection.cursor(), project_id)

    def get_bucket(self, bucket_id: int) -> Optional[Bucket]:
        with self._connection_lock:
            return fetch_bucket(self._connection.cursor(), bucket_id)

    def get_tasks(self, project_id: int) -> List[Task]:
        with self._connection_lock:
            return fetch_tasks(self._connection.cursor(), project_id)

    def get_task(self, task_id: int) -> Optional[Task]:
        with self._connection_lock:
            return fetch_task(self._connection.cursor(), task_id)

    def delete_bucket(self, bucket_id: int) -> bool:
        """
        Permanently remove a bucket.

        Tasks in the bucket stay on the project with bucket_id set to NULL.
        """
        with self.transaction() as cursor:
            cursor.execute("DELETE FROM buckets WHERE id = ?", (bucket_id,))
            return cursor.rowcount > 0

    # Tombstone queries

    def get_deleted_project(self, project_id: int) -> Optional[DeletedProject]:
        with self._connection_lock:
            return fetch_deleted_project(self._connection.cursor(), project_id)

    def get_deleted_task(self, task_id: int) -> Optional[DeletedTask]:
        with self._connection_lock:
            return fetch_deleted_task(self._connection.cursor(), task_id)

    def list_deleted_projects(self) -> List[DeletedProject]:
        """Project tombstones, most recently deleted first."""
        with self._connection_lock:
            return select_deleted_projects(self._connection.cursor())

    def list_deleted_tasks(
        self, project_id: Optional[int] = None, standalone_only: bool = False
    ) -> List[DeletedTask]:
        """
        Task tombstones, most recently deleted first.

        Args:
            project_id: Restrict to one project
            standalone_only: Only tasks deleted on their own (restorable individually)
        """
        with self._connection_lock:
            return select_deleted_tasks(self._connection.cursor(), project_id, standalone_only)

    def close(self):
        """Close database connection."""
        if self._connection:
            self._connection.close()
            self._connection = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
