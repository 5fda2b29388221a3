"""
FastAPI Backend with WebSocket Broadcasting for the Project Board

Provides REST endpoints for board reads, live-row creation, and the
soft-delete / restore operations, plus a WebSocket stream that tells
connected dashboards when projects and tasks move in or out of the trash.
"""

import asyncio
import json
import logging
import os
from datetime import datetime, timezone
from typing import Dict, Any, Optional, Set
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect, Depends, Header, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from . import archive
from .database import BoardDatabase
from .exceptions import ArchiveError, NotFoundError, ConflictError
from .models import (
    ProjectCreateRequest,
    BucketCreateRequest,
    TaskCreateRequest,
    create_success_response,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DB_PATH = os.getenv("DATABASE_PATH", "project_board.db")

# Set by the lifespan handler; tests override get_database instead
db_instance: Optional[BoardDatabase] = None


class ConnectionManager:
    """Dashboards subscribed to trash events on /ws/updates."""

    def __init__(self):
        self.active_connections: Set[WebSocket] = set()
        self._connection_lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        async with self._connection_lock:
            self.active_connections.add(websocket)
        logger.info(f"Dashboard subscribed ({len(self.active_connections)} open)")

    async def disconnect(self, websocket: WebSocket):
        async with self._connection_lock:
            self.active_connections.discard(websocket)

    async def broadcast(self, event_data: Dict[str, Any]):
        """
        Send a delete/restore event to every subscriber.

        A subscriber whose send fails is dropped; the caller never sees the error.
        """
        async with self._connection_lock:
            subscribers = list(self.active_connections)
        if not subscribers:
            return

        message = json.dumps(event_data)
        await asyncio.gather(*(self._send_or_drop(websocket, message) for websocket in subscribers))

    async def _send_or_drop(self, websocket: WebSocket, message: str):
        try:
            await websocket.send_text(message)
        except Exception as e:
            logger.warning(f"Dropping dashboard after failed send: {e}")
            await self.disconnect(websocket)


connection_manager = ConnectionManager()


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""
    status: str
    database_connected: bool
    active_websocket_connections: int
    timestamp: str


def get_database() -> BoardDatabase:
    """
    FastAPI dependency to provide database instance.

    Raises:
        HTTPException: If database is not available
    """
    if db_instance is None:
        raise HTTPException(status_code=503, detail="Database not available")
    return db_instance


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the database on startup and close it on shutdown."""
    global db_instance

    try:
        db_instance = BoardDatabase(DB_PATH)
        logger.info(f"Database initialized: {DB_PATH}")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

    yield

    if db_instance:
        db_instance.close()
        db_instance = None
        logger.info("Database connection closed")


app = FastAPI(
    title="Project Board API",
    description="REST API with WebSocket updates for project boards with soft-delete and restore",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _timestamp() -> str:
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + 'Z'


def _archive_http_exception(e: ArchiveError) -> HTTPException:
    """Map core archive errors onto HTTP status codes."""
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=e.message)
    if isinstance(e, ConflictError):
        return HTTPException(status_code=409, detail=e.message)
    return HTTPException(status_code=500, detail=e.message)


@app.get("/healthz", response_model=HealthResponse)
async def health_check():
    """Health check with database connectivity status."""
    database_connected = False
    if db_instance is not None:
        try:
            db_instance.get_all_projects()
            database_connected = True
        except Exception as e:
            logger.warning(f"Health check database query failed: {e}")

    return HealthResponse(
        status="healthy" if database_connected else "degraded",
        database_connected=database_connected,
        active_websocket_connections=len(connection_manager.active_connections),
        timestamp=_timestamp(),
    )


# Board reads and live-row creation


@app.post("/api/projects", status_code=201)
async def create_project(request: ProjectCreateRequest, db: BoardDatabase = Depends(get_database)):
    project_id = db.create_project(
        request.name,
        description=request.description,
        status=request.status,
        start_date=request.start_date,
        end_date=request.end_date,
        owner_id=request.owner_id,
    )
    return db.get_project(project_id).model_dump(mode="json")


@app.get("/api/projects/{project_id}/board")
async def get_board(project_id: int, db: BoardDatabase = Depends(get_database)):
    """Project with its buckets and tasks, both in position order."""
    project = db.get_project(project_id)
    if project is None:
        raise HTTPException(status_code=404, detail=f"Project {project_id} not found")
    return {
        "project": project.model_dump(mode="json"),
        "buckets": [bucket.model_dump(mode="json") for bucket in db.get_buckets(project_id)],
        "tasks": [task.model_dump(mode="json") for task in db.get_tasks(project_id)],
    }


@app.post("/api/projects/{project_id}/buckets", status_code=201)
async def create_bucket(project_id: int, request: BucketCreateRequest,
                        db: BoardDatabase = Depends(get_database)):
    if db.get_project(project_id) is None:
        raise HTTPException(status_code=404, detail=f"Project {project_id} not found")
    bucket_id = db.create_bucket(
        project_id,
        request.title,
        position=request.position,
        custom_fields_config=request.custom_fields_config,
    )
    return db.get_bucket(bucket_id).model_dump(mode="json")


@app.delete("/api/buckets/{bucket_id}")
async def delete_bucket(bucket_id: int, db: BoardDatabase = Depends(get_database)):
    """Permanently remove a bucket; its tasks stay on the project without a bucket."""
    if not db.delete_bucket(bucket_id):
        raise HTTPException(status_code=404, detail=f"Bucket {bucket_id} not found")
    return create_success_response(f"Deleted bucket {bucket_id}", {"bucket_id": bucket_id})


@app.post("/api/tasks", status_code=201)
async def create_task(request: TaskCreateRequest, db: BoardDatabase = Depends(get_database)):
    if db.get_project(request.project_id) is None:
        raise HTTPException(status_code=404, detail=f"Project {request.project_id} not found")
    if request.bucket_id is not None:
        bucket = db.get_bucket(request.bucket_id)
        if bucket is None or bucket.project_id != request.project_id:
            raise HTTPException(status_code=400, detail="Bucket does not belong to specified project")

    task_id = db.create_task(
        request.project_id,
        request.title,
        bucket_id=request.bucket_id,
        position=request.position,
        description=request.description,
        status=request.status,
        priority=request.priority,
        assignee_id=request.assignee_id,
        due_date=request.due_date,
        custom_fields=request.custom_fields,
    )
    return db.get_task(task_id).model_dump(mode="json")


# Soft-delete and restore


@app.delete("/api/projects/{project_id}")
async def delete_project(
    project_id: int,
    x_actor_id: Optional[int] = Header(None),
    x_actor_name: Optional[str] = Header(None),
    db: BoardDatabase = Depends(get_database),
):
    """Move a project with all of its buckets and tasks to the trash."""
    try:
        result = archive.delete_project(db, project_id, x_actor_id, x_actor_name)
    except ArchiveError as e:
        logger.error(f"Failed to delete project {project_id}: {e}")
        raise _archive_http_exception(e)

    logger.info(
        f"Project {project_id} deleted by {x_actor_name or x_actor_id}: "
        f"{len(result.buckets)} buckets, {len(result.tasks)} tasks"
    )
    await connection_manager.broadcast({
        "type": "project_deleted",
        "project_id": project_id,
        "project_name": result.project.name,
        "cascaded_buckets": len(result.buckets),
        "cascaded_tasks": len(result.tasks),
        "deleted_by": x_actor_id,
        "timestamp": _timestamp(),
    })
    return JSONResponse(
        status_code=200,
        content=create_success_response(
            f"Deleted project '{result.project.name}' with {len(result.buckets)} buckets, "
            f"{len(result.tasks)} tasks",
            result.model_dump(mode="json"),
        ),
    )


@app.post("/api/projects/{project_id}/restore")
async def restore_project(project_id: int, db: BoardDatabase = Depends(get_database)):
    """Bring a deleted project back together with the buckets and tasks its delete removed."""
    try:
        result = archive.restore_project(db, project_id)
    except ArchiveError as e:
        logger.error(f"Failed to restore project {project_id}: {e}")
        raise _archive_http_exception(e)

    logger.info(f"Project {project_id} restored: {len(result.buckets)} buckets, {len(result.tasks)} tasks")
    await connection_manager.broadcast({
        "type": "project_restored",
        "project_id": project_id,
        "project_name": result.project.name,
        "restored_buckets": len(result.buckets),
        "restored_tasks": len(result.tasks),
        "timestamp": _timestamp(),
    })
    return create_success_response(
        f"Restored project '{result.project.name}'", result.model_dump(mode="json")
    )


@app.delete("/api/tasks/{task_id}")
async def delete_task(
    task_id: int,
    x_actor_id: Optional[int] = Header(None),
    x_actor_name: Optional[str] = Header(None),
    db: BoardDatabase = Depends(get_database),
):
    """Move a single task to the trash."""
    try:
        task = archive.delete_task(db, task_id, x_actor_id, x_actor_name)
    except ArchiveError as e:
        logger.error(f"Failed to delete task {task_id}: {e}")
        raise _archive_http_exception(e)

    await connection_manager.broadcast({
        "type": "task_deleted",
        "task_id": task_id,
        "task_title": task.title,
        "project_id": task.project_id,
        "deleted_by": x_actor_id,
        "timestamp": _timestamp(),
    })
    return create_success_response(f"Deleted task '{task.title}'", {"task": task.model_dump(mode="json")})


@app.post("/api/tasks/{task_id}/restore")
async def restore_task(task_id: int, db: BoardDatabase = Depends(get_database)):
    """Restore a single deleted task into its (live) project."""
    try:
        task = archive.restore_task(db, task_id)
    except ArchiveError as e:
        logger.error(f"Failed to restore task {task_id}: {e}")
        raise _archive_http_exception(e)

    await connection_manager.broadcast({
        "type": "task_restored",
        "task_id": task_id,
        "task_title": task.title,
        "project_id": task.project_id,
        "bucket_id": task.bucket_id,
        "timestamp": _timestamp(),
    })
    return create_success_response(f"Restored task '{task.title}'", {"task": task.model_dump(mode="json")})


# Trash view


@app.get("/api/trash/projects")
async def list_deleted_projects(db: BoardDatabase = Depends(get_database)):
    projects = db.list_deleted_projects()
    return {
        "projects": [project.model_dump(mode="json") for project in projects],
        "total_count": len(projects),
    }


@app.get("/api/trash/tasks")
async def list_deleted_tasks(
    project_id: Optional[int] = Query(None, gt=0),
    standalone_only: bool = Query(False, description="Only tasks deleted on their own"),
    db: BoardDatabase = Depends(get_database),
):
    tasks = db.list_deleted_tasks(project_id=project_id, standalone_only=standalone_only)
    return {
        "tasks": [task.model_dump(mode="json") for task in tasks],
        "total_count": len(tasks),
    }


@app.websocket("/ws/updates")
async def websocket_updates(websocket: WebSocket):
    """Real-time stream of delete/restore events."""
    await connection_manager.connect(websocket)
    try:
        while True:
            # Client messages are only keep-alives
            await websocket.receive_text()
    except WebSocketDisconnect:
        await connection_manager.disconnect(websocket)


@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    """Global exception handler for unhandled errors."""
    logger.error(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )
