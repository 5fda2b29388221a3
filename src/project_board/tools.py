"""
MCP Tools for Project Board Trash Management

Provides Model Context Protocol tools that let agents move projects and
tasks to the trash, restore them, and inspect what is restorable. Every
tool returns a JSON string and broadcasts a WebSocket event on success so
dashboards stay in sync.

Key Features:
- BaseTool abstract class with database and WebSocket integration
- DeleteProjectTool / DeleteTaskTool: soft delete with actor attribution
- RestoreProjectTool / RestoreTaskTool: restore from tombstones
- ListTrashTool: trash view of deleted projects and tasks
"""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, Any, Optional

from . import archive
from .api import ConnectionManager
from .database import BoardDatabase
from .exceptions import ArchiveError

logger = logging.getLogger(__name__)


class BaseTool(ABC):
    """
    Abstract base class for MCP tools with database and WebSocket integration.

    Provides common functionality for id validation, WebSocket broadcasting,
    and JSON response formatting.
    """

    def __init__(self, database: BoardDatabase, websocket_manager: ConnectionManager):
        """
        Args:
            database: BoardDatabase instance for data operations
            websocket_manager: ConnectionManager for real-time broadcasting
        """
        self.db = database
        self.websocket_manager = websocket_manager

    @abstractmethod
    async def apply(self, **kwargs) -> str:
        """Run the tool and return a JSON string with results or error information."""
        pass

    def _format_success_response(self, message: str, **kwargs) -> str:
        response = {
            "success": True,
            "message": message,
            **kwargs
        }
        return json.dumps(response)

    def _format_error_response(self, message: str, **kwargs) -> str:
        response = {
            "success": False,
            "message": message,
            **kwargs
        }
        return json.dumps(response)

    async def _broadcast_event(self, event_type: str, **event_data):
        """
        Broadcast event to WebSocket clients.

        Broadcast failures are logged and never affect the tool result.
        """
        try:
            event = {
                "type": event_type,
                "timestamp": datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + 'Z',
                **event_data
            }
            await self.websocket_manager.broadcast(event)
        except Exception as e:
            logger.warning(f"Failed to broadcast event {event_type}: {e}")

    def _parse_id(self, value: Any, label: str) -> int:
        """
        Convert an MCP id parameter (string or int) to a positive integer.

        Raises:
            ValueError: With a message suitable for the error response
        """
        try:
            parsed = int(value)
        except (ValueError, TypeError):
            raise ValueError(f"{label} must be a valid integer")
        if parsed <= 0:
            raise ValueError(f"{label} must be a positive integer")
        return parsed

    def _parse_boolean(self, value: Optional[Any], default: bool = False) -> bool:
        if value is None:
            return default
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.lower() in ('true', '1', 'yes', 'on')
        return bool(value)


class DeleteProjectTool(BaseTool):
    """MCP tool to move a project with all buckets and tasks to the trash."""

    async def apply(self, project_id: str, actor_id: Optional[str] = None,
                    actor_name: Optional[str] = None) -> str:
        try:
            project_id_int = self._parse_id(project_id, "Project ID")
            actor_id_int = self._parse_id(actor_id, "Actor ID") if actor_id is not None else None
        except ValueError as e:
            return self._format_error_response(str(e))

        try:
            result = archive.delete_project(self.db, project_id_int, actor_id_int, actor_name)
        except ArchiveError as e:
            logger.error(f"Error deleting project {project_id_int}: {e}")
            return self._format_error_response(e.message, error_type=type(e).__name__)

        await self._broadcast_event(
            "project_deleted",
            project_id=project_id_int,
            project_name=result.project.name,
            cascaded_buckets=len(result.buckets),
            cascaded_tasks=len(result.tasks),
            deleted_by=actor_id_int,
        )
        return self._format_success_response(
            f"Deleted project '{result.project.name}' with {len(result.buckets)} buckets, "
            f"{len(result.tasks)} tasks",
            project_id=project_id_int,
            bucket_ids=[bucket.id for bucket in result.buckets],
            task_ids=[task.id for task in result.tasks],
        )


class DeleteTaskTool(BaseTool):
    """MCP tool to move a single task to the trash."""

    async def apply(self, task_id: str, actor_id: Optional[str] = None,
                    actor_name: Optional[str] = None) -> str:
        try:
            task_id_int = self._parse_id(task_id, "Task ID")
            actor_id_int = self._parse_id(actor_id, "Actor ID") if actor_id is not None else None
        except ValueError as e:
            return self._format_error_response(str(e))

        try:
            task = archive.delete_task(self.db, task_id_int, actor_id_int, actor_name)
        except ArchiveError as e:
            logger.error(f"Error deleting task {task_id_int}: {e}")
            return self._format_error_response(e.message, error_type=type(e).__name__)

        await self._broadcast_event(
            "task_deleted",
            task_id=task_id_int,
            task_title=task.title,
            project_id=task.project_id,
            deleted_by=actor_id_int,
        )
        return self._format_success_response(
            f"Deleted task '{task.title}'",
            task_id=task_id_int,
            project_id=task.project_id,
        )


class RestoreProjectTool(BaseTool):
    """MCP tool to restore a deleted project with the buckets and tasks its delete removed."""

    async def apply(self, project_id: str) -> str:
        try:
            project_id_int = self._parse_id(project_id, "Project ID")
        except ValueError as e:
            return self._format_error_response(str(e))

        try:
            result = archive.restore_project(self.db, project_id_int)
        except ArchiveError as e:
            logger.error(f"Error restoring project {project_id_int}: {e}")
            return self._format_error_response(e.message, error_type=type(e).__name__)

        await self._broadcast_event(
            "project_restored",
            project_id=project_id_int,
            project_name=result.project.name,
            restored_buckets=len(result.buckets),
            restored_tasks=len(result.tasks),
        )
        return self._format_success_response(
            f"Restored project '{result.project.name}'",
            project=result.project.model_dump(mode="json"),
            bucket_ids=[bucket.id for bucket in result.buckets],
            task_ids=[task.id for task in result.tasks],
        )


class RestoreTaskTool(BaseTool):
    """MCP tool to restore a single deleted task into its live project."""

    async def apply(self, task_id: str) -> str:
        try:
            task_id_int = self._parse_id(task_id, "Task ID")
        except ValueError as e:
            return self._format_error_response(str(e))

        try:
            task = archive.restore_task(self.db, task_id_int)
        except ArchiveError as e:
            logger.error(f"Error restoring task {task_id_int}: {e}")
            return self._format_error_response(e.message, error_type=type(e).__name__)

        await self._broadcast_event(
            "task_restored",
            task_id=task_id_int,
            task_title=task.title,
            project_id=task.project_id,
            bucket_id=task.bucket_id,
        )
        return self._format_success_response(
            f"Restored task '{task.title}'",
            task=task.model_dump(mode="json"),
            bucket_cleared=task.bucket_id is None,
        )


class ListTrashTool(BaseTool):
    """MCP tool listing deleted projects and tasks available for restore."""

    async def apply(self, project_id: Optional[str] = None, standalone_only: Any = False) -> str:
        try:
            project_id_int = self._parse_id(project_id, "Project ID") if project_id is not None else None
        except ValueError as e:
            return self._format_error_response(str(e))

        standalone = self._parse_boolean(standalone_only)
        projects = [] if project_id_int is not None else self.db.list_deleted_projects()
        tasks = self.db.list_deleted_tasks(project_id=project_id_int, standalone_only=standalone)

        logger.info(f"Trash listing: {len(projects)} projects, {len(tasks)} tasks")
        return self._format_success_response(
            f"Found {len(projects)} deleted projects and {len(tasks)} deleted tasks",
            projects=[
                {
                    "id": project.id,
                    "name": project.name,
                    "bucket_count": len(project.buckets),
                    "deleted_at": project.deleted_at,
                    "deleted_by_name": project.deleted_by_name,
                }
                for project in projects
            ],
            tasks=[
                {
                    "id": task.id,
                    "title": task.title,
                    "project_id": task.project_id,
                    "deleted_by_project": task.deleted_by_project,
                    "deleted_at": task.deleted_at,
                    "deleted_by_name": task.deleted_by_name,
                }
                for task in tasks
            ],
        )


AVAILABLE_TOOLS: Dict[str, type] = {
    "delete_project": DeleteProjectTool,
    "delete_task": DeleteTaskTool,
    "restore_project": RestoreProjectTool,
    "restore_task": RestoreTaskTool,
    "list_trash": ListTrashTool,
}


def create_tool_instance(tool_name: str, database: BoardDatabase,
                         websocket_manager: ConnectionManager) -> BaseTool:
    """
    Factory function to create tool instances with dependencies.

    Raises:
        KeyError: If tool_name is not found in AVAILABLE_TOOLS
    """
    if tool_name not in AVAILABLE_TOOLS:
        raise KeyError(f"Unknown tool '{tool_name}'. Available tools: {list(AVAILABLE_TOOLS.keys())}")

    tool_class = AVAILABLE_TOOLS[tool_name]
    return tool_class(database, websocket_manager)
