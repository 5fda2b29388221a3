"""
FastMCP Server for Project Board Trash Management

Wraps the trash tools in a FastMCP server with stdio, SSE and HTTP
transports and lifecycle management.
"""

import logging
from typing import Optional, Dict, Any
from contextlib import asynccontextmanager

from fastmcp import FastMCP

from .api import ConnectionManager
from .database import BoardDatabase
from .tools import AVAILABLE_TOOLS, create_tool_instance

logger = logging.getLogger(__name__)

SUPPORTED_TRANSPORTS = ("stdio", "sse", "http")


class ProjectBoardMCPServer:
    """
    FastMCP server wrapper with lifecycle management and tool registration.
    """

    def __init__(
        self,
        database: BoardDatabase,
        websocket_manager: ConnectionManager,
        server_name: str = "Project Board MCP",
        server_version: str = "1.0.0"
    ):
        self.database = database
        self.websocket_manager = websocket_manager
        self.server_name = server_name
        self.server_version = server_version
        self.mcp_server: Optional[FastMCP] = None

        self._server_instructions = (
            f"{server_name} lets agents move projects and tasks to the trash and restore them. "
            "Deleting a project also removes its buckets and tasks; restoring it brings back "
            "exactly what that delete removed. Tasks deleted on their own are restored individually "
            "and only into a project that exists."
        )

    def _create_server(self) -> FastMCP:
        """
        Create the FastMCP instance and register every trash tool.

        Returns:
            Configured FastMCP server instance
        """
        try:
            mcp = FastMCP(
                name=self.server_name,
                version=self.server_version,
                instructions=self._server_instructions,
            )

            delete_project_tool = create_tool_instance("delete_project", self.database, self.websocket_manager)

            @mcp.tool
            async def delete_project(project_id: str, actor_id: Optional[str] = None,
                                     actor_name: Optional[str] = None) -> str:
                """
                Move a project with all of its buckets and tasks to the trash.

                Args:
                    project_id: ID of the project to delete
                    actor_id: ID of the user performing the delete
                    actor_name: Display name recorded on the tombstone

                Returns:
                    JSON string with the ids of the removed buckets and tasks
                """
                return await delete_project_tool.apply(
                    project_id=project_id, actor_id=actor_id, actor_name=actor_name
                )

            delete_task_tool = create_tool_instance("delete_task", self.database, self.websocket_manager)

            @mcp.tool
            async def delete_task(task_id: str, actor_id: Optional[str] = None,
                                  actor_name: Optional[str] = None) -> str:
                """
                Move a single task to the trash without touching its project or bucket.

                Args:
                    task_id: ID of the task to delete
                    actor_id: ID of the user performing the delete
                    actor_name: Display name recorded on the tombstone
                """
                return await delete_task_tool.apply(
                    task_id=task_id, actor_id=actor_id, actor_name=actor_name
                )

            restore_project_tool = create_tool_instance("restore_project", self.database, self.websocket_manager)

            @mcp.tool
            async def restore_project(project_id: str) -> str:
                """
                Restore a deleted project, its buckets, and the tasks removed with it.

                Fails if a project with the same ID already exists.
                """
                return await restore_project_tool.apply(project_id=project_id)

            restore_task_tool = create_tool_instance("restore_task", self.database, self.websocket_manager)

            @mcp.tool
            async def restore_task(task_id: str) -> str:
                """
                Restore a single deleted task. Its project must exist; a bucket that
                no longer exists is cleared from the task.
                """
                return await restore_task_tool.apply(task_id=task_id)

            list_trash_tool = create_tool_instance("list_trash", self.database, self.websocket_manager)

            @mcp.tool
            async def list_trash(project_id: Optional[str] = None, standalone_only: bool = False) -> str:
                """
                List deleted projects and tasks.

                Args:
                    project_id: Only list task tombstones of this project
                    standalone_only: Only tasks deleted on their own
                """
                return await list_trash_tool.apply(project_id=project_id, standalone_only=standalone_only)

            logger.info(f"FastMCP server '{self.server_name}' created with {len(AVAILABLE_TOOLS)} registered tools")
            return mcp

        except Exception as e:
            logger.error(f"Failed to create FastMCP server: {e}")
            raise RuntimeError(f"MCP server creation failed: {e}") from e

    def start_server_sync(self, transport: str = "stdio", host: str = "127.0.0.1", port: int = 8000, **kwargs):
        """
        Start the server and let FastMCP own the event loop.

        Args:
            transport: Transport mode ('stdio', 'sse', 'http')
            host: Host address for SSE/HTTP transports
            port: Port number for SSE/HTTP transports
        """
        transport = transport.lower()
        if transport not in SUPPORTED_TRANSPORTS:
            raise ValueError(f"Unsupported transport mode: {transport}. Supported: {', '.join(SUPPORTED_TRANSPORTS)}")

        if not self.mcp_server:
            self.mcp_server = self._create_server()

        logger.info(f"Starting FastMCP server with {transport} transport")
        if transport == "stdio":
            self.mcp_server.run()
        else:
            kwargs.setdefault("path", "/sse" if transport == "sse" else "/mcp")
            self.mcp_server.run(transport=transport, host=host, port=port, **kwargs)

    @asynccontextmanager
    async def lifecycle_manager(self):
        """Create the server on entry and log its lifetime."""
        try:
            if not self.mcp_server:
                self.mcp_server = self._create_server()
            logger.info(f"FastMCP server lifecycle started for '{self.server_name}'")
            yield self.mcp_server
        except Exception as e:
            logger.error(f"FastMCP server lifecycle error: {e}")
            raise
        finally:
            logger.info(f"FastMCP server lifecycle ended for '{self.server_name}'")

    def get_server_info(self) -> Dict[str, Any]:
        """Server metadata for monitoring and debugging."""
        return {
            "name": self.server_name,
            "version": self.server_version,
            "instructions": self._server_instructions,
            "registered_tools": list(AVAILABLE_TOOLS.keys()),
            "server_created": self.mcp_server is not None,
        }


def create_mcp_server(
    database: BoardDatabase,
    websocket_manager: ConnectionManager,
    server_name: str = "Project Board MCP",
    server_version: str = "1.0.0"
) -> ProjectBoardMCPServer:
    """Factory function to create a configured ProjectBoardMCPServer."""
    return ProjectBoardMCPServer(
        database=database,
        websocket_manager=websocket_manager,
        server_name=server_name,
        server_version=server_version
    )
