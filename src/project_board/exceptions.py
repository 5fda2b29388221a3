"""
Error taxonomy for the soft-delete / restore core.

Callers (REST API, MCP tools, CLI) translate these into transport-level
outcomes. The core itself never retries and never logs.
"""

from typing import Optional


class ArchiveError(Exception):
    """Base class for archive operation failures."""

    def __init__(self, message: str, entity: Optional[str] = None, entity_id: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.entity = entity
        self.entity_id = entity_id


class NotFoundError(ArchiveError):
    """Referenced identity is absent from the store it is read from."""


class ConflictError(ArchiveError):
    """Restore target identity already exists in the live store."""


class TransactionFailure(ArchiveError):
    """Unexpected store error; the enclosing transaction was rolled back."""
