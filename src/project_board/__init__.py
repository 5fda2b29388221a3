"""
Project Board

Project/bucket/task board with recoverable soft-delete: deleted projects and
tasks move to tombstone tables and can be restored with their original ids.
"""

__version__ = "1.0.0"
