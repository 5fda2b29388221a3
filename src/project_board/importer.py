"""
YAML Board Importer

Seeds projects together with their buckets and tasks from a YAML document
in a single transaction. Tasks name their bucket by title.

Example:

    projects:
      - name: Website Relaunch
        owner_id: 1
        buckets:
          - title: To Do
            custom_fields:
              - {key: client_approval, label: Client approval, type: boolean}
          - title: Done
        tasks:
          - title: Draft landing copy
            bucket: To Do
            priority: high
"""

import yaml
from typing import Dict, Any, List, Optional

from .database import (
    BoardDatabase,
    utc_now_str,
    insert_row,
    PROJECT_COLUMNS,
    BUCKET_COLUMNS,
    TASK_COLUMNS,
)
from .exceptions import TransactionFailure
from .models import CustomFieldConfig, Task


def import_board(db: BoardDatabase, yaml_data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Import projects, buckets and tasks from parsed YAML.

    Args:
        db: BoardDatabase instance
        yaml_data: Parsed YAML document

    Returns:
        Dict with created counts, created project ids and per-item errors

    Raises:
        ValueError: For malformed YAML structure
        RuntimeError: For database failures (nothing is imported)
    """
    if not isinstance(yaml_data, dict):
        raise ValueError("YAML document must be a mapping")
    projects = yaml_data.get("projects", [])
    if not isinstance(projects, list):
        raise ValueError("YAML 'projects' must be a list")

    stats = {
        "projects_created": 0,
        "buckets_created": 0,
        "tasks_created": 0,
        "project_ids": [],
        "errors": [],
    }
    current_time_str = utc_now_str()

    try:
        with db.transaction() as cursor:
            for project_data in projects:
                if not isinstance(project_data, dict) or not project_data.get("name"):
                    raise ValueError("Each project needs a 'name'")

                project_id = insert_row(cursor, "projects", PROJECT_COLUMNS[1:], {
                    "name": project_data["name"],
                    "description": project_data.get("description"),
                    "status": project_data.get("status", "active"),
                    "start_date": project_data.get("start_date") or current_time_str,
                    "end_date": project_data.get("end_date"),
                    "owner_id": project_data.get("owner_id"),
                    "last_modified_by": project_data.get("owner_id"),
                })
                stats["projects_created"] += 1
                stats["project_ids"].append(project_id)

                bucket_ids = _import_buckets(cursor, project_id, project_data.get("buckets", []), stats)
                _import_tasks(cursor, project_id, bucket_ids, project_data.get("tasks", []),
                              current_time_str, stats)
    except TransactionFailure as e:
        raise RuntimeError(f"Import transaction failed: {e}") from e

    return stats


def _import_buckets(cursor, project_id: int, buckets: List[Any], stats: Dict[str, Any]) -> Dict[str, int]:
    """Insert buckets in document order and return a title → id map."""
    if not isinstance(buckets, list):
        raise ValueError("YAML 'buckets' must be a list")

    bucket_ids: Dict[str, int] = {}
    for position, bucket_data in enumerate(buckets):
        if not isinstance(bucket_data, dict) or not bucket_data.get("title"):
            stats["errors"].append(f"Skipped bucket #{position + 1} of project {project_id}: missing title")
            continue
        try:
            config = [
                CustomFieldConfig(**field).model_dump(mode="json")
                for field in bucket_data.get("custom_fields", [])
            ]
        except (TypeError, ValueError) as e:
            stats["errors"].append(f"Skipped bucket '{bucket_data['title']}': invalid custom fields ({e})")
            continue

        bucket_ids[bucket_data["title"]] = insert_row(cursor, "buckets", BUCKET_COLUMNS[1:], {
            "title": bucket_data["title"],
            "project_id": project_id,
            "position": bucket_data.get("position", position),
            "custom_fields_config": config,
        })
        stats["buckets_created"] += 1
    return bucket_ids


def _import_tasks(cursor, project_id: int, bucket_ids: Dict[str, int], tasks: List[Any],
                  current_time_str: str, stats: Dict[str, Any]) -> None:
    if not isinstance(tasks, list):
        raise ValueError("YAML 'tasks' must be a list")

    for position, task_data in enumerate(tasks):
        if not isinstance(task_data, dict) or not task_data.get("title"):
            stats["errors"].append(f"Skipped task #{position + 1} of project {project_id}: missing title")
            continue

        bucket_title: Optional[str] = task_data.get("bucket")
        if bucket_title is not None and bucket_title not in bucket_ids:
            stats["errors"].append(
                f"Skipped task '{task_data['title']}': unknown bucket '{bucket_title}'"
            )
            continue

        fields = {
            key: value for key, value in task_data.items()
            if key in TASK_COLUMNS and key not in ("id", "project_id", "bucket_id")
        }
        fields.setdefault("position", position)
        fields.setdefault("created_at", current_time_str)
        try:
            task = Task(
                id=0,
                project_id=project_id,
                bucket_id=bucket_ids.get(bucket_title) if bucket_title else None,
                **fields,
            )
        except ValueError as e:
            stats["errors"].append(f"Skipped task '{task_data['title']}': {e}")
            continue

        insert_row(cursor, "tasks", TASK_COLUMNS[1:], task.model_dump(mode="json"))
        stats["tasks_created"] += 1


def import_board_from_file(db: BoardDatabase, file_path: str) -> Dict[str, Any]:
    """
    Import a board from a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the YAML is malformed
    """
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            yaml_data = yaml.safe_load(f)
    except FileNotFoundError:
        raise FileNotFoundError(f"YAML file not found: {file_path}")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML format: {e}")

    if yaml_data is None:
        raise ValueError("YAML file is empty")

    return import_board(db, yaml_data)
