"""
Soft-delete and restore for projects, buckets and tasks.

Each operation runs as exactly one BoardDatabase transaction: any failure
rolls back every write made so far, so the live store and the tombstone
store are never left half-updated.

Buckets have no tombstone table. A project delete captures the ordered bucket
set by value inside the DeletedProject row, and a project restore recreates
them from that snapshot before reattaching tasks.
"""

from typing import Optional, Iterable, List

from .database import (
    BoardDatabase,
    utc_now_str,
    row_exists,
    fetch_project,
    fetch_buckets,
    fetch_tasks,
    fetch_task,
    fetch_live_bucket_ids,
    insert_project,
    insert_bucket,
    insert_task,
    delete_tasks_by_project,
    delete_buckets_by_project,
    delete_project_row,
    delete_task_row,
    fetch_deleted_project,
    fetch_deleted_task,
    fetch_cascaded_tasks,
    insert_deleted_project,
    insert_deleted_tasks,
    delete_deleted_project,
    delete_deleted_tasks,
)
from .exceptions import NotFoundError, ConflictError
from .models import Bucket, Task, DeletedProject, DeletedTask, ProjectArchive


def resolve_bucket_id(bucket_id: Optional[int], valid_bucket_ids: Iterable[int]) -> Optional[int]:
    """
    Orphan policy for a task's bucket reference.

    Keeps bucket_id when it names a bucket in valid_bucket_ids, otherwise
    returns None so the task is restored without a bucket instead of failing.
    """
    if bucket_id is None:
        return None
    return bucket_id if bucket_id in set(valid_bucket_ids) else None


def delete_project(db: BoardDatabase, project_id: int, actor_id: Optional[int],
                   actor_name: Optional[str]) -> ProjectArchive:
    """
    Tombstone and remove a project together with all of its buckets and tasks.

    Args:
        db: BoardDatabase instance
        project_id: Project to delete
        actor_id: User performing the delete
        actor_name: Display name captured for audit

    Returns:
        ProjectArchive with the pre-deletion project, tasks and buckets

    Raises:
        NotFoundError: Project does not exist
        TransactionFailure: Store error; nothing was written
    """
    with db.transaction() as cursor:
        project = fetch_project(cursor, project_id)
        if project is None:
            raise NotFoundError(f"Project {project_id} not found", entity="project", entity_id=project_id)

        buckets = fetch_buckets(cursor, project_id)
        tasks = fetch_tasks(cursor, project_id)
        deleted_at = utc_now_str()

        if tasks:
            insert_deleted_tasks(cursor, [
                DeletedTask.from_task(task, deleted_at, actor_id, actor_name, deleted_by_project=True)
                for task in tasks
            ])

        insert_deleted_project(
            cursor,
            DeletedProject.from_project(project, buckets, deleted_at, actor_id, actor_name),
        )

        delete_tasks_by_project(cursor, project_id)
        delete_buckets_by_project(cursor, project_id)
        delete_project_row(cursor, project_id)

    return ProjectArchive(project=project, tasks=tasks, buckets=buckets)


def delete_task(db: BoardDatabase, task_id: int, actor_id: Optional[int],
                actor_name: Optional[str], deleted_by_project: bool = False) -> Task:
    """
    Tombstone and remove a single task, leaving its project and bucket alone.

    Returns:
        The task as it was before deletion

    Raises:
        NotFoundError: Task does not exist
    """
    with db.transaction() as cursor:
        task = fetch_task(cursor, task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found", entity="task", entity_id=task_id)

        insert_deleted_tasks(cursor, [
            DeletedTask.from_task(task, utc_now_str(), actor_id, actor_name,
                                  deleted_by_project=deleted_by_project)
        ])
        delete_task_row(cursor, task_id)

    return task


def restore_project(db: BoardDatabase, project_id: int) -> ProjectArchive:
    """
    Recreate a deleted project, its buckets and the tasks its cascade removed.

    Task tombstones of the same project that were deleted on their own
    (deleted_by_project = False) are neither restored nor consumed.

    Raises:
        NotFoundError: No tombstone for project_id
        ConflictError: A live project, bucket or task already uses a restored id
    """
    with db.transaction() as cursor:
        tombstone = fetch_deleted_project(cursor, project_id)
        if tombstone is None:
            raise NotFoundError(
                f"Deleted project {project_id} not found", entity="project", entity_id=project_id
            )

        if row_exists(cursor, "projects", project_id):
            raise ConflictError(
                f"Project {project_id} already exists", entity="project", entity_id=project_id
            )

        project = tombstone.to_project()
        insert_project(cursor, project)

        buckets: List[Bucket] = []
        for snapshot in tombstone.buckets:
            _guard_identity(cursor, "buckets", "bucket", snapshot.id)
            bucket = Bucket(
                id=snapshot.id,
                title=snapshot.title,
                project_id=project.id,
                position=snapshot.position,
                custom_fields_config=snapshot.custom_fields_config,
            )
            insert_bucket(cursor, bucket)
            buckets.append(bucket)

        restored_bucket_ids = {bucket.id for bucket in buckets}
        cascaded = fetch_cascaded_tasks(cursor, project_id)

        tasks: List[Task] = []
        for deleted_task in cascaded:
            _guard_identity(cursor, "tasks", "task", deleted_task.id)
            task = deleted_task.to_task(resolve_bucket_id(deleted_task.bucket_id, restored_bucket_ids))
            insert_task(cursor, task)
            tasks.append(task)

        delete_deleted_tasks(cursor, [deleted_task.id for deleted_task in cascaded])
        delete_deleted_project(cursor, project_id)

    return ProjectArchive(project=project, tasks=tasks, buckets=buckets)


def restore_task(db: BoardDatabase, task_id: int) -> Task:
    """
    Recreate a single deleted task in its (live) project.

    The bucket reference is checked against the project's current buckets and
    cleared if that bucket no longer exists.

    Raises:
        NotFoundError: No tombstone for task_id, or its project is not live
        ConflictError: A live task already uses task_id
    """
    with db.transaction() as cursor:
        tombstone = fetch_deleted_task(cursor, task_id)
        if tombstone is None:
            raise NotFoundError(f"Deleted task {task_id} not found", entity="task", entity_id=task_id)

        _guard_identity(cursor, "tasks", "task", task_id)

        if tombstone.project_id is None or not row_exists(cursor, "projects", tombstone.project_id):
            raise NotFoundError(
                f"Project {tombstone.project_id} not found for task restore; restore the project first",
                entity="project",
                entity_id=tombstone.project_id,
            )

        live_bucket_ids = fetch_live_bucket_ids(cursor, tombstone.project_id)
        task = tombstone.to_task(resolve_bucket_id(tombstone.bucket_id, live_bucket_ids))
        insert_task(cursor, task)
        delete_deleted_tasks(cursor, [task_id])

    return task


def _guard_identity(cursor, table: str, entity: str, row_id: int) -> None:
    # Explicit-id restores never overwrite a live row
    if row_exists(cursor, table, row_id):
        raise ConflictError(f"{entity.capitalize()} {row_id} already exists", entity=entity, entity_id=row_id)
