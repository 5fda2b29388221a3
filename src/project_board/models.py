"""
Pydantic models for the project board and its tombstone (recovery) store.

Provides the live entity models (Project, Bucket, Task), the tombstone
snapshots (DeletedProject, DeletedTask), the aggregate returned by project
level archive operations, and request/response models for the API layer.
"""

from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, field_validator


# Fields that exist only on tombstones and never on live rows
TOMBSTONE_FIELDS = {"deleted_at", "deleted_by", "deleted_by_name", "deleted_by_project"}


class CustomFieldConfig(BaseModel):
    """Single custom field definition attached to a bucket."""

    key: str = Field(min_length=1, description="Storage key used in task custom_fields")
    label: str = Field(description="Display label")
    type: str = Field("text", description="Field type: text, number, date, boolean, select")
    options: Optional[List[str]] = Field(None, description="Choices for select fields")
    required: bool = False
    order: int = 0
    copy_on_progress: bool = Field(
        False, description="Carry the value over when the task moves to the next bucket"
    )


class Project(BaseModel):
    """Live project row."""

    id: int
    name: str
    description: Optional[str] = None
    status: str = "active"
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    owner_id: Optional[int] = None
    last_modified_by: Optional[int] = None


class BucketSnapshot(BaseModel):
    """Bucket captured by value inside a DeletedProject tombstone."""

    id: int
    title: str
    position: int = 0
    custom_fields_config: List[CustomFieldConfig] = Field(default_factory=list)


class Bucket(BaseModel):
    """Live bucket row. Buckets have no tombstone table of their own."""

    id: int
    title: str
    project_id: int
    position: int = 0
    custom_fields_config: List[CustomFieldConfig] = Field(default_factory=list)

    def snapshot(self) -> BucketSnapshot:
        return BucketSnapshot(
            id=self.id,
            title=self.title,
            position=self.position,
            custom_fields_config=self.custom_fields_config,
        )


class Task(BaseModel):
    """Live task row."""

    id: int
    title: str
    description: Optional[str] = None
    status: str = "todo"
    priority: str = "medium"
    project_id: int
    bucket_id: Optional[int] = None
    assignee_id: Optional[int] = None
    assigned_users: List[int] = Field(default_factory=list)
    estimate_hours: int = 0
    estimate_minutes: int = 0
    history: List[str] = Field(default_factory=list)
    checklist: List[Dict[str, Any]] = Field(default_factory=list)
    attachments: List[Dict[str, Any]] = Field(default_factory=list)
    start_date: Optional[str] = None
    due_date: Optional[str] = None
    position: int = 0
    created_at: Optional[str] = None
    custom_fields: Optional[str] = Field(
        None, description="Custom field values stored as key=value||key2=value2"
    )


class DeletedProject(Project):
    """Project tombstone with the ordered bucket snapshot taken at deletion."""

    status: Optional[str] = "active"
    buckets: List[BucketSnapshot] = Field(default_factory=list)
    deleted_at: str
    deleted_by: Optional[int] = None
    deleted_by_name: Optional[str] = None

    @classmethod
    def from_project(
        cls,
        project: Project,
        buckets: List[Bucket],
        deleted_at: str,
        deleted_by: Optional[int],
        deleted_by_name: Optional[str],
    ) -> "DeletedProject":
        return cls(
            **project.model_dump(),
            buckets=[bucket.snapshot() for bucket in buckets],
            deleted_at=deleted_at,
            deleted_by=deleted_by,
            deleted_by_name=deleted_by_name,
        )

    def to_project(self) -> Project:
        data = self.model_dump(exclude=TOMBSTONE_FIELDS | {"buckets"})
        data["status"] = data.get("status") or "active"
        return Project(**data)


class DeletedTask(Task):
    """
    Task tombstone.

    deleted_by_project separates tasks captured by a project cascade (True)
    from tasks deleted on their own (False). Restore Project only ever
    consumes the former.
    """

    project_id: Optional[int] = None
    deleted_by_project: bool = False
    deleted_at: str
    deleted_by: Optional[int] = None
    deleted_by_name: Optional[str] = None

    @classmethod
    def from_task(
        cls,
        task: Task,
        deleted_at: str,
        deleted_by: Optional[int],
        deleted_by_name: Optional[str],
        deleted_by_project: bool = False,
    ) -> "DeletedTask":
        return cls(
            **task.model_dump(),
            deleted_by_project=deleted_by_project,
            deleted_at=deleted_at,
            deleted_by=deleted_by,
            deleted_by_name=deleted_by_name,
        )

    def to_task(self, bucket_id: Optional[int]) -> Task:
        data = self.model_dump(exclude=TOMBSTONE_FIELDS)
        data["bucket_id"] = bucket_id
        return Task(**data)


class ProjectArchive(BaseModel):
    """Aggregate returned by project delete and restore."""

    project: Project
    tasks: List[Task] = Field(default_factory=list)
    buckets: List[Bucket] = Field(default_factory=list)


# API request models


class ProjectCreateRequest(BaseModel):
    """Request model for creating a project."""

    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    status: str = "active"
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    owner_id: Optional[int] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError("Project name cannot be empty")
        return v.strip()


class BucketCreateRequest(BaseModel):
    """Request model for adding a bucket to a project."""

    title: str = Field(min_length=1, max_length=200)
    position: Optional[int] = Field(None, ge=0, description="Defaults to the end of the board")
    custom_fields_config: List[CustomFieldConfig] = Field(default_factory=list)

    @field_validator("custom_fields_config")
    @classmethod
    def validate_unique_keys(cls, v):
        keys = [field.key for field in v]
        if len(keys) != len(set(keys)):
            raise ValueError("Custom field keys must be unique within a bucket")
        return v


class TaskCreateRequest(BaseModel):
    """Request model for creating a task."""

    title: str = Field(min_length=1, max_length=500)
    project_id: int = Field(gt=0)
    bucket_id: Optional[int] = Field(None, gt=0)
    description: Optional[str] = None
    status: str = "todo"
    priority: str = "medium"
    assignee_id: Optional[int] = None
    position: Optional[int] = Field(None, ge=0, description="Defaults to the end of the project")
    due_date: Optional[str] = None
    custom_fields: Optional[str] = None

    @field_validator("priority")
    @classmethod
    def validate_priority(cls, v):
        valid_priorities = ["low", "medium", "high", "urgent"]
        if v not in valid_priorities:
            raise ValueError(f"Priority must be one of: {valid_priorities}")
        return v


class SuccessResponse(BaseModel):
    """Standard success response model."""

    success: bool = True
    message: str
    data: Optional[Dict[str, Any]] = None


def create_success_response(message: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Create a standardized success response dictionary."""
    return SuccessResponse(message=message, data=data).model_dump()
