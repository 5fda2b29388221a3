"""
Tests for tombstone model conversions and request validation.
"""

import pytest
from pydantic import ValidationError

from project_board.models import (
    Bucket, CustomFieldConfig, DeletedProject, DeletedTask, Project, Task,
    BucketCreateRequest, TaskCreateRequest, create_success_response,
)


class TestDeletedProject:

    def test_from_project_snapshots_buckets(self):
        project = Project(id=1, name="Launch", owner_id=7)
        buckets = [
            Bucket(id=2, title="Done", project_id=1, position=1),
            Bucket(id=1, title="To Do", project_id=1, position=0,
                   custom_fields_config=[CustomFieldConfig(key="client", label="Client")]),
        ]

        tombstone = DeletedProject.from_project(project, buckets, "2024-05-01T10:00:00Z", 7, "Alice")

        assert [snapshot.id for snapshot in tombstone.buckets] == [2, 1]
        assert tombstone.buckets[1].custom_fields_config[0].key == "client"
        assert tombstone.to_project() == project

    def test_to_project_defaults_status(self):
        tombstone = DeletedProject(id=1, name="Legacy", status=None, deleted_at="2024-05-01T10:00:00Z")
        assert tombstone.to_project().status == "active"


class TestDeletedTask:

    def test_round_trip_with_bucket_override(self):
        task = Task(id=5, title="Write", project_id=1, bucket_id=3, history=["created"])

        tombstone = DeletedTask.from_task(task, "2024-05-01T10:00:00Z", None, None, deleted_by_project=True)

        assert tombstone.deleted_by_project is True
        assert tombstone.to_task(3) == task
        assert tombstone.to_task(None).bucket_id is None


class TestRequestModels:

    def test_bucket_keys_must_be_unique(self):
        with pytest.raises(ValidationError):
            BucketCreateRequest(title="Dup", custom_fields_config=[
                {"key": "a", "label": "A"}, {"key": "a", "label": "B"},
            ])

    def test_task_priority(self):
        assert TaskCreateRequest(title="Ok", project_id=1, priority="urgent").priority == "urgent"
        with pytest.raises(ValidationError):
            TaskCreateRequest(title="Bad", project_id=1, priority="whenever")


class TestResponseHelpers:

    def test_success_response_shape(self):
        assert create_success_response("Deleted task 'Write'", {"task_id": 5}) == {
            "success": True,
            "message": "Deleted task 'Write'",
            "data": {"task_id": 5},
        }
