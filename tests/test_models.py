"""Tests for the document schemas and the store boundary helpers."""

from datetime import date, datetime, timezone

import pytest

from mayau.errors import ValidationError
from mayau.models import Priority, Profile, Role, Task, TaskStatus, Workspace, to_document, validate


def test_task_defaults() -> None:
    task = Task(id="t1", workspace_id="w1", title="Plan launch")
    assert task.status == TaskStatus.PENDING
    assert task.priority == Priority.MEDIUM
    assert task.progress == 0
    assert task.comments == []
    assert task.attachments == []


def test_unknown_fields_rejected() -> None:
    with pytest.raises(ValidationError) as exc:
        validate(Task, {"id": "t1", "workspace_id": "w1", "title": "x", "owner": "bob"})
    assert "owner" in str(exc.value)


@pytest.mark.parametrize("progress", [-1, 101])
def test_progress_bounds(progress) -> None:
    with pytest.raises(ValidationError):
        validate(Task, {"id": "t1", "workspace_id": "w1", "title": "x", "progress": progress})


def test_status_must_be_known() -> None:
    with pytest.raises(ValidationError):
        validate(Task, {"id": "t1", "workspace_id": "w1", "title": "x", "status": "done"})


def test_id_sets_are_deduplicated_and_sorted() -> None:
    ws = Workspace(id="w1", name="Mayau Office", members=["b", "a", "b"])
    assert ws.members == ["a", "b"]
    task = Task(id="t1", workspace_id="w1", title="x", assignees=["z", "z"])
    assert task.assignees == ["z"]


def test_deadline_stored_as_datetime_and_read_back_as_date() -> None:
    task = Task(id="t1", workspace_id="w1", title="x", deadline=date(2026, 3, 1))
    doc = to_document(task)
    assert doc["deadline"] == datetime(2026, 3, 1, tzinfo=timezone.utc)

    back = validate(Task, doc)
    assert back.deadline == date(2026, 3, 1)


def test_enums_stored_as_plain_values() -> None:
    task = validate(Task, {"id": "t1", "workspace_id": "w1", "title": "x", "status": "in-progress"})
    doc = to_document(task)
    assert doc["status"] == "in-progress"
    assert type(doc["status"]) is str


def test_profile_master_flag() -> None:
    assert Profile(id="m", role=Role.MASTER, approved=True).is_master
    assert not Profile(id="u").is_master
    assert Profile(id="u").approved is False
