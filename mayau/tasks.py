"""Task registry: tasks scoped to a workspace, with comments and attachments."""

import logging
from collections import Counter

from mayau.errors import NotFound, ValidationError
from mayau.models import (
    EDITABLE_TASK_FIELDS,
    STATUS_ALL,
    TASKS,
    WORKSPACES,
    Attachment,
    Comment,
    Task,
    TaskStatus,
    Workspace,
    to_document,
    utc_now,
    validate,
)

logger = logging.getLogger(__name__)


def filter_tasks(tasks, status):
    """Tasks whose status equals ``status``; every task for ``"all"``."""
    if status == STATUS_ALL:
        return list(tasks)
    return [t for t in tasks if t.status == status]


def status_counts(tasks):
    counts = Counter(t.status for t in tasks)
    return {s.value: counts.get(s.value, 0) for s in TaskStatus}


class TaskRegistry:
    def __init__(self, store, session):
        self.store = store
        self.session = session

    # --- HELPERS ---

    def _workspace(self, workspace_id):
        data = self.store.get(WORKSPACES, workspace_id)
        if data is None:
            raise NotFound(f"Workspace {workspace_id} no longer exists.")
        return validate(Workspace, data)

    def _require_member(self, workspace_id):
        self.session.require_active()
        self.session.require_member(self._workspace(workspace_id))

    # --- READ ---

    def get(self, task_id):
        data = self.store.get(TASKS, task_id)
        if data is None:
            raise NotFound(f"Task {task_id} no longer exists.")
        return validate(Task, data)

    def list_for_workspace(self, workspace_id):
        rows = self.store.query(TASKS, "workspace_id", workspace_id)
        tasks = [validate(Task, row) for row in rows]
        return sorted(tasks, key=_created_order)

    def watch_workspace(self, workspace_id, callback):
        def on_change(rows):
            callback(sorted((validate(Task, row) for row in rows), key=_created_order))

        return self.store.watch_query(TASKS, "workspace_id", workspace_id, on_change)

    # --- WRITE ---

    def create(self, workspace_id, **fields):
        """Create a task; status defaults to pending and progress to 0."""
        self._require_member(workspace_id)
        unknown = set(fields) - EDITABLE_TASK_FIELDS
        if unknown:
            raise ValidationError(f"Unknown task fields: {', '.join(sorted(unknown))}")
        task = validate(
            Task,
            {
                **fields,
                "id": self.store.new_id(),
                "workspace_id": workspace_id,
                "created_at": utc_now(),
                "created_by": self.session.user_id,
            },
        )
        self.store.set(TASKS, task.id, to_document(task, exclude={"id"}))
        logger.info("Created task %s in workspace %s", task.id, workspace_id)
        return task

    def update(self, task_id, **fields):
        """Merge editable fields into the task after type validation."""
        unknown = set(fields) - EDITABLE_TASK_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update task fields: {', '.join(sorted(unknown))}")
        task = self.get(task_id)
        self._require_member(task.workspace_id)
        updated = validate(Task, {**task.model_dump(), **fields})
        changes = to_document(updated, exclude=set(Task.model_fields) - set(fields))
        self.store.update(TASKS, task_id, changes)
        return updated

    def delete(self, task_id, confirmed=False):
        """Remove the task. Its chat messages stay behind, still keyed by task id."""
        if not confirmed:
            raise ValidationError("Deleting a task must be confirmed.")
        task = self.get(task_id)
        self._require_member(task.workspace_id)
        self.store.delete(TASKS, task_id)
        logger.info("Deleted task %s from workspace %s", task_id, task.workspace_id)

    def toggle_assignee(self, task_id, identity_id):
        assignees = set(self.get(task_id).assignees)
        assignees.symmetric_difference_update({identity_id})
        return self.update(task_id, assignees=sorted(assignees))

    def append_comment(self, task_id, text):
        text = (text or "").strip()
        if not text:
            raise ValidationError("Comment text cannot be empty.")
        task = self.get(task_id)
        self._require_member(task.workspace_id)
        comment = Comment(
            author_id=self.session.user_id,
            author_name=self.session.display_name,
            text=text,
        )
        self.store.append(TASKS, task_id, "comments", to_document(comment))
        return comment

    def append_attachment(self, task_id, name, url):
        name, url = (name or "").strip(), (url or "").strip()
        if not name or not url:
            raise ValidationError("Attachments need both a name and a URL.")
        task = self.get(task_id)
        self._require_member(task.workspace_id)
        attachment = Attachment(name=name, url=url, uploader_id=self.session.user_id)
        self.store.append(TASKS, task_id, "attachments", to_document(attachment))
        return attachment


def _created_order(task):
    return (task.created_at is None, task.created_at.timestamp() if task.created_at else 0, task.id)
