"""Workspace directory: the fixed project workspaces and their teams."""

import logging

from mayau.errors import NotFound, ValidationError
from mayau.models import WORKSPACE_NAMES, WORKSPACES, Workspace, to_document, validate

logger = logging.getLogger(__name__)


class WorkspaceDirectory:
    def __init__(self, store, session):
        self.store = store
        self.session = session

    def resolve(self, name):
        """Return the workspace called ``name``, creating it on first reference.

        Two sessions racing on the first reference can both create one; the
        first record the query returns wins.
        """
        if name not in WORKSPACE_NAMES:
            raise ValidationError(f"Unknown workspace: {name!r}")
        rows = self.store.query(WORKSPACES, "name", name)
        if rows:
            if len(rows) > 1:
                logger.warning("Found %d workspaces named %r; using %s", len(rows), name, rows[0]["id"])
            return validate(Workspace, rows[0])

        self.session.require_active()
        workspace = Workspace(id=self.store.new_id(), name=name, members=[])
        self.store.set(WORKSPACES, workspace.id, to_document(workspace, exclude={"id"}))
        logger.info("Created workspace %r (%s)", name, workspace.id)
        return workspace

    def get(self, workspace_id):
        data = self.store.get(WORKSPACES, workspace_id)
        if data is None:
            raise NotFound(f"Workspace {workspace_id} no longer exists.")
        return validate(Workspace, data)

    def set_members(self, workspace_id, member_ids):
        """Replace the whole member set. Once a team is set, only its members and the master edit it."""
        self.session.require_active()
        workspace = self.get(workspace_id)
        self.session.require_member(workspace)
        updated = validate(Workspace, {**workspace.model_dump(), "members": list(member_ids)})
        self.store.update(WORKSPACES, workspace_id, {"members": updated.members})
        return updated

    def toggle_member(self, workspace_id, identity_id):
        """Add ``identity_id`` to the team, or remove it if already there."""
        members = set(self.get(workspace_id).members)
        members.symmetric_difference_update({identity_id})
        return self.set_members(workspace_id, members)

    def watch(self, workspace_id, callback):
        def on_change(data):
            callback(validate(Workspace, data) if data is not None else None)

        return self.store.watch_document(WORKSPACES, workspace_id, on_change)
