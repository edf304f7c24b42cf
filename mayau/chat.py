"""Per-task chat feed."""

import logging
from datetime import datetime, timezone

from mayau.errors import EmptyMessage
from mayau.models import CHAT_MESSAGES, ChatMessage, to_document, utc_now, validate

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def sort_messages(messages):
    """Oldest first; messages without a timestamp sort as the epoch."""

    def key(message):
        ts = message.timestamp or EPOCH
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return ts

    return sorted(messages, key=key)


class CollaborationFeed:
    def __init__(self, store, session):
        self.store = store
        self.session = session

    def send(self, task_id, text):
        text = (text or "").strip()
        if not text:
            raise EmptyMessage()
        self.session.require_active()
        message = ChatMessage(
            id=self.store.new_id(),
            task_id=task_id,
            author_id=self.session.user_id,
            author_name=self.session.display_name,
            text=text,
            timestamp=utc_now(),
        )
        self.store.set(CHAT_MESSAGES, message.id, to_document(message, exclude={"id"}))
        return message

    def messages(self, task_id):
        rows = self.store.query(CHAT_MESSAGES, "task_id", task_id)
        return [validate(ChatMessage, row) for row in rows]

    def watch(self, task_id, callback):
        """Deliver the raw message list on every change; the view sorts it."""

        def on_change(rows):
            callback([validate(ChatMessage, row) for row in rows])

        return self.store.watch_query(CHAT_MESSAGES, "task_id", task_id, on_change)
