"""Document store contract and its two backends.

Documents are plain dicts keyed by ``(collection, doc_id)``. Reads return a
copy that includes the ``id`` key. Watches call back with the current state
right away and again after every commit that touches them, in commit order.
"""

import copy
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from functools import wraps

import firebase_admin
from firebase_admin import credentials, firestore
from google.api_core import exceptions as google_exceptions

from mayau import errors

logger = logging.getLogger(__name__)


class Subscription:
    """Handle for a live listener. Release it with :meth:`unsubscribe`."""

    def __init__(self, cancel):
        self._cancel = cancel
        self.active = True

    def unsubscribe(self):
        if self.active:
            self.active = False
            self._cancel()


class DocumentStore(ABC):
    @abstractmethod
    def get(self, collection, doc_id):
        """Return the document as a dict, or None if it does not exist."""

    @abstractmethod
    def set(self, collection, doc_id, data, merge=False):
        """Create or replace a document; with ``merge`` only the given fields change."""

    @abstractmethod
    def update(self, collection, doc_id, fields):
        """Merge fields into an existing document; NotFound if it is absent."""

    @abstractmethod
    def delete(self, collection, doc_id):
        ...

    @abstractmethod
    def add(self, collection, data):
        """Create a document under a generated id and return the id."""

    @abstractmethod
    def query(self, collection, field, value):
        """All documents whose ``field`` equals ``value``."""

    @abstractmethod
    def append(self, collection, doc_id, field, item):
        """Atomically append ``item`` to the list stored in ``field``."""

    @abstractmethod
    def watch_document(self, collection, doc_id, callback):
        """Call ``callback(doc_or_None)`` on every change. Returns a Subscription."""

    @abstractmethod
    def watch_query(self, collection, field, value, callback):
        """Call ``callback(list_of_docs)`` on every change. Returns a Subscription."""

    def new_id(self):
        return uuid.uuid4().hex


# --- IN-MEMORY STORE ---


class InMemoryStore(DocumentStore):
    """Process-local realtime store used for development and tests.

    Listeners run synchronously on the writing thread once the commit is
    applied. One re-entrant lock covers commit and delivery, so each watch
    sees commits in order.
    """

    def __init__(self):
        self._collections = {}
        self._doc_watchers = {}
        self._query_watchers = {}
        self._lock = threading.RLock()
        self.write_count = 0

    def _docs(self, collection):
        return self._collections.setdefault(collection, {})

    def _snapshot(self, collection, doc_id):
        data = self._docs(collection).get(doc_id)
        if data is None:
            return None
        doc = copy.deepcopy(data)
        doc["id"] = doc_id
        return doc

    def _matching(self, collection, field, value):
        return [
            self._snapshot(collection, doc_id)
            for doc_id, data in self._docs(collection).items()
            if data.get(field) == value
        ]

    def _commit(self, collection, doc_id, data):
        if data is None:
            self._docs(collection).pop(doc_id, None)
        else:
            self._docs(collection)[doc_id] = copy.deepcopy(data)
        self.write_count += 1
        self._notify(collection, doc_id)

    def _notify(self, collection, doc_id):
        for callback in list(self._doc_watchers.get((collection, doc_id), {}).values()):
            callback(self._snapshot(collection, doc_id))
        for (coll, field, value), watchers in list(self._query_watchers.items()):
            if coll != collection:
                continue
            for callback in list(watchers.values()):
                callback(self._matching(collection, field, value))

    def get(self, collection, doc_id):
        with self._lock:
            return self._snapshot(collection, doc_id)

    def set(self, collection, doc_id, data, merge=False):
        data = {k: v for k, v in data.items() if k != "id"}
        with self._lock:
            current = self._docs(collection).get(doc_id)
            if merge and current is not None:
                data = {**current, **data}
            self._commit(collection, doc_id, data)

    def update(self, collection, doc_id, fields):
        with self._lock:
            current = self._docs(collection).get(doc_id)
            if current is None:
                raise errors.NotFound(f"{collection}/{doc_id} does not exist.")
            self._commit(collection, doc_id, {**current, **fields})

    def delete(self, collection, doc_id):
        with self._lock:
            self._commit(collection, doc_id, None)

    def add(self, collection, data):
        doc_id = self.new_id()
        self.set(collection, doc_id, data)
        return doc_id

    def query(self, collection, field, value):
        with self._lock:
            return self._matching(collection, field, value)

    def append(self, collection, doc_id, field, item):
        with self._lock:
            current = self._docs(collection).get(doc_id)
            if current is None:
                raise errors.NotFound(f"{collection}/{doc_id} does not exist.")
            items = list(current.get(field) or [])
            items.append(copy.deepcopy(item))
            self._commit(collection, doc_id, {**current, field: items})

    def watch_document(self, collection, doc_id, callback):
        key = (collection, doc_id)
        token = object()
        with self._lock:
            self._doc_watchers.setdefault(key, {})[token] = callback
            callback(self._snapshot(collection, doc_id))
        return Subscription(lambda: self._release(self._doc_watchers, key, token))

    def watch_query(self, collection, field, value, callback):
        key = (collection, field, value)
        token = object()
        with self._lock:
            self._query_watchers.setdefault(key, {})[token] = callback
            callback(self._matching(collection, field, value))
        return Subscription(lambda: self._release(self._query_watchers, key, token))

    def _release(self, registry, key, token):
        with self._lock:
            watchers = registry.get(key, {})
            watchers.pop(token, None)
            if not watchers:
                registry.pop(key, None)

    def listener_count(self):
        with self._lock:
            return sum(len(w) for w in self._doc_watchers.values()) + sum(
                len(w) for w in self._query_watchers.values()
            )


# --- FIRESTORE STORE ---


def translate_backend_errors(func):
    """Re-raise Google API errors as the app's error taxonomy."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except google_exceptions.PermissionDenied as e:
            raise errors.PermissionDenied(f"The backend refused this request: {e.message}") from e
        except google_exceptions.NotFound as e:
            raise errors.NotFound(f"Document not found: {e.message}") from e
        except google_exceptions.GoogleAPICallError as e:
            raise errors.MayauError(f"Backend request failed: {e.message}") from e

    return wrapper


def _as_dict(snapshot):
    if not snapshot.exists:
        return None
    data = snapshot.to_dict() or {}
    data["id"] = snapshot.id
    return data


class FirestoreStore(DocumentStore):
    """Cloud Firestore through the Firebase Admin SDK."""

    def __init__(self, client):
        self.client = client

    def _ref(self, collection, doc_id):
        return self.client.collection(collection).document(doc_id)

    def _query(self, collection, field, value):
        return self.client.collection(collection).where(
            filter=firestore.FieldFilter(field, "==", value)
        )

    @translate_backend_errors
    def get(self, collection, doc_id):
        return _as_dict(self._ref(collection, doc_id).get())

    @translate_backend_errors
    def set(self, collection, doc_id, data, merge=False):
        data = {k: v for k, v in data.items() if k != "id"}
        self._ref(collection, doc_id).set(data, merge=merge)

    @translate_backend_errors
    def update(self, collection, doc_id, fields):
        self._ref(collection, doc_id).update(fields)

    @translate_backend_errors
    def delete(self, collection, doc_id):
        self._ref(collection, doc_id).delete()

    @translate_backend_errors
    def add(self, collection, data):
        _, ref = self.client.collection(collection).add(data)
        return ref.id

    @translate_backend_errors
    def query(self, collection, field, value):
        return [_as_dict(snap) for snap in self._query(collection, field, value).stream()]

    @translate_backend_errors
    def append(self, collection, doc_id, field, item):
        # ArrayUnion is applied server-side; entries carry timestamps so none collapse
        self._ref(collection, doc_id).update({field: firestore.ArrayUnion([item])})

    @translate_backend_errors
    def watch_document(self, collection, doc_id, callback):
        def on_snapshot(snapshots, changes, read_time):
            callback(_as_dict(snapshots[0]) if snapshots else None)

        watch = self._ref(collection, doc_id).on_snapshot(on_snapshot)
        return Subscription(watch.unsubscribe)

    @translate_backend_errors
    def watch_query(self, collection, field, value, callback):
        def on_snapshot(snapshots, changes, read_time):
            callback([_as_dict(snap) for snap in snapshots])

        watch = self._query(collection, field, value).on_snapshot(on_snapshot)
        return Subscription(watch.unsubscribe)


def initialize_firebase(config):
    """Initializes the Firebase Admin SDK once per process and returns a Firestore client."""
    if not firebase_admin._apps:
        if config.FIREBASE_CREDENTIALS:
            cred = credentials.Certificate(dict(config.FIREBASE_CREDENTIALS))
        else:
            cred = credentials.ApplicationDefault()
        options = {"projectId": config.firestore_project} if config.firestore_project else None
        firebase_admin.initialize_app(cred, options)
        logger.info("Firebase initialized for project %s", config.firestore_project or "<default>")
    return firestore.client()


def open_store(config):
    """Pick the backend named by ``config.STORE_URL``."""
    if config.store_scheme == "memory":
        return InMemoryStore()
    if config.store_scheme == "firestore":
        return FirestoreStore(initialize_firebase(config))
    raise errors.ValidationError(f"Unsupported store URL: {config.STORE_URL}")
