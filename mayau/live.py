"""Live subscriptions owned by one browser session.

Each subscription is keyed by what it watches, e.g. ``("tasks", workspace_id)``.
The latest value delivered by the backend is cached under the same key so
the view can render it on any rerun. A full page run marks the keys it used;
subscriptions not used by that run are released.
"""

import logging
import threading

logger = logging.getLogger(__name__)


class LiveFeeds:
    def __init__(self):
        self._subscriptions = {}
        self._values = {}
        self._used = set()
        self._lock = threading.Lock()

    def ensure(self, key, subscribe, default=None):
        """Subscribe once per key and return the latest delivered value.

        ``subscribe`` receives a callback and must return a Subscription.
        """
        self._used.add(key)
        if key not in self._subscriptions:
            self._subscriptions[key] = subscribe(lambda value: self._deliver(key, value))
            logger.debug("Subscribed to %s", key)
        with self._lock:
            return self._values.get(key, default)

    def _deliver(self, key, value):
        with self._lock:
            self._values[key] = value

    def begin_run(self):
        self._used = set()

    def end_run(self):
        """Release every subscription the finished run did not touch."""
        for key in list(self._subscriptions):
            if key not in self._used:
                self.release(key)

    def release(self, key):
        subscription = self._subscriptions.pop(key, None)
        if subscription is not None:
            subscription.unsubscribe()
            logger.debug("Released subscription %s", key)
        with self._lock:
            self._values.pop(key, None)

    def release_all(self):
        for key in list(self._subscriptions):
            self.release(key)

    def __contains__(self, key):
        return key in self._subscriptions

    def __len__(self):
        return len(self._subscriptions)
