"""Transient banners for action outcomes.

Every failed action is logged and turned into a banner that disappears on
its own after ``NOTIFICATION_SECONDS``. Nothing here retries.
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass

from mayau.errors import MayauError

logger = logging.getLogger(__name__)


@dataclass
class Banner:
    level: str
    text: str
    expires_at: float


class Notifier:
    def __init__(self, lifetime=4.0, clock=time.monotonic):
        self.lifetime = lifetime
        self.clock = clock
        self._banners = []
        self._lock = threading.Lock()

    def push(self, level, text):
        banner = Banner(level=level, text=text, expires_at=self.clock() + self.lifetime)
        with self._lock:
            self._banners.append(banner)
        return banner

    def success(self, text):
        return self.push("success", text)

    def error(self, text):
        return self.push("error", text)

    def active(self):
        """Banners still on screen; expired ones are dropped."""
        now = self.clock()
        with self._lock:
            self._banners = [b for b in self._banners if b.expires_at > now]
            return list(self._banners)


def describe(exc):
    if isinstance(exc, MayauError):
        return exc.user_message()
    return f"Something went wrong: {exc}"


@contextmanager
def guarded(notifier, action):
    """Run a UI action; on failure log it and show a banner instead of crashing.

    Usage::

        with guarded(notifier, "create task"):
            registry.create(...)
    """
    try:
        yield
    except MayauError as e:
        logger.warning("%s failed: %s", action, e)
        notifier.error(describe(e))
    except Exception as e:
        logger.exception("%s failed unexpectedly", action)
        notifier.error(describe(e))
