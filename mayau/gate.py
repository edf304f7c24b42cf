"""Approval gate: decides which screen a session resolves to.

    unauthenticated --signed_in_unapproved--> pending-approval
    unauthenticated --signed_in_approved----> active
    unauthenticated --master_validated------> master-active
    pending-approval --approved-------------> active
    pending-approval | active | master-active --signed_out--> unauthenticated

There is no path between ``active`` and ``master-active``.
"""

import logging
import threading
from enum import StrEnum

from mayau.errors import InvalidTransition

logger = logging.getLogger(__name__)


class GateState(StrEnum):
    UNAUTHENTICATED = "unauthenticated"
    PENDING = "pending-approval"
    ACTIVE = "active"
    MASTER = "master-active"


class GateEvent(StrEnum):
    SIGNED_IN_UNAPPROVED = "signed_in_unapproved"
    SIGNED_IN_APPROVED = "signed_in_approved"
    MASTER_VALIDATED = "master_validated"
    APPROVED = "approved"
    SIGNED_OUT = "signed_out"


TRANSITIONS = {
    (GateState.UNAUTHENTICATED, GateEvent.SIGNED_IN_UNAPPROVED): GateState.PENDING,
    (GateState.UNAUTHENTICATED, GateEvent.SIGNED_IN_APPROVED): GateState.ACTIVE,
    (GateState.UNAUTHENTICATED, GateEvent.MASTER_VALIDATED): GateState.MASTER,
    (GateState.PENDING, GateEvent.APPROVED): GateState.ACTIVE,
    (GateState.PENDING, GateEvent.SIGNED_OUT): GateState.UNAUTHENTICATED,
    (GateState.ACTIVE, GateEvent.SIGNED_OUT): GateState.UNAUTHENTICATED,
    (GateState.MASTER, GateEvent.SIGNED_OUT): GateState.UNAUTHENTICATED,
}

WRITE_STATES = frozenset({GateState.ACTIVE, GateState.MASTER})


class ApprovalGate:
    """Thread-safe holder of the session's gate state.

    Profile snapshots may arrive on a backend thread, so transitions are
    serialized. Listeners get ``(old, new)`` after the lock is released.
    """

    def __init__(self):
        self._state = GateState.UNAUTHENTICATED
        self._lock = threading.Lock()
        self._listeners = []

    @property
    def state(self):
        return self._state

    @property
    def can_write(self):
        return self._state in WRITE_STATES

    def add_listener(self, listener):
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def fire(self, event):
        with self._lock:
            old = self._state
            new = TRANSITIONS.get((old, event))
            if new is None:
                raise InvalidTransition(old.value, GateEvent(event).value)
            self._state = new
        logger.info("Approval gate: %s -> %s (%s)", old.value, new.value, event)
        for listener in list(self._listeners):
            listener(old, new)
        return new

    def observe_profile(self, profile):
        """Apply a profile snapshot delivered by the live subscription.

        Only a pending session reacts: an approved snapshot moves it to
        ``active``. Repeated or stale snapshots are ignored.
        """
        with self._lock:
            should_fire = (
                self._state == GateState.PENDING
                and profile is not None
                and profile.approved
            )
        if should_fire:
            try:
                return self.fire(GateEvent.APPROVED)
            except InvalidTransition:
                # Another snapshot or a sign-out got there first
                logger.debug("Approval snapshot arrived after the gate left pending")
        return self._state
