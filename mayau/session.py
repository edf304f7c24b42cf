"""Session store: the signed-in identity and its live profile."""

import logging

from mayau.errors import AuthError, InvalidCredentials, NotFound, PermissionDenied, ValidationError
from mayau.gate import ApprovalGate, GateEvent, GateState
from mayau.identity import verify_master_credentials
from mayau.models import PROFILES, Identity, Profile, Role, to_document, utc_now, validate

logger = logging.getLogger(__name__)


class SessionStore:
    def __init__(self, store, identity_provider, config):
        self.store = store
        self.identity_provider = identity_provider
        self.config = config
        self.gate = ApprovalGate()
        self.identity = None
        self.profile = None
        self._subscription = None

    # --- STATE ---

    @property
    def state(self):
        return self.gate.state

    @property
    def is_master(self):
        return self.state == GateState.MASTER

    @property
    def user_id(self):
        return self.identity.id if self.identity else None

    @property
    def display_name(self):
        if self.profile and self.profile.display_name:
            return self.profile.display_name
        if self.identity:
            return self.identity.display_name or self.identity.email or self.identity.id
        return ""

    def require_active(self):
        """Raise PermissionDenied unless this session may write shared records."""
        if not self.gate.can_write:
            if self.state == GateState.PENDING:
                raise PermissionDenied("Your account has not been approved yet.")
            raise PermissionDenied("You must be signed in to do that.")

    def require_member(self, workspace):
        """Raise PermissionDenied unless this session may write to ``workspace``.

        An empty team is open to every approved user; the master writes anywhere.
        """
        self.require_active()
        if self.is_master:
            return
        if workspace.members and self.user_id not in workspace.members:
            raise PermissionDenied(f"You are not on the {workspace.name} team.")

    def require_master(self):
        if not self.is_master:
            raise PermissionDenied(
                "Only the master account can do that.",
                hint="Sign in with the master account to manage approvals.",
            )

    # --- SIGN IN / OUT ---

    def sign_in(self, provider):
        """Sign in through ``provider`` and resolve the session's gate state."""
        if self.state != GateState.UNAUTHENTICATED:
            raise AuthError("Already signed in. Sign out first.")
        identity = self.identity_provider.sign_in(provider)
        if identity is None:
            return self.state
        if identity.id == self.config.MASTER_IDENTITY_ID:
            raise AuthError("This account can only sign in through the master login.")

        profile = self._fetch_or_create_profile(identity)
        self.identity = identity
        self.profile = profile
        event = GateEvent.SIGNED_IN_APPROVED if profile.approved else GateEvent.SIGNED_IN_UNAPPROVED
        self.gate.fire(event)
        try:
            self._subscription = self.store.watch_document(
                PROFILES, identity.id, lambda data: self._on_profile(identity.id, data)
            )
        except Exception:
            self.identity = None
            self.profile = None
            self.gate.fire(GateEvent.SIGNED_OUT)
            raise
        logger.info("Signed in %s via %s (%s)", identity.id, provider, self.state.value)
        return self.state

    def _fetch_or_create_profile(self, identity):
        data = self.store.get(PROFILES, identity.id)
        if data is not None:
            return validate(Profile, data)
        profile = Profile(
            id=identity.id,
            email=identity.email,
            display_name=identity.display_name,
            approved=False,
            role=Role.USER,
            created_at=utc_now(),
        )
        self.store.set(PROFILES, identity.id, to_document(profile, exclude={"id"}))
        logger.info("Created pending profile for %s", identity.id)
        return profile

    def _on_profile(self, identity_id, data):
        # Snapshots for an identity that has since signed out may still arrive
        if data is None or self.identity is None or self.identity.id != identity_id:
            return
        profile = validate(Profile, data)
        self.profile = profile
        self.gate.observe_profile(profile)

    def sign_in_master(self, username, password):
        """Validate the master pair and pin the session to the master identity."""
        if self.state != GateState.UNAUTHENTICATED:
            raise AuthError("Already signed in. Sign out first.")
        if not verify_master_credentials(self.config, username, password):
            logger.warning("Rejected master login for username %r", username)
            raise InvalidCredentials()

        master_id = self.config.MASTER_IDENTITY_ID
        fields = {"email": "", "display_name": "Master", "approved": True, "role": Role.MASTER.value}
        existing = self.store.get(PROFILES, master_id)
        if existing is None or existing.get("created_at") is None:
            fields["created_at"] = utc_now()
        self.store.set(PROFILES, master_id, fields, merge=True)
        self.identity = Identity(id=master_id, display_name="Master")
        self.profile = Profile(id=master_id, display_name="Master", approved=True, role=Role.MASTER)
        self.gate.fire(GateEvent.MASTER_VALIDATED)
        logger.info("Master signed in")
        return self.state

    def sign_out(self):
        if self.state == GateState.UNAUTHENTICATED:
            return self.state
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        was_master = self.is_master
        user_id = self.user_id
        self.identity = None
        self.profile = None
        self.gate.fire(GateEvent.SIGNED_OUT)
        if not was_master:
            try:
                self.identity_provider.sign_out()
            except Exception as e:
                raise AuthError(f"Signed out locally, but the identity provider failed: {e}") from e
        logger.info("Signed out %s", user_id)
        return self.state

    # --- PROFILES ---

    def rename(self, display_name):
        """Change the display name on the caller's own profile (allowed while pending)."""
        display_name = (display_name or "").strip()
        if not display_name:
            raise ValidationError("Display name cannot be empty.")
        if self.identity is None:
            raise PermissionDenied("You must be signed in to do that.")
        self.store.update(PROFILES, self.identity.id, {"display_name": display_name})
        self.identity = self.identity.model_copy(update={"display_name": display_name})

    def pending_profiles(self):
        self.require_master()
        rows = self.store.query(PROFILES, "approved", False)
        profiles = [validate(Profile, row) for row in rows]
        return sorted(profiles, key=lambda p: (p.created_at is None, p.created_at or 0, p.id))

    def watch_pending(self, callback):
        """Live approval queue for the master's approvals page."""
        self.require_master()

        def on_change(rows):
            callback([validate(Profile, row) for row in rows])

        return self.store.watch_query(PROFILES, "approved", False, on_change)

    def approve(self, identity_id):
        """Flip ``approved`` on another identity's profile."""
        self.require_master()
        if self.store.get(PROFILES, identity_id) is None:
            raise NotFound(f"No profile for {identity_id}.")
        self.store.update(PROFILES, identity_id, {"approved": True})
        logger.info("Master approved %s", identity_id)

    def directory(self):
        """Approved profiles, for team pickers."""
        rows = self.store.query(PROFILES, "approved", True)
        return {row["id"]: validate(Profile, row) for row in rows}
