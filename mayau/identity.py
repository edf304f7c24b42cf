"""Identity providers and the server-side master credential check."""

import hashlib
import hmac
import logging
import uuid
from abc import ABC, abstractmethod

from mayau.errors import AuthError
from mayau.models import Identity

logger = logging.getLogger(__name__)

ANONYMOUS = "anonymous"


class IdentityProvider(ABC):
    @abstractmethod
    def sign_in(self, provider):
        """Return the signed-in Identity, or None while the provider flow is still running."""

    @abstractmethod
    def sign_out(self):
        ...


class StreamlitIdentityProvider(IdentityProvider):
    """OIDC sign-in through Streamlit's built-in ``st.login``.

    ``st.login`` redirects the browser to the provider; on the rerun that
    follows the callback, ``st.user`` carries the claims.
    """

    def __init__(self, st):
        self.st = st

    def current(self):
        user = self.st.user
        if not user.is_logged_in:
            return None
        return Identity(
            id=str(user.get("sub") or user.get("email")),
            email=user.get("email") or "",
            display_name=user.get("name") or user.get("email") or "",
        )

    def sign_in(self, provider):
        identity = self.current()
        if identity is None:
            try:
                self.st.login(provider)
            except Exception as e:
                raise AuthError(f"Could not start {provider} sign-in: {e}") from e
        return identity

    def sign_out(self):
        if self.st.user.is_logged_in:
            self.st.logout()


class LocalIdentityProvider(IdentityProvider):
    """Provider for development and tests.

    Identities are registered per provider name; ``"anonymous"`` always
    succeeds with a fresh id.
    """

    def __init__(self, identities=None):
        self.identities = dict(identities or {})
        self.signed_in = None

    def register(self, provider, identity):
        self.identities[provider] = identity

    def sign_in(self, provider):
        if provider == ANONYMOUS:
            self.signed_in = Identity(id=f"anon-{uuid.uuid4().hex[:12]}", display_name="Guest")
        elif provider in self.identities:
            self.signed_in = self.identities[provider]
        else:
            raise AuthError(f"Unknown sign-in provider: {provider}")
        return self.signed_in

    def sign_out(self):
        self.signed_in = None


def hash_password(password):
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


def verify_master_credentials(config, username, password):
    """Check the master pair against the configured username and password digest."""
    if not config.MASTER_USERNAME or not config.MASTER_PASSWORD_SHA256:
        logger.warning("Master login attempted but no master credentials are configured")
        return False
    username_ok = hmac.compare_digest(
        (username or "").encode("utf-8"), config.MASTER_USERNAME.encode("utf-8")
    )
    password_ok = hmac.compare_digest(
        hash_password(password or "").encode("ascii"),
        config.MASTER_PASSWORD_SHA256.lower().encode("utf-8"),
    )
    return username_ok and password_ok
