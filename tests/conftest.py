"""Shared pytest fixtures.

Provides:
- config: AppConfig on the in-memory store with a known master pair
- store: fresh InMemoryStore per test
- make_session: SessionStore factory, one local identity provider each
- alice / master: ready-made sessions in the common states
"""

import pytest

from mayau.config import AppConfig
from mayau.identity import LocalIdentityProvider, hash_password
from mayau.models import Identity
from mayau.session import SessionStore
from mayau.store import InMemoryStore

MASTER_USERNAME = "mayau-admin"
MASTER_PASSWORD = "correct horse battery"


@pytest.fixture
def config():
    return AppConfig(
        STORE_URL="memory://",
        MASTER_IDENTITY_ID="master",
        MASTER_USERNAME=MASTER_USERNAME,
        MASTER_PASSWORD_SHA256=hash_password(MASTER_PASSWORD),
        NOTIFICATION_SECONDS=4,
    )


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def make_session(store, config):
    def _make(identity=None):
        provider = LocalIdentityProvider()
        if identity is not None:
            provider.register("google", identity)
        return SessionStore(store, provider, config)

    return _make


@pytest.fixture
def master(make_session):
    session = make_session()
    session.sign_in_master(MASTER_USERNAME, MASTER_PASSWORD)
    return session


@pytest.fixture
def alice(make_session, master):
    """An approved, signed-in regular user."""
    session = make_session(Identity(id="u-alice", email="alice@mayau.test", display_name="Alice"))
    session.sign_in("google")
    master.approve("u-alice")
    return session
