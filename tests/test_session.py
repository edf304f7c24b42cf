"""Tests for sign-in, master login, approval and sign-out."""

import pytest

from mayau.errors import AuthError, InvalidCredentials, MayauError, NotFound, PermissionDenied, ValidationError
from mayau.gate import GateState
from mayau.identity import ANONYMOUS, LocalIdentityProvider
from mayau.models import PROFILES, Identity, Role
from mayau.session import SessionStore

from tests.conftest import MASTER_PASSWORD, MASTER_USERNAME

BOB = Identity(id="u-bob", email="bob@mayau.test", display_name="Bob")


class _CountingStore:
    """Wraps a store and counts the calls made through it."""

    def __init__(self, inner):
        self.inner = inner
        self.calls = []

    def __getattr__(self, name):
        attr = getattr(self.inner, name)
        if not callable(attr):
            return attr

        def counted(*args, **kwargs):
            self.calls.append(name)
            return attr(*args, **kwargs)

        return counted


class _CapturingStore(_CountingStore):
    """Keeps every document watch callback so tests can replay late snapshots."""

    def __init__(self, inner):
        super().__init__(inner)
        self.callbacks = []

    def watch_document(self, collection, doc_id, callback):
        self.callbacks.append(callback)
        return self.inner.watch_document(collection, doc_id, callback)


class _BrokenWatchStore(_CountingStore):
    def watch_document(self, collection, doc_id, callback):
        raise MayauError("Backend request failed: listen stream closed")


class TestSignIn:

    def test_first_sign_in_creates_unapproved_profile(self, make_session, store) -> None:
        session = make_session(BOB)
        assert session.sign_in("google") == GateState.PENDING

        doc = store.get(PROFILES, "u-bob")
        assert doc["approved"] is False
        assert doc["role"] == Role.USER
        assert doc["email"] == "bob@mayau.test"
        assert doc["created_at"] is not None

    def test_first_sign_in_does_one_read_and_one_create(self, store, config) -> None:
        counting = _CountingStore(store)
        provider = LocalIdentityProvider({"google": BOB})
        SessionStore(counting, provider, config).sign_in("google")

        assert counting.calls.count("get") == 1
        assert counting.calls.count("set") == 1
        assert "update" not in counting.calls

    def test_returning_unapproved_user_stays_pending(self, make_session, store) -> None:
        make_session(BOB).sign_in("google")
        before = store.write_count

        again = make_session(BOB)
        assert again.sign_in("google") == GateState.PENDING
        assert store.write_count == before

    def test_approved_user_signs_in_active(self, make_session, store) -> None:
        store.set(PROFILES, "u-bob", {"email": "", "display_name": "Bob", "approved": True, "role": "user"})
        session = make_session(BOB)
        assert session.sign_in("google") == GateState.ACTIVE

    def test_anonymous_sign_in_is_pending(self, make_session) -> None:
        session = make_session()
        assert session.sign_in(ANONYMOUS) == GateState.PENDING
        assert session.user_id.startswith("anon-")

    def test_unknown_provider_fails(self, make_session) -> None:
        with pytest.raises(AuthError):
            make_session().sign_in("github")

    def test_reserved_master_id_cannot_use_provider(self, make_session) -> None:
        session = make_session(Identity(id="master", email="x@mayau.test"))
        with pytest.raises(AuthError):
            session.sign_in("google")
        assert session.state == GateState.UNAUTHENTICATED

    def test_double_sign_in_rejected(self, make_session) -> None:
        session = make_session(BOB)
        session.sign_in("google")
        with pytest.raises(AuthError):
            session.sign_in("google")


class TestMasterSignIn:

    def test_exact_pair_reaches_master_state(self, make_session, store) -> None:
        session = make_session()
        assert session.sign_in_master(MASTER_USERNAME, MASTER_PASSWORD) == GateState.MASTER
        assert session.is_master

        doc = store.get(PROFILES, "master")
        assert doc["approved"] is True
        assert doc["role"] == Role.MASTER

    @pytest.mark.parametrize(
        "username, password",
        [
            (MASTER_USERNAME, "wrong"),
            ("someone", MASTER_PASSWORD),
            (MASTER_USERNAME.upper(), MASTER_PASSWORD),
            ("", ""),
            (MASTER_USERNAME, MASTER_PASSWORD + " "),
        ],
    )
    def test_any_other_pair_is_rejected_without_writes(self, make_session, store, username, password) -> None:
        session = make_session()
        with pytest.raises(InvalidCredentials):
            session.sign_in_master(username, password)
        assert store.write_count == 0
        assert session.state == GateState.UNAUTHENTICATED

    def test_invalid_credentials_is_a_validation_error(self) -> None:
        assert issubclass(InvalidCredentials, ValidationError)
        assert issubclass(InvalidCredentials, AuthError)

    def test_repeated_master_login_is_idempotent(self, make_session, store) -> None:
        for _ in range(2):
            session = make_session()
            session.sign_in_master(MASTER_USERNAME, MASTER_PASSWORD)
            session.sign_out()

        assert store.write_count == 2
        doc = store.get(PROFILES, "master")
        created_at = doc.pop("created_at")
        assert created_at is not None
        assert doc == {
            "id": "master",
            "email": "",
            "display_name": "Master",
            "approved": True,
            "role": "master",
        }

    def test_master_created_at_survives_later_logins(self, make_session, store) -> None:
        make_session().sign_in_master(MASTER_USERNAME, MASTER_PASSWORD)
        first = store.get(PROFILES, "master")["created_at"]
        make_session().sign_in_master(MASTER_USERNAME, MASTER_PASSWORD)
        assert store.get(PROFILES, "master")["created_at"] == first

    def test_master_login_disabled_without_configured_hash(self, store, config) -> None:
        unconfigured = config.model_copy(update={"MASTER_PASSWORD_SHA256": ""})
        session = SessionStore(store, LocalIdentityProvider(), unconfigured)
        with pytest.raises(InvalidCredentials):
            session.sign_in_master(MASTER_USERNAME, MASTER_PASSWORD)


class TestApproval:

    def test_subscribed_pending_session_becomes_active(self, make_session, master) -> None:
        bob = make_session(BOB)
        bob.sign_in("google")
        assert bob.state == GateState.PENDING

        master.approve("u-bob")

        assert bob.state == GateState.ACTIVE
        assert bob.profile.approved is True

    def test_external_write_also_activates(self, make_session, store) -> None:
        bob = make_session(BOB)
        bob.sign_in("google")
        store.update(PROFILES, "u-bob", {"approved": True})
        assert bob.state == GateState.ACTIVE

    def test_late_snapshot_for_previous_identity_is_ignored(self, store, config) -> None:
        cara = Identity(id="u-cara", display_name="Cara")
        provider = LocalIdentityProvider({"google": BOB})
        session = SessionStore(_CapturingStore(store), provider, config)
        session.sign_in("google")
        bob_callback = session.store.callbacks[-1]
        session.sign_out()

        provider.register("google", cara)
        assert session.sign_in("google") == GateState.PENDING

        bob_callback({"id": "u-bob", "approved": True})

        assert session.state == GateState.PENDING
        assert session.profile.id == "u-cara"

    def test_failed_subscription_leaves_session_signed_out(self, store, config) -> None:
        session = SessionStore(_BrokenWatchStore(store), LocalIdentityProvider({"google": BOB}), config)
        with pytest.raises(MayauError):
            session.sign_in("google")
        assert session.state == GateState.UNAUTHENTICATED
        assert session.identity is None

    def test_signed_out_session_ignores_later_approval(self, make_session, master) -> None:
        bob = make_session(BOB)
        bob.sign_in("google")
        bob.sign_out()
        master.approve("u-bob")
        assert bob.state == GateState.UNAUTHENTICATED

    def test_only_master_can_approve(self, make_session, alice) -> None:
        make_session(BOB).sign_in("google")
        with pytest.raises(PermissionDenied):
            alice.approve("u-bob")

    def test_approve_unknown_identity(self, master) -> None:
        with pytest.raises(NotFound):
            master.approve("nobody")

    def test_pending_queue_lists_unapproved_profiles(self, make_session, master) -> None:
        make_session(BOB).sign_in("google")
        make_session(Identity(id="u-cara", display_name="Cara")).sign_in("google")

        pending = master.pending_profiles()
        assert [p.id for p in pending] == ["u-bob", "u-cara"]

        master.approve("u-bob")
        assert [p.id for p in master.pending_profiles()] == ["u-cara"]

    def test_watch_pending_is_live(self, make_session, master) -> None:
        seen = []
        sub = master.watch_pending(lambda profiles: seen.append([p.id for p in profiles]))
        make_session(BOB).sign_in("google")
        assert seen[0] == []
        assert seen[-1] == ["u-bob"]
        sub.unsubscribe()


class TestSignOutAndProfile:

    def test_sign_out_releases_subscription(self, make_session, store) -> None:
        bob = make_session(BOB)
        bob.sign_in("google")
        assert store.listener_count() == 1

        assert bob.sign_out() == GateState.UNAUTHENTICATED
        assert store.listener_count() == 0
        assert bob.identity is None
        assert bob.identity_provider.signed_in is None

    def test_sign_out_when_signed_out_is_noop(self, make_session) -> None:
        assert make_session().sign_out() == GateState.UNAUTHENTICATED

    def test_pending_user_can_rename_own_profile(self, make_session, store) -> None:
        bob = make_session(BOB)
        bob.sign_in("google")
        bob.rename("  Robert  ")
        assert store.get(PROFILES, "u-bob")["display_name"] == "Robert"
        assert bob.display_name == "Robert"

    def test_rename_rejects_blank(self, make_session) -> None:
        bob = make_session(BOB)
        bob.sign_in("google")
        with pytest.raises(ValidationError):
            bob.rename("   ")

    def test_pending_user_cannot_write(self, make_session) -> None:
        bob = make_session(BOB)
        bob.sign_in("google")
        with pytest.raises(PermissionDenied) as exc:
            bob.require_active()
        assert "approv" in exc.value.user_message()
