"""Tests for the auth state owner.

Covers:
- Startup as the local default user
- Sign-in / sign-out transitions and the active backend
- Key derivation for the active user
- Listener notification and user-state-changed events
- Ending sessions left open
"""

import pytest
from structlog.testing import capture_logs

from glass.config import clear_settings_cache
from glass.errors import ErrorCode, ValidationError
from glass.repositories import Backend
from glass.services import events
from glass.services.auth import AuthService
from glass.services.crypto import EncryptionService
from glass.services.events import EventBus
from tests.helpers import create_test_user_id, session_data


class TestInitialState:
    async def test_starts_as_default_user(self, container):
        state = container.auth.user_state()

        assert state["user_id"] == "default_user"
        assert state["is_logged_in"] is False
        assert state["mode"] == "local"
        assert container.encryption.active_user_id == "default_user"

    async def test_initialize_creates_local_default_user(self, container):
        user = await container.users.pinned(Backend.LOCAL, "default_user").get("default_user")
        assert user is not None
        assert user.has_migrated is False

    async def test_default_user_id_from_settings(self, monkeypatch):
        monkeypatch.setenv("DEFAULT_LOCAL_USER_ID", "desk")
        clear_settings_cache()

        auth = AuthService(EncryptionService(), EventBus())
        await auth.initialize()

        assert auth.get_current_user_id() == "desk"


class TestSignIn:
    async def test_switches_to_remote_user(self, container):
        user_id = create_test_user_id()

        user = await container.auth.sign_in(session_data(user_id, email="a@example.com", name="Ada"))

        assert user.user_id == user_id
        state = container.auth.user_state()
        assert state["is_logged_in"] is True
        assert state["mode"] == "remote"
        assert state["email"] == "a@example.com"
        assert state["display_name"] == "Ada"
        assert container.encryption.active_user_id == user_id

    async def test_user_record_exists_on_both_backends(self, container, remote_store):
        await container.auth.sign_in(session_data("u1", email="a@example.com"))
        await container.migration.wait_for_pending()

        assert [doc["_id"] for doc in remote_store.documents("users")] == ["u1"]
        remote_user = await container.users.get("u1")
        assert remote_user.email == "a@example.com"
        local_user = await container.users.pinned(Backend.LOCAL, "u1").get("u1")
        assert local_user.has_migrated is True

    async def test_top_level_user_id(self, container):
        user = await container.auth.sign_in({"user_id": "u2"})
        assert user.user_id == "u2"

    async def test_missing_user_id_rejected(self, container):
        with pytest.raises(ValidationError) as exc_info:
            await container.auth.sign_in({"user": {"email": "a@example.com"}})

        assert exc_info.value.code == ErrorCode.E_INVALID_REQUEST
        assert container.auth.get_current_user_id() == "default_user"

    async def test_ends_sessions_left_open(self, container, remote_store):
        await container.sessions.pinned(Backend.REMOTE, "u1").create({"title": "zombie"})

        await container.auth.sign_in(session_data("u1"))

        assert remote_store.documents("sessions")[0]["ended_at"] is not None

    async def test_sign_in_reloads_model_state(self, container):
        await container.encryption.initialize_key("u1")
        await container.provider_settings.pinned(Backend.REMOTE, "u1").upsert(
            "openai", {"api_key": "sk-remote"}
        )

        await container.auth.sign_in(session_data("u1"))

        assert container.model_state.get_api_key("openai") == "sk-remote"


class TestSignOut:
    async def test_returns_to_default_user(self, container):
        await container.auth.sign_in(session_data("u1"))

        user = await container.auth.sign_out()

        assert user.user_id == "default_user"
        assert user.is_logged_in is False
        assert container.encryption.active_user_id == "default_user"

    async def test_ends_active_sessions(self, container, remote_store):
        await container.auth.sign_in(session_data("u1"))
        await container.sessions.get_or_create_active("listen")

        await container.auth.sign_out()

        assert remote_store.documents("sessions")[0]["ended_at"] is not None

    async def test_local_data_visible_again(self, container):
        await container.presets.create({"title": "Local only"})
        await container.auth.sign_in(session_data("u1"))
        assert await container.presets.find_by_owner() == []

        await container.auth.sign_out()

        assert [p.title for p in await container.presets.find_by_owner()] == ["Local only"]


class TestListeners:
    async def test_listener_receives_new_user(self, container):
        seen = []
        container.auth.on_auth_state_changed(lambda user: seen.append(user.user_id))

        await container.auth.sign_in(session_data("u1"))
        await container.auth.sign_out()

        assert seen == ["u1", "default_user"]

    async def test_unsubscribe(self, container):
        seen = []
        unsubscribe = container.auth.on_auth_state_changed(seen.append)
        unsubscribe()

        await container.auth.sign_in(session_data("u1"))

        assert seen == []

    async def test_failing_listener_does_not_block_others(self, container):
        seen = []

        def broken(user):
            raise RuntimeError("listener bug")

        container.auth.on_auth_state_changed(broken)
        container.auth.on_auth_state_changed(seen.append)

        with capture_logs() as logs:
            await container.auth.sign_in(session_data("u1"))

        assert len(seen) == 1
        assert any(e["event"] == "auth_listener_failed" for e in logs)

    async def test_user_state_changed_event(self, container):
        states = []
        container.event_bus.subscribe(events.USER_STATE_CHANGED, states.append)

        await container.auth.sign_in(session_data("u1"))
        await container.auth.sign_out()

        assert [(s["user_id"], s["mode"]) for s in states] == [("u1", "remote"), ("default_user", "local")]
