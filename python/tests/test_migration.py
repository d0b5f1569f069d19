"""Tests for the local to remote migration.

Covers:
- Copying every entity of the user, with ids preserved
- Legacy model-state payload import
- Marking has_migrated and removing local copies
- Re-runs, skips, and contained failures
- Completion notification and model state reload
"""

import asyncio
from datetime import UTC, datetime

import pytest
from structlog.testing import capture_logs

from glass.errors import MigrationError, StorageError
from glass.repositories import Backend
from glass.services import events
from glass.services.crypto import looks_encrypted
from tests.helpers import session_data

USER_ID = "u1"


def local(repo, user_id: str = USER_ID):
    return repo.pinned(Backend.LOCAL, user_id)


async def seed_local_data(container, user_id: str = USER_ID):
    """Create a not-yet-migrated local user with one of everything."""
    await container.encryption.initialize_key(user_id)
    await local(container.users, user_id).find_or_create({"id": user_id, "email": "u1@example.com"})
    session = await local(container.sessions, user_id).create({"title": "Standup"})
    await local(container.ai_messages, user_id).add(
        {"session_id": session.id, "role": "user", "content": "what did I miss?"}
    )
    await local(container.summaries, user_id).add({"session_id": session.id, "tldr": "Nothing much"})
    await local(container.transcripts, user_id).add(
        {"session_id": session.id, "speaker": "Me", "text": "hello everyone"}
    )
    preset = await local(container.presets, user_id).create({"title": "Mine", "prompt": "Be brief"})
    await local(container.provider_settings, user_id).upsert("openai", {"api_key": "sk-local"})
    await local(container.model_selections, user_id).upsert(
        {"selected_llm_provider": "openai", "selected_llm_model": "gpt-4o"}
    )
    return session, preset


def put_legacy_state(container, payload: dict, user_id: str = USER_ID) -> None:
    container.local_store.put(
        "legacy_state", user_id, {"payload": payload, "updated_at": datetime.now(UTC)}
    )


class TestMigrationRun:
    async def test_copies_every_entity(self, container, remote_store):
        session, preset = await seed_local_data(container)

        assert await container.migration.run(USER_ID) is True

        remote_sessions = remote_store.documents("sessions")
        assert [doc["_id"] for doc in remote_sessions] == [session.id]
        assert remote_sessions[0]["user_id"] == USER_ID
        assert [doc["_id"] for doc in remote_store.documents("presets")] == [preset.id]
        assert len(remote_store.documents("ai_messages")) == 1
        assert len(remote_store.documents("summaries")) == 1
        assert len(remote_store.documents("transcripts")) == 1

    async def test_remote_copies_are_encrypted_and_readable(self, container, remote_store):
        session, _ = await seed_local_data(container)

        await container.migration.run(USER_ID)

        assert looks_encrypted(remote_store.documents("ai_messages")[0]["content"])
        assert looks_encrypted(remote_store.documents("provider_settings")[0]["api_key"])
        remote_messages = container.ai_messages.pinned(Backend.REMOTE, USER_ID)
        assert [m.content for m in await remote_messages.find_by_session_id(session.id)] == [
            "what did I miss?"
        ]
        remote_settings = container.provider_settings.pinned(Backend.REMOTE, USER_ID)
        assert (await remote_settings.get("openai")).api_key == "sk-local"

    async def test_marks_user_and_removes_local_copies(self, container):
        await seed_local_data(container)

        await container.migration.run(USER_ID)

        user = await local(container.users).get(USER_ID)
        assert user.has_migrated is True
        store = container.local_store
        for table in (
            "sessions",
            "presets",
            "provider_settings",
            "model_selections",
            "ai_messages",
            "summaries",
            "transcripts",
        ):
            assert store.scan(table) == [], table

    async def test_skips_when_already_migrated(self, container, remote_store):
        await seed_local_data(container)
        await container.migration.run(USER_ID)

        with capture_logs() as logs:
            assert await container.migration.run(USER_ID) is False

        assert any(e["event"] == "migration_skipped" for e in logs)
        assert len(remote_store.documents("sessions")) == 1

    async def test_skips_without_local_user(self, container, remote_store):
        assert await container.migration.run("nobody") is False
        assert remote_store.documents("sessions") == []

    async def test_rerun_overwrites_partial_copy(self, container, remote_store):
        session, _ = await seed_local_data(container)
        # Left behind by an interrupted run
        await remote_store.insert_one(
            "sessions", {"_id": session.id, "user_id": USER_ID, "title": "stale"}
        )

        await container.migration.run(USER_ID)

        documents = remote_store.documents("sessions")
        assert len(documents) == 1
        remote_sessions = container.sessions.pinned(Backend.REMOTE, USER_ID)
        assert (await remote_sessions.find_by_id(session.id)).title == "Standup"

    async def test_failure_keeps_local_data(self, container, remote_store):
        await seed_local_data(container)
        remote_store.fail_with = StorageError("session", "updateOne", "down", transient=True)

        with pytest.raises(MigrationError) as exc_info:
            await container.migration.run(USER_ID)

        assert exc_info.value.user_id == USER_ID
        assert (await local(container.users).get(USER_ID)).has_migrated is False
        assert len(container.local_store.scan("sessions")) == 1

        remote_store.fail_with = None
        assert await container.migration.run(USER_ID) is True

    async def test_interrupted_cleanup_is_finished_by_next_run(self, container, remote_store):
        await seed_local_data(container)

        async def interrupted(user_id):
            raise StorageError("session", "delete", "disk full")

        container.migration._remove_local_copies = interrupted
        with pytest.raises(MigrationError):
            await container.migration.run(USER_ID)
        del container.migration._remove_local_copies
        assert (await local(container.users).get(USER_ID)).has_migrated is True
        assert len(container.local_store.scan("sessions")) == 1

        with capture_logs() as logs:
            assert await container.migration.run(USER_ID) is False

        removed = [e for e in logs if e["event"] == "migration_leftovers_removed"]
        assert removed and removed[0]["count"] == 7
        for table in ("sessions", "presets", "provider_settings", "model_selections", "ai_messages"):
            assert container.local_store.scan(table) == [], table
        assert len(remote_store.documents("sessions")) == 1


class TestLegacyState:
    async def test_imports_keys_and_selection(self, container, remote_store):
        await container.encryption.initialize_key(USER_ID)
        await local(container.users).find_or_create({"id": USER_ID})
        put_legacy_state(
            container,
            {
                "api_keys": {"gemini": container.encryption.encrypt("g-key"), "deepgram": "dg-plain"},
                "selected_models": {"llm": "gemini-2.5-flash", "stt": "nova-3"},
            },
        )

        await container.migration.run(USER_ID)

        remote_settings = container.provider_settings.pinned(Backend.REMOTE, USER_ID)
        assert (await remote_settings.get("gemini")).api_key == "g-key"
        assert (await remote_settings.get("deepgram")).api_key == "dg-plain"
        selections = await container.model_selections.pinned(Backend.REMOTE, USER_ID).get()
        assert selections.selected_llm_provider == "gemini"
        assert selections.selected_stt_model == "nova-3"
        assert container.local_store.get("legacy_state", USER_ID) is None

    async def test_local_record_wins_over_legacy_key(self, container):
        await seed_local_data(container)
        put_legacy_state(container, {"api_keys": {"openai": "sk-legacy"}})

        await container.migration.run(USER_ID)

        remote_settings = container.provider_settings.pinned(Backend.REMOTE, USER_ID)
        assert (await remote_settings.get("openai")).api_key == "sk-local"

    async def test_unreadable_and_unknown_keys_skipped(self, container, remote_store):
        await container.encryption.initialize_key("someone_else")
        foreign = container.encryption.encrypt("sk-foreign")
        await container.encryption.initialize_key(USER_ID)
        await local(container.users).find_or_create({"id": USER_ID})
        put_legacy_state(container, {"api_keys": {"openai": foreign, "mystery": "k", "gemini": ""}})

        with capture_logs() as logs:
            await container.migration.run(USER_ID)

        assert remote_store.documents("provider_settings") == []
        assert any(e["event"] == "legacy_key_unreadable" for e in logs)


class TestScheduledMigration:
    async def test_sign_in_migrates_and_reloads_model_state(self, container, remote_store):
        await seed_local_data(container)
        completed = []
        container.event_bus.subscribe(events.MIGRATION_COMPLETED, completed.append)

        await container.auth.sign_in(session_data(USER_ID))
        await container.migration.wait_for_pending()

        assert completed == [{"user_id": USER_ID}]
        assert len(remote_store.documents("sessions")) == 1
        assert container.model_state.get_api_key("openai") == "sk-local"
        assert container.model_state.get_selected_models()["llm"] == "gpt-4o"

    async def test_in_flight_task_is_reused(self, container):
        await seed_local_data(container)

        first = container.migration.schedule(USER_ID)
        second = container.migration.schedule(USER_ID)

        assert first is second
        assert await first is True

    async def test_failure_is_contained_and_logged(self, container, remote_store):
        await seed_local_data(container)
        completed = []
        container.event_bus.subscribe(events.MIGRATION_COMPLETED, completed.append)
        remote_store.fail_with = StorageError("session", "updateOne", "down", transient=True)

        with capture_logs() as logs:
            result = await container.migration.schedule(USER_ID)

        assert result is False
        assert completed == []
        failed = [e for e in logs if e["event"] == "migration_failed"]
        assert failed and failed[0]["user_id"] == USER_ID
        remote_store.fail_with = None

    async def test_sign_out_mid_run_keeps_the_users_key(self, container, remote_store):
        await seed_local_data(container)
        for i in range(20):
            await local(container.presets).create({"title": f"preset {i}"})
        remote_store.latency_s = 0.01

        await container.auth.sign_in(session_data(USER_ID))
        await asyncio.sleep(0.015)
        await container.auth.sign_out()
        assert container.encryption.active_user_id == "default_user"
        await container.migration.wait_for_pending()
        remote_store.latency_s = 0.0

        await container.auth.sign_in(session_data(USER_ID))
        titles = {p.title for p in await container.presets.find_by_owner()}
        assert titles == {"Mine", *(f"preset {i}" for i in range(20))}
        messages = await container.ai_messages.find_by_owner((await container.sessions.find_by_owner())[0].id)
        assert [m.content for m in messages] == ["what did I miss?"]
        assert container.local_store.scan("presets") == []

    async def test_other_sign_in_mid_run_keeps_the_users_key(self, container, remote_store):
        await seed_local_data(container)
        remote_store.latency_s = 0.01

        await container.auth.sign_in(session_data(USER_ID))
        await asyncio.sleep(0.015)
        await container.auth.sign_in(session_data("u2"))
        await container.migration.wait_for_pending()
        remote_store.latency_s = 0.0

        remote_settings = container.provider_settings.pinned(Backend.REMOTE, USER_ID)
        assert (await remote_settings.get("openai")).api_key == "sk-local"
        remote_sessions = container.sessions.pinned(Backend.REMOTE, USER_ID)
        assert [s.title for s in await remote_sessions.find_by_owner()] == ["Standup"]
