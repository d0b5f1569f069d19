"""Tests for prompt presets: ordering and the single-default invariant."""

import asyncio

import pytest

from glass.repositories import CurrentUser, PresetRepository
from tests.helpers import make_repository


@pytest.fixture(params=["local", "remote"])
async def presets(request, local_store, remote_store, encryption, auth) -> PresetRepository:
    if request.param == "remote":
        auth.sign_in("u1")
    else:
        auth.sign_out("u1")
    await encryption.initialize_key("u1")
    return make_repository(PresetRepository, local_store, remote_store, encryption, auth)


class TestPresetOrdering:
    async def test_default_first_then_newest(self, presets):
        a = await presets.create({"title": "a"})
        await asyncio.sleep(0.001)
        b = await presets.create({"title": "b"})
        await asyncio.sleep(0.001)
        c = await presets.create({"title": "c"})

        await presets.set_as_default(a.id)

        assert [p.id for p in await presets.find_by_owner()] == [a.id, c.id, b.id]


class TestSetAsDefault:
    async def test_exactly_one_default(self, presets):
        a = await presets.create({"title": "a", "is_default": True})
        b = await presets.create({"title": "b"})

        result = await presets.set_as_default(b.id)

        assert result.id == b.id
        assert result.is_default is True
        defaults = [p for p in await presets.find_by_owner() if p.is_default]
        assert [p.id for p in defaults] == [b.id]
        assert (await presets.find_by_id(a.id)).is_default is False

    async def test_repeat_is_idempotent(self, presets):
        a = await presets.create({"title": "a"})

        await presets.set_as_default(a.id)
        await presets.set_as_default(a.id)

        assert (await presets.find_default()).id == a.id

    async def test_unknown_preset_changes_nothing(self, presets):
        a = await presets.create({"title": "a"})
        await presets.set_as_default(a.id)

        assert await presets.set_as_default("missing") is None
        assert (await presets.find_default()).id == a.id

    async def test_other_users_preset_rejected(self, presets, auth):
        theirs = await presets.create({"title": "theirs"})
        auth.user = CurrentUser(user_id="u2", is_logged_in=auth.user.is_logged_in)

        assert await presets.set_as_default(theirs.id) is None

    async def test_concurrent_calls_leave_one_default(self, presets):
        ids = [(await presets.create({"title": str(i)})).id for i in range(4)]

        await asyncio.gather(*(presets.set_as_default(i) for i in ids))

        defaults = [p for p in await presets.find_by_owner() if p.is_default]
        assert len(defaults) == 1

    async def test_no_default_initially(self, presets):
        await presets.create({"title": "a"})
        assert await presets.find_default() is None
