"""
Tests for store backends and the store factory.
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import RedisError, WatchError

from ..engine_core.state import GameStatus
from ..errors import ConfigurationError, StoreConflictError, StoreError
from ..store import InMemoryGameStore, create_store
from ..store.redis_store import RedisGameStore


class TestInMemoryStore:

    @pytest.mark.asyncio
    async def test_starts_with_waiting_game(self, store):
        state = await store.read()
        assert state.status == GameStatus.WAITING
        assert state.version == 0
        assert store.version == 0

    @pytest.mark.asyncio
    async def test_write_bumps_version(self, store):
        state = await store.read()
        stored = await store.write(state.touched(max_players=3))

        assert stored.version == 1
        assert (await store.read()).max_players == 3
        assert store.write_log == [stored]

    @pytest.mark.asyncio
    async def test_write_log_is_off_by_default(self, config):
        store = InMemoryGameStore(config=config)
        for _ in range(20):
            await store.write(await store.read())

        assert store.version == 20
        assert store.write_log == []

    @pytest.mark.asyncio
    async def test_reads_are_independent_snapshots(self, playing_store):
        first = await playing_store.read()
        first.players.clear()
        second = await playing_store.read()
        assert len(second.players) == 2

    @pytest.mark.asyncio
    async def test_conditional_write(self, store):
        state = await store.read()
        await store.write(state, expected_version=0)

        with pytest.raises(StoreConflictError):
            await store.write(state, expected_version=0)
        assert store.version == 1

    @pytest.mark.asyncio
    async def test_subscribers_see_every_write(self, store):
        seen = []
        unsubscribe = store.subscribe(lambda s: seen.append(s.version))

        state = await store.read()
        await store.write(state)
        await store.write(state)
        unsubscribe()
        await store.write(state)

        assert seen == [1, 2]

    @pytest.mark.asyncio
    async def test_async_subscriber(self, store):
        seen = []

        async def on_change(state):
            seen.append(state.version)

        store.subscribe(on_change)
        await store.write(await store.read())
        assert seen == [1]

    @pytest.mark.asyncio
    async def test_failing_subscriber_is_isolated(self, store):
        seen = []

        def broken(state):
            raise RuntimeError("subscriber failed")

        store.subscribe(broken)
        store.subscribe(lambda s: seen.append(s.version))

        stored = await store.write(await store.read())
        assert stored.version == 1
        assert seen == [1]


class TestPresence:

    @pytest.mark.asyncio
    async def test_disconnect_runs_cleanups(self, store):
        calls = []

        async def cleanup():
            calls.append("async")

        await store.set_presence("alice")
        store.on_disconnect("alice", cleanup)
        store.on_disconnect("alice", lambda: calls.append("sync"))

        await store.disconnect("alice")

        assert calls == ["async", "sync"]
        assert "alice" not in store.presence

    @pytest.mark.asyncio
    async def test_failing_cleanup_does_not_stop_others(self, store):
        calls = []

        def broken():
            raise RuntimeError("cleanup failed")

        store.on_disconnect("alice", broken)
        store.on_disconnect("alice", lambda: calls.append("ran"))
        await store.disconnect("alice")
        assert calls == ["ran"]

    @pytest.mark.asyncio
    async def test_cancel_on_disconnect(self, store):
        calls = []
        store.on_disconnect("alice", lambda: calls.append("ran"))
        store.cancel_on_disconnect("alice")
        await store.disconnect("alice")
        assert calls == []


class TestCreateStore:

    def test_memory_backend(self, config):
        store = create_store("memory", config)
        assert isinstance(store, InMemoryGameStore)
        assert store.supports_cas

    def test_backend_name_is_case_insensitive(self, config):
        assert isinstance(create_store("MEMORY", config), InMemoryGameStore)

    def test_unknown_backend(self, config):
        with pytest.raises(ConfigurationError):
            create_store("postgres", config)


def mock_pipeline(record=None, execute=None):
    """Transaction pipeline whose watched GET returns record."""
    pipe = MagicMock()
    pipe.__aenter__.return_value = pipe
    pipe.__aexit__.return_value = False
    pipe.watch = AsyncMock()
    pipe.get = AsyncMock(return_value=json.dumps(record) if record else None)
    pipe.execute = AsyncMock(side_effect=execute)
    return pipe


class TestRedisStore:
    """Redis backend against a mocked client."""

    def test_from_url(self, config):
        store = RedisGameStore.from_url("redis://localhost:6379/0", key="room1", config=config)
        assert store.key == "room1"
        assert store.channel == "room1:updates"
        assert store.presence_key == "room1:presence"
        assert store.supports_cas

    @pytest.mark.asyncio
    async def test_read_decodes_record(self, config, playing_state):
        redis = AsyncMock()
        redis.get.return_value = json.dumps(playing_state.to_dict())
        store = RedisGameStore(redis, key="room1", config=config)

        state = await store.read()

        assert state.to_dict() == playing_state.to_dict()
        redis.get.assert_awaited_once_with("room1")

    @pytest.mark.asyncio
    async def test_missing_record_is_new_game(self, config):
        redis = AsyncMock()
        redis.get.return_value = None
        store = RedisGameStore(redis, config=config)

        state = await store.read()
        assert state.status == GameStatus.WAITING
        assert state.players == []

    @pytest.mark.asyncio
    async def test_read_failure(self, config):
        redis = AsyncMock()
        redis.get.side_effect = RedisError("connection refused")
        store = RedisGameStore(redis, config=config)

        with pytest.raises(StoreError):
            await store.read()

    @pytest.mark.asyncio
    async def test_presence_failure_is_logged(self, config):
        redis = AsyncMock()
        redis.hset.side_effect = RedisError("connection refused")
        store = RedisGameStore(redis, config=config)

        await store.set_presence("alice", online=True)
        redis.hset.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_presence_offline_removes_entry(self, config):
        redis = AsyncMock()
        store = RedisGameStore(redis, key="room1", config=config)

        await store.set_presence("alice", online=False)
        redis.hdel.assert_awaited_once_with("room1:presence", "alice")

    @pytest.mark.asyncio
    async def test_write_bumps_version_and_publishes(self, config, playing_state):
        pipe = mock_pipeline(playing_state._copy_with(version=3).to_dict())
        redis = AsyncMock()
        redis.pipeline = MagicMock(return_value=pipe)
        store = RedisGameStore(redis, key="room1", config=config)

        stored = await store.write(playing_state.touched(), expected_version=3)

        assert stored.version == 4
        pipe.watch.assert_awaited_once_with("room1")
        pipe.multi.assert_called_once()
        key, payload = pipe.set.call_args.args
        assert key == "room1"
        assert json.loads(payload)["version"] == 4
        pipe.publish.assert_called_once_with("room1:updates", "4")
        pipe.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_first_write_starts_at_version_one(self, config, waiting_state):
        pipe = mock_pipeline(None)
        redis = AsyncMock()
        redis.pipeline = MagicMock(return_value=pipe)
        store = RedisGameStore(redis, config=config)

        stored = await store.write(waiting_state, expected_version=0)
        assert stored.version == 1

    @pytest.mark.asyncio
    async def test_stale_expected_version(self, config, playing_state):
        pipe = mock_pipeline(playing_state._copy_with(version=3).to_dict())
        redis = AsyncMock()
        redis.pipeline = MagicMock(return_value=pipe)
        store = RedisGameStore(redis, config=config)

        with pytest.raises(StoreConflictError):
            await store.write(playing_state, expected_version=1)

        pipe.set.assert_not_called()
        pipe.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unconditional_write_retries_after_watch_error(self, config, playing_state):
        pipe = mock_pipeline(
            playing_state._copy_with(version=3).to_dict(),
            execute=[WatchError("record changed"), [True, 1]],
        )
        redis = AsyncMock()
        redis.pipeline = MagicMock(return_value=pipe)
        store = RedisGameStore(redis, config=config)

        stored = await store.write(playing_state)

        assert stored.version == 4
        assert pipe.execute.await_count == 2
        assert pipe.watch.await_count == 2

    @pytest.mark.asyncio
    async def test_conditional_write_conflicts_on_watch_error(self, config, playing_state):
        pipe = mock_pipeline(
            playing_state._copy_with(version=3).to_dict(),
            execute=[WatchError("record changed")],
        )
        redis = AsyncMock()
        redis.pipeline = MagicMock(return_value=pipe)
        store = RedisGameStore(redis, config=config)

        with pytest.raises(StoreConflictError):
            await store.write(playing_state, expected_version=3)
        pipe.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_write_failure(self, config, playing_state):
        pipe = mock_pipeline(None, execute=[RedisError("connection reset")])
        redis = AsyncMock()
        redis.pipeline = MagicMock(return_value=pipe)
        store = RedisGameStore(redis, config=config)

        with pytest.raises(StoreError):
            await store.write(playing_state)

    @pytest.mark.asyncio
    async def test_listener_rereads_on_update(self, config, playing_state):
        pubsub = MagicMock()
        pubsub.subscribe = AsyncMock()
        pubsub.unsubscribe = AsyncMock()
        pubsub.aclose = AsyncMock()
        pubsub.get_message = AsyncMock(side_effect=[
            {"type": "message", "data": "4"},
            asyncio.CancelledError(),
        ])
        redis = AsyncMock()
        redis.pubsub = MagicMock(return_value=pubsub)
        redis.get.return_value = json.dumps(playing_state._copy_with(version=4).to_dict())
        store = RedisGameStore(redis, key="room1", config=config)
        seen = []

        with pytest.raises(asyncio.CancelledError):
            await store._listen(lambda s: seen.append(s.version))

        assert seen == [4]
        pubsub.subscribe.assert_awaited_once_with("room1:updates")
        pubsub.unsubscribe.assert_awaited_once_with("room1:updates")
        pubsub.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_subscribe_runs_listener_task(self, config):
        redis = AsyncMock()
        store = RedisGameStore(redis, config=config)
        store._listen = AsyncMock()

        unsubscribe = store.subscribe(lambda s: None)
        assert len(store._listeners) == 1

        unsubscribe()
        assert store._listeners == set()
