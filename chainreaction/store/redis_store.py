"""
Redis store - Shared game record in Redis.

The record is one JSON value under a key. Writes use WATCH/MULTI so a
write carrying expected_version fails with StoreConflictError if another
client got there first. Every write publishes the new version on a
channel; subscribers re-read the record when a message arrives.
"""

from __future__ import annotations
from typing import Any
import asyncio
import json
import logging
import time

from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError

from .base import GameStore, Subscriber, Unsubscribe, maybe_await
from ..config import GameConfig
from ..engine_core.state import GameState
from ..errors import StoreConflictError, StoreError

logger = logging.getLogger(__name__)


class RedisGameStore(GameStore):
    """Shared store backed by a Redis server."""

    supports_cas = True

    def __init__(
        self,
        redis: Redis,
        key: str = "chainreaction:game",
        config: GameConfig | None = None,
    ):
        super().__init__()
        self.redis = redis
        self.key = key
        self.channel = f"{key}:updates"
        self.presence_key = f"{key}:presence"
        self.config = config or GameConfig()
        self._listeners: set[asyncio.Task] = set()

    @classmethod
    def from_url(cls, url: str, key: str = "chainreaction:game", config: GameConfig | None = None) -> RedisGameStore:
        return cls(Redis.from_url(url, decode_responses=True), key=key, config=config)

    def _decode(self, raw: str | bytes | None) -> GameState:
        record = json.loads(raw) if raw else None
        return GameState.from_dict(record, self.config.rows, self.config.cols)

    async def read(self) -> GameState:
        try:
            raw = await self.redis.get(self.key)
        except RedisError as e:
            raise StoreError(f"Redis read failed: {e}") from e
        return self._decode(raw)

    async def write(
        self,
        state: GameState,
        expected_version: int | None = None,
    ) -> GameState:
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                while True:
                    try:
                        await pipe.watch(self.key)
                        raw = await pipe.get(self.key)
                        current: dict[str, Any] = json.loads(raw) if raw else {}
                        version = int(current.get("version") or 0)
                        if expected_version is not None and expected_version != version:
                            raise StoreConflictError(
                                "Record changed since it was read",
                                context={"expected": expected_version, "actual": version},
                            )
                        stored = state._copy_with(
                            version=version + 1,
                            last_update=state.last_update or time.time(),
                        )
                        pipe.multi()
                        pipe.set(self.key, json.dumps(stored.to_dict()))
                        pipe.publish(self.channel, str(stored.version))
                        await pipe.execute()
                        logger.debug("Stored version %d in %s", stored.version, self.key)
                        return stored
                    except WatchError:
                        if expected_version is not None:
                            raise StoreConflictError(
                                "Record changed during write",
                                context={"expected": expected_version},
                            )
                        # Unconditional write: last writer wins, try again
                        continue
        except RedisError as e:
            raise StoreError(f"Redis write failed: {e}") from e

    def subscribe(self, callback: Subscriber) -> Unsubscribe:
        """Listen on the update channel in a background task."""
        task = asyncio.get_running_loop().create_task(self._listen(callback))
        self._listeners.add(task)

        def unsubscribe() -> None:
            task.cancel()
            self._listeners.discard(task)

        return unsubscribe

    async def _listen(self, callback: Subscriber) -> None:
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(self.channel)
        try:
            while True:
                msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=None)
                if msg and msg["type"] == "message":
                    try:
                        await maybe_await(callback(await self.read()))
                    except StoreError:
                        logger.warning("Could not refresh after update", exc_info=True)
                    except Exception:
                        logger.warning("Store subscriber raised", exc_info=True)
        finally:
            logger.info("Unsubscribing from %s", self.channel)
            await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()

    async def set_presence(self, player_id: str, online: bool = True) -> None:
        try:
            if online:
                await self.redis.hset(
                    self.presence_key,
                    player_id,
                    json.dumps({"online": True, "last_seen": time.time()}),
                )
            else:
                await self.redis.hdel(self.presence_key, player_id)
        except RedisError:
            logger.warning("Presence update failed for %s", player_id, exc_info=True)

    async def close(self) -> None:
        for task in list(self._listeners):
            task.cancel()
        self._listeners.clear()
        await self.redis.aclose()
