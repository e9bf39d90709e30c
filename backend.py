import json
import os
from typing import Optional

import redis

from constants import REDIS_HOST, REDIS_PORT, REDIS_PASSWORD, REDIS_DB, STORE_BACKEND, STORE_FILE
from redis_keys import REDIS_ROOMS_KEY, REDIS_OFFLINE_KEY, REDIS_CALLS_KEY, REDIS_STATS_KEY
from schemas.signaling import State
from logging_config import get_logger

logger = get_logger(__name__)


class StoreBackend:
    """Durable mirror of the registry state.

    `load()` is called once at startup and must return an empty State when
    nothing usable is stored. `save()` raises on failure; retrying is the
    caller's job (see store.StateWriter).
    """

    name = "base"

    def load(self) -> State:
        raise NotImplementedError

    def save(self, state: State):
        raise NotImplementedError

    def close(self):
        pass


class RedisBackend(StoreBackend):
    name = "redis"

    def __init__(self, host: str = REDIS_HOST, port: int = REDIS_PORT, password: Optional[str] = REDIS_PASSWORD,
                 db: int = REDIS_DB, client: Optional[redis.Redis] = None):
        logger.info(f"Initializing RedisBackend with connection to {host}:{port}/{db}")
        if client is not None:
            self.redis_client = client
        else:
            try:
                self.redis_client = redis.Redis(host=host, port=port, password=password, db=db, decode_responses=True)
                self.redis_client.ping()
                logger.info(f"Redis client connected successfully to {host}:{port}")
            except Exception as e:
                logger.error(f"Failed to connect to Redis at {host}:{port}: {e}", exc_info=True)
                raise
        # call records already pushed to the calls list
        self._calls_written = 0

    def load(self) -> State:
        # Connection errors propagate: starting empty and then saving would wipe the stored state.
        rooms = self.redis_client.get(REDIS_ROOMS_KEY)
        offline = self.redis_client.get(REDIS_OFFLINE_KEY)
        calls = self.redis_client.lrange(REDIS_CALLS_KEY, 0, -1)
        stats = self.redis_client.hgetall(REDIS_STATS_KEY)
        try:
            state = State.model_validate({
                "rooms": json.loads(rooms) if rooms else {},
                "offlineMessages": json.loads(offline) if offline else {},
                "callRecords": [json.loads(call) for call in calls],
                "stats": stats or {},
            })
        except ValueError as e:
            logger.error(f"Stored state in Redis is corrupt, starting empty: {e}", exc_info=True)
            # the first save then clears the unreadable list
            self._calls_written = len(calls)
            return State()
        self._calls_written = len(state.call_records)
        logger.info(f"Loaded state from Redis: {len(state.rooms)} rooms, {len(state.call_records)} call records")
        return state

    def save(self, state: State):
        data = state.model_dump(mode="json", by_alias=True, exclude={"call_records"})
        # call records are append-only, so only the ones not yet pushed are sent
        written = self._calls_written
        replaced = len(state.call_records) < written
        if replaced:
            written = 0
        new_records = [record.model_dump_json(by_alias=True) for record in state.call_records[written:]]

        pipe = self.redis_client.pipeline(transaction=True)
        pipe.set(REDIS_ROOMS_KEY, json.dumps(data["rooms"]))
        pipe.set(REDIS_OFFLINE_KEY, json.dumps(data["offlineMessages"]))
        if replaced:
            pipe.delete(REDIS_CALLS_KEY)
        if new_records:
            pipe.rpush(REDIS_CALLS_KEY, *new_records)
        pipe.delete(REDIS_STATS_KEY)
        pipe.hset(REDIS_STATS_KEY, mapping={k: str(v) for k, v in data["stats"].items()})
        pipe.execute()
        self._calls_written = len(state.call_records)
        logger.debug(f"State saved to Redis ({len(data['rooms'])} rooms, {len(new_records)} new call records)")

    def close(self):
        try:
            self.redis_client.close()
        except Exception as e:
            logger.debug(f"Error closing Redis client: {e}")


class JsonFileBackend(StoreBackend):
    """Whole state as one JSON document on disk."""

    name = "file"

    def __init__(self, path: str = STORE_FILE):
        self.path = path
        logger.info(f"Initializing JsonFileBackend at {path}")

    def load(self) -> State:
        if not os.path.exists(self.path):
            logger.info(f"No database file at {self.path}, starting empty")
            return State()
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                state = State.model_validate(json.load(f))
        except (OSError, ValueError) as e:
            logger.error(f"Error loading database from {self.path}, starting empty: {e}", exc_info=True)
            return State()
        logger.info(f"Database loaded successfully from {self.path}")
        return state

    def save(self, state: State):
        tmp_path = self.path + ".part"
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(state.model_dump_json(by_alias=True, indent=2))
        os.replace(tmp_path, self.path)
        logger.debug(f"Database saved to {self.path}")


class MemoryBackend(StoreBackend):
    """Keeps the last saved state in process memory only."""

    name = "memory"

    def __init__(self, initial: Optional[State] = None):
        self.saved = initial.model_dump(mode="json", by_alias=True) if initial else None
        self.save_count = 0

    def load(self) -> State:
        if self.saved is None:
            return State()
        return State.model_validate(self.saved)

    def save(self, state: State):
        self.saved = state.model_dump(mode="json", by_alias=True)
        self.save_count += 1


def create_backend(kind: str = STORE_BACKEND) -> StoreBackend:
    if kind == "redis":
        return RedisBackend()
    if kind == "file":
        return JsonFileBackend()
    if kind == "memory":
        return MemoryBackend()
    raise ValueError(f"Unknown store backend: {kind}")
