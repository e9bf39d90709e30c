import json

from backend import RedisBackend
from redis_keys import REDIS_CALLS_KEY, REDIS_ROOMS_KEY, REDIS_STATS_KEY
from schemas.signaling import CallRecord, State


class FakePipeline:
    def __init__(self, client):
        self.client = client
        self.ops = []

    def set(self, key, value):
        self.ops.append(("set", key, value))

    def delete(self, key):
        self.ops.append(("delete", key))

    def rpush(self, key, *values):
        self.ops.append(("rpush", key, values))

    def hset(self, key, mapping):
        self.ops.append(("hset", key, mapping))

    def execute(self):
        for op in self.ops:
            if op[0] == "set":
                self.client.values[op[1]] = op[2]
            elif op[0] == "delete":
                self.client.values.pop(op[1], None)
                self.client.lists.pop(op[1], None)
                self.client.hashes.pop(op[1], None)
            elif op[0] == "rpush":
                self.client.lists.setdefault(op[1], []).extend(op[2])
                self.client.pushed += len(op[2])
            else:
                self.client.hashes.setdefault(op[1], {}).update(op[2])
        self.client.executed += 1


class FakeRedis:
    def __init__(self):
        self.values = {}
        self.lists = {}
        self.hashes = {}
        self.executed = 0
        self.pushed = 0

    def get(self, key):
        return self.values.get(key)

    def lrange(self, key, start, end):
        items = self.lists.get(key, [])
        return list(items[start:] if end == -1 else items[start:end + 1])

    def hgetall(self, key):
        return dict(self.hashes.get(key, {}))

    def pipeline(self, transaction=True):
        assert transaction
        return FakePipeline(self)

    def close(self):
        pass


def make_record(room, duration):
    return CallRecord.model_validate({"room": room, "startTime": "2024-01-01T12:00:00Z",
                                      "endTime": "2024-01-01T12:00:30Z", "duration": duration,
                                      "participants": ["B"]})


def test_empty_redis_loads_default_state():
    backend = RedisBackend(client=FakeRedis())
    assert backend.load() == State()


def test_save_writes_all_keys_in_one_transaction():
    client = FakeRedis()
    backend = RedisBackend(client=client)
    state = State.model_validate({
        "rooms": {"ABCD": {"code": "ABCD", "participants": ["A"], "creator": "A",
                           "createdAt": "2024-01-01T12:00:00Z"}},
        "callRecords": [{"room": "WXYZ", "startTime": "2024-01-01T12:00:00Z",
                         "endTime": "2024-01-01T12:00:30Z", "duration": 30.0, "participants": ["B"]}],
        "stats": {"totalCalls": 2, "totalConnections": 5},
    })
    backend.save(state)

    assert client.executed == 1
    assert REDIS_ROOMS_KEY in client.values
    assert json.loads(client.lists[REDIS_CALLS_KEY][0])["room"] == "WXYZ"
    assert client.hashes[REDIS_STATS_KEY]["totalCalls"] == "2"

    loaded = backend.load()
    assert loaded.rooms["ABCD"].creator == "A"
    assert loaded.call_records[0].participants == ("B",)
    assert loaded.stats.total_connections == 5


def test_save_only_appends_new_call_records():
    client = FakeRedis()
    backend = RedisBackend(client=client)
    state = State(call_records=[make_record("AAAA", 1.0), make_record("BBBB", 2.0)])
    backend.save(state)
    backend.save(state)
    state.call_records.append(make_record("CCCC", 3.0))
    backend.save(state)

    assert client.executed == 3
    assert client.pushed == 3
    restarted = RedisBackend(client=client)
    assert [r.room for r in restarted.load().call_records] == ["AAAA", "BBBB", "CCCC"]
    restarted.save(State(call_records=restarted.load().call_records + [make_record("DDDD", 4.0)]))
    assert client.pushed == 4
    assert len(client.lists[REDIS_CALLS_KEY]) == 4


def test_shorter_history_rewrites_call_list():
    client = FakeRedis()
    backend = RedisBackend(client=client)
    backend.save(State(call_records=[make_record("AAAA", 1.0), make_record("BBBB", 2.0)]))
    backend.save(State(call_records=[make_record("ZZZZ", 9.0)]))
    assert [json.loads(r)["room"] for r in client.lists[REDIS_CALLS_KEY]] == ["ZZZZ"]


def test_corrupt_redis_value_loads_default_state():
    client = FakeRedis()
    client.values[REDIS_ROOMS_KEY] = "{broken"
    assert RedisBackend(client=client).load() == State()
