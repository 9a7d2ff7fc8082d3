import pytest
from pymongo.errors import PyMongoError
from redis.exceptions import RedisError

from userservice.errors import QueryError, QueryErrorKind
from userservice.models import NewUser, User
from userservice.pools import Pool
from userservice.repository import (
    CachingUserRepository,
    MongoUserRepository,
    PostgresUserRepository,
    UserRepository,
)


class StaticManager:
    def __init__(self, conn=None, error=None):
        self.conn = conn
        self.error = error

    async def create(self):
        if self.error:
            raise self.error
        return self.conn

    async def recycle(self, conn):
        return None


def pool_of(conn):
    return Pool(StaticManager(conn), max_size=2)


class FakePgConnection:
    def __init__(self, rows=(), error=None):
        self.rows = list(rows)
        self.error = error
        self.calls = []

    async def _record(self, name, query, args):
        self.calls.append((name, args))
        if self.error:
            raise self.error

    async def fetchrow(self, query, *args):
        await self._record("fetchrow", query, args)
        return self.rows[0] if self.rows else None

    async def fetch(self, query, *args):
        await self._record("fetch", query, args)
        return list(self.rows)

    async def execute(self, query, *args):
        await self._record("execute", query, args)
        return "UPDATE 1"


ROW = {"id": "u1", "username": "alice", "profile_picture": "pic.png"}


@pytest.mark.asyncio
async def test_postgres_get_by_id_maps_row():
    conn = FakePgConnection(rows=[ROW])
    repository = PostgresUserRepository(pool_of(conn))
    assert await repository.get_by_id("u1") == User("u1", "alice", "pic.png")
    assert conn.calls == [("fetchrow", ("u1",))]


@pytest.mark.asyncio
async def test_postgres_get_by_username_missing():
    conn = FakePgConnection()
    repository = PostgresUserRepository(pool_of(conn))
    assert await repository.get_by_username("nobody") is None
    assert conn.calls == [("fetchrow", ("nobody",))]


@pytest.mark.asyncio
async def test_postgres_create_binds_fields():
    conn = FakePgConnection(rows=[{"id": "u1"}])
    repository = PostgresUserRepository(pool_of(conn))
    await repository.create(NewUser("u1", "alice", None))
    assert conn.calls == [("fetchrow", ("u1", "alice", None))]


@pytest.mark.asyncio
async def test_postgres_update_and_list():
    conn = FakePgConnection(rows=[ROW])
    repository = PostgresUserRepository(pool_of(conn))
    await repository.update(User("u1", "bob", None))
    users = await repository.list(iter(["u1"]))
    assert users == [User("u1", "alice", "pic.png")]
    assert conn.calls == [("execute", ("u1", "bob", None)), ("fetch", (["u1"],))]


@pytest.mark.asyncio
async def test_postgres_query_failure():
    repository = PostgresUserRepository(pool_of(FakePgConnection(error=OSError("bad sql"))))
    with pytest.raises(QueryError) as info:
        await repository.get_by_id("u1")
    assert info.value.kind is QueryErrorKind.SQL
    assert str(info.value) == "Error running query: bad sql"


@pytest.mark.asyncio
async def test_postgres_pool_failure():
    pool = Pool(StaticManager(error=OSError("refused")), max_size=1)
    with pytest.raises(QueryError) as info:
        await PostgresUserRepository(pool).get_by_id("u1")
    assert info.value.kind is QueryErrorKind.POSTGRES_POOL


class FakeCursor:
    def __init__(self, documents):
        self._documents = iter(documents)

    def __aiter__(self):
        return self

    async def __anext__(self):
        try:
            return next(self._documents)
        except StopIteration:
            raise StopAsyncIteration from None


def matches(document, query):
    for key, condition in query.items():
        if isinstance(condition, dict):
            if document.get(key) not in condition["$in"]:
                return False
        elif document.get(key) != condition:
            return False
    return True


class FakeCollection:
    def __init__(self, error=None):
        self.documents = []
        self.error = error

    def _check(self):
        if self.error:
            raise self.error

    async def insert_one(self, document):
        self._check()
        self.documents.append(dict(document, _id=len(self.documents)))

    async def update_one(self, query, update):
        self._check()
        for document in self.documents:
            if matches(document, query):
                document.update(update["$set"])
                return

    def find(self, query):
        self._check()
        return FakeCursor([d for d in self.documents if matches(d, query)])

    async def find_one(self, query):
        self._check()
        return next((d for d in self.documents if matches(d, query)), None)


class FakeDatabase:
    def __init__(self, collection):
        self.collection = collection

    def __getitem__(self, name):
        assert name == "users"
        return self.collection


def mongo_repository(collection):
    return MongoUserRepository(pool_of(FakeDatabase(collection)))


@pytest.mark.asyncio
async def test_mongo_create_then_get():
    collection = FakeCollection()
    repository = mongo_repository(collection)
    await repository.create(NewUser("u1", "alice", "pic.png"))
    assert await repository.get_by_username("alice") == User("u1", "alice", None)
    assert await repository.get_by_id("u1") == User("u1", "alice", None)
    assert "profile_picture" not in collection.documents[0]


@pytest.mark.asyncio
async def test_mongo_update_sets_fields():
    repository = mongo_repository(FakeCollection())
    await repository.create(NewUser("u1", "alice"))
    await repository.update(User("u1", "bob", "new.png"))
    assert await repository.get_by_id("u1") == User("u1", "bob", "new.png")
    assert await repository.get_by_username("alice") is None


@pytest.mark.asyncio
async def test_mongo_list_filters_ids():
    repository = mongo_repository(FakeCollection())
    for user_id, name in [("u1", "alice"), ("u2", "bob"), ("u3", "carol")]:
        await repository.create(NewUser(user_id, name))
    users = await repository.list(["u3", "u1"])
    assert sorted(user.user_id for user in users) == ["u1", "u3"]
    assert await repository.list([]) == []


@pytest.mark.asyncio
async def test_mongo_bad_document():
    collection = FakeCollection()
    collection.documents.append({"user_id": "u1"})
    with pytest.raises(QueryError) as info:
        await mongo_repository(collection).get_by_id("u1")
    assert info.value.kind is QueryErrorKind.BSON


@pytest.mark.asyncio
async def test_mongo_driver_error():
    repository = mongo_repository(FakeCollection(error=PyMongoError("offline")))
    with pytest.raises(QueryError) as info:
        await repository.get_by_id("u1")
    assert info.value.kind is QueryErrorKind.MONGO
    assert str(info.value) == "Error accessing mongo: offline"


class FakeRedis:
    def __init__(self, error=None):
        self.store = {}
        self.error = error

    def _check(self):
        if self.error:
            raise self.error

    async def get(self, key):
        self._check()
        return self.store.get(key)

    async def set(self, key, value):
        self._check()
        self.store[key] = value

    async def delete(self, key):
        self._check()
        self.store.pop(key, None)


class MemoryRepository(UserRepository):
    def __init__(self, users=()):
        self.users = {user.user_id: user for user in users}
        self.lookups = 0
        self.updated = []

    async def create(self, user):
        self.users[user.user_id] = User(user.user_id, user.username, user.profile_picture)

    async def update(self, user):
        self.updated.append(user)
        self.users[user.user_id] = user

    async def list(self, user_ids):
        return [self.users[i] for i in user_ids if i in self.users]

    async def get_by_id(self, user_id):
        self.lookups += 1
        return self.users.get(user_id)

    async def get_by_username(self, username):
        self.lookups += 1
        return next((u for u in self.users.values() if u.username == username), None)


ALICE = User("u1", "alice", "pic.png")


@pytest.mark.asyncio
async def test_cache_reads_through_once():
    redis = FakeRedis()
    backend = MemoryRepository([ALICE])
    repository = CachingUserRepository(pool_of(redis), backend)
    assert await repository.get_by_id("u1") == ALICE
    assert await repository.get_by_id("u1") == ALICE
    assert backend.lookups == 1
    assert User.decode(redis.store["user:u1"]) == ALICE


@pytest.mark.asyncio
async def test_cache_username_key():
    redis = FakeRedis()
    repository = CachingUserRepository(pool_of(redis), MemoryRepository([ALICE]))
    assert await repository.get_by_username("alice") == ALICE
    assert set(redis.store) == {"user:alice"}


@pytest.mark.asyncio
async def test_cache_miss_not_stored():
    redis = FakeRedis()
    repository = CachingUserRepository(pool_of(redis), MemoryRepository())
    assert await repository.get_by_id("missing") is None
    assert redis.store == {}


@pytest.mark.asyncio
async def test_cache_update_evicts_and_delegates():
    redis = FakeRedis()
    backend = MemoryRepository([ALICE])
    repository = CachingUserRepository(pool_of(redis), backend)
    await repository.get_by_id("u1")
    renamed = User("u1", "bob", None)
    await repository.update(renamed)
    assert "user:u1" not in redis.store
    assert backend.updated == [renamed]
    assert await repository.get_by_id("u1") == renamed


@pytest.mark.asyncio
async def test_cache_create_and_list_delegate():
    backend = MemoryRepository()
    repository = CachingUserRepository(pool_of(FakeRedis()), backend)
    await repository.create(NewUser("u1", "alice", "pic.png"))
    assert await repository.list(["u1", "u2"]) == [ALICE]


@pytest.mark.asyncio
async def test_cache_corrupt_entry():
    redis = FakeRedis()
    redis.store["user:u1"] = b"\xff"
    repository = CachingUserRepository(pool_of(redis), MemoryRepository([ALICE]))
    with pytest.raises(QueryError) as info:
        await repository.get_by_id("u1")
    assert info.value.kind is QueryErrorKind.PROTOBUF_DECODE


@pytest.mark.asyncio
async def test_cache_redis_failure():
    repository = CachingUserRepository(
        pool_of(FakeRedis(error=RedisError("down"))), MemoryRepository([ALICE])
    )
    with pytest.raises(QueryError) as info:
        await repository.get_by_id("u1")
    assert info.value.kind is QueryErrorKind.REDIS
    assert str(info.value) == "Error accessing cache: down"


@pytest.mark.asyncio
async def test_cache_pool_failure():
    pool = Pool(StaticManager(error=OSError("refused")), max_size=1)
    repository = CachingUserRepository(pool, MemoryRepository([ALICE]))
    with pytest.raises(QueryError) as info:
        await repository.update(ALICE)
    assert info.value.kind is QueryErrorKind.REDIS_POOL