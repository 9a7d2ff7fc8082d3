"""User storage backends: PostgreSQL, MongoDB and a Redis read-through cache."""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, List, Mapping, Optional, TypeVar

from pymongo.errors import PyMongoError
from redis.exceptions import RedisError

from .errors import QueryError, QueryErrorKind
from .models import NewUser, User
from .pools import Pool, PoolError, mongo_pool
from .protobuf import DecodeError

R = TypeVar("R")

USERS_COLLECTION = "users"

_INSERT_QUERY = """
    INSERT INTO users (id, username, password_hash, profile_picture)
    VALUES ($1, $2, '', $3)
    RETURNING id
"""

_UPDATE_QUERY = """
    UPDATE users
    SET username = $2, profile_picture = $3
    WHERE id = $1
"""

_LIST_QUERY = """
    SELECT u.id, u.username, u.profile_picture
    FROM users u
    WHERE u.id = ANY($1)
"""

_BY_ID_QUERY = """
    SELECT u.id, u.username, u.profile_picture
    FROM users u
    WHERE u.id = $1
"""

_BY_USERNAME_QUERY = """
    SELECT u.id, u.username, u.profile_picture
    FROM users u
    WHERE u.username = $1
"""


class UserRepository(ABC):
    """Storage of user records."""

    @abstractmethod
    async def create(self, user: NewUser) -> None: ...

    @abstractmethod
    async def update(self, user: User) -> None: ...

    @abstractmethod
    async def list(self, user_ids: Iterable[str]) -> List[User]: ...

    @abstractmethod
    async def get_by_id(self, user_id: str) -> Optional[User]: ...

    @abstractmethod
    async def get_by_username(self, username: str) -> Optional[User]: ...


@asynccontextmanager
async def _checkout(pool: Pool[Any], kind: QueryErrorKind) -> AsyncIterator[Any]:
    try:
        async with pool.get() as conn:
            yield conn
    except PoolError as exc:
        raise QueryError(kind, exc) from exc


async def _guard(awaitable: Awaitable[R], kind: QueryErrorKind, errors: Any) -> R:
    try:
        return await awaitable
    except errors as exc:
        raise QueryError(kind, exc) from exc


def _user_from_row(row: Mapping[str, Any]) -> User:
    return User(row["id"], row["username"], row["profile_picture"])


class PostgresUserRepository(UserRepository):
    """Users stored in a PostgreSQL ``users`` table."""

    def __init__(self, pool: Pool[Any]) -> None:
        self.pool = pool

    def _connection(self):
        return _checkout(self.pool, QueryErrorKind.POSTGRES_POOL)

    async def _sql(self, call: Callable[[], Awaitable[R]]) -> R:
        try:
            return await call()
        except Exception as exc:
            raise QueryError(QueryErrorKind.SQL, exc) from exc

    async def create(self, user: NewUser) -> None:
        async with self._connection() as conn:
            await self._sql(lambda: conn.fetchrow(
                _INSERT_QUERY, user.user_id, user.username, user.profile_picture
            ))

    async def update(self, user: User) -> None:
        async with self._connection() as conn:
            await self._sql(lambda: conn.execute(
                _UPDATE_QUERY, user.user_id, user.username, user.profile_picture
            ))

    async def list(self, user_ids: Iterable[str]) -> List[User]:
        ids = [*user_ids]
        async with self._connection() as conn:
            rows = await self._sql(lambda: conn.fetch(_LIST_QUERY, ids))
        return [_user_from_row(row) for row in rows]

    async def _one(self, query: str, value: str) -> Optional[User]:
        async with self._connection() as conn:
            row = await self._sql(lambda: conn.fetchrow(query, value))
        return None if row is None else _user_from_row(row)

    async def get_by_id(self, user_id: str) -> Optional[User]:
        return await self._one(_BY_ID_QUERY, user_id)

    async def get_by_username(self, username: str) -> Optional[User]:
        return await self._one(_BY_USERNAME_QUERY, username)


def _user_from_document(document: Mapping[str, Any]) -> User:
    try:
        user_id = document["user_id"]
        username = document["username"]
        profile_picture = document.get("profile_picture")
        if not isinstance(user_id, str) or not isinstance(username, str):
            raise TypeError("user_id and username must be strings")
        if profile_picture is not None and not isinstance(profile_picture, str):
            raise TypeError("profile_picture must be a string")
    except (KeyError, TypeError) as exc:
        raise QueryError(QueryErrorKind.BSON, exc) from exc
    return User(user_id, username, profile_picture)


class MongoUserRepository(UserRepository):
    """Users stored in a MongoDB ``users`` collection."""

    def __init__(self, pool: Pool[Any]) -> None:
        self.pool = pool

    @asynccontextmanager
    async def _collection(self) -> AsyncIterator[Any]:
        async with _checkout(self.pool, QueryErrorKind.MONGO_POOL) as database:
            try:
                yield database[USERS_COLLECTION]
            except PyMongoError as exc:
                raise QueryError(QueryErrorKind.MONGO, exc) from exc

    async def create(self, user: NewUser) -> None:
        async with self._collection() as users:
            await users.insert_one({"user_id": user.user_id, "username": user.username})

    async def update(self, user: User) -> None:
        async with self._collection() as users:
            await users.update_one(
                {"user_id": user.user_id},
                {"$set": {"username": user.username, "profile_picture": user.profile_picture}},
            )

    async def list(self, user_ids: Iterable[str]) -> List[User]:
        async with self._collection() as users:
            cursor = users.find({"user_id": {"$in": [*user_ids]}})
            documents = [document async for document in cursor]
        return [_user_from_document(document) for document in documents]

    async def _find_one(self, query: Mapping[str, Any]) -> Optional[User]:
        async with self._collection() as users:
            document = await users.find_one(query)
        return None if document is None else _user_from_document(document)

    async def get_by_id(self, user_id: str) -> Optional[User]:
        return await self._find_one({"user_id": user_id})

    async def get_by_username(self, username: str) -> Optional[User]:
        return await self._find_one({"username": username})


class CachingUserRepository(UserRepository):
    """Read-through Redis cache in front of another repository."""

    def __init__(self, cache_pool: Pool[Any], repository: UserRepository) -> None:
        self.cache_pool = cache_pool
        self.repository = repository

    def _connection(self):
        return _checkout(self.cache_pool, QueryErrorKind.REDIS_POOL)

    @staticmethod
    async def _redis(awaitable: Awaitable[R]) -> R:
        return await _guard(awaitable, QueryErrorKind.REDIS, RedisError)

    async def create(self, user: NewUser) -> None:
        await self.repository.create(user)

    async def update(self, user: User) -> None:
        async with self._connection() as conn:
            await self._redis(conn.delete(f"user:{user.user_id}"))
            await self.repository.update(user)

    async def list(self, user_ids: Iterable[str]) -> List[User]:
        return await self.repository.list(user_ids)

    async def _cached(
        self, key: str, load: Callable[[], Awaitable[Optional[User]]]
    ) -> Optional[User]:
        async with self._connection() as conn:
            cached = await self._redis(conn.get(key))
            if cached is not None:
                try:
                    return User.decode(cached)
                except DecodeError as exc:
                    raise QueryError(QueryErrorKind.PROTOBUF_DECODE, exc) from exc
            user = await load()
            if user is not None:
                await self._redis(conn.set(key, user.encode()))
            return user

    async def get_by_id(self, user_id: str) -> Optional[User]:
        return await self._cached(
            f"user:{user_id}", lambda: self.repository.get_by_id(user_id)
        )

    async def get_by_username(self, username: str) -> Optional[User]:
        return await self._cached(
            f"user:{username}", lambda: self.repository.get_by_username(username)
        )


def default_repository() -> UserRepository:
    """Return the repository the service uses by default: MongoDB, uncached."""
    return MongoUserRepository(mongo_pool())