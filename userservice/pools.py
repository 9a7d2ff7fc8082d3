"""Connection pools for PostgreSQL, MongoDB and Redis."""

from __future__ import annotations

import asyncio
import os
from collections import deque
from contextlib import asynccontextmanager
from functools import cache
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Deque,
    Dict,
    Generic,
    Mapping,
    Optional,
    Protocol,
    TypeVar,
)

from pymongo import AsyncMongoClient
from pymongo.errors import PyMongoError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from .configuration import DATABASE_NAME_VARIABLE, ConfigurationError, configured

REDIS_URL_VARIABLE = "REDIS_BASE_URL"
DEFAULT_REDIS_URL = "redis://redis-cache:6379"

T = TypeVar("T")

PostgresConnector = Callable[[str], Awaitable[Any]]

_postgres_drivers: Dict[str, PostgresConnector] = {}


class RecycleError(Exception):
    """A pooled connection failed its health check and must be discarded."""


class PoolError(Exception):
    """A new connection could not be created for the pool."""

    def __init__(self, cause: BaseException) -> None:
        super().__init__(cause)
        self.cause = cause
        self.__cause__ = cause

    def __str__(self) -> str:
        return str(self.cause)


class Manager(Protocol[T]):
    async def create(self) -> T: ...

    async def recycle(self, conn: T) -> None: ...


class Pool(Generic[T]):
    """A bounded pool that checks idle connections before handing them out."""

    def __init__(self, manager: Manager[T], max_size: Optional[int] = None) -> None:
        self.manager = manager
        self.max_size = max_size or (os.cpu_count() or 1) * 4
        self._idle: Deque[T] = deque()
        self._slots = asyncio.Semaphore(self.max_size)

    async def _checkout(self) -> T:
        while self._idle:
            conn = self._idle.popleft()
            try:
                await self.manager.recycle(conn)
            except RecycleError:
                continue
            return conn
        try:
            return await self.manager.create()
        except Exception as exc:
            raise PoolError(exc) from exc

    @asynccontextmanager
    async def get(self) -> AsyncIterator[T]:
        """Borrow a connection; it goes back to the pool when the block ends."""
        async with self._slots:
            conn = await self._checkout()
            try:
                yield conn
            finally:
                self._idle.append(conn)


class PostgresConnectionManager:
    """Opens PostgreSQL connections through a registered driver."""

    def __init__(self, connection_string: str, connect: PostgresConnector) -> None:
        self.connection_string = connection_string
        self.connect = connect

    async def create(self) -> Any:
        return await self.connect(self.connection_string)

    async def recycle(self, conn: Any) -> None:
        try:
            await conn.execute("SELECT 1")
        except Exception as exc:
            raise RecycleError(f"Failed to ping postgres: {exc}") from exc


class MongoConnectionManager:
    """Hands out handles to one MongoDB database."""

    def __init__(self, client: Any, database: str) -> None:
        self.client = client
        self.database = database

    async def create(self) -> Any:
        return self.client[self.database]

    async def recycle(self, conn: Any) -> None:
        try:
            await conn.command("ping")
        except PyMongoError as exc:
            raise RecycleError("Failed to ping mongodb") from exc


class RedisConnectionManager:
    """Opens Redis clients for one server URL."""

    def __init__(self, url: str) -> None:
        self.url = url

    async def create(self) -> Redis:
        return Redis.from_url(self.url)

    async def recycle(self, conn: Any) -> None:
        try:
            await conn.ping()
        except RedisError as exc:
            raise RecycleError("Failed to ping redis") from exc


def redis_url(environ: Mapping[str, str]) -> str:
    """Return the Redis server URL without trailing slashes."""
    return environ.get(REDIS_URL_VARIABLE, DEFAULT_REDIS_URL).rstrip("/")


def use_postgres_driver(connect: PostgresConnector) -> None:
    """Register the coroutine function that opens PostgreSQL connections."""
    _postgres_drivers["postgres"] = connect


@cache
def postgres_pool() -> Pool[Any]:
    """Return the process-wide PostgreSQL pool."""
    connect = _postgres_drivers.get("postgres")
    if connect is None:
        raise RuntimeError("no PostgreSQL driver has been registered")
    configuration = configured()
    return Pool(PostgresConnectionManager(configuration.database_url, connect))


@cache
def mongo_pool() -> Pool[Any]:
    """Return the process-wide MongoDB pool."""
    configuration = configured()
    if configuration.database_name is None:
        raise ConfigurationError(
            f"environment variable {DATABASE_NAME_VARIABLE} is not set"
        )
    client = AsyncMongoClient(configuration.database_url)
    return Pool(MongoConnectionManager(client, configuration.database_name))


@cache
def redis_pool() -> Pool[Redis]:
    """Return the process-wide Redis pool."""
    return Pool(RedisConnectionManager(redis_url(os.environ)))