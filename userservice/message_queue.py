"""In-process queue that hands user events to the search and metrics services."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass
from typing import Optional, Protocol, TypeVar, Union

from .errors import HandleError, HandleErrorKind

logger = logging.getLogger(__name__)

C = TypeVar("C")


class SearchClient(Protocol):
    """The part of the search service client that the handlers use."""

    async def create_user(self, user_id: str, username: str) -> None: ...


class MetricsClient(Protocol):
    """The part of the metrics service client that the handlers use."""

    async def view_user(self, user_id: str) -> None: ...


def _require(client: Optional[C], kind: HandleErrorKind, name: str) -> C:
    if client is None:
        raise HandleError(kind, LookupError(f"no {name} client is configured"))
    return client


@dataclass(frozen=True)
class UserCreated:
    """A user was created and should become searchable."""

    id: str
    username: str

    async def handle(
        self,
        search_client: Optional[SearchClient],
        metrics_client: Optional[MetricsClient],
    ) -> None:
        client = _require(search_client, HandleErrorKind.SEARCH_CLIENT, "search")
        try:
            await client.create_user(user_id=self.id, username=self.username)
        except Exception as exc:
            raise HandleError(HandleErrorKind.SEARCH_CLIENT, exc) from exc


@dataclass(frozen=True)
class UserViewed:
    """A user's profile was viewed."""

    id: str

    async def handle(
        self,
        search_client: Optional[SearchClient],
        metrics_client: Optional[MetricsClient],
    ) -> None:
        client = _require(metrics_client, HandleErrorKind.METRICS_CLIENT, "metrics")
        try:
            await client.view_user(user_id=self.id)
        except Exception as exc:
            raise HandleError(HandleErrorKind.METRICS_CLIENT, exc) from exc


Message = Union[UserCreated, UserViewed]


class MessageQueueProducer:
    """Puts messages on an unbounded queue; sending never waits."""

    def __init__(self, queue: "asyncio.Queue[Message]") -> None:
        self._queue = queue

    async def send(self, message: Message) -> None:
        self._queue.put_nowait(message)


class MessageQueue:
    """An unbounded queue with one background consumer task."""

    def __init__(
        self,
        search_client: Optional[SearchClient] = None,
        metrics_client: Optional[MetricsClient] = None,
    ) -> None:
        self.search_client = search_client
        self.metrics_client = metrics_client
        self._queue: "asyncio.Queue[Message]" = asyncio.Queue()
        self._task: Optional["asyncio.Task[None]"] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def producer(self) -> MessageQueueProducer:
        return MessageQueueProducer(self._queue)

    def start(self) -> None:
        """Start the consumer on the running event loop."""
        if not self.running:
            self._task = asyncio.get_running_loop().create_task(self._consume())

    async def stop(self) -> None:
        """Cancel the consumer and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    async def join(self) -> None:
        """Wait until every queued message has been handled."""
        await self._queue.join()

    async def _consume(self) -> None:
        while True:
            message = await self._queue.get()
            try:
                await message.handle(self.search_client, self.metrics_client)
            except HandleError as exc:
                logger.error("%s", exc)
            finally:
                self._queue.task_done()