"""Errors raised by the repositories and the message handlers."""

from __future__ import annotations

from enum import Enum


class QueryErrorKind(Enum):
    """Where a repository operation failed; the value prefixes the message."""

    SQL = "Error running query"
    POSTGRES_POOL = "Error obtaining connection from postgres pool"
    REDIS_POOL = "Error obtaining connection from redis pool"
    PROTOBUF_DECODE = "Error decoding protobuf"
    REDIS = "Error accessing cache"
    MONGO = "Error accessing mongo"
    BSON = "Error decoding bson"
    MONGO_POOL = "Error obtaining connection from mongo pool"


class QueryError(Exception):
    """A repository operation failed."""

    def __init__(self, kind: QueryErrorKind, cause: BaseException) -> None:
        super().__init__(kind, cause)
        self.kind = kind
        self.cause = cause
        self.__cause__ = cause

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.cause}"


class HandleErrorKind(Enum):
    """Which dependency failed while a queued message was handled."""

    QUERY = "QueryError"
    SEARCH_CLIENT = "SearchClientError"
    METRICS_CLIENT = "MetricsClientError"


class HandleError(Exception):
    """Handling a queued message failed."""

    def __init__(self, kind: HandleErrorKind, cause: BaseException) -> None:
        super().__init__(kind, cause)
        self.kind = kind
        self.cause = cause
        self.__cause__ = cause

    def __str__(self) -> str:
        return f"Error handling message: {self.kind.value}({self.cause})"