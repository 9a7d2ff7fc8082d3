"""HTTP routes of the user service."""

from __future__ import annotations

import logging
import random
import secrets
import string
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Route

from .errors import QueryError
from .message_queue import MessageQueue, MessageQueueProducer, UserCreated
from .models import (
    USERS_ID_LENGTH,
    CreateUserRequest,
    CreateUserResponse,
    GetUserResponse,
    ListUsersResponse,
    MappedUser,
    MapUsersResponse,
    NewUser,
    UpdateUserRequest,
    User,
    UserResponse,
)
from .protobuf import DecodeError
from .repository import UserRepository, default_repository

logger = logging.getLogger(__name__)

PROTOBUF_MEDIA_TYPE = "application/octet-stream"
ID_ALPHABET = string.ascii_letters + string.digits


class _StatusError(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(status_code)
        self.status_code = status_code


def generate_user_id(rng: Optional[random.Random] = None) -> str:
    """Return a random alphanumeric user id."""
    chooser = rng if rng is not None else secrets.SystemRandom()
    return "".join(chooser.choices(ID_ALPHABET, k=USERS_ID_LENGTH))


def _protobuf(message: Any) -> Response:
    return Response(message.encode(), media_type=PROTOBUF_MEDIA_TYPE)


def _repository(request: Request) -> UserRepository:
    state = request.app.state
    if state.repository is None:
        state.repository = default_repository()
    return state.repository


def _producer(request: Request) -> MessageQueueProducer:
    return request.app.state.producer


def _found(user: Optional[User]) -> User:
    if user is None:
        raise _StatusError(404)
    return user


async def health(request: Request) -> Response:
    return Response(status_code=200)


async def list_users(request: Request) -> Response:
    users = await _repository(request).list(request.query_params.getlist("uids"))
    return _protobuf(ListUsersResponse([
        UserResponse(user.user_id, user.username, user.profile_picture) for user in users
    ]))


async def map_users(request: Request) -> Response:
    users = await _repository(request).list(request.query_params.getlist("uids"))
    return _protobuf(MapUsersResponse({
        user.user_id: MappedUser(user.username, user.profile_picture) for user in users
    }))


async def create_user(request: Request) -> Response:
    repository = _repository(request)
    producer = _producer(request)
    body = CreateUserRequest.decode(await request.body())

    if await repository.get_by_username(body.username) is not None:
        raise _StatusError(409)

    user_id = generate_user_id()
    await repository.create(NewUser(user_id, body.username, body.profile_picture))
    await producer.send(UserCreated(id=user_id, username=body.username))
    return _protobuf(CreateUserResponse(user_id))


def _user_response(user: User) -> Response:
    return _protobuf(GetUserResponse(user.user_id, user.username, user.profile_picture))


async def get_by_id(request: Request) -> Response:
    user = await _repository(request).get_by_id(request.path_params["id"])
    return _user_response(_found(user))


async def get_by_username(request: Request) -> Response:
    user = await _repository(request).get_by_username(request.path_params["username"])
    return _user_response(_found(user))


async def update_user(request: Request) -> Response:
    repository = _repository(request)
    user_id = request.path_params["id"]
    body = UpdateUserRequest.decode(await request.body())

    user = _found(await repository.get_by_id(user_id))
    user.username = body.username
    user.profile_picture = body.profile_picture
    await repository.update(user)
    return Response(status_code=204)


async def _status_error(request: Request, exc: Exception) -> Response:
    assert isinstance(exc, _StatusError)
    return Response(status_code=exc.status_code)


async def _query_error(request: Request, exc: Exception) -> Response:
    logger.error("%s", exc)
    return Response(status_code=500)


async def _decode_error(request: Request, exc: Exception) -> Response:
    return Response(status_code=422)


def create_app(
    repository: Optional[UserRepository] = None,
    producer: Optional[MessageQueueProducer] = None,
) -> Starlette:
    """Build the application; missing dependencies fall back to the defaults."""
    queue: Optional[MessageQueue] = None
    if producer is None:
        queue = MessageQueue()
        producer = queue.producer()

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        if queue is not None:
            queue.start()
        try:
            yield
        finally:
            if queue is not None:
                await queue.stop()

    routes = [
        Route("/health", health, methods=["GET"]),
        Route("/users", list_users, methods=["GET"]),
        Route("/users", create_user, methods=["POST"]),
        Route("/users/map", map_users, methods=["GET"]),
        Route("/users/@{username}", get_by_username, methods=["GET"]),
        Route("/users/{id}", get_by_id, methods=["GET"]),
        Route("/users/{id}", update_user, methods=["PUT"]),
    ]
    app = Starlette(
        routes=routes,
        exception_handlers={
            _StatusError: _status_error,
            QueryError: _query_error,
            DecodeError: _decode_error,
        },
        lifespan=lifespan,
    )
    app.state.repository = repository
    app.state.producer = producer
    return app