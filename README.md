# userservice

An HTTP service that keeps user accounts (an id, a username and an optional
profile picture) and serves them as protobuf messages. It is a Starlette
application run by uvicorn.

By default users are stored in MongoDB. `userservice.repository` also has a
PostgreSQL repository and a Redis read-through cache that can wrap either one.
Newly created users are put on an in-process message queue
(`userservice.message_queue`) whose consumer hands them to a search client.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Running

```
userservice
```

The command takes no options besides `--help`. It binds to `0.0.0.0` on the
port given by `PORT` (default `80`); a `PORT` that is not a number from 0 to
65535 is rejected with a `ValueError`.

### Configuration

| Variable              | Meaning                                                      | Default                    |
|-----------------------|--------------------------------------------------------------|----------------------------|
| `USERS_DATABASE_URL`  | Connection string of the user database (required)            | none                       |
| `USERS_DATABASE_NAME` | MongoDB database name (required when MongoDB is used)        | none                       |
| `REDIS_BASE_URL`      | Redis server for the caching repository; trailing `/` removed | `redis://redis-cache:6379` |
| `PORT`                | Port to listen on                                            | `80`                       |
| `LOG_LEVEL`           | Logging level of the command                                 | `ERROR`                    |

The database settings are read on first use by `configuration.configured()`;
a missing `USERS_DATABASE_URL` raises `ConfigurationError`. The MongoDB pool
is created on the first request that needs the repository.

## Endpoints

Request and response bodies are protobuf-encoded; responses are sent with
`Content-Type: application/octet-stream`.

| Method | Path                   | Description                                                          |
|--------|------------------------|----------------------------------------------------------------------|
| GET    | `/health`              | Returns `200`.                                                       |
| GET    | `/users?uids=a&uids=b` | Lists the users with the given ids (`ListUsersResponse`).            |
| GET    | `/users/map?uids=a`    | The same users keyed by id (`MapUsersResponse`).                     |
| POST   | `/users`               | Creates a user from a `CreateUserRequest`; `409` if the username is taken. Returns a `CreateUserResponse` with a new random 16-character alphanumeric id. |
| GET    | `/users/{id}`          | One user by id (`GetUserResponse`); `404` if absent.                 |
| GET    | `/users/@{username}`   | One user by username (`GetUserResponse`); `404` if absent.           |
| PUT    | `/users/{id}`          | Replaces username and profile picture from an `UpdateUserRequest`; `204` on success, `404` if absent. |

A body that is not a valid encoding of the expected message gets `422`.
Storage failures (`QueryError`) are logged and answered with `500`.

### Message layouts

```
CreateUserRequest  { string username = 1; optional string profile_picture = 2; }
CreateUserResponse { string id = 1; }
UpdateUserRequest  { string username = 1; optional string profile_picture = 2; }
GetUserResponse    { string id = 1; string username = 2; optional string profile_picture = 3; }
ListUsersResponse  { repeated UserResponse users = 1; }
UserResponse       { string id = 1; string username = 2; optional string profile_picture = 3; }
MapUsersResponse   { map<string, MappedUser> users = 1; }
MappedUser         { string username = 1; optional string profile_picture = 2; }
```

These are implemented as dataclasses in `userservice.models` with `encode()`
and `decode()` methods, on top of the wire-format helpers in
`userservice.protobuf`.

## Embedding

`create_app(repository=None, producer=None)` builds the application. Without a
repository it uses `default_repository()` (MongoDB, uncached). Without a
producer it makes its own `MessageQueue` and starts and stops its consumer
with the application's lifespan.

To supply your own storage and event clients:

```python
from userservice.app import create_app
from userservice.message_queue import MessageQueue
from userservice.pools import redis_pool
from userservice.repository import CachingUserRepository, default_repository

queue = MessageQueue(search_client=my_search_client, metrics_client=my_metrics_client)
repository = CachingUserRepository(redis_pool(), default_repository())
app = create_app(repository, queue.producer())
```

When you pass a producer, running its queue is up to you: call
`queue.start()` inside the running event loop, `await queue.join()` to wait
for queued messages, and `await queue.stop()` on shutdown.

Any `UserRepository` subclass (`create`, `update`, `list`, `get_by_id`,
`get_by_username`) can stand in for the repository. `CachingUserRepository`
caches single-user lookups under `user:<id>` and `user:<username>`, and clears
`user:<id>` on update.

A search client is any object with `async create_user(user_id, username)`; a
metrics client any object with `async view_user(user_id)`.

## What it does not do

- It ships no search or metrics client. The queue the application creates on
  its own has none, so each `UserCreated` event is logged as a `HandleError`
  and dropped. No route sends `UserViewed`.
- It ships no PostgreSQL driver. `PostgresUserRepository` needs a coroutine
  function that opens a connection (with `fetch`, `fetchrow` and `execute`),
  registered with `pools.use_postgres_driver(connect)` before
  `pools.postgres_pool()` is called; otherwise that call raises
  `RuntimeError`.
- It creates no database tables, collections or indexes.