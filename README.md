# userservice

A small user-management service library. It keeps users in a relational
database through SQLAlchemy 2.0. It records domain events, such as a user
being deleted, in an *outbox* table in the same transaction as the change.
A background worker later publishes the pending events and marks them as
processed.

## Modules

### `userservice.config`

`load_env(environ=None)` returns a frozen `Config`. It reads from the mapping
you pass in, or from `os.environ` when you pass nothing. The fields are:

| Field               | Variable            | Notes                        |
|---------------------|---------------------|------------------------------|
| `port`              | `PORT`              | HTTP port                    |
| `grpc_port`         | `GRPC_PORT`         | read and stored only         |
| `task_service_host` | `TASK_SERVICE_HOST` |                              |
| `task_service_port` | `TASK_SERVICE_PORT` |                              |
| `kafka_brokers`     | `KAFKA_BROKERS`     | comma-separated, as a tuple  |

A variable that is not set becomes an empty string, or an empty tuple for the
brokers. `Config.task_service_target` gives `"host:port"`.

### `userservice.users`

This module holds the user model and the services around it.

- `User` is the SQLAlchemy model, stored in the `users` table, with the columns
  `id`, `name` and `email`.
- `migrate(engine)` creates the `users` table.
- `UserRepository(session_factory)` stores users. It has these methods:
  - `get_all_users()` returns all users ordered by ID.
  - `get_user_by_id(id)` returns one user.
  - `post_user(user)` stores the user and fills in its `id`.
  - `patch_user_by_id(id, user)` copies only the non-empty `name` and `email`
    onto the stored user.
  - `delete_user_by_id(session, id)` deletes the user inside the caller's
    transaction.
  - `transaction()` is a context manager. It commits on success and rolls
    back on error.
- `UserService(repo, outbox_service, task_client)` has these methods:
  - `get_user_by_id(id)` returns a `UserWithTasks`. That value is the user plus
    a list of `Task(id, user_id, description)` taken from the task client.
  - `delete_user_by_id(id)` deletes the user and adds a `user.deleted` event
    with payload `{"user_id": id}` in one transaction. If either step fails,
    neither change is kept.
- `TaskClient` is a protocol: any object with `get_user_all_tasks(user_id)`
  that returns a sequence of `Task`.

These errors can be raised:

- A missing user raises `UserNotFoundError`, a `LookupError`, with the message
  `user with ID <id> not found`.
- Any failure of the task client is re-raised as `TaskServiceError`.

### `userservice.outbox`

- `OutboxEvent` is the model, stored in the `outbox_events` table. It has a
  UUID `id`, `event_type`, the JSON `payload`, the `processed` flag and
  `created_at`.
- `migrate(engine)` creates the `outbox_events` table.
- `OutboxRepository(session_factory)` has these methods:
  - `create_event(session, event)` stores an event.
  - `get_unprocessed_events(limit)` returns pending events, oldest first.
  - `mark_event_as_processed(event_id)` sets the `processed` flag.
- `OutboxService(repo, writer)` has these methods:
  - `add_event(session, event_type, payload)` serialises the payload as
    compact JSON with sorted keys and stores it.
  - `process_event(event)` sends the event through the writer, then marks it
    processed.
  - A payload that cannot be serialised, a failed insert or a failed write
    raises `OutboxError`.
- `EventWriter` is a protocol: any object with `write(key: bytes, value: str)`.
  The event type, encoded as bytes, is the key and the JSON payload is the
  value.
- `OutboxWorker(service)` publishes pending events.
  - `process_batch(batch_size)` publishes one batch and returns how many events
    were sent. Failures are logged and skipped.
  - `start(stop_event, interval, batch_size)` runs a batch every `interval`
    seconds until the `threading.Event` is set.

### `userservice.handler`

`UserHandler(service)` offers RPC-style operations:

- `get_all_users()` returns a list of `UserMessage`.
- `get_user(id)` returns a `GetUserResponse`, which holds a `UserMessage` and a
  list of `TaskMessage`.
- `add_user(name, email)` returns the new ID.
- `update_user(id, name, email)` returns a `UserMessage`.
- `delete_user(id)` returns `True`.

Any failure of the service is raised as `StatusError`, with
`code == StatusCode.INTERNAL` and the original message.

### `userservice.app`

`create_app(config, engine, writer, task_client)` creates both tables and
wires all the components. It returns an `App`, which has these fields:

- `config`
- `engine`
- `user_handler`
- `worker`

`App.start_worker(interval=5.0, batch_size=10)` runs the outbox worker in a
background thread. `App.close()` stops the thread and waits for it.

`Web(app)` is the HTTP side:

- `init()` binds a `ThreadingHTTPServer` to `config.port`. An empty port means
  the system picks a free one.
- `run()` serves and starts the outbox worker. It blocks until interrupted with
  Ctrl+C. It then calls `shutdown()` and closes the app.
- `shutdown()` stops the server and releases the socket.

## Usage

```python
import os

from sqlalchemy import create_engine

from userservice.app import Web, create_app
from userservice.config import load_env


class PrintWriter:
    def write(self, key, value):
        print(key.decode(), value)


class NoTasks:
    def get_user_all_tasks(self, user_id):
        return []


app = create_app(load_env(os.environ), create_engine("sqlite:///users.db"),
                 PrintWriter(), NoTasks())

handler = app.user_handler
user_id = handler.add_user("Alice", "alice@example.com")
print(handler.get_user(user_id))
handler.delete_user(user_id)   # queues a "user.deleted" event

web = Web(app)
web.init()
web.run()                      # serves and publishes events until Ctrl+C
```

## What it does not do

- The HTTP server has no routes. It answers every request with
  `404 page not found`. User operations are reached only by calling
  `UserHandler` in-process. Nothing listens on `grpc_port`.
- No message-broker or task-service client is included. You supply an
  `EventWriter` and a `TaskClient`. `kafka_brokers` and `task_service_target`
  are only read from the environment.
- There is no command-line entry point.

## Tests

The tests use pytest, which comes with the `test` extra.