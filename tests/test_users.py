import json

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from userservice import outbox, users
from userservice.outbox import OutboxRepository, OutboxService
from userservice.users import (
    Task,
    TaskServiceError,
    User,
    UserNotFoundError,
    UserRepository,
    UserService,
)


class FakeWriter:
    def __init__(self):
        self.messages = []

    def write(self, key, value):
        self.messages.append((key, value))


class FakeTaskClient:
    def __init__(self, tasks=None, error=None):
        self.tasks = tasks or {}
        self.error = error

    def get_user_all_tasks(self, user_id):
        if self.error is not None:
            raise self.error
        return self.tasks.get(user_id, [])


@pytest.fixture
def factory():
    engine = create_engine("sqlite://")
    outbox.migrate(engine)
    users.migrate(engine)
    yield sessionmaker(engine)
    engine.dispose()


@pytest.fixture
def repo(factory):
    return UserRepository(factory)


def make_service(factory, task_client=None):
    outbox_service = OutboxService(OutboxRepository(factory), FakeWriter())
    return UserService(UserRepository(factory), outbox_service, task_client or FakeTaskClient())


def test_post_and_get_user(repo):
    created = repo.post_user(User(name="Ann", email="ann@example.com"))
    fetched = repo.get_user_by_id(created.id)
    assert (fetched.id, fetched.name, fetched.email) == (created.id, "Ann", "ann@example.com")


def test_get_all_users(repo):
    assert repo.get_all_users() == []
    repo.post_user(User(name="a", email="a@example.com"))
    repo.post_user(User(name="b", email="b@example.com"))
    assert [u.name for u in repo.get_all_users()] == ["a", "b"]


def test_missing_user(repo):
    with pytest.raises(UserNotFoundError, match="user with ID 999 not found"):
        repo.get_user_by_id(999)


def test_patch_updates_only_given_fields(repo):
    created = repo.post_user(User(name="Ann", email="ann@example.com"))
    patched = repo.patch_user_by_id(created.id, User(name="Anna", email=""))
    assert (patched.name, patched.email) == ("Anna", "ann@example.com")
    assert repo.get_user_by_id(created.id).name == "Anna"


def test_patch_missing_user(repo):
    with pytest.raises(UserNotFoundError):
        repo.patch_user_by_id(5, User(name="x"))


def test_delete_records_outbox_event(factory):
    service = make_service(factory)
    created = service.post_user(User(name="Ann", email="ann@example.com"))
    service.delete_user_by_id(created.id)

    assert service.get_all_users() == []
    events = OutboxRepository(factory).get_unprocessed_events(10)
    assert [e.event_type for e in events] == ["user.deleted"]
    assert json.loads(events[0].payload) == {"user_id": created.id}


def test_delete_missing_user_rolls_back(factory):
    service = make_service(factory)
    with pytest.raises(UserNotFoundError):
        service.delete_user_by_id(42)
    assert OutboxRepository(factory).get_unprocessed_events(10) == []


def test_get_user_with_tasks(factory):
    repo = UserRepository(factory)
    created = repo.post_user(User(name="Ann", email="ann@example.com"))
    tasks = [Task(id=1, user_id=created.id, description="write")]
    service = make_service(factory, FakeTaskClient(tasks={created.id: tasks}))

    result = service.get_user_by_id(created.id)
    assert result.user.name == "Ann"
    assert result.tasks == tasks


def test_task_service_failure(factory):
    repo = UserRepository(factory)
    created = repo.post_user(User(name="Ann", email="ann@example.com"))
    service = make_service(factory, FakeTaskClient(error=RuntimeError("down")))
    with pytest.raises(TaskServiceError, match="failed to fetch users tasks: down"):
        service.get_user_by_id(created.id)


def test_service_missing_user_before_tasks(factory):
    service = make_service(factory, FakeTaskClient(error=RuntimeError("down")))
    with pytest.raises(UserNotFoundError):
        service.get_user_by_id(3)