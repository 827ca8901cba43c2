"""Users: storage model, repository and service."""

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Protocol

from sqlalchemy import BigInteger, Integer, String, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from userservice.outbox import OutboxService

USER_DELETED = "user.deleted"


class _Base(DeclarativeBase):
    pass


class User(_Base):
    """A registered user."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    name: Mapped[str] = mapped_column(String, default="")
    email: Mapped[str] = mapped_column(String, default="")


class UserNotFoundError(LookupError):
    """Raised when no user has the requested ID."""

    def __init__(self, user_id: int) -> None:
        super().__init__(f"user with ID {user_id} not found")
        self.user_id = user_id


class TaskServiceError(Exception):
    """Raised when the tasks of a user cannot be fetched."""


@dataclass(frozen=True)
class Task:
    """A task owned by a user, as reported by the task service."""

    id: int
    user_id: int
    description: str


@dataclass
class UserWithTasks:
    """A user together with the user's tasks."""

    user: User
    tasks: list[Task] = field(default_factory=list)


class TaskClient(Protocol):
    """Source of the tasks that belong to a user."""

    def get_user_all_tasks(self, user_id: int) -> Sequence[Task]:
        """Return every task of the user with ``user_id``."""


def migrate(engine: Engine) -> None:
    """Create the users table if it does not exist."""
    _Base.metadata.create_all(engine)


class UserRepository:
    """Storage of users."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Yield a session whose work is committed on success and rolled back on error."""
        with self._session_factory.begin() as session:
            yield session

    def get_all_users(self) -> list[User]:
        with self._session_factory() as session:
            return list(session.scalars(select(User).order_by(User.id)).all())

    def get_user_by_id(self, user_id: int) -> User:
        with self._session_factory() as session:
            user = session.get(User, user_id)
            if user is None:
                raise UserNotFoundError(user_id)
            return user

    def post_user(self, user: User) -> User:
        """Store ``user``; its ``id`` is filled in."""
        with self._session_factory() as session:
            session.add(user)
            session.commit()
            session.refresh(user)
            return user

    def patch_user_by_id(self, user_id: int, user: User) -> User:
        """Overwrite the non-empty fields of ``user`` on the stored user and return it."""
        with self._session_factory() as session:
            stored = session.get(User, user_id)
            if stored is None:
                raise UserNotFoundError(user_id)
            if user.name:
                stored.name = user.name
            if user.email:
                stored.email = user.email
            session.commit()
            session.refresh(stored)
            return stored

    def delete_user_by_id(self, session: Session, user_id: int) -> None:
        """Delete the user inside the caller's transaction."""
        user = session.get(User, user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        session.delete(user)
        session.flush()


class UserService:
    """Business operations on users."""

    def __init__(
        self, repo: UserRepository, outbox_service: OutboxService, task_client: TaskClient
    ) -> None:
        self._repo = repo
        self._outbox = outbox_service
        self._tasks = task_client

    def get_all_users(self) -> list[User]:
        return self._repo.get_all_users()

    def get_user_by_id(self, user_id: int) -> UserWithTasks:
        """Return the user with the tasks the task service reports for it."""
        user = self._repo.get_user_by_id(user_id)
        try:
            tasks = self._tasks.get_user_all_tasks(user_id)
        except Exception as exc:
            raise TaskServiceError(f"failed to fetch users tasks: {exc}") from exc
        return UserWithTasks(user=user, tasks=list(tasks))

    def post_user(self, user: User) -> User:
        return self._repo.post_user(user)

    def patch_user_by_id(self, user_id: int, user: User) -> User:
        return self._repo.patch_user_by_id(user_id, user)

    def delete_user_by_id(self, user_id: int) -> None:
        """Delete the user and record a deletion event in the same transaction."""
        with self._repo.transaction() as session:
            self._repo.delete_user_by_id(session, user_id)
            self._outbox.add_event(session, USER_DELETED, {"user_id": user_id})