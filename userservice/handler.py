"""Request handlers of the user service, reporting failures as status errors."""

import enum
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError

from userservice.outbox import OutboxError
from userservice.users import TaskServiceError, User, UserNotFoundError, UserService

_FAILURES = (UserNotFoundError, TaskServiceError, OutboxError, SQLAlchemyError)


class StatusCode(enum.IntEnum):
    """Status codes reported to callers."""

    OK = 0
    CANCELLED = 1
    UNKNOWN = 2
    INVALID_ARGUMENT = 3
    NOT_FOUND = 5
    INTERNAL = 13
    UNAVAILABLE = 14


class StatusError(Exception):
    """A failed request with its status code."""

    def __init__(self, code: StatusCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass(frozen=True)
class UserMessage:
    id: int
    name: str
    email: str


@dataclass(frozen=True)
class TaskMessage:
    id: int
    user_id: int
    description: str


@dataclass(frozen=True)
class GetUserResponse:
    user: UserMessage
    tasks: list[TaskMessage] = field(default_factory=list)


def _internal(exc: Exception) -> StatusError:
    return StatusError(StatusCode.INTERNAL, str(exc))


class UserHandler:
    """Serves user requests on top of a :class:`UserService`."""

    def __init__(self, service: UserService) -> None:
        self._service = service

    def get_all_users(self) -> list[UserMessage]:
        try:
            found = self._service.get_all_users()
        except _FAILURES as exc:
            raise _internal(exc) from exc
        return [UserMessage(id=u.id, name=u.name, email=u.email) for u in found]

    def get_user(self, user_id: int) -> GetUserResponse:
        try:
            found = self._service.get_user_by_id(user_id)
        except _FAILURES as exc:
            raise _internal(exc) from exc
        return GetUserResponse(
            user=UserMessage(id=user_id, name=found.user.name, email=found.user.email),
            tasks=[
                TaskMessage(id=t.id, user_id=t.user_id, description=t.description)
                for t in found.tasks
            ],
        )

    def add_user(self, name: str, email: str) -> int:
        """Create a user and return its ID."""
        try:
            created = self._service.post_user(User(name=name, email=email))
        except _FAILURES as exc:
            raise _internal(exc) from exc
        return created.id

    def delete_user(self, user_id: int) -> bool:
        try:
            self._service.delete_user_by_id(user_id)
        except _FAILURES as exc:
            raise _internal(exc) from exc
        return True

    def update_user(self, user_id: int, name: str, email: str) -> UserMessage:
        try:
            updated = self._service.patch_user_by_id(user_id, User(name=name, email=email))
        except _FAILURES as exc:
            raise _internal(exc) from exc
        return UserMessage(id=updated.id, name=updated.name, email=updated.email)