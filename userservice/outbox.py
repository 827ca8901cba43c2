"""Transactional outbox: events stored with a change and published later."""

import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Protocol

from sqlalchemy import Boolean, DateTime, String, Text, Uuid, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

logger = logging.getLogger(__name__)

TOPIC = "users.events"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _Base(DeclarativeBase):
    pass


class OutboxEvent(_Base):
    """An event waiting to be published."""

    __tablename__ = "outbox_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    event_type: Mapped[str] = mapped_column(String, default="")
    payload: Mapped[str] = mapped_column(Text, default="")
    processed: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)


class OutboxError(Exception):
    """Raised when an event cannot be stored or published."""


class EventWriter(Protocol):
    """Destination that outbox events are published to."""

    def write(self, key: bytes, value: str) -> None:
        """Publish one message with the given key."""


def migrate(engine: Engine) -> None:
    """Create the outbox table if it does not exist."""
    _Base.metadata.create_all(engine)


class OutboxRepository:
    """Storage of outbox events."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def create_event(self, session: Session, event: OutboxEvent) -> None:
        """Add ``event`` inside the caller's transaction."""
        session.add(event)
        session.flush()

    def get_unprocessed_events(self, limit: int) -> list[OutboxEvent]:
        """Return up to ``limit`` unprocessed events, oldest first."""
        stmt = (
            select(OutboxEvent)
            .where(OutboxEvent.processed.is_(False))
            .order_by(OutboxEvent.created_at)
            .limit(limit)
        )
        with self._session_factory() as session:
            return list(session.scalars(stmt).all())

    def mark_event_as_processed(self, event_id: uuid.UUID) -> None:
        """Flag the event with ``event_id`` as published."""
        stmt = update(OutboxEvent).where(OutboxEvent.id == event_id).values(processed=True)
        with self._session_factory.begin() as session:
            session.execute(stmt)


class OutboxService:
    """Records events and publishes pending ones."""

    def __init__(self, repo: OutboxRepository, writer: EventWriter) -> None:
        self._repo = repo
        self._writer = writer

    def add_event(self, session: Session, event_type: str, payload: Any) -> OutboxEvent:
        """Serialise ``payload`` to JSON and store it as a new event."""
        try:
            data = json.dumps(payload, separators=(",", ":"), sort_keys=True)
        except (TypeError, ValueError) as exc:
            raise OutboxError(f"failed to marshal payload: {exc}") from exc

        event = OutboxEvent(event_type=event_type, payload=data, processed=False)
        try:
            self._repo.create_event(session, event)
        except SQLAlchemyError as exc:
            raise OutboxError(f"failed to insert outbox event: {exc}") from exc
        return event

    def get_unprocessed_events(self, batch_size: int) -> list[OutboxEvent]:
        return self._repo.get_unprocessed_events(batch_size)

    def process_event(self, event: OutboxEvent) -> None:
        """Publish ``event`` and mark it processed."""
        try:
            self._writer.write(event.event_type.encode(), event.payload)
        except Exception as exc:
            raise OutboxError(f"error writing event: {exc}") from exc
        self._repo.mark_event_as_processed(event.id)


class OutboxWorker:
    """Periodically publishes pending outbox events."""

    def __init__(self, service: OutboxService) -> None:
        self._service = service

    def start(self, stop_event: threading.Event, interval: float, batch_size: int) -> None:
        """Process a batch every ``interval`` seconds until ``stop_event`` is set."""
        logger.info("outbox worker started")
        while not stop_event.wait(interval):
            self.process_batch(batch_size)
        logger.info("outbox worker stopped")

    def process_batch(self, batch_size: int) -> int:
        """Publish one batch; return how many events were sent."""
        try:
            events = self._service.get_unprocessed_events(batch_size)
        except SQLAlchemyError as exc:
            logger.error("get unprocessed events error: %s", exc)
            return 0

        sent = 0
        for event in events:
            try:
                self._service.process_event(event)
            except (OutboxError, SQLAlchemyError) as exc:
                logger.error("event send error: %s", exc)
            else:
                sent += 1
                logger.info("event sent and marked: %s", event.id)
        return sent