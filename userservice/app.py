"""Wiring of the service components and the HTTP front end."""

import logging
import threading
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from userservice import outbox, users
from userservice.config import Config
from userservice.handler import UserHandler
from userservice.outbox import EventWriter, OutboxRepository, OutboxService, OutboxWorker
from userservice.users import TaskClient, UserRepository, UserService

logger = logging.getLogger(__name__)

WORKER_INTERVAL = 5.0
WORKER_BATCH_SIZE = 10


@dataclass
class App:
    """The assembled service."""

    config: Config
    engine: Engine
    user_handler: UserHandler
    worker: OutboxWorker
    _stop: threading.Event = field(default_factory=threading.Event, init=False, repr=False)
    _thread: threading.Thread | None = field(default=None, init=False, repr=False)

    def start_worker(
        self, interval: float = WORKER_INTERVAL, batch_size: int = WORKER_BATCH_SIZE
    ) -> None:
        """Run the outbox worker in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self.worker.start,
            args=(self._stop, interval, batch_size),
            name="outbox-worker",
            daemon=True,
        )
        self._thread.start()

    def close(self) -> None:
        """Stop the outbox worker and wait for it to finish."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None


def create_app(
    config: Config, engine: Engine, writer: EventWriter, task_client: TaskClient
) -> App:
    """Create the tables and assemble all components on ``engine``."""
    outbox.migrate(engine)
    users.migrate(engine)
    session_factory = sessionmaker(engine)

    outbox_service = OutboxService(OutboxRepository(session_factory), writer)
    user_service = UserService(UserRepository(session_factory), outbox_service, task_client)
    return App(
        config=config,
        engine=engine,
        user_handler=UserHandler(user_service),
        worker=OutboxWorker(outbox_service),
    )


class _NotFoundHandler(BaseHTTPRequestHandler):
    def _not_found(self) -> None:
        body = b"404 page not found"
        self.send_response(404)
        self.send_header("Content-Type", "text/plain")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    do_GET = do_POST = do_PUT = do_PATCH = do_DELETE = do_HEAD = _not_found

    def log_message(self, format: str, *args: object) -> None:
        logger.info("%s - %s", self.address_string(), format % args)


class Web:
    """HTTP server that runs alongside the application."""

    def __init__(self, app: App) -> None:
        self.app = app
        self.server: ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()

    def init(self) -> ThreadingHTTPServer:
        """Bind the HTTP server to the configured port."""
        port = int(self.app.config.port) if self.app.config.port else 0
        self.server = ThreadingHTTPServer(("", port), _NotFoundHandler)
        return self.server

    def run(self) -> None:
        """Serve until interrupted, then shut everything down."""
        if self.server is None:
            self.init()
        self._thread = threading.Thread(
            target=self.server.serve_forever, name="http-server", daemon=True
        )
        self._thread.start()
        self.app.start_worker()
        try:
            self._stop.wait()
        except KeyboardInterrupt:
            pass
        finally:
            self.shutdown()
            self.app.close()

    def shutdown(self) -> None:
        """Stop serving and release the listening socket."""
        logger.info("Shutting down server...")
        if self.server is None:
            return
        if self._thread is not None and self._thread.is_alive():
            self.server.shutdown()
            self._thread.join()
        self._thread = None
        self.server.server_close()
        self.server = None