"""
Connection management for MDB_CRUD data services.

This module owns the lifecycle of the storage connection of one service:
connect, observe failures, reconnect after a fixed delay on timeouts, and
close on shutdown.

Motor clients connect lazily and report server health from PyMongo monitor
threads. Each new client is pinged once so monitoring starts right away. A
``pymongo.monitoring.ServerHeartbeatListener`` turns heartbeats into three
connection events (``open``, ``error`` and ``disconnected``), which the
:class:`Connection` re-dispatches on the asyncio loop that created it. The
manager therefore has to be started from inside a running loop.

Usage (inside a coroutine):
    manager = ConnectionManager(ConnectionTarget("mongodb://localhost:27017/blog"))
    manager.start(after_connected=create_indexes)
    posts = manager.database["posts"]
    ...
    manager.stop()
"""

import asyncio
import inspect
import logging
import threading
import time
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import monitoring
from pymongo.errors import (
    ConnectionFailure,
    InvalidOperation,
    OperationFailure,
    PyMongoError,
    ServerSelectionTimeoutError,
)

from ..config import ConnectionTarget
from ..constants import (
    DEFAULT_DB_NAME,
    DEFAULT_SERVER_SELECTION_TIMEOUT_MS,
    RECONNECT_DELAY_SECONDS,
)
from ..exceptions import ConfigurationError
from ..observability import get_logger as get_contextual_logger
from ..observability import record_operation

logger = logging.getLogger(__name__)
contextual_logger = get_contextual_logger(__name__)

EVENT_OPEN = "open"
EVENT_ERROR = "error"
EVENT_DISCONNECTED = "disconnected"


class ConnectionState(str, Enum):
    """Lifecycle states of a service's storage connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    ERROR = "error"
    RECONNECTING = "reconnecting"


def is_timeout_error(error: BaseException | None) -> bool:
    """Return True for timeout-class connection errors."""
    if isinstance(error, TimeoutError):
        return True
    return isinstance(error, PyMongoError) and bool(error.timeout)


class Connection:
    """
    One Motor client plus the observers attached to it.

    Heartbeat callbacks arrive on PyMongo monitor threads; every event is
    handed to the owning loop with ``call_soon_threadsafe`` so observers
    always run on the event loop. ``error`` is emitted once per failure
    streak, not once per failed heartbeat.
    """

    def __init__(
        self, target: ConnectionTarget, loop: asyncio.AbstractEventLoop | None = None
    ) -> None:
        self.target = target
        self.client: AsyncIOMotorClient | None = None
        self._loop = loop
        self._handlers: dict[str, list[tuple[Callable[..., Any], bool]]] = defaultdict(list)
        self._lock = threading.Lock()
        self._is_open = False
        self._failing = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        """Attach a handler called on every occurrence of `event`."""
        self._handlers[event].append((handler, False))

    def once(self, event: str, handler: Callable[..., Any]) -> None:
        """Attach a handler called on the next occurrence of `event` only."""
        self._handlers[event].append((handler, True))

    def emit(self, event: str, *args: Any) -> None:
        """Dispatch `event` to its handlers on the owning loop."""
        if self._loop is None:
            self._dispatch(event, args)
            return
        if self._loop.is_closed():
            logger.debug(f"Dropping '{event}' connection event: event loop is closed")
            return
        self._loop.call_soon_threadsafe(self._dispatch, event, args)

    def _dispatch(self, event: str, args: tuple) -> None:
        handlers = self._handlers.get(event, [])
        for entry in list(handlers):
            handler, once = entry
            if once and entry in handlers:
                handlers.remove(entry)
            handler(*args)

    def heartbeat_succeeded(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._failing = False
            opened = not self._is_open
            self._is_open = True
        if opened:
            self.emit(EVENT_OPEN)

    def heartbeat_failed(self, error: BaseException) -> None:
        with self._lock:
            if self._closed:
                return
            was_open = self._is_open
            first_failure = not self._failing
            self._is_open = False
            self._failing = True
        if was_open:
            self.emit(EVENT_DISCONNECTED)
        if first_failure:
            self.emit(EVENT_ERROR, error)

    def close(self) -> None:
        """Close the client. Best-effort; never raises."""
        with self._lock:
            self._closed = True
            self._is_open = False
        if self.client is None:
            return
        try:
            self.client.close()
        except (InvalidOperation, AttributeError, RuntimeError) as e:
            logger.warning(f"Error closing MongoDB client: {e}")


class ConnectionEventListener(monitoring.ServerHeartbeatListener):
    """Feeds PyMongo server heartbeats into a Connection."""

    def __init__(self, connection: Connection) -> None:
        self._connection = connection

    def started(self, event: monitoring.ServerHeartbeatStartedEvent) -> None:
        pass

    def succeeded(self, event: monitoring.ServerHeartbeatSucceededEvent) -> None:
        self._connection.heartbeat_succeeded()

    def failed(self, event: monitoring.ServerHeartbeatFailedEvent) -> None:
        self._connection.heartbeat_failed(event.reply)


@dataclass(frozen=True)
class ConnectionCell:
    """Current state and connection, always replaced as a unit."""

    state: ConnectionState
    connection: Connection | None = None


class ConnectionManager:
    """
    Manages the storage connection of one data service.

    Holds a single :class:`ConnectionCell`; readers of :attr:`state` and
    :attr:`connection` never observe a half-updated pair because the
    cell is swapped as a whole on every transition.
    """

    def __init__(
        self,
        target: ConnectionTarget,
        reconnect_delay: float = RECONNECT_DELAY_SECONDS,
    ) -> None:
        """
        Initialize the connection manager.

        Args:
            target: Where to connect
            reconnect_delay: Seconds to wait before reconnecting after a timeout
        """
        self.target = target
        self.reconnect_delay = reconnect_delay
        self._cell = ConnectionCell(ConnectionState.DISCONNECTED)
        self._after_connected: Callable[[], Any] | None = None
        self._reconnect_handles: set[asyncio.TimerHandle] = set()
        self._ping_tasks: set[asyncio.Task] = set()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stopped = True

    @property
    def state(self) -> ConnectionState:
        return self._cell.state

    @property
    def connection(self) -> Connection | None:
        return self._cell.connection

    @property
    def client(self) -> AsyncIOMotorClient:
        """
        Get the current MongoDB client.

        Raises:
            RuntimeError: If connect() has not been called
        """
        connection = self._cell.connection
        if connection is None or connection.client is None:
            raise RuntimeError("ConnectionManager not connected. Call start() first.")
        return connection.client

    @property
    def database(self) -> AsyncIOMotorDatabase:
        """Default database of the current client (from the URI, else DEFAULT_DB_NAME)."""
        return self.client.get_default_database(DEFAULT_DB_NAME)

    def connect(self) -> Connection:
        """
        Open a new connection and make it the current one.

        Repeated calls replace the previous connection, which is closed.

        Returns:
            The new Connection
        """
        start_time = time.time()
        previous = self._cell
        state = (
            ConnectionState.RECONNECTING
            if previous.state is ConnectionState.ERROR
            else ConnectionState.CONNECTING
        )

        logger.debug(f"Connecting to MongoDB ({self.target.uri})...")

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as e:
            raise ConfigurationError(
                "ConnectionManager must be used from a running event loop",
                config_key="loop",
                context={"uri": self.target.uri},
            ) from e

        connection = Connection(self.target, loop=loop)
        opts = dict(self.target.opts)
        listeners = list(opts.pop("event_listeners", None) or [])
        listeners.append(ConnectionEventListener(connection))
        opts.setdefault("serverSelectionTimeoutMS", DEFAULT_SERVER_SELECTION_TIMEOUT_MS)
        opts.setdefault("appname", "MDB_CRUD")

        try:
            connection.client = AsyncIOMotorClient(
                self.target.uri, event_listeners=listeners, **opts
            )
        except (ConnectionFailure, ValueError, TypeError) as e:
            duration_ms = (time.time() - start_time) * 1000
            record_operation("connection.connect", duration_ms, success=False)
            logger.error(f"Failed to create MongoDB client: {e}", exc_info=True)
            raise

        self._track_state(connection)
        self._cell = ConnectionCell(state, connection)
        if previous.connection is not None:
            previous.connection.close()

        # Motor clients stay idle until the first operation; the ping opens
        # the topology so heartbeats start flowing.
        task = loop.create_task(self._initial_ping(connection))
        self._ping_tasks.add(task)
        task.add_done_callback(self._ping_tasks.discard)

        duration_ms = (time.time() - start_time) * 1000
        record_operation("connection.connect", duration_ms, success=True)
        return connection

    def _track_state(self, connection: Connection) -> None:
        def transition(state: ConnectionState) -> None:
            if self._cell.connection is connection:
                self._cell = ConnectionCell(state, connection)

        connection.on(EVENT_OPEN, lambda: transition(ConnectionState.OPEN))
        connection.on(EVENT_ERROR, lambda error: transition(ConnectionState.ERROR))
        connection.on(EVENT_DISCONNECTED, lambda: transition(ConnectionState.DISCONNECTED))

    async def _initial_ping(self, connection: Connection) -> None:
        try:
            await connection.client.admin.command("ping")
        except PyMongoError as e:
            logger.debug(f"Initial MongoDB ping failed: {e}")
            connection.heartbeat_failed(e)
        else:
            connection.heartbeat_succeeded()

    def watch(self, connection: Connection) -> None:
        """Attach the error, open and disconnected observers to `connection`."""

        def on_error(error: BaseException) -> None:
            if is_timeout_error(error):
                contextual_logger.warning(
                    "Mongo connection timeout!",
                    extra={"error_type": type(error).__name__, "error": str(error)},
                )
                self._schedule_reconnect()
                return

            contextual_logger.error(
                "Could not connect to MongoDB!", extra={"mongo_uri": self.target.uri}
            )
            logger.error(
                f"MongoDB connection error: {error}",
                exc_info=(type(error), error, error.__traceback__),
            )

        def on_open() -> None:
            contextual_logger.info("Connected to MongoDB.", extra={"mongo_uri": self.target.uri})
            self._run_after_connected()

        def on_disconnected() -> None:
            contextual_logger.warning("Disconnected from MongoDB.")

        connection.on(EVENT_ERROR, on_error)
        connection.once(EVENT_OPEN, on_open)
        connection.on(EVENT_DISCONNECTED, on_disconnected)

    def start(self, after_connected: Callable[[], Any] | None = None) -> Connection:
        """
        Connect once and attach the lifecycle observers.

        Args:
            after_connected: Optional hook run once per successful open
                             (sync or async), e.g. for index creation

        Raises:
            ConfigurationError: If called outside a running event loop
        """
        try:
            self._loop = asyncio.get_running_loop()
        except RuntimeError as e:
            raise ConfigurationError(
                "ConnectionManager.start() must be called from a running event loop",
                config_key="loop",
                context={"uri": self.target.uri},
            ) from e
        self._stopped = False
        self._after_connected = after_connected
        connection = self.connect()
        self.watch(connection)
        return connection

    def stop(self) -> None:
        """Close the connection if present. Safe to call multiple times."""
        self._stopped = True
        for handle in self._reconnect_handles:
            handle.cancel()
        self._reconnect_handles.clear()
        for task in self._ping_tasks:
            task.cancel()
        self._ping_tasks.clear()

        connection = self._cell.connection
        self._cell = ConnectionCell(ConnectionState.DISCONNECTED)
        if connection is not None:
            connection.close()
            contextual_logger.info("MongoDB connection closed.")

    def _schedule_reconnect(self) -> None:
        if self._stopped:
            return
        loop = self._loop or asyncio.get_running_loop()
        handle: asyncio.TimerHandle | None = None

        def fire() -> None:
            self._reconnect_handles.discard(handle)
            self._reconnect()

        handle = loop.call_later(self.reconnect_delay, fire)
        self._reconnect_handles.add(handle)

    def _reconnect(self) -> None:
        if self._stopped:
            return
        self.watch(self.connect())

    def _run_after_connected(self) -> None:
        if self._after_connected is None:
            return
        result = self._after_connected()
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result, loop=self._loop)
            task.add_done_callback(_log_hook_failure)

    async def ping(self) -> bool:
        """
        Check that the current client answers a ping.

        Returns:
            True if connected and responsive, False otherwise
        """
        connection = self._cell.connection
        if connection is None or connection.client is None:
            return False
        try:
            await connection.client.admin.command("ping")
            return True
        except (
            ConnectionFailure,
            ServerSelectionTimeoutError,
            OperationFailure,
            InvalidOperation,
        ) as e:
            logger.warning(f"MongoDB ping failed: {e}")
            return False

    async def health(self) -> dict[str, Any]:
        """Report connection state and ping result."""
        return {"state": self.state.value, "ping": await self.ping()}


def _log_hook_failure(task: asyncio.Future) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(
            f"after_connected hook failed: {error}",
            exc_info=(type(error), error, error.__traceback__),
        )
