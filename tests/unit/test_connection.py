"""
Unit tests for ConnectionManager.

Tests connection creation, state transitions driven by heartbeats, the
single delayed reconnect after a timeout, and shutdown.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pymongo.errors import (ConnectionFailure, NetworkTimeout,
                            OperationFailure, ServerSelectionTimeoutError)

from mdb_crud.config import ConnectionTarget
from mdb_crud.database.connection import (Connection, ConnectionEventListener,
                                          ConnectionManager, ConnectionState,
                                          is_timeout_error)
from mdb_crud.exceptions import ConfigurationError
from mdb_crud.observability import get_metrics_collector

RECONNECT_DELAY = 0.01


async def flush_events():
    """Let call_soon_threadsafe callbacks run."""
    for _ in range(3):
        await asyncio.sleep(0)


@pytest.fixture
def target(mongo_uri):
    return ConnectionTarget(uri=mongo_uri, opts={"maxPoolSize": 5})


@pytest.fixture
def motor_client(mock_motor_client):
    with patch("mdb_crud.database.connection.AsyncIOMotorClient", mock_motor_client):
        yield mock_motor_client


@pytest.fixture
def manager(target, motor_client):
    manager = ConnectionManager(target, reconnect_delay=RECONNECT_DELAY)
    yield manager
    manager.stop()


@pytest.mark.unit
class TestIsTimeoutError:
    """Test timeout classification of connection errors."""

    @pytest.mark.parametrize(
        "error",
        [
            TimeoutError("timed out"),
            NetworkTimeout("timed out"),
            ServerSelectionTimeoutError("no servers"),
        ],
    )
    def test_timeouts(self, error):
        assert is_timeout_error(error) is True

    @pytest.mark.parametrize(
        "error",
        [ConnectionFailure("refused"), OperationFailure("auth failed"), ValueError("x"), None],
    )
    def test_non_timeouts(self, error):
        assert is_timeout_error(error) is False


@pytest.mark.unit
class TestConnectionEvents:
    """Test event emission of a Connection without an event loop."""

    def test_open_emitted_once_per_transition(self, target):
        connection = Connection(target)
        opened = []
        connection.on("open", lambda: opened.append(True))

        connection.heartbeat_succeeded()
        connection.heartbeat_succeeded()

        assert opened == [True]

    def test_error_emitted_once_per_failure_streak(self, target):
        connection = Connection(target)
        errors = []
        disconnects = []
        connection.on("error", errors.append)
        connection.on("disconnected", lambda: disconnects.append(True))
        error = NetworkTimeout("timed out")

        connection.heartbeat_succeeded()
        connection.heartbeat_failed(error)
        connection.heartbeat_failed(error)

        assert errors == [error]
        assert disconnects == [True]

    def test_once_handler(self, target):
        connection = Connection(target)
        calls = []
        connection.once("open", lambda: calls.append(1))

        connection.heartbeat_succeeded()
        connection.heartbeat_failed(NetworkTimeout("x"))
        connection.heartbeat_succeeded()

        assert calls == [1]

    def test_closed_connection_emits_nothing(self, target):
        connection = Connection(target)
        client = MagicMock()
        connection.client = client
        events = []
        connection.on("open", lambda: events.append("open"))
        connection.on("error", lambda error: events.append("error"))

        connection.close()
        connection.heartbeat_succeeded()
        connection.heartbeat_failed(NetworkTimeout("x"))

        assert connection.closed is True
        assert events == []
        client.close.assert_called_once()

    def test_close_is_best_effort(self, target):
        connection = Connection(target)
        connection.client = MagicMock()
        connection.client.close.side_effect = RuntimeError("boom")

        connection.close()

        assert connection.closed is True

    def test_listener_forwards_heartbeats(self, target):
        connection = Connection(target)
        listener = ConnectionEventListener(connection)
        errors = []
        connection.on("error", errors.append)
        error = NetworkTimeout("timed out")

        listener.started(MagicMock())
        listener.succeeded(MagicMock())
        listener.failed(MagicMock(reply=error))

        assert errors == [error]


@pytest.mark.unit
class TestConnectionManagerConnect:
    """Test client creation."""

    @pytest.mark.asyncio
    async def test_connect_creates_client_with_listener(self, manager, motor_client, mongo_uri):
        connection = manager.connect()

        args, kwargs = motor_client.call_args
        assert args == (mongo_uri,)
        assert kwargs["maxPoolSize"] == 5
        assert kwargs["appname"] == "MDB_CRUD"
        assert "serverSelectionTimeoutMS" in kwargs
        assert any(isinstance(item, ConnectionEventListener) for item in kwargs["event_listeners"])
        assert manager.connection is connection
        assert manager.state is ConnectionState.CONNECTING
        assert get_metrics_collector().get_operation_count("connection.connect") == 1

    @pytest.mark.asyncio
    async def test_connect_replaces_and_closes_previous(self, manager):
        first = manager.connect()
        second = manager.connect()

        assert manager.connection is second
        assert first.closed is True
        first.client.close.assert_called_once()

    def test_client_requires_connection(self, target):
        manager = ConnectionManager(target)

        with pytest.raises(RuntimeError):
            _ = manager.client

    @pytest.mark.asyncio
    async def test_database_uses_default_database(self, manager):
        manager.connect()

        db = manager.database

        manager.client.get_default_database.assert_called_once_with("test")
        assert db is manager.client.get_default_database.return_value

    @pytest.mark.asyncio
    async def test_client_creation_failure_propagates(self, target):
        with patch(
            "mdb_crud.database.connection.AsyncIOMotorClient",
            side_effect=ValueError("bad uri"),
        ):
            manager = ConnectionManager(target)
            with pytest.raises(ValueError):
                manager.connect()

        metrics = get_metrics_collector().get_metrics("connection.connect")
        assert metrics["metrics"]["connection.connect"]["error_count"] == 1


@pytest.mark.unit
class TestConnectionManagerLifecycle:
    """Test state transitions, reconnect policy and shutdown."""

    @pytest.mark.asyncio
    async def test_open_transitions_state_and_runs_hook_once(self, manager):
        hook = MagicMock()
        connection = manager.start(after_connected=hook)

        connection.heartbeat_succeeded()
        await flush_events()
        connection.heartbeat_failed(ConnectionFailure("refused"))
        connection.heartbeat_succeeded()
        await flush_events()

        assert manager.state is ConnectionState.OPEN
        hook.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_async_hook_is_awaited(self, manager):
        ran = asyncio.Event()

        async def hook():
            ran.set()

        connection = manager.start(after_connected=hook)
        connection.heartbeat_succeeded()
        await flush_events()
        await asyncio.wait_for(ran.wait(), timeout=1)

        assert ran.is_set()

    @pytest.mark.asyncio
    async def test_timeout_schedules_exactly_one_reconnect(self, manager, motor_client):
        connection = manager.start()
        connection.heartbeat_succeeded()
        await flush_events()

        connection.heartbeat_failed(NetworkTimeout("timed out"))
        connection.heartbeat_failed(NetworkTimeout("timed out"))
        await flush_events()
        assert manager.state is ConnectionState.ERROR
        assert motor_client.call_count == 1

        await asyncio.sleep(RECONNECT_DELAY * 5)

        assert motor_client.call_count == 2
        assert manager.connection is not connection
        assert connection.closed is True
        assert manager.state is ConnectionState.RECONNECTING

        manager.connection.heartbeat_succeeded()
        await flush_events()
        assert manager.state is ConnectionState.OPEN

    @pytest.mark.asyncio
    async def test_reconnect_waits_for_delay(self, target, motor_client):
        manager = ConnectionManager(target, reconnect_delay=0.2)
        connection = manager.start()

        connection.heartbeat_failed(TimeoutError("timed out"))
        await flush_events()
        await asyncio.sleep(0.05)

        assert motor_client.call_count == 1
        manager.stop()

    @pytest.mark.asyncio
    async def test_non_timeout_error_does_not_reconnect(self, manager, motor_client):
        connection = manager.start()

        connection.heartbeat_failed(OperationFailure("auth failed"))
        await flush_events()
        await asyncio.sleep(RECONNECT_DELAY * 5)

        assert motor_client.call_count == 1
        assert manager.connection is connection
        assert manager.state is ConnectionState.ERROR

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_reconnect(self, manager, motor_client):
        connection = manager.start()
        connection.heartbeat_failed(NetworkTimeout("timed out"))
        await flush_events()

        manager.stop()
        await asyncio.sleep(RECONNECT_DELAY * 5)

        assert motor_client.call_count == 1
        assert manager.state is ConnectionState.DISCONNECTED
        assert manager.connection is None
        assert connection.closed is True

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, manager):
        manager.start()

        manager.stop()
        manager.stop()

        assert manager.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_events_from_replaced_connection_are_ignored(self, manager):
        first = manager.start()
        manager.connect()

        first.heartbeat_succeeded()
        await flush_events()

        assert manager.state is ConnectionState.CONNECTING

    @pytest.mark.asyncio
    async def test_start_pings_so_reachable_server_opens(self, target, motor_client_factory):
        hook = MagicMock()
        client = motor_client_factory(ping=lambda *args, **kwargs: {"ok": 1})

        with patch("mdb_crud.database.connection.AsyncIOMotorClient", return_value=client):
            manager = ConnectionManager(target, reconnect_delay=RECONNECT_DELAY)
            manager.start(after_connected=hook)
            await flush_events()

        try:
            client.admin.command.assert_awaited_once_with("ping")
            assert manager.state is ConnectionState.OPEN
            hook.assert_called_once_with()
        finally:
            manager.stop()

    @pytest.mark.asyncio
    async def test_unreachable_server_at_start_is_retried(self, target, motor_client_factory):
        clients = [
            motor_client_factory(ping=ServerSelectionTimeoutError("no servers")),
            motor_client_factory(ping=lambda *args, **kwargs: {"ok": 1}),
        ]

        with patch("mdb_crud.database.connection.AsyncIOMotorClient", side_effect=clients) as factory:
            manager = ConnectionManager(target, reconnect_delay=RECONNECT_DELAY)
            first = manager.start()
            await flush_events()
            assert manager.state is ConnectionState.ERROR

            await asyncio.sleep(RECONNECT_DELAY * 5)
            await flush_events()

        try:
            assert factory.call_count == 2
            assert first.closed is True
            assert manager.state is ConnectionState.OPEN
        finally:
            manager.stop()

    def test_start_requires_running_loop(self, target, motor_client):
        manager = ConnectionManager(target)

        with pytest.raises(ConfigurationError) as exc_info:
            manager.start()

        assert exc_info.value.config_key == "loop"
        motor_client.assert_not_called()
        assert manager.state is ConnectionState.DISCONNECTED


@pytest.mark.unit
class TestConnectionManagerHealth:
    """Test ping and health reporting."""

    @pytest.mark.asyncio
    async def test_ping_without_connection(self, target):
        manager = ConnectionManager(target)

        assert await manager.ping() is False
        assert await manager.health() == {"state": "disconnected", "ping": False}

    @pytest.mark.asyncio
    async def test_ping_success(self, manager):
        connection = manager.connect()
        connection.client.admin.command = AsyncMock(return_value={"ok": 1})

        assert await manager.ping() is True

    @pytest.mark.asyncio
    async def test_ping_failure(self, manager):
        connection = manager.connect()

        async def fail(*args, **kwargs):
            raise ServerSelectionTimeoutError("no servers")

        connection.client.admin.command = fail

        assert await manager.ping() is False
