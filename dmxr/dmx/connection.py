"""
Resilient DMX Connection - survives USB disconnects

Wraps a transport factory and presents a stable universe to the universe
manager:

- Passes writes through to the live transport while connected
- Drops writes while disconnected, warning once per disconnect episode
- Reconnects with exponential backoff (1s, 2s, 4s ... capped at 30s)
- Replays the active channel snapshot after a successful reconnect

Every state change goes through ResilientConnection._dispatch() under one
re-entrant lock. Transport I/O (connect, replay, close) and state listeners
run outside that lock. Universe writes and the reconnect replay share a
separate write lock, so a replayed snapshot never lands on top of a newer
write.

Usage:
    conn = ResilientConnection(
        transport_factory=lambda: create_transport("enttec-usb-dmx-pro", device_path="COM3"),
        channel_snapshot_provider=manager.get_full_snapshot,
    )
    conn.universe.update({1: 255})
    conn.get_status().state
    conn.close()
"""

from dataclasses import replace
from enum import Enum
from typing import Callable, Dict, List, Optional
import logging
import threading
import time

from .transport import Transport
from .types import ConnectionState, ConnectionStatus, create_initial_status
from ..scheduler import ThreadingScheduler

MIN_RECONNECT_DELAY_MS = 1_000
MAX_RECONNECT_DELAY_MS = 30_000
BACKOFF_MULTIPLIER = 2
_MAX_BACKOFF_EXPONENT = 5


def compute_backoff_delay_ms(attempt: int) -> int:
    """Delay before retry number ``attempt + 1`` (``attempt`` = failures so far)."""
    exponent = min(max(0, attempt), _MAX_BACKOFF_EXPONENT)
    return min(MIN_RECONNECT_DELAY_MS * BACKOFF_MULTIPLIER ** exponent, MAX_RECONNECT_DELAY_MS)


class _Event(Enum):
    CONNECT_SUCCEEDED = "connect_succeeded"
    CONNECT_FAILED = "connect_failed"
    ATTEMPT_STARTED = "attempt_started"
    DISCONNECTED = "disconnected"
    CLOSED = "closed"


class ProxyUniverse:
    """Universe write interface backed by whichever transport is live."""

    def __init__(self, connection: "ResilientConnection"):
        self._connection = connection

    def update(self, channels: Dict[int, int]) -> None:
        self._connection._write("update", lambda transport: transport.send(channels))

    def update_all(self, value: int) -> None:
        self._connection._write("updateAll", lambda transport: transport.send_all(value))


class ResilientConnection:
    """
    Reconnecting wrapper around a DMX transport.

    A failed initial connect does not raise: the connection starts in
    ``reconnecting`` and retries forever with backoff.

    Attributes:
        universe: ProxyUniverse to hand to the UniverseManager
    """

    def __init__(
        self,
        transport_factory: Callable[[], Transport],
        channel_snapshot_provider: Callable[[], Dict[int, int]],
        on_state_change: Optional[Callable[[ConnectionStatus], None]] = None,
        logger: Optional[logging.Logger] = None,
        scheduler=None,
        clock: Callable[[], float] = time.time
    ):
        """
        Create the connection and try the first connect synchronously.

        Args:
            transport_factory: Opens a new transport; may raise
            channel_snapshot_provider: Returns the channels to replay on reconnect
            on_state_change: Called with a status snapshot after each change,
                never while the connection lock is held
            logger: Logger override (defaults to this module's logger)
            scheduler: Object with call_later(seconds, fn); threads by default
            clock: Returns epoch seconds for status timestamps
        """
        self._transport_factory = transport_factory
        self._snapshot_provider = channel_snapshot_provider
        self._on_state_change = on_state_change
        self._log = logger if logger is not None else logging.getLogger(__name__)
        self._scheduler = scheduler or ThreadingScheduler()
        self._clock = clock

        self._lock = threading.RLock()
        # Taken after the universe manager's lock, before self._lock
        self._write_lock = threading.RLock()
        self._write_generation = 0
        self._transport: Optional[Transport] = None
        self._status = create_initial_status(ConnectionState.DISCONNECTED, clock())
        self._pending_notifications: List[ConnectionStatus] = []
        self._reconnect_call = None
        self._closed = False
        self._drop_logged = False

        self.universe = ProxyUniverse(self)

        try:
            transport = self._transport_factory()
        except Exception as e:
            self._log.error(f"Initial DMX connection failed: {e}")
            self._dispatch(_Event.CONNECT_FAILED, error=e)
            return

        self._dispatch(_Event.CONNECT_SUCCEEDED, transport=transport)

    # ============================================================
    # Public API
    # ============================================================

    def get_status(self) -> ConnectionStatus:
        """Immutable snapshot of the connection status."""
        with self._lock:
            return self._status

    @property
    def is_connected(self) -> bool:
        with self._lock:
            return self._transport is not None

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Stop reconnecting and close the live transport. Idempotent."""
        transport = self._dispatch(_Event.CLOSED)
        if transport is not None:
            self._close_transport(transport)

    # ============================================================
    # State machine
    # ============================================================

    def _dispatch(self, event: _Event, transport: Optional[Transport] = None,
                  error: Optional[BaseException] = None):
        """Apply one event to the connection state. Returns event-specific data."""
        with self._lock:
            result = self._apply_event(event, transport, error)
            pending, self._pending_notifications = self._pending_notifications, []

        for status in pending:
            self._notify(status)
        return result

    def _apply_event(self, event: _Event, transport: Optional[Transport],
                     error: Optional[BaseException]):
        if self._closed:
            return None

        if event == _Event.CONNECT_SUCCEEDED:
            self._transport = transport
            self._transition(ConnectionState.CONNECTED)
            self._attach_disconnect_listener(transport)
            return True

        if event == _Event.CONNECT_FAILED:
            self._status = replace(self._status, last_error=str(error))
            self._pending_notifications.append(self._status)
            self._schedule_reconnect()
            return None

        if event == _Event.ATTEMPT_STARTED:
            self._reconnect_call = None
            self._status = replace(self._status, reconnect_attempts=self._status.reconnect_attempts + 1)
            self._pending_notifications.append(self._status)
            return True

        if event == _Event.DISCONNECTED:
            if transport is not self._transport:
                return None
            message = str(error) if error else "USB device disconnected"
            self._log.error(f"DMX disconnect detected: {message}")
            self._transport = None
            self._drop_logged = False
            self._transition(ConnectionState.DISCONNECTED)
            self._schedule_reconnect()
            # Dead transport, closed by the caller outside the lock
            return transport

        if event == _Event.CLOSED:
            self._closed = True
            if self._reconnect_call is not None:
                self._reconnect_call.cancel()
                self._reconnect_call = None
            live = self._transport
            self._transport = None
            return live

        return None

    def _transition(self, state: ConnectionState) -> None:
        if self._status.state == state:
            return
        self._log.info(f"DMX connection: {self._status.state.value} -> {state.value}")

        now = self._clock()
        if state == ConnectionState.CONNECTED:
            self._status = replace(self._status, state=state, last_connected_at=now,
                                   reconnect_attempts=0, last_error=None)
        elif state == ConnectionState.DISCONNECTED:
            self._status = replace(self._status, state=state, last_disconnected_at=now)
        else:
            self._status = replace(self._status, state=state)
        self._pending_notifications.append(self._status)

    def _notify(self, status: ConnectionStatus) -> None:
        if self._on_state_change is None:
            return
        try:
            self._on_state_change(status)
        except Exception as e:
            self._log.error(f"Connection state listener failed: {e}")

    def _schedule_reconnect(self) -> None:
        if self._closed or self._reconnect_call is not None:
            return

        attempt = self._status.reconnect_attempts
        delay_ms = compute_backoff_delay_ms(attempt)

        self._transition(ConnectionState.RECONNECTING)
        self._log.info(f"Reconnect attempt {attempt + 1} in {delay_ms}ms")
        self._reconnect_call = self._scheduler.call_later(delay_ms / 1000.0, self._attempt_reconnect)

    def _attach_disconnect_listener(self, transport: Transport) -> None:
        subscribe = getattr(transport, "subscribe_disconnect", None)
        if not callable(subscribe):
            return
        subscribe(lambda err=None: self._handle_disconnect(transport, err))

    def _handle_disconnect(self, transport: Transport, error: Optional[BaseException]) -> None:
        dead = self._dispatch(_Event.DISCONNECTED, transport=transport, error=error)
        if dead is not None:
            self._close_transport(dead)

    # ============================================================
    # Transport I/O (never under self._lock)
    # ============================================================

    def _attempt_reconnect(self) -> None:
        if not self._dispatch(_Event.ATTEMPT_STARTED):
            return

        try:
            transport = self._transport_factory()
        except Exception as e:
            self._log.error(f"Reconnect failed: {e}")
            self._dispatch(_Event.CONNECT_FAILED, error=e)
            return

        if not self._dispatch(_Event.CONNECT_SUCCEEDED, transport=transport):
            # Closed while the device was opening
            self._close_transport(transport)
            return

        self._replay(transport)

    def _replay(self, transport: Transport) -> None:
        """Send the channel snapshot unless a newer write beat it to the device."""
        while True:
            with self._write_lock:
                generation = self._write_generation

            try:
                snapshot = dict(self._snapshot_provider())
            except Exception as e:
                self._log.error(f"Channel replay after reconnect failed: {e}")
                return

            with self._write_lock:
                if self._write_generation != generation:
                    # A write landed after the snapshot was read; read it again
                    continue
                if not self._is_live(transport):
                    return
                try:
                    if snapshot:
                        transport.send(snapshot)
                        self._log.info(f"Replayed {len(snapshot)} channels after reconnect")
                except Exception as e:
                    self._log.error(f"Channel replay after reconnect failed: {e}")
                return

    def _write(self, operation: str, send: Callable[[Transport], None]) -> None:
        with self._write_lock:
            self._write_generation += 1
            transport = self._live_transport(operation)
            if transport is not None:
                send(transport)

    def _is_live(self, transport: Transport) -> bool:
        with self._lock:
            return self._transport is transport

    def _live_transport(self, operation: str) -> Optional[Transport]:
        """Current transport, or None after logging the drop once per episode."""
        with self._lock:
            if self._transport is not None:
                return self._transport
            if not self._drop_logged:
                self._drop_logged = True
                self._log.warning(f"DMX {operation} dropped: no active connection")
            return None

    def _close_transport(self, transport: Transport) -> None:
        try:
            transport.close()
        except Exception as e:
            self._log.error(f"Closing DMX transport failed: {e}")
