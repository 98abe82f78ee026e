"""
Unit Tests for the Resilient DMX Connection

Tests for:
- Proxy universe pass-through and dropped writes
- Initial connect failure and the reconnect loop
- Exponential backoff timing
- Channel replay after reconnect and writes racing it
- Lock ordering between state listeners and universe writes
- close() semantics
"""

import dataclasses
import threading
import pytest
from unittest.mock import Mock

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from dmxr.dmx.connection import (
    ResilientConnection,
    compute_backoff_delay_ms,
    MAX_RECONNECT_DELAY_MS,
)
from dmxr.dmx.transport import DmxConnectionError, DmxWriteError
from dmxr.dmx.types import ConnectionState
from dmxr.dmx.universe import UniverseManager
from dmxr.scheduler import ManualScheduler


class FakeTransport:
    """Records writes; disconnect() plays the USB cable being pulled."""

    driver = "fake"

    def __init__(self):
        self.sent = []
        self.sent_all = []
        self.close_calls = 0
        self.callbacks = []

    def send(self, channels):
        self.sent.append(dict(channels))

    def send_all(self, value):
        self.sent_all.append(value)

    def close(self):
        self.close_calls += 1

    def subscribe_disconnect(self, callback):
        self.callbacks.append(callback)

    def disconnect(self, error=None):
        for callback in list(self.callbacks):
            callback(error)


class HooklessTransport:
    """Transport without a disconnect hook (like the null driver)."""

    def __init__(self):
        self.sent = []

    def send(self, channels):
        self.sent.append(dict(channels))

    def send_all(self, value):
        pass

    def close(self):
        pass


def make_connection(factory, snapshot=None, on_state_change=None):
    scheduler = ManualScheduler()
    logger = Mock()
    clock = Mock(side_effect=[float(i) for i in range(1, 1000)])
    conn = ResilientConnection(
        transport_factory=factory,
        channel_snapshot_provider=snapshot or (lambda: {}),
        on_state_change=on_state_change,
        logger=logger,
        scheduler=scheduler,
        clock=clock,
    )
    return conn, scheduler, logger


class TestProxyUniverse:
    """Writes through the proxy universe."""

    def test_update_passes_through(self):
        """Test update() reaches the live transport."""
        transport = FakeTransport()
        conn, _, _ = make_connection(Mock(return_value=transport))

        conn.universe.update({1: 255, 2: 128})

        assert transport.sent == [{1: 255, 2: 128}]
        assert conn.get_status().state == ConnectionState.CONNECTED
        conn.close()

    def test_update_all_passes_through(self):
        """Test update_all() reaches the live transport."""
        transport = FakeTransport()
        conn, _, _ = make_connection(Mock(return_value=transport))

        conn.universe.update_all(0)

        assert transport.sent_all == [0]
        conn.close()

    def test_drops_writes_when_disconnected(self):
        """Test writes are dropped silently after a disconnect."""
        transport = FakeTransport()
        conn, _, logger = make_connection(Mock(side_effect=[transport, DmxConnectionError("gone")]))

        transport.disconnect(OSError("disconnected"))
        conn.universe.update({1: 255})
        conn.universe.update_all(255)

        assert transport.sent == []
        assert transport.sent_all == []
        logger.warning.assert_called_once()
        assert "DMX update dropped" in logger.warning.call_args[0][0]
        conn.close()

    def test_drop_warning_logged_once_per_episode(self):
        """Test the dropped-write warning latch resets only on a new disconnect."""
        first, second = FakeTransport(), FakeTransport()
        conn, scheduler, logger = make_connection(Mock(side_effect=[first, second]))

        first.disconnect()
        conn.universe.update({1: 255})
        conn.universe.update({2: 128})
        conn.universe.update({3: 64})
        assert logger.warning.call_count == 1

        scheduler.advance(1.0)
        assert conn.is_connected
        conn.universe.update({4: 10})
        assert logger.warning.call_count == 1

        second.disconnect()
        conn.universe.update({5: 10})
        conn.universe.update({6: 10})
        assert logger.warning.call_count == 2
        conn.close()

    def test_live_write_error_reaches_owner(self):
        """Test a failing live transport surfaces the error to the universe owner."""
        transport = FakeTransport()
        transport.send = Mock(side_effect=DmxWriteError("write failed"))
        conn, _, _ = make_connection(Mock(return_value=transport))

        with pytest.raises(DmxWriteError):
            conn.universe.update({1: 1})
        conn.close()


class TestInitialConnection:
    """Startup when the device may be missing."""

    def test_initial_success_is_connected(self):
        """Test a working device gives a connected status with a timestamp."""
        conn, scheduler, _ = make_connection(Mock(return_value=FakeTransport()))

        status = conn.get_status()
        assert status.state == ConnectionState.CONNECTED
        assert status.last_connected_at is not None
        assert status.reconnect_attempts == 0
        assert scheduler.pending == []
        conn.close()

    def test_initial_failure_enters_reconnecting(self):
        """Test a missing device does not raise and starts the retry loop."""
        states = []
        factory = Mock(side_effect=[DmxConnectionError("Opening COM3: File not found"), FakeTransport()])
        conn, scheduler, logger = make_connection(factory, on_state_change=states.append)

        assert states[-1].state == ConnectionState.RECONNECTING
        assert states[-1].last_error == "Opening COM3: File not found"
        assert "Initial DMX connection failed" in logger.error.call_args_list[0][0][0]
        assert [call.delay for call in scheduler.pending] == [1.0]

        scheduler.advance(1.0)

        status = conn.get_status()
        assert status.state == ConnectionState.CONNECTED
        assert status.last_error is None
        assert status.reconnect_attempts == 0
        conn.close()

    def test_keeps_retrying_until_device_appears(self):
        """Test attempts accumulate while the device stays missing."""
        transport = FakeTransport()
        factory = Mock(side_effect=[
            DmxConnectionError("No device"),
            DmxConnectionError("Still no COM3"),
            DmxConnectionError("Nope"),
            transport,
        ])
        conn, scheduler, _ = make_connection(factory)

        scheduler.advance(1.0)
        assert conn.get_status().reconnect_attempts == 1
        assert conn.get_status().last_error == "Still no COM3"

        scheduler.advance(2.0)
        assert conn.get_status().reconnect_attempts == 2

        scheduler.advance(4.0)
        assert conn.get_status().state == ConnectionState.CONNECTED
        conn.universe.update({1: 200})
        assert transport.sent == [{1: 200}]
        conn.close()

    def test_transport_without_hook_stays_connected(self):
        """Test a transport with no disconnect hook is trusted after connecting."""
        transport = HooklessTransport()
        conn, scheduler, _ = make_connection(Mock(return_value=transport))

        conn.universe.update({10: 10})

        assert conn.get_status().state == ConnectionState.CONNECTED
        assert transport.sent == [{10: 10}]
        assert scheduler.pending == []
        conn.close()


class TestBackoff:
    """Reconnect delay schedule."""

    def test_compute_backoff_delay(self):
        """Test the delay doubles per failure and caps at 30s."""
        assert [compute_backoff_delay_ms(n) for n in range(7)] == [
            1000, 2000, 4000, 8000, 16000, 30000, 30000,
        ]
        assert compute_backoff_delay_ms(100) == MAX_RECONNECT_DELAY_MS
        assert compute_backoff_delay_ms(10 ** 6) == MAX_RECONNECT_DELAY_MS

    def test_delays_double_until_cap(self):
        """Test consecutive failures schedule 1s, 2s, 4s ... 30s retries."""
        conn, scheduler, _ = make_connection(Mock(side_effect=DmxConnectionError("no device")))

        delays = []
        for _ in range(8):
            assert len(scheduler.pending) == 1
            delays.append(scheduler.pending[0].delay)
            scheduler.advance(delays[-1])

        assert delays == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0, 30.0]
        assert conn.get_status().state == ConnectionState.RECONNECTING
        conn.close()

    def test_backoff_restarts_after_successful_reconnect(self):
        """Test a new disconnect episode starts again at 1s."""
        first, second = FakeTransport(), FakeTransport()
        factory = Mock(side_effect=[first, DmxConnectionError("x"), second, DmxConnectionError("y")])
        conn, scheduler, _ = make_connection(factory)

        first.disconnect()
        scheduler.advance(1.0)
        scheduler.advance(2.0)
        assert conn.get_status().state == ConnectionState.CONNECTED

        second.disconnect()
        assert [call.delay for call in scheduler.pending] == [1.0]
        conn.close()


class TestDisconnectAndReplay:
    """Recovery after a USB disconnect."""

    def test_disconnect_transitions_through_disconnected(self):
        """Test disconnect records a timestamp and moves to reconnecting."""
        states = []
        transport = FakeTransport()
        conn, _, logger = make_connection(Mock(return_value=transport), on_state_change=states.append)

        transport.disconnect(OSError("USB unplugged"))

        assert [s.state for s in states[-2:]] == [
            ConnectionState.DISCONNECTED,
            ConnectionState.RECONNECTING,
        ]
        assert conn.get_status().last_disconnected_at is not None
        assert any("USB unplugged" in c[0][0] for c in logger.error.call_args_list)
        conn.close()

    def test_replays_snapshot_after_reconnect(self):
        """Test exactly one update with the snapshot present at reconnect time."""
        first, second = FakeTransport(), FakeTransport()
        snapshot = {1: 255, 2: 128, 3: 64}
        conn, scheduler, logger = make_connection(Mock(side_effect=[first, second]), snapshot=lambda: dict(snapshot))

        first.disconnect()
        scheduler.advance(1.0)

        assert second.sent == [{1: 255, 2: 128, 3: 64}]
        assert any("Replayed 3 channels" in c[0][0] for c in logger.info.call_args_list)
        conn.close()

    def test_write_after_snapshot_read_wins(self):
        """Test a write racing the replay is not overwritten by the older snapshot."""
        first, second = FakeTransport(), FakeTransport()
        state = {1: 255}
        holder = {}

        def snapshot():
            stale = dict(state)
            if "raced" not in holder:
                holder["raced"] = True
                state.clear()
                holder["conn"].universe.update({1: 0})
            return stale

        conn, scheduler, _ = make_connection(Mock(side_effect=[first, second]), snapshot=snapshot)
        holder["conn"] = conn

        first.disconnect()
        scheduler.advance(1.0)

        assert second.sent == [{1: 0}]
        conn.close()

    def test_blackout_during_replay_stays_dark(self):
        """Test a blackout issued while replaying keeps every channel at 0."""
        first, second = FakeTransport(), FakeTransport()
        holder = {}

        def snapshot():
            stale = holder["manager"].get_full_snapshot()
            if "raced" not in holder:
                holder["raced"] = True
                holder["manager"].blackout()
            return stale

        conn, scheduler, _ = make_connection(Mock(side_effect=[first, second]), snapshot=snapshot)
        manager = UniverseManager(conn.universe, logger=Mock())
        holder["manager"] = manager
        manager.apply_fixture_update("par", {1: 255, 2: 128})

        first.disconnect()
        scheduler.advance(1.0)

        assert second.sent == []
        assert second.sent_all == [0]
        assert manager.get_active_channel_count() == 0
        conn.close()

    def test_empty_snapshot_not_replayed(self):
        """Test no write happens when nothing is lit."""
        first, second = FakeTransport(), FakeTransport()
        conn, scheduler, _ = make_connection(Mock(side_effect=[first, second]))

        first.disconnect()
        scheduler.advance(1.0)

        assert second.sent == []
        conn.close()

    def test_replay_failure_is_absorbed(self):
        """Test a failing replay write leaves the connection up."""
        first, second = FakeTransport(), FakeTransport()
        second.send = Mock(side_effect=DmxWriteError("flaky"))
        conn, scheduler, _ = make_connection(Mock(side_effect=[first, second]), snapshot=lambda: {1: 1})

        first.disconnect()
        scheduler.advance(1.0)

        assert conn.get_status().state == ConnectionState.CONNECTED
        conn.close()

    def test_dead_transport_closed_on_disconnect(self):
        """Test the transport that reported the disconnect is released."""
        transport = FakeTransport()
        conn, _, _ = make_connection(Mock(side_effect=[transport, DmxConnectionError("gone")]))

        transport.disconnect(OSError("gone"))
        assert transport.close_calls == 1

        conn.close()
        assert transport.close_calls == 1

    def test_stale_disconnect_ignored(self):
        """Test a late disconnect from a replaced transport changes nothing."""
        first, second = FakeTransport(), FakeTransport()
        conn, scheduler, _ = make_connection(Mock(side_effect=[first, second]))

        first.disconnect()
        scheduler.advance(1.0)
        first.disconnect()

        assert conn.get_status().state == ConnectionState.CONNECTED
        assert scheduler.pending == []
        conn.close()

    def test_state_listener_errors_absorbed(self):
        """Test a raising on_state_change callback does not break the machine."""
        transport = FakeTransport()
        conn, _, _ = make_connection(Mock(return_value=transport),
                                     on_state_change=Mock(side_effect=RuntimeError("ui gone")))

        transport.disconnect()

        assert conn.get_status().state == ConnectionState.RECONNECTING
        conn.close()


class TestListenerLocking:
    """State listeners run without the connection lock held."""

    def test_listener_reading_manager_does_not_block_writes(self):
        """Test a listener that reads the manager while another thread writes."""
        transport = FakeTransport()
        listener_entered = threading.Event()
        holder = {}

        def on_state_change(status):
            if status.state == ConnectionState.DISCONNECTED:
                listener_entered.set()
                holder["manager"].get_active_channel_count()

        conn, _, _ = make_connection(Mock(side_effect=[transport, DmxConnectionError("gone")]),
                                     on_state_change=on_state_change)
        manager = UniverseManager(conn.universe, logger=Mock())
        holder["manager"] = manager

        def write_while_holding_manager():
            with manager.lock:
                listener_entered.wait(timeout=2.0)
                manager.apply_raw_update({1: 10})

        writer = threading.Thread(target=write_while_holding_manager, daemon=True)
        unplug = threading.Thread(target=transport.disconnect, args=(OSError("gone"),), daemon=True)
        writer.start()
        unplug.start()
        writer.join(timeout=5.0)
        unplug.join(timeout=5.0)

        assert not writer.is_alive()
        assert not unplug.is_alive()
        assert listener_entered.is_set()
        conn.close()


class TestStatusAndClose:
    """Status snapshots and shutdown."""

    def test_status_is_immutable_snapshot(self):
        """Test callers cannot mutate connection state through the status."""
        conn, _, _ = make_connection(Mock(return_value=FakeTransport()))

        status = conn.get_status()
        with pytest.raises(dataclasses.FrozenInstanceError):
            status.state = ConnectionState.DISCONNECTED
        assert status.to_dict()["state"] == "connected"
        conn.close()

    def test_close_is_idempotent(self):
        """Test close() closes the transport once."""
        transport = FakeTransport()
        conn, _, _ = make_connection(Mock(return_value=transport))

        conn.close()
        conn.close()

        assert transport.close_calls == 1
        assert conn.closed

    def test_close_cancels_pending_reconnect(self):
        """Test no reconnect attempt runs after close()."""
        factory = Mock(side_effect=[DmxConnectionError("no device"), FakeTransport()])
        conn, scheduler, _ = make_connection(factory)

        conn.close()
        scheduler.advance(60.0)

        assert factory.call_count == 1
        assert scheduler.pending == []

    def test_disconnect_after_close_ignored(self):
        """Test events arriving after close() do not schedule retries."""
        transport = FakeTransport()
        conn, scheduler, _ = make_connection(Mock(return_value=transport))

        conn.close()
        transport.disconnect()

        assert scheduler.pending == []
        assert conn.get_status().state == ConnectionState.CONNECTED

    def test_transport_opened_during_close_is_released(self):
        """Test a device that finishes opening after close() is closed again."""
        late = FakeTransport()
        holder = {}

        def factory():
            if "conn" not in holder:
                raise DmxConnectionError("no device")
            holder["conn"].close()
            return late

        conn, scheduler, _ = make_connection(factory)
        holder["conn"] = conn
        scheduler.advance(1.0)

        assert late.close_calls == 1
        assert not conn.is_connected

    def test_close_error_absorbed(self):
        """Test a transport that fails to close does not raise."""
        transport = FakeTransport()
        transport.close = Mock(side_effect=OSError("port busy"))
        conn, _, logger = make_connection(Mock(return_value=transport))

        conn.close()

        logger.error.assert_called()
