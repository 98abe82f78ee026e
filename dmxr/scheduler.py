"""
DMXr Schedulers - delayed callbacks for reconnect and flash-restore timers

ThreadingScheduler runs callbacks on daemon threading.Timer threads.
ManualScheduler only fires callbacks when advance() is called, so backoff
sequences can be checked without sleeping.
"""

import threading
from typing import Callable, List


class ScheduledCall:
    """Handle for a pending callback."""

    def __init__(self, delay: float, callback: Callable[[], None]):
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self._timer = None

    def cancel(self):
        self.cancelled = True
        if self._timer is not None:
            self._timer.cancel()


class ThreadingScheduler:
    """Runs each callback on its own daemon timer thread"""

    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledCall:
        call = ScheduledCall(delay, callback)

        def _fire():
            if not call.cancelled:
                callback()

        timer = threading.Timer(delay, _fire)
        timer.daemon = True
        call._timer = timer
        timer.start()
        return call


class ManualScheduler:
    """
    Deterministic scheduler driven by an explicit clock.

    Callbacks are queued with their due time and only run from advance().
    Callbacks scheduled while advancing are run in the same advance() call
    if they fall due inside the advanced window.
    """

    def __init__(self):
        self.now = 0.0
        self._pending: List[tuple] = []
        self._seq = 0

    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledCall:
        call = ScheduledCall(delay, callback)
        self._seq += 1
        self._pending.append((self.now + delay, self._seq, call))
        return call

    @property
    def pending(self) -> List[ScheduledCall]:
        """Calls that are still waiting to fire, in due order."""
        live = [entry for entry in self._pending if not entry[2].cancelled]
        return [entry[2] for entry in sorted(live, key=lambda e: (e[0], e[1]))]

    def advance(self, seconds: float) -> int:
        """Move the clock forward, firing due callbacks. Returns how many ran."""
        target = self.now + seconds
        fired = 0
        while True:
            due = [e for e in self._pending if e[0] <= target and not e[2].cancelled]
            if not due:
                break
            entry = min(due, key=lambda e: (e[0], e[1]))
            self._pending.remove(entry)
            self.now = max(self.now, entry[0])
            entry[2].callback()
            fired += 1
        self._pending = [e for e in self._pending if not e[2].cancelled]
        self.now = target
        return fired
