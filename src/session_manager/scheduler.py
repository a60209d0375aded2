"""Cancellable delayed callbacks for passive session expiration."""

import threading
from typing import Callable


class ScheduledTask:
    """Handle for a scheduled callback."""

    def cancel(self):
        raise NotImplementedError


class Scheduler:
    """Interface: run ``callback`` once after ``delay_seconds``."""

    def schedule(self, delay_seconds: float, callback: Callable[[], None]) -> ScheduledTask:
        raise NotImplementedError


class _TimerTask(ScheduledTask):
    def __init__(self, timer: threading.Timer):
        self._timer = timer

    def cancel(self):
        # Best effort: a callback already running is not interrupted
        self._timer.cancel()


class ThreadingScheduler(Scheduler):
    """Runs callbacks on daemon ``threading.Timer`` threads."""

    def schedule(self, delay_seconds: float, callback: Callable[[], None]) -> ScheduledTask:
        timer = threading.Timer(max(0.0, delay_seconds), callback)
        timer.daemon = True
        timer.start()
        return _TimerTask(timer)
