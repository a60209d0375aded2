"""Shared fixtures: injectable clock, manual scheduler, in-memory store."""

from datetime import datetime, timedelta, timezone

import pytest

from src.rank_engine.rank_service import RankService
from src.session_manager.scheduler import ScheduledTask, Scheduler
from src.state_store import MemoryStore

START = datetime(2026, 3, 10, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


class _ManualTask(ScheduledTask):
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler(Scheduler):
    """Collects scheduled callbacks; tests fire them explicitly."""

    def __init__(self):
        self.tasks = []

    def schedule(self, delay_seconds, callback):
        task = _ManualTask(delay_seconds, callback)
        self.tasks.append(task)
        return task

    @property
    def pending(self):
        return [t for t in self.tasks if not t.cancelled]

    def fire_all(self, include_cancelled=False):
        """Run callbacks; cancelled ones too when simulating an in-flight race."""
        for task in list(self.tasks):
            if include_cancelled or not task.cancelled:
                task.callback()


# ------------------------------------------------------------------
# Lightweight factories – cheap to construct, no I/O
# ------------------------------------------------------------------

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture(scope="module")
def rank_service():
    return RankService()
