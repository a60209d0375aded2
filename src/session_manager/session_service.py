"""Session tracking - best scores within an inactivity-bounded play window.

A session is a burst of runs where consecutive runs are no more than the
configured timeout apart. The timeout is read live, so raising it in the
settings re-activates a window that has only just lapsed.
"""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from src.rank_engine.models import RankResult, parse_timestamp
from src.rank_engine.rank_service import RankService
from src.session_manager.config import SESSION_STATE_PREFIX
from src.session_manager.models import RankedRun, ScoreRun, SessionRankRecord
from src.session_manager.scheduler import ScheduledTask, Scheduler, ThreadingScheduler
from src.session_manager.session_settings import SessionSettings, SessionSettingsService
from src.state_store import MemoryStore, StateStore, namespaced_key

logger = logging.getLogger(__name__)

SessionListener = Callable[[List[str]], None]
RunsListener = Callable[[List[ScoreRun]], None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _is_better(candidate: RankResult, current: RankResult) -> bool:
    if candidate.rank_level != current.rank_level:
        return candidate.rank_level > current.rank_level
    return candidate.progress_percentage > current.progress_percentage


class SessionService:
    """Tracks the current session window and the open ranked window."""

    def __init__(
        self,
        rank_service: RankService,
        settings_service: Optional[SessionSettingsService] = None,
        store: Optional[StateStore] = None,
        player_id: str = "default",
        clock: Optional[Callable[[], datetime]] = None,
        scheduler: Optional[Scheduler] = None,
    ):
        self.rank_service = rank_service
        self.store = store or MemoryStore()
        self.player_id = player_id
        self._clock = clock or _utc_now
        self._scheduler = scheduler or ThreadingScheduler()
        self._lock = threading.RLock()
        self._listeners: List[SessionListener] = []
        self._run_listeners: List[RunsListener] = []

        self._session_id: Optional[str] = None
        self._last_run: Optional[datetime] = None
        self._scenario_bests: Dict[str, SessionRankRecord] = {}
        self._difficulty_bests: Dict[str, SessionRankRecord] = {}
        self._ranked_start: Optional[datetime] = None
        self._ranked_runs: List[RankedRun] = []
        self._processed: Set[Tuple[str, float, int]] = set()
        self._dedup_floor: Optional[int] = None

        self._timer: Optional[ScheduledTask] = None
        self._generation = 0

        self._timeout_minutes = SessionSettings().session_timeout_minutes
        self._restore()

        if settings_service is not None:
            self._timeout_minutes = settings_service.settings.session_timeout_minutes
            settings_service.subscribe(self._on_settings_changed)

    @property
    def storage_key(self) -> str:
        return namespaced_key(SESSION_STATE_PREFIX, self.player_id)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def on_session_updated(self, listener: SessionListener):
        """Register ``listener(scenario_names)``, fired once per changing batch."""
        self._listeners.append(listener)

    def on_runs_accepted(self, listener: RunsListener):
        """Register ``listener(runs)`` with every accepted run of a batch, in order.

        Unlike ``on_session_updated`` repeats of a scenario are not collapsed.
        """
        self._run_listeners.append(listener)

    def _notify(self, scenario_names: List[str]):
        for listener in list(self._listeners):
            listener(scenario_names)

    def _notify_runs(self, runs: List[ScoreRun]):
        for listener in list(self._run_listeners):
            listener(runs)

    # ------------------------------------------------------------------
    # Run registration
    # ------------------------------------------------------------------

    def register_run(self, run: ScoreRun):
        self.register_multiple_runs([run])

    def register_multiple_runs(self, runs: Iterable[ScoreRun]):
        """Fold a batch of runs into the session window.

        Duplicate runs (same scenario, score and second) are skipped, as are
        runs from before the dedup horizon of an earlier window.
        Listeners fire once for the batch, and not at all if nothing changed.
        """
        updated: List[str] = []
        accepted: List[ScoreRun] = []

        with self._lock:
            for run in runs:
                key = run.dedup_key()
                if self._is_processed(key):
                    logger.debug("Skipping duplicate or stale run %s", key)
                    continue
                self._processed.add(key)
                self._apply_run(run)
                accepted.append(run)
                if run.scenario_name not in updated:
                    updated.append(run.scenario_name)

            if not updated:
                return

            self._persist()
            self._schedule_expiration()

        self._notify(updated)
        self._notify_runs(accepted)

    def _is_processed(self, key: Tuple[str, float, int]) -> bool:
        if self._dedup_floor is not None and key[2] < self._dedup_floor:
            return True
        return key in self._processed

    def _apply_run(self, run: ScoreRun):
        timeout = timedelta(minutes=self._timeout_minutes)
        if self._last_run is None or run.timestamp - self._last_run > timeout:
            self._begin_session(run.timestamp)

        if self._last_run is None or run.timestamp > self._last_run:
            self._last_run = run.timestamp

        if run.scenario is not None:
            rank_result = self.rank_service.calculate_rank(run.score, run.scenario)
            record = SessionRankRecord(run.scenario_name, run.score, rank_result)

            best = self._scenario_bests.get(run.scenario_name)
            if best is None or run.score > best.best_score:
                self._scenario_bests[run.scenario_name] = record

            if run.difficulty:
                current = self._difficulty_bests.get(run.difficulty)
                if current is None or _is_better(rank_result, current.rank_result):
                    self._difficulty_bests[run.difficulty] = record

        if self._ranked_start is not None and run.timestamp >= self._ranked_start:
            self._ranked_runs.append(RankedRun(run.scenario_name, run.score, run.timestamp))

        logger.debug("Registered run %s = %s in %s", run.scenario_name, run.score, self._session_id)

    def _begin_session(self, started_at: datetime):
        self._clear_window()
        self._session_id = f"session_{int(started_at.timestamp() * 1000)}"
        self._prune_processed(started_at)
        logger.info("New session %s", self._session_id)

    def _prune_processed(self, started_at: datetime):
        """Drop dedup keys from before the new window (or the ranked window).

        The horizon only moves forward, and runs older than it are rejected,
        so a replayed old run cannot slip back in once its key is gone.
        """
        horizon = started_at - timedelta(minutes=self._timeout_minutes)
        if self._ranked_start is not None and self._ranked_start < horizon:
            horizon = self._ranked_start
        floor = int(horizon.timestamp())
        if self._dedup_floor is not None and floor <= self._dedup_floor:
            return

        self._dedup_floor = floor
        before = len(self._processed)
        self._processed = {key for key in self._processed if key[2] >= floor}
        logger.debug("Pruned %d dedup key(s)", before - len(self._processed))

    def _clear_window(self):
        self._session_id = None
        self._last_run = None
        self._scenario_bests = {}
        self._difficulty_bests = {}

    def reset_session(self):
        """Clear the session window immediately and notify listeners."""
        with self._lock:
            self._cancel_expiration()
            self._clear_window()
            self._persist()
        logger.info("Session reset")
        self._notify([])

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    @property
    def last_run_timestamp(self) -> Optional[datetime]:
        return self._last_run

    @property
    def session_timeout_seconds(self) -> float:
        return self._timeout_minutes * 60

    def is_session_active(self, now: Optional[datetime] = None) -> bool:
        if self._last_run is None:
            return False
        now = now or self._clock()
        return (now - self._last_run).total_seconds() <= self.session_timeout_seconds

    def get_scenario_session_best(self, scenario_name: str) -> Optional[SessionRankRecord]:
        return self._scenario_bests.get(scenario_name)

    def get_all_scenario_session_bests(self) -> Dict[str, SessionRankRecord]:
        with self._lock:
            return dict(self._scenario_bests)

    def get_difficulty_session_best(self, difficulty: str) -> Optional[SessionRankRecord]:
        return self._difficulty_bests.get(difficulty)

    # ------------------------------------------------------------------
    # Ranked window
    # ------------------------------------------------------------------

    def start_ranked_session(self, start_time: datetime):
        """Open a ranked window; runs at or after ``start_time`` are collected."""
        with self._lock:
            self._ranked_start = start_time
            self._ranked_runs = []
            self._persist()
        logger.info("Ranked window opened at %s", start_time.isoformat())

    def stop_ranked_session(self):
        with self._lock:
            self._ranked_start = None
            self._ranked_runs = []
            self._persist()
        logger.info("Ranked window closed")

    def get_all_ranked_session_runs(self) -> List[RankedRun]:
        with self._lock:
            return list(self._ranked_runs)

    def get_all_ranked_scenario_bests(self) -> Dict[str, float]:
        """Best score per scenario within the ranked window."""
        bests: Dict[str, float] = {}
        with self._lock:
            for run in self._ranked_runs:
                if run.scenario_name not in bests or run.score > bests[run.scenario_name]:
                    bests[run.scenario_name] = run.score
        return bests

    # ------------------------------------------------------------------
    # Settings and expiration
    # ------------------------------------------------------------------

    def _on_settings_changed(self, settings: SessionSettings):
        with self._lock:
            if settings.session_timeout_minutes == self._timeout_minutes:
                return
            self._timeout_minutes = settings.session_timeout_minutes
            self._schedule_expiration()
        logger.info("Session timeout set to %s minutes", settings.session_timeout_minutes)
        self._notify([])

    def _schedule_expiration(self):
        self._cancel_expiration()
        if self._last_run is None:
            return

        expires_at = self._last_run + timedelta(minutes=self._timeout_minutes)
        delay = (expires_at - self._clock()).total_seconds()
        if delay <= 0:
            return

        generation = self._generation
        self._timer = self._scheduler.schedule(delay, lambda: self._on_expired(generation))

    def _cancel_expiration(self):
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_expired(self, generation: int):
        with self._lock:
            if generation != self._generation:
                return
            self._timer = None
        logger.info("Session %s expired", self._session_id)
        self._notify([])

    def close(self):
        """Cancel any pending expiration callback."""
        with self._lock:
            self._cancel_expiration()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _persist(self):
        self.store.set(self.storage_key, self._state_to_dict())

    def _state_to_dict(self) -> Dict:
        return {
            "session_id": self._session_id,
            "last_run_timestamp": self._last_run.isoformat() if self._last_run else None,
            "scenario_bests": {
                name: {
                    "best_score": record.best_score,
                    "rank_result": record.rank_result.to_dict(),
                }
                for name, record in self._scenario_bests.items()
            },
            "difficulty_bests": {
                difficulty: {
                    "scenario_name": record.scenario_name,
                    "best_score": record.best_score,
                    "rank_result": record.rank_result.to_dict(),
                }
                for difficulty, record in self._difficulty_bests.items()
            },
            "ranked_start": self._ranked_start.isoformat() if self._ranked_start else None,
            "ranked_runs": [
                {
                    "scenario_name": run.scenario_name,
                    "score": run.score,
                    "timestamp": run.timestamp.isoformat(),
                }
                for run in self._ranked_runs
            ],
        }

    def _restore(self):
        data = self.store.get(self.storage_key)
        if not isinstance(data, dict):
            return

        try:
            self._session_id = data.get("session_id")
            self._last_run = parse_timestamp(data.get("last_run_timestamp"), None)

            for name, entry in (data.get("scenario_bests") or {}).items():
                self._scenario_bests[name] = SessionRankRecord(
                    scenario_name=name,
                    best_score=float(entry["best_score"]),
                    rank_result=RankResult.from_dict(entry.get("rank_result", {})),
                )

            for difficulty, entry in (data.get("difficulty_bests") or {}).items():
                self._difficulty_bests[difficulty] = SessionRankRecord(
                    scenario_name=entry["scenario_name"],
                    best_score=float(entry["best_score"]),
                    rank_result=RankResult.from_dict(entry.get("rank_result", {})),
                )

            self._ranked_start = parse_timestamp(data.get("ranked_start"), None)
            for entry in data.get("ranked_runs") or []:
                run = RankedRun(
                    scenario_name=entry["scenario_name"],
                    score=float(entry["score"]),
                    timestamp=parse_timestamp(entry["timestamp"], self._clock()),
                )
                self._ranked_runs.append(run)
                self._processed.add(
                    (run.scenario_name, run.score, int(run.timestamp.timestamp()))
                )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("Discarding malformed session state for %s: %s", self.player_id, e)
            self._clear_window()
            self._ranked_start = None
            self._ranked_runs = []
            self._processed = set()
            return

        logger.info("Restored session %s for %s", self._session_id, self.player_id)
