"""Ranked session state machine.

Sequences scenarios with the Strong-Weak-Weak heuristic, tracks time per
scenario, and commits session bests into the rank estimator when the session
ends. Status moves IDLE -> ACTIVE <-> SUMMARY -> COMPLETED, and ``reset``
returns to IDLE from anywhere.
"""

import functools
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from src.benchmark_data.models import BenchmarkScenario
from src.rank_engine.rank_estimator import RankEstimator
from src.session_manager.config import (
    DEFAULT_RANKED_INTERVAL_MINUTES,
    DIVERSITY_MARGIN,
    GAUNTLET_SIZE,
    RECENT_EXCLUSION_COUNT,
    SORT_EPSILON,
)
from src.session_manager.models import (
    RankedDayRecord,
    RankedSessionState,
    RankedSessionStatus,
    ScoreRun,
)
from src.session_manager.ranked_state_persistence import RankedStatePersistence
from src.session_manager.session_service import SessionService
from src.session_manager.session_settings import SessionSettingsService
from src.state_store import MemoryStore, StateStore

logger = logging.getLogger(__name__)

StateListener = Callable[[RankedSessionState], None]
SummarySink = Callable[[Dict], None]

_IN_PROGRESS = (RankedSessionStatus.ACTIVE, RankedSessionStatus.SUMMARY)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ScenarioMetrics:
    """Selection inputs for one scenario, clamped to the difficulty's ranks."""

    name: str
    category: str
    current: float
    peak: float

    @property
    def gap(self) -> float:
        return self.peak - self.current


def _compare(a: float, b: float) -> int:
    if abs(a - b) <= SORT_EPSILON:
        return 0
    return -1 if a < b else 1


def _by_gap(a: ScenarioMetrics, b: ScenarioMetrics) -> int:
    # Largest gap first, then higher peak, then name
    return _compare(b.gap, a.gap) or _compare(b.peak, a.peak) or (a.name > b.name) - (a.name < b.name)


def _by_strength(a: ScenarioMetrics, b: ScenarioMetrics) -> int:
    # Weakest first, then lower peak, then name
    return _compare(a.current, b.current) or _compare(a.peak, b.peak) or (a.name > b.name) - (a.name < b.name)


def select_strong_weak_weak(metrics: List[ScenarioMetrics]) -> List[str]:
    """Pick [strong, weak, weak] from the candidate metrics.

    Strong is the scenario furthest below its peak. The two weak slots are the
    lowest current values, with the third swapped for a scenario from another
    category when one sits within the diversity margin.
    """
    if len(metrics) < GAUNTLET_SIZE:
        return sorted({m.name for m in metrics})

    strong = sorted(metrics, key=functools.cmp_to_key(_by_gap))[0]
    rest = sorted(
        (m for m in metrics if m.name != strong.name),
        key=functools.cmp_to_key(_by_strength),
    )

    first_weak, second_weak = rest[0], rest[1]
    if second_weak.category == first_weak.category:
        for candidate in rest[2:]:
            if (
                candidate.category != first_weak.category
                and abs(candidate.current - second_weak.current) < DIVERSITY_MARGIN
            ):
                second_weak = candidate
                break

    return [strong.name, first_weak.name, second_weak.name]


class RankedSessionService:
    """Drives a ranked session on top of SessionService and RankEstimator."""

    def __init__(
        self,
        benchmark_service,
        session_service: SessionService,
        rank_estimator: RankEstimator,
        settings_service: Optional[SessionSettingsService] = None,
        store: Optional[StateStore] = None,
        player_id: str = "default",
        clock: Optional[Callable[[], datetime]] = None,
        summary_sink: Optional[SummarySink] = None,
    ):
        self.benchmark_service = benchmark_service
        self.session_service = session_service
        self.rank_estimator = rank_estimator
        self.settings_service = settings_service
        self.summary_sink = summary_sink
        self._clock = clock or _utc_now
        self._persistence = RankedStatePersistence(store or MemoryStore(), player_id)
        self._lock = threading.RLock()
        self._listeners: List[StateListener] = []

        state, self._day_records = self._persistence.load()
        self._status = state.status
        self._difficulty = state.difficulty
        self._sequence: List[str] = list(state.sequence)
        self._current_index = state.current_index
        self._accumulated: Dict[str, float] = dict(state.accumulated_scenario_seconds)
        self._played: List[str] = list(state.played_scenarios)
        self._start_time = state.start_time
        self._end_time: Optional[datetime] = None
        self._gauntlet_complete = state.initial_gauntlet_complete
        self._ranked_session_id = state.ranked_session_id
        self._scenario_started_at: Optional[datetime] = None
        if self._status == RankedSessionStatus.ACTIVE:
            self._scenario_started_at = self._clock()

        session_service.on_runs_accepted(self._on_runs_accepted)

    # ------------------------------------------------------------------
    # Subscriptions and snapshots
    # ------------------------------------------------------------------

    def on_state_changed(self, listener: StateListener):
        self._listeners.append(listener)

    def _notify(self):
        snapshot = self.state
        for listener in list(self._listeners):
            listener(snapshot)

    @property
    def state(self) -> RankedSessionState:
        with self._lock:
            return RankedSessionState(
                status=self._status,
                difficulty=self._difficulty,
                sequence=tuple(self._sequence),
                current_index=self._current_index,
                initial_estimates=dict(self._initial_estimates()),
                accumulated_scenario_seconds=dict(self._accumulated),
                played_scenarios=tuple(self._played),
                start_time=self._start_time,
                initial_gauntlet_complete=self._gauntlet_complete,
                ranked_session_id=self._ranked_session_id,
            )

    @property
    def current_scenario_name(self) -> Optional[str]:
        if self._status not in _IN_PROGRESS or not self._sequence:
            return None
        return self._sequence[min(self._current_index, len(self._sequence) - 1)]

    @property
    def elapsed_seconds(self) -> float:
        """Wall time since the session started (frozen once it ends)."""
        if self._start_time is None:
            return 0.0
        end = self._end_time or self._clock()
        return max(0.0, (end - self._start_time).total_seconds())

    @property
    def scenario_elapsed_seconds(self) -> float:
        name = self.current_scenario_name
        if name is None:
            return 0.0
        return self._accumulated.get(name, 0.0) + self._live_seconds(self._clock())

    @property
    def scenario_remaining_seconds(self) -> float:
        interval = DEFAULT_RANKED_INTERVAL_MINUTES
        if self.settings_service is not None:
            interval = self.settings_service.settings.ranked_interval_minutes
        return max(0.0, interval * 60 - self.scenario_elapsed_seconds)

    def has_played_current(self) -> bool:
        name = self.current_scenario_name
        return name is not None and name in self._played

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_session(self, difficulty: str):
        """Start (or resume today's) ranked session for a difficulty."""
        scenarios = self.benchmark_service.get_scenarios(difficulty)
        if not scenarios:
            logger.warning("No scenarios for difficulty %s; ranked session not started", difficulty)
            return

        now = self._clock()
        today = now.date().isoformat()

        with self._lock:
            record = self._day_records.get(difficulty)
            if record is not None and record.day == today and record.sequence:
                self._resume(difficulty, record)
            else:
                record = RankedDayRecord(day=today)
                self._day_records[difficulty] = record
                self._difficulty = difficulty
                self._sequence = []
                self._played = []
                self._current_index = 0
                self._gauntlet_complete = False
                self._append_batch(scenarios, exclude=[])
                logger.info("Built ranked sequence for %s: %s", difficulty, self._sequence)

            self._status = RankedSessionStatus.ACTIVE
            self._accumulated = {}
            self._start_time = now
            self._end_time = None
            self._scenario_started_at = now
            self._ranked_session_id = f"ranked_{int(now.timestamp() * 1000)}"

            if self._current_index >= len(self._sequence):
                if self._gauntlet_complete:
                    self._extend(exclude_recent=True)
                else:
                    self._current_index = len(self._sequence) - 1

            self._save()

        self.session_service.start_ranked_session(now)
        logger.info(
            "Ranked session %s started (%s, index %d)",
            self._ranked_session_id,
            difficulty,
            self._current_index,
        )
        self._notify()

    def _resume(self, difficulty: str, record: RankedDayRecord):
        self._difficulty = difficulty
        self._sequence = list(record.sequence)
        self._played = list(record.played_scenarios)

        played_indices = [i for i, name in enumerate(self._sequence) if name in self._played]
        self._current_index = max(played_indices) + 1 if played_indices else 0
        self._gauntlet_complete = all(
            name in self._played for name in self._sequence[:GAUNTLET_SIZE]
        )
        logger.info("Resuming today's %s sequence at index %d", difficulty, self._current_index)

    def advance(self):
        """Move to the next scenario, or to SUMMARY past the initial gauntlet."""
        now = self._clock()
        with self._lock:
            if self._status != RankedSessionStatus.ACTIVE:
                return
            self._accumulate_current(now)

            if self._current_index + 1 < len(self._sequence):
                self._current_index += 1
                self._scenario_started_at = now
            elif self._gauntlet_complete:
                self._extend(exclude_recent=True)
                self._current_index += 1
                self._scenario_started_at = now
            else:
                self._status = RankedSessionStatus.SUMMARY
                self._scenario_started_at = None
            self._save()
        self._notify()

    def retreat(self):
        """Move back one scenario; from SUMMARY, return to the last one."""
        now = self._clock()
        with self._lock:
            if self._status == RankedSessionStatus.SUMMARY:
                self._status = RankedSessionStatus.ACTIVE
            elif self._status == RankedSessionStatus.ACTIVE and self._current_index > 0:
                self._accumulate_current(now)
                self._current_index -= 1
            else:
                return
            self._scenario_started_at = now
            self._save()
        self._notify()

    def extend_session(self):
        """Append another Strong-Weak-Weak batch and continue playing."""
        now = self._clock()
        with self._lock:
            if self._status not in _IN_PROGRESS:
                return
            first_new = len(self._sequence)
            self._extend(exclude_recent=True)
            if self._status == RankedSessionStatus.SUMMARY:
                self._current_index = first_new
                self._status = RankedSessionStatus.ACTIVE
                self._scenario_started_at = now
            self._save()
        logger.info("Extended ranked session to %d scenarios", len(self._sequence))
        self._notify()

    def end_session(self) -> Optional[Dict]:
        """Commit ranked-window bests into the estimator and complete.

        Returns:
            The session summary, or None if no session was in progress.
        """
        now = self._clock()
        with self._lock:
            if self._status not in _IN_PROGRESS:
                return None
            self._accumulate_current(now)

            bests = self.session_service.get_all_ranked_scenario_bests()
            targets = self._initial_estimates()
            results: Dict[str, float] = {}

            for name in dict.fromkeys(self._sequence):
                if name not in bests:
                    continue
                scenario = self._find_scenario(name)
                session_rank = self.rank_estimator.get_scenario_continuous_value(bests[name], scenario)
                self.rank_estimator.evolve_scenario_estimate(name, session_rank, targets.get(name))
                results[name] = session_rank

            self._status = RankedSessionStatus.COMPLETED
            self._scenario_started_at = None
            self._end_time = now
            self._save()
            summary = self._build_summary(results)

        self.session_service.stop_ranked_session()
        logger.info(
            "Ranked session %s completed: %d scenario(s) evolved",
            summary["ranked_session_id"],
            len(results),
        )
        self._notify()
        self._send_summary(summary)
        return summary

    def reset(self):
        """Abandon the session without evolving; today's sequence is kept."""
        with self._lock:
            self._status = RankedSessionStatus.IDLE
            self._difficulty = None
            self._sequence = []
            self._current_index = 0
            self._accumulated = {}
            self._played = []
            self._start_time = None
            self._end_time = None
            self._gauntlet_complete = False
            self._ranked_session_id = None
            self._scenario_started_at = None
            self._save()
        self.session_service.stop_ranked_session()
        logger.info("Ranked session reset")
        self._notify()

    # ------------------------------------------------------------------
    # Session events
    # ------------------------------------------------------------------

    def _on_runs_accepted(self, runs: List[ScoreRun]):
        # One entry per accepted run: repeated plays each accrue penalty
        played_now = []
        with self._lock:
            if self._status == RankedSessionStatus.ACTIVE:
                record = self._day_records.get(self._difficulty)
                for run in runs:
                    name = run.scenario_name
                    if name not in self._sequence:
                        continue
                    played_now.append(name)
                    if name not in self._played:
                        self._played.append(name)
                    if record is not None and name not in record.played_scenarios:
                        record.played_scenarios.append(name)
                if played_now:
                    self._save()

        if not played_now:
            return
        for name in played_now:
            self.rank_estimator.record_play(name)
        self._notify()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _extend(self, exclude_recent: bool):
        self._gauntlet_complete = True
        scenarios = self.benchmark_service.get_scenarios(self._difficulty)
        exclude = self._sequence[-RECENT_EXCLUSION_COUNT:] if exclude_recent else []
        self._append_batch(scenarios, exclude)

    def _append_batch(self, scenarios: List[BenchmarkScenario], exclude: List[str]):
        pool = [s for s in scenarios if s.name not in exclude]
        if len(pool) < GAUNTLET_SIZE:
            pool = list(scenarios)

        batch = select_strong_weak_weak(self._metrics(pool))
        self._sequence.extend(batch)

        record = self._day_records[self._difficulty]
        record.sequence = list(self._sequence)
        self._capture_targets(record, batch)

    def _capture_targets(self, record: RankedDayRecord, names: List[str]):
        today = record.day
        for name in names:
            if name in record.initial_estimates:
                continue
            # Targets are shared by every difficulty played today
            earlier = next(
                (
                    other.initial_estimates[name]
                    for other in self._day_records.values()
                    if other.day == today and name in other.initial_estimates
                ),
                None,
            )
            if earlier is None:
                earlier = self.rank_estimator.get_scenario_estimate(name).continuous_value
            record.initial_estimates[name] = earlier

    def _metrics(self, scenarios: List[BenchmarkScenario]) -> List[ScenarioMetrics]:
        max_level = len(self.benchmark_service.get_rank_names(self._difficulty))
        estimates = self.rank_estimator.get_rank_estimate_map()

        metrics = []
        for scenario in scenarios:
            estimate = estimates.get(scenario.name)
            current = max(0.0, estimate.continuous_value) if estimate else 0.0
            peak = max(0.0, estimate.highest_achieved) if estimate else 0.0
            if max_level > 0:
                current = min(current, float(max_level))
                peak = min(peak, float(max_level))
            metrics.append(ScenarioMetrics(scenario.name, scenario.category, current, peak))
        return metrics

    def _find_scenario(self, name: str) -> Optional[BenchmarkScenario]:
        for scenario in self.benchmark_service.get_scenarios(self._difficulty):
            if scenario.name == name:
                return scenario
        return self.benchmark_service.find_scenario(name)

    def _initial_estimates(self) -> Dict[str, float]:
        record = self._day_records.get(self._difficulty) if self._difficulty else None
        return record.initial_estimates if record is not None else {}

    def _live_seconds(self, now: datetime) -> float:
        if self._scenario_started_at is None:
            return 0.0
        return max(0.0, (now - self._scenario_started_at).total_seconds())

    def _accumulate_current(self, now: datetime):
        name = self.current_scenario_name
        if name is not None:
            self._accumulated[name] = self._accumulated.get(name, 0.0) + self._live_seconds(now)
        self._scenario_started_at = now

    def _build_summary(self, results: Dict[str, float]) -> Dict:
        targets = self._initial_estimates()
        return {
            "ranked_session_id": self._ranked_session_id,
            "difficulty": self._difficulty,
            "start_time": self._start_time.isoformat() if self._start_time else None,
            "end_time": self._end_time.isoformat() if self._end_time else None,
            "sequence": list(self._sequence),
            "played_scenarios": list(self._played),
            "accumulated_scenario_seconds": dict(self._accumulated),
            "results": [
                {
                    "scenario_name": name,
                    "session_rank": session_rank,
                    "initial_estimate": targets.get(name),
                }
                for name, session_rank in results.items()
            ],
        }

    def _send_summary(self, summary: Dict):
        if self.summary_sink is None:
            return
        try:
            self.summary_sink(summary)
        except Exception:
            logger.exception("Summary sink failed for %s", summary["ranked_session_id"])

    def _save(self):
        self._persistence.save(self.state, self._day_records)
