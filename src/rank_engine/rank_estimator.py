"""Rank estimator - persistent per-scenario skill (RU) with decay and penalty.

A scenario's Rank Unit (RU) is a real number whose integer part is the
achieved rank level and whose fractional part is the progress toward the next
level. Estimates evolve only upward from play, decay toward a floor anchored
to the historical peak, and are averaged hierarchically (category ->
subcategory -> scenario) into a holistic rank.
"""

import logging
import math
import statistics
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from src.benchmark_data.models import BenchmarkScenario
from src.rank_engine.config import (
    ANCHOR_OFFSET,
    CHANGE_TOLERANCE,
    DECAY_FLOOR_OFFSET,
    DECAY_HALF_LIFE_DAYS,
    DECAY_LINEAR_HORIZON_DAYS,
    DECAY_MIN_DAYS,
    ESTIMATE_STORAGE_PREFIX,
    LEARNING_RATE,
    PEAK_SEED_BEST_FRACTION,
    PENALTY_ACCRUAL_RATE,
    PENALTY_CEILING,
    PENALTY_DAILY_LIFT,
    PENALTY_DECAY_PER_DAY,
    UNRANKED_NAME,
)
from src.rank_engine.models import EstimatedRank, ScenarioEstimate
from src.rank_engine.rank_service import find_rank_index, virtual_interval
from src.state_store import StateStore, namespaced_key

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60

EstimateListener = Callable[[str], None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RankEstimator:
    """Converts scores to RU, evolves per-scenario estimates, and aggregates.

    All read-modify-write sequences on the estimate map run under a lock so
    timer-driven maintenance and score ingestion cannot interleave.
    """

    def __init__(
        self,
        benchmark_service,
        store: StateStore,
        player_id: str = "default",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.benchmark_service = benchmark_service
        self.store = store
        self.player_id = player_id
        self._clock = clock or _utc_now
        self._lock = threading.RLock()
        self._listeners: List[EstimateListener] = []

    @property
    def storage_key(self) -> str:
        return namespaced_key(ESTIMATE_STORAGE_PREFIX, self.player_id)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def on_estimate_updated(self, listener: EstimateListener):
        """Register ``listener(scenario_name)``, fired after each persisted change."""
        self._listeners.append(listener)

    def _notify(self, scenario_names: List[str]):
        for name in scenario_names:
            for listener in list(self._listeners):
                listener(name)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_rank_estimate_map(self) -> Dict[str, ScenarioEstimate]:
        """Return a copy of every stored estimate for this player."""
        with self._lock:
            return self._load_map()

    def get_scenario_estimate(self, scenario_name: str) -> ScenarioEstimate:
        """Stored estimate, or an unranked default for unknown scenarios."""
        with self._lock:
            estimate = self._load_map().get(scenario_name)
        return estimate or ScenarioEstimate.unranked(self._clock())

    def get_scenario_continuous_value(
        self, score: float, scenario: Optional[BenchmarkScenario]
    ) -> float:
        """Convert a raw score to RU.

        Below the first threshold RU is ``score / T0``. Inside the table it is
        the threshold's level in the tier's rank order plus the fraction of
        the interval, so ranks a scenario leaves blank are skipped. Beyond
        the top threshold the last interval width is extrapolated.
        """
        thresholds = scenario.sorted_thresholds() if scenario else []
        if not thresholds:
            return 0.0

        rank_index = find_rank_index(score, thresholds)

        if rank_index == -1:
            first = thresholds[0][1]
            if first <= 0:
                return 0.0
            return max(0.0, score / first)

        lower_name, lower = thresholds[rank_index]
        base_level = scenario.rank_level(lower_name, rank_index)

        if rank_index == len(thresholds) - 1:
            return base_level + (score - lower) / virtual_interval(thresholds)

        upper = thresholds[rank_index + 1][1]
        width = upper - lower
        if width <= 0:
            width = 1.0
        return base_level + (score - lower) / width

    def get_estimate_for_value(self, value: float, difficulty: str) -> EstimatedRank:
        """Map an RU value to a rank name and progress for the difficulty."""
        rank_names = self.benchmark_service.get_rank_names(difficulty)
        return self._build_estimate(value, rank_names)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def evolve_scenario_estimate(
        self,
        scenario_name: str,
        session_rank: float,
        initial_value_hint: Optional[float] = None,
    ):
        """Move a scenario's estimate toward the RU achieved in a session.

        ``initial_value_hint`` is the value captured when the ranked sequence
        was built; evolving from it keeps repeated same-day evolutions at the
        best result instead of compounding.
        """
        now = self._clock()

        with self._lock:
            estimate_map = self._load_map()
            current = estimate_map.get(scenario_name) or ScenarioEstimate.unranked(now)

            base = current.continuous_value
            if initial_value_hint is not None and initial_value_hint >= 0:
                base = initial_value_hint

            anchor_floor = max(0.0, session_rank - ANCHOR_OFFSET)
            if base < anchor_floor:
                computed = anchor_floor
            else:
                computed = base + LEARNING_RATE * (session_rank - base)

            new_value = max(current.continuous_value, computed)

            estimate_map[scenario_name] = current.evolve(
                continuous_value=new_value,
                highest_achieved=max(current.highest_achieved, new_value),
                last_updated=now,
                last_played=now,
            )
            self._save_map(estimate_map)

        logger.info(
            "Evolved %s: %.3f -> %.3f (session RU %.3f)",
            scenario_name,
            current.continuous_value,
            new_value,
            session_rank,
        )
        self._notify([scenario_name])

    def record_play(self, scenario_name: str):
        """Accrue overplay penalty: move 10% of the way to the ceiling."""
        now = self._clock()

        with self._lock:
            estimate_map = self._load_map()
            current = estimate_map.get(scenario_name) or ScenarioEstimate.unranked(now)

            new_penalty = current.penalty + (PENALTY_CEILING - current.penalty) * PENALTY_ACCRUAL_RATE
            estimate_map[scenario_name] = current.evolve(
                penalty=min(PENALTY_CEILING, new_penalty),
                last_played=now,
                last_updated=now,
            )
            self._save_map(estimate_map)

        logger.debug("Recorded play for %s (penalty %.3f)", scenario_name, new_penalty)
        self._notify([scenario_name])

    def apply_daily_decay(self):
        """Decay estimates idle for more than a day toward ``peak - 2*phi``.

        Takes the lower of a 30-day half-life curve and a 90-day linear ramp,
        clamped at the floor. Penalty also fades with idle time. Only entries
        that actually changed are rewritten.
        """
        now = self._clock()
        changed: List[str] = []

        with self._lock:
            estimate_map = self._load_map()

            for name, estimate in estimate_map.items():
                days_passed = (now - estimate.last_updated).total_seconds() / SECONDS_PER_DAY
                if days_passed <= DECAY_MIN_DAYS:
                    continue

                new_value = self._decayed_value(estimate, days_passed)
                new_penalty = max(0.0, estimate.penalty - PENALTY_DECAY_PER_DAY * days_passed)

                value_changed = abs(new_value - estimate.continuous_value) > CHANGE_TOLERANCE
                penalty_changed = abs(new_penalty - estimate.penalty) > CHANGE_TOLERANCE
                if not (value_changed or penalty_changed):
                    continue

                estimate_map[name] = estimate.evolve(
                    continuous_value=new_value,
                    penalty=new_penalty,
                    last_updated=now,
                )
                changed.append(name)

            if changed:
                self._save_map(estimate_map)

        if changed:
            logger.info("Daily decay updated %d scenario(s)", len(changed))
        self._notify(changed)

    def apply_penalty_lift(self):
        """Lift 0.5 penalty per scenario, at most once per calendar day."""
        now = self._clock()
        today = now.date()
        changed: List[str] = []

        with self._lock:
            estimate_map = self._load_map()

            for name, estimate in estimate_map.items():
                if estimate.last_decayed.astimezone(now.tzinfo).date() >= today:
                    continue

                estimate_map[name] = estimate.evolve(
                    penalty=max(0.0, estimate.penalty - PENALTY_DAILY_LIFT),
                    last_decayed=now,
                )
                changed.append(name)

            if changed:
                self._save_map(estimate_map)

        if changed:
            logger.info("Penalty lift applied to %d scenario(s)", len(changed))
        self._notify(changed)

    def initialize_peak_ranks(self):
        """Seed peaks for unplayed scenarios from the player's played values.

        Seed = min(median of played values, half the best played value).
        Existing peaks are never lowered.
        """
        now = self._clock()
        seeded: List[str] = []

        with self._lock:
            estimate_map = self._load_map()
            played = [e.continuous_value for e in estimate_map.values() if e.continuous_value > 0]
            if not played:
                return

            seed = min(statistics.median(played), PEAK_SEED_BEST_FRACTION * max(played))

            for scenario in self.benchmark_service.get_all_scenarios():
                existing = estimate_map.get(scenario.name)
                if existing is None:
                    estimate_map[scenario.name] = ScenarioEstimate.unranked(now).evolve(
                        highest_achieved=seed
                    )
                    seeded.append(scenario.name)
                elif existing.highest_achieved < seed:
                    estimate_map[scenario.name] = existing.evolve(highest_achieved=seed)
                    seeded.append(scenario.name)

            if seeded:
                self._save_map(estimate_map)

        if seeded:
            logger.info("Seeded peak %.3f for %d scenario(s)", seed, len(seeded))
        self._notify(seeded)

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    def calculate_holistic_estimate_rank(self, difficulty: str) -> EstimatedRank:
        """Hierarchical average of the difficulty's pool.

        Scenarios are averaged within subcategories, subcategories within
        categories, then categories, so every category weighs the same.
        Each contribution is capped at the pool's max rank level and reduced
        by the scenario's penalty.
        """
        scenarios = self.benchmark_service.get_scenarios(difficulty)
        rank_names = self.benchmark_service.get_rank_names(difficulty)

        if not scenarios:
            return EstimatedRank.empty()

        cap = self._max_rank_level(scenarios, rank_names)
        estimate_map = self.get_rank_estimate_map()

        tree: Dict[str, Dict[str, List[float]]] = {}
        for scenario in scenarios:
            estimate = estimate_map.get(scenario.name)
            value = 0.0
            if estimate is not None:
                value = estimate.effective_value()
                if cap > 0:
                    value = min(value, float(cap))
                value = max(0.0, value - estimate.penalty)
            tree.setdefault(scenario.category, {}).setdefault(scenario.subcategory, []).append(value)

        category_means = []
        for subcategories in tree.values():
            subcategory_means = [sum(values) / len(values) for values in subcategories.values()]
            category_means.append(sum(subcategory_means) / len(subcategory_means))

        holistic = sum(category_means) / len(category_means)
        return self._build_estimate(holistic, rank_names)

    @staticmethod
    def _max_rank_level(scenarios: List[BenchmarkScenario], rank_names: List[str]) -> int:
        if rank_names:
            return len(rank_names)
        return max((len(s.thresholds) for s in scenarios), default=0)

    @staticmethod
    def _decayed_value(estimate: ScenarioEstimate, days_passed: float) -> float:
        current = estimate.continuous_value
        if not estimate.is_ranked:
            return current

        # Ranked values stay ranked: the floor never drops below zero
        floor = max(0.0, estimate.highest_achieved - DECAY_FLOOR_OFFSET)
        if current <= floor:
            return current

        gap = current - floor
        exponential = floor + gap * math.pow(0.5, days_passed / DECAY_HALF_LIFE_DAYS)
        linear = current - gap * (days_passed / DECAY_LINEAR_HORIZON_DAYS)
        return max(floor, min(exponential, linear))

    @staticmethod
    def _build_estimate(value: float, rank_names: List[str]) -> EstimatedRank:
        value = max(0.0, value)
        rank_level = int(math.floor(value))
        progress = int(math.floor((value - rank_level) * 100 + 0.5))
        progress = max(0, min(99, progress))

        if rank_level < 1 or not rank_names:
            rank_name = UNRANKED_NAME
        else:
            rank_name = rank_names[min(rank_level - 1, len(rank_names) - 1)]

        return EstimatedRank(
            rank_name=rank_name,
            rank_level=rank_level,
            progress_to_next=progress,
            continuous_value=value,
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load_map(self) -> Dict[str, ScenarioEstimate]:
        raw = self.store.get(self.storage_key)
        if raw is None:
            return {}
        if not isinstance(raw, dict):
            logger.warning("Ignoring malformed estimate map for %s", self.player_id)
            return {}

        now = self._clock()
        estimate_map: Dict[str, ScenarioEstimate] = {}
        for name, data in raw.items():
            if not isinstance(data, dict):
                logger.warning("Skipping malformed estimate for %s", name)
                continue
            try:
                estimate_map[name] = ScenarioEstimate.from_dict(data, now)
            except (TypeError, ValueError) as e:
                logger.warning("Skipping malformed estimate for %s: %s", name, e)
        return estimate_map

    def _save_map(self, estimate_map: Dict[str, ScenarioEstimate]):
        self.store.set(
            self.storage_key,
            {name: estimate.to_dict() for name, estimate in estimate_map.items()},
        )
