"""Discrete rank attainment from benchmark thresholds."""

import math
from typing import List, Tuple

from src.benchmark_data.models import BenchmarkScenario
from src.rank_engine.config import UNRANKED_NAME, VIRTUAL_INTERVAL_FALLBACK
from src.rank_engine.models import RankResult


def find_rank_index(score: float, thresholds: List[Tuple[str, float]]) -> int:
    """Highest index i with score >= thresholds[i], or -1 below the first.

    ``thresholds`` must be sorted ascending by value.
    """
    rank_index = -1
    for i, (_, value) in enumerate(thresholds):
        if score >= value:
            rank_index = i
        else:
            break
    return rank_index


def virtual_interval(thresholds: List[Tuple[str, float]]) -> float:
    """Score width used beyond the top threshold (gap between the last two)."""
    if len(thresholds) < 2:
        return VIRTUAL_INTERVAL_FALLBACK
    width = thresholds[-1][1] - thresholds[-2][1]
    return width if width > 0 else VIRTUAL_INTERVAL_FALLBACK


class RankService:
    """Calculates rank attainment and progress based on benchmark thresholds."""

    def calculate_rank(self, score: float, scenario: BenchmarkScenario) -> RankResult:
        """Calculate the rank and percentage progress toward the next rank.

        Args:
            score: The achieved score.
            scenario: Scenario metadata containing thresholds.

        Returns:
            RankResult where ``rank_level`` is 0 for Unranked and
            the threshold's position in the tier's rank order otherwise.
        """
        thresholds = scenario.sorted_thresholds() if scenario else []
        if not thresholds:
            return RankResult.unranked()

        rank_index = find_rank_index(score, thresholds)

        if rank_index == -1:
            first = thresholds[0][1]
            progress = self._percentage(score, 0.0, first) if first > 0 else 0
            return RankResult(
                current_rank=UNRANKED_NAME,
                next_rank=thresholds[0][0],
                progress_percentage=max(0, min(100, progress)),
                rank_level=0,
            )

        current_name, current_value = thresholds[rank_index]
        rank_level = scenario.rank_level(current_name, rank_index)

        if rank_index == len(thresholds) - 1:
            # Beyond max: extrapolate against a virtual next rank
            width = virtual_interval(thresholds)
            return RankResult(
                current_rank=current_name,
                next_rank=None,
                progress_percentage=max(0, self._percentage(score, current_value, current_value + width)),
                rank_level=rank_level,
            )

        next_name, next_value = thresholds[rank_index + 1]
        return RankResult(
            current_rank=current_name,
            next_rank=next_name,
            progress_percentage=self._percentage(score, current_value, next_value),
            rank_level=rank_level,
        )

    @staticmethod
    def _percentage(score: float, lower: float, upper: float) -> int:
        span = upper - lower
        if span <= 0:
            return 0
        return int(math.floor((score - lower) / span * 100))
