"""Data models for benchmark reference data."""

from dataclasses import dataclass, field
from typing import Dict, List, Tuple


@dataclass
class BenchmarkScenario:
    """A benchmark scenario and its rank thresholds (rank name -> score).

    ``rank_order`` is the tier's full rank-name list, lowest first. A scenario
    may leave some ranks blank, so threshold positions and rank levels only
    line up through this list.
    """

    name: str
    category: str
    subcategory: str
    thresholds: Dict[str, float] = field(default_factory=dict)
    rank_order: List[str] = field(default_factory=list)

    def sorted_thresholds(self) -> List[Tuple[str, float]]:
        """Thresholds ordered ascending by score."""
        return sorted(self.thresholds.items(), key=lambda item: item[1])

    def rank_level(self, rank_name: str, position: int) -> int:
        """1-based level of the threshold at ``position`` in sorted order."""
        if rank_name in self.rank_order:
            return self.rank_order.index(rank_name) + 1
        return position + 1
