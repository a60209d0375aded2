"""Benchmark data provider - read-only access to tiered rank thresholds."""

import logging
from pathlib import Path
from typing import Dict, List, Optional

from src.benchmark_data.config import BENCHMARKS_DIR
from src.benchmark_data.ingestion import BenchmarkIngester
from src.benchmark_data.models import BenchmarkScenario

logger = logging.getLogger(__name__)


class BenchmarkService:
    """Serves scenario pools and rank names per difficulty."""

    def __init__(self, tiers: Optional[Dict[str, Dict]] = None):
        self._rank_names: Dict[str, List[str]] = {}
        self._scenarios: Dict[str, List[BenchmarkScenario]] = {}
        self._difficulty_by_name: Dict[str, str] = {}

        for difficulty, tier in (tiers or {}).items():
            self.add_tier(difficulty, tier.get("rank_names", []), tier.get("scenarios", []))

    @classmethod
    def from_directory(cls, benchmarks_dir: Optional[Path] = None) -> "BenchmarkService":
        """Load every ``ranks_*.csv`` table in the directory."""
        ingester = BenchmarkIngester(benchmarks_dir or BENCHMARKS_DIR)
        service = cls(ingester.read_all())
        logger.info(
            "Benchmark data ready: %s",
            ", ".join(
                f"{d}={len(s)}" for d, s in service._scenarios.items()
            ) or "no tiers",
        )
        return service

    def add_tier(
        self,
        difficulty: str,
        rank_names: List[str],
        scenarios: List[BenchmarkScenario],
    ):
        """Register a difficulty tier. Later tiers win name lookups on clashes.

        Scenarios without a rank order adopt the tier's rank names.
        """
        self._rank_names[difficulty] = list(rank_names)
        self._scenarios[difficulty] = list(scenarios)
        for scenario in scenarios:
            if not scenario.rank_order:
                scenario.rank_order = list(rank_names)
            self._difficulty_by_name[scenario.name] = difficulty

    def get_available_difficulties(self) -> List[str]:
        return list(self._scenarios.keys())

    def get_scenarios(self, difficulty: str) -> List[BenchmarkScenario]:
        return list(self._scenarios.get(difficulty, []))

    def get_rank_names(self, difficulty: str) -> List[str]:
        return list(self._rank_names.get(difficulty, []))

    def get_difficulty(self, scenario_name: str) -> Optional[str]:
        return self._difficulty_by_name.get(scenario_name)

    def get_all_scenarios(self) -> List[BenchmarkScenario]:
        """Every scenario across tiers, first occurrence of each name kept."""
        seen = set()
        result = []
        for scenarios in self._scenarios.values():
            for scenario in scenarios:
                if scenario.name not in seen:
                    seen.add(scenario.name)
                    result.append(scenario)
        return result

    def find_scenario(self, scenario_name: str) -> Optional[BenchmarkScenario]:
        """Look up a scenario reference by name across all tiers."""
        difficulty = self.get_difficulty(scenario_name)
        if difficulty is None:
            return None
        for scenario in self._scenarios[difficulty]:
            if scenario.name == scenario_name:
                return scenario
        return None
