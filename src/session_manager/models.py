"""Session data models - runs, session bests, and ranked session snapshots."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple

from src.benchmark_data.models import BenchmarkScenario
from src.rank_engine.models import RankResult


@dataclass(frozen=True)
class ScoreRun:
    """A single completed run reported by a score source."""

    scenario_name: str
    score: float
    scenario: Optional[BenchmarkScenario]
    difficulty: Optional[str]
    timestamp: datetime

    def dedup_key(self) -> Tuple[str, float, int]:
        """Identity of a run; timestamps from different sources differ in ms."""
        return (self.scenario_name, float(self.score), int(self.timestamp.timestamp()))


@dataclass(frozen=True)
class SessionRankRecord:
    """Best score for a scenario within the current session window."""

    scenario_name: str
    best_score: float
    rank_result: RankResult


@dataclass(frozen=True)
class RankedRun:
    """A run recorded inside an open ranked window."""

    scenario_name: str
    score: float
    timestamp: datetime


class RankedSessionStatus(str, Enum):
    """Status of a ranked session."""

    IDLE = "idle"  # No ranked session
    ACTIVE = "active"  # Playing through the sequence
    SUMMARY = "summary"  # Initial gauntlet finished, awaiting extend or end
    COMPLETED = "completed"  # Ended and results committed


@dataclass
class RankedDayRecord:
    """Same-day resumable sequence for one difficulty."""

    day: str  # ISO date
    sequence: List[str] = field(default_factory=list)
    played_scenarios: List[str] = field(default_factory=list)
    initial_estimates: Dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class RankedSessionState:
    """Read-only snapshot of a ranked session."""

    status: RankedSessionStatus
    difficulty: Optional[str]
    sequence: Tuple[str, ...]
    current_index: int
    initial_estimates: Dict[str, float]
    accumulated_scenario_seconds: Dict[str, float]
    played_scenarios: Tuple[str, ...]
    start_time: Optional[datetime]
    initial_gauntlet_complete: bool
    ranked_session_id: Optional[str]
