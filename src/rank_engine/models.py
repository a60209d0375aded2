"""Data models for rank calculation and estimation."""

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Dict, Optional

from src.rank_engine.config import UNRANKED_NAME, UNRANKED_VALUE


def parse_timestamp(value, default: datetime) -> datetime:
    """Parse an ISO timestamp, assuming UTC when no offset is present."""
    if not value:
        return default
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return default
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class RankResult:
    """Discrete rank attainment for a raw score."""

    current_rank: str
    next_rank: Optional[str]
    progress_percentage: int
    rank_level: int  # 0 = Unranked, 1 = first named rank

    @classmethod
    def unranked(cls) -> "RankResult":
        return cls(
            current_rank=UNRANKED_NAME,
            next_rank=None,
            progress_percentage=0,
            rank_level=0,
        )

    def to_dict(self) -> Dict:
        return {
            "current_rank": self.current_rank,
            "next_rank": self.next_rank,
            "progress_percentage": self.progress_percentage,
            "rank_level": self.rank_level,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "RankResult":
        return cls(
            current_rank=str(data.get("current_rank", UNRANKED_NAME)),
            next_rank=data.get("next_rank"),
            progress_percentage=int(data.get("progress_percentage", 0)),
            rank_level=int(data.get("rank_level", 0)),
        )


@dataclass(frozen=True)
class EstimatedRank:
    """Displayable rank for a continuous RU value."""

    rank_name: str
    rank_level: int
    progress_to_next: int
    continuous_value: float

    @classmethod
    def empty(cls) -> "EstimatedRank":
        return cls(
            rank_name=UNRANKED_NAME,
            rank_level=0,
            progress_to_next=0,
            continuous_value=0.0,
        )


@dataclass(frozen=True)
class ScenarioEstimate:
    """Persistent skill estimate for one scenario."""

    continuous_value: float
    highest_achieved: float
    last_updated: datetime
    penalty: float
    last_played: datetime
    last_decayed: datetime

    @classmethod
    def unranked(cls, now: datetime) -> "ScenarioEstimate":
        return cls(
            continuous_value=UNRANKED_VALUE,
            highest_achieved=UNRANKED_VALUE,
            last_updated=now,
            penalty=0.0,
            last_played=now,
            last_decayed=now,
        )

    @property
    def is_ranked(self) -> bool:
        return self.continuous_value >= 0

    def effective_value(self) -> float:
        """Continuous value with the unranked sentinel mapped to 0."""
        return max(0.0, self.continuous_value)

    def evolve(self, **changes) -> "ScenarioEstimate":
        return replace(self, **changes)

    def to_dict(self) -> Dict:
        return {
            "continuous_value": self.continuous_value,
            "highest_achieved": self.highest_achieved,
            "last_updated": self.last_updated.isoformat(),
            "penalty": self.penalty,
            "last_played": self.last_played.isoformat(),
            "last_decayed": self.last_decayed.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict, now: datetime) -> "ScenarioEstimate":
        """Rebuild from stored JSON. Missing fields take unranked defaults.

        Raises:
            ValueError / TypeError: if a numeric field is not a number.
        """
        last_updated = parse_timestamp(data.get("last_updated"), now)
        return cls(
            continuous_value=float(data.get("continuous_value", UNRANKED_VALUE)),
            highest_achieved=float(data.get("highest_achieved", UNRANKED_VALUE)),
            last_updated=last_updated,
            penalty=float(data.get("penalty", 0.0)),
            last_played=parse_timestamp(data.get("last_played"), last_updated),
            last_decayed=parse_timestamp(data.get("last_decayed"), last_updated),
        )
