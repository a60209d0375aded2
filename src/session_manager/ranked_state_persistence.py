"""Ranked state persistence - save and load ranked sessions and day records."""

import logging
from typing import Dict, Tuple

from src.rank_engine.models import parse_timestamp
from src.session_manager.config import RANKED_STATE_PREFIX
from src.session_manager.models import RankedDayRecord, RankedSessionState, RankedSessionStatus
from src.state_store import StateStore, namespaced_key

logger = logging.getLogger(__name__)


def idle_state() -> RankedSessionState:
    return RankedSessionState(
        status=RankedSessionStatus.IDLE,
        difficulty=None,
        sequence=(),
        current_index=0,
        initial_estimates={},
        accumulated_scenario_seconds={},
        played_scenarios=(),
        start_time=None,
        initial_gauntlet_complete=False,
        ranked_session_id=None,
    )


class RankedStatePersistence:
    """Stores the live ranked state and per-difficulty day records under one key."""

    def __init__(self, store: StateStore, player_id: str = "default"):
        self.store = store
        self.player_id = player_id

    @property
    def storage_key(self) -> str:
        return namespaced_key(RANKED_STATE_PREFIX, self.player_id)

    def save(self, state: RankedSessionState, day_records: Dict[str, RankedDayRecord]):
        self.store.set(
            self.storage_key,
            {
                "live": self._state_to_dict(state),
                "days": {
                    difficulty: self._day_record_to_dict(record)
                    for difficulty, record in day_records.items()
                },
            },
        )
        logger.debug("Saved ranked state for %s (%s)", self.player_id, state.status.value)

    def load(self) -> Tuple[RankedSessionState, Dict[str, RankedDayRecord]]:
        """Load the live state and day records.

        Returns:
            (state, day_records). An idle state and no records when nothing
            is stored or the stored blob is malformed.
        """
        data = self.store.get(self.storage_key)
        if not isinstance(data, dict):
            return idle_state(), {}

        try:
            state = self._dict_to_state(data.get("live") or {})
            day_records = {
                difficulty: self._dict_to_day_record(record)
                for difficulty, record in (data.get("days") or {}).items()
            }
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("Discarding malformed ranked state for %s: %s", self.player_id, e)
            return idle_state(), {}

        return state, day_records

    # ── Serialization helpers ──

    @staticmethod
    def _state_to_dict(state: RankedSessionState) -> Dict:
        return {
            "status": state.status.value,
            "difficulty": state.difficulty,
            "sequence": list(state.sequence),
            "current_index": state.current_index,
            "initial_estimates": dict(state.initial_estimates),
            "accumulated_scenario_seconds": dict(state.accumulated_scenario_seconds),
            "played_scenarios": list(state.played_scenarios),
            "start_time": state.start_time.isoformat() if state.start_time else None,
            "initial_gauntlet_complete": state.initial_gauntlet_complete,
            "ranked_session_id": state.ranked_session_id,
        }

    @staticmethod
    def _dict_to_state(data: Dict) -> RankedSessionState:
        return RankedSessionState(
            status=RankedSessionStatus(data.get("status", RankedSessionStatus.IDLE.value)),
            difficulty=data.get("difficulty"),
            sequence=tuple(data.get("sequence", [])),
            current_index=int(data.get("current_index", 0)),
            initial_estimates={
                k: float(v) for k, v in data.get("initial_estimates", {}).items()
            },
            accumulated_scenario_seconds={
                k: float(v) for k, v in data.get("accumulated_scenario_seconds", {}).items()
            },
            played_scenarios=tuple(data.get("played_scenarios", [])),
            start_time=parse_timestamp(data.get("start_time"), None),
            initial_gauntlet_complete=bool(data.get("initial_gauntlet_complete", False)),
            ranked_session_id=data.get("ranked_session_id"),
        )

    @staticmethod
    def _day_record_to_dict(record: RankedDayRecord) -> Dict:
        return {
            "day": record.day,
            "sequence": list(record.sequence),
            "played_scenarios": list(record.played_scenarios),
            "initial_estimates": dict(record.initial_estimates),
        }

    @staticmethod
    def _dict_to_day_record(data: Dict) -> RankedDayRecord:
        return RankedDayRecord(
            day=str(data["day"]),
            sequence=list(data.get("sequence", [])),
            played_scenarios=list(data.get("played_scenarios", [])),
            initial_estimates={
                k: float(v) for k, v in data.get("initial_estimates", {}).items()
            },
        )
