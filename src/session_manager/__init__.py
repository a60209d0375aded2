from src.session_manager.models import (
    RankedDayRecord,
    RankedRun,
    RankedSessionState,
    RankedSessionStatus,
    ScoreRun,
    SessionRankRecord,
)
from src.session_manager.ranked_session_service import RankedSessionService
from src.session_manager.scheduler import Scheduler, ThreadingScheduler
from src.session_manager.session_service import SessionService
from src.session_manager.session_settings import SessionSettings, SessionSettingsService

__all__ = [
    "RankedDayRecord",
    "RankedRun",
    "RankedSessionService",
    "RankedSessionState",
    "RankedSessionStatus",
    "Scheduler",
    "ScoreRun",
    "SessionRankRecord",
    "SessionService",
    "SessionSettings",
    "SessionSettingsService",
    "ThreadingScheduler",
]
