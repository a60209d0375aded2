from src.rank_engine.models import EstimatedRank, RankResult, ScenarioEstimate
from src.rank_engine.rank_estimator import RankEstimator
from src.rank_engine.rank_service import RankService

__all__ = [
    "EstimatedRank",
    "RankEstimator",
    "RankResult",
    "RankService",
    "ScenarioEstimate",
]
