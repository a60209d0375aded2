"""Run daily rank maintenance for a player.

Seeds peaks for unplayed scenarios, applies idle decay and the daily penalty
lift, then reports the holistic rank for every difficulty.

Usage:
    python -m src.rank_engine.run_maintenance <player> [benchmarks_dir] [state_dir]

Examples:
    python -m src.rank_engine.run_maintenance alice
    python -m src.rank_engine.run_maintenance alice data/benchmarks data/state
"""

import logging
import sys
from pathlib import Path
from typing import Dict, Optional

from src.benchmark_data.benchmark_service import BenchmarkService
from src.logging_config import setup_logging
from src.rank_engine.models import EstimatedRank
from src.rank_engine.rank_estimator import RankEstimator
from src.session_manager.config import STATE_DIR
from src.state_store import JsonFileStore

logger = logging.getLogger(__name__)


def run_maintenance(
    player_id: str,
    benchmarks_dir: Optional[Path] = None,
    state_dir: Optional[Path] = None,
) -> Dict[str, EstimatedRank]:
    """Apply daily maintenance to a player's estimates.

    Args:
        player_id: Player identity whose estimate map is maintained.
        benchmarks_dir: Directory containing ``ranks_*.csv`` tables.
            Defaults to ``data/benchmarks``.
        state_dir: Directory for persisted state. Defaults to ``data/state``.

    Returns:
        Dict mapping difficulty to its holistic EstimatedRank.
    """
    benchmark_service = BenchmarkService.from_directory(benchmarks_dir)
    store = JsonFileStore(state_dir or STATE_DIR)
    estimator = RankEstimator(benchmark_service, store, player_id=player_id)

    logger.info("Starting daily maintenance for %s", player_id)

    estimator.initialize_peak_ranks()
    estimator.apply_daily_decay()
    estimator.apply_penalty_lift()

    results = {}
    for difficulty in benchmark_service.get_available_difficulties():
        estimate = estimator.calculate_holistic_estimate_rank(difficulty)
        results[difficulty] = estimate
        logger.info(
            "  %s: %s (%d%%, RU %.2f)",
            difficulty,
            estimate.rank_name,
            estimate.progress_to_next,
            estimate.continuous_value,
        )

    logger.info("Maintenance complete for %s", player_id)
    return results


if __name__ == "__main__":
    setup_logging()

    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(2)

    player = sys.argv[1]
    benchmarks = Path(sys.argv[2]) if len(sys.argv) > 2 else None
    state = Path(sys.argv[3]) if len(sys.argv) > 3 else None

    try:
        ranks = run_maintenance(player, benchmarks, state)
        for tier, rank in ranks.items():
            print(f"{tier}: {rank.rank_name} ({rank.progress_to_next}%)")
    except Exception:
        logger.exception("Maintenance failed")
        sys.exit(1)
