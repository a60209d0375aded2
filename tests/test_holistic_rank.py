"""Tests for holistic rank - hierarchical averaging, capping, and penalty."""

from datetime import datetime, timezone

import pytest

from src.benchmark_data.benchmark_service import BenchmarkService
from src.benchmark_data.models import BenchmarkScenario
from src.rank_engine.models import ScenarioEstimate
from src.rank_engine.rank_estimator import RankEstimator


# ── Helpers ──────────────────────────────────────────────────────────

START = datetime(2026, 3, 10, 12, 0, 0, tzinfo=timezone.utc)
FIVE_RANKS = ["Iron", "Bronze", "Silver", "Gold", "Platinum"]


def _make_scenario(name, category="Clicking", subcategory="Static", levels=5):
    thresholds = {f"R{i + 1}": 100.0 * (i + 1) for i in range(levels)}
    return BenchmarkScenario(name=name, category=category, subcategory=subcategory, thresholds=thresholds)


def _make_estimator(store, clock, scenarios, values, rank_names=FIVE_RANKS, penalties=None):
    service = BenchmarkService({"Gold": {"rank_names": rank_names, "scenarios": scenarios}})
    estimator = RankEstimator(service, store, player_id="alice", clock=clock)
    penalties = penalties or {}
    store.set(
        estimator.storage_key,
        {
            name: ScenarioEstimate(
                continuous_value=value,
                highest_achieved=max(value, 0.0),
                last_updated=START,
                penalty=penalties.get(name, 0.0),
                last_played=START,
                last_decayed=START,
            ).to_dict()
            for name, value in values.items()
        },
    )
    return estimator


# ── Aggregation ──────────────────────────────────────────────────────


class TestHolisticAggregation:
    def test_capped_at_max_rank(self, store, clock):
        scenarios = [_make_scenario("A", levels=2), _make_scenario("B", levels=2)]
        estimator = _make_estimator(store, clock, scenarios, {"A": 2.0, "B": 3.0}, rank_names=["r1", "r2"])

        result = estimator.calculate_holistic_estimate_rank("Gold")
        assert result.continuous_value == pytest.approx(2.0)
        assert result.rank_name == "r2"

    def test_categories_weigh_equally(self, store, clock):
        scenarios = [
            _make_scenario("Click", category="Clicking"),
            _make_scenario("Track1", category="Tracking"),
            _make_scenario("Track2", category="Tracking"),
            _make_scenario("Track3", category="Tracking"),
        ]
        values = {"Click": 4.0, "Track1": 1.0, "Track2": 1.0, "Track3": 1.0}
        estimator = _make_estimator(store, clock, scenarios, values)

        assert estimator.calculate_holistic_estimate_rank("Gold").continuous_value == pytest.approx(2.5)

    def test_subcategories_weigh_equally(self, store, clock):
        scenarios = [
            _make_scenario("S1", subcategory="Static"),
            _make_scenario("S2", subcategory="Static"),
            _make_scenario("S3", subcategory="Static"),
            _make_scenario("D1", subcategory="Dynamic"),
        ]
        values = {"S1": 1.0, "S2": 1.0, "S3": 1.0, "D1": 3.0}
        estimator = _make_estimator(store, clock, scenarios, values)

        assert estimator.calculate_holistic_estimate_rank("Gold").continuous_value == pytest.approx(2.0)

    def test_missing_scenario_counts_as_zero(self, store, clock):
        scenarios = [_make_scenario("A"), _make_scenario("B")]
        estimator = _make_estimator(store, clock, scenarios, {"A": 2.0})
        assert estimator.calculate_holistic_estimate_rank("Gold").continuous_value == pytest.approx(1.0)

    def test_unranked_sentinel_counts_as_zero(self, store, clock):
        scenarios = [_make_scenario("A"), _make_scenario("B")]
        estimator = _make_estimator(store, clock, scenarios, {"A": 2.0, "B": -1.0})
        assert estimator.calculate_holistic_estimate_rank("Gold").continuous_value == pytest.approx(1.0)

    def test_empty_pool_is_unranked(self, store, clock):
        estimator = _make_estimator(store, clock, [], {})
        result = estimator.calculate_holistic_estimate_rank("Gold")
        assert result.rank_name == "Unranked"
        assert result.rank_level == 0
        assert result.continuous_value == 0.0

    def test_unknown_difficulty_is_unranked(self, store, clock):
        estimator = _make_estimator(store, clock, [_make_scenario("A")], {"A": 3.0})
        assert estimator.calculate_holistic_estimate_rank("Nope").rank_name == "Unranked"

    def test_cap_from_thresholds_without_rank_names(self, store, clock):
        scenarios = [_make_scenario("A", levels=3), _make_scenario("B", levels=3)]
        estimator = _make_estimator(store, clock, scenarios, {"A": 5.0, "B": 3.0}, rank_names=[])

        result = estimator.calculate_holistic_estimate_rank("Gold")
        assert result.continuous_value == pytest.approx(3.0)
        assert result.rank_name == "Unranked"

    def test_rank_name_and_progress(self, store, clock):
        scenarios = [_make_scenario("A"), _make_scenario("B")]
        estimator = _make_estimator(store, clock, scenarios, {"A": 2.0, "B": 3.5})

        result = estimator.calculate_holistic_estimate_rank("Gold")
        assert result.rank_name == "Bronze"
        assert result.rank_level == 2
        assert result.progress_to_next == 75


# ── Penalty ──────────────────────────────────────────────────────────


class TestHolisticPenalty:
    def test_penalty_subtracted_before_averaging(self, store, clock):
        scenarios = [_make_scenario("A"), _make_scenario("B")]
        estimator = _make_estimator(store, clock, scenarios, {"A": 3.0, "B": 3.0}, penalties={"A": 1.0})
        assert estimator.calculate_holistic_estimate_rank("Gold").continuous_value == pytest.approx(2.5)

    def test_penalty_applied_after_cap(self, store, clock):
        scenarios = [_make_scenario("A", levels=2)]
        estimator = _make_estimator(
            store, clock, scenarios, {"A": 3.0}, rank_names=["r1", "r2"], penalties={"A": 0.5}
        )
        assert estimator.calculate_holistic_estimate_rank("Gold").continuous_value == pytest.approx(1.5)

    def test_penalty_floors_contribution_at_zero(self, store, clock):
        scenarios = [_make_scenario("A"), _make_scenario("B")]
        estimator = _make_estimator(store, clock, scenarios, {"A": 1.0, "B": 2.0}, penalties={"A": 4.0})
        assert estimator.calculate_holistic_estimate_rank("Gold").continuous_value == pytest.approx(1.0)

    def test_single_value_lookup_ignores_penalty(self, store, clock):
        estimator = _make_estimator(store, clock, [_make_scenario("A")], {"A": 3.0}, penalties={"A": 2.0})
        value = estimator.get_scenario_estimate("A").continuous_value
        assert estimator.get_estimate_for_value(value, "Gold").rank_name == "Silver"
