"""Tests for rank estimator - RU conversion, evolution, and rank lookup."""

from datetime import datetime, timezone

import pytest

from src.benchmark_data.benchmark_service import BenchmarkService
from src.benchmark_data.models import BenchmarkScenario
from src.rank_engine.models import ScenarioEstimate
from src.rank_engine.rank_estimator import RankEstimator
from src.rank_engine.rank_service import RankService
from src.state_store import JsonFileStore


# ── Helpers ──────────────────────────────────────────────────────────

START = datetime(2026, 3, 10, 12, 0, 0, tzinfo=timezone.utc)
RANK_NAMES = ["Iron", "Bronze", "Silver"]


def _make_scenario(name="Tile Frenzy", category="Clicking", subcategory="Static", thresholds=None):
    if thresholds is None:
        thresholds = {"Iron": 100.0, "Bronze": 200.0, "Silver": 300.0}
    return BenchmarkScenario(name=name, category=category, subcategory=subcategory, thresholds=thresholds)


def _make_benchmarks(scenarios=None, rank_names=None):
    return BenchmarkService(
        {
            "Gold": {
                "rank_names": RANK_NAMES if rank_names is None else rank_names,
                "scenarios": scenarios or [_make_scenario()],
            }
        }
    )


def _estimate(value, highest=None, penalty=0.0, last_updated=START, last_decayed=None):
    return ScenarioEstimate(
        continuous_value=value,
        highest_achieved=value if highest is None else highest,
        last_updated=last_updated,
        penalty=penalty,
        last_played=last_updated,
        last_decayed=last_decayed or last_updated,
    )


def _seed(estimator, estimates):
    estimator.store.set(
        estimator.storage_key,
        {name: estimate.to_dict() for name, estimate in estimates.items()},
    )


@pytest.fixture
def estimator(store, clock):
    return RankEstimator(_make_benchmarks(), store, player_id="alice", clock=clock)


# ── RU conversion ────────────────────────────────────────────────────


class TestContinuousValue:
    def test_standard_case_within_rank(self, estimator):
        value = estimator.get_scenario_continuous_value(150, _make_scenario())
        assert 1.0 < value < 2.0
        assert value == pytest.approx(1.5)

    def test_unranked_is_fraction_of_first_threshold(self, estimator):
        assert estimator.get_scenario_continuous_value(50, _make_scenario()) == pytest.approx(0.5)

    def test_beyond_max_extrapolates_last_interval(self, estimator):
        assert estimator.get_scenario_continuous_value(350, _make_scenario()) == pytest.approx(3.5)

    def test_exact_threshold_is_integer(self, estimator):
        assert estimator.get_scenario_continuous_value(200, _make_scenario()) == pytest.approx(2.0)

    def test_single_threshold_uses_fallback_interval(self, estimator):
        scenario = _make_scenario(thresholds={"Iron": 500.0})
        assert estimator.get_scenario_continuous_value(550, scenario) == pytest.approx(1.5)

    def test_empty_thresholds_is_zero(self, estimator):
        assert estimator.get_scenario_continuous_value(500, _make_scenario(thresholds={})) == 0.0

    def test_missing_scenario_is_zero(self, estimator):
        assert estimator.get_scenario_continuous_value(500, None) == 0.0

    def test_negative_score_clamped(self, estimator):
        assert estimator.get_scenario_continuous_value(-40, _make_scenario()) == 0.0

    def test_zero_first_threshold(self, estimator):
        scenario = _make_scenario(thresholds={"Iron": 0.0, "Bronze": 100.0})
        assert estimator.get_scenario_continuous_value(-5, scenario) == 0.0

    def test_blank_lower_rank_keeps_tier_level(self, store, clock):
        scenario = _make_scenario(name="Gapped", thresholds={"Bronze": 200.0, "Silver": 300.0})
        estimator = RankEstimator(_make_benchmarks([scenario]), store, player_id="alice", clock=clock)

        value = estimator.get_scenario_continuous_value(250, scenario)
        assert value == pytest.approx(2.5)
        assert estimator.get_estimate_for_value(value, "Gold").rank_name == "Bronze"

    def test_blank_rank_agrees_with_rank_service(self, store, clock):
        scenario = _make_scenario(name="Gapped", thresholds={"Iron": 100.0, "Silver": 300.0})
        estimator = RankEstimator(_make_benchmarks([scenario]), store, player_id="alice", clock=clock)

        for score in (150, 300, 420):
            discrete = RankService().calculate_rank(score, scenario)
            estimated = estimator.get_estimate_for_value(
                estimator.get_scenario_continuous_value(score, scenario), "Gold"
            )
            assert estimated.rank_name == discrete.current_rank
            assert estimated.rank_level == discrete.rank_level


# ── Evolution ────────────────────────────────────────────────────────


class TestEvolveScenarioEstimate:
    def test_first_evolution_from_unranked_uses_anchor(self, estimator):
        estimator.evolve_scenario_estimate("Tile Frenzy", 3.0)
        estimate = estimator.get_scenario_estimate("Tile Frenzy")
        assert estimate.continuous_value == pytest.approx(1.0)
        assert estimate.highest_achieved == pytest.approx(1.0)

    def test_moves_halfway_toward_session_rank(self, estimator):
        _seed(estimator, {"Tile Frenzy": _estimate(1.0)})
        estimator.evolve_scenario_estimate("Tile Frenzy", 2.0)
        assert estimator.get_scenario_estimate("Tile Frenzy").continuous_value == pytest.approx(1.5)

    def test_big_win_jumps_to_anchor(self, estimator):
        _seed(estimator, {"Tile Frenzy": _estimate(1.0)})
        estimator.evolve_scenario_estimate("Tile Frenzy", 5.0)
        assert estimator.get_scenario_estimate("Tile Frenzy").continuous_value == pytest.approx(3.0)

    def test_poor_session_never_lowers_value(self, estimator):
        _seed(estimator, {"Tile Frenzy": _estimate(3.0)})
        estimator.evolve_scenario_estimate("Tile Frenzy", 1.0)
        estimate = estimator.get_scenario_estimate("Tile Frenzy")
        assert estimate.continuous_value == pytest.approx(3.0)
        assert estimate.highest_achieved == pytest.approx(3.0)

    def test_hint_keeps_same_day_maximum(self, estimator):
        _seed(estimator, {"Tile Frenzy": _estimate(1.0)})

        estimator.evolve_scenario_estimate("Tile Frenzy", 2.0, 1.0)
        assert estimator.get_scenario_estimate("Tile Frenzy").continuous_value == pytest.approx(1.5)

        estimator.evolve_scenario_estimate("Tile Frenzy", 1.8, 1.0)
        assert estimator.get_scenario_estimate("Tile Frenzy").continuous_value == pytest.approx(1.5)

        estimator.evolve_scenario_estimate("Tile Frenzy", 2.4, 1.0)
        assert estimator.get_scenario_estimate("Tile Frenzy").continuous_value == pytest.approx(1.7)

    def test_negative_hint_is_ignored(self, estimator):
        _seed(estimator, {"Tile Frenzy": _estimate(2.0)})
        estimator.evolve_scenario_estimate("Tile Frenzy", 3.0, -1.0)
        assert estimator.get_scenario_estimate("Tile Frenzy").continuous_value == pytest.approx(2.5)

    def test_ratchet_over_many_sessions(self, estimator):
        values, peaks = [], []
        for session_rank in [2.0, 0.5, 4.0, 1.0, 3.0, 0.0, 6.0]:
            estimator.evolve_scenario_estimate("Tile Frenzy", session_rank)
            estimate = estimator.get_scenario_estimate("Tile Frenzy")
            values.append(estimate.continuous_value)
            peaks.append(estimate.highest_achieved)

        assert values == sorted(values)
        assert peaks == sorted(peaks)

    def test_stamps_update_and_play_times(self, estimator, clock):
        _seed(estimator, {"Tile Frenzy": _estimate(1.0)})
        now = clock.advance(hours=3)
        estimator.evolve_scenario_estimate("Tile Frenzy", 2.0)
        estimate = estimator.get_scenario_estimate("Tile Frenzy")
        assert estimate.last_updated == now
        assert estimate.last_played == now

    def test_notifies_listeners(self, estimator):
        seen = []
        estimator.on_estimate_updated(seen.append)
        estimator.evolve_scenario_estimate("Tile Frenzy", 2.0)
        assert seen == ["Tile Frenzy"]

    def test_listener_sees_persisted_value(self, estimator):
        seen = []
        estimator.on_estimate_updated(
            lambda name: seen.append(estimator.get_scenario_estimate(name).continuous_value)
        )
        estimator.evolve_scenario_estimate("Tile Frenzy", 3.0)
        assert seen == [pytest.approx(1.0)]


# ── Rank lookup ──────────────────────────────────────────────────────


class TestGetEstimateForValue:
    def test_below_one_is_unranked(self, estimator):
        result = estimator.get_estimate_for_value(0.5, "Gold")
        assert result.rank_name == "Unranked"
        assert result.rank_level == 0
        assert result.progress_to_next == 50

    def test_level_one_is_first_rank(self, estimator):
        result = estimator.get_estimate_for_value(1.0, "Gold")
        assert result.rank_name == "Iron"
        assert result.rank_level == 1
        assert result.progress_to_next == 0

    def test_level_three_is_third_rank(self, estimator):
        assert estimator.get_estimate_for_value(3.0, "Gold").rank_name == "Silver"

    def test_progress_rounds_half_up(self, estimator):
        assert estimator.get_estimate_for_value(2.25, "Gold").progress_to_next == 25
        assert estimator.get_estimate_for_value(2.125, "Gold").progress_to_next == 13

    def test_progress_capped_at_99(self, estimator):
        assert estimator.get_estimate_for_value(1.999, "Gold").progress_to_next == 99

    def test_beyond_names_clamps_to_last(self, estimator):
        result = estimator.get_estimate_for_value(7.2, "Gold")
        assert result.rank_name == "Silver"
        assert result.rank_level == 7

    def test_negative_value_is_unranked_zero(self, estimator):
        result = estimator.get_estimate_for_value(-1.0, "Gold")
        assert result.rank_name == "Unranked"
        assert result.continuous_value == 0.0

    def test_unknown_difficulty_is_unranked(self, estimator):
        assert estimator.get_estimate_for_value(2.5, "Nope").rank_name == "Unranked"


# ── Reads and storage ────────────────────────────────────────────────


class TestEstimateStorage:
    def test_unknown_scenario_default(self, estimator):
        estimate = estimator.get_scenario_estimate("Unknown")
        assert estimate.continuous_value == -1.0
        assert estimate.highest_achieved == -1.0
        assert estimate.penalty == 0.0

    def test_map_is_a_copy(self, estimator):
        _seed(estimator, {"Tile Frenzy": _estimate(2.0)})
        estimate_map = estimator.get_rank_estimate_map()
        estimate_map.clear()
        assert "Tile Frenzy" in estimator.get_rank_estimate_map()

    def test_storage_key_is_per_player(self, estimator):
        assert estimator.storage_key == "rank_identity_state_v2_alice"

    def test_players_are_isolated(self, store, clock):
        alice = RankEstimator(_make_benchmarks(), store, player_id="alice", clock=clock)
        bob = RankEstimator(_make_benchmarks(), store, player_id="bob", clock=clock)
        alice.evolve_scenario_estimate("Tile Frenzy", 3.0)
        assert bob.get_rank_estimate_map() == {}

    def test_corrupt_json_reads_as_empty(self, estimator):
        estimator.store.set_raw(estimator.storage_key, "{not json")
        assert estimator.get_rank_estimate_map() == {}

    def test_non_dict_root_reads_as_empty(self, estimator):
        estimator.store.set(estimator.storage_key, [1, 2, 3])
        assert estimator.get_rank_estimate_map() == {}

    def test_malformed_entries_are_skipped(self, estimator):
        estimator.store.set(
            estimator.storage_key,
            {
                "Good": _estimate(2.0).to_dict(),
                "NotADict": 7,
                "BadNumber": {"continuous_value": "abc"},
            },
        )
        assert list(estimator.get_rank_estimate_map()) == ["Good"]

    def test_missing_fields_take_defaults(self, estimator):
        estimator.store.set(estimator.storage_key, {"Sparse": {"continuous_value": 1.5}})
        estimate = estimator.get_scenario_estimate("Sparse")
        assert estimate.continuous_value == 1.5
        assert estimate.highest_achieved == -1.0
        assert estimate.penalty == 0.0

    def test_corrupt_value_recovers_on_next_write(self, estimator):
        estimator.store.set_raw(estimator.storage_key, "garbage")
        estimator.evolve_scenario_estimate("Tile Frenzy", 2.0)
        assert estimator.get_scenario_estimate("Tile Frenzy").continuous_value == pytest.approx(0.0)

    def test_file_store_survives_restart(self, tmp_path, clock):
        first = RankEstimator(_make_benchmarks(), JsonFileStore(tmp_path), "alice", clock)
        first.evolve_scenario_estimate("Tile Frenzy", 4.0)

        second = RankEstimator(_make_benchmarks(), JsonFileStore(tmp_path), "alice", clock)
        estimate = second.get_scenario_estimate("Tile Frenzy")
        assert estimate.continuous_value == pytest.approx(2.0)
        assert estimate.last_updated == clock()
