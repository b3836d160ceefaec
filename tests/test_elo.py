"""Tests for Elo rating calculations."""

import pytest

from shard_arena.core.config import ArenaConfig, RatingConfig
from shard_arena.ranking import create_rating_engine
from shard_arena.ranking.elo import (
    Outcome,
    RatingEngine,
    calculate_expected_win_chance,
    elo_delta,
)


class TestCalculateExpectedWinChance:
    """Tests for expected win probability calculation."""

    def test_equal_ratings(self):
        """Test equal ratings produce 0.5 expected."""
        expected = calculate_expected_win_chance(1200, 1200)
        assert expected == pytest.approx(0.5, abs=0.001)

    def test_higher_rating_higher_expected(self):
        """Test higher rated player has higher expected score."""
        expected = calculate_expected_win_chance(1600, 1400)
        assert 0.5 < expected < 1.0

    def test_400_point_difference(self):
        """Test 400 point difference produces ~91% expected."""
        expected = calculate_expected_win_chance(1900, 1500)
        assert expected == pytest.approx(0.909, abs=0.01)


class TestEloDelta:
    """Tests for the single-side delta."""

    def test_rounds_to_int(self):
        """Test delta is an integer."""
        delta = elo_delta(1400, 1600, 1.0, 32)
        assert isinstance(delta, int)
        assert delta == 24

    def test_monotonic_in_expected_score(self):
        """Test a win is worth less the more it was expected."""
        deltas = [elo_delta(rating, 1500, 1.0, 32) for rating in (1300, 1400, 1500, 1600, 1700)]
        assert deltas == sorted(deltas, reverse=True)


class TestRatingEngine:
    """Tests for battle-level Elo deltas."""

    def test_equal_ratings_win(self):
        """Test winner gains what the loser loses at equal ratings."""
        delta_c, delta_d = RatingEngine(k_factor=32).compute(1200, 1200, Outcome.WIN)
        assert delta_c == 16
        assert delta_d == -16

    def test_equal_ratings_loss(self):
        """Test a challenger loss mirrors a win."""
        delta_c, delta_d = RatingEngine(k_factor=32).compute(1200, 1200, Outcome.LOSS)
        assert delta_c == -16
        assert delta_d == 16

    def test_equal_ratings_draw(self):
        """Test a draw between equals moves nothing."""
        assert RatingEngine().compute(1200, 1200, Outcome.DRAW) == (0, 0)

    def test_draw_favours_underdog(self):
        """Test a draw moves the underdog up and the favourite down."""
        delta_c, delta_d = RatingEngine().compute(1400, 1600, Outcome.DRAW)
        assert delta_c > 0
        assert delta_d < 0

    def test_upset_win_larger_change(self):
        """Test upset win produces larger rating change."""
        upset, _ = RatingEngine().compute(1400, 1600, Outcome.WIN)
        expected_win, _ = RatingEngine().compute(1600, 1400, Outcome.WIN)
        assert upset > 16 > expected_win

    def test_deterministic(self):
        """Test the same inputs always give the same deltas."""
        engine = RatingEngine()
        assert engine.compute(1234, 1321, Outcome.WIN) == engine.compute(1234, 1321, Outcome.WIN)

    def test_k_factor_scales_deltas(self):
        """Test deltas scale with K."""
        small = RatingEngine(k_factor=16).compute(1200, 1200, Outcome.WIN)
        large = RatingEngine(k_factor=64).compute(1200, 1200, Outcome.WIN)
        assert small == (8, -8)
        assert large == (32, -32)

    def test_created_from_config(self):
        """Test factory reads the configured K-factor."""
        engine = create_rating_engine(ArenaConfig(rating=RatingConfig(k_factor=10)))
        assert engine.k_factor == 10


class TestOutcome:
    """Tests for outcome scores."""

    @pytest.mark.parametrize(
        ("outcome", "score"),
        [(Outcome.WIN, 1.0), (Outcome.LOSS, 0.0), (Outcome.DRAW, 0.5)],
    )
    def test_actual_score(self, outcome, score):
        """Test outcome maps to the standard actual score."""
        assert outcome.actual_score == score
