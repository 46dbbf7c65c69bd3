import pytest

from sessions.exceptions import InvalidOutcomeError
from sessions.rating import (
    DEFAULT_RATING,
    RatingRecord,
    expected_score,
    first_player_score,
    k_factor,
    rate_match,
)


class TestKFactor:
    @pytest.mark.parametrize(
        ("games", "expected"),
        [(0, 40), (9, 40), (10, 30), (19, 30), (20, 25), (39, 25), (40, 20), (500, 20)],
    )
    def test_steps_down_with_experience(self, games, expected):
        assert k_factor(games) == expected


class TestExpectedScore:
    def test_equal_ratings(self):
        assert expected_score(1500, 1500) == pytest.approx(0.5)

    def test_four_hundred_points_stronger(self):
        assert expected_score(1600, 1200) == pytest.approx(10 / 11)

    def test_expectations_sum_to_one(self):
        assert expected_score(1350, 1210) + expected_score(1210, 1350) == pytest.approx(1.0)


class TestFirstPlayerScore:
    @pytest.mark.parametrize(
        ("winners", "score"),
        [({1}, 1.0), ({2}, 0.0), ({1, 2}, 0.5), (set(), 0.5)],
    )
    def test_outcomes(self, winners, score):
        assert first_player_score(winners) == score

    @pytest.mark.parametrize("winners", [{3}, {1, 3}, {0}])
    def test_unratable_outcome_raises(self, winners):
        with pytest.raises(InvalidOutcomeError):
            first_player_score(winners)


class TestRateMatch:
    def test_new_players_first_wins(self):
        first, second = rate_match(RatingRecord(), RatingRecord(), [1])

        assert first.rating == pytest.approx(DEFAULT_RATING + 20)
        assert second.rating == pytest.approx(DEFAULT_RATING - 20)
        assert (first.n, first.wins, first.draws) == (1, 1, 0)
        assert (second.n, second.wins, second.draws) == (1, 0, 0)

    def test_draw_counts_for_both(self):
        first, second = rate_match(RatingRecord(rating=1300), RatingRecord(rating=1300), [1, 2])

        assert first.rating == pytest.approx(1300)
        assert second.rating == pytest.approx(1300)
        assert first.draws == second.draws == 1

    @pytest.mark.parametrize(("first_prior", "second_prior"), [(1500, 1200), (1200, 1500)])
    def test_draw_pulls_ratings_together(self, first_prior, second_prior):
        first, second = rate_match(RatingRecord(rating=first_prior), RatingRecord(rating=second_prior), [1, 2])

        stronger, weaker = (first, second) if first_prior > second_prior else (second, first)
        shift = 40 * (0.5 - expected_score(1200, 1500))
        assert weaker.rating == pytest.approx(1200 + shift)
        assert stronger.rating == pytest.approx(1500 - shift)
        assert 1200 < weaker.rating < stronger.rating < 1500

    def test_k_factor_comes_from_each_players_own_count(self):
        veteran = RatingRecord(rating=1200, n=50, wins=30)
        newcomer = RatingRecord(rating=1200, n=0)

        first, second = rate_match(veteran, newcomer, [2])

        assert first.rating == pytest.approx(1200 - 10)
        assert second.rating == pytest.approx(1200 + 20)
        assert first.wins == 30
        assert second.wins == 1

    def test_uses_prior_ratings_for_both_sides(self):
        first, second = rate_match(RatingRecord(rating=1600), RatingRecord(rating=1200), [2])

        assert first.rating == pytest.approx(1600 - 40 * (10 / 11))
        assert second.rating == pytest.approx(1200 + 40 * (10 / 11))
