import pytest

from sessions.clock import MS_PER_HOUR, apply_elapsed, find_expired_seat, hours_to_ms


class TestHoursToMs:
    def test_whole_and_fractional_hours(self):
        assert hours_to_ms(1) == MS_PER_HOUR
        assert hours_to_ms(0.5) == 1_800_000
        assert hours_to_ms(0) == 0


class TestApplyElapsed:
    def test_subtracts_elapsed_and_adds_increment(self):
        assert apply_elapsed(10_000, 3_000, 1_000, 60_000) == 8_000

    def test_caps_at_maximum(self):
        assert apply_elapsed(59_000, 0, 5_000, 60_000) == 60_000

    def test_overspent_seat_keeps_only_increment(self):
        assert apply_elapsed(1_000, 5_000, 2_000, 60_000) == 2_000

    def test_exactly_spent_is_not_overspent(self):
        assert apply_elapsed(1_000, 1_000, 500, 60_000) == 500

    def test_overspent_increment_is_not_capped(self):
        assert apply_elapsed(0, 1, 10_000, 5_000) == 10_000


class TestFindExpiredSeat:
    def test_sequential_seat_to_move_expired(self):
        assert find_expired_seat([5_000, 100], 1, 200) == 1

    def test_sequential_only_checks_seat_to_move(self):
        assert find_expired_seat([5_000, 100], 0, 200) is None

    def test_zero_margin_is_not_expired(self):
        assert find_expired_seat([200, 200], 0, 200) is None

    def test_completed_session_never_expires(self):
        assert find_expired_seat([0, 0], None, 10_000) is None

    def test_simultaneous_picks_most_negative_owing_seat(self):
        times = [1_000, 500, 100]
        assert find_expired_seat(times, [True, True, True], 2_000) == 2

    def test_simultaneous_ignores_seats_that_already_moved(self):
        times = [1_000, 500, 100]
        assert find_expired_seat(times, [True, True, False], 2_000) == 1

    @pytest.mark.parametrize("to_move", [[False, False], [True, True]])
    def test_simultaneous_nothing_expired(self, to_move):
        assert find_expired_seat([5_000, 5_000], to_move, 1_000) is None
