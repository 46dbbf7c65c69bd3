import random

from lobby.challenges import Challenge, Participant, Seating
from lobby.challenges.seating import orientation_settings, seat_players
from sessions.rules import GameFlag
from sessions.tests.mocks import FakeRulesEngine

ALICE = Participant(id="alice", name="Alice")
BOB = Participant(id="bob", name="Bob")
CAROL = Participant(id="carol", name="Carol")
DAVE = Participant(id="dave", name="Dave")


def _challenge(num_players=2, seating=Seating.RANDOM, players=(ALICE,)):
    return Challenge(
        id="c1",
        meta_game="chess",
        num_players=num_players,
        seating=seating,
        clock_start=1,
        clock_inc=0,
        clock_max=2,
        challenger=ALICE,
        players=list(players),
        created_at=0,
    )


class TestSeatPlayers:
    def test_challenger_seated_first(self):
        seated = seat_players(_challenge(seating=Seating.SEAT_FIRST), BOB, random.Random(1))

        assert [p.id for p in seated] == ["alice", "bob"]

    def test_challenger_seated_second(self):
        seated = seat_players(_challenge(seating=Seating.SEAT_SECOND), BOB, random.Random(1))

        assert [p.id for p in seated] == ["bob", "alice"]

    def test_random_seating_uses_everyone_once(self):
        challenge = _challenge(num_players=4, players=(ALICE, BOB, CAROL))

        seated = seat_players(challenge, DAVE, random.Random(3))

        assert sorted(p.id for p in seated) == ["alice", "bob", "carol", "dave"]

    def test_random_seating_is_driven_by_rng(self):
        challenge = _challenge(num_players=4, players=(ALICE, BOB, CAROL))

        first = seat_players(challenge, DAVE, random.Random(11))
        second = seat_players(challenge, DAVE, random.Random(11))

        assert first == second


class TestOrientationSettings:
    def test_no_perspective_no_settings(self):
        assert orientation_settings(FakeRulesEngine(), 2) == [None, None]

    def test_two_seats_face_each_other(self):
        engine = FakeRulesEngine(flags=[GameFlag.PERSPECTIVE])

        assert orientation_settings(engine, 2) == [None, {"rotate": 180}]

    def test_four_seats_rotate_by_quarter_turns(self):
        engine = FakeRulesEngine(flags=[GameFlag.PERSPECTIVE, GameFlag.ROTATE90])

        assert orientation_settings(engine, 4) == [None, {"rotate": 90}, {"rotate": 180}, {"rotate": 270}]

    def test_rotate90_needs_more_than_two_seats(self):
        engine = FakeRulesEngine(flags=[GameFlag.PERSPECTIVE, GameFlag.ROTATE90])

        assert orientation_settings(engine, 2) == [None, {"rotate": 180}]

    def test_many_seats_without_rotate90_alternate(self):
        engine = FakeRulesEngine(flags=[GameFlag.PERSPECTIVE])

        assert orientation_settings(engine, 3) == [None, {"rotate": 180}, {"rotate": 0}]
