"""Builders shared by the session engine and lobby tests."""

from __future__ import annotations

import random
from typing import TYPE_CHECKING, Any

from lobby.challenges import ChallengeTerms, Participant, Seating
from sessions.clock import MS_PER_HOUR, hours_to_ms
from sessions.manager import SessionManager
from sessions.models import GameSession, SeatPlayer
from sessions.rules import GameFlag, RulesRegistry
from sessions.tests.mocks import FakeRulesEngine, RecordingBroadcaster, RecordingNotifier
from shared.store import InMemoryStore

if TYPE_CHECKING:
    from sessions.config import EngineConfig
    from sessions.rules import RulesEngine
    from shared.store import Store

START = 1_700_000_000_000
HOUR = MS_PER_HOUR
MINUTE = 60_000


class FakeClock:
    """Millisecond clock the tests move by hand."""

    def __init__(self, start: int = START) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


def make_registry() -> RulesRegistry:
    return RulesRegistry(
        [
            FakeRulesEngine("fake"),
            FakeRulesEngine("simul", flags=[GameFlag.SIMULTANEOUS]),
            FakeRulesEngine("pie", flags=[GameFlag.PIE, GameFlag.PERSPECTIVE], player_counts=(2,)),
            FakeRulesEngine("auto", flags=[GameFlag.AUTOMOVE]),
            FakeRulesEngine("quad", flags=[GameFlag.PERSPECTIVE, GameFlag.ROTATE90], player_counts=(2, 4)),
        ],
    )


def make_session(
    engine: RulesEngine,
    *,
    num_players: int = 2,
    clock_start: float = 1.0,
    clock_inc: float = 0.0,
    clock_max: float = 2.0,
    now: int = START,
    **overrides: Any,  # noqa: ANN401
) -> GameSession:
    simultaneous = engine.has_flag(GameFlag.SIMULTANEOUS)
    session = GameSession(
        id="g1",
        meta_game=engine.game_type,
        num_players=num_players,
        simultaneous=simultaneous,
        players=[
            SeatPlayer(id=f"p{seat}", name=f"Player {seat}", time=hours_to_ms(clock_start))
            for seat in range(num_players)
        ],
        clock_start=clock_start,
        clock_inc=clock_inc,
        clock_max=clock_max,
        state=engine.serialize(engine.instantiate(num_players, [])),
        to_move=[True] * num_players if simultaneous else 0,
        partial_move=",".join([""] * num_players) if simultaneous else None,
        last_move_time=now,
        game_started=now,
    )
    return session.model_copy(update=overrides)


def make_manager(
    *,
    store: Store | None = None,
    registry: RulesRegistry | None = None,
    clock: FakeClock | None = None,
    notifier: RecordingNotifier | None = None,
    broadcaster: RecordingBroadcaster | None = None,
    config: EngineConfig | None = None,
    seed: int = 7,
) -> SessionManager:
    return SessionManager(
        store or InMemoryStore(),
        registry or make_registry(),
        config=config,
        notifier=notifier or RecordingNotifier(),
        broadcaster=broadcaster or RecordingBroadcaster(),
        now=clock or FakeClock(),
        rng=random.Random(seed),  # noqa: S311
    )


async def register(manager: SessionManager, *user_ids: str) -> None:
    for user_id in user_ids:
        await manager.register_user(user_id, user_id.title())


def terms(meta_game: str = "fake", *challengees: str, **overrides: Any) -> ChallengeTerms:  # noqa: ANN401
    values: dict[str, Any] = {
        "meta_game": meta_game,
        "num_players": len(challengees) + 1,
        "clock_start": 1.0,
        "clock_inc": 0.0,
        "clock_max": 2.0,
        "challengees": [Participant(id=c, name=c.title()) for c in challengees],
    }
    if len(challengees) == 1:
        values["seating"] = Seating.SEAT_FIRST
    values.update(overrides)
    return ChallengeTerms(**values)


async def start_game(
    manager: SessionManager,
    challenger: str,
    *others: str,
    meta_game: str = "fake",
    **overrides: Any,  # noqa: ANN401
) -> GameSession:
    """Register everyone, issue a direct challenge and accept it until the game starts.

    Two-player games seat the challenger first.
    """
    await register(manager, challenger, *others)
    challenge = await manager.propose_challenge(challenger, terms(meta_game, *others, **overrides))
    result = None
    for other in others:
        result = await manager.accept_challenge(other, challenge.id)
    assert result is not None
    assert result.match is not None
    return result.match.session
