import pytest

from sessions import keys
from sessions.clock import MS_PER_HOUR
from sessions.repository import SessionRepository
from sessions.tests.helpers.games import START, make_session
from sessions.tests.mocks import FakeRulesEngine, RacingStore
from sessions.user_games import UserGameLists, prune_completed


@pytest.fixture
def store():
    return RacingStore()


@pytest.fixture
async def repository(store):
    repository = SessionRepository(store)
    for user_id in ("p0", "p1"):
        await repository.register_user(user_id, user_id.upper(), "en")
    return repository


@pytest.fixture
def lists(repository):
    return UserGameLists(repository)


def _summary(game_id="g1", **update):
    return make_session(FakeRulesEngine(), id=game_id, **update).summary()


class TestPruneCompleted:
    def test_keeps_in_progress_unseen_and_recent(self):
        games = [
            _summary("live"),
            _summary("unseen", to_move=None),
            _summary("recent", to_move=None).model_copy(update={"seen": START}),
            _summary("old", to_move=None).model_copy(update={"seen": START - 3 * MS_PER_HOUR}),
        ]

        kept = prune_completed(games, START + MS_PER_HOUR, 2 * MS_PER_HOUR)

        assert [g.id for g in kept] == ["live", "unseen", "recent"]


class TestUserGameLists:
    async def test_upsert_inserts_then_replaces(self, lists, repository):
        await lists.upsert(["p0", "p1"], _summary())
        await lists.upsert(["p0", "p1"], _summary(to_move=1))

        user = await repository.get_user("p0")
        assert [(g.id, g.to_move) for g in user.games] == [("g1", 1)]

    async def test_concurrent_updates_for_different_games_both_land(self, lists, repository, store):
        await lists.upsert(["p0"], _summary("g1"))

        def competing(record):
            record["games"].append(_summary("g2").model_dump(mode="json"))
            record["games_update"] += 1

        store.race(keys.USER, "p0", competing)
        await lists.upsert(["p0"], _summary("g3"))

        user = await repository.get_user("p0")
        assert [g.id for g in user.games] == ["g1", "g2", "g3"]

    async def test_failed_user_is_reported_and_others_updated(self, lists, repository, store):
        store.race(keys.USER, "p0", lambda r: r.update(games_update=r["games_update"] + 1), times=3)

        failed = await lists.upsert(["p0", "p1"], _summary())

        assert failed == ["p0"]
        assert [g.id for g in (await repository.get_user("p1")).games] == ["g1"]

    async def test_unknown_user_is_skipped(self, lists):
        assert await lists.upsert(["ghost"], _summary()) == []

    async def test_mark_seen_keeps_first_stamp(self, lists, repository):
        await lists.upsert(["p0"], _summary(to_move=None))

        await lists.mark_seen("p0", "g1", START + 1)
        await lists.mark_seen("p0", "g1", START + 2)

        assert (await repository.get_user("p0")).games[0].seen == START + 1

    async def test_prune_writes_only_when_something_expired(self, lists, repository, store):
        await lists.upsert(["p0"], _summary("live"))
        await lists.upsert(["p0"], _summary("done", to_move=None), seen_by="p0", seen_at=START)
        writes = len(store.conditional_writes)

        unchanged = await lists.prune("p0", START + 1, MS_PER_HOUR)
        assert len(store.conditional_writes) == writes
        assert [g.id for g in unchanged.games] == ["live", "done"]

        pruned = await lists.prune("p0", START + 2 * MS_PER_HOUR, MS_PER_HOUR)
        assert [g.id for g in pruned.games] == ["live"]
