import pytest

from sessions import keys
from sessions.exceptions import ConflictError
from sessions.models import MAX_COMMENT_LOG_BYTES, Comment, UserSection
from sessions.rating import RatingRecord
from sessions.repository import SessionRepository
from sessions.tests.helpers.games import make_session
from sessions.tests.mocks import FakeRulesEngine, RacingStore
from shared.store import ConditionFailedError


@pytest.fixture
def store():
    return RacingStore()


@pytest.fixture
def repository(store):
    return SessionRepository(store, cas_attempts=3)


def _bump(field):
    def mutate(record):
        record[field] += 1

    return mutate


class TestSessions:
    async def test_create_and_get(self, repository):
        session = make_session(FakeRulesEngine())

        await repository.create_session(session)

        assert await repository.get_session("g1") == session

    async def test_create_twice_fails(self, repository):
        session = make_session(FakeRulesEngine())
        await repository.create_session(session)

        with pytest.raises(ConditionFailedError):
            await repository.create_session(session)

    async def test_save_bumps_version(self, repository):
        session = make_session(FakeRulesEngine())
        await repository.create_session(session)

        saved = await repository.save_session(session.model_copy(update={"to_move": 1}), expected_version=1)

        assert saved.version == 2
        stored = await repository.get_session("g1")
        assert stored.version == 2
        assert stored.to_move == 1

    async def test_stale_save_fails(self, repository):
        session = make_session(FakeRulesEngine())
        await repository.create_session(session)
        await repository.save_session(session, expected_version=1)

        with pytest.raises(ConditionFailedError):
            await repository.save_session(session, expected_version=1)


class TestRetryOnConflict:
    async def test_retries_until_success(self, repository):
        calls = []

        async def attempt():
            calls.append(1)
            if len(calls) < 3:
                raise ConditionFailedError("GAME", "g1", "version")
            return "done"

        assert await repository.retry_on_conflict("game g1", attempt) == "done"
        assert len(calls) == 3

    async def test_gives_up_with_conflict(self, repository):
        async def attempt():
            raise ConditionFailedError("GAME", "g1", "version")

        with pytest.raises(ConflictError):
            await repository.retry_on_conflict("game g1", attempt, attempts=2)


class TestUsers:
    async def test_register_creates_and_refreshes(self, repository):
        created = await repository.register_user("alice", "Alice", "en")
        refreshed = await repository.register_user("alice", "Alice B", "fr")

        assert created.name == "Alice"
        assert (refreshed.name, refreshed.language) == ("Alice B", "fr")

    async def test_register_keeps_existing_sections(self, repository):
        await repository.register_user("alice", "Alice", "en")
        await repository.update_user("alice", UserSection.RATINGS, lambda u: u.ratings.update(chess=RatingRecord(n=3)))

        user = await repository.register_user("alice", "Alice", "de")

        assert user.ratings["chess"].n == 3

    async def test_update_missing_user_returns_none(self, repository):
        assert await repository.update_user("ghost", UserSection.GAMES, lambda u: None) is None

    async def test_update_bumps_only_its_section_counter(self, repository):
        await repository.register_user("alice", "Alice", "en")

        user = await repository.update_user("alice", UserSection.CHALLENGES, lambda u: u.challenges.issued.append("c1"))

        assert user.challenges_update == 1
        assert user.games_update == 0
        assert (await repository.get_user("alice")).challenges.issued == ["c1"]

    async def test_concurrent_section_change_is_retried_and_preserved(self, repository, store):
        await repository.register_user("alice", "Alice", "en")

        def competing(record):
            record["challenges"]["received"].append("c9")
            record["challenges_update"] += 1

        store.race(keys.USER, "alice", competing)

        await repository.update_user("alice", UserSection.CHALLENGES, lambda u: u.challenges.issued.append("c1"))

        user = await repository.get_user("alice")
        assert user.challenges.issued == ["c1"]
        assert user.challenges.received == ["c9"]
        assert user.challenges_update == 2

    async def test_other_section_write_does_not_block(self, repository, store):
        await repository.register_user("alice", "Alice", "en")

        def competing(record):
            record["ratings"]["go"] = RatingRecord(n=1).model_dump()
            record["ratings_update"] += 1

        store.race(keys.USER, "alice", competing)

        await repository.update_user("alice", UserSection.CHALLENGES, lambda u: u.challenges.issued.append("c1"))

        user = await repository.get_user("alice")
        assert user.ratings["go"].n == 1
        assert user.challenges.issued == ["c1"]
        assert user.challenges_update == 1

    async def test_persistent_contention_raises_conflict(self, repository, store):
        await repository.register_user("alice", "Alice", "en")
        store.race(keys.USER, "alice", _bump("games_update"), times=3)

        with pytest.raises(ConflictError):
            await repository.update_user("alice", UserSection.GAMES, lambda u: None)


class TestComments:
    async def test_append_and_read_in_order(self, repository):
        for text in ("first", "second"):
            assert await repository.append_comment("g1", Comment(comment=text, user_id="a", move_number=0, timestamp=1))

        comments = await repository.get_comments("g1")

        assert [c.comment for c in comments] == ["first", "second"]

    async def test_no_comments(self, repository):
        assert await repository.get_comments("g1") == []

    async def test_full_log_drops_comment(self, repository):
        big = "x" * 3990
        appended = 0
        while await repository.append_comment("g1", Comment(comment=big, user_id="a", move_number=0, timestamp=1)):
            appended += 1

        comments = await repository.get_comments("g1")
        assert len(comments) == appended
        assert sum(c.accounted_size for c in comments) < MAX_COMMENT_LOG_BYTES


class TestCounters:
    async def test_adjust_from_nothing(self, repository):
        counts = await repository.adjust_counts("chess", {"currentgames": 1})

        assert counts.currentgames == 1
        assert (await repository.get_counts("chess")).currentgames == 1

    async def test_adjust_accumulates_and_tracks_rated_players(self, repository):
        await repository.adjust_counts("chess", {"currentgames": 2})
        await repository.adjust_counts("chess", {"currentgames": -1, "completedgames": 1}, rated_players=("a", "b"))
        counts = await repository.adjust_counts("chess", {}, rated_players=("a",))

        assert (counts.currentgames, counts.completedgames) == (1, 1)
        assert counts.ratedplayers == ["a", "b"]

    async def test_unknown_game_has_zero_counts(self, repository):
        counts = await repository.get_counts("go")

        assert (counts.currentgames, counts.completedgames, counts.standingchallenges) == (0, 0, 0)

    async def test_concurrent_adjustments_all_land(self, repository, store):
        await repository.adjust_counts("chess", {"currentgames": 1})
        store.race(keys.METAGAMES, keys.counts_key("chess"), lambda r: r.update(currentgames=r["currentgames"] + 1, version=r["version"] + 1))

        await repository.adjust_counts("chess", {"currentgames": 1})

        assert (await repository.get_counts("chess")).currentgames == 3

    async def test_all_counts(self, repository):
        await repository.adjust_counts("chess", {"currentgames": 1})
        await repository.adjust_counts("go", {"completedgames": 1})

        assert [c.meta_game for c in await repository.all_counts()] == ["chess", "go"]


class TestRatings:
    async def test_leaderboard_is_sorted_by_rating(self, repository):
        await repository.put_rating_entry("chess", "a", "Alice", RatingRecord(rating=1180, n=1))
        await repository.put_rating_entry("chess", "b", "Bob", RatingRecord(rating=1220, n=1, wins=1))

        entries = await repository.list_ratings("chess")

        assert [(e["id"], e["name"]) for e in entries] == [("b", "Bob"), ("a", "Alice")]
        assert entries[0]["wins"] == 1
