"""Session façade: the request-level entry point of the engine.

Binds the move processor, challenge lifecycle, index maintenance, ratings and
notifications to the store. Every session mutation is a compare-and-set on
the session ``version``; a lost race re-reads the session and re-runs the
move processor, which re-checks turn ownership against the fresh state.

Once a session write commits, everything that follows (comments, ratings,
listings, game lists, notifications, broadcast) is best effort: failures are
logged and never undo or fail the move.
"""

from __future__ import annotations

import time
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog

from lobby.challenges import ChallengeManager, ChallengeRepository, MatchStarter
from sessions import keys
from sessions.clock import find_expired_seat
from sessions.config import EngineConfig
from sessions.exceptions import (
    ConflictError,
    InvalidOutcomeError,
    NotFoundError,
    NotParticipantError,
)
from sessions.index import IndexMaintainer
from sessions.models import MAX_COMMENT_LENGTH, Comment, UserSection
from sessions.moves import Action, MoveProcessor
from sessions.notify import BroadcastEvent, LoggingNotifier, Notifications, NullBroadcaster, Template
from sessions.rating import RatingRecord, first_player_score, rate_side
from sessions.repository import SessionRepository
from sessions.user_games import UserGameLists
from sessions.views import public_view
from shared.store import StoreError

if TYPE_CHECKING:
    import random
    from collections.abc import Callable

    from lobby.challenges import AcceptResult, Challenge, ChallengeTerms
    from sessions.models import GameSession, UserRecord
    from sessions.moves import MoveResult
    from sessions.notify import Broadcaster, Notifier
    from sessions.rules import RulesRegistry
    from shared.store import Store

logger = structlog.get_logger()


def now_ms() -> int:
    return int(time.time() * 1000)


class DrawAction(StrEnum):
    OFFER = "offer"
    ACCEPT = "accept"


class SessionManager:
    def __init__(
        self,
        store: Store,
        registry: RulesRegistry,
        *,
        config: EngineConfig | None = None,
        notifier: Notifier | None = None,
        broadcaster: Broadcaster | None = None,
        now: Callable[[], int] = now_ms,
        rng: random.Random | None = None,
    ) -> None:
        self._config = config or EngineConfig()
        self._registry = registry
        self._now = now
        self._repository = SessionRepository(store, cas_attempts=self._config.user_list_cas_attempts)
        self._user_games = UserGameLists(self._repository)
        self._index = IndexMaintainer(self._repository, self._user_games)
        self._notifications = Notifications(
            notifier or LoggingNotifier(),
            broadcaster or NullBroadcaster(),
            self._repository,
        )
        self._processor = MoveProcessor(registry, max_automove_plies=self._config.max_automove_plies)
        challenge_repository = ChallengeRepository(store, self._repository)
        starter = MatchStarter(registry, challenge_repository, self._repository, self._index, rng=rng)
        self._challenges = ChallengeManager(
            registry,
            challenge_repository,
            self._repository,
            starter,
            self._notifications,
            now,
        )

    @property
    def repository(self) -> SessionRepository:
        return self._repository

    # Users

    async def register_user(self, user_id: str, name: str, language: str = "en") -> UserRecord:
        user = await self._repository.register_user(user_id, name, language)
        logger.info("user registered", user_id=user_id)
        return user

    # Challenges

    async def propose_challenge(self, user_id: str, terms: ChallengeTerms) -> Challenge:
        return await self._challenges.propose(user_id, terms)

    async def accept_challenge(
        self,
        user_id: str,
        challenge_id: str,
        *,
        meta_game: str | None = None,
        standing: bool = False,
    ) -> AcceptResult:
        return await self._challenges.accept(user_id, challenge_id, meta_game=meta_game, standing=standing)

    async def revoke_challenge(
        self,
        user_id: str,
        challenge_id: str,
        *,
        meta_game: str | None = None,
        standing: bool = False,
    ) -> Challenge:
        return await self._challenges.revoke(user_id, challenge_id, meta_game=meta_game, standing=standing)

    async def decline_challenge(
        self,
        user_id: str,
        challenge_id: str,
        *,
        meta_game: str | None = None,
        standing: bool = False,
    ) -> Challenge:
        return await self._challenges.decline(user_id, challenge_id, meta_game=meta_game, standing=standing)

    async def challenge_details(
        self,
        challenge_id: str,
        *,
        meta_game: str | None = None,
        standing: bool = False,
    ) -> Challenge:
        return await self._challenges.details(challenge_id, meta_game=meta_game, standing=standing)

    async def list_standing_challenges(self, meta_game: str) -> list[Challenge]:
        self._registry.get(meta_game)
        return await self._challenges.list_standing(meta_game)

    # Moves

    async def submit_move(self, user_id: str, game_id: str, move: str, *, draw_offer: bool = False) -> dict[str, Any]:
        return await self._submit(user_id, game_id, Action.MOVE, move=move, draw_offer=draw_offer)

    async def submit_draw(self, user_id: str, game_id: str, action: DrawAction) -> dict[str, Any]:
        kind = Action.DRAW_OFFER if action == DrawAction.OFFER else Action.DRAW_ACCEPT
        return await self._submit(user_id, game_id, kind)

    async def resign(self, user_id: str, game_id: str) -> dict[str, Any]:
        return await self._submit(user_id, game_id, Action.RESIGN)

    async def timeout(self, user_id: str, game_id: str) -> dict[str, Any]:
        return await self._submit(user_id, game_id, Action.TIMEOUT)

    async def invoke_pie(self, user_id: str, game_id: str) -> dict[str, Any]:
        return await self._submit(user_id, game_id, Action.PIE)

    async def _require_session(self, game_id: str) -> GameSession:
        session = await self._repository.get_session(game_id)
        if session is None:
            raise NotFoundError(f"game {game_id} does not exist")
        return session

    async def _submit(self, user_id: str, game_id: str, action: Action, **kwargs: Any) -> dict[str, Any]:  # noqa: ANN401
        async def attempt() -> tuple[MoveResult, GameSession, int]:
            session = await self._require_session(game_id)
            now = self._now()
            result = self._processor.process(session, user_id, action, now, **kwargs)
            saved = await self._repository.save_session(result.session, expected_version=session.version)
            return result, saved, now

        result, saved, now = await self._repository.retry_on_conflict(
            f"game {game_id}",
            attempt,
            attempts=self._config.session_cas_attempts,
        )
        logger.info("session updated", game_id=game_id, action=action, version=saved.version, completed=result.completed)
        await self._after_transition(result, saved, user_id, now)
        return public_view(saved, user_id)

    async def _after_transition(self, result: MoveResult, session: GameSession, actor_id: str | None, now: int) -> None:
        if result.comment is not None and actor_id is not None:
            engine = self._registry.get(session.meta_game)
            move_number = engine.move_count(engine.load(session.state))
            await self._safe_comment(
                session.id,
                Comment(comment=result.comment, user_id=actor_id, move_number=move_number, timestamp=now),
            )

        if result.completed:
            ratings = await self._rate(session)
            await self._index.record_complete(session, now, seen_by=actor_id)
            await self._announce_game_over(session, ratings)
            return

        await self._index.record_progress(session)
        if result.turn_passed:
            engine = self._registry.get(session.meta_game)
            to_move = session.to_move
            recipients = session.player_ids if isinstance(to_move, list) else [session.players[int(to_move or 0)].id]
            await self._notifications.send(
                recipients,
                Template.YOUR_MOVE,
                {"game": engine.name, "game_id": session.id},
            )
        await self._notifications.publish(
            BroadcastEvent.GAME_UPDATED,
            {"game_id": session.id, "version": session.version},
            exclude_user_ids=[actor_id] if actor_id else (),
        )

    async def _announce_game_over(self, session: GameSession, ratings: dict[str, RatingRecord]) -> None:
        game = self._registry.get(session.meta_game).name
        for player in session.players:
            rating = ratings.get(player.id)
            if rating is None:
                await self._notifications.send([player.id], Template.GAME_OVER, {"game": game, "game_id": session.id})
            else:
                await self._notifications.send(
                    [player.id],
                    Template.GAME_OVER_RATED,
                    {"game": game, "game_id": session.id, "rating": round(rating.rating)},
                )
        await self._notifications.publish(
            BroadcastEvent.GAME_OVER,
            {"game_id": session.id, "winner": session.winner or []},
        )

    async def _rate(self, session: GameSession) -> dict[str, RatingRecord]:
        """Update both players' ratings for a finished rated game. Returns the new records by user id."""
        if not session.rated or (session.num_moves or 0) <= session.num_players:
            return {}
        if session.num_players != 2:
            logger.error("rated game without exactly two players", game_id=session.id, players=session.num_players)
            return {}
        try:
            score = first_player_score(session.winner or [])
        except InvalidOutcomeError:
            logger.exception("cannot rate game", game_id=session.id, winner=session.winner)
            return {}

        meta = session.meta_game
        first_id, second_id = session.player_ids
        priors: dict[str, RatingRecord] = {}
        try:
            for user_id in (first_id, second_id):
                user = await self._repository.get_user(user_id)
                priors[user_id] = user.ratings.get(meta, RatingRecord()) if user is not None else RatingRecord()
        except StoreError:
            logger.exception("cannot read prior ratings", game_id=session.id)
            return {}

        updated: dict[str, RatingRecord] = {}
        for user_id, opponent_id, player_score in ((first_id, second_id, score), (second_id, first_id, 1 - score)):
            opponent_rating = priors[opponent_id].rating

            def change(user: UserRecord, opponent_rating: float = opponent_rating, player_score: float = player_score) -> None:
                user.ratings[meta] = rate_side(user.ratings.get(meta, RatingRecord()), opponent_rating, player_score)

            try:
                user = await self._repository.update_user(user_id, UserSection.RATINGS, change)
                if user is None:
                    continue
                updated[user_id] = user.ratings[meta]
                await self._repository.put_rating_entry(meta, user_id, user.name, user.ratings[meta])
            except (ConflictError, StoreError):
                logger.exception("rating update failed", game_id=session.id, user_id=user_id)

        if updated:
            try:
                await self._repository.adjust_counts(meta, {}, rated_players=tuple(updated))
            except (ConflictError, StoreError):
                logger.exception("rated players update failed", meta_game=meta)
        logger.info("game rated", game_id=session.id, ratings={k: round(v.rating, 1) for k, v in updated.items()})
        return updated

    async def _safe_comment(self, game_id: str, comment: Comment) -> None:
        try:
            await self._repository.append_comment(game_id, comment)
        except (ConflictError, StoreError):
            logger.exception("failed to record comment", game_id=game_id)

    # Views and per-user bookkeeping

    async def get_game(self, user_id: str | None, game_id: str) -> dict[str, Any]:
        session = await self._require_session(game_id)
        if session.completed and user_id is not None and session.seat_of(user_id) is not None:
            try:
                await self._user_games.mark_seen(user_id, game_id, self._now())
            except (ConflictError, StoreError):
                logger.exception("failed to mark game seen", game_id=game_id, user_id=user_id)
        comments = await self._repository.get_comments(game_id)
        return {
            "game": public_view(session, user_id),
            "comments": [c.model_dump(mode="json") for c in comments],
        }

    async def my_games(self, user_id: str) -> dict[str, Any]:
        """The user's game list and challenge references, after settling hard-clock timeouts."""
        user = await self._repository.get_user(user_id)
        if user is None:
            raise NotFoundError(f"user {user_id} does not exist")

        now = self._now()
        for summary in user.games:
            if summary.completed or not summary.clock_hard:
                continue
            times = [p.time for p in summary.players]
            seat = find_expired_seat(times, summary.to_move, now - summary.last_move_time)
            if seat is not None:
                await self._expire(summary.id)

        refreshed = await self._user_games.prune(user_id, now, self._config.completed_retention_ms)
        if refreshed is None:  # pragma: no cover
            raise NotFoundError(f"user {user_id} does not exist")
        return {
            "games": [g.model_dump(mode="json") for g in refreshed.games],
            "challenges": refreshed.challenges.model_dump(mode="json"),
        }

    async def _expire(self, game_id: str) -> None:
        """Resolve a hard-clock game whose active seat ran out of time, as of the moment it did."""

        async def attempt() -> tuple[MoveResult, GameSession, int] | None:
            session = await self._repository.get_session(game_id)
            if session is None or session.completed or not session.clock_hard:
                return None
            times = [p.time for p in session.players]
            seat = find_expired_seat(times, session.to_move, self._now() - session.last_move_time)
            if seat is None:
                return None
            timestamp = session.last_move_time + session.players[seat].time
            result = self._processor.expire(session, seat, timestamp)
            saved = await self._repository.save_session(result.session, expected_version=session.version)
            return result, saved, timestamp

        try:
            outcome = await self._repository.retry_on_conflict(
                f"game {game_id}",
                attempt,
                attempts=self._config.session_cas_attempts,
            )
        except (ConflictError, StoreError):
            logger.exception("failed to settle timed-out game", game_id=game_id)
            return
        if outcome is None:
            return
        result, saved, timestamp = outcome
        logger.info("hard clock expired", game_id=game_id, seat=result.timed_out_seat)
        await self._after_transition(result, saved, None, timestamp)

    async def list_games(
        self,
        meta_game: str | None = None,
        *,
        completed: bool = False,
        player_id: str | None = None,
    ) -> list[dict[str, Any]]:
        namespace = keys.COMPLETED_GAMES if completed else keys.CURRENT_GAMES
        games = await self._repository.list_games(namespace, meta_game=meta_game, player_id=player_id)
        return [g.model_dump(mode="json") for g in games]

    async def ratings(self, meta_game: str) -> list[dict[str, Any]]:
        self._registry.get(meta_game)
        return await self._repository.list_ratings(meta_game)

    async def counts(self, meta_game: str) -> dict[str, Any]:
        self._registry.get(meta_game)
        counts = await self._repository.get_counts(meta_game)
        return counts.model_dump(mode="json", exclude={"version"})

    async def submit_comment(self, user_id: str, game_id: str, comment: str, move_number: int) -> bool:
        """Append a comment to a game's log. Returns False when the log is full."""
        await self._require_session(game_id)
        return await self._repository.append_comment(
            game_id,
            Comment(
                comment=comment[:MAX_COMMENT_LENGTH],
                user_id=user_id,
                move_number=move_number,
                timestamp=self._now(),
            ),
        )

    async def update_game_settings(self, user_id: str, game_id: str, settings: dict[str, Any]) -> dict[str, Any]:
        """Replace the caller's per-seat display settings (orientation and the like)."""

        async def attempt() -> GameSession:
            session = await self._require_session(game_id)
            seat = session.seat_of(user_id)
            if seat is None:
                raise NotParticipantError(f"{user_id} is not playing in game {game_id}")
            updated = session.model_copy(deep=True)
            updated.players[seat].settings = settings
            return await self._repository.save_session(updated, expected_version=session.version)

        saved = await self._repository.retry_on_conflict(
            f"game {game_id}",
            attempt,
            attempts=self._config.session_cas_attempts,
        )
        return public_view(saved, user_id)
