from __future__ import annotations

import contextlib
import importlib
from typing import TYPE_CHECKING

import structlog
from starlette.applications import Starlette
from starlette.middleware.authentication import AuthenticationMiddleware
from starlette.middleware.cors import CORSMiddleware
from starlette.routing import Route

from sessions.exceptions import SessionError
from sessions.manager import SessionManager
from sessions.rules import RulesEngine, RulesRegistry
from sessions.server import handlers
from sessions.server.auth import GatewayHeaderBackend
from sessions.server.settings import SessionServerSettings
from shared.logging import setup_logging
from shared.store import InMemoryStore, ResilientStore, SqliteStore, StoreUnavailableError

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Iterable

    from shared.store import Store

logger = structlog.get_logger()


def load_rules_registry(paths: Iterable[str]) -> RulesRegistry:
    """Instantiate rules engines named as ``package.module:ClassName``."""
    registry = RulesRegistry()
    for path in paths:
        module_name, _, class_name = path.partition(":")
        if not class_name:
            raise ValueError(f"Rules engine path must look like 'package.module:ClassName', got {path!r}")
        engine_cls = getattr(importlib.import_module(module_name), class_name)
        if not (isinstance(engine_cls, type) and issubclass(engine_cls, RulesEngine)):
            raise TypeError(f"{path} is not a RulesEngine")
        registry.register(engine_cls())
        logger.info("rules engine registered", game_type=engine_cls.game_type, path=path)
    return registry


def create_app(
    settings: SessionServerSettings | None = None,
    registry: RulesRegistry | None = None,
    session_manager: SessionManager | None = None,
) -> Starlette:
    if settings is None:  # pragma: no cover
        settings = SessionServerSettings()

    # When the app builds its own store, it owns the database lifecycle.
    owned_store: SqliteStore | None = None

    if session_manager is None:
        if registry is None:
            registry = load_rules_registry(settings.rules_engines)
        inner: Store
        if settings.database_path:
            owned_store = SqliteStore(settings.database_path)
            owned_store.connect()
            inner = owned_store
        else:
            inner = InMemoryStore()
        store = ResilientStore(
            inner,
            timeout_seconds=settings.store_timeout_seconds,
            attempts=settings.store_retry_attempts,
            base_delay_seconds=settings.store_retry_base_delay_seconds,
        )
        session_manager = SessionManager(store, registry, config=settings.engine_config())

    routes = [
        Route("/health", handlers.health, methods=["GET"]),
        Route("/me", handlers.me, methods=["GET"]),
        Route("/me", handlers.register, methods=["PUT"]),
        Route("/challenges", handlers.propose_challenge, methods=["POST"]),
        Route("/challenges/{challenge_id}", handlers.challenge_details, methods=["GET"]),
        Route("/challenges/{challenge_id}/accept", handlers.accept_challenge, methods=["POST"]),
        Route("/challenges/{challenge_id}/revoke", handlers.revoke_challenge, methods=["POST"]),
        Route("/challenges/{challenge_id}/decline", handlers.decline_challenge, methods=["POST"]),
        Route("/standing/{meta_game}", handlers.list_standing_challenges, methods=["GET"]),
        Route("/games", handlers.list_games, methods=["GET"]),
        Route("/games/{game_id}", handlers.get_game, methods=["GET"]),
        Route("/games/{game_id}/move", handlers.submit_move, methods=["POST"]),
        Route("/games/{game_id}/draw", handlers.submit_draw, methods=["POST"]),
        Route("/games/{game_id}/resign", handlers.resign, methods=["POST"]),
        Route("/games/{game_id}/timeout", handlers.claim_timeout, methods=["POST"]),
        Route("/games/{game_id}/pie", handlers.invoke_pie, methods=["POST"]),
        Route("/games/{game_id}/comments", handlers.submit_comment, methods=["POST"]),
        Route("/games/{game_id}/settings", handlers.update_settings, methods=["POST"]),
        Route("/ratings/{meta_game}", handlers.ratings, methods=["GET"]),
        Route("/counts/{meta_game}", handlers.counts, methods=["GET"]),
    ]

    @contextlib.asynccontextmanager
    async def lifespan(_app: Starlette) -> AsyncGenerator[None]:  # pragma: no cover
        yield
        if owned_store is not None:
            owned_store.close()

    app = Starlette(
        routes=routes,
        lifespan=lifespan,
        exception_handlers={
            SessionError: handlers.session_error_handler,
            StoreUnavailableError: handlers.session_error_handler,
        },
    )
    app.add_middleware(AuthenticationMiddleware, backend=GatewayHeaderBackend())  # type: ignore[arg-type]
    app.add_middleware(
        CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "PUT"],
        allow_headers=["Content-Type", "X-User-Id", "X-User-Name"],
    )
    app.state.settings = settings
    app.state.session_manager = session_manager

    logger.info("session server ready")
    return app


def get_app() -> Starlette:  # pragma: no cover  # deadcode: ignore
    """Factory function for uvicorn --factory sessions.server.app:get_app."""
    settings = SessionServerSettings()
    setup_logging(log_dir=settings.log_dir)
    return create_app(settings=settings)
