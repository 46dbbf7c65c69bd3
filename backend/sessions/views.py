"""Public projections of session records."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from sessions.models import GameSession


def public_view(session: GameSession, viewer_id: str | None = None) -> dict[str, Any]:
    """Session as shown to ``viewer_id``: other seats' buffered simultaneous moves are blanked."""
    view = session.model_dump(mode="json")
    if session.simultaneous and session.partial_move:
        seat = session.seat_of(viewer_id) if viewer_id is not None else None
        slots = session.partial_move.split(",")
        view["partial_move"] = ",".join(slot if index == seat else "" for index, slot in enumerate(slots))
    return view
