"""Record key layout. Partition keys (``pk``) and sort keys (``sk``) for every record type."""

GAME = "GAME"
GAME_COMMENTS = "GAMECOMMENTS"
USER = "USER"
METAGAMES = "METAGAMES"
CHALLENGE = "CHALLENGE"
STANDING_CHALLENGE = "STANDINGCHALLENGE"
RATINGS = "RATINGS"
CURRENT_GAMES = "CURRENTGAMES"
COMPLETED_GAMES = "COMPLETEDGAMES"

# Marks the player segment of listing partitions.
PLAYER_TAG = "U"


def standing_partition(meta_game: str) -> str:
    return f"{STANDING_CHALLENGE}#{meta_game}"


def counts_key(meta_game: str) -> str:
    return f"COUNTS#{meta_game}"


def ratings_partition(meta_game: str) -> str:
    return f"{RATINGS}#{meta_game}"


def listing_partition(namespace: str, meta_game: str | None = None, player_id: str | None = None) -> str:
    """``CURRENTGAMES``, ``CURRENTGAMES#chess``, ``CURRENTGAMES#U#<user>`` or ``CURRENTGAMES#chess#U#<user>``.

    Player ids are tagged so a user named like a game type gets a partition of their own.
    """
    player = f"{PLAYER_TAG}#{player_id}" if player_id else None
    return "#".join(part for part in (namespace, meta_game, player) if part)


def listing_sort_key(timestamp: int, game_id: str) -> str:
    # Zero-padded so lexical order matches chronological order.
    return f"{timestamp:015d}#{game_id}"
