"""Challenge lifecycle: proposing, accepting, revoking and declining challenges."""

from lobby.challenges.manager import AcceptResult, ChallengeManager
from lobby.challenges.models import Challenge, ChallengeTerms, Participant, Seating
from lobby.challenges.repository import ChallengeRepository
from lobby.challenges.starter import MatchStarter, StartedMatch

__all__ = [
    "AcceptResult",
    "Challenge",
    "ChallengeManager",
    "ChallengeRepository",
    "ChallengeTerms",
    "MatchStarter",
    "Participant",
    "Seating",
    "StartedMatch",
]
