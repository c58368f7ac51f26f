"""Invoice ↔ bank transaction matching."""

from .engine import MatchDecision, MatchingEngine, MatchScore, ScoredCandidate

__all__ = ["MatchDecision", "MatchingEngine", "MatchScore", "ScoredCandidate"]
