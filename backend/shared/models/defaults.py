"""
Zero-valued builders for every nested structure a consumer may read.

All defaulting policy lives here so the normalizer never leaves an optional
structure undefined and callers never need a None guard.
"""
from __future__ import annotations

from shared.models.domain import (
    CanonicalMatch,
    CornerStats,
    DetailSide,
    GoalDistribution,
    HeadToHead,
    MatchDetails,
    MatchOdds,
    MatchSituation,
    PredictionRecord,
    ScoringPatterns,
    SituationSide,
    Team,
)
from shared.models.enums import MatchStatus


def default_team(*, is_home: bool = False, name: str = "", opponent_name: str = "") -> Team:
    return Team(name=name, is_home_team=is_home, opponent_name=opponent_name)


def default_goal_distribution() -> GoalDistribution:
    return GoalDistribution()


def default_head_to_head() -> HeadToHead:
    return HeadToHead()


def default_odds() -> MatchOdds:
    return MatchOdds()


def default_corner_stats() -> CornerStats:
    return CornerStats()


def default_scoring_patterns() -> ScoringPatterns:
    return ScoringPatterns()


def default_match_situation() -> MatchSituation:
    return MatchSituation(home=SituationSide(), away=SituationSide())


def default_match_details() -> MatchDetails:
    return MatchDetails(home=DetailSide(), away=DetailSide(), types={})


def default_canonical_match(match_id: str) -> CanonicalMatch:
    """A structurally complete match with every numeric field zeroed."""
    return CanonicalMatch(
        id=match_id,
        home_team=default_team(is_home=True),
        away_team=default_team(),
        status=MatchStatus.NOT_STARTED,
        played_seconds=0,
    )


def default_prediction(record_id: str, *, date: str = "", time: str = "", venue: str = "") -> PredictionRecord:
    return PredictionRecord(
        id=record_id,
        home_team=default_team(is_home=True),
        away_team=default_team(),
        date=date,
        time=time,
        venue=venue,
        favorite=None,
        head_to_head=default_head_to_head(),
        odds=default_odds(),
        corner_stats=default_corner_stats(),
        scoring_patterns=default_scoring_patterns(),
        reasons_for_prediction=[],
    )
