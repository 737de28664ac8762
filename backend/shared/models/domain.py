"""
Pydantic v2 domain models shared across the Pitchside services.
These are the canonical internal representations; wire records are mapped
onto them by ingest.normalization.normalizer.

Models are frozen: consumers read them, the merger derives new instances
with model_copy(), nothing mutates in place. Serialised field names are
camelCase to match the upstream and UI vocabulary.
"""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from shared.models.enums import Favorite, MatchStatus


# ── Base ────────────────────────────────────────────────────────────────
class DomainModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )


# ── Team ────────────────────────────────────────────────────────────────
class RecentMatch(DomainModel):
    date: str = ""
    home_team: str = ""
    away_team: str = ""
    score: str = "0-0"
    result: str = "D"


class GoalBucket(DomainModel):
    total: float = 0.0
    home: float = 0.0
    away: float = 0.0


class GoalDistribution(DomainModel):
    """Goals per 15-minute window."""
    first_quarter: GoalBucket = Field(default_factory=GoalBucket, alias="0-15")
    second_quarter: GoalBucket = Field(default_factory=GoalBucket, alias="16-30")
    third_quarter: GoalBucket = Field(default_factory=GoalBucket, alias="31-45")
    fourth_quarter: GoalBucket = Field(default_factory=GoalBucket, alias="46-60")
    fifth_quarter: GoalBucket = Field(default_factory=GoalBucket, alias="61-75")
    sixth_quarter: GoalBucket = Field(default_factory=GoalBucket, alias="76-90")


class Team(DomainModel):
    id: str = ""
    name: str = ""
    position: int = 0
    logo: str = ""
    is_home_team: bool = False
    opponent_name: str = ""

    # Form
    form: str = ""
    home_form: str = ""
    away_form: str = ""
    form_strength: float = 0.0
    form_rating: float = 0.0

    # Goals
    avg_home_goals: float = 0.0
    avg_away_goals: float = 0.0
    avg_total_goals: float = 0.0
    average_goals_scored: float = 0.0
    average_goals_conceded: float = 0.0
    home_average_goals_scored: float = 0.0
    home_average_goals_conceded: float = 0.0
    away_average_goals_scored: float = 0.0
    away_average_goals_conceded: float = 0.0
    home_matches_over15: float = 0.0
    away_matches_over15: float = 0.0
    total_home_matches: int = 0
    total_away_matches: int = 0
    first_half_goals_percent: float = 0.0
    second_half_goals_percent: float = 0.0
    late_goal_rate: float = 0.0
    goal_distribution: GoalDistribution = Field(default_factory=GoalDistribution)

    # Defence
    clean_sheets: int = 0
    home_clean_sheets: int = 0
    away_clean_sheets: int = 0
    clean_sheet_percentage: float = 0.0

    # Rates
    scoring_first_win_rate: float = 0.0
    conceding_first_win_rate: float = 0.0
    btts_rate: float = 0.0
    home_btts_rate: float = 0.0
    away_btts_rate: float = 0.0
    win_percentage: float = 0.0
    draw_percentage: float = 0.0
    home_win_percentage: float = 0.0
    away_win_percentage: float = 0.0
    avg_corners: float = 0.0

    # Strength of schedule
    against_top_teams_points: float = 0.0
    against_mid_teams_points: float = 0.0
    against_bottom_teams_points: float = 0.0

    recent_matches: list[RecentMatch] = Field(default_factory=list)


# ── Markets ─────────────────────────────────────────────────────────────
class Outcome(DomainModel):
    id: str = ""
    description: str = ""
    odds: float = 0.0
    stake_percentage: float = 0.0
    # UI hint: True for exactly one merge after the odds moved
    is_changed: bool = False


class Market(DomainModel):
    id: str = ""
    description: str = ""
    specifier: str = ""
    favourite: str = ""
    profit_percentage: float = 0.0
    margin: float = 0.0
    outcomes: list[Outcome] = Field(default_factory=list)


# ── In-play statistics ──────────────────────────────────────────────────
class SituationSide(DomainModel):
    total_attacks: float = 0.0
    total_dangerous_attacks: float = 0.0
    total_safe_attacks: float = 0.0
    total_attack_count: float = 0.0
    total_dangerous_count: float = 0.0
    total_safe_count: float = 0.0
    attack_percentage: float = 0.0
    dangerous_attack_percentage: float = 0.0
    safe_attack_percentage: float = 0.0


class MatchSituation(DomainModel):
    total_time: float = 0.0
    dominant_team: str = ""
    match_momentum: str = ""
    home: SituationSide = Field(default_factory=SituationSide)
    away: SituationSide = Field(default_factory=SituationSide)


class DetailSide(DomainModel):
    yellow_cards: float = 0.0
    red_cards: float = 0.0
    free_kicks: float = 0.0
    goal_kicks: float = 0.0
    throw_ins: float = 0.0
    offsides: float = 0.0
    corner_kicks: float = 0.0
    shots_on_target: float = 0.0
    shots_off_target: float = 0.0
    saves: float = 0.0
    fouls: float = 0.0
    injuries: float = 0.0
    dangerous_attacks: float = 0.0
    ball_safe: float = 0.0
    total_attacks: float = 0.0
    goal_attempts: float = 0.0
    ball_safe_percentage: float = 0.0
    attack_percentage: float = 0.0
    dangerous_attack_percentage: float = 0.0


class MatchDetails(DomainModel):
    home: DetailSide = Field(default_factory=DetailSide)
    away: DetailSide = Field(default_factory=DetailSide)
    types: dict[str, str] = Field(default_factory=dict)


# ── Canonical live match ────────────────────────────────────────────────
class CanonicalMatch(DomainModel):
    """One fixture, whichever upstream shape it came from."""
    id: str
    home_team: Team = Field(default_factory=lambda: Team(is_home_team=True))
    away_team: Team = Field(default_factory=Team)
    tournament_name: str = ""
    season_id: int = 0
    period: str = ""
    # status, played_seconds and match_time always come from the same raw fields
    status: MatchStatus = MatchStatus.NOT_STARTED
    played_seconds: int = Field(default=0, ge=0)
    match_time: str = ""
    score: str = ""
    markets: list[Market] = Field(default_factory=list)
    match_situation: Optional[MatchSituation] = None
    match_details: Optional[MatchDetails] = None
    created_at: str = ""


# ── Prediction record ───────────────────────────────────────────────────
class HeadToHead(DomainModel):
    matches: int = 0
    wins: int = 0
    draws: int = 0
    losses: int = 0
    goals_scored: int = 0
    goals_conceded: int = 0
    recent_matches: list[RecentMatch] = Field(default_factory=list)


class MatchOdds(DomainModel):
    home_win: float = 0.0
    draw: float = 0.0
    away_win: float = 0.0
    over15_goals: float = 0.0
    under15_goals: float = 0.0
    over25_goals: float = 0.0
    under25_goals: float = 0.0
    btts_yes: float = 0.0
    btts_no: float = 0.0


class CornerStats(DomainModel):
    home_avg: float = 0.0
    away_avg: float = 0.0
    total_avg: float = 0.0


class ScoringPatterns(DomainModel):
    home_first_goal_rate: float = 0.0
    away_first_goal_rate: float = 0.0
    home_late_goal_rate: float = 0.0
    away_late_goal_rate: float = 0.0
    home_btts_rate: float = 0.0
    away_btts_rate: float = 0.0


class PredictionRecord(DomainModel):
    """Precomputed pre-match analysis, cross-referenced against live matches."""
    id: str
    home_team: Team = Field(default_factory=lambda: Team(is_home_team=True))
    away_team: Team = Field(default_factory=Team)
    date: str = ""
    time: str = ""
    venue: str = ""
    position_gap: float = 0.0
    favorite: Optional[Favorite] = None
    confidence_score: float = Field(default=0.0, ge=0.0, le=100.0)
    average_goals: float = 0.0
    expected_goals: float = 0.0
    defensive_strength: float = 0.0
    head_to_head: HeadToHead = Field(default_factory=HeadToHead)
    odds: MatchOdds = Field(default_factory=MatchOdds)
    corner_stats: CornerStats = Field(default_factory=CornerStats)
    scoring_patterns: ScoringPatterns = Field(default_factory=ScoringPatterns)
    reasons_for_prediction: list[str] = Field(default_factory=list)


class LeagueData(DomainModel):
    matches: int = 0
    total_goals: float = 0.0
    home_win_rate: float = 0.0
    draw_rate: float = 0.0
    away_win_rate: float = 0.0
    btts_rate: float = 0.0


class PredictionMetadata(DomainModel):
    total: int = 0
    date: str = ""
    league_data: dict[str, LeagueData] = Field(default_factory=dict)


class PredictionPayload(DomainModel):
    upcoming_matches: list[PredictionRecord] = Field(default_factory=list)
    metadata: PredictionMetadata = Field(default_factory=PredictionMetadata)
