"""
Normalization layer for the live feed.
Maps raw hub and prediction-endpoint records onto the canonical models.

Two wire shapes arrive:
  - live:       {id, teams: {home, away}, playedTime, matchStatus, markets, ...}
  - prediction: {id, homeTeam, awayTeam, date, time, venue, odds, ...}

Every field is converted with a safe coercion and every optional nested
structure is filled from shared.models.defaults, so a present record always
yields a complete model. Only a missing record or id is fatal, and that is
raised as MissingIdentityError for the caller to skip.
"""
from __future__ import annotations

import math
import re
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from pydantic import BaseModel
from pydantic.alias_generators import to_camel

from ingest.normalization.team_names import clean_display_name
from shared.models.defaults import (
    default_canonical_match,
    default_corner_stats,
    default_goal_distribution,
    default_head_to_head,
    default_odds,
    default_prediction,
    default_scoring_patterns,
    default_team,
)
from shared.models.domain import (
    CanonicalMatch,
    CornerStats,
    DetailSide,
    GoalBucket,
    GoalDistribution,
    HeadToHead,
    LeagueData,
    Market,
    MatchDetails,
    MatchOdds,
    MatchSituation,
    Outcome,
    PredictionMetadata,
    PredictionPayload,
    PredictionRecord,
    RecentMatch,
    ScoringPatterns,
    SituationSide,
    Team,
)
from shared.models.enums import Favorite, MatchStatus, RecordShape
from shared.utils.logging import get_logger
from shared.utils.metrics import FEED_RECORDS_SKIPPED

logger = get_logger(__name__)


class MissingIdentityError(ValueError):
    """Raised when a raw record is absent or carries no id."""


# ── Status / clock ──────────────────────────────────────────────────────

_STATUS_SYNONYMS: dict[str, MatchStatus] = {
    "h1": MatchStatus.FIRST_HALF, "1h": MatchStatus.FIRST_HALF,
    "first_half": MatchStatus.FIRST_HALF, "1st half": MatchStatus.FIRST_HALF,
    "first half": MatchStatus.FIRST_HALF,
    "h2": MatchStatus.SECOND_HALF, "2h": MatchStatus.SECOND_HALF,
    "second_half": MatchStatus.SECOND_HALF, "2nd half": MatchStatus.SECOND_HALF,
    "second half": MatchStatus.SECOND_HALF,
    "ht": MatchStatus.HALF_TIME, "half_time": MatchStatus.HALF_TIME,
    "half time": MatchStatus.HALF_TIME, "halftime": MatchStatus.HALF_TIME,
    "ft": MatchStatus.FULL_TIME, "finished": MatchStatus.FULL_TIME,
    "full_time": MatchStatus.FULL_TIME, "full time": MatchStatus.FULL_TIME,
    "ended": MatchStatus.FULL_TIME,
    "ns": MatchStatus.NOT_STARTED, "not_started": MatchStatus.NOT_STARTED,
    "not started": MatchStatus.NOT_STARTED,
}

_PLAYED_TIME_RE = re.compile(r"^\s*(\d+)(?::(\d{1,2}))?\s*$")
_SCORE_RE = re.compile(r"(\d+)\s*[-:]\s*(\d+)")
_RECENT_SCORE_RE = re.compile(r"\d+-\d+")


def resolve_status(text: Any) -> MatchStatus:
    """Map free-text match state onto the closed enum; unknown text is NS."""
    if text is None:
        return MatchStatus.NOT_STARTED
    key = str(text).strip().lower()
    status = _STATUS_SYNONYMS.get(key)
    if status is None:
        if key:
            logger.debug("match_status_unrecognised", raw=key)
        return MatchStatus.NOT_STARTED
    return status


def parse_played_time(text: Any) -> int:
    """"45:30" -> 2730 seconds. Malformed or empty text is 0."""
    if text is None:
        return 0
    match = _PLAYED_TIME_RE.match(str(text))
    if not match:
        if str(text).strip():
            logger.debug("played_time_unparsed", raw=str(text))
        return 0
    minutes = int(match.group(1))
    seconds = int(match.group(2) or 0)
    return minutes * 60 + seconds


def format_clock(text: Any) -> str:
    """Played time as M:SS, or "" when absent."""
    if text is None or not str(text).strip():
        return ""
    total = parse_played_time(text)
    return f"{total // 60}:{total % 60:02d}"


def _normalize_score(value: Any) -> str:
    if value is None:
        return ""
    match = _SCORE_RE.search(str(value))
    if not match:
        return ""
    return f"{int(match.group(1))}-{int(match.group(2))}"


# ── Coercion helpers ────────────────────────────────────────────────────

def _safe_float(value: Any) -> float:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else 0.0
    if value is None:
        return 0.0
    try:
        result = float(str(value).strip().rstrip("%"))
    except ValueError:
        return 0.0
    return result if math.isfinite(result) else 0.0


def _safe_int(value: Any) -> int:
    return int(_safe_float(value))


def _safe_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _first_present(raw: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return None


def _numeric_model(model_cls: type[BaseModel], raw: Any) -> Any:
    """Build an all-float model from its camelCase wire keys."""
    data = _mapping(raw)
    return model_cls(**{name: _safe_float(data.get(to_camel(name))) for name in model_cls.model_fields})


def detect_shape(raw: Mapping[str, Any]) -> RecordShape:
    if "teams" in raw or "playedTime" in raw or "matchStatus" in raw:
        return RecordShape.LIVE
    return RecordShape.PREDICTION


def _record_id(raw: Any) -> str:
    if not isinstance(raw, Mapping):
        raise MissingIdentityError("raw record is missing")
    record_id = raw.get("id")
    if record_id is None or str(record_id).strip() == "":
        raise MissingIdentityError("raw record has no id")
    return str(record_id)


def _raw_sides(raw: Mapping[str, Any], shape: RecordShape) -> tuple[Optional[Mapping[str, Any]], Optional[Mapping[str, Any]]]:
    if shape == RecordShape.LIVE:
        teams = _mapping(raw.get("teams"))
        home, away = teams.get("home"), teams.get("away")
    else:
        home, away = raw.get("homeTeam"), raw.get("awayTeam")
    return (
        home if isinstance(home, Mapping) else None,
        away if isinstance(away, Mapping) else None,
    )


# ── Team ────────────────────────────────────────────────────────────────

# Specific metric first, then the generic fallback
_TEAM_FALLBACKS: dict[str, tuple[str, ...]] = {
    "avg_home_goals": ("avgHomeGoals", "homeAverageGoalsScored", "averageGoalsScored"),
    "avg_away_goals": ("avgAwayGoals", "awayAverageGoalsScored", "averageGoalsScored"),
    "avg_total_goals": ("avgTotalGoals", "averageTotalGoals"),
    "home_average_goals_scored": ("homeAverageGoalsScored", "averageGoalsScored"),
    "home_average_goals_conceded": ("homeAverageGoalsConceded", "averageGoalsConceded"),
    "away_average_goals_scored": ("awayAverageGoalsScored", "averageGoalsScored"),
    "away_average_goals_conceded": ("awayAverageGoalsConceded", "averageGoalsConceded"),
    "home_form": ("homeForm", "form"),
    "away_form": ("awayForm", "form"),
    "home_btts_rate": ("homeBttsRate", "bttsRate"),
    "away_btts_rate": ("awayBttsRate", "bttsRate"),
    "home_win_percentage": ("homeWinPercentage", "winPercentage"),
    "away_win_percentage": ("awayWinPercentage", "winPercentage"),
    "home_clean_sheets": ("homeCleanSheets",),
    "away_clean_sheets": ("awayCleanSheets",),
}

_TEAM_IDENTITY_FIELDS = frozenset({"id", "name", "is_home_team", "opponent_name"})

_TEAM_SCALARS: dict[str, Callable[[Any], Any]] = {
    name: {int: _safe_int, float: _safe_float, str: _safe_str}[info.annotation]
    for name, info in Team.model_fields.items()
    if info.annotation in (int, float, str) and name not in _TEAM_IDENTITY_FIELDS
}

_GOAL_BUCKETS: dict[str, str] = {
    info.alias: name for name, info in GoalDistribution.model_fields.items() if info.alias
}


def _goal_distribution(raw: Any) -> GoalDistribution:
    if not isinstance(raw, Mapping):
        return default_goal_distribution()
    buckets: dict[str, GoalBucket] = {}
    for wire_key, field_name in _GOAL_BUCKETS.items():
        value = raw.get(wire_key)
        if isinstance(value, Mapping):
            buckets[field_name] = GoalBucket(
                total=_safe_float(value.get("total")),
                home=_safe_float(value.get("home")),
                away=_safe_float(value.get("away")),
            )
        else:
            buckets[field_name] = GoalBucket(total=_safe_float(value))
    return GoalDistribution(**buckets)


def recent_matches(raw: Any) -> list[RecentMatch]:
    """Recent-match log; score comes from the first "N-N" in the result text."""
    if not isinstance(raw, list):
        return []
    entries: list[RecentMatch] = []
    for item in raw:
        if not isinstance(item, Mapping):
            continue
        result = _safe_str(item.get("result"))
        found = _RECENT_SCORE_RE.search(result)
        score = found.group(0) if found else (_safe_str(item.get("score")) or result or "0-0")
        entries.append(RecentMatch(
            date=_safe_str(item.get("date")),
            home_team=_safe_str(item.get("homeTeam")),
            away_team=_safe_str(item.get("awayTeam")),
            score=score,
            result=result or "D",
        ))
    return entries


def build_team(
    raw: Optional[Mapping[str, Any]],
    *,
    is_home: bool,
    opponent_name: str = "",
    clean_name: bool = False,
) -> Team:
    if raw is None:
        return default_team(is_home=is_home, opponent_name=opponent_name)

    name = _safe_str(raw.get("name"))
    fields: dict[str, Any] = {
        "id": _safe_str(raw.get("id")),
        "name": clean_display_name(name) if clean_name else name,
        "is_home_team": is_home,
        "opponent_name": opponent_name,
    }
    for field_name, coerce in _TEAM_SCALARS.items():
        keys = _TEAM_FALLBACKS.get(field_name, (to_camel(field_name),))
        fields[field_name] = coerce(_first_present(raw, keys))
    fields["goal_distribution"] = _goal_distribution(raw.get("goalDistribution"))
    fields["recent_matches"] = recent_matches(raw.get("recentMatches"))
    return Team(**fields)


# ── Markets / in-play stats ─────────────────────────────────────────────

def _outcome(raw: Mapping[str, Any]) -> Outcome:
    return Outcome(
        id=_safe_str(raw.get("id")),
        description=_safe_str(raw.get("description")),
        odds=max(0.0, _safe_float(raw.get("odds"))),
        stake_percentage=_clamp(_safe_float(raw.get("stakePercentage")), 0.0, 100.0),
        is_changed=False,
    )


def transform_markets(raw: Any) -> list[Market]:
    if not isinstance(raw, list):
        return []
    markets: list[Market] = []
    for item in raw:
        if not isinstance(item, Mapping):
            continue
        outcomes = item.get("outcomes")
        markets.append(Market(
            id=_safe_str(item.get("id")),
            description=_safe_str(item.get("description")),
            specifier=_safe_str(item.get("specifier")),
            favourite=_safe_str(item.get("favourite")),
            profit_percentage=_safe_float(item.get("profitPercentage")),
            margin=_safe_float(item.get("margin")),
            outcomes=[_outcome(o) for o in outcomes if isinstance(o, Mapping)] if isinstance(outcomes, list) else [],
        ))
    return markets


def transform_match_situation(raw: Any) -> Optional[MatchSituation]:
    if not isinstance(raw, Mapping):
        return None
    return MatchSituation(
        total_time=_safe_float(raw.get("totalTime")),
        dominant_team=_safe_str(raw.get("dominantTeam")),
        match_momentum=_safe_str(raw.get("matchMomentum")),
        home=_numeric_model(SituationSide, raw.get("home")),
        away=_numeric_model(SituationSide, raw.get("away")),
    )


def transform_match_details(raw: Any) -> Optional[MatchDetails]:
    if not isinstance(raw, Mapping):
        return None
    types = _mapping(raw.get("types"))
    return MatchDetails(
        home=_numeric_model(DetailSide, raw.get("home")),
        away=_numeric_model(DetailSide, raw.get("away")),
        types={str(k): _safe_str(v) for k, v in types.items()},
    )


# ── Prediction sub-structures ───────────────────────────────────────────

def _head_to_head(raw: Any) -> HeadToHead:
    if not isinstance(raw, Mapping):
        return default_head_to_head()
    return HeadToHead(
        matches=_safe_int(raw.get("matches")),
        wins=_safe_int(raw.get("wins")),
        draws=_safe_int(raw.get("draws")),
        losses=_safe_int(raw.get("losses")),
        goals_scored=_safe_int(raw.get("goalsScored")),
        goals_conceded=_safe_int(raw.get("goalsConceded")),
        recent_matches=recent_matches(raw.get("recentMatches")),
    )


def _odds(raw: Any) -> MatchOdds:
    return _numeric_model(MatchOdds, raw) if isinstance(raw, Mapping) else default_odds()


def _corner_stats(raw: Any) -> CornerStats:
    return _numeric_model(CornerStats, raw) if isinstance(raw, Mapping) else default_corner_stats()


def _scoring_patterns(raw: Any) -> ScoringPatterns:
    return _numeric_model(ScoringPatterns, raw) if isinstance(raw, Mapping) else default_scoring_patterns()


def _favorite(raw: Any) -> Optional[Favorite]:
    try:
        return Favorite(str(raw).lower()) if raw is not None else None
    except ValueError:
        return None


class MatchRecordTransformer:
    """
    Converts raw wire records into CanonicalMatch / PredictionRecord.

    Stateless apart from the injectable clock used to stamp records that
    arrive without lastUpdated.
    """

    def __init__(self, now: Optional[Callable[[], datetime]] = None) -> None:
        self._now = now or (lambda: datetime.now(timezone.utc))

    # ── Live matches ────────────────────────────────────────────────────

    def transform(self, raw: Any) -> CanonicalMatch:
        """
        Normalize one raw record of either shape into a CanonicalMatch.

        Raises:
            MissingIdentityError: when the record is absent or has no id.
        """
        match_id = _record_id(raw)
        shape = detect_shape(raw)
        home_raw, away_raw = _raw_sides(raw, shape)
        home_name = _safe_str(_mapping(home_raw).get("name"))
        away_name = _safe_str(_mapping(away_raw).get("name"))

        update: dict[str, Any] = {
            "home_team": build_team(home_raw, is_home=True, opponent_name=away_name),
            "away_team": build_team(away_raw, is_home=False, opponent_name=home_name),
            "tournament_name": _safe_str(raw.get("tournamentName")),
            "season_id": _safe_int(raw.get("seasonId")),
            "period": _safe_str(raw.get("period")),
            "score": _normalize_score(raw.get("score")),
            "markets": transform_markets(raw.get("markets")),
            "match_situation": transform_match_situation(raw.get("matchSituation")),
            "match_details": transform_match_details(raw.get("matchDetails")),
            "created_at": _safe_str(raw.get("lastUpdated")) or self._now().isoformat(),
        }
        # Upcoming records keep the not-started clock
        if shape == RecordShape.LIVE:
            played_time = raw.get("playedTime")
            update["status"] = resolve_status(raw.get("matchStatus"))
            update["played_seconds"] = parse_played_time(played_time)
            update["match_time"] = _safe_str(played_time)

        return default_canonical_match(match_id).model_copy(update=update)

    def build_snapshot(self, records: Any) -> Optional[dict[str, CanonicalMatch]]:
        """
        Transform one feed payload into an id-keyed snapshot.

        Records without identity are skipped; their siblings still land.
        Returns None when the payload is not a list at all, which callers
        must ignore rather than treat as "no live matches".
        """
        if not isinstance(records, list):
            logger.warning("snapshot_payload_invalid", payload_type=type(records).__name__)
            FEED_RECORDS_SKIPPED.labels(reason="invalid_payload").inc()
            return None

        snapshot: dict[str, CanonicalMatch] = {}
        for index, raw in enumerate(records):
            try:
                match = self.transform(raw)
            except MissingIdentityError as exc:
                logger.warning("snapshot_record_skipped", index=index, reason=str(exc))
                FEED_RECORDS_SKIPPED.labels(reason="missing_identity").inc()
                continue
            snapshot[match.id] = match
        return snapshot

    # ── Predictions ─────────────────────────────────────────────────────

    def transform_prediction(self, raw: Any) -> PredictionRecord:
        """
        Normalize a record of either shape into a PredictionRecord.

        Live-shaped records become a same-day record with the elapsed clock
        as time, venue TBD and zeroed analytics.

        Raises:
            MissingIdentityError: when the record is absent or has no id.
        """
        record_id = _record_id(raw)
        shape = detect_shape(raw)

        if shape == RecordShape.LIVE:
            date = self._now().date().isoformat()
            time = format_clock(raw.get("playedTime"))
            venue = "TBD"
        else:
            date = _safe_str(raw.get("date"))
            time = (_safe_str(raw.get("time")) or "00:00").rjust(5, "0")
            venue = _safe_str(raw.get("venue"))

        home_raw, away_raw = _raw_sides(raw, shape)
        if home_raw is None or away_raw is None:
            logger.debug("prediction_teams_missing", record_id=record_id)
            return default_prediction(record_id, date=date, time=time, venue=venue)

        home_name = clean_display_name(_safe_str(home_raw.get("name")))
        away_name = clean_display_name(_safe_str(away_raw.get("name")))
        home_team = build_team(home_raw, is_home=True, opponent_name=away_name, clean_name=True)
        away_team = build_team(away_raw, is_home=False, opponent_name=home_name, clean_name=True)

        if shape == RecordShape.LIVE:
            return default_prediction(record_id, date=date, time=time, venue=venue).model_copy(
                update={"home_team": home_team, "away_team": away_team}
            )

        reasons = raw.get("reasonsForPrediction")
        return PredictionRecord(
            id=record_id,
            home_team=home_team,
            away_team=away_team,
            date=date,
            time=time,
            venue=venue,
            position_gap=_safe_float(raw.get("positionGap")),
            favorite=_favorite(raw.get("favorite")),
            confidence_score=_clamp(_safe_float(raw.get("confidenceScore")), 0.0, 100.0),
            average_goals=_safe_float(raw.get("averageGoals")),
            expected_goals=_safe_float(raw.get("expectedGoals")),
            defensive_strength=_safe_float(raw.get("defensiveStrength")),
            head_to_head=_head_to_head(raw.get("headToHead")),
            odds=_odds(raw.get("odds")),
            corner_stats=_corner_stats(raw.get("cornerStats")),
            scoring_patterns=_scoring_patterns(raw.get("scoringPatterns")),
            reasons_for_prediction=[str(r) for r in reasons] if isinstance(reasons, list) else [],
        )

    def parse_prediction_payload(self, payload: Any) -> Optional[PredictionPayload]:
        return parse_prediction_payload(payload, transformer=self)


def _has_team_names(raw: Mapping[str, Any]) -> bool:
    home, away = _raw_sides(raw, detect_shape(raw))
    return bool(home and home.get("name")) and bool(away and away.get("name"))


def _metadata(raw: Any, record_count: int) -> PredictionMetadata:
    data = _mapping(raw)
    leagues = _mapping(data.get("leagueData"))
    return PredictionMetadata(
        total=_safe_int(data.get("total")) or record_count,
        date=_safe_str(data.get("date")),
        league_data={str(name): _numeric_league(stats) for name, stats in leagues.items()},
    )


def _numeric_league(raw: Any) -> LeagueData:
    data = _mapping(raw)
    return LeagueData(
        matches=_safe_int(data.get("matches")),
        total_goals=_safe_float(data.get("totalGoals")),
        home_win_rate=_safe_float(data.get("homeWinRate")),
        draw_rate=_safe_float(data.get("drawRate")),
        away_win_rate=_safe_float(data.get("awayWinRate")),
        btts_rate=_safe_float(data.get("bttsRate")),
    )


def parse_prediction_payload(
    payload: Any,
    *,
    transformer: Optional[MatchRecordTransformer] = None,
) -> Optional[PredictionPayload]:
    """
    Parse a prediction envelope ({data: {...}}, bare, or a plain record
    list from a hub push) into a PredictionPayload.

    Returns None for "not yet loaded": a missing or empty upcomingMatches
    array, or a first record without id or team names.
    """
    if isinstance(payload, list):
        payload = {"upcomingMatches": payload}
    body = _mapping(payload)
    if isinstance(body.get("data"), Mapping):
        body = body["data"]

    records = body.get("upcomingMatches")
    if not isinstance(records, list) or not records:
        logger.info("prediction_payload_empty")
        return None

    first = records[0]
    if not isinstance(first, Mapping) or first.get("id") in (None, "") or not _has_team_names(first):
        logger.warning("prediction_payload_malformed")
        return None

    transformer = transformer or MatchRecordTransformer()
    upcoming: list[PredictionRecord] = []
    for index, raw in enumerate(records):
        try:
            upcoming.append(transformer.transform_prediction(raw))
        except MissingIdentityError as exc:
            logger.warning("prediction_record_skipped", index=index, reason=str(exc))
            FEED_RECORDS_SKIPPED.labels(reason="missing_identity").inc()

    return PredictionPayload(
        upcoming_matches=upcoming,
        metadata=_metadata(body.get("metadata"), len(upcoming)),
    )
