"""
Cross-references a live match against the prediction set.

The live hub and the prediction endpoint share no reliable key, so the
lookup runs a precision-first cascade and the first hit wins:

    1. identifier    prediction.id == live match id
    2. exact         normalized home/away equal, positionally
    3. reversed      as exact with the sides swapped
    4. containment   each side's name contains the other, positionally
    5. edit_distance both sides within the configured Levenshtein distance

No hit is a normal negative result, never an error.
"""
from __future__ import annotations

from typing import Optional, Sequence

from ingest.normalization.edit_distance import within_distance
from ingest.normalization.team_names import normalize_team_name
from shared.config import Settings, get_settings
from shared.models.domain import PredictionRecord
from shared.models.enums import MatchStrategy
from shared.prediction_store import PredictionStore


def _contains(a: str, b: str) -> bool:
    return a in b or b in a


class PredictionMatcher:
    """Deterministic, side-effect free lookup over a prediction set."""

    def __init__(
        self,
        store: Optional[PredictionStore] = None,
        *,
        max_edit_distance: Optional[int] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._store = store
        if max_edit_distance is None:
            max_edit_distance = (settings or get_settings()).matcher_max_edit_distance
        self._max_edit_distance = max_edit_distance

    @property
    def max_edit_distance(self) -> int:
        return self._max_edit_distance

    def match(
        self,
        home_team_name: str,
        away_team_name: str,
        live_match_id: Optional[str] = None,
        predictions: Optional[Sequence[PredictionRecord]] = None,
    ) -> Optional[PredictionRecord]:
        record, _ = self.match_with_strategy(home_team_name, away_team_name, live_match_id, predictions)
        return record

    def match_with_strategy(
        self,
        home_team_name: str,
        away_team_name: str,
        live_match_id: Optional[str] = None,
        predictions: Optional[Sequence[PredictionRecord]] = None,
    ) -> tuple[Optional[PredictionRecord], MatchStrategy]:
        """
        Run the cascade and report which rule produced the hit.

        Args:
            home_team_name: Live home team name, raw.
            away_team_name: Live away team name, raw.
            live_match_id: Optional live id for the identifier rule.
            predictions: Explicit prediction set; defaults to the store's.

        Returns:
            (record, strategy), or (None, MatchStrategy.NONE).
        """
        if predictions is None:
            predictions = self._store.get() if self._store is not None else []
        if not predictions:
            return None, MatchStrategy.NONE

        if live_match_id is not None and str(live_match_id) != "":
            wanted = str(live_match_id)
            for record in predictions:
                if record.id == wanted:
                    return record, MatchStrategy.IDENTIFIER

        home = normalize_team_name(home_team_name)
        away = normalize_team_name(away_team_name)
        if not home or not away:
            return None, MatchStrategy.NONE

        candidates = [
            (record, normalize_team_name(record.home_team.name), normalize_team_name(record.away_team.name))
            for record in predictions
        ]
        candidates = [c for c in candidates if c[1] and c[2]]

        for record, p_home, p_away in candidates:
            if p_home == home and p_away == away:
                return record, MatchStrategy.EXACT

        for record, p_home, p_away in candidates:
            if p_home == away and p_away == home:
                return record, MatchStrategy.REVERSED

        for record, p_home, p_away in candidates:
            if _contains(p_home, home) and _contains(p_away, away):
                return record, MatchStrategy.CONTAINMENT

        limit = self._max_edit_distance
        for record, p_home, p_away in candidates:
            if within_distance(p_home, home, limit) and within_distance(p_away, away, limit):
                return record, MatchStrategy.EDIT_DISTANCE

        return None, MatchStrategy.NONE
