"""
Incremental merge of full-replacement snapshots into a UI-stable list.

Every hub tick carries the complete set of live matches. merge() folds it
into the previous list so that:
  - ids present before keep their relative order
  - new ids are appended in snapshot order
  - ids no longer present are dropped
  - unchanged sub-structures (teams, markets, outcomes, stats) keep the
    previous object, and equal team-name strings keep the previous str

Consumers that key off shallow identity re-render only what moved.
"""
from __future__ import annotations

from typing import Mapping, Optional, Sequence, TypeVar

from pydantic import BaseModel

from shared.models.domain import CanonicalMatch, Market, Outcome, Team
from shared.models.enums import FeedKind
from shared.utils.logging import get_logger
from shared.utils.metrics import LIVE_MATCHES, MERGE_LATENCY, MERGES, track_latency

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)


def _reuse(previous: Optional[M], current: M) -> M:
    if previous is not None and previous == current:
        return previous
    return current


def _reuse_list(previous: list[M], current: list[M]) -> list[M]:
    if len(previous) == len(current) and all(p is c for p, c in zip(previous, current)):
        return previous
    return current


def _stable_team(previous: Team, current: Team) -> Team:
    if previous == current:
        return previous

    update: dict[str, object] = {}
    if current.name == previous.name:
        update["name"] = previous.name
    if current.opponent_name == previous.opponent_name:
        update["opponent_name"] = previous.opponent_name
    if current.goal_distribution == previous.goal_distribution:
        update["goal_distribution"] = previous.goal_distribution
    if current.recent_matches == previous.recent_matches:
        update["recent_matches"] = previous.recent_matches
    return current.model_copy(update=update) if update else current


def _stable_outcomes(previous: list[Outcome], current: list[Outcome]) -> list[Outcome]:
    prev_by_id = {o.id: o for o in previous}
    outcomes: list[Outcome] = []
    for outcome in current:
        prev = prev_by_id.get(outcome.id)
        # Flag lasts exactly one merge after an odds move
        changed = prev is not None and prev.odds != outcome.odds
        if outcome.is_changed != changed:
            outcome = outcome.model_copy(update={"is_changed": changed})
        outcomes.append(_reuse(prev, outcome))
    return _reuse_list(previous, outcomes)


def _stable_markets(previous: list[Market], current: list[Market]) -> list[Market]:
    prev_by_id = {m.id: m for m in previous}
    markets: list[Market] = []
    for market in current:
        prev = prev_by_id.get(market.id)
        if prev is None:
            markets.append(market)
            continue
        outcomes = _stable_outcomes(prev.outcomes, market.outcomes)
        if outcomes is not market.outcomes:
            market = market.model_copy(update={"outcomes": outcomes})
        markets.append(_reuse(prev, market))
    return _reuse_list(previous, markets)


def _clock_regressed(previous: CanonicalMatch, current: CanonicalMatch) -> bool:
    return (
        current.played_seconds < previous.played_seconds
        and current.status.order <= previous.status.order
    )


def reconcile_match(previous: CanonicalMatch, current: CanonicalMatch) -> CanonicalMatch:
    """Build the retained entry: new values, previous references where equal."""
    update: dict[str, object] = {
        "home_team": _stable_team(previous.home_team, current.home_team),
        "away_team": _stable_team(previous.away_team, current.away_team),
        "markets": _stable_markets(previous.markets, current.markets),
        "match_situation": _reuse(previous.match_situation, current.match_situation)
        if current.match_situation is not None else None,
        "match_details": _reuse(previous.match_details, current.match_details)
        if current.match_details is not None else None,
        # first-seen creation time
        "created_at": previous.created_at,
    }
    if current.tournament_name == previous.tournament_name:
        update["tournament_name"] = previous.tournament_name

    if _clock_regressed(previous, current):
        # status, seconds and display clock move together or not at all
        logger.debug(
            "match_clock_regressed",
            match_id=current.id,
            previous_seconds=previous.played_seconds,
            reported_seconds=current.played_seconds,
        )
        update["status"] = previous.status
        update["played_seconds"] = previous.played_seconds
        update["match_time"] = previous.match_time

    return _reuse(previous, current.model_copy(update=update))


def merge(
    snapshot: Mapping[str, CanonicalMatch],
    previous: Sequence[CanonicalMatch],
) -> list[CanonicalMatch]:
    """
    Fold a full-replacement snapshot into the previous ordered list.

    Args:
        snapshot: id -> match for everything live this tick, in feed order.
        previous: The last published list.

    Returns:
        A new list; never mutates either argument.
    """
    if not previous:
        return list(snapshot.values())

    retained: list[CanonicalMatch] = []
    seen: set[str] = set()
    for prev in previous:
        current = snapshot.get(prev.id)
        if current is None or prev.id in seen:
            continue
        seen.add(prev.id)
        retained.append(reconcile_match(prev, current))

    appended = [match for match_id, match in snapshot.items() if match_id not in seen]
    return retained + appended


class IncrementalStateMerger:
    """
    Owns the previous stable list for one feed.

    State is an arena of matches by id plus the ordered id list; apply()
    replaces both with the result of merge().
    """

    def __init__(self, feed: FeedKind) -> None:
        self._feed = feed
        self._by_id: dict[str, CanonicalMatch] = {}
        self._order: list[str] = []

    @property
    def feed(self) -> FeedKind:
        return self._feed

    @property
    def matches(self) -> list[CanonicalMatch]:
        return [self._by_id[match_id] for match_id in self._order]

    def get(self, match_id: str) -> Optional[CanonicalMatch]:
        return self._by_id.get(match_id)

    def apply(self, snapshot: Mapping[str, CanonicalMatch]) -> list[CanonicalMatch]:
        with track_latency(MERGE_LATENCY, feed=self._feed.value):
            merged = merge(snapshot, self.matches)

        added = sum(1 for m in merged if m.id not in self._by_id)
        dropped = len(self._order) - (len(merged) - added)
        self._by_id = {m.id: m for m in merged}
        self._order = [m.id for m in merged]

        MERGES.labels(feed=self._feed.value).inc()
        LIVE_MATCHES.labels(feed=self._feed.value).set(len(merged))
        logger.debug(
            "merge_applied",
            feed=self._feed.value,
            matches=len(merged),
            added=added,
            dropped=dropped,
        )
        return merged

    def reset(self) -> None:
        self._by_id.clear()
        self._order.clear()
        LIVE_MATCHES.labels(feed=self._feed.value).set(0)
