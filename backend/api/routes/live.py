"""
Live match REST endpoints.

GET  /v1/live/matches                    Merged, UI-stable list for a feed.
GET  /v1/live/matches/{id}               One match from that list.
GET  /v1/live/matches/{id}/prediction    Prediction enrichment for a match.
POST /v1/feed/pause, /v1/feed/resume     Stop/restart routing hub snapshots.
"""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from shared.models.domain import CanonicalMatch
from shared.models.enums import FeedKind
from shared.utils.logging import get_logger
from shared.utils.metrics import PREDICTION_LOOKUPS

from api.dependencies import get_matcher, get_session
from ingest.feed.session import LiveFeedSession
from ingest.matching.prediction_matcher import PredictionMatcher

logger = get_logger(__name__)
router = APIRouter(tags=["live"])


def _dump(match: CanonicalMatch) -> dict[str, Any]:
    return match.model_dump(mode="json", by_alias=True)


def _feed_status(session: LiveFeedSession) -> dict[str, Any]:
    return {
        "state": session.state.value,
        "connected": session.connected,
        "paused": session.paused,
    }


def _require_match(session: LiveFeedSession, match_id: str, feed: FeedKind) -> CanonicalMatch:
    match = session.get_match(match_id, feed)
    if match is None:
        raise HTTPException(status_code=404, detail=f"Match {match_id} is not live on feed {feed.value}")
    return match


@router.get("/v1/live/matches")
async def list_live_matches(
    feed: FeedKind = Query(FeedKind.ALL),
    session: LiveFeedSession = Depends(get_session),
) -> dict[str, Any]:
    """Current merged list, in stable display order."""
    matches = session.matches(feed)
    return {
        "feed": feed.value,
        "count": len(matches),
        **_feed_status(session),
        "matches": [_dump(m) for m in matches],
    }


@router.get("/v1/live/matches/{match_id}")
async def get_live_match(
    match_id: str,
    feed: FeedKind = Query(FeedKind.ALL),
    session: LiveFeedSession = Depends(get_session),
) -> dict[str, Any]:
    return _dump(_require_match(session, match_id, feed))


@router.get("/v1/live/matches/{match_id}/prediction")
async def get_live_match_prediction(
    match_id: str,
    feed: FeedKind = Query(FeedKind.ALL),
    session: LiveFeedSession = Depends(get_session),
    matcher: PredictionMatcher = Depends(get_matcher),
) -> dict[str, Any]:
    """
    Cross-reference a live match against the loaded predictions.

    A miss is a normal answer: prediction is null and strategy is "none".
    """
    match = _require_match(session, match_id, feed)
    record, strategy = matcher.match_with_strategy(
        match.home_team.name,
        match.away_team.name,
        match.id,
    )
    PREDICTION_LOOKUPS.labels(strategy=strategy.value).inc()
    return {
        "match_id": match.id,
        "strategy": strategy.value,
        "predictions_loaded": session.store.is_loaded,
        "prediction": record.model_dump(mode="json", by_alias=True) if record else None,
    }


@router.post("/v1/feed/pause")
async def pause_feed(session: LiveFeedSession = Depends(get_session)) -> dict[str, Any]:
    session.pause()
    return _feed_status(session)


@router.post("/v1/feed/resume")
async def resume_feed(session: LiveFeedSession = Depends(get_session)) -> dict[str, Any]:
    session.resume()
    return _feed_status(session)
