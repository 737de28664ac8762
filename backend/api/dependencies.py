"""
Dependency injection for the API service.
Hands the in-process feed session and prediction matcher to route handlers.
"""
from __future__ import annotations

from ingest.feed.session import LiveFeedSession
from ingest.matching.prediction_matcher import PredictionMatcher

# Set by the lifespan at startup, cleared at shutdown
_session: LiveFeedSession | None = None
_matcher: PredictionMatcher | None = None


class ServiceNotReadyError(RuntimeError):
    """A route ran before the lifespan wired the session, or after teardown."""


def init_dependencies(session: LiveFeedSession, matcher: PredictionMatcher) -> None:
    global _session, _matcher
    _session = session
    _matcher = matcher


def reset_dependencies() -> None:
    global _session, _matcher
    _session = None
    _matcher = None


def get_session() -> LiveFeedSession:
    """FastAPI dependency: the shared LiveFeedSession."""
    if _session is None:
        raise ServiceNotReadyError("LiveFeedSession not initialized")
    return _session


def get_matcher() -> PredictionMatcher:
    """FastAPI dependency: the shared PredictionMatcher."""
    if _matcher is None:
        raise ServiceNotReadyError("PredictionMatcher not initialized")
    return _matcher
