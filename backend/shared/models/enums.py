"""Domain enumerations for the Pitchside platform."""
from __future__ import annotations

from enum import Enum


class MatchStatus(str, Enum):
    NOT_STARTED = "NS"
    FIRST_HALF = "1H"
    HALF_TIME = "HT"
    SECOND_HALF = "2H"
    FULL_TIME = "FT"

    @property
    def is_live(self) -> bool:
        return self in (
            MatchStatus.FIRST_HALF,
            MatchStatus.HALF_TIME,
            MatchStatus.SECOND_HALF,
        )

    @property
    def order(self) -> int:
        """Position in the regular match progression, NS first."""
        return _STATUS_ORDER[self]


_STATUS_ORDER: dict[MatchStatus, int] = {
    MatchStatus.NOT_STARTED: 0,
    MatchStatus.FIRST_HALF: 1,
    MatchStatus.HALF_TIME: 2,
    MatchStatus.SECOND_HALF: 3,
    MatchStatus.FULL_TIME: 4,
}


class Favorite(str, Enum):
    HOME = "home"
    AWAY = "away"


class RecordShape(str, Enum):
    """Which upstream wire shape a raw match record arrived in."""
    LIVE = "live"
    PREDICTION = "prediction"


class FeedKind(str, Enum):
    ARBITRAGE = "arbitrage"
    ALL = "all"


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class HubEvent(str, Enum):
    """Invocation targets pushed by the live match hub."""
    ARBITRAGE_LIVE_MATCHES = "ReceiveArbitrageLiveMatches"
    ALL_LIVE_MATCHES = "ReceiveAllLiveMatches"
    PREDICTION_DATA = "ReceivePredictionData"


HUB_EVENT_FEEDS: dict[HubEvent, FeedKind] = {
    HubEvent.ARBITRAGE_LIVE_MATCHES: FeedKind.ARBITRAGE,
    HubEvent.ALL_LIVE_MATCHES: FeedKind.ALL,
}


class MatchStrategy(str, Enum):
    """Which rule of the prediction lookup cascade produced a hit."""
    IDENTIFIER = "identifier"
    EXACT = "exact"
    REVERSED = "reversed"
    CONTAINMENT = "containment"
    EDIT_DISTANCE = "edit_distance"
    NONE = "none"
