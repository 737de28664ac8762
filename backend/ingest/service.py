"""
Headless feed service.

Runs the live feed session and prediction poller without the HTTP API and
logs a one-line summary per merged list. Useful for watching the hub from
a terminal or a sidecar container.
"""
from __future__ import annotations

import asyncio
import signal

from ingest.feed.session import LiveFeedSession
from ingest.matching.prediction_matcher import PredictionMatcher
from ingest.providers.predictions import PredictionPoller, PredictionSource
from shared.config import Settings, get_settings
from shared.models.domain import CanonicalMatch
from shared.models.enums import FeedKind
from shared.prediction_store import PredictionStore
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import start_metrics_server

logger = get_logger(__name__)


class FeedService:
    """Owns the session for the lifetime of the process."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._shutdown = asyncio.Event()
        self._store = PredictionStore()
        self._source = PredictionSource(settings=self._settings)
        self._matcher = PredictionMatcher(self._store, settings=self._settings)
        self._session = LiveFeedSession(
            self._store,
            poller=PredictionPoller(self._source, self._store, settings=self._settings),
            settings=self._settings,
        )
        self._session.subscribe(self._on_merged)

    def _on_merged(self, feed: FeedKind, matches: list[CanonicalMatch]) -> None:
        enriched = sum(
            1 for m in matches
            if self._matcher.match(m.home_team.name, m.away_team.name, m.id) is not None
        )
        logger.info(
            "feed_list_published",
            feed=feed.value,
            matches=len(matches),
            live=sum(1 for m in matches if m.status.is_live),
            with_prediction=enriched,
        )

    def request_shutdown(self) -> None:
        self._shutdown.set()

    async def run(self) -> None:
        await self._session.start()
        try:
            await self._shutdown.wait()
        finally:
            await self._session.stop()
            await self._source.close()


async def main() -> None:
    """Feed service entrypoint."""
    settings = get_settings()
    setup_logging("feed")
    start_metrics_server(settings.metrics_port + 1)

    service = FeedService(settings)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, service.request_shutdown)
        except (ValueError, OSError, RuntimeError) as exc:
            logger.warning("signal_handler_unavailable", signal=sig, error=str(exc))

    logger.info("feed_service_started", hub=settings.feed_hub_url)
    try:
        await service.run()
    finally:
        logger.info("feed_service_stopped")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
