"""
Prediction endpoint connector and the poller that keeps the store fresh.

The endpoint pages with ?page=N&pageSize=M and answers either
{data: {upcomingMatches, metadata}} or the bare {upcomingMatches, metadata}.
Paging stops at the first empty page or after prediction_max_pages.
"""
from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any, Optional

import httpx

from ingest.normalization.normalizer import MatchRecordTransformer, parse_prediction_payload
from shared.config import Settings, get_settings
from shared.models.domain import PredictionPayload
from shared.prediction_store import PredictionStore
from shared.utils.http_client import UpstreamHTTPClient
from shared.utils.logging import get_logger
from shared.utils.metrics import PREDICTION_LOADS

logger = get_logger(__name__)

UPSTREAM_NAME = "predictions"


class PredictionSourceError(Exception):
    """The prediction endpoint could not be read at all."""


def _envelope(body: Any) -> Mapping[str, Any]:
    if not isinstance(body, Mapping):
        return {}
    data = body.get("data")
    return data if isinstance(data, Mapping) else body


class PredictionSource:
    """Fetches every page of the prediction endpoint into one payload."""

    def __init__(
        self,
        client: Optional[UpstreamHTTPClient] = None,
        transformer: Optional[MatchRecordTransformer] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._client = client or UpstreamHTTPClient(
            UPSTREAM_NAME,
            timeout_s=self._settings.prediction_request_timeout_s,
            headers={"Accept": "application/json"},
        )
        self._transformer = transformer or MatchRecordTransformer()

    async def start(self) -> None:
        await self._client.start()

    async def close(self) -> None:
        await self._client.close()

    async def fetch(self) -> Optional[PredictionPayload]:
        """
        Read all pages and parse them.

        Returns:
            The parsed payload, or None when the endpoint answered but the
            data is not usable yet (empty or malformed).

        Raises:
            PredictionSourceError: when the first page cannot be fetched.
        """
        if not self._client.started:
            await self._client.start()

        url = self._settings.prediction_api_url
        page_size = self._settings.prediction_page_size
        records: list[Any] = []
        metadata: Any = None
        pages_read = 0

        for page in range(1, self._settings.prediction_max_pages + 1):
            try:
                resp = await self._client.get(url, params={"page": page, "pageSize": page_size})
                body = resp.json()
            except (httpx.HTTPError, ValueError) as exc:
                if page == 1:
                    raise PredictionSourceError(f"prediction endpoint unavailable: {exc}") from exc
                logger.warning("prediction_page_failed", page=page, error=str(exc))
                break

            envelope = _envelope(body)
            batch = envelope.get("upcomingMatches")
            if not isinstance(batch, list) or not batch:
                break
            records.extend(batch)
            pages_read += 1
            if metadata is None:
                metadata = envelope.get("metadata")

        logger.info("prediction_pages_fetched", records=len(records), pages=pages_read)
        return parse_prediction_payload(
            {"upcomingMatches": records, "metadata": metadata},
            transformer=self._transformer,
        )


class PredictionPoller:
    """
    Loads predictions at session start, then refreshes on a long interval.

    The initial load retries a few times; later refreshes are single
    attempts that leave the previous set in place on failure.
    """

    def __init__(
        self,
        source: PredictionSource,
        store: PredictionStore,
        settings: Optional[Settings] = None,
    ) -> None:
        self._source = source
        self._store = store
        self._settings = settings or get_settings()
        self._shutdown = asyncio.Event()
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def load_once(self) -> bool:
        """One fetch into the store. Returns whether the store was updated."""
        try:
            payload = await self._source.fetch()
        except PredictionSourceError as exc:
            PREDICTION_LOADS.labels(source="http", outcome="error").inc()
            logger.warning("prediction_load_failed", error=str(exc))
            return False

        if payload is None:
            PREDICTION_LOADS.labels(source="http", outcome="not_loaded").inc()
            return False

        self._store.set(payload, source="http")
        PREDICTION_LOADS.labels(source="http", outcome="loaded").inc()
        return True

    async def load_initial(self) -> bool:
        attempts = self._settings.prediction_load_retries + 1
        for attempt in range(1, attempts + 1):
            if await self.load_once():
                return True
            if attempt < attempts and not self._shutdown.is_set():
                logger.info(
                    "prediction_load_retry",
                    attempt=attempt,
                    max_attempts=attempts,
                    delay_s=self._settings.prediction_retry_delay_s,
                )
                if await self._wait(self._settings.prediction_retry_delay_s):
                    return False
        return False

    async def run(self) -> None:
        await self.load_initial()
        while not await self._wait(self._settings.prediction_refresh_interval_s):
            await self.load_once()

    def start(self) -> None:
        if self.running:
            return
        self._shutdown.clear()
        self._task = asyncio.create_task(self.run(), name="prediction-poller")

    async def stop(self) -> None:
        self._shutdown.set()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _wait(self, delay_s: float) -> bool:
        """Sleep for delay_s; True if shutdown was requested meanwhile."""
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=delay_s)
        except asyncio.TimeoutError:
            return False
        return True
