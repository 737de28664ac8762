"""Tests for the headless feed runner."""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from structlog.testing import capture_logs

from ingest.normalization.normalizer import MatchRecordTransformer, parse_prediction_payload
from ingest.service import FeedService
from shared.models.enums import FeedKind


@pytest.mark.asyncio
async def test_run_tears_down_on_shutdown(settings) -> None:
    service = FeedService(settings)
    service._session = MagicMock(start=AsyncMock(), stop=AsyncMock())
    service._source = MagicMock(close=AsyncMock())

    service.request_shutdown()
    await service.run()

    service._session.start.assert_awaited_once()
    service._session.stop.assert_awaited_once()
    service._source.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_published_list_is_summarised(settings, make_live_record, make_prediction_record) -> None:
    service = FeedService(settings)
    service._store.set(parse_prediction_payload([make_prediction_record("p1")]), source="http")
    transformer = MatchRecordTransformer()
    matches = [
        transformer.transform(make_live_record("m1")),
        transformer.transform(make_live_record("m2", home="Lens", away="Nice", status="FT")),
    ]

    with capture_logs() as logs:
        service._on_merged(FeedKind.ALL, matches)

    summary = next(entry for entry in logs if entry["event"] == "feed_list_published")
    assert summary["feed"] == "all"
    assert summary["matches"] == 2
    assert summary["live"] == 1
    assert summary["with_prediction"] == 1
