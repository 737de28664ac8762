"""
Lightweight metrics collection for Pitchside.
Wraps prometheus_client with async-safe patterns.
"""
from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Iterator

from prometheus_client import Counter, Gauge, Histogram, Info, start_http_server

from shared.config import get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Counters ────────────────────────────────────────────────────────────
FEED_SNAPSHOTS = Counter(
    "ps_feed_snapshots_total",
    "Snapshots received from the live push feed",
    ["feed", "outcome"],
)
FEED_RECORDS_SKIPPED = Counter(
    "ps_feed_records_skipped_total",
    "Raw feed records dropped during normalization",
    ["reason"],
)
FEED_RECONNECTS = Counter(
    "ps_feed_reconnects_total",
    "Transport reconnect attempts",
    ["outcome"],
)
FEED_SESSION_RESTARTS = Counter(
    "ps_feed_session_restarts_total",
    "Whole-session restarts after an initial connect failure",
)
MERGES = Counter(
    "ps_merges_total",
    "Merged snapshots published to listeners",
    ["feed"],
)
PREDICTION_LOADS = Counter(
    "ps_prediction_loads_total",
    "Prediction set load attempts",
    ["source", "outcome"],
)
PREDICTION_LOOKUPS = Counter(
    "ps_prediction_lookups_total",
    "Prediction enrichment lookups by winning strategy",
    ["strategy"],
)
UPSTREAM_REQUESTS = Counter(
    "ps_upstream_requests_total",
    "Upstream HTTP requests",
    ["upstream", "status"],
)

# ── Histograms ──────────────────────────────────────────────────────────
MERGE_LATENCY = Histogram(
    "ps_merge_latency_seconds",
    "Time to fold one snapshot into the stable list",
    ["feed"],
    buckets=(0.0005, 0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1),
)
UPSTREAM_LATENCY = Histogram(
    "ps_upstream_latency_seconds",
    "Upstream request latency in seconds",
    ["upstream"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Gauges ──────────────────────────────────────────────────────────────
FEED_CONNECTED = Gauge(
    "ps_feed_connected",
    "1 while the push transport is connected",
)
LIVE_MATCHES = Gauge(
    "ps_live_matches",
    "Matches in the merged list",
    ["feed"],
)
PREDICTION_RECORDS = Gauge(
    "ps_prediction_records",
    "Prediction records currently held in the store",
)

# ── Info ────────────────────────────────────────────────────────────────
SERVICE_INFO = Info("ps_service", "Service build information")


@contextmanager
def track_latency(histogram: Histogram, **labels: str) -> Iterator[None]:
    """Context manager to track operation latency."""
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        histogram.labels(**labels).observe(elapsed)


def start_metrics_server(port: int | None = None) -> None:
    """Start the Prometheus metrics HTTP server."""
    settings = get_settings()
    if not settings.metrics_enabled:
        return
    metrics_port = port or settings.metrics_port
    try:
        start_http_server(metrics_port)
        logger.info("metrics_server_started", port=metrics_port)
    except OSError as exc:
        logger.warning("metrics_server_failed", error=str(exc), port=metrics_port)
