"""
Process-wide prediction state.

Lifecycle: populated at session start by the poller, refreshed on a fixed
interval or by a hub push, cleared at session teardown. The handle is passed
explicitly to the matcher and the session; nothing reaches it through a
module global.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from shared.models.domain import PredictionMetadata, PredictionPayload, PredictionRecord
from shared.utils.logging import get_logger
from shared.utils.metrics import PREDICTION_RECORDS

logger = get_logger(__name__)


class PredictionStore:
    """Holds the latest prediction payload. Readers get an immutable snapshot."""

    def __init__(self) -> None:
        self._payload: Optional[PredictionPayload] = None
        self._source: Optional[str] = None
        self._loaded_at: Optional[datetime] = None

    @property
    def is_loaded(self) -> bool:
        return self._payload is not None

    @property
    def source(self) -> Optional[str]:
        return self._source

    @property
    def loaded_at(self) -> Optional[datetime]:
        return self._loaded_at

    @property
    def metadata(self) -> Optional[PredictionMetadata]:
        return self._payload.metadata if self._payload else None

    def get(self) -> list[PredictionRecord]:
        """Current prediction records; empty until something has loaded."""
        if self._payload is None:
            return []
        return self._payload.upcoming_matches

    def set(self, payload: PredictionPayload, *, source: str) -> None:
        """Replace the whole set. Later writes win regardless of source."""
        self._payload = payload
        self._source = source
        self._loaded_at = datetime.now(timezone.utc)
        PREDICTION_RECORDS.set(len(payload.upcoming_matches))
        logger.info(
            "prediction_store_updated",
            source=source,
            records=len(payload.upcoming_matches),
        )

    def clear(self) -> None:
        self._payload = None
        self._source = None
        self._loaded_at = None
        PREDICTION_RECORDS.set(0)
