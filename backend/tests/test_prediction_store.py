"""Tests for the shared prediction store."""
from __future__ import annotations

from shared.models.defaults import default_prediction
from shared.models.domain import PredictionMetadata, PredictionPayload
from shared.prediction_store import PredictionStore


def _payload(*ids: str) -> PredictionPayload:
    return PredictionPayload(
        upcoming_matches=[default_prediction(i) for i in ids],
        metadata=PredictionMetadata(total=len(ids), date="2024-05-01"),
    )


def test_empty_until_loaded() -> None:
    store = PredictionStore()
    assert store.is_loaded is False
    assert store.get() == []
    assert store.metadata is None
    assert store.source is None


def test_set_replaces_whole_set() -> None:
    store = PredictionStore()
    store.set(_payload("p1", "p2"), source="http")
    store.set(_payload("p3"), source="push")

    assert [r.id for r in store.get()] == ["p3"]
    assert store.source == "push"
    assert store.metadata.total == 1
    assert store.loaded_at is not None


def test_clear() -> None:
    store = PredictionStore()
    store.set(_payload("p1"), source="http")
    store.clear()

    assert store.is_loaded is False
    assert store.get() == []
    assert store.loaded_at is None
