"""Latest-snapshot hand-off between the hub event handler and the drain."""
from __future__ import annotations

from typing import Mapping

from shared.models.domain import CanonicalMatch
from shared.models.enums import FeedKind

Snapshot = Mapping[str, CanonicalMatch]


class SnapshotBuffer:
    """
    Keeps only the newest snapshot per feed.

    offer() replaces whatever is pending for that feed; take() swaps the
    whole pending dict out in one step, so a drain never sees a half-written
    state.
    """

    def __init__(self) -> None:
        self._pending: dict[FeedKind, Snapshot] = {}

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    def offer(self, feed: FeedKind, snapshot: Snapshot) -> None:
        self._pending[feed] = snapshot

    def take(self) -> dict[FeedKind, Snapshot]:
        pending, self._pending = self._pending, {}
        return pending

    def clear(self) -> None:
        self._pending = {}
