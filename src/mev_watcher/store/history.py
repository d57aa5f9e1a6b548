"""Bounded in-memory history of analyzed transactions, detections and bundles."""

import itertools
import logging
from collections import OrderedDict, deque
from datetime import datetime, timedelta
from typing import Iterator

from ..models import ArbitrageOpportunity, Bundle, SandwichAttack, TransactionAnalysis

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 1000


class HistoryView:
    """Read-only snapshot of the history, oldest entry first."""

    def __init__(self, entries: list[tuple[int, TransactionAnalysis]]):
        self._entries = entries
        self._order = {analysis.signature: seq for seq, analysis in entries}

    def __iter__(self) -> Iterator[TransactionAnalysis]:
        return (analysis for _, analysis in self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def order_of(self, signature: str) -> int | None:
        """Insertion sequence number of a signature (higher is newer)."""
        return self._order.get(signature)

    def in_slot(self, slot: int) -> list[TransactionAnalysis]:
        return [a for _, a in self._entries if a.slot == slot]

    def within(self, timestamp: datetime, window: timedelta) -> list[TransactionAnalysis]:
        """Entries whose timestamp is strictly within `window` of `timestamp`."""
        return [a for _, a in self._entries if abs(a.timestamp - timestamp) < window]


class HistoryStore:
    """
    Insertion-ordered record of recent transactions, keyed by signature.

    Eviction is strictly by insertion order: once capacity is reached each
    new entry pushes out the oldest one. Entries are never re-touched.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError(f"History capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._entries: OrderedDict[str, tuple[int, TransactionAnalysis]] = OrderedDict()
        self._sequence = itertools.count()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, signature: object) -> bool:
        return signature in self._entries

    def add(self, analysis: TransactionAnalysis) -> TransactionAnalysis | None:
        """
        Insert an analysis.

        Returns:
            The evicted analysis, if the insert pushed one out
        """
        if analysis.signature in self._entries:
            logger.debug(f"Already tracking {analysis.signature[:12]}..., skipping")
            return None

        self._entries[analysis.signature] = (next(self._sequence), analysis)

        if len(self._entries) > self.capacity:
            _, (_, evicted) = self._entries.popitem(last=False)
            return evicted
        return None

    def get(self, signature: str) -> TransactionAnalysis | None:
        entry = self._entries.get(signature)
        return entry[1] if entry else None

    def values(self) -> list[TransactionAnalysis]:
        return [analysis for _, analysis in self._entries.values()]

    def view(self) -> HistoryView:
        """Snapshot for detectors; later inserts do not affect it."""
        return HistoryView(list(self._entries.values()))


class DetectionLog:
    """Append-only detection lists, exposed as recent-N views."""

    def __init__(self):
        self._sandwiches: list[SandwichAttack] = []
        self._arbitrages: list[ArbitrageOpportunity] = []

    @property
    def sandwich_count(self) -> int:
        return len(self._sandwiches)

    @property
    def arbitrage_count(self) -> int:
        return len(self._arbitrages)

    def add(self, detection: SandwichAttack | ArbitrageOpportunity):
        if isinstance(detection, SandwichAttack):
            self._sandwiches.append(detection)
        else:
            self._arbitrages.append(detection)

    def recent_sandwiches(self, limit: int) -> tuple[SandwichAttack, ...]:
        """Newest first."""
        return tuple(reversed(self._sandwiches[-limit:])) if limit > 0 else ()

    def recent_arbitrages(self, limit: int) -> tuple[ArbitrageOpportunity, ...]:
        """Newest first."""
        return tuple(reversed(self._arbitrages[-limit:])) if limit > 0 else ()


class BundleBuffer:
    """Ring buffer of the most recent bundles."""

    def __init__(self, capacity: int = 100):
        self.capacity = capacity
        self._bundles: deque[Bundle] = deque(maxlen=capacity)
        self.total_seen = 0

    def __len__(self) -> int:
        return len(self._bundles)

    def add(self, bundle: Bundle):
        self._bundles.append(bundle)
        self.total_seen += 1

    def recent(self, limit: int) -> tuple[Bundle, ...]:
        """Newest first."""
        if limit <= 0:
            return ()
        return tuple(reversed(list(self._bundles)[-limit:]))
