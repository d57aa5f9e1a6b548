"""Detection engine - runs the fetch, parse, detect, store and dispatch pipeline."""

import asyncio
import logging
from typing import Awaitable, Callable

from ..alerting import EventDispatcher
from ..clock import Clock
from ..config import DetectionConfig
from ..errors import FetchError
from ..models import (
    ArbitrageOpportunity,
    Bundle,
    Detection,
    RawTransactionEvent,
    SandwichAttack,
    Stats,
    TransactionAnalysis,
)
from ..store import BundleBuffer, DetectionLog, HistoryStore
from .parser import TransactionParser
from .rules import ArbitrageDetector, SandwichDetector, SandwichDetectorConfig

logger = logging.getLogger(__name__)

Fetcher = Callable[[str], Awaitable[dict | None]]


class DetectionEngine:
    """
    Orchestrates parsing and detection for every observed transaction.

    The engine is the single writer of the history and detection log: all
    mutation happens under one lock, so several feeds can share an engine.
    Consumers read through get_stats() and the recent_* views.
    """

    def __init__(
        self,
        parser: TransactionParser | None = None,
        history: HistoryStore | None = None,
        dispatcher: EventDispatcher | None = None,
        fetcher: Fetcher | None = None,
        sandwich_detector: SandwichDetector | None = None,
        arbitrage_detector: ArbitrageDetector | None = None,
        bundles: BundleBuffer | None = None,
        fetch_timeout: float = 10.0,
        recent_view_size: int = 50,
    ):
        self.parser = parser or TransactionParser()
        self.history = history if history is not None else HistoryStore()
        self.dispatcher = dispatcher or EventDispatcher()
        self.fetcher = fetcher
        self.sandwich_detector = sandwich_detector or SandwichDetector()
        self.arbitrage_detector = arbitrage_detector or ArbitrageDetector()
        self.detections = DetectionLog()
        self.bundles = bundles if bundles is not None else BundleBuffer()
        self.fetch_timeout = fetch_timeout
        self.recent_view_size = recent_view_size
        self._lock = asyncio.Lock()
        self._closed = False

    @classmethod
    def from_config(
        cls,
        config: DetectionConfig,
        fetcher: Fetcher | None = None,
        fetch_timeout: float = 10.0,
        clock: Clock | None = None,
    ) -> "DetectionEngine":
        """Build an engine with detectors and stores sized from config."""
        return cls(
            parser=TransactionParser(extra_programs=config.extra_programs, clock=clock),
            history=HistoryStore(config.history_capacity),
            fetcher=fetcher,
            sandwich_detector=SandwichDetector(
                SandwichDetectorConfig(window_ms=config.sandwich_window_ms)
            ),
            bundles=BundleBuffer(config.bundle_buffer_size),
            fetch_timeout=fetch_timeout,
            recent_view_size=config.recent_view_size,
        )

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self):
        """Stop applying results; in-flight fetches complete but are dropped."""
        self._closed = True

    async def process_event(self, event: RawTransactionEvent) -> list[Detection]:
        """
        Fetch, parse and analyze a transaction observed on a feed.

        Args:
            event: Normalized event from any feed

        Returns:
            Detections generated (may be empty)
        """
        if self._closed:
            return []

        if event.signature in self.history:
            logger.debug(f"Already analyzed {event.signature[:12]}..., skipping")
            return []

        raw_tx = await self._fetch(event.signature)
        analysis = self.parser.parse(event.signature, raw_tx, event.timestamp)
        return await self.process_analysis(analysis)

    async def process_analysis(self, analysis: TransactionAnalysis) -> list[Detection]:
        """Run detectors against history, record the analysis and dispatch."""
        if self._closed:
            logger.debug(f"Engine closed, dropping {analysis.signature[:12]}...")
            return []

        async with self._lock:
            if analysis.signature in self.history:
                return []

            detections = self._detect(analysis)

            self.history.add(analysis)
            for detection in detections:
                self.detections.add(detection)

        for detection in detections:
            await self.dispatcher.dispatch_detection(detection)

        return detections

    async def process_bundle(self, bundle: Bundle):
        """Record a bundle and hand it to bundle subscribers."""
        if self._closed:
            return

        async with self._lock:
            self.bundles.add(bundle)

        logger.debug(
            f"Bundle {bundle.bundle_id[:12]}: {len(bundle.transactions)} txs, "
            f"slot {bundle.slot}, landed={bundle.landed}"
        )
        await self.dispatcher.dispatch_bundle(bundle)

    def _detect(self, analysis: TransactionAnalysis) -> list[Detection]:
        """A sandwich leg is not also reported as an arbitrage."""
        view = self.history.view()

        try:
            sandwich = self.sandwich_detector.detect(analysis, view)
            if sandwich:
                return [sandwich]
        except Exception as e:
            logger.error(
                f"Error in detector {self.sandwich_detector.ALERT_TYPE}: {e}",
                exc_info=True,
            )

        try:
            arbitrage = self.arbitrage_detector.detect(analysis)
            if arbitrage:
                return [arbitrage]
        except Exception as e:
            logger.error(
                f"Error in detector {self.arbitrage_detector.ALERT_TYPE}: {e}",
                exc_info=True,
            )

        return []

    async def _fetch(self, signature: str) -> dict | None:
        """Fetch a transaction, degrading to None on any failure."""
        if self.fetcher is None:
            return None

        try:
            return await self._fetch_with_deadline(signature)
        except FetchError as e:
            logger.warning(f"{e}; analyzing without transaction data")
            return None

    async def _fetch_with_deadline(self, signature: str) -> dict | None:
        try:
            return await asyncio.wait_for(self.fetcher(signature), timeout=self.fetch_timeout)
        except asyncio.TimeoutError as e:
            raise FetchError(signature, f"timed out after {self.fetch_timeout}s") from e

    def get_stats(self) -> Stats:
        """Point-in-time counters."""
        return Stats(
            sandwich_attacks=self.detections.sandwich_count,
            arbitrage_ops=self.detections.arbitrage_count,
            total_analyzed=len(self.history),
            bundles_seen=self.bundles.total_seen,
        )

    def recent_sandwiches(self, limit: int | None = None) -> tuple[SandwichAttack, ...]:
        return self.detections.recent_sandwiches(limit or self.recent_view_size)

    def recent_arbitrages(self, limit: int | None = None) -> tuple[ArbitrageOpportunity, ...]:
        return self.detections.recent_arbitrages(limit or self.recent_view_size)

    def recent_bundles(self, limit: int | None = None) -> tuple[Bundle, ...]:
        return self.bundles.recent(limit or self.recent_view_size)
