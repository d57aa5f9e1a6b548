"""Detection engine, parser and rules."""

from .engine import DetectionEngine, Fetcher
from .parser import TransactionParser
from .rules import ArbitrageDetector, SandwichDetector, SandwichDetectorConfig

__all__ = [
    "ArbitrageDetector",
    "DetectionEngine",
    "Fetcher",
    "SandwichDetector",
    "SandwichDetectorConfig",
    "TransactionParser",
]
