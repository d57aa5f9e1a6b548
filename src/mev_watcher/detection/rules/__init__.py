"""Detection rules."""

from .arbitrage import ArbitrageDetector
from .sandwich import SandwichDetector, SandwichDetectorConfig

__all__ = [
    "ArbitrageDetector",
    "SandwichDetector",
    "SandwichDetectorConfig",
]
