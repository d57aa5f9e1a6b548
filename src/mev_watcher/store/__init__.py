"""In-memory stores for history, detections and bundles."""

from .history import BundleBuffer, DetectionLog, HistoryStore, HistoryView

__all__ = ["BundleBuffer", "DetectionLog", "HistoryStore", "HistoryView"]
