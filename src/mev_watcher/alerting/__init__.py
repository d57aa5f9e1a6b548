"""Detection output: subscriber dispatch and logging."""

from .dispatcher import EventDispatcher
from .logger import DetectionFormatter, DetectionLogger, setup_app_logging

__all__ = [
    "DetectionFormatter",
    "DetectionLogger",
    "EventDispatcher",
    "setup_app_logging",
]
