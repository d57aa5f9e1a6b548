"""Event dispatcher - fans detections and bundles out to subscribers."""

import inspect
import logging
from typing import Any, Awaitable, Callable

from ..errors import SubscriberError
from ..models import Bundle, Detection

logger = logging.getLogger(__name__)

DetectionCallback = Callable[[Detection], Awaitable[None] | None]
BundleCallback = Callable[[Bundle], Awaitable[None] | None]


class EventDispatcher:
    """
    Registry of subscribers, invoked in registration order.

    A subscriber that raises is logged and skipped; the rest still get the
    event. There is no retry and no back-pressure on the producer.
    """

    def __init__(self):
        self._detection_subscribers: list[DetectionCallback] = []
        self._bundle_subscribers: list[BundleCallback] = []

    def on_detection(self, callback: DetectionCallback) -> Callable[[], None]:
        """Subscribe to detections. Returns a function that unsubscribes."""
        return self._register(self._detection_subscribers, callback)

    def on_bundle(self, callback: BundleCallback) -> Callable[[], None]:
        """Subscribe to bundles. Returns a function that unsubscribes."""
        return self._register(self._bundle_subscribers, callback)

    @property
    def subscriber_count(self) -> int:
        return len(self._detection_subscribers) + len(self._bundle_subscribers)

    async def dispatch_detection(self, event: Detection) -> list[SubscriberError]:
        return await self._dispatch(self._detection_subscribers, event)

    async def dispatch_bundle(self, bundle: Bundle) -> list[SubscriberError]:
        return await self._dispatch(self._bundle_subscribers, bundle)

    @staticmethod
    def _register(subscribers: list, callback: Callable) -> Callable[[], None]:
        subscribers.append(callback)

        def unsubscribe():
            if callback in subscribers:
                subscribers.remove(callback)

        return unsubscribe

    @staticmethod
    async def _dispatch(subscribers: list, event: Any) -> list[SubscriberError]:
        errors: list[SubscriberError] = []

        # Copy so a subscriber can unsubscribe while being called
        for callback in list(subscribers):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                error = SubscriberError(callback, e)
                logger.error(str(error), exc_info=True)
                errors.append(error)

        return errors
