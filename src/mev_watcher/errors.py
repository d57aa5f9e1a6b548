"""Exception types raised inside the watcher.

None of these are fatal: each one is caught at the boundary of the
component that raised it and logged.
"""


class MevWatcherError(Exception):
    """Base class for watcher errors."""


class StreamConnectionError(MevWatcherError):
    """Socket open or send failed; the stream source backs off and retries."""


class ParseError(MevWatcherError):
    """A frame from the stream was malformed and has been dropped."""


class FetchError(MevWatcherError):
    """A transaction fetch failed or timed out."""

    def __init__(self, signature: str, reason: str):
        super().__init__(f"Fetch failed for {signature}: {reason}")
        self.signature = signature
        self.reason = reason


class SubscriberError(MevWatcherError):
    """A dispatch subscriber raised while handling an event."""

    def __init__(self, subscriber: object, cause: BaseException):
        name = getattr(subscriber, "__qualname__", repr(subscriber))
        super().__init__(f"Subscriber {name} failed: {cause!r}")
        self.subscriber = subscriber
        self.cause = cause
