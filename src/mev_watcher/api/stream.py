"""WebSocket stream source with an explicit reconnect state machine."""

import asyncio
import inspect
import json
import logging
import random
from datetime import datetime
from typing import Any, Awaitable, Callable

import httpx
import websockets

from ..clock import Clock, SystemClock
from ..config import StreamConfig
from ..errors import ParseError, StreamConnectionError
from ..models import Bundle, ConnectionState, RawTransactionEvent
from .feeds import Feed

logger = logging.getLogger(__name__)

MessageCallback = Callable[[RawTransactionEvent], Awaitable[None] | None]
BundleCallback = Callable[[Bundle], Awaitable[None] | None]
Connector = Callable[..., Any]  # websockets.connect-compatible


def with_api_key(url: str, api_key: str | None) -> str:
    """Append the api-key query parameter when a key is configured."""
    if not api_key:
        return url
    return str(httpx.URL(url).copy_merge_params({"api-key": api_key}))


def redact(url: str) -> str:
    """URL with the api-key parameter stripped, safe to log."""
    return str(httpx.URL(url).copy_remove_param("api-key"))


class StreamSource:
    """
    Subscribes to one upstream feed and delivers normalized events.

    States move Disconnected -> Connecting -> Connected and, on any error
    or close, through Backoff back to Connecting until close() is called.
    is_connected is true only once every subscribe request has been sent.
    """

    def __init__(
        self,
        feed: Feed,
        url: str,
        config: StreamConfig,
        clock: Clock | None = None,
        connector: Connector | None = None,
        rng: random.Random | None = None,
        on_connect: Callable[[], Awaitable[None]] | None = None,
        on_disconnect: Callable[[], Awaitable[None]] | None = None,
    ):
        self.feed = feed
        self.url = with_api_key(url, config.api_key)
        self.config = config
        self.clock = clock or SystemClock()
        self.on_connect = on_connect
        self.on_disconnect = on_disconnect
        self._connector = connector or websockets.connect
        self._random = rng or random.Random()
        self._message_callbacks: list[MessageCallback] = []
        self._bundle_callbacks: list[BundleCallback] = []
        self._state = ConnectionState.DISCONNECTED
        self._ws = None
        self._running = False
        self._closed = asyncio.Event()
        self._ping_task: asyncio.Task | None = None
        self._inflight: set[asyncio.Task] = set()
        self._attempt = 0
        self._last_arrival: datetime | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def name(self) -> str:
        return f"{self.feed.kind.value} feed"

    def on_message(self, callback: MessageCallback):
        """Register a callback for each normalized transaction event."""
        self._message_callbacks.append(callback)

    def on_bundle(self, callback: BundleCallback):
        """Register a callback for each bundle (bundle feed only)."""
        self._bundle_callbacks.append(callback)

    def backoff_delay(self, attempt: int) -> float:
        """Delay before reconnect attempt number `attempt` (1-based)."""
        base = self.config.reconnect_delay * (2 ** max(attempt - 1, 0))
        delay = min(base, self.config.max_reconnect_delay)
        if self.config.jitter:
            delay *= self._random.uniform(1 - self.config.jitter, 1 + self.config.jitter)
        return max(delay, 0.0)

    async def connect(self):
        """Connect to the feed and keep reconnecting until close() is called."""
        if self._running:
            logger.warning(f"{self.name} already running")
            return

        self._running = True
        self._closed.clear()

        while self._running:
            self._set_state(ConnectionState.CONNECTING)
            was_connected = False
            try:
                logger.info(f"Connecting {self.name} to {redact(self.url)}...")

                async with self._connector(self.url, ping_interval=None) as ws:
                    self._ws = ws
                    if not self._running:
                        break

                    self.feed.reset()
                    await self._subscribe()
                    if not self._running:
                        break

                    self._attempt = 0
                    self._set_state(ConnectionState.CONNECTED)
                    was_connected = True
                    logger.info(f"Connected {self.name}")

                    if self.on_connect:
                        await self.on_connect()

                    self._ping_task = asyncio.create_task(self._ping_loop())

                    await self._listen()

                    if self._running:
                        logger.warning(f"{self.name} closed by server")

            except websockets.ConnectionClosed as e:
                logger.warning(f"{self.name} connection closed: {e}")
            except (OSError, websockets.InvalidHandshake, StreamConnectionError) as e:
                logger.warning(f"{self.name} connection error: {e}")
            except Exception as e:
                logger.error(f"{self.name} error: {e}", exc_info=True)
            finally:
                await self._stop_ping()
                self._ws = None

                if was_connected and self.on_disconnect:
                    await self.on_disconnect()

            if self._running:
                await self._backoff()

        self._set_state(ConnectionState.DISCONNECTED)

    async def close(self):
        """Stop the source. Safe to call more than once."""
        self._running = False
        self._closed.set()

        # Deliveries still awaiting a fetch must not apply their results
        current = asyncio.current_task()
        for task in list(self._inflight):
            if task is not current:
                task.cancel()

        ws = self._ws
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"Error closing {self.name} socket: {e}")

        await self._stop_ping()
        self._set_state(ConnectionState.DISCONNECTED)

    def _set_state(self, state: ConnectionState):
        if state is not self._state:
            logger.debug(f"{self.name}: {self._state.value} -> {state.value}")
            self._state = state

    async def _backoff(self):
        """Wait before the next attempt; returns early if close() is called."""
        self._attempt += 1
        delay = self.backoff_delay(self._attempt)
        self._set_state(ConnectionState.BACKOFF)
        logger.info(f"Reconnecting {self.name} in {delay:.1f} seconds...")

        sleeper = asyncio.ensure_future(self.clock.sleep(delay))
        closed = asyncio.ensure_future(self._closed.wait())
        try:
            await asyncio.wait({sleeper, closed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, closed):
                if not task.done():
                    task.cancel()
            await asyncio.gather(sleeper, closed, return_exceptions=True)

    async def _subscribe(self):
        """Send every subscribe request for the feed."""
        for request in self.feed.subscribe_requests():
            try:
                await self._ws.send(json.dumps(request))
            except (websockets.ConnectionClosed, OSError) as e:
                raise StreamConnectionError(
                    f"Subscribe {request.get('method')} failed: {e}"
                ) from e
            logger.info(f"Sent {request['method']} on {self.name}")

    async def _stop_ping(self):
        task, self._ping_task = self._ping_task, None
        if task:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _ping_loop(self):
        """Send periodic pings to keep connection alive."""
        while self._running and self._ws:
            try:
                await asyncio.sleep(self.config.ping_interval)
                if self._ws:
                    await self._ws.ping()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.debug(f"Ping error: {e}")
                break

    async def _listen(self):
        """Listen for incoming messages."""
        async for message in self._ws:
            if not self._running:
                break
            try:
                await self._handle_message(message)
            except ParseError as e:
                logger.debug(f"Dropped frame on {self.name}: {e}")
            except Exception as e:
                logger.error(f"Error handling message: {e}", exc_info=True)

    async def _handle_message(self, raw_message: str | bytes):
        """Decode a frame, normalize it and deliver the resulting items."""
        try:
            data = json.loads(raw_message)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ParseError(f"Non-JSON message: {str(raw_message)[:100]}") from e

        if not isinstance(data, dict):
            raise ParseError(f"Unexpected frame type: {type(data).__name__}")

        items = self.feed.normalize(data, self._arrival_time())

        for item in items:
            if not self._running:
                return
            if isinstance(item, Bundle):
                await self._deliver(self._bundle_callbacks, item)
            else:
                await self._deliver(self._message_callbacks, item)

    async def _deliver(self, callbacks: list[Callable], item):
        for callback in callbacks:
            if not self._running:
                return
            result = callback(item)
            if inspect.isawaitable(result):
                await self._track(result)

    async def _track(self, awaitable):
        """Await a callback as a task that close() can cancel."""
        task = asyncio.ensure_future(awaitable)
        self._inflight.add(task)
        try:
            await task
        except asyncio.CancelledError:
            if self._running:
                raise
            logger.debug(f"Dropped in-flight delivery on {self.name} after close")
        finally:
            self._inflight.discard(task)

    def _arrival_time(self) -> datetime:
        """Arrival timestamp, never earlier than the previous one."""
        now = self.clock.now()
        if self._last_arrival is not None and now < self._last_arrival:
            now = self._last_arrival
        self._last_arrival = now
        return now
