"""Feed definitions - subscribe requests and frame normalization per feed kind.

The stream source is transport only; everything that depends on which
upstream feed is connected lives here, so the parser and detectors never
branch on where a transaction came from.
"""

import logging
from datetime import datetime
from typing import Protocol

from ..errors import ParseError
from ..models import Bundle, FeedKind, RawTransactionEvent

logger = logging.getLogger(__name__)

FeedItem = Bundle | RawTransactionEvent


class Feed(Protocol):
    """Protocol for feed kinds."""

    kind: FeedKind

    def subscribe_requests(self) -> list[dict]:
        """JSON-RPC requests to send once the socket is open."""
        ...

    def reset(self) -> None:
        """Forget per-connection state before a new connection."""
        ...

    def normalize(self, frame: dict, received_at: datetime) -> list[FeedItem]:
        """Turn a decoded frame into bundles and raw transaction events."""
        ...


def _is_ack(frame: dict) -> bool:
    return "id" in frame and "result" in frame and "params" not in frame


def _raise_on_error(frame: dict):
    if "error" in frame:
        raise ParseError(f"Upstream error for request {frame.get('id')}: {frame['error']}")


class BundleFeed:
    """Bundle stream: each frame is one landed (or dropped) bundle."""

    kind = FeedKind.BUNDLES

    def subscribe_requests(self) -> list[dict]:
        return [
            {
                "jsonrpc": "2.0",
                "id": 1,
                "method": "subscribeBundles",
                "params": [],
            }
        ]

    def reset(self):
        pass

    def normalize(self, frame: dict, received_at: datetime) -> list[FeedItem]:
        _raise_on_error(frame)
        if _is_ack(frame):
            logger.debug(f"Bundle subscription confirmed: {frame['result']}")
            return []

        try:
            result = frame["params"]["result"]
            bundle = Bundle(
                bundle_id=str(result["bundleId"]),
                transactions=tuple(str(sig) for sig in result["transactions"]),
                timestamp=received_at,
                landed=bool(result.get("landed", False)),
                slot=int(result.get("slot", 0)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ParseError(f"Malformed bundle frame: {e!r}") from e

        items: list[FeedItem] = [bundle]
        for signature in bundle.transactions:
            items.append(
                RawTransactionEvent(
                    signature=signature,
                    slot=bundle.slot,
                    timestamp=received_at,
                    feed=self.kind,
                    bundle_id=bundle.bundle_id,
                )
            )
        return items


class LogFeed:
    """Log stream: one subscription per DEX program, one frame per transaction."""

    kind = FeedKind.LOGS
    COMMITMENT = "confirmed"
    ENCODING = "jsonParsed"

    def __init__(self, programs: list[str]):
        if not programs:
            raise ValueError("LogFeed needs at least one program address")
        self.programs = list(programs)
        self._subscriptions: dict[int, str] = {}  # subscription id -> program

    def subscribe_requests(self) -> list[dict]:
        return [
            {
                "jsonrpc": "2.0",
                "id": request_id,
                "method": "logsSubscribe",
                "params": [
                    {"mentions": [program]},
                    {"commitment": self.COMMITMENT, "encoding": self.ENCODING},
                ],
            }
            for request_id, program in enumerate(self.programs, start=1)
        ]

    def reset(self):
        self._subscriptions.clear()

    def normalize(self, frame: dict, received_at: datetime) -> list[FeedItem]:
        _raise_on_error(frame)
        if _is_ack(frame):
            self._record_ack(frame)
            return []

        if frame.get("method") != "logsNotification":
            logger.debug(f"Ignoring frame with method {frame.get('method')!r}")
            return []

        try:
            params = frame["params"]
            result = params["result"]
            value = result["value"]
            signature = str(value["signature"])
            slot = int(result["context"]["slot"])
            logs = tuple(str(line) for line in value.get("logs") or ())
            failed = value.get("err") is not None
        except (KeyError, TypeError, ValueError) as e:
            raise ParseError(f"Malformed log notification: {e!r}") from e

        if failed:
            return []

        return [
            RawTransactionEvent(
                signature=signature,
                slot=slot,
                timestamp=received_at,
                feed=self.kind,
                program=self._subscriptions.get(params.get("subscription")),
                logs=logs,
            )
        ]

    def _record_ack(self, frame: dict):
        try:
            index = int(frame["id"]) - 1
            program = self.programs[index]
            self._subscriptions[int(frame["result"])] = program
        except (IndexError, TypeError, ValueError) as e:
            raise ParseError(f"Unexpected subscription ack: {frame}") from e
        logger.debug(f"Subscribed to logs for {program[:8]}... (id {frame['result']})")
