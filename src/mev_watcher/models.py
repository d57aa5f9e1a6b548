"""Domain records shared across the stream, parser, detectors and store."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum


class FeedKind(str, Enum):
    """Upstream feed a raw event came from."""

    BUNDLES = "bundles"
    LOGS = "logs"
    BACKFILL = "backfill"  # Replayed from RPC history, not a live feed


class ConnectionState(str, Enum):
    """Lifecycle of a stream source connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    BACKOFF = "backoff"


@dataclass(frozen=True)
class TokenTransfer:
    """A token movement between two owners inside one transaction."""

    from_address: str
    to_address: str
    amount: Decimal
    token: str  # Mint address


@dataclass(frozen=True)
class SwapEvent:
    """One leg of a swap executed by a DEX program."""

    dex: str
    token_in: str
    token_out: str
    amount_in: Decimal
    amount_out: Decimal


@dataclass(frozen=True)
class BalanceDelta:
    """Net post - pre token balance change for an owner and mint."""

    owner: str
    token: str
    delta: Decimal


@dataclass(frozen=True)
class TransactionAnalysis:
    """Structured view of one observed transaction."""

    signature: str
    timestamp: datetime
    slot: int
    dex_interactions: tuple[str, ...] = ()
    token_transfers: tuple[TokenTransfer, ...] = ()
    swap_events: tuple[SwapEvent, ...] = ()
    signer: str = ""  # Fee payer, empty when unknown
    balance_deltas: tuple[BalanceDelta, ...] = ()

    def swapped_tokens(self) -> set[str]:
        """All mints appearing on either side of a swap."""
        tokens: set[str] = set()
        for swap in self.swap_events:
            tokens.add(swap.token_in)
            tokens.add(swap.token_out)
        return tokens

    def delta_for(self, owner: str, token: str) -> Decimal:
        """Sum of balance deltas for an owner in a mint (zero if absent)."""
        return sum(
            (
                d.delta
                for d in self.balance_deltas
                if d.owner == owner and d.token == token
            ),
            Decimal(0),
        )


@dataclass(frozen=True)
class SandwichAttack:
    """A victim swap bracketed by an attacker's frontrun and backrun."""

    victim_tx: str
    frontrun_tx: str
    backrun_tx: str
    token_address: str  # Token the attacker bought then sold
    profit: Decimal  # Victim's post - pre in token_address, signed by direction
    timestamp: datetime
    slot: int
    attacker: str = ""
    dex: str = ""
    attacker_profit: Decimal = Decimal(0)  # Attacker's net in the token it started with

    ALERT_TYPE = "sandwich"


@dataclass(frozen=True)
class ArbitrageOpportunity:
    """A transaction that cycles a token across venues back to itself."""

    buy_dex: str
    sell_dex: str
    token_in: str
    token_out: str
    profit_percent: Decimal
    timestamp: datetime
    slot: int
    signature: str = ""

    ALERT_TYPE = "arbitrage"


Detection = SandwichAttack | ArbitrageOpportunity


@dataclass(frozen=True)
class Bundle:
    """A set of transactions landed together, as reported by the bundle feed."""

    bundle_id: str
    transactions: tuple[str, ...]
    timestamp: datetime
    landed: bool
    slot: int


@dataclass(frozen=True)
class RawTransactionEvent:
    """Feed-independent notice that a transaction was observed."""

    signature: str
    slot: int
    timestamp: datetime
    feed: FeedKind
    program: str | None = None
    logs: tuple[str, ...] = ()
    bundle_id: str | None = None


@dataclass(frozen=True)
class Stats:
    """Point-in-time counters derived from the store."""

    sandwich_attacks: int
    arbitrage_ops: int
    total_analyzed: int
    bundles_seen: int

    def as_dict(self) -> dict:
        return {
            "sandwich_attacks": self.sandwich_attacks,
            "arbitrage_ops": self.arbitrage_ops,
            "total_analyzed": self.total_analyzed,
            "bundles_seen": self.bundles_seen,
        }
