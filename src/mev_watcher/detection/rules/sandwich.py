"""Sandwich detector - flags a swap bracketed by an attacker's buy and sell."""

import logging
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal

from ...models import SandwichAttack, SwapEvent, TransactionAnalysis
from ...store import HistoryView

logger = logging.getLogger(__name__)


@dataclass
class SandwichDetectorConfig:
    """Configuration for the sandwich detector."""

    window_ms: int = 500  # Max time between correlated transactions


class SandwichDetector:
    """
    Detects sandwich attacks within a single slot.

    The transaction being analyzed is treated as the closing (backrun) leg.
    A sandwich is reported when history holds a victim V and a frontrun F
    such that F < V < current in arrival order, all three are within the
    window of each other, and:
    1. All three swap the same token pair on the same DEX
    2. F and V trade in the same direction, current trades back the other way
    3. F and current share a signer that differs from V's (when known)
    """

    ALERT_TYPE = SandwichAttack.ALERT_TYPE

    def __init__(self, config: SandwichDetectorConfig | None = None):
        self.config = config or SandwichDetectorConfig()
        self.window = timedelta(milliseconds=self.config.window_ms)

    def is_candidate_pair(self, a: TransactionAnalysis, b: TransactionAnalysis) -> bool:
        """Same slot, inside the window, and sharing both a DEX and a token."""
        if a.signature == b.signature or a.slot != b.slot or a.slot == 0:
            return False
        if abs(a.timestamp - b.timestamp) >= self.window:
            return False
        if not set(a.dex_interactions) & set(b.dex_interactions):
            return False
        return bool(a.swapped_tokens() & b.swapped_tokens())

    def candidate_pairs(
        self,
        current: TransactionAnalysis,
        history: HistoryView,
    ) -> list[tuple[TransactionAnalysis, TransactionAnalysis]]:
        """Every (earlier, current) pairing eligible to be part of a sandwich."""
        return [
            (other, current)
            for other in history.in_slot(current.slot)
            if self.is_candidate_pair(other, current)
        ]

    def detect(
        self,
        current: TransactionAnalysis,
        history: HistoryView,
    ) -> SandwichAttack | None:
        """
        Check whether `current` closes a sandwich.

        Args:
            current: Newly parsed transaction (not yet in history)
            history: Read-only view of earlier transactions

        Returns:
            SandwichAttack if a bracket was found, None otherwise
        """
        candidates = [other for other, _ in self.candidate_pairs(current, history)]
        if len(candidates) < 2:
            return None

        def position(tx: TransactionAnalysis) -> tuple:
            order = history.order_of(tx.signature)
            return (tx.timestamp, -1 if order is None else order)

        current_position = (current.timestamp, float("inf"))
        earlier = sorted(
            (c for c in candidates if position(c) < current_position),
            key=position,
            reverse=True,
        )

        # Most recent victim first, then the closest frontrun before it
        for i, victim in enumerate(earlier):
            for frontrun in earlier[i + 1 :]:
                if position(frontrun) >= position(victim):
                    continue
                if not self.is_candidate_pair(frontrun, victim):
                    continue
                if not self._signers_match(frontrun, victim, current):
                    continue

                legs = self._matching_legs(frontrun, victim, current)
                if legs:
                    return self._build(frontrun, victim, current, *legs)

        return None

    @staticmethod
    def _signers_match(
        frontrun: TransactionAnalysis,
        victim: TransactionAnalysis,
        backrun: TransactionAnalysis,
    ) -> bool:
        if frontrun.signer and backrun.signer and frontrun.signer != backrun.signer:
            return False
        attacker = frontrun.signer or backrun.signer
        if attacker and victim.signer == attacker:
            return False
        return True

    @staticmethod
    def _matching_legs(
        frontrun: TransactionAnalysis,
        victim: TransactionAnalysis,
        backrun: TransactionAnalysis,
    ) -> tuple[SwapEvent, SwapEvent, SwapEvent] | None:
        """Find swaps forming buy (F), buy (V), sell (current) on one DEX and pair."""
        for f in frontrun.swap_events:
            if f.token_in == f.token_out:
                continue
            for v in victim.swap_events:
                if (v.dex, v.token_in, v.token_out) != (f.dex, f.token_in, f.token_out):
                    continue
                for b in backrun.swap_events:
                    if (b.dex, b.token_in, b.token_out) == (f.dex, f.token_out, f.token_in):
                        return f, v, b
        return None

    def _build(
        self,
        frontrun: TransactionAnalysis,
        victim: TransactionAnalysis,
        backrun: TransactionAnalysis,
        front_leg: SwapEvent,
        victim_leg: SwapEvent,
        back_leg: SwapEvent,
    ) -> SandwichAttack:
        base_token = front_leg.token_in
        target_token = front_leg.token_out
        attacker = frontrun.signer or backrun.signer

        attacker_profit = self._attacker_profit(attacker, base_token, frontrun, backrun)
        if attacker_profit is None:
            attacker_profit = back_leg.amount_out - front_leg.amount_in

        logger.debug(
            f"Sandwich on {front_leg.dex}: {frontrun.signature[:8]}.. / "
            f"{victim.signature[:8]}.. / {backrun.signature[:8]}.."
        )

        return SandwichAttack(
            victim_tx=victim.signature,
            frontrun_tx=frontrun.signature,
            backrun_tx=backrun.signature,
            token_address=target_token,
            profit=self._victim_profit(victim, victim_leg, target_token),
            timestamp=backrun.timestamp,
            slot=backrun.slot,
            attacker=attacker,
            dex=front_leg.dex,
            attacker_profit=attacker_profit,
        )

    @staticmethod
    def _victim_profit(
        victim: TransactionAnalysis,
        victim_leg: SwapEvent,
        token: str,
    ) -> Decimal:
        """
        Victim's post - pre balance change in the sandwiched token.

        The victim trades in the frontrun's direction, so it receives the token;
        without balance snapshots its swap output stands in for the delta.
        """
        if victim.signer and any(
            d.owner == victim.signer and d.token == token for d in victim.balance_deltas
        ):
            return victim.delta_for(victim.signer, token)
        return victim_leg.amount_out

    @staticmethod
    def _attacker_profit(
        attacker: str,
        token: str,
        frontrun: TransactionAnalysis,
        backrun: TransactionAnalysis,
    ) -> Decimal | None:
        """Net balance change of the attacker in `token` across both legs."""
        if not attacker:
            return None
        deltas = [
            d.delta
            for tx in (frontrun, backrun)
            for d in tx.balance_deltas
            if d.owner == attacker and d.token == token
        ]
        if not deltas:
            return None
        return sum(deltas, Decimal(0))
