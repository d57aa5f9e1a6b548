"""Arbitrage detector - flags transactions that cycle a token back to itself."""

import logging
from decimal import Decimal

from ...models import ArbitrageOpportunity, TransactionAnalysis

logger = logging.getLogger(__name__)


class ArbitrageDetector:
    """
    Detects cyclic arbitrage inside a single transaction.

    This detector flags transactions where:
    1. At least two DEX programs are touched
    2. The flattened swap token sequence starts and ends on the same token
       and has more than two elements (A -> B -> ... -> A)
    """

    ALERT_TYPE = ArbitrageOpportunity.ALERT_TYPE

    def detect(self, current: TransactionAnalysis) -> ArbitrageOpportunity | None:
        if len(current.dex_interactions) < 2 or not current.swap_events:
            return None

        tokens = [
            token
            for swap in current.swap_events
            for token in (swap.token_in, swap.token_out)
        ]
        if len(tokens) <= 2 or tokens[0] != tokens[-1]:
            return None

        first = current.swap_events[0]
        last = current.swap_events[-1]
        buy_dex, sell_dex = self._venues(current, first.dex, last.dex)

        profit_percent = Decimal(0)
        if first.amount_in > 0:
            profit_percent = (last.amount_out - first.amount_in) / first.amount_in * 100

        logger.debug(
            f"Arbitrage cycle in {current.signature[:12]}...: "
            f"{buy_dex} -> {sell_dex}, {profit_percent:.4f}%"
        )

        return ArbitrageOpportunity(
            buy_dex=buy_dex,
            sell_dex=sell_dex,
            token_in=tokens[0],
            token_out=first.token_out,
            profit_percent=profit_percent,
            timestamp=current.timestamp,
            slot=current.slot,
            signature=current.signature,
        )

    @staticmethod
    def _venues(
        current: TransactionAnalysis,
        first_dex: str,
        last_dex: str,
    ) -> tuple[str, str]:
        """DEX of the first and last swap, falling back to interaction order."""
        distinct = list(dict.fromkeys(current.dex_interactions))
        fallback_buy = distinct[0]
        fallback_sell = distinct[1] if len(distinct) > 1 else distinct[0]
        return first_dex or fallback_buy, last_dex or fallback_sell
