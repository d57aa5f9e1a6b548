"""Solana MEV Watcher - streams DEX activity and flags sandwiches and arbitrage."""

__version__ = "0.1.0"
