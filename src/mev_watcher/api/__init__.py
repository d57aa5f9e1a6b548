"""Upstream clients: streaming feeds and the RPC endpoint."""

from .feeds import BundleFeed, Feed, LogFeed
from .rpc import RpcClient
from .stream import StreamSource

__all__ = [
    "BundleFeed",
    "Feed",
    "LogFeed",
    "RpcClient",
    "StreamSource",
]
