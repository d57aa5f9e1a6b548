"""Tests for application wiring and the command line."""

import pytest

from mev_watcher.api import BundleFeed, LogFeed
from mev_watcher.config import (
    Config,
    DetectionConfig,
    LoggingConfig,
    RpcConfig,
    StreamConfig,
)
from mev_watcher.dex import DEX_PROGRAMS
from mev_watcher.errors import FetchError
from mev_watcher.main import MevWatcher, format_stats, main_async, parse_args
from mev_watcher.models import Stats

from factories import raydium_swap_tx


def make_config(tmp_path, feeds=("bundles", "logs"), **stream) -> Config:
    return Config(
        stream=StreamConfig(
            ws_url="wss://stream.example/",
            feeds=list(feeds),
            **stream,
        ),
        rpc=RpcConfig(url="https://rpc.example/"),
        detection=DetectionConfig(extra_programs={"lifinity": "LiFi1111"}),
        logging=LoggingConfig(file=str(tmp_path / "detections.log")),
    )


class TestWiring:
    @pytest.mark.asyncio
    async def test_one_source_per_feed(self, tmp_path):
        watcher = MevWatcher(
            make_config(
                tmp_path,
                bundle_ws_url="wss://bundles.example/",
                programs=["raydium", "lifinity", "Custom1111"],
            )
        )

        bundle_source, log_source = watcher.sources

        assert isinstance(bundle_source.feed, BundleFeed)
        assert bundle_source.url.startswith("wss://bundles.example/")
        assert isinstance(log_source.feed, LogFeed)
        assert log_source.feed.programs == [DEX_PROGRAMS["raydium"], "LiFi1111", "Custom1111"]
        assert not watcher.is_connected

        await watcher.stop()

    @pytest.mark.asyncio
    async def test_stop_closes_engine_before_sources(self, tmp_path):
        watcher = MevWatcher(make_config(tmp_path))
        engine_closed_at_source_close = []

        for source in watcher.sources:
            original = source.close

            async def close(original=original):
                engine_closed_at_source_close.append(watcher.engine.closed)
                await original()

            source.close = close

        await watcher.stop()

        assert engine_closed_at_source_close == [True, True]

    @pytest.mark.parametrize("feed", ["backfill", "firehose"])
    def test_unknown_feed_rejected(self, tmp_path, feed):
        with pytest.raises(ValueError):
            MevWatcher(make_config(tmp_path, feeds=[feed]))


class TestBackfill:
    @pytest.mark.asyncio
    async def test_replays_oldest_first_and_skips_failed(self, tmp_path):
        watcher = MevWatcher(make_config(tmp_path, feeds=["bundles"]))
        fetched = []

        async def signatures(address, limit=100):
            assert (address, limit) == ("PoolAddr", 3)
            return [
                {"signature": "s3", "slot": 3, "blockTime": 1714564803, "err": None},
                {"signature": "s2", "slot": 2, "blockTime": 1714564802, "err": {"x": 1}},
                {"signature": "s1", "slot": 1, "blockTime": None, "err": None},
            ]

        async def fetch(signature):
            fetched.append(signature)
            return raydium_swap_tx()

        watcher.rpc.get_signatures_for_address = signatures
        watcher.engine.fetcher = fetch

        await watcher.backfill("PoolAddr", limit=3)

        assert fetched == ["s1", "s3"]
        assert watcher.engine.get_stats().total_analyzed == 2
        assert watcher.engine.history.get("s3").timestamp.timestamp() == 1714564803

        await watcher.stop()
        assert watcher.engine.closed

    @pytest.mark.asyncio
    async def test_listing_failure_is_logged_not_raised(self, tmp_path):
        watcher = MevWatcher(make_config(tmp_path, feeds=["bundles"]))

        async def signatures(address, limit=100):
            raise FetchError(address, "HTTP 429")

        watcher.rpc.get_signatures_for_address = signatures

        await watcher.backfill("PoolAddr")

        assert watcher.engine.get_stats().total_analyzed == 0
        await watcher.stop()


def test_parse_args():
    args = parse_args(["-c", "other.yaml", "--debug", "--backfill", "Addr", "--limit", "5"])

    assert args.config == "other.yaml"
    assert args.debug
    assert args.backfill == "Addr"
    assert args.limit == 5


def test_parse_args_defaults():
    args = parse_args([])

    assert args.config == "config.yaml"
    assert args.backfill is None
    assert args.limit == 100


@pytest.mark.asyncio
async def test_missing_config_exits(tmp_path):
    args = parse_args(["--config", str(tmp_path / "nope.yaml")])

    with pytest.raises(SystemExit) as exc_info:
        await main_async(args)

    assert exc_info.value.code == 1


def test_format_stats():
    stats = Stats(sandwich_attacks=1, arbitrage_ops=2, total_analyzed=10, bundles_seen=4)

    assert format_stats(stats) == "10 analyzed, 1 sandwiches, 2 arbitrages, 4 bundles"
