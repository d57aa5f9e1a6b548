"""Configuration loader for the MEV watcher."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

API_KEY_ENV = "HELIUS_API_KEY"


@dataclass
class StreamConfig:
    ws_url: str
    feeds: list[str] = field(default_factory=lambda: ["bundles"])
    bundle_ws_url: str | None = None  # Falls back to ws_url
    api_key: str | None = None
    # DEX names (jupiter, raydium, ...) or program addresses for the log feed
    programs: list[str] = field(
        default_factory=lambda: ["jupiter", "raydium", "orca"]
    )
    reconnect_delay: float = 5.0  # seconds
    max_reconnect_delay: float = 60.0  # seconds
    jitter: float = 0.2  # +/- fraction applied to each backoff delay
    ping_interval: float = 5.0  # seconds


@dataclass
class RpcConfig:
    url: str
    api_key: str | None = None
    fetch_timeout: float = 10.0  # seconds


@dataclass
class DetectionConfig:
    history_capacity: int = 1000
    sandwich_window_ms: int = 500
    recent_view_size: int = 50
    bundle_buffer_size: int = 100
    extra_programs: dict[str, str] = field(default_factory=dict)  # id -> address
    stats_interval: float = 30.0  # seconds between stats log lines


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: str = "logs/detections.log"
    max_file_size_mb: int = 10
    backup_count: int = 5


@dataclass
class Config:
    stream: StreamConfig
    rpc: RpcConfig
    detection: DetectionConfig
    logging: LoggingConfig


def load_config(config_path: str | Path = "config.yaml") -> Config:
    """Load configuration from YAML file."""
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    env_key = os.environ.get(API_KEY_ENV) or None

    stream = StreamConfig(**raw["stream"])
    if not stream.api_key:
        stream.api_key = env_key

    rpc = RpcConfig(**raw["rpc"])
    if not rpc.api_key:
        rpc.api_key = env_key

    return Config(
        stream=stream,
        rpc=rpc,
        detection=DetectionConfig(**(raw.get("detection") or {})),
        logging=LoggingConfig(**(raw.get("logging") or {})),
    )
