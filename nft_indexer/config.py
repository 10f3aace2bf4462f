"""
Indexer Configuration

One explicit configuration object, built at startup and handed to every
component that needs it. Nothing here is read from module globals.
"""

from __future__ import annotations
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional
import json


DEFAULT_LEDGER_URL = "wss://s2-clio.ripple.com"
DEFAULT_IPFS_GATEWAY = "https://ipfs.io/ipfs"
DEFAULT_DB_PATH = "nfts.db"


class ConfigError(ValueError):
    """Raised when the indexer configuration is unusable."""


@dataclass(frozen=True)
class IndexerConfig:
    """Configuration for one indexer process (one issuer, one taxon)."""
    issuer: str
    taxon: int
    ledger_url: str = DEFAULT_LEDGER_URL
    db_path: str = DEFAULT_DB_PATH
    ipfs_gateway: str = DEFAULT_IPFS_GATEWAY
    settle_delay: float = 0.5      # seconds before each nft_info lookup
    lookup_attempts: int = 1       # 1 = give up after the first not-found
    fetch_timeout: float = 30.0
    request_timeout: float = 10.0
    worker_count: int = 4
    queue_size: int = 1000
    stream_buffer: int = 10000    # transaction messages held ahead of the dispatcher
    user_agent: str = "NFTIndexer/1.0"

    def __post_init__(self):
        if not self.issuer or not isinstance(self.issuer, str):
            raise ConfigError("issuer must be a non-empty string")
        if isinstance(self.taxon, bool) or not isinstance(self.taxon, int):
            raise ConfigError("taxon must be an integer")
        if self.settle_delay < 0:
            raise ConfigError("settle_delay must not be negative")
        if self.lookup_attempts < 1:
            raise ConfigError("lookup_attempts must be at least 1")
        if self.worker_count < 1:
            raise ConfigError("worker_count must be positive")
        if self.queue_size < 1:
            raise ConfigError("queue_size must be positive")
        if self.stream_buffer < 1:
            raise ConfigError("stream_buffer must be positive")

    @classmethod
    def load(cls, config_path: Optional[Path] = None, **overrides: Any) -> 'IndexerConfig':
        """
        Load configuration from an optional JSON file.

        Keyword overrides (typically CLI arguments) win over file values;
        overrides that are None are ignored.
        """
        values: Dict[str, Any] = {}

        if config_path is not None:
            with open(config_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ConfigError(f"{config_path}: expected a JSON object")
            known = {f.name for f in fields(cls)}
            unknown = sorted(set(data) - known)
            if unknown:
                raise ConfigError(f"{config_path}: unknown keys {', '.join(unknown)}")
            values.update(data)

        values.update({k: v for k, v in overrides.items() if v is not None})

        missing = [name for name in ('issuer', 'taxon') if name not in values]
        if missing:
            raise ConfigError(f"missing required settings: {', '.join(missing)}")

        return cls(**values)

