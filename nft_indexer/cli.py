"""
Command line entry point.

    nft-indexer <issuer> <taxon> [options]
"""

from __future__ import annotations
from pathlib import Path
from typing import List, Optional
import argparse
import asyncio
import logging
import sqlite3
import sys

from .config import IndexerConfig
from .ledger import LedgerError
from .service import IndexerService


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nft-indexer",
        description="Track the NFTs of one issuer and taxon on the XRP Ledger in a local SQLite database."
    )
    parser.add_argument("issuer", help="Issuer account to watch.")
    parser.add_argument("taxon", type=int, help="Collection taxon (integer).")
    parser.add_argument("--config", type=Path, help="JSON file with additional settings.")
    parser.add_argument("--db", dest="db_path", help="SQLite database file (default: nfts.db).")
    parser.add_argument("--ledger-url", help="Websocket URL of a rippled or clio server.")
    parser.add_argument("--ipfs-gateway", help="HTTP gateway used for ipfs:// URIs.")
    parser.add_argument("--settle-delay", type=float, help="Seconds to wait before each nft_info lookup.")
    parser.add_argument("--lookup-attempts", type=int, help="nft_info attempts per new NFT.")
    parser.add_argument("--workers", dest="worker_count", type=int, help="Number of dispatch workers.")
    parser.add_argument("--queue-size", type=int, help="Capacity of each worker queue.")
    parser.add_argument("--stream-buffer", type=int,
                        help="Transaction messages held ahead of the workers before dropping.")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=args.log_level, format=LOG_FORMAT)

    try:
        config = IndexerConfig.load(
            args.config,
            issuer=args.issuer,
            taxon=args.taxon,
            db_path=args.db_path,
            ledger_url=args.ledger_url,
            ipfs_gateway=args.ipfs_gateway,
            settle_delay=args.settle_delay,
            lookup_attempts=args.lookup_attempts,
            worker_count=args.worker_count,
            queue_size=args.queue_size,
            stream_buffer=args.stream_buffer,
        )
        service = IndexerService(config)
    except (OSError, ValueError, sqlite3.Error) as e:
        parser.print_usage(sys.stderr)
        print(f"{parser.prog}: error: {e}", file=sys.stderr)
        return 2

    try:
        asyncio.run(service.run())
    except LedgerError as e:
        logging.getLogger(__name__).error("Ledger connection failed: %s", e)
        return 1
    except KeyboardInterrupt:
        print("\nIndexer stopped.")

    return 0


if __name__ == "__main__":
    sys.exit(main())
