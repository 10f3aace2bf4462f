"""
NFT Record Storage

Persistent SQLite storage for tracked NFTs.

PRINCIPLES:
===========
1. One row per NFT, keyed by nft_id - upserts never duplicate
2. Mutations only touch NFTs that are already tracked
3. Columns are only ever added, never dropped or renamed
4. Records are never deleted - burns set a flag
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional
from pathlib import Path
import logging
import sqlite3
from contextlib import contextmanager

from .contracts import NFTRecord


logger = logging.getLogger(__name__)

TABLE = 'nfts'
FIXED_COLUMNS = ('nft_id', 'is_burned', 'owner', 'name', 'image')


def _quote(column: str) -> str:
    return '"' + column.replace('"', '""') + '"'


class NFTStore:
    """
    SQLite-backed table of NFT records.

    Every call opens its own connection, so methods may be run from worker
    threads; SQLite serializes the writes.
    """

    def __init__(self, db_path: Path):
        self._db_path = Path(db_path)
        self._ensure_directories()
        self._init_db()

    def _ensure_directories(self):
        """Create the parent directory of the database file."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    def _init_db(self):
        """Initialize database schema."""
        with self._get_conn() as conn:
            conn.execute(f'''
                CREATE TABLE IF NOT EXISTS {TABLE} (
                    nft_id TEXT PRIMARY KEY,
                    is_burned INTEGER,
                    owner TEXT,
                    name TEXT,
                    image TEXT
                )
            ''')

    @contextmanager
    def _get_conn(self):
        """Get database connection."""
        conn = sqlite3.connect(self._db_path, timeout=30.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    @property
    def db_path(self) -> Path:
        return self._db_path

    # =========================================================================
    # SCHEMA
    # =========================================================================

    def list_columns(self) -> List[str]:
        """Column names of the nfts table, in table order."""
        with self._get_conn() as conn:
            rows = conn.execute(f'PRAGMA table_info({TABLE})').fetchall()
            return [row['name'] for row in rows]

    def add_column(self, column: str):
        """Add a TEXT column. Raises sqlite3.OperationalError if it exists."""
        with self._get_conn() as conn:
            conn.execute(f'ALTER TABLE {TABLE} ADD COLUMN {_quote(column)} TEXT')

    # =========================================================================
    # WRITES
    # =========================================================================

    def upsert(self, record: NFTRecord):
        """Insert or replace the row for record.nft_id."""
        row = record.to_row()
        columns = ', '.join(_quote(col) for col in row)
        placeholders = ', '.join('?' for _ in row)

        with self._get_conn() as conn:
            conn.execute(
                f'INSERT OR REPLACE INTO {TABLE} ({columns}) VALUES ({placeholders})',
                tuple(row.values())
            )

    def update(self, nft_id: str, fields: Dict[str, Any]) -> bool:
        """
        Update fields of a tracked NFT.

        Returns True if the NFT was tracked and updated, False if unknown.
        """
        if not fields:
            return self.get(nft_id) is not None

        assignments = ', '.join(f'{_quote(col)} = ?' for col in fields)

        with self._get_conn() as conn:
            existing = conn.execute(
                f'SELECT nft_id FROM {TABLE} WHERE nft_id = ?',
                (nft_id,)
            ).fetchone()

            if not existing:
                return False

            conn.execute(
                f'UPDATE {TABLE} SET {assignments} WHERE nft_id = ?',
                (*fields.values(), nft_id)
            )
            return True

    def update_owner(self, nft_id: str, owner: str) -> bool:
        """Reassign the owner of a tracked NFT."""
        return self.update(nft_id, {'owner': owner})

    def mark_burned(self, nft_id: str) -> bool:
        """Flag a tracked NFT as burned."""
        return self.update(nft_id, {'is_burned': 1})

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get(self, nft_id: str) -> Optional[dict]:
        """Row for an NFT as a dict, or None if untracked."""
        with self._get_conn() as conn:
            row = conn.execute(
                f'SELECT * FROM {TABLE} WHERE nft_id = ?',
                (nft_id,)
            ).fetchone()
            return dict(row) if row else None

    def count(self) -> int:
        with self._get_conn() as conn:
            return conn.execute(f'SELECT COUNT(*) FROM {TABLE}').fetchone()[0]

    def get_stats(self) -> dict:
        """Get storage statistics."""
        with self._get_conn() as conn:
            total = conn.execute(f'SELECT COUNT(*) FROM {TABLE}').fetchone()[0]
            burned = conn.execute(
                f'SELECT COUNT(*) FROM {TABLE} WHERE is_burned = 1'
            ).fetchone()[0]
            owners = conn.execute(
                f'SELECT COUNT(DISTINCT owner) FROM {TABLE} WHERE is_burned = 0'
            ).fetchone()[0]

        columns = self.list_columns()
        return {
            'nfts': total,
            'burned': burned,
            'holders': owners,
            'attribute_columns': [c for c in columns if c not in FIXED_COLUMNS]
        }
