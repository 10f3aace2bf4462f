"""
Dynamic Attribute Schema

Metadata attributes become columns of the nfts table. The set of columns is
shared by every record and only grows.
"""

from __future__ import annotations
from typing import Dict, Iterable, Optional, Set
import asyncio
import logging
import re
import sqlite3

from .contracts import Trait
from .storage import FIXED_COLUMNS, NFTStore


logger = logging.getLogger(__name__)

_NON_WORD = re.compile(r'\W+', re.ASCII)

RESERVED_PREFIX = 'trait_'


def sanitize_column_name(name: str) -> str:
    """
    Column name for an attribute name.

    Trims, lowercases and collapses every run of non-word characters to a
    single underscore: "Background Color!!" -> "background_color_".
    """
    return _NON_WORD.sub('_', name.strip().lower())


def attribute_column(trait_type: str) -> Optional[str]:
    """
    Column a trait is stored under, or None if it has no usable name.

    Names that would land on a fixed column are prefixed so metadata cannot
    overwrite nft_id, owner and the like.
    """
    column = sanitize_column_name(trait_type)
    if not column:
        return None
    if column in FIXED_COLUMNS:
        return RESERVED_PREFIX + column
    return column


def _stringify(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)


class SchemaManager:
    """
    Owns the evolving column set of the nfts table.

    ensure_column is check-then-add under one asyncio.Lock, so concurrent
    pipelines never issue the same ALTER TABLE twice. Known columns are
    cached after the first query.
    """

    def __init__(self, store: NFTStore):
        self._store = store
        self._lock = asyncio.Lock()
        self._columns: Optional[Set[str]] = None

    async def columns(self) -> Set[str]:
        async with self._lock:
            return set(await self._known_columns())

    async def _known_columns(self) -> Set[str]:
        if self._columns is None:
            self._columns = set(await asyncio.to_thread(self._store.list_columns))
        return self._columns

    async def ensure_column(self, column: str) -> bool:
        """
        Make sure a column exists. Returns True if this call added it.
        """
        async with self._lock:
            known = await self._known_columns()
            if column in known:
                return False

            # Another process may have added it since the cache was filled
            current = set(await asyncio.to_thread(self._store.list_columns))
            known.update(current)
            if column in known:
                return False

            try:
                await asyncio.to_thread(self._store.add_column, column)
            except sqlite3.OperationalError as e:
                if 'duplicate column' not in str(e).lower():
                    raise
                known.add(column)
                return False

            known.add(column)
            logger.info("Added column: %s", column)
            return True

    async def map_attributes(self, traits: Iterable[Trait]) -> Dict[str, Optional[str]]:
        """
        Column -> value mapping for a trait list, with every column ensured.

        A later trait with the same column wins.
        """
        mapped: Dict[str, Optional[str]] = {}
        for trait in traits:
            column = attribute_column(trait.trait_type)
            if column is None:
                logger.debug("Skipping trait with unusable name %r", trait.trait_type)
                continue
            await self.ensure_column(column)
            mapped[column] = _stringify(trait.value)
        return mapped
