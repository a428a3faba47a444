"""
Alias store: literal input strings that were already resolved to a device.

Alias text is normalized (trimmed, lowercased) on both write and lookup, so
lookups are exact but case- and whitespace-insensitive. Writes are upserts:
saving an existing alias overwrites device_id / created_by and keeps the
original created_at. The engine never deletes aliases.
"""

import os
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

import pandas as pd

from log_setup import get_logger
from models import Alias

logger = get_logger("alias_store")

ALIAS_COLUMNS = ['alias', 'device_id', 'created_by', 'created_at']


def normalize_alias(text: Optional[str]) -> str:
    return (text or '').strip().lower()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AliasStore:
    """Base alias store; subclasses persist the mapping."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._clock = clock
        self._aliases: Dict[str, Alias] = {}

    def lookup_alias(self, text: Optional[str]) -> Optional[Alias]:
        key = normalize_alias(text)
        if not key:
            return None
        return self._aliases.get(key)

    def save_alias(self, text: Optional[str], device_id: str, created_by: str = "auto") -> None:
        """Upsert an alias. Empty alias text is ignored."""
        key = normalize_alias(text)
        if not key:
            return
        if not device_id:
            raise ValueError("device_id is required to save an alias")

        self._refresh()
        existing = self._aliases.get(key)
        created_at = existing.created_at if existing else self._clock()
        updated = dict(self._aliases)
        updated[key] = Alias(
            alias=key, device_id=device_id, created_by=created_by, created_at=created_at,
        )
        # memory only changes once the write went through
        self._persist(updated)
        self._aliases = updated

        if existing:
            logger.info("Updated alias '%s' -> %s (%s)", key, device_id, created_by)
        else:
            logger.info("Created alias '%s' -> %s (%s)", key, device_id, created_by)

    def list_aliases(self, search: Optional[str] = None) -> List[Alias]:
        """All aliases, newest first; search keeps aliases containing every word."""
        aliases = sorted(self._aliases.values(), key=lambda a: a.created_at, reverse=True)
        words = normalize_alias(search).split()
        if words:
            aliases = [a for a in aliases if all(w in a.alias for w in words)]
        return aliases

    def __len__(self) -> int:
        return len(self._aliases)

    def _refresh(self) -> None:
        """Pick up aliases written elsewhere before an upsert."""

    def _persist(self, aliases: Dict[str, Alias]) -> None:
        pass


class MemoryAliasStore(AliasStore):
    """Process-local store."""


class ParquetAliasStore(AliasStore):
    """
    Alias table kept in a parquet file.

    The file is re-read right before every save and rewritten with the merged
    table via a temp file + os.replace, so a crash never leaves a partial
    file and aliases saved by another store on the same path are kept.
    Two writers only race on the read-to-replace window of a single save.
    """

    def __init__(self, path: str, clock: Callable[[], datetime] = _utcnow):
        super().__init__(clock=clock)
        self.path = path
        self._refresh()

    def _refresh(self) -> None:
        if os.path.exists(self.path):
            self._aliases = self._load()

    def _load(self) -> Dict[str, Alias]:
        aliases: Dict[str, Alias] = {}
        df = pd.read_parquet(self.path)
        for row in df.to_dict('records'):
            created_at = pd.Timestamp(row['created_at']).to_pydatetime()
            if created_at.tzinfo is None:
                created_at = created_at.replace(tzinfo=timezone.utc)
            key = normalize_alias(row['alias'])
            aliases[key] = Alias(
                alias=key,
                device_id=str(row['device_id']),
                created_by=str(row['created_by']),
                created_at=created_at,
            )
        logger.debug("Loaded %d aliases from %s", len(aliases), self.path)
        return aliases

    def _persist(self, aliases: Dict[str, Alias]) -> None:
        os.makedirs(os.path.dirname(os.path.abspath(self.path)), exist_ok=True)
        df = pd.DataFrame(
            [
                {'alias': a.alias, 'device_id': a.device_id,
                 'created_by': a.created_by, 'created_at': a.created_at}
                for a in aliases.values()
            ],
            columns=ALIAS_COLUMNS,
        )
        tmp_path = f"{self.path}.tmp"
        df.to_parquet(tmp_path, index=False)
        os.replace(tmp_path, self.path)
