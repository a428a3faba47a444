"""
Device library loading and the time-to-live snapshot cache.

The catalog itself is owned by catalog management; this module only reads it.
Files are read with pandas (parquet, CSV or Excel) into immutable
LibraryDevice records. The cache hands out one snapshot to every reader and
replaces it wholesale on refresh, so a reader never sees a half-built list.
"""

import os
import time
from typing import Callable, List, Optional, Tuple

import pandas as pd

from log_setup import get_logger
from matcher import find_duplicate_devices
from models import LibraryDevice

logger = get_logger("library_cache")

DEFAULT_TTL_SECONDS = 60.0
REQUIRED_COLUMNS = ['id', 'make', 'model', 'storage']

_TRUE_STRINGS = {'true', '1', 'yes', 'y', 't'}


class LibraryLoadError(Exception):
    """Raised when a catalog file can't be turned into LibraryDevice records."""


# ---------------------------------------------------------------------------
# Loaders
# ---------------------------------------------------------------------------

def _as_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return True  # missing flag means the device was never deactivated
    return str(value).strip().lower() in _TRUE_STRINGS


def _as_text(value) -> str:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return ''
    return str(value).strip()


def devices_from_frame(df: pd.DataFrame) -> List[LibraryDevice]:
    """
    Build LibraryDevice records from a catalog DataFrame.

    Required columns: id, make, model, storage. Optional: active (defaults
    to True), category (defaults to ''). Column names are matched
    case-insensitively after stripping whitespace.
    """
    df = df.copy()
    df.columns = [str(c).strip().lower() for c in df.columns]
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise LibraryLoadError(f"catalog is missing required columns: {', '.join(missing)}")

    devices = []
    for row in df.to_dict('records'):
        device_id = _as_text(row['id'])
        if not device_id:
            continue
        devices.append(LibraryDevice(
            id=device_id,
            make=_as_text(row['make']),
            model=_as_text(row['model']),
            storage=_as_text(row['storage']),
            active=_as_bool(row.get('active', True)),
            category=_as_text(row.get('category', '')),
        ))
    return devices


def read_library_file(path: str) -> List[LibraryDevice]:
    """Read a catalog from .parquet, .csv or .xlsx."""
    ext = os.path.splitext(path)[1].lower()
    if ext == '.parquet':
        df = pd.read_parquet(path)
    elif ext == '.csv':
        df = pd.read_csv(path, dtype=str)
    elif ext in ('.xlsx', '.xls'):
        df = pd.read_excel(path, dtype=str)
    else:
        raise LibraryLoadError(f"unsupported catalog file type: {path}")
    return devices_from_frame(df)


def save_library_parquet(devices: List[LibraryDevice], path: str) -> None:
    """Persist a device list to parquet (used by seeding and tests)."""
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    df = pd.DataFrame([
        {
            'id': d.id, 'make': d.make, 'model': d.model,
            'storage': d.storage, 'active': d.active, 'category': d.category,
        }
        for d in devices
    ], columns=['id', 'make', 'model', 'storage', 'active', 'category'])
    df.to_parquet(path, index=False)


# ---------------------------------------------------------------------------
# TTL cache
# ---------------------------------------------------------------------------

class DeviceLibraryCache:
    """
    Snapshot of the whole device library, reloaded once it is older than ttl.

    Concurrent readers in a stale window may each trigger a reload; reloads
    are read-only and idempotent, so they are not serialized. The clock is
    injectable so staleness can be forced in tests.
    """

    def __init__(
        self,
        loader: Callable[[], List[LibraryDevice]],
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._loader = loader
        self._ttl = ttl_seconds
        self._clock = clock
        # (devices, loaded_at); swapped in one assignment
        self._snapshot: Optional[Tuple[Tuple[LibraryDevice, ...], float]] = None

    @classmethod
    def from_file(cls, path: str, ttl_seconds: float = DEFAULT_TTL_SECONDS,
                  clock: Callable[[], float] = time.monotonic) -> "DeviceLibraryCache":
        return cls(lambda: read_library_file(path), ttl_seconds=ttl_seconds, clock=clock)

    def is_stale(self) -> bool:
        snapshot = self._snapshot
        return snapshot is None or self._clock() - snapshot[1] >= self._ttl

    def get(self) -> List[LibraryDevice]:
        """Current snapshot, reloading first when it has expired."""
        snapshot = self._snapshot
        if snapshot is not None and self._clock() - snapshot[1] < self._ttl:
            return list(snapshot[0])
        return self.refresh()

    def refresh(self) -> List[LibraryDevice]:
        """
        Reload the full library and replace the snapshot.

        Loader errors propagate and leave the previous snapshot in place.
        """
        started = self._clock()
        devices = tuple(self._loader())
        loaded_at = self._clock()
        self._snapshot = (devices, loaded_at)

        logger.debug("Reloaded device library: %d devices in %.3fs",
                     len(devices), loaded_at - started)
        duplicates = find_duplicate_devices(devices)
        if duplicates:
            sample = ', '.join(list(duplicates)[:5])
            logger.warning("Found %d duplicate active device groups (e.g. %s)",
                           len(duplicates), sample)
        return list(devices)

    def invalidate(self) -> None:
        """Drop the snapshot; the next get() reloads."""
        self._snapshot = None
