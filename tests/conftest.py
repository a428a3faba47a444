"""Shared fixtures: a small device library, a controllable clock, resolver factory."""

import logging
from datetime import datetime, timedelta, timezone

import pytest

from alias_store import MemoryAliasStore
from library_cache import DeviceLibraryCache
from log_setup import ROOT_LOGGER_NAME
from matcher import filter_devices
from models import LibraryDevice
from resolver import DeviceResolver
from settings import ResolverSettings

LIBRARY = [
    LibraryDevice("A1", "Apple", "iPhone 11", "64GB", True, "phone"),
    LibraryDevice("A2", "Apple", "iPhone 11", "128GB", True, "phone"),
    LibraryDevice("A3", "Apple", "iPhone 11 Pro", "256GB", True, "phone"),
    LibraryDevice("S1", "Samsung", "Galaxy S21 Ultra", "256GB", True, "phone"),
    LibraryDevice("S2", "Samsung", "Galaxy S21 Ultra", "512GB", True, "phone"),
    LibraryDevice("G1", "Google", "Pixel 7", "128GB", True, "phone"),
    LibraryDevice("X1", "Apple", "iPhone 8", "64GB", False, "phone"),
    LibraryDevice("T1", "Apple", "iPad Air", "64GB", True, "tablet"),
]


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingLoader:
    def __init__(self, devices):
        self.devices = list(devices)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return list(self.devices)


@pytest.fixture
def library():
    return list(LIBRARY)


@pytest.fixture
def active_devices(library):
    return filter_devices(library)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def loader(library):
    return CountingLoader(library)


@pytest.fixture
def alias_clock():
    """Datetime clock ticking one second per call."""
    state = {'now': datetime(2026, 1, 1, tzinfo=timezone.utc)}

    def tick():
        state['now'] += timedelta(seconds=1)
        return state['now']

    return tick


@pytest.fixture
def make_resolver(loader, clock, alias_clock):
    def _make(**overrides):
        settings = ResolverSettings(**overrides)
        cache = DeviceLibraryCache(loader, ttl_seconds=settings.cache_ttl_seconds, clock=clock)
        return DeviceResolver(cache, MemoryAliasStore(clock=alias_clock), settings=settings)
    return _make


@pytest.fixture
def resolver(make_resolver):
    return make_resolver()


def assert_result_invariants(result):
    """Flag combinations a MatchResult must never carry."""
    if result.device_id is not None:
        assert result.needs_storage_selection is False
        assert result.needs_manual_selection is False
    if result.storage_options is not None:
        assert result.device_id is None
        assert result.needs_storage_selection is True
    if result.needs_manual_selection:
        assert result.device_id is None


@pytest.fixture(autouse=True)
def restore_root_logger():
    """setup_logging() reconfigures the device_resolver logger; undo it per test."""
    root = logging.getLogger(ROOT_LOGGER_NAME)
    saved = (list(root.handlers), root.propagate, root.level)
    yield
    root.handlers[:] = saved[0]
    root.propagate = saved[1]
    root.setLevel(saved[2])
