"""Tests for alias lookup / upsert in the memory and parquet stores."""

import os

import pandas as pd
import pytest

from alias_store import MemoryAliasStore, ParquetAliasStore, normalize_alias


@pytest.mark.parametrize("text, expected", [
    ("  IPH1164G ", "iph1164g"),
    ("Galaxy S21 Ultra", "galaxy s21 ultra"),
    (None, ""),
])
def test_normalize_alias(text, expected):
    assert normalize_alias(text) == expected


def test_lookup_is_case_and_whitespace_insensitive(alias_clock):
    store = MemoryAliasStore(clock=alias_clock)
    store.save_alias("  IPH1164G ", "A1", "admin")
    alias = store.lookup_alias("iph1164g")
    assert alias is not None
    assert alias.alias == "iph1164g"
    assert alias.device_id == "A1"
    assert alias.created_by == "admin"
    assert store.lookup_alias("IPH1164G   ").device_id == "A1"
    assert store.lookup_alias("IPH11") is None
    assert store.lookup_alias("") is None


def test_save_is_idempotent(alias_clock):
    store = MemoryAliasStore(clock=alias_clock)
    store.save_alias("iPhone 11 64", "A1", "auto")
    store.save_alias("iPhone 11 64", "A1", "auto")
    assert len(store) == 1
    assert store.lookup_alias("iphone 11 64").device_id == "A1"


def test_upsert_overwrites_device_and_keeps_created_at(alias_clock):
    store = MemoryAliasStore(clock=alias_clock)
    store.save_alias("iPhone 11 64", "A2", "auto")
    created_at = store.lookup_alias("iphone 11 64").created_at
    store.save_alias("IPHONE 11 64", "A1", "admin")
    alias = store.lookup_alias("iphone 11 64")
    assert len(store) == 1
    assert (alias.device_id, alias.created_by) == ("A1", "admin")
    assert alias.created_at == created_at


def test_empty_alias_is_ignored_and_device_required(alias_clock):
    store = MemoryAliasStore(clock=alias_clock)
    store.save_alias("   ", "A1")
    assert len(store) == 0
    with pytest.raises(ValueError):
        store.save_alias("iph1164g", "")


def test_list_aliases_newest_first_with_search(alias_clock):
    store = MemoryAliasStore(clock=alias_clock)
    store.save_alias("iph1164g", "A1")
    store.save_alias("galaxy s21 ultra 256", "S1")
    store.save_alias("s21 ultra 512", "S2")
    assert [a.alias for a in store.list_aliases()] == [
        "s21 ultra 512", "galaxy s21 ultra 256", "iph1164g",
    ]
    assert [a.device_id for a in store.list_aliases("Ultra S21")] == ["S2", "S1"]
    assert store.list_aliases("pixel") == []


def test_parquet_store_persists_across_instances(tmp_path, alias_clock):
    path = str(tmp_path / "aliases" / "aliases.parquet")
    store = ParquetAliasStore(path, clock=alias_clock)
    store.save_alias("IPH1164G", "A1", "admin")
    store.save_alias("pixel 7 128", "G1")
    created_at = store.lookup_alias("iph1164g").created_at

    reopened = ParquetAliasStore(path, clock=alias_clock)
    assert len(reopened) == 2
    alias = reopened.lookup_alias("iph1164g")
    assert alias.device_id == "A1"
    assert alias.created_by == "admin"
    assert alias.created_at == created_at
    assert not os.path.exists(f"{path}.tmp")


def test_parquet_store_upsert_persists(tmp_path, alias_clock):
    path = str(tmp_path / "aliases.parquet")
    ParquetAliasStore(path, clock=alias_clock).save_alias("pixel 7 128", "G1")
    ParquetAliasStore(path, clock=alias_clock).save_alias("Pixel 7 128", "G2", "admin")
    reopened = ParquetAliasStore(path, clock=alias_clock)
    assert len(reopened) == 1
    assert reopened.lookup_alias("pixel 7 128").device_id == "G2"


def test_stores_sharing_a_file_keep_each_others_aliases(tmp_path, alias_clock):
    path = str(tmp_path / "aliases.parquet")
    first = ParquetAliasStore(path, clock=alias_clock)
    second = ParquetAliasStore(path, clock=alias_clock)
    first.save_alias("iph1164g", "A1")
    second.save_alias("galaxy s21u", "S1")

    reopened = ParquetAliasStore(path, clock=alias_clock)
    assert sorted(a.alias for a in reopened.list_aliases()) == ["galaxy s21u", "iph1164g"]
    assert reopened.lookup_alias("iph1164g").device_id == "A1"
    # the second store picked up the first one's alias when it saved
    assert second.lookup_alias("iph1164g").device_id == "A1"


def test_upsert_keeps_created_at_written_by_another_store(tmp_path, alias_clock):
    path = str(tmp_path / "aliases.parquet")
    first = ParquetAliasStore(path, clock=alias_clock)
    second = ParquetAliasStore(path, clock=alias_clock)
    first.save_alias("pixel 7 128", "G1")
    created_at = first.lookup_alias("pixel 7 128").created_at
    second.save_alias("pixel 7 128", "G2", "admin")
    alias = ParquetAliasStore(path, clock=alias_clock).lookup_alias("pixel 7 128")
    assert (alias.device_id, alias.created_at) == ("G2", created_at)


def test_failed_write_leaves_store_unchanged(tmp_path, alias_clock, monkeypatch):
    path = str(tmp_path / "aliases.parquet")
    store = ParquetAliasStore(path, clock=alias_clock)
    store.save_alias("pixel 7 128", "G1")

    def fail(*args, **kwargs):
        raise OSError("disk full")

    monkeypatch.setattr(pd.DataFrame, "to_parquet", fail)
    with pytest.raises(OSError):
        store.save_alias("iph1164g", "A1")
    with pytest.raises(OSError):
        store.save_alias("pixel 7 128", "G2")

    assert store.lookup_alias("iph1164g") is None
    assert store.lookup_alias("pixel 7 128").device_id == "G1"
    assert len(store) == 1
