"""Tests for match_to_library(): exact -> model-level -> fuzzy token."""

import pytest

from conftest import assert_result_invariants
from matcher import match_to_library
from models import (
    CONFIDENCE_HIGH,
    CONFIDENCE_LOW,
    CONFIDENCE_MEDIUM,
    METHOD_EXACT,
    METHOD_FUZZY_TOKEN,
    METHOD_MODEL,
    METHOD_STORAGE_CLOSEST,
)


class ExplodingLibrary:
    """Fails the test if the matcher touches the library."""

    def __iter__(self):
        raise AssertionError("library should not be read")


def test_exact_match_is_high_confidence(active_devices):
    result = match_to_library("Apple", "iPhone 11", "64GB", active_devices)
    assert result.device_id == "A1"
    assert result.device_name == "Apple iPhone 11 64GB"
    assert result.storage == "64GB"
    assert result.match_confidence == CONFIDENCE_HIGH
    assert result.method == METHOD_EXACT
    assert not result.needs_storage_selection
    assert not result.needs_manual_selection


@pytest.mark.parametrize("make, model, storage, expected_id", [
    ("apple", "IPHONE 11", "128gb", "A2"),
    ("Apple ", " iPhone 11", "128 GB", "A2"),
    ("SAMSUNG", "galaxy s21 ultra", "512GB", "S2"),
])
def test_exact_match_ignores_case_and_whitespace(active_devices, make, model, storage, expected_id):
    result = match_to_library(make, model, storage, active_devices)
    assert result.device_id == expected_id
    assert result.method == METHOD_EXACT


def test_every_active_device_resolves_to_itself(active_devices):
    for device in active_devices:
        result = match_to_library(device.make, device.model, device.storage, active_devices)
        assert result.device_id == device.id
        assert result.match_confidence == CONFIDENCE_HIGH
        assert not result.needs_storage_selection
        assert not result.needs_manual_selection


def test_missing_storage_with_variants_needs_storage_selection(active_devices):
    result = match_to_library("Samsung", "Galaxy S21 Ultra", None, active_devices)
    assert result.device_id is None
    assert result.device_name == "Samsung Galaxy S21 Ultra"
    assert result.needs_storage_selection is True
    assert result.storage_options == ["256GB", "512GB"]
    assert result.match_confidence == CONFIDENCE_MEDIUM
    assert_result_invariants(result)


def test_storage_options_come_from_the_exact_model_only(active_devices):
    # "iPhone 11 Pro" also contains "iPhone 11" but is a different model
    result = match_to_library("Apple", "iPhone 11", None, active_devices)
    assert result.needs_storage_selection is True
    assert result.storage_options == ["64GB", "128GB"]


def test_single_model_candidate_is_high(active_devices):
    result = match_to_library("Google", "Pixel 7", None, active_devices)
    assert result.device_id == "G1"
    assert result.match_confidence == CONFIDENCE_HIGH
    assert result.method == METHOD_MODEL


def test_partial_storage_falls_back_to_closest_variant(active_devices):
    result = match_to_library("Samsung", "Galaxy S21 Ultra", "256", active_devices)
    assert result.device_id == "S1"
    assert result.match_confidence == CONFIDENCE_HIGH
    assert result.method == METHOD_STORAGE_CLOSEST


def test_storage_only_offered_by_a_longer_model_is_not_picked(active_devices):
    # 256GB exists only for "iPhone 11 Pro"; the iPhone 11 variants are offered instead
    result = match_to_library("Apple", "iPhone 11", "256GB", active_devices)
    assert result.device_id is None
    assert result.needs_storage_selection is True
    assert result.storage_options == ["64GB", "128GB"]
    assert result.match_confidence == CONFIDENCE_MEDIUM
    assert_result_invariants(result)


def test_model_contained_in_input_model(active_devices):
    # device model "Pixel 7" is contained in the longer input text
    result = match_to_library("Google", "Pixel 7 5G Obsidian", "128GB", active_devices)
    assert result.device_id == "G1"


def test_fuzzy_tokens_single_candidate_is_medium(active_devices):
    result = match_to_library("Google", "Pixel-7", None, active_devices)
    assert result.device_id == "G1"
    assert result.match_confidence == CONFIDENCE_MEDIUM
    assert result.method == METHOD_FUZZY_TOKEN


def test_fuzzy_tokens_with_variants_need_storage_selection(active_devices):
    result = match_to_library("Samsung", "S21-Ultra", None, active_devices)
    assert result.needs_storage_selection is True
    assert result.storage_options == ["256GB", "512GB"]
    assert result.match_confidence == CONFIDENCE_MEDIUM
    assert result.method == METHOD_FUZZY_TOKEN


def test_fuzzy_tokens_respect_threshold(active_devices):
    # 1 of 2 tokens present -> 50% < 80%
    result = match_to_library("Samsung", "S21 Fold", None, active_devices)
    assert result.needs_manual_selection is True
    relaxed = match_to_library("Samsung", "S21 Fold", None, active_devices, token_threshold=0.5)
    assert relaxed.needs_storage_selection is True


@pytest.mark.parametrize("make, model", [
    ("Google", "Nexus 5"),
    ("Nokia", "3310"),
    ("Apple", "iPhone 8"),   # only an inactive device has this model
])
def test_unmatched_needs_manual_selection(active_devices, make, model):
    result = match_to_library(make, model, "64GB", active_devices)
    assert result.device_id is None
    assert result.needs_manual_selection is True
    assert result.match_confidence == CONFIDENCE_LOW
    assert_result_invariants(result)


@pytest.mark.parametrize("make, model", [
    (None, "iPhone 11"),
    ("Apple", None),
    ("", "iPhone 11"),
    ("Apple", "   "),
])
def test_missing_make_or_model_short_circuits(make, model):
    result = match_to_library(make, model, "64GB", ExplodingLibrary())
    assert result.needs_manual_selection is True
    assert result.match_confidence == CONFIDENCE_LOW
