"""
Core matching engine for device-identity resolution.

Every function in this module is pure: the caller passes the device list
(already filtered to active devices, and to a category where relevant), so
nothing here touches the library cache or the alias store.

Matching Approach:
    - Token extraction pulls a brand (via the brand-alias table) and a storage
      capacity (via the storage regex) out of a raw descriptor, leaving the
      residual model text
    - Structured matching tries, in order: exact make/model/storage, then
      model-level containment, then fuzzy model-token coverage (>= 80%)
    - Free-text matching scores every device by the share of input tokens it
      contains; survivors need >= 60%

Confidence Tiers:
    - high:   exact or single unambiguous match
    - medium: single fuzzy/token match (>= 0.8 overlap) or a match reached by
              storage disambiguation
    - low:    speculative (< 0.8 overlap) or absent; the result needs manual
              selection and never carries a device id

Storage Disambiguation:
    - When several storage variants of the same make+model remain tied, the
      result lists them in storage_options (sorted by capacity) and sets
      needs_storage_selection instead of guessing
"""

import re
from collections import defaultdict
from functools import lru_cache
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from rapidfuzz import fuzz, process

from brand_rules import BrandRules, default_brand_rules
from models import (
    CONFIDENCE_HIGH,
    CONFIDENCE_LOW,
    CONFIDENCE_MEDIUM,
    METHOD_EXACT,
    METHOD_FREE_TEXT_EXACT,
    METHOD_FREE_TEXT_TOKEN,
    METHOD_FUZZY_TOKEN,
    METHOD_MODEL,
    METHOD_NONE,
    METHOD_STORAGE_CLOSEST,
    LibraryDevice,
    MatchResult,
)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
FUZZY_TOKEN_THRESHOLD = 0.8     # share of model tokens a device model must contain
FREE_TEXT_MIN_SCORE = 0.6       # free-text survivors
FREE_TEXT_MEDIUM_SCORE = 0.8    # below this a free-text match is only speculative

# Capacities a glued or unit-less descriptor can plausibly carry ("1164G" -> 11 + 64GB).
# Small GB values are left out: "4G"/"5G" are network markers, not storage.
KNOWN_GB_CAPACITIES = (16, 32, 64, 128, 256, 512)
KNOWN_TB_CAPACITIES = (1, 2, 4)

_STORAGE_LABEL = re.compile(r'^(\d+(?:\.\d+)?)\s*(mb|gb|tb)$', re.IGNORECASE)
_UNIT_TO_GB = {'mb': 1 / 1024, 'gb': 1, 'tb': 1024}


# ---------------------------------------------------------------------------
# String normalization
# ---------------------------------------------------------------------------

@lru_cache(maxsize=50000)
def normalize_text(text: str) -> str:
    """
    Normalize a descriptor for token comparison.

    Steps:
        1. Lowercase
        2. Punctuation becomes a space (keeps token boundaries)
        3. Storage glued to its unit: "256 gb" -> "256gb"
        4. Collapse whitespace

    Examples:
        'Galaxy S21 Ultra, 256 GB' -> 'galaxy s21 ultra 256gb'
        'iPhone 11 (64GB)'         -> 'iphone 11 64gb'
    """
    if not isinstance(text, str):
        return ''
    s = text.lower()
    s = re.sub(r'[^\w\s]', ' ', s)
    s = re.sub(r'(\d+)\s*(gb|tb|mb)\b', r'\1\2', s)
    return re.sub(r'\s+', ' ', s).strip()


def _squash_storage(storage: Optional[str]) -> str:
    """'128 GB' -> '128gb'."""
    return re.sub(r'\s', '', storage or '').lower()


def storage_sort_key(label: str) -> Tuple[int, float, str]:
    """Order storage labels by capacity; labels that aren't capacities sort last."""
    m = _STORAGE_LABEL.match((label or '').strip())
    if m:
        return (0, float(m.group(1)) * _UNIT_TO_GB[m.group(2).lower()], '')
    return (1, 0.0, (label or '').lower())


def sorted_storage_options(devices: Iterable[LibraryDevice]) -> List[str]:
    """Distinct storage values of the given devices, smallest capacity first."""
    return sorted({d.storage for d in devices}, key=storage_sort_key)


# ---------------------------------------------------------------------------
# Token extraction
# ---------------------------------------------------------------------------

@lru_cache(maxsize=512)
def _alias_pattern(alias: str):
    return re.compile(r'\b' + re.escape(alias) + r'\b', re.IGNORECASE)


def extract_brand(text: str, rules: Optional[BrandRules] = None) -> Tuple[Optional[str], str]:
    """
    Find the brand in a raw descriptor.

    For each alias (brand table order), a prefix match is tried first, then a
    whole-word match. Returns (brand, remainder) with the alias removed, or
    (None, text) when no alias matches.

    Examples:
        'IPH1164G'                 -> ('Apple', '1164G')
        'Samsung Galaxy S21 Ultra' -> ('Samsung', 'Galaxy S21 Ultra')
        'used pixel 7 128gb'       -> ('Google', 'used 7 128gb')
    """
    if not text:
        return None, text or ''
    rules = rules or default_brand_rules()
    lower = text.lower()

    for brand, aliases in rules.brands:
        for alias in aliases:
            if lower.startswith(alias):
                return brand, text[len(alias):].strip()
            pattern = _alias_pattern(alias)
            if pattern.search(lower):
                rest = pattern.sub('', lower, count=1)
                return brand, re.sub(r'\s+', ' ', rest).strip()

    return None, text


def _split_capacity(digits: str, unit: str) -> Optional[Tuple[str, str]]:
    """
    Turn a (digits, unit) pair into (model_prefix, storage_label).

    A GB digit run that isn't a capacity itself but ends in a known one is
    split: '1164' + 'g' -> ('11', '64GB'). Bare g/t units are only trusted for
    known capacities, and TB runs are never split ('11T' is a model name).
    Returns None when the pair isn't storage.
    """
    unit = unit.lower()
    is_tb = unit.startswith('t')
    known = KNOWN_TB_CAPACITIES if is_tb else KNOWN_GB_CAPACITIES
    value = int(digits)

    if value in known:
        return '', _storage_label(value, is_tb)

    if not is_tb:
        for size in sorted(known, reverse=True):
            suffix = str(size)
            if len(digits) > len(suffix) and digits.endswith(suffix):
                return digits[:-len(suffix)], _storage_label(size, is_tb)

    if unit in ('gb', 'tb') and value > 0:
        return '', _storage_label(value, is_tb)
    return None


def _storage_label(value: int, is_tb: bool) -> str:
    """Canonical label: 1024GB -> 1TB, 2048GB -> 2TB."""
    if not is_tb and value in (1024, 2048):
        return f"{value // 1024}TB"
    return f"{value}{'TB' if is_tb else 'GB'}"


def extract_storage(text: str, rules: Optional[BrandRules] = None) -> Tuple[Optional[str], str]:
    """
    Extract the first storage capacity from a descriptor.

    Returns (label, remainder) where label is canonical ('128GB', '1TB') and
    the matched text is removed from the remainder. A model number glued to
    the capacity stays in the remainder.

    Examples:
        '11 64GB'     -> ('64GB', '11')
        '1164G'       -> ('64GB', '11')
        'S21 5G 256 gb' -> ('256GB', 'S21 5G')
    """
    if not text:
        return None, text or ''
    rules = rules or default_brand_rules()

    for m in rules.storage_regex.finditer(text):
        parsed = _split_capacity(m.group(1), m.group(2))
        if parsed is None:
            continue
        prefix, label = parsed
        rest = f"{text[:m.start()]} {prefix} {text[m.end():]}"
        return label, re.sub(r'\s+', ' ', rest).strip()

    return None, text


def parse_device_string(
    raw: str, rules: Optional[BrandRules] = None
) -> Tuple[Optional[str], Optional[str], str]:
    """
    Split a raw descriptor into (brand, storage, model_text).

    Brand is extracted first, then storage from what is left; the residual
    model text has punctuation collapsed to single spaces.
    """
    brand, after_brand = extract_brand(raw, rules)
    storage, after_storage = extract_storage(after_brand, rules)
    model_text = re.sub(r'[^\w\s]', ' ', after_storage)
    model_text = re.sub(r'\s+', ' ', model_text).strip()
    return brand, storage, model_text


# ---------------------------------------------------------------------------
# Result builders (confidence policy)
# ---------------------------------------------------------------------------

def manual_selection_result(device_name: Optional[str] = None) -> MatchResult:
    """No usable match. device_name may carry a speculative candidate for review."""
    return MatchResult(
        device_name=device_name,
        match_confidence=CONFIDENCE_LOW,
        needs_manual_selection=True,
        method=METHOD_NONE,
    )


def resolved_result(device: LibraryDevice, confidence: str, method: str) -> MatchResult:
    if confidence == CONFIDENCE_LOW:
        # low confidence never resolves on its own
        return manual_selection_result(device.display_name)
    return MatchResult(
        device_id=device.id,
        device_name=device.display_name,
        storage=device.storage,
        match_confidence=confidence,
        method=method,
    )


def storage_selection_result(
    candidates: Sequence[LibraryDevice], confidence: str, method: str
) -> MatchResult:
    return MatchResult(
        device_name=candidates[0].model_name,
        match_confidence=confidence,
        storage_options=sorted_storage_options(candidates),
        needs_storage_selection=True,
        method=method,
    )


# ---------------------------------------------------------------------------
# Structured matching (make / model / storage)
# ---------------------------------------------------------------------------

def _same_model(a: LibraryDevice, b: LibraryDevice) -> bool:
    return (a.make.strip().lower() == b.make.strip().lower()
            and a.model.strip().lower() == b.model.strip().lower())


def _resolve_candidates(
    candidates: List[LibraryDevice],
    model_text: str,
    storage: Optional[str],
    single_confidence: str,
    method: str,
) -> MatchResult:
    """
    Pick a result out of several make-level candidates.

    Candidates whose model equals the input model come first; otherwise
    library order is kept. Only variants of the leading model are considered
    after that: a supplied storage that didn't match exactly is compared by
    substring before falling back to storage disambiguation. Another model
    that happens to carry the wanted storage is never picked.
    """
    if len(candidates) == 1:
        return resolved_result(candidates[0], single_confidence, method)

    ordered = sorted(candidates, key=lambda d: d.model.strip().lower() != model_text)
    lead = ordered[0]
    variants = [d for d in ordered if _same_model(d, lead)]

    if storage:
        wanted = _squash_storage(storage)
        for d in variants:
            have = _squash_storage(d.storage)
            if have and (wanted in have or have in wanted):
                return resolved_result(d, single_confidence, METHOD_STORAGE_CLOSEST)

    if len(sorted_storage_options(variants)) > 1:
        return storage_selection_result(variants, CONFIDENCE_MEDIUM, method)

    # Only one storage for the leading model: ambiguous but resolvable.
    return resolved_result(lead, CONFIDENCE_MEDIUM, method)


def match_to_library(
    make: Optional[str],
    model: Optional[str],
    storage: Optional[str],
    devices: Sequence[LibraryDevice],
    token_threshold: float = FUZZY_TOKEN_THRESHOLD,
) -> MatchResult:
    """
    Resolve structured fields against the device library.

    Strategies, first success wins:
        1. Exact: make, model and storage all equal (case-insensitive;
           storage ignores internal whitespace) -> high
        2. Model-level: same make, device model equals / contains / is
           contained by the input model -> high when unique, storage
           disambiguation when several variants remain
        3. Fuzzy token: same make, device model contains >= token_threshold
           of the input model tokens -> medium

    A missing make or model short-circuits to manual selection without
    looking at the library.
    """
    if not make or not model or not make.strip() or not model.strip():
        return manual_selection_result()

    normalized_make = make.strip().lower()
    normalized_model = model.strip().lower()
    same_make = [d for d in devices if d.make.strip().lower() == normalized_make]

    # Strategy 1: exact
    if storage and storage.strip():
        normalized_storage = _squash_storage(storage)
        for d in same_make:
            if (d.model.strip().lower() == normalized_model
                    and _squash_storage(d.storage) == normalized_storage):
                return resolved_result(d, CONFIDENCE_HIGH, METHOD_EXACT)

    # Strategy 2: model-level containment
    model_matches = []
    for d in same_make:
        d_model = d.model.strip().lower()
        if not d_model:
            continue
        if (d_model == normalized_model
                or normalized_model in d_model
                or d_model in normalized_model):
            model_matches.append(d)

    if model_matches:
        return _resolve_candidates(
            model_matches, normalized_model, storage, CONFIDENCE_HIGH, METHOD_MODEL
        )

    # Strategy 3: fuzzy model tokens
    model_tokens = [t for t in re.split(r'[\s\-]+', normalized_model) if t]
    if not model_tokens:
        return manual_selection_result()

    fuzzy_matches = []
    for d in same_make:
        d_model = d.model.lower()
        hits = sum(1 for t in model_tokens if t in d_model)
        if hits / len(model_tokens) >= token_threshold:
            fuzzy_matches.append(d)

    if not fuzzy_matches:
        return manual_selection_result()

    return _resolve_candidates(
        fuzzy_matches, normalized_model, storage, CONFIDENCE_MEDIUM, METHOD_FUZZY_TOKEN
    )


# ---------------------------------------------------------------------------
# Free-text matching (no brand recognized)
# ---------------------------------------------------------------------------

def _tokens(text: str) -> List[str]:
    """Distinct normalized tokens, first-seen order."""
    return list(dict.fromkeys(normalize_text(text).split()))


def token_overlap_score(input_tokens: Sequence[str], device: LibraryDevice) -> float:
    """
    Share of input tokens present in the device's "make model storage" tokens.

    Adding tokens the device doesn't have can only lower the score.
    """
    if not input_tokens:
        return 0.0
    device_tokens = set(normalize_text(device.display_name).split())
    hits = sum(1 for t in input_tokens if t in device_tokens)
    return hits / len(input_tokens)


def match_free_text(
    raw: str,
    devices: Sequence[LibraryDevice],
    min_score: float = FREE_TEXT_MIN_SCORE,
    medium_score: float = FREE_TEXT_MEDIUM_SCORE,
) -> MatchResult:
    """
    Score every device against the whole normalized input.

    An exact whole-string match on "make model storage" or "model storage"
    wins outright (high). Otherwise devices scoring below min_score are
    dropped and the best score decides: medium at >= medium_score, low
    (manual selection, candidate kept as device_name) below it.
    """
    normalized = normalize_text(raw or '')
    if not normalized:
        return manual_selection_result()

    for d in devices:
        if (normalized == normalize_text(d.display_name)
                or normalized == normalize_text(f"{d.model} {d.storage}")):
            return resolved_result(d, CONFIDENCE_HIGH, METHOD_FREE_TEXT_EXACT)

    input_tokens = _tokens(normalized)
    scored = []
    for d in devices:
        score = token_overlap_score(input_tokens, d)
        if score >= min_score:
            scored.append((score, d))

    if not scored:
        return manual_selection_result()

    top_score = max(score for score, _ in scored)
    top = [d for score, d in scored if score == top_score]
    confidence = CONFIDENCE_MEDIUM if top_score >= medium_score else CONFIDENCE_LOW

    if len(top) > 1 and all(_same_model(d, top[0]) for d in top):
        if len(sorted_storage_options(top)) > 1:
            return storage_selection_result(top, confidence, METHOD_FREE_TEXT_TOKEN)

    return resolved_result(top[0], confidence, METHOD_FREE_TEXT_TOKEN)


# ---------------------------------------------------------------------------
# Review helpers
# ---------------------------------------------------------------------------

def suggest_candidates(
    query: str, devices: Sequence[LibraryDevice], limit: int = 3
) -> List[Dict[str, object]]:
    """
    Top-N closest devices for a human reviewer, by rapidfuzz token_sort_ratio.

    Token-sort is order-independent, so "64GB iPhone 11" and
    "Apple iPhone 11 64GB" still score close together.
    """
    normalized = normalize_text(query or '')
    if not normalized or not devices or limit <= 0:
        return []
    choices = [normalize_text(d.display_name) for d in devices]
    top = process.extract(normalized, choices, scorer=fuzz.token_sort_ratio, limit=limit)
    return [
        {
            'device_id': devices[idx].id,
            'device_name': devices[idx].display_name,
            'score': round(score, 2),
        }
        for _, score, idx in top
    ]


def filter_devices(
    devices: Iterable[LibraryDevice], category: Optional[str] = None
) -> List[LibraryDevice]:
    """Active devices, optionally restricted to one category."""
    selected = [d for d in devices if d.active]
    if category:
        selected = [d for d in selected if d.category == category]
    return selected


def find_duplicate_devices(devices: Iterable[LibraryDevice]) -> Dict[str, List[LibraryDevice]]:
    """
    Group active devices sharing make|model|storage|category.

    Only groups with more than one device are returned; any such group makes
    resolution within that category ambiguous.
    """
    groups: Dict[str, List[LibraryDevice]] = defaultdict(list)
    for d in devices:
        if not d.active:
            continue
        key = '|'.join(
            part.strip().lower() for part in (d.make, d.model, d.storage, d.category)
        )
        groups[key].append(d)
    return {key: group for key, group in groups.items() if len(group) > 1}
