"""
Brand-alias table and storage pattern used by the token extractor.

The rules are plain data so they can be loaded from a JSON file and extended
without code changes:

    {
        "brands": [
            ["Apple", ["apple", "iphone", "iph", "ip"]],
            ["Samsung", ["samsung", "galaxy", "sam", "sm"]]
        ],
        "storage_pattern": "(?<!\\d)(\\d+)\\s*(gb|tb|g|t)\\b"
    }

Order matters: when several aliases could match, the first brand in the list
wins, and within a brand the first alias wins.
"""

import json
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional, Pattern, Tuple

from settings import ConfigurationError

# Digits followed by a unit. Bare G/T forms are only accepted for known
# capacities (see matcher.extract_storage), so "5G" is never storage.
DEFAULT_STORAGE_PATTERN = r'(?<!\d)(\d+)\s*(gb|tb|g|t)\b'

DEFAULT_BRAND_ALIASES: List[Tuple[str, List[str]]] = [
    ("Apple", ["apple", "iphone", "iph", "ip"]),
    ("Samsung", ["samsung", "galaxy", "sam", "sm"]),
    ("Google", ["google", "pixel"]),
    ("OPPO", ["oppo"]),
    ("Xiaomi", ["xiaomi", "redmi", "poco"]),
    ("Huawei", ["huawei", "honor"]),
    ("OnePlus", ["oneplus", "one plus"]),
    ("Motorola", ["motorola", "moto"]),
    ("Nokia", ["nokia"]),
    ("Sony", ["sony", "xperia"]),
    ("Vivo", ["vivo"]),
    ("Realme", ["realme"]),
]


@dataclass(frozen=True)
class BrandRules:
    brands: Tuple[Tuple[str, Tuple[str, ...]], ...]
    storage_pattern: str = DEFAULT_STORAGE_PATTERN
    _compiled: Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        try:
            compiled = re.compile(self.storage_pattern, re.IGNORECASE)
        except re.error as exc:
            raise ConfigurationError(f"invalid storage_pattern: {exc}") from exc
        if compiled.groups < 2:
            raise ConfigurationError(
                "storage_pattern needs two groups: (number)(unit)"
            )
        object.__setattr__(self, "_compiled", compiled)

    @property
    def storage_regex(self) -> Pattern:
        return self._compiled

    def canonical_brands(self) -> List[str]:
        return [brand for brand, _ in self.brands]


def build_brand_rules(
    brands: List[Tuple[str, List[str]]],
    storage_pattern: Optional[str] = None,
) -> BrandRules:
    """
    Validate and freeze a (canonical_brand, [aliases]) list.

    Aliases are lowercased and stripped; empty aliases and brands without any
    alias are rejected.
    """
    frozen = []
    for entry in brands:
        if not isinstance(entry, (list, tuple)) or len(entry) != 2:
            raise ConfigurationError(f"brand entry must be [brand, [aliases]], got {entry!r}")
        brand, aliases = entry
        if not isinstance(brand, str) or not brand.strip():
            raise ConfigurationError(f"brand name must be a non-empty string, got {brand!r}")
        if isinstance(aliases, str) or not isinstance(aliases, (list, tuple)):
            raise ConfigurationError(f"aliases for {brand} must be a list")
        cleaned = []
        for alias in aliases:
            if not isinstance(alias, str) or not alias.strip():
                raise ConfigurationError(f"empty alias for brand {brand}")
            cleaned.append(alias.strip().lower())
        if not cleaned:
            raise ConfigurationError(f"brand {brand} has no aliases")
        frozen.append((brand.strip(), tuple(cleaned)))

    return BrandRules(
        brands=tuple(frozen),
        storage_pattern=storage_pattern or DEFAULT_STORAGE_PATTERN,
    )


@lru_cache(maxsize=1)
def default_brand_rules() -> BrandRules:
    return build_brand_rules(DEFAULT_BRAND_ALIASES)


def load_brand_rules(path: Optional[str] = None) -> BrandRules:
    """Load rules from a JSON file, or the built-in table when path is None."""
    if not path:
        return default_brand_rules()

    with open(path, "r", encoding="utf-8") as f:
        try:
            raw = json.load(f)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"brand rules file {path} is not valid JSON: {exc}") from exc

    if not isinstance(raw, dict) or "brands" not in raw:
        raise ConfigurationError(f"brand rules file {path} must contain a 'brands' list")
    return build_brand_rules(raw["brands"], raw.get("storage_pattern"))
