"""
Device resolver: the engine callers talk to.

Wires the library cache, the alias store and the brand rules around the pure
matching functions in matcher.py:

    match_device_string(raw)
        1. alias store (exact, case-insensitive)        -> high, done
        2. brand + storage extraction -> match_to_library
        3. free-text token overlap over the whole input

    match_to_library(make, model, storage)
        exact -> model-level -> fuzzy token

Backing-store errors (library reload, alias read/write) are not caught here;
they reach the caller, which logs them and reports a generic failure.
"""

from typing import List, Optional

from alias_store import AliasStore, MemoryAliasStore, ParquetAliasStore
from brand_rules import BrandRules, load_brand_rules
from library_cache import DeviceLibraryCache
from log_setup import get_logger, setup_logging
from matcher import (
    filter_devices,
    manual_selection_result,
    match_free_text,
    match_to_library,
    parse_device_string,
    suggest_candidates,
)
from models import CONFIDENCE_HIGH, METHOD_ALIAS, LibraryDevice, MatchResult
from settings import ConfigurationError, ResolverSettings, get_settings

logger = get_logger("resolver")


class DeviceResolver:
    """Resolves raw or structured device descriptors to library devices."""

    def __init__(
        self,
        library: DeviceLibraryCache,
        aliases: AliasStore,
        rules: Optional[BrandRules] = None,
        settings: Optional[ResolverSettings] = None,
    ):
        self.library = library
        self.aliases = aliases
        self.settings = settings or ResolverSettings()
        self.rules = rules or load_brand_rules(self.settings.brand_rules_path)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def match_to_library(
        self,
        make: Optional[str],
        model: Optional[str],
        storage: Optional[str] = None,
        category: Optional[str] = None,
    ) -> MatchResult:
        """Structured match, used by IMEI lookup (carrier make/model/storage)."""
        if not make or not model or not make.strip() or not model.strip():
            return manual_selection_result()

        devices = self._devices(category)
        result = match_to_library(
            make, model, storage, devices,
            token_threshold=self.settings.structured_token_threshold,
        )
        return self._with_suggestions(result, f"{make} {model} {storage or ''}", devices)

    def match_device_string(self, raw_input: Optional[str], category: Optional[str] = None) -> MatchResult:
        """Free-text match, used per row by manifest / bulk import."""
        text = (raw_input or '').strip()
        if not text:
            return manual_selection_result()

        alias = self.aliases.lookup_alias(text)
        if alias is not None and alias.device_id:
            result = self._alias_result(alias.device_id)
            if result is not None:
                logger.debug("Alias hit for '%s' -> %s", text, alias.device_id)
                return result

        devices = self._devices(category)

        brand, storage, model_text = parse_device_string(text, self.rules)
        if brand and model_text:
            result = match_to_library(
                brand, model_text, storage, devices,
                token_threshold=self.settings.structured_token_threshold,
            )
            if result.device_id or result.needs_storage_selection:
                self._remember(text, result)
                return result

        result = match_free_text(
            text, devices,
            min_score=self.settings.free_text_min_score,
            medium_score=self.settings.free_text_medium_score,
        )
        self._remember(text, result)
        return self._with_suggestions(result, text, devices)

    def save_alias(self, alias: str, device_id: str, created_by: str = "auto") -> None:
        """Confirm a resolution so the same literal input resolves immediately next time."""
        self.aliases.save_alias(alias, device_id, created_by)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _devices(self, category: Optional[str]) -> List[LibraryDevice]:
        return filter_devices(self.library.get(), category)

    def _alias_result(self, device_id: str) -> Optional[MatchResult]:
        """
        Build the result for an aliased device.

        The device's active flag is not re-checked: an alias pointing at a
        since-deactivated device still resolves. Aliases pointing at ids no
        longer in the library are ignored.
        """
        for d in self.library.get():
            if d.id == device_id:
                return MatchResult(
                    device_id=d.id,
                    device_name=d.display_name,
                    storage=d.storage,
                    match_confidence=CONFIDENCE_HIGH,
                    method=METHOD_ALIAS,
                )
        logger.debug("Alias points at unknown device %s, ignoring", device_id)
        return None

    def _remember(self, text: str, result: MatchResult) -> None:
        if (self.settings.auto_save_aliases
                and result.device_id
                and result.match_confidence == CONFIDENCE_HIGH):
            self.aliases.save_alias(text, result.device_id, "auto")

    def _with_suggestions(
        self, result: MatchResult, query: str, devices: List[LibraryDevice]
    ) -> MatchResult:
        if result.needs_manual_selection and self.settings.suggestion_limit:
            logger.debug("No confident match for '%s'", query.strip())
            if devices:
                result.suggestions = suggest_candidates(
                    query, devices, limit=self.settings.suggestion_limit
                )
        return result


def build_resolver(settings: Optional[ResolverSettings] = None) -> DeviceResolver:
    """
    Resolver wired from settings: parquet/CSV/Excel library file, parquet
    alias file (in-memory when no alias_path is set). Also applies the
    configured log level and format.
    """
    settings = settings or get_settings()
    setup_logging(settings.log_level, settings.log_format)
    if not settings.library_path:
        raise ConfigurationError("library_path is not configured")

    library = DeviceLibraryCache.from_file(
        settings.library_path, ttl_seconds=settings.cache_ttl_seconds
    )
    if settings.alias_path:
        aliases: AliasStore = ParquetAliasStore(settings.alias_path)
    else:
        aliases = MemoryAliasStore()
    return DeviceResolver(library, aliases, settings=settings)
