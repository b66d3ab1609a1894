"""
Composition lookup chain.

Resolves a free-text food name to per-100g reference data by trying an
ordered list of strategies against the store:

1. Personal + global lookup (user aliases and recipes rank first)
2. Global ingredient-only lookup
3. Nothing -> None (caller passes the item through unresolved)

Results, including misses, are cached in-process for a short TTL.
"""

import logging
import time
from collections import OrderedDict
from typing import Callable, Optional, Protocol

from diettrack.models import CompositionMatch, UserServingOverride

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0
DEFAULT_MAX_ENTRIES = 2048

_MISSING = object()


def normalize_query(name: str) -> str:
    return (name or "").lower().strip()


class CompositionCache:
    """TTL cache of lookup results. `None` (a miss) is a cacheable value."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, Optional[CompositionMatch]]] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, key: str):
        """Return the cached value, or `_MISSING` if absent/expired."""
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return _MISSING
        stored_at, value = entry
        if self._clock() - stored_at >= self.ttl_seconds:
            del self._entries[key]
            self.misses += 1
            return _MISSING
        self.hits += 1
        return value

    def set(self, key: str, value: Optional[CompositionMatch]) -> None:
        self._entries[key] = (self._clock(), value)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> dict:
        return {
            "entries": len(self._entries),
            "max_entries": self.max_entries,
            "ttl_seconds": self.ttl_seconds,
            "hits": self.hits,
            "misses": self.misses,
        }


# =============================================================================
# Strategies
# =============================================================================


class LookupStrategy(Protocol):
    name: str

    async def try_resolve(self, query: str, user_id: Optional[str]) -> Optional[CompositionMatch]:
        ...


class PersonalLookup:
    """Personal aliases/recipes first, then global matches; takes the top row."""

    name = "personal_food_lookup"

    def __init__(self, store, max_results: int = 5):
        self.store = store
        self.max_results = max_results

    async def try_resolve(self, query: str, user_id: Optional[str]) -> Optional[CompositionMatch]:
        matches = await self.store.lookup_composition(query, user_id, self.max_results)
        return matches[0] if matches else None


class GlobalIngredientLookup:
    """Ingredient table only, no personal context."""

    name = "ingredient_lookup"

    def __init__(self, store):
        self.store = store

    async def try_resolve(self, query: str, user_id: Optional[str]) -> Optional[CompositionMatch]:
        matches = await self.store.lookup_ingredient(query, 1)
        return matches[0] if matches else None


class CompositionLookupChain:
    """Ordered strategies + cache. `resolve` never raises."""

    def __init__(
        self,
        store,
        cache: Optional[CompositionCache] = None,
        strategies: Optional[list[LookupStrategy]] = None,
    ):
        self.store = store
        self.cache = cache if cache is not None else CompositionCache()
        self.strategies: list[LookupStrategy] = (
            strategies if strategies is not None
            else [PersonalLookup(store), GlobalIngredientLookup(store)]
        )

    @staticmethod
    def cache_key(name: str, user_id: Optional[str]) -> str:
        # Personal matches must not leak across users
        return f"{user_id or ''}::{normalize_query(name)}"

    async def resolve(self, name: str, user_id: Optional[str] = None) -> Optional[CompositionMatch]:
        query = normalize_query(name)
        if not query:
            return None

        key = self.cache_key(query, user_id)
        cached = self.cache.get(key)
        if cached is not _MISSING:
            logger.debug(f"Composition cache hit for '{query}'")
            return cached

        match = None
        failed = False
        for strategy in self.strategies:
            try:
                match = await strategy.try_resolve(query, user_id)
            except Exception as e:
                logger.warning(f"{strategy.name} failed for '{query}': {e}")
                failed = True
                continue
            if match:
                logger.debug(f"Resolved '{query}' via {strategy.name} -> {match.name}")
                break

        if match is None:
            logger.debug(f"No composition match for '{query}'")
            if failed:
                # Only a clean miss is cached; a store error is retried next time
                return None

        self.cache.set(key, match)
        return match

    async def find_serving_override(
        self,
        match: CompositionMatch,
        query: str,
        user_id: Optional[str],
    ) -> Optional[UserServingOverride]:
        """First user serving whose label appears in the query (case-insensitive).

        "1 bowl rice" with an override labelled "1 bowl" -> that override.
        """
        if not user_id:
            return None
        try:
            overrides = await self.store.list_serving_overrides(user_id, match)
        except Exception as e:
            logger.warning(f"Serving override lookup failed for {match.id}: {e}")
            return None

        text = (query or "").lower()
        for override in overrides:
            label = override.label.lower().strip()
            if label and label in text:
                return override
        return None
