"""
Composition enrichment for detected items.

Recomputes each item's per-serving macros from the composition store,
honoring the user's labelled servings. Items that cannot be resolved, or
whose enrichment fails, pass through unchanged.
"""

import asyncio
import logging
from typing import Optional

from diettrack.models import CompositionRef, DetectedItem
from diettrack.services.composition import CompositionLookupChain
from diettrack.services.portions import make_portion, resolve_grams, scale

logger = logging.getLogger(__name__)

# Keep the item's own value when the reference row has none for these
SECONDARY_FIELDS = ("fiber", "sugar", "sodium", "cholesterol")


async def enrich_item(
    item: DetectedItem,
    chain: CompositionLookupChain,
    user_id: Optional[str] = None,
) -> DetectedItem:
    term = (item.name or "").strip()
    if not term:
        return item

    match = await chain.resolve(term, user_id)
    if match is None:
        return item

    override = await chain.find_serving_override(match, term, user_id)
    grams = resolve_grams(
        override.grams if override else None,
        item.grams,
        match.default_serving_grams,
    )

    nutrition = scale(match.per_100g, grams)
    kept = {
        field: getattr(item.nutrition, field)
        for field in SECONDARY_FIELDS
        if getattr(match.per_100g, field) == 0
    }
    if kept:
        nutrition = nutrition.model_copy(update=kept)

    snapshot = item.nutrition_per_100g
    if snapshot is None or snapshot.is_zero():
        snapshot = match.per_100g.snapshot()

    existing_range = None
    if item.portion and item.portion.estimated_grams == grams:
        existing_range = item.portion.confidence_range

    return item.model_copy(update={
        "name": match.name or item.name,
        "nutrition": nutrition,
        "nutrition_per_100g": snapshot,
        "portion": make_portion(grams, existing_range),
        "composition": CompositionRef(
            kind=match.kind,
            id=match.id,
            source=match.source,
            confidence=match.confidence,
            applied_serving_label=override.label if override else None,
        ),
    })


async def enrich_items(
    items: list[DetectedItem],
    chain: CompositionLookupChain,
    user_id: Optional[str] = None,
) -> list[DetectedItem]:
    """Enrich all items concurrently; output order matches input order."""
    if not items:
        return items

    results = await asyncio.gather(
        *(enrich_item(item, chain, user_id) for item in items),
        return_exceptions=True,
    )

    enriched = []
    resolved = 0
    for item, result in zip(items, results):
        if isinstance(result, BaseException):
            logger.warning(f"Enrichment failed for '{item.name}': {result}")
            enriched.append(item)
            continue
        if result.composition is not None and item.composition is None:
            resolved += 1
        enriched.append(result)

    logger.info(f"Enriched {resolved}/{len(items)} items from composition store")
    return enriched
