"""
Adjustment of a stored analysis after the user corrects portion sizes.

Scales the stored per-serving nutrition (the stored values are authoritative;
per-100g data is not consulted) and recomputes totals. The original detected
items are never touched; the result is a separate snapshot.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from diettrack.errors import NoValidItemsError
from diettrack.models import (
    AddOnIngredient,
    AdjustedResult,
    AnalysisRecord,
    DetectedItem,
    ItemEdit,
)
from diettrack.services.portions import make_portion, per_100g_from_serving, scale_nutrition
from diettrack.services.totals import aggregate, resolve_add_ons

logger = logging.getLogger(__name__)

DEFAULT_OLD_GRAMS = 100.0


class AdjustmentResolver:
    """Pure: stored record + edits -> AdjustedResult."""

    def adjust_item(self, item: DetectedItem, new_grams: float) -> DetectedItem:
        old_grams = item.grams or DEFAULT_OLD_GRAMS
        factor = new_grams / max(old_grams, 1)

        nutrition = scale_nutrition(item.nutrition, factor)
        return item.model_copy(update={
            "nutrition": nutrition,
            "nutrition_per_100g": per_100g_from_serving(nutrition, new_grams),
            "portion": make_portion(new_grams),
        })

    def adjust(
        self,
        record: AnalysisRecord,
        edits: list[ItemEdit],
        add_ons: Optional[list[AddOnIngredient]] = None,
        adjusted_by: Optional[str] = None,
    ) -> AdjustedResult:
        known_ids = {item.item_id for item in record.detected_items if item.item_id is not None}

        # Last edit for an id wins
        applied: dict[int, float] = {}
        ignored: list[int] = []
        for edit in edits:
            if edit.item_id in known_ids:
                applied[edit.item_id] = edit.new_grams
            elif edit.item_id not in ignored:
                ignored.append(edit.item_id)

        if edits and not applied:
            raise NoValidItemsError(
                "None of the edited items exist in this analysis",
                details={"ignored_item_ids": ignored},
            )
        if not edits and add_ons is None:
            raise NoValidItemsError("Nothing to adjust: provide item edits or add-ons")

        items = [
            self.adjust_item(item, applied[item.item_id]) if item.item_id in applied else item
            for item in record.detected_items
        ]

        # A supplied list, even an empty one, replaces the stored add-ons
        resolved_add_ons = resolve_add_ons(add_ons) if add_ons is not None else list(record.add_ons)

        if ignored:
            logger.info(f"Adjustment of {record.id} ignored unknown item ids {ignored}")

        return AdjustedResult(
            analysis_id=record.id,
            items=items,
            add_ons=resolved_add_ons,
            nutrition_summary=aggregate(items, resolved_add_ons),
            ignored_item_ids=ignored,
            adjusted_by=adjusted_by,
            adjusted_at=datetime.now(timezone.utc),
        )
