"""Meal totals and add-on ingredient resolution."""

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from diettrack.models import AddOnIngredient, DetectedItem, NutritionSummary, ResolvedAddOn
from diettrack.models.nutrition import non_negative, round1, round_half_up

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AddOnPreset:
    """Macros per gram for a common cooking add-on."""

    name: str
    matches: Callable[[str], bool]
    calories_per_g: float
    protein_per_g: float
    carbs_per_g: float
    fat_per_g: float


ADD_ON_PRESETS: tuple[AddOnPreset, ...] = (
    AddOnPreset("fat", lambda s: "ghee" in s or "oil" in s, 9, 0, 0, 1),
    AddOnPreset("butter", lambda s: "butter" in s, 7.2, 0.01, 0.01, 0.8),
    AddOnPreset("cheese", lambda s: "cheese" in s or "paneer" in s, 4.0, 0.25, 0.02, 0.33),
)


def find_preset(name: str) -> Optional[AddOnPreset]:
    key = (name or "").lower()
    for preset in ADD_ON_PRESETS:
        if preset.matches(key):
            return preset
    return None


def resolve_add_on(raw: AddOnIngredient) -> Optional[ResolvedAddOn]:
    """Explicit macros win; otherwise infer from a preset by grams. None if empty."""
    name = (raw.name or "").strip()
    if not name:
        return None

    grams = non_negative(raw.grams)
    unit = raw.unit.strip() if raw.unit and raw.unit.strip() else None

    calories = round_half_up(non_negative(raw.calories))
    protein = round1(non_negative(raw.protein))
    carbs = round1(non_negative(raw.carbs))
    fat = round1(non_negative(raw.fat))

    if not any((calories, protein, carbs, fat)) and grams:
        preset = find_preset(name)
        if preset:
            calories = round_half_up(preset.calories_per_g * grams)
            protein = round1(preset.protein_per_g * grams)
            carbs = round1(preset.carbs_per_g * grams)
            fat = round1(preset.fat_per_g * grams)

    if not any((calories, protein, carbs, fat)):
        logger.debug(f"Dropping add-on '{name}' with no macros")
        return None

    return ResolvedAddOn(
        name=name,
        grams=grams or None,
        unit=unit,
        calories=calories,
        protein=protein,
        carbs=carbs,
        fat=fat,
    )


def resolve_add_ons(raw: Iterable[AddOnIngredient]) -> list[ResolvedAddOn]:
    resolved = []
    for entry in raw or []:
        add_on = resolve_add_on(entry)
        if add_on is not None:
            resolved.append(add_on)
    return resolved


def aggregate(items: list[DetectedItem], add_ons: list[ResolvedAddOn]) -> NutritionSummary:
    """
    Sum item nutrition and add-ons.

    Calories are an integer running sum. Protein, carbs and fat are rounded
    to one decimal after every addition, not only at the end.
    """
    calories = 0
    protein = carbs = fat = 0.0

    rows = [item.nutrition for item in items] + list(add_ons)
    for row in rows:
        calories += round_half_up(non_negative(row.calories))
        protein = round1(protein + non_negative(row.protein))
        carbs = round1(carbs + non_negative(row.carbs))
        fat = round1(fat + non_negative(row.fat))

    return NutritionSummary(
        total_calories=calories,
        total_protein=protein,
        total_carbs=carbs,
        total_fat=fat,
    )
