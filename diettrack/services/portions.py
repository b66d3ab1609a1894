"""
Portion scaling: per-100g macros + grams -> per-serving macros.

Single source of truth for the serving math. Everything here is pure.

Rounding:
- calories, sodium, cholesterol -> nearest integer
- protein, carbs, fat, fiber, sugar -> nearest 0.1
(.5 always rounds up, see `round_half_up`.)
"""

from typing import Optional

from diettrack.models import ConfidenceRange, MacroRates, NutritionFacts, Portion, ServingSize
from diettrack.models.nutrition import NUTRIENT_FIELDS, round1, round_half_up

FALLBACK_GRAMS = 100.0

SMALL_BELOW_G = 80
LARGE_ABOVE_G = 200

RANGE_SPREAD = 0.15


def _positive(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def scale_nutrition(nutrition: NutritionFacts | MacroRates, factor: float) -> NutritionFacts:
    """Multiply every component by `factor`, re-applying the rounding rules."""
    # NutritionFacts validators do the per-field rounding
    return NutritionFacts(**{f: getattr(nutrition, f) * factor for f in NUTRIENT_FIELDS})


def scale(per_100g: MacroRates | NutritionFacts, grams: float) -> NutritionFacts:
    """Per-serving nutrition for `grams` of something with `per_100g` macros."""
    return scale_nutrition(per_100g, grams / 100)


def per_100g_from_serving(nutrition: NutritionFacts, grams: float) -> NutritionFacts:
    """Back out a per-100g snapshot from per-serving values."""
    if not grams or grams <= 0:
        return NutritionFacts()
    return scale_nutrition(nutrition, 100 / grams)


def resolve_grams(
    override_grams: Optional[float] = None,
    estimated_grams: Optional[float] = None,
    default_serving_grams: Optional[float] = None,
) -> float:
    """Pick serving grams: user override > AI/text estimate > match default > 100."""
    return (
        _positive(override_grams)
        or _positive(estimated_grams)
        or _positive(default_serving_grams)
        or FALLBACK_GRAMS
    )


def serving_category(grams: float) -> ServingSize:
    if grams < SMALL_BELOW_G:
        return ServingSize.SMALL
    if grams > LARGE_ABOVE_G:
        return ServingSize.LARGE
    return ServingSize.MEDIUM


def confidence_range(grams: float) -> ConfidenceRange:
    return ConfidenceRange(
        min=round_half_up(grams * (1 - RANGE_SPREAD)),
        max=round_half_up(grams * (1 + RANGE_SPREAD)),
    )


def make_portion(grams: float, existing_range: Optional[ConfidenceRange] = None) -> Portion:
    """Portion for `grams`, keeping a previously estimated range if given."""
    return Portion(
        estimated_grams=grams,
        confidence_range=existing_range or confidence_range(grams),
        size_category=serving_category(grams),
    )


__all__ = [
    "FALLBACK_GRAMS",
    "round1",
    "round_half_up",
    "scale",
    "scale_nutrition",
    "per_100g_from_serving",
    "resolve_grams",
    "serving_category",
    "confidence_range",
    "make_portion",
]
