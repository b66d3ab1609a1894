"""Nutrition-related Pydantic models and the rounding rules they enforce."""

from __future__ import annotations

import math
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

WHOLE_FIELDS = ("calories", "sodium", "cholesterol")
DECIMAL_FIELDS = ("protein", "carbs", "fat", "fiber", "sugar")
NUTRIENT_FIELDS = WHOLE_FIELDS + DECIMAL_FIELDS


def round_half_up(value: float) -> int:
    """Round to the nearest integer, .5 going up (not banker's rounding)."""
    return int(math.floor(value + 0.5))


def round1(value: float) -> float:
    """Round to one decimal place, .05 going up."""
    return math.floor(value * 10 + 0.5) / 10


def non_negative(value: Any) -> float:
    """Coerce anything numeric-ish to a finite float >= 0 (else 0)."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number) or number < 0:
        return 0.0
    return number


class ServingSize(str, Enum):
    """Cosmetic portion bucket. Never feeds into macro math."""

    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


class NutritionFacts(BaseModel):
    """Per-serving (or per-100g) nutrition values.

    Calories, sodium and cholesterol are whole numbers; the other macros carry
    one decimal. Inputs are clamped and rounded on the way in, so every
    instance satisfies the wire contract.
    """

    calories: int = Field(0, ge=0)
    protein: float = Field(0, ge=0)
    carbs: float = Field(0, ge=0)
    fat: float = Field(0, ge=0)
    fiber: float = Field(0, ge=0)
    sugar: float = Field(0, ge=0)
    sodium: int = Field(0, ge=0)  # mg
    cholesterol: int = Field(0, ge=0)  # mg

    @field_validator(*WHOLE_FIELDS, mode="before")
    @classmethod
    def _whole(cls, value: Any) -> int:
        return round_half_up(non_negative(value))

    @field_validator(*DECIMAL_FIELDS, mode="before")
    @classmethod
    def _one_decimal(cls, value: Any) -> float:
        return round1(non_negative(value))

    def is_zero(self) -> bool:
        return all(getattr(self, f) == 0 for f in ("calories", "protein", "carbs", "fat"))


class MacroRates(BaseModel):
    """Per-100g reference values as stored. Not rounded."""

    calories: float = 0
    protein: float = 0
    carbs: float = 0
    fat: float = 0
    fiber: float = 0
    sugar: float = 0
    sodium: float = 0
    cholesterol: float = 0

    @field_validator(*NUTRIENT_FIELDS, mode="before")
    @classmethod
    def _clean(cls, value: Any) -> float:
        return non_negative(value)

    def snapshot(self) -> NutritionFacts:
        """Rounded copy for display."""
        return NutritionFacts(**self.model_dump())


class ConfidenceRange(BaseModel):
    min: int = Field(0, ge=0)
    max: int = Field(0, ge=0)


class Portion(BaseModel):
    """Estimated serving weight."""

    estimated_grams: float = Field(
        ..., gt=0, validation_alias=AliasChoices("estimated_grams", "estimatedGrams")
    )
    confidence_range: Optional[ConfidenceRange] = Field(
        None, validation_alias=AliasChoices("confidence_range", "confidenceRange")
    )
    size_category: Optional[ServingSize] = Field(
        None,
        validation_alias=AliasChoices("size_category", "servingSizeCategory", "serving_size_category"),
    )


class CompositionRef(BaseModel):
    """Which composition row enriched an item."""

    kind: Literal["ingredient", "recipe"]
    id: str
    source: Optional[str] = None
    confidence: float = 0
    applied_serving_label: Optional[str] = None


class DetectedItem(BaseModel):
    """A single food detected in a meal, with per-serving nutrition."""

    model_config = ConfigDict(populate_by_name=True)

    item_id: Optional[int] = Field(None, validation_alias=AliasChoices("item_id", "itemId"))
    name: str = ""
    confidence: float = Field(0.6, ge=0, le=1)
    nutrition: NutritionFacts = Field(default_factory=NutritionFacts)
    nutrition_per_100g: Optional[NutritionFacts] = Field(
        None, validation_alias=AliasChoices("nutrition_per_100g", "nutritionPer100g")
    )
    portion: Optional[Portion] = Field(
        None, validation_alias=AliasChoices("portion", "portion_size", "portionSize")
    )
    ingredients: list[str] = Field(default_factory=list)
    cooking_method: Optional[str] = Field(
        None, validation_alias=AliasChoices("cooking_method", "cookingMethod")
    )
    composition: Optional[CompositionRef] = Field(
        None, validation_alias=AliasChoices("composition", "db_match", "dbMatch")
    )

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return 0.6
        if not math.isfinite(number):
            return 0.6
        return max(0.0, min(1.0, number))

    @property
    def grams(self) -> Optional[float]:
        return self.portion.estimated_grams if self.portion else None


class CompositionMatch(BaseModel):
    """A nutrition reference row (ingredient or recipe) with per-100g macros."""

    kind: Literal["ingredient", "recipe"] = "ingredient"
    id: str
    name: str
    per_100g: MacroRates
    default_serving_grams: Optional[float] = None
    confidence: float = 0
    source: Optional[str] = None


class UserServingOverride(BaseModel):
    """Personal alias for a serving phrase, e.g. "1 bowl" -> 150 g."""

    user_id: str
    composition_id: str
    label: str
    grams: float


class AddOnIngredient(BaseModel):
    """Free-form extra ingredient as submitted by the user."""

    name: str = ""
    grams: Optional[float] = None
    unit: Optional[str] = None
    calories: Optional[float] = None
    protein: Optional[float] = None
    carbs: Optional[float] = None
    fat: Optional[float] = None


class ResolvedAddOn(BaseModel):
    """Add-on with final macros (explicit or inferred from presets)."""

    name: str
    grams: Optional[float] = None
    unit: Optional[str] = None
    calories: int = 0
    protein: float = 0
    carbs: float = 0
    fat: float = 0


class NutritionSummary(BaseModel):
    """Meal totals."""

    total_calories: int = 0
    total_protein: float = 0
    total_carbs: float = 0
    total_fat: float = 0
