"""Analysis request/record models and the provider payload schema."""

from __future__ import annotations

import math
from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from .nutrition import (
    AddOnIngredient,
    DetectedItem,
    NutritionSummary,
    ResolvedAddOn,
)


def _number_or_none(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


# =============================================================================
# AI provider output
# =============================================================================


class RawPortion(BaseModel):
    model_config = ConfigDict(extra="ignore")

    estimated_grams: Optional[float] = Field(
        None, validation_alias=AliasChoices("estimated_grams", "estimatedGrams")
    )

    @field_validator("estimated_grams", mode="before")
    @classmethod
    def _lenient(cls, value: Any) -> Optional[float]:
        return _number_or_none(value)


class RawDetectedItem(BaseModel):
    """One item as a vision model returned it. Lenient on purpose."""

    model_config = ConfigDict(extra="ignore")

    item_id: Optional[int] = Field(None, validation_alias=AliasChoices("item_id", "itemId", "id"))
    name: Optional[str] = Field(None, validation_alias=AliasChoices("name", "label"))
    confidence: Optional[float] = Field(None, validation_alias=AliasChoices("confidence", "score"))
    portion_g: Optional[float] = Field(None, validation_alias=AliasChoices("portion_g", "grams"))
    portion: Optional[RawPortion] = Field(
        None, validation_alias=AliasChoices("portion", "portion_size", "portionSize")
    )
    calories: Optional[float] = None
    protein: Optional[float] = None
    carbs: Optional[float] = None
    fat: Optional[float] = None
    fiber: Optional[float] = None
    sugar: Optional[float] = None
    sodium: Optional[float] = None
    cholesterol: Optional[float] = None
    ingredients: list[str] = Field(default_factory=list)
    cooking_method: Optional[str] = Field(
        None, validation_alias=AliasChoices("cooking_method", "cookingMethod")
    )

    @field_validator("item_id", mode="before")
    @classmethod
    def _int_or_none(cls, value: Any) -> Optional[int]:
        number = _number_or_none(value)
        if number is None or number <= 0 or number != int(number):
            return None
        return int(number)

    @field_validator(
        "confidence", "portion_g", "calories", "protein", "carbs", "fat",
        "fiber", "sugar", "sodium", "cholesterol",
        mode="before",
    )
    @classmethod
    def _lenient_number(cls, value: Any) -> Optional[float]:
        return _number_or_none(value)

    @field_validator("ingredients", mode="before")
    @classmethod
    def _ingredient_names(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        names = []
        for entry in value:
            if isinstance(entry, dict):
                entry = entry.get("name")
            if entry:
                names.append(str(entry))
        return names

    @property
    def grams(self) -> Optional[float]:
        if self.portion_g and self.portion_g > 0:
            return self.portion_g
        if self.portion and self.portion.estimated_grams and self.portion.estimated_grams > 0:
            return self.portion.estimated_grams
        return None


class RawDetectionPayload(BaseModel):
    """Top-level JSON from a vision model (both historical shapes)."""

    model_config = ConfigDict(extra="ignore")

    detected_items: list[dict] = Field(
        default_factory=list, validation_alias=AliasChoices("detected_items", "detectedItems", "items")
    )
    overall_confidence: Optional[float] = Field(
        None, validation_alias=AliasChoices("overall_confidence", "overallConfidence")
    )

    @field_validator("detected_items", mode="before")
    @classmethod
    def _dicts_only(cls, value: Any) -> list[dict]:
        if not isinstance(value, list):
            return []
        return [v for v in value if isinstance(v, dict)]

    @field_validator("overall_confidence", mode="before")
    @classmethod
    def _lenient(cls, value: Any) -> Optional[float]:
        return _number_or_none(value)


class DetectionResult(BaseModel):
    """Output of one detection provider (or of the combiner)."""

    provider: str
    items: list[DetectedItem] = Field(default_factory=list)
    confidence: float = Field(0.5, ge=0, le=1)
    processing_time_ms: float = 0


# =============================================================================
# Analyze
# =============================================================================


class ReferenceObject(str, Enum):
    KATORI = "katori"
    PLATE = "plate"
    COIN_10_RUPEE = "coin_10_rupee"
    SPOON_STEEL = "spoon_steel"
    PHONE = "phone"
    BOWL = "bowl"
    HAND = "hand"


class UserContext(BaseModel):
    model_config = ConfigDict(extra="allow")

    prompt: Optional[str] = None
    location: Optional[str] = None


class AnalyzeRequest(BaseModel):
    """Photo (data URL) and/or free-text description of a meal."""

    model_config = ConfigDict(populate_by_name=True)

    image: Optional[str] = None
    prompt: Optional[str] = None
    user_context: Optional[UserContext] = Field(
        None, validation_alias=AliasChoices("user_context", "userContext")
    )
    reference_object: Optional[ReferenceObject] = Field(
        None, validation_alias=AliasChoices("reference_object", "referenceObject")
    )
    user_id: Optional[str] = Field(None, validation_alias=AliasChoices("user_id", "userId"))
    add_ons: list[AddOnIngredient] = Field(
        default_factory=list,
        validation_alias=AliasChoices("add_ons", "addOns", "ingredient_add_ons", "ingredientAddOns"),
    )

    @field_validator("user_id", mode="before")
    @classmethod
    def _blank_user(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    @property
    def prompt_text(self) -> str:
        context_prompt = self.user_context.prompt if self.user_context else None
        return str(context_prompt or self.prompt or "").strip()

    @property
    def has_image(self) -> bool:
        return bool(self.image and self.image.strip())


class AnalysisRecord(BaseModel):
    """A persisted analysis (meal log). Detected items are never rewritten."""

    id: Optional[str] = None  # assigned by the store on insert
    user_id: Optional[str] = None
    source: Literal["photo", "text"] = "text"
    detected_items: list[DetectedItem] = Field(default_factory=list)
    add_ons: list[ResolvedAddOn] = Field(default_factory=list)
    nutrition_summary: NutritionSummary = Field(default_factory=NutritionSummary)
    summary_text: Optional[str] = None
    logged_at: Optional[datetime] = None

    adjusted_items: Optional[list[DetectedItem]] = None
    adjusted_add_ons: Optional[list[ResolvedAddOn]] = None
    adjusted_summary: Optional[NutritionSummary] = None
    adjusted: bool = False
    adjusted_by: Optional[str] = None
    adjusted_at: Optional[datetime] = None


class AnalysisHistory(BaseModel):
    items: list[AnalysisRecord]
    limit: int
    offset: int
    has_more: bool


# =============================================================================
# Adjust
# =============================================================================

# Where a client may put the new gram value, first match wins.
EDIT_GRAMS_PATHS: tuple[tuple[str, ...], ...] = (
    ("new_grams",),
    ("newGrams",),
    ("grams",),
    ("portion", "estimated_grams"),
    ("portion_size", "estimated_grams"),
    ("portionSize", "estimatedGrams"),
)


class ItemEdit(BaseModel):
    """User correction of one item's portion."""

    model_config = ConfigDict(populate_by_name=True)

    item_id: int = Field(..., validation_alias=AliasChoices("item_id", "itemId"))
    new_grams: float = Field(..., gt=0)

    @model_validator(mode="before")
    @classmethod
    def _pick_grams(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "new_grams" in data:
            return data
        for path in EDIT_GRAMS_PATHS:
            node: Any = data
            for key in path:
                node = node.get(key) if isinstance(node, dict) else None
            if node is not None:
                return {**data, "new_grams": node}
        return data

    @field_validator("new_grams")
    @classmethod
    def _finite(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("grams must be a finite number")
        return value


class AdjustRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    items: list[ItemEdit] = Field(
        default_factory=list,
        validation_alias=AliasChoices("items", "edits", "adjusted_items", "adjustedItems"),
    )
    # None keeps the stored add-ons; an empty list clears them
    add_ons: Optional[list[AddOnIngredient]] = Field(
        None,
        validation_alias=AliasChoices("add_ons", "addOns", "ingredient_add_ons", "ingredientAddOns"),
    )
    user_id: Optional[str] = Field(None, validation_alias=AliasChoices("user_id", "userId"))


class AdjustedResult(BaseModel):
    analysis_id: str
    items: list[DetectedItem]
    add_ons: list[ResolvedAddOn] = Field(default_factory=list)
    nutrition_summary: NutritionSummary
    ignored_item_ids: list[int] = Field(default_factory=list)
    adjusted_by: Optional[str] = None
    adjusted_at: datetime
