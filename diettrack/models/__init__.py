"""Pydantic models for the diettrack API."""

from .nutrition import (
    NutritionFacts,
    MacroRates,
    ServingSize,
    ConfidenceRange,
    Portion,
    CompositionRef,
    DetectedItem,
    CompositionMatch,
    UserServingOverride,
    AddOnIngredient,
    ResolvedAddOn,
    NutritionSummary,
)
from .analysis import (
    RawDetectedItem,
    RawDetectionPayload,
    DetectionResult,
    AnalyzeRequest,
    AnalysisRecord,
    AnalysisHistory,
    ItemEdit,
    AdjustRequest,
    AdjustedResult,
)
from .feedback import (
    FeedbackRequest,
    FeedbackRecord,
)

__all__ = [
    # Nutrition
    "NutritionFacts",
    "MacroRates",
    "ServingSize",
    "ConfidenceRange",
    "Portion",
    "CompositionRef",
    "DetectedItem",
    "CompositionMatch",
    "UserServingOverride",
    "AddOnIngredient",
    "ResolvedAddOn",
    "NutritionSummary",
    # Analysis
    "RawDetectedItem",
    "RawDetectionPayload",
    "DetectionResult",
    "AnalyzeRequest",
    "AnalysisRecord",
    "AnalysisHistory",
    "ItemEdit",
    "AdjustRequest",
    "AdjustedResult",
    # Feedback
    "FeedbackRequest",
    "FeedbackRecord",
]
