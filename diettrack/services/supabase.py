"""Supabase client service and the store the pipeline reads and writes."""

import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional

from postgrest.exceptions import APIError
from supabase import create_client, Client

from diettrack.config import get_settings
from diettrack.models import (
    AdjustedResult,
    AnalysisRecord,
    CompositionMatch,
    FeedbackRecord,
    MacroRates,
    UserServingOverride,
)

logger = logging.getLogger(__name__)


@lru_cache
def get_supabase_client() -> Client:
    """Get Supabase client with service role key (admin access)."""
    settings = get_settings()
    return create_client(
        settings.supabase_url,
        settings.supabase_service_role_key,
    )


TABLES = {
    "analyses": "meal_logs",
    "servings": "user_servings",
}

RPCS = {
    "personal_lookup": "personal_food_lookup",
    "ingredient_lookup": "ingredient_lookup",
}

# PostgreSQL error codes
UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"


# =============================================================================
# Errors
# =============================================================================


class StoreError(Exception):
    """A single store call failed."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code


class DuplicateRowError(StoreError):
    """Unique constraint rejected the write."""


class ForeignKeyError(StoreError):
    """Referenced row does not exist."""


class RecordNotFoundError(StoreError):
    """No row with the requested id."""


def translate_api_error(err: Exception) -> StoreError:
    """Map a PostgREST error onto the store error hierarchy."""
    code = str(getattr(err, "code", "") or "")
    message = str(getattr(err, "message", "") or err)
    details = str(getattr(err, "details", "") or "")
    text = f"{message} {details}".lower()

    if (
        code in (UNIQUE_VIOLATION, "409")
        or "duplicate key" in text
        or "unique constraint" in text
        or "already exists" in text
        or "conflict" in text
    ):
        return DuplicateRowError(message, code)
    if code == FOREIGN_KEY_VIOLATION:
        return ForeignKeyError(message, code)
    return StoreError(message, code or None)


# =============================================================================
# Row mapping
# =============================================================================


def _per_100g(row: dict) -> MacroRates:
    return MacroRates(
        calories=row.get("calories_per_100g"),
        protein=row.get("protein_per_100g"),
        carbs=row.get("carbs_per_100g"),
        fat=row.get("fat_per_100g"),
        fiber=row.get("fiber_per_100g"),
        sugar=row.get("sugar_per_100g"),
        sodium=row.get("sodium_per_100g"),
        cholesterol=row.get("cholesterol_per_100g"),
    )


def _positive(value) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def _confidence(value) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def row_to_match(row: dict) -> CompositionMatch:
    """Map a `personal_food_lookup` row."""
    return CompositionMatch(
        kind="recipe" if row.get("kind") == "recipe" else "ingredient",
        id=str(row.get("id")),
        name=str(row.get("name") or ""),
        per_100g=_per_100g(row),
        default_serving_grams=_positive(row.get("default_serving_g")),
        confidence=_confidence(row.get("confidence")),
        source=row.get("source"),
    )


def ingredient_row_to_match(row: dict) -> CompositionMatch:
    """Map an `ingredient_lookup` row (ingredients default to 100 g)."""
    return CompositionMatch(
        kind="ingredient",
        id=str(row.get("ingredient_id") or row.get("id")),
        name=str(row.get("name") or ""),
        per_100g=_per_100g(row),
        default_serving_grams=_positive(row.get("default_serving_g")) or 100,
        confidence=_confidence(row.get("confidence")),
        source=row.get("source"),
    )


def row_to_record(row: dict) -> AnalysisRecord:
    return AnalysisRecord(
        id=str(row["id"]),
        user_id=row.get("user_id"),
        source=row.get("source") or "text",
        detected_items=row.get("items") or [],
        add_ons=row.get("add_ons") or [],
        nutrition_summary=row.get("nutrition_total") or {},
        summary_text=row.get("summary"),
        logged_at=row.get("logged_at"),
        adjusted_items=row.get("adjusted_items"),
        adjusted_add_ons=row.get("adjusted_add_ons"),
        adjusted_summary=row.get("adjusted_summary"),
        adjusted=bool(row.get("adjusted")),
        adjusted_by=row.get("adjusted_by"),
        adjusted_at=row.get("adjusted_at"),
    )


def record_to_row(record: AnalysisRecord) -> dict:
    data = record.model_dump(mode="json")
    return {
        "user_id": data["user_id"],
        "source": data["source"],
        "items": data["detected_items"],
        "add_ons": data["add_ons"],
        "portion_scalar": 1.0,
        "nutrition_total": data["nutrition_summary"],
        "summary": data["summary_text"],
    }


# =============================================================================
# Store
# =============================================================================


class SupabaseStore:
    """All persistence and reference lookups used by the pipeline."""

    def __init__(self, client: Client):
        self.client = client

    # -------------------------------------------------------------------------
    # Composition lookups
    # -------------------------------------------------------------------------

    async def lookup_composition(
        self, query: str, user_id: Optional[str], max_results: int = 5
    ) -> list[CompositionMatch]:
        """Personal-aware lookup: user aliases/recipes rank above global rows."""
        try:
            result = self.client.rpc(
                RPCS["personal_lookup"],
                {"q": query, "p_user_id": user_id, "max_results": max_results},
            ).execute()
        except APIError as e:
            raise translate_api_error(e) from e
        return [row_to_match(r) for r in result.data or []]

    async def lookup_ingredient(self, query: str, max_results: int = 1) -> list[CompositionMatch]:
        """Global ingredient-only lookup."""
        try:
            result = self.client.rpc(
                RPCS["ingredient_lookup"],
                {"q": query, "max_results": max_results},
            ).execute()
        except APIError as e:
            raise translate_api_error(e) from e
        return [ingredient_row_to_match(r) for r in result.data or []]

    async def list_serving_overrides(
        self, user_id: str, composition: CompositionMatch
    ) -> list[UserServingOverride]:
        """User's labelled servings for a composition, largest first."""
        column = "ingredient_id" if composition.kind == "ingredient" else "recipe_id"
        try:
            result = (
                self.client.table(TABLES["servings"])
                .select("label, grams")
                .eq("user_id", user_id)
                .eq(column, composition.id)
                .order("grams", desc=True)
                .execute()
            )
        except APIError as e:
            raise translate_api_error(e) from e

        overrides = []
        for row in result.data or []:
            grams = _positive(row.get("grams"))
            if not grams or not row.get("label"):
                continue
            overrides.append(UserServingOverride(
                user_id=user_id,
                composition_id=composition.id,
                label=str(row["label"]),
                grams=grams,
            ))
        return overrides

    # -------------------------------------------------------------------------
    # Analyses
    # -------------------------------------------------------------------------

    async def insert_analysis(self, record: AnalysisRecord) -> AnalysisRecord:
        """Insert a meal log; returns the record with its id and timestamp."""
        try:
            result = (
                self.client.table(TABLES["analyses"])
                .insert(record_to_row(record))
                .execute()
            )
        except APIError as e:
            raise translate_api_error(e) from e
        if not result.data:
            raise StoreError("Insert returned no row")
        row = result.data[0]
        return AnalysisRecord.model_validate({
            **record.model_dump(),
            "id": str(row["id"]),
            "logged_at": row.get("logged_at"),
        })

    async def get_analysis(self, analysis_id: str) -> AnalysisRecord:
        try:
            result = (
                self.client.table(TABLES["analyses"])
                .select("*")
                .eq("id", analysis_id)
                .limit(1)
                .execute()
            )
        except APIError as e:
            raise translate_api_error(e) from e
        if not result.data:
            raise RecordNotFoundError(f"Analysis {analysis_id} not found")
        return row_to_record(result.data[0])

    async def list_analyses(self, user_id: str, limit: int, offset: int) -> list[AnalysisRecord]:
        try:
            result = (
                self.client.table(TABLES["analyses"])
                .select("*")
                .eq("user_id", user_id)
                .order("logged_at", desc=True)
                .range(offset, offset + limit - 1)
                .execute()
            )
        except APIError as e:
            raise translate_api_error(e) from e
        return [row_to_record(r) for r in result.data or []]

    async def save_adjusted_analysis(self, analysis_id: str, result: AdjustedResult) -> None:
        """Write the adjustment snapshot next to the untouched original."""
        data = result.model_dump(mode="json")
        try:
            response = (
                self.client.table(TABLES["analyses"])
                .update({
                    "adjusted_items": data["items"],
                    "adjusted_add_ons": data["add_ons"],
                    "adjusted_summary": data["nutrition_summary"],
                    "adjusted": True,
                    "adjusted_by": data["adjusted_by"],
                    "adjusted_at": data["adjusted_at"],
                })
                .eq("id", analysis_id)
                .execute()
            )
        except APIError as e:
            raise translate_api_error(e) from e
        if not response.data:
            raise RecordNotFoundError(f"Analysis {analysis_id} not found")

    async def mark_feedback_received(self, analysis_id: str) -> None:
        try:
            self.client.table(TABLES["analyses"]).update(
                {"feedback_received": True}
            ).eq("id", analysis_id).execute()
        except APIError as e:
            raise translate_api_error(e) from e

    # -------------------------------------------------------------------------
    # Feedback
    # -------------------------------------------------------------------------

    async def find_feedback(self, table: str, analysis_id: str, user_id: Optional[str]) -> bool:
        query = self.client.table(table).select("id").eq("analysis_id", analysis_id)
        query = query.is_("user_id", "null") if user_id is None else query.eq("user_id", user_id)
        try:
            result = query.limit(1).execute()
        except APIError as e:
            raise translate_api_error(e) from e
        return bool(result.data)

    async def insert_feedback(self, table: str, row: FeedbackRecord) -> FeedbackRecord:
        """Insert one feedback row. The table is unique on (analysis_id, user_id)."""
        try:
            result = (
                self.client.table(table)
                .insert(row.model_dump(mode="json", exclude={"created_at"}))
                .execute()
            )
        except APIError as e:
            raise translate_api_error(e) from e
        if result.data:
            return FeedbackRecord(**result.data[0])
        return row.model_copy(update={"created_at": datetime.now(timezone.utc)})

    async def list_feedback(self, table: str, analysis_id: str) -> list[FeedbackRecord]:
        try:
            result = self.client.table(table).select("*").eq("analysis_id", analysis_id).execute()
        except APIError as e:
            raise translate_api_error(e) from e
        return [FeedbackRecord(**r) for r in result.data or []]

    async def ping(self) -> None:
        """Cheap query to prove connectivity."""
        try:
            self.client.table(TABLES["analyses"]).select("id").limit(1).execute()
        except APIError as e:
            raise translate_api_error(e) from e
