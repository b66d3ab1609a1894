"""
Analysis pipeline.

detect (photo) or parse (text) -> enrich from composition store -> resolve
add-ons -> aggregate totals -> persist meal log. Adjustments re-enter against
the stored record.
"""

import base64
import binascii
import logging
import re
import time
import uuid
from typing import Optional

from diettrack.errors import (
    AnalysisNotFoundError,
    BadImageError,
    BadInputError,
    MissingInputError,
    PersistenceError,
)
from diettrack.models import (
    AdjustedResult,
    AdjustRequest,
    AnalysisHistory,
    AnalysisRecord,
    AnalyzeRequest,
    DetectedItem,
    NutritionSummary,
)
from diettrack.services.adjustment import AdjustmentResolver
from diettrack.services.composition import CompositionLookupChain
from diettrack.services.detection import DetectionService, parse_text_to_items
from diettrack.services.enrichment import enrich_items
from diettrack.services.supabase import RecordNotFoundError, StoreError
from diettrack.services.totals import aggregate, resolve_add_ons

logger = logging.getLogger(__name__)

DATA_URL = re.compile(r"^data:image/(png|jpe?g|webp);base64,(.*)$", re.IGNORECASE | re.DOTALL)
BASE64_BODY = re.compile(r"^[A-Za-z0-9+/]*={0,2}$")

MAX_HISTORY_LIMIT = 100


def decode_image(data_url: str, max_bytes: int) -> tuple[bytes, str]:
    """Validate a base64 image data URL. Returns (bytes, mime type)."""
    match = DATA_URL.match(data_url.strip())
    if not match:
        raise BadImageError("Invalid image data URL")

    ext, body = match.group(1).lower(), match.group(2).strip()
    if not body or not BASE64_BODY.match(body):
        raise BadImageError("Invalid image data URL")
    try:
        image = base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError):
        raise BadImageError("Invalid base64 image data")

    if len(image) > max_bytes:
        raise BadImageError(f"Image exceeds {max_bytes} bytes")

    mime_type = "image/jpeg" if ext in ("jpg", "jpeg") else f"image/{ext}"
    return image, mime_type


def validate_analysis_id(analysis_id: str) -> str:
    try:
        return str(uuid.UUID(str(analysis_id)))
    except ValueError:
        raise BadInputError("Analysis id must be a valid UUID")


def summary_text(items: list[DetectedItem], summary: NutritionSummary) -> str:
    """E.g. "rice + 2 more • ~540 kcal • 12.5g P"."""
    head = items[0].name if items else "Meal"
    if len(items) > 1:
        head = f"{head} + {len(items) - 1} more"
    return f"{head} • ~{summary.total_calories} kcal • {summary.total_protein:g}g P"


class AnalysisService:
    """Orchestrates the analysis pipeline against the store."""

    def __init__(
        self,
        store,
        detection: DetectionService,
        chain: CompositionLookupChain,
        resolver: Optional[AdjustmentResolver] = None,
        max_image_bytes: int = 5_000_000,
    ):
        self.store = store
        self.detection = detection
        self.chain = chain
        self.resolver = resolver or AdjustmentResolver()
        self.max_image_bytes = max_image_bytes

    async def analyze(self, request: AnalyzeRequest) -> AnalysisRecord:
        started = time.perf_counter()
        prompt = request.prompt_text
        has_image = request.has_image

        if not has_image and not prompt:
            raise MissingInputError("Provide a photo or a description.")

        user_id = request.user_id
        logger.info(
            f"Analysis start user={user_id or 'anon'} src={'image' if has_image else 'prompt'}"
        )

        # 1) detect
        if has_image:
            image, mime_type = decode_image(request.image, self.max_image_bytes)
            detection = await self.detection.detect(image, prompt or None, mime_type)
            items = detection.items
            if not items and prompt:
                logger.info("Empty detections; falling back to prompt parse")
                items = await parse_text_to_items(prompt, self.chain, user_id)
        else:
            items = await parse_text_to_items(prompt, self.chain, user_id)

        # 2) enrich
        try:
            items = await enrich_items(items, self.chain, user_id)
        except Exception as e:
            logger.error(f"Enrichment failed, keeping detected items: {e}")

        # 3) totals
        add_ons = resolve_add_ons(request.add_ons)
        summary = aggregate(items, add_ons)

        # 4) persist
        record = AnalysisRecord(
            user_id=user_id,
            source="photo" if has_image else "text",
            detected_items=items,
            add_ons=add_ons,
            nutrition_summary=summary,
            summary_text=summary_text(items, summary),
        )
        try:
            saved = await self.store.insert_analysis(record)
        except StoreError as e:
            logger.error(f"Meal log insert failed: {e}")
            raise PersistenceError("Failed to save meal log")

        elapsed = (time.perf_counter() - started) * 1000
        logger.info(
            f"Analysis {saved.id} done: {len(items)} items, "
            f"{summary.total_calories} kcal in {elapsed:.0f}ms"
        )
        return saved

    async def get(self, analysis_id: str) -> AnalysisRecord:
        analysis_id = validate_analysis_id(analysis_id)
        try:
            return await self.store.get_analysis(analysis_id)
        except RecordNotFoundError:
            raise AnalysisNotFoundError("Meal log not found")
        except StoreError as e:
            logger.error(f"Failed to fetch meal log {analysis_id}: {e}")
            raise PersistenceError("Failed to fetch meal log")

    async def history(self, user_id: Optional[str], limit: int = 20, offset: int = 0) -> AnalysisHistory:
        if not user_id or not user_id.strip():
            raise BadInputError("user_id is required for history", code="MISSING_USER_ID")
        limit = max(1, min(limit or 20, MAX_HISTORY_LIMIT))
        offset = max(0, offset or 0)
        try:
            records = await self.store.list_analyses(user_id.strip(), limit, offset)
        except StoreError as e:
            logger.error(f"Failed to fetch history for {user_id}: {e}")
            raise PersistenceError("Failed to fetch history")
        return AnalysisHistory(
            items=records,
            limit=limit,
            offset=offset,
            has_more=len(records) == limit,
        )

    async def save_adjustment(self, analysis_id: str, request: AdjustRequest) -> AdjustedResult:
        record = await self.get(analysis_id)
        result = self.resolver.adjust(
            record,
            request.items,
            request.add_ons,
            adjusted_by=request.user_id or record.user_id,
        )
        try:
            await self.store.save_adjusted_analysis(record.id, result)
        except RecordNotFoundError:
            raise AnalysisNotFoundError("Meal log not found")
        except StoreError as e:
            logger.error(f"Failed to save adjustment for {record.id}: {e}")
            raise PersistenceError("Failed to save adjusted analysis")

        logger.info(
            f"Adjusted {record.id}: {len(result.ignored_item_ids)} unknown ids ignored, "
            f"{result.nutrition_summary.total_calories} kcal"
        )
        return result
