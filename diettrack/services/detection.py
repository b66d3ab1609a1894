"""
Food detection providers.

Each provider turns an image and/or prompt into a `DetectionResult`. The
`DetectionService` fans out to the configured providers, races each against
the provider deadline, and merges whatever came back in time.
"""

import asyncio
import base64
import json
import logging
import re
import time
from typing import Optional, Protocol

from openai import AsyncOpenAI
from pydantic import ValidationError

from diettrack.config import Settings, get_settings
from diettrack.models import (
    DetectedItem,
    DetectionResult,
    NutritionFacts,
    RawDetectedItem,
    RawDetectionPayload,
)
from diettrack.services.combiner import DEFAULT_CONFIDENCE, combine_detections
from diettrack.services.deadline import DeadlineExceeded, LateTasks, race
from diettrack.services.portions import make_portion

logger = logging.getLogger(__name__)

DEFAULT_ITEM_GRAMS = 150.0
DEFAULT_ITEM_CONFIDENCE = 0.6
MATCHED_TEXT_CONFIDENCE = 0.7
UNMATCHED_TEXT_CONFIDENCE = 0.5

TEXT_SPLIT = re.compile(r"[,+/&]| with | and ", re.IGNORECASE)
CODE_FENCE = re.compile(r"^\s*```(?:json)?\s*|\s*```\s*$", re.IGNORECASE)


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 1)


def normalize_items(raw_items: list[dict]) -> list[DetectedItem]:
    """Lenient provider items -> canonical `DetectedItem`s.

    Ids are unique within the result: missing or repeated ids get the next
    integer not already taken. Names are lowercased, grams default to 150 and
    confidence to 0.6. Macros go through `NutritionFacts` rounding.
    """
    parsed = []
    for entry in raw_items:
        try:
            parsed.append(RawDetectedItem.model_validate(entry))
        except ValidationError as e:
            logger.warning(f"Skipping malformed detected item: {e}")

    given = {raw.item_id for raw in parsed if raw.item_id}
    used: set[int] = set()
    next_id = 1

    items = []
    for raw in parsed:
        if raw.item_id and raw.item_id not in used:
            item_id = raw.item_id
        else:
            while next_id in given or next_id in used:
                next_id += 1
            item_id = next_id
        used.add(item_id)

        grams = raw.grams or DEFAULT_ITEM_GRAMS
        confidence = raw.confidence if raw.confidence is not None else DEFAULT_ITEM_CONFIDENCE

        items.append(DetectedItem(
            item_id=item_id,
            name=(raw.name or "food").lower(),
            confidence=confidence,
            nutrition=NutritionFacts(
                calories=raw.calories,
                protein=raw.protein,
                carbs=raw.carbs,
                fat=raw.fat,
                fiber=raw.fiber,
                sugar=raw.sugar,
                sodium=raw.sodium,
                cholesterol=raw.cholesterol,
            ),
            portion=make_portion(grams),
            ingredients=raw.ingredients,
            cooking_method=raw.cooking_method,
        ))
    return items


def parse_payload(content: str) -> RawDetectionPayload:
    """Parse model output, tolerating code fences and junk."""
    cleaned = CODE_FENCE.sub("", content or "").strip()
    try:
        data = json.loads(cleaned) if cleaned else {}
    except json.JSONDecodeError:
        logger.warning("Vision model returned non-JSON content")
        data = {}
    if not isinstance(data, dict):
        data = {}
    return RawDetectionPayload.model_validate(data)


# =============================================================================
# Providers
# =============================================================================


class DetectionProvider(Protocol):
    name: str

    async def detect(
        self,
        image: Optional[bytes],
        prompt: Optional[str],
        mime_type: str = "image/jpeg",
    ) -> DetectionResult:
        ...


VISION_SYSTEM_PROMPT = """You are a nutrition analysis assistant. Return ONLY JSON with this shape:

{
  "detected_items": [
    {
      "item_id": 1,
      "name": "roti",
      "confidence": 0.7,
      "portion_size": { "estimated_grams": 120 },
      "calories": 200,
      "protein": 6,
      "carbs": 35,
      "fat": 4
    }
  ],
  "overall_confidence": 0.6
}

- Prefer Indian dish names when applicable.
- If unsure, keep confidence <= 0.6.
- If multiple items are present, assign stable item_id (1..N).
- Do not include any non-JSON text."""


class OpenAIVisionProvider:
    """Vision detection via OpenAI chat completions (JSON mode)."""

    name = "openai"

    def __init__(self, settings: Optional[Settings] = None, client: Optional[AsyncOpenAI] = None):
        self.settings = settings or get_settings()
        self.client = client
        if self.client is None and self.settings.openai_enabled:
            self.client = AsyncOpenAI(api_key=self.settings.openai_api_key)

    def _empty(self, started: float) -> DetectionResult:
        return DetectionResult(
            provider=self.name,
            items=[],
            confidence=DEFAULT_CONFIDENCE,
            processing_time_ms=_elapsed_ms(started),
        )

    async def detect(
        self,
        image: Optional[bytes],
        prompt: Optional[str],
        mime_type: str = "image/jpeg",
    ) -> DetectionResult:
        started = time.perf_counter()

        if self.client is None:
            logger.warning("OPENAI_API_KEY missing; vision detection returns no items")
            return self._empty(started)
        if not image:
            return self._empty(started)

        user_text = f"User context: {prompt}" if prompt else "No extra user context."
        encoded = base64.b64encode(image).decode("ascii")

        response = await self.client.chat.completions.create(
            model=self.settings.vision_model,
            messages=[
                {"role": "system", "content": VISION_SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": user_text},
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:{mime_type};base64,{encoded}"},
                        },
                    ],
                },
            ],
            temperature=0.2,
            response_format={"type": "json_object"},
        )

        payload = parse_payload(response.choices[0].message.content or "{}")
        items = normalize_items(payload.detected_items)

        if payload.overall_confidence is not None:
            confidence = payload.overall_confidence
        elif items:
            confidence = sum(i.confidence for i in items) / len(items)
        else:
            confidence = DEFAULT_ITEM_CONFIDENCE

        return DetectionResult(
            provider=self.name,
            items=items,
            confidence=max(0.0, min(1.0, confidence)),
            processing_time_ms=_elapsed_ms(started),
        )


class GenericMealProvider:
    """Conservative single "meal" item; enrichment refines it later."""

    name = "generic"

    async def detect(
        self,
        image: Optional[bytes],
        prompt: Optional[str],
        mime_type: str = "image/jpeg",
    ) -> DetectionResult:
        started = time.perf_counter()
        item = DetectedItem(
            item_id=1,
            name="meal",
            confidence=0.5,
            nutrition=NutritionFacts(),
            portion=make_portion(DEFAULT_ITEM_GRAMS),
        )
        return DetectionResult(
            provider=self.name,
            items=[item],
            confidence=0.5,
            processing_time_ms=_elapsed_ms(started),
        )


def build_providers(settings: Settings) -> list[DetectionProvider]:
    """Providers for the configured detection strategy."""
    strategy = settings.detection_strategy
    if strategy == "generic_only":
        return [GenericMealProvider()]
    if strategy == "both":
        return [OpenAIVisionProvider(settings), GenericMealProvider()]
    return [OpenAIVisionProvider(settings)]


# =============================================================================
# Service
# =============================================================================


class DetectionService:
    """Runs providers concurrently under a per-provider deadline."""

    def __init__(
        self,
        providers: list[DetectionProvider],
        timeout_seconds: float = 15.0,
        late_tasks: Optional[LateTasks] = None,
    ):
        self.providers = providers
        self.timeout_seconds = timeout_seconds
        self.late_tasks = late_tasks

    async def _run(self, provider: DetectionProvider, image, prompt, mime_type) -> Optional[DetectionResult]:
        try:
            return await race(
                provider.detect(image, prompt, mime_type),
                self.timeout_seconds,
                label=f"detect:{provider.name}",
                late_tasks=self.late_tasks,
            )
        except DeadlineExceeded:
            return None
        except Exception as e:
            logger.error(f"Detection provider {provider.name} failed: {e}")
            return None

    async def detect(
        self,
        image: Optional[bytes],
        prompt: Optional[str] = None,
        mime_type: str = "image/jpeg",
    ) -> DetectionResult:
        results = await asyncio.gather(
            *(self._run(p, image, prompt, mime_type) for p in self.providers)
        )
        survivors = [r for r in results if r is not None]
        combined = combine_detections(survivors)
        logger.info(
            f"Detection: {len(combined.items)} items from "
            f"{len(survivors)}/{len(self.providers)} providers"
        )
        return combined


# =============================================================================
# Text fallback
# =============================================================================


async def parse_text_to_items(text: str, chain, user_id: Optional[str] = None) -> list[DetectedItem]:
    """
    Split a free-text meal description into items.

    "rice, dal and 2 roti" -> ["rice", "dal", "2 roti"]. Each part is looked
    up only to pick a default serving and confidence; nutrition is filled in
    later by enrichment.
    """
    parts = [p.strip() for p in TEXT_SPLIT.split(text or "")]
    parts = [p for p in parts if p]

    items = []
    for part in parts:
        match = await chain.resolve(part, user_id)
        grams = (match.default_serving_grams if match else None) or DEFAULT_ITEM_GRAMS
        items.append(DetectedItem(
            item_id=len(items) + 1,
            name=part.lower(),
            confidence=MATCHED_TEXT_CONFIDENCE if match else UNMATCHED_TEXT_CONFIDENCE,
            nutrition=NutritionFacts(),
            nutrition_per_100g=NutritionFacts(),
            portion=make_portion(grams),
        ))

    if items:
        return items

    return [DetectedItem(
        item_id=1,
        name=(text or "").strip().lower() or "meal",
        confidence=UNMATCHED_TEXT_CONFIDENCE,
        nutrition=NutritionFacts(),
        portion=make_portion(DEFAULT_ITEM_GRAMS),
    )]
