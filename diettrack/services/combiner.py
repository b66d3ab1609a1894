"""Merge detection results from several providers into one item list."""

import logging

from diettrack.models import DetectedItem, DetectionResult

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.5


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def merge_key(item: DetectedItem, index: int) -> str:
    """Stable id, else normalized name, else position."""
    if item.item_id is not None and item.item_id > 0:
        return f"id:{item.item_id}"
    name = (item.name or "").strip().lower()
    if name:
        return f"name:{name}"
    return f"idx:{index}"


def combine_detections(results: list[DetectionResult]) -> DetectionResult:
    """
    Deduplicate items across provider results.

    Items sharing a merge key collapse into the first one seen; its confidence
    becomes the mean of the group. Group order follows first appearance.
    """
    if not results:
        return DetectionResult(provider="none", items=[], confidence=DEFAULT_CONFIDENCE)

    if len(results) == 1:
        return results[0]

    # Index fallback is the position within each provider's own list
    groups: dict[str, list[DetectedItem]] = {}
    seen = 0
    for result in results:
        for index, item in enumerate(result.items):
            groups.setdefault(merge_key(item, index), []).append(item)
        seen += len(result.items)

    merged = []
    for group_index, members in enumerate(groups.values()):
        base = members[0]
        confidence = _clamp(sum(m.confidence for m in members) / len(members))
        item_id = base.item_id if base.item_id and base.item_id > 0 else group_index + 1
        merged.append(base.model_copy(update={"confidence": confidence, "item_id": item_id}))

    providers = []
    for result in results:
        if result.provider not in providers:
            providers.append(result.provider)

    combined = DetectionResult(
        provider="+".join(providers),
        items=merged,
        confidence=_clamp(sum(r.confidence for r in results) / len(results)),
        processing_time_ms=max(r.processing_time_ms for r in results),
    )
    logger.debug(
        f"Combined {seen} items from {len(results)} providers into {len(merged)}"
    )
    return combined
