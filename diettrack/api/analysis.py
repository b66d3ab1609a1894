"""Meal analysis API endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from diettrack.api.deps import get_analysis_service, get_late_tasks, get_route_timeout
from diettrack.errors import RouteTimeoutError
from diettrack.models import (
    AdjustedResult,
    AdjustRequest,
    AnalysisHistory,
    AnalysisRecord,
    AnalyzeRequest,
)
from diettrack.services.analysis import AnalysisService
from diettrack.services.deadline import DeadlineExceeded, LateTasks, race

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/analysis", tags=["analysis"])


@router.post("/analyze", response_model=AnalysisRecord)
@router.post("", response_model=AnalysisRecord)
async def analyze_meal(
    body: AnalyzeRequest,
    service: AnalysisService = Depends(get_analysis_service),
    timeout: float = Depends(get_route_timeout),
    late_tasks: LateTasks = Depends(get_late_tasks),
):
    """
    Analyze a meal from a photo (base64 data URL) and/or a text description.

    Detected items are enriched from the composition store, add-ons are
    resolved, totals computed and the meal log persisted. If the pipeline
    runs past the route deadline the client gets a 504 while the work
    finishes in the background.
    """
    try:
        return await race(service.analyze(body), timeout, label="analyze", late_tasks=late_tasks)
    except DeadlineExceeded:
        raise RouteTimeoutError("Analysis timed out")


@router.get("/history", response_model=AnalysisHistory)
async def get_history(
    user_id: Optional[str] = Query(None, description="User ID"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    service: AnalysisService = Depends(get_analysis_service),
):
    """Most recent meal logs for a user."""
    return await service.history(user_id, limit, offset)


@router.get("/{analysis_id}", response_model=AnalysisRecord)
async def get_analysis(
    analysis_id: str,
    service: AnalysisService = Depends(get_analysis_service),
):
    return await service.get(analysis_id)


@router.post("/{analysis_id}/adjusted", response_model=AdjustedResult)
async def save_adjusted(
    analysis_id: str,
    body: AdjustRequest,
    service: AnalysisService = Depends(get_analysis_service),
    timeout: float = Depends(get_route_timeout),
    late_tasks: LateTasks = Depends(get_late_tasks),
):
    """
    Save user-edited portions (and optional add-ons).

    Known items are rescaled from their stored values; unknown item ids are
    returned in `ignored_item_ids`. The original detection is kept as is.
    """
    try:
        return await race(
            service.save_adjustment(analysis_id, body), timeout, label="adjust", late_tasks=late_tasks
        )
    except DeadlineExceeded:
        raise RouteTimeoutError("Adjustment timed out")
