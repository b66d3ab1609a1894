"""Analysis feedback API endpoints."""

from fastapi import APIRouter, Depends

from diettrack.api.deps import get_feedback_service
from diettrack.models import FeedbackRecord, FeedbackRequest
from diettrack.services.feedback import FeedbackService

router = APIRouter(prefix="/api/v1/feedback", tags=["feedback"])


@router.post("", response_model=FeedbackRecord, status_code=201)
async def submit_feedback(
    body: FeedbackRequest,
    service: FeedbackService = Depends(get_feedback_service),
):
    """
    Submit feedback for an analysis.

    At most one feedback per (analysis, user); a second submission returns
    409 DUPLICATE_FEEDBACK.
    """
    return await service.submit(body)


@router.get("/{analysis_id}", response_model=list[FeedbackRecord])
async def list_feedback(
    analysis_id: str,
    service: FeedbackService = Depends(get_feedback_service),
):
    return await service.list_for_analysis(analysis_id)
