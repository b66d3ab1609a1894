"""
Feedback submission with at-most-one row per (analysis, user).

Two layers keep the invariant: an in-process `KeyedLock` serializes
check-then-insert for the same key so duplicates get a fast, consistent 409,
and the table's unique constraint rejects anything that slips past (another
process, a lost lock).
"""

import logging
import uuid
from typing import Optional

from diettrack.errors import (
    AnalysisNotFoundError,
    BadInputError,
    DuplicateFeedbackError,
    PersistenceError,
)
from diettrack.models import FeedbackRecord, FeedbackRequest
from diettrack.services.feedback_lock import KeyedLock
from diettrack.services.supabase import DuplicateRowError, ForeignKeyError, StoreError

logger = logging.getLogger(__name__)

DUPLICATE_MESSAGE = "Feedback already exists for this analysis/user"


def require_uuid(value: str, field: str = "analysis_id") -> str:
    """Validate and normalize a UUID string, else BadInputError."""
    if not value:
        raise BadInputError(f"{field} is required")
    try:
        return str(uuid.UUID(str(value)))
    except ValueError:
        raise BadInputError(f"{field} must be a valid UUID")


class FeedbackService:
    def __init__(self, store, lock: Optional[KeyedLock] = None, table: str = "analysis_feedback"):
        self.store = store
        self.lock = lock if lock is not None else KeyedLock()
        self.table = table

    def lock_key(self, analysis_id: str, user_id: Optional[str]) -> str:
        return f"{self.table}:{analysis_id}:{user_id or 'NULL'}"

    async def submit(self, request: FeedbackRequest) -> FeedbackRecord:
        analysis_id = require_uuid(request.analysis_id)
        user_id = request.user_id

        async with self.lock.hold(self.lock_key(analysis_id, user_id)):
            try:
                exists = await self.store.find_feedback(self.table, analysis_id, user_id)
            except StoreError as e:
                # The unique constraint still guards the insert below
                logger.warning(f"Feedback pre-check failed for {analysis_id}: {e}")
                exists = False
            if exists:
                raise DuplicateFeedbackError(DUPLICATE_MESSAGE)

            row = FeedbackRecord(
                id=str(uuid.uuid4()),
                analysis_id=analysis_id,
                user_id=user_id,
                helpful=request.helpful,
                comment=request.comment,
            )
            try:
                saved = await self.store.insert_feedback(self.table, row)
            except DuplicateRowError:
                raise DuplicateFeedbackError(DUPLICATE_MESSAGE)
            except ForeignKeyError:
                raise AnalysisNotFoundError("Analysis not found")
            except StoreError as e:
                logger.error(f"Feedback insert failed (table={self.table}, analysis={analysis_id}): {e}")
                raise PersistenceError(
                    "Failed to save feedback",
                    details={"db_code": e.code, "db_message": e.message},
                )

        try:
            await self.store.mark_feedback_received(analysis_id)
        except StoreError as e:
            logger.info(f"Could not flag analysis {analysis_id} as reviewed: {e}")

        logger.info(f"Feedback {saved.id} stored for analysis {analysis_id}")
        return saved

    async def list_for_analysis(self, analysis_id: str) -> list[FeedbackRecord]:
        analysis_id = require_uuid(analysis_id)
        try:
            return await self.store.list_feedback(self.table, analysis_id)
        except StoreError as e:
            logger.error(f"Failed to load feedback for {analysis_id}: {e}")
            raise PersistenceError("Failed to load feedback")
