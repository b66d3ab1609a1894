"""
Pytest configuration and shared fixtures.

Fixtures defined here are available to all tests.
"""

import asyncio
import os
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
from unittest.mock import MagicMock

import pytest

# Add project root to path
root_dir = Path(__file__).parent.parent
sys.path.insert(0, str(root_dir))

# Set test environment (before diettrack.config is imported anywhere)
os.environ["TESTING"] = "true"
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-service-role-key")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ["OPENAI_API_KEY"] = ""

from diettrack.models import (  # noqa: E402
    AdjustedResult,
    AnalysisRecord,
    CompositionMatch,
    DetectedItem,
    DetectionResult,
    FeedbackRecord,
    MacroRates,
    NutritionFacts,
    UserServingOverride,
)
from diettrack.services.portions import make_portion  # noqa: E402
from diettrack.services.supabase import (  # noqa: E402
    DuplicateRowError,
    ForeignKeyError,
    RecordNotFoundError,
    StoreError,
)


# =============================================================================
# In-memory store
# =============================================================================


class FakeStore:
    """
    In-memory stand-in for `SupabaseStore`.

    Every call yields to the event loop once so concurrent callers interleave
    the way they would against the real database. Feedback rows are unique on
    (analysis_id, user_id) and reference an existing analysis, like the table
    constraints.
    """

    def __init__(self):
        self.personal: dict[tuple[Optional[str], str], list[CompositionMatch]] = {}
        self.global_matches: dict[str, list[CompositionMatch]] = {}
        self.ingredients: dict[str, list[CompositionMatch]] = {}
        self.servings: list[UserServingOverride] = []
        self.analyses: dict[str, AnalysisRecord] = {}
        self.adjustments: dict[str, AdjustedResult] = {}
        self.feedback: dict[str, list[FeedbackRecord]] = {}
        self.feedback_flags: set[str] = set()
        self.calls: dict[str, int] = {}
        self.fail_on: set[str] = set()
        self.enforce_foreign_keys = True

    async def _enter(self, name: str) -> None:
        self.calls[name] = self.calls.get(name, 0) + 1
        await asyncio.sleep(0)
        if name in self.fail_on:
            raise StoreError(f"{name} unavailable", "08006")

    # Seeding helpers

    def add_global(self, query: str, match: CompositionMatch) -> None:
        self.global_matches.setdefault(query, []).append(match)

    def add_personal(self, user_id: str, query: str, match: CompositionMatch) -> None:
        self.personal.setdefault((user_id, query), []).append(match)

    def add_ingredient(self, query: str, match: CompositionMatch) -> None:
        self.ingredients.setdefault(query, []).append(match)

    def add_analysis(self, record: AnalysisRecord) -> AnalysisRecord:
        if record.id is None:
            record = record.model_copy(update={"id": str(uuid.uuid4())})
        self.analyses[record.id] = record
        return record

    # Store interface

    async def lookup_composition(self, query, user_id, max_results=5):
        await self._enter("lookup_composition")
        rows = list(self.personal.get((user_id, query), [])) if user_id else []
        rows += self.global_matches.get(query, [])
        return rows[:max_results]

    async def lookup_ingredient(self, query, max_results=1):
        await self._enter("lookup_ingredient")
        return self.ingredients.get(query, [])[:max_results]

    async def list_serving_overrides(self, user_id, composition):
        await self._enter("list_serving_overrides")
        rows = [
            s for s in self.servings
            if s.user_id == user_id and s.composition_id == composition.id
        ]
        return sorted(rows, key=lambda s: s.grams, reverse=True)

    async def insert_analysis(self, record):
        await self._enter("insert_analysis")
        saved = AnalysisRecord.model_validate({
            **record.model_dump(),
            "id": str(uuid.uuid4()),
            "logged_at": datetime.now(timezone.utc),
        })
        self.analyses[saved.id] = saved
        return saved

    async def get_analysis(self, analysis_id):
        await self._enter("get_analysis")
        if analysis_id not in self.analyses:
            raise RecordNotFoundError(f"Analysis {analysis_id} not found")
        return self.analyses[analysis_id]

    async def list_analyses(self, user_id, limit, offset):
        await self._enter("list_analyses")
        rows = [r for r in self.analyses.values() if r.user_id == user_id]
        rows.sort(key=lambda r: r.logged_at or datetime.min.replace(tzinfo=timezone.utc), reverse=True)
        return rows[offset:offset + limit]

    async def save_adjusted_analysis(self, analysis_id, result):
        await self._enter("save_adjusted_analysis")
        if analysis_id not in self.analyses:
            raise RecordNotFoundError(f"Analysis {analysis_id} not found")
        self.adjustments[analysis_id] = result
        self.analyses[analysis_id] = self.analyses[analysis_id].model_copy(update={
            "adjusted_items": result.items,
            "adjusted_add_ons": result.add_ons,
            "adjusted_summary": result.nutrition_summary,
            "adjusted": True,
            "adjusted_by": result.adjusted_by,
            "adjusted_at": result.adjusted_at,
        })

    async def mark_feedback_received(self, analysis_id):
        await self._enter("mark_feedback_received")
        self.feedback_flags.add(analysis_id)

    async def find_feedback(self, table, analysis_id, user_id):
        await self._enter("find_feedback")
        return any(
            r.analysis_id == analysis_id and r.user_id == user_id
            for r in self.feedback.get(table, [])
        )

    async def insert_feedback(self, table, row):
        await self._enter("insert_feedback")
        rows = self.feedback.setdefault(table, [])
        if any(r.analysis_id == row.analysis_id and r.user_id == row.user_id for r in rows):
            raise DuplicateRowError(
                'duplicate key value violates unique constraint "analysis_feedback_unique"',
                "23505",
            )
        if self.enforce_foreign_keys and row.analysis_id not in self.analyses:
            raise ForeignKeyError("insert violates foreign key constraint", "23503")
        saved = row.model_copy(update={"created_at": datetime.now(timezone.utc)})
        rows.append(saved)
        return saved

    async def list_feedback(self, table, analysis_id):
        await self._enter("list_feedback")
        return [r for r in self.feedback.get(table, []) if r.analysis_id == analysis_id]

    async def ping(self):
        await self._enter("ping")


class StubProvider:
    """Detection provider returning a canned result, raising, or stalling."""

    def __init__(self, name="stub", items=None, confidence=0.8, delay=0.0, error=None):
        self.name = name
        self.items = items or []
        self.confidence = confidence
        self.delay = delay
        self.error = error
        self.calls = 0
        self.finished = 0

    async def detect(self, image, prompt, mime_type="image/jpeg"):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        self.finished += 1
        return DetectionResult(provider=self.name, items=self.items, confidence=self.confidence)


def make_match(
    name="rice",
    calories=130,
    protein=2.7,
    carbs=28,
    fat=0.3,
    default_grams=None,
    kind="ingredient",
    match_id=None,
    **extra,
) -> CompositionMatch:
    return CompositionMatch(
        kind=kind,
        id=match_id or f"{kind}-{name}",
        name=name,
        per_100g=MacroRates(calories=calories, protein=protein, carbs=carbs, fat=fat, **extra),
        default_serving_grams=default_grams,
        confidence=0.9,
        source="test",
    )


def make_item(item_id=1, name="rice", grams=150, confidence=0.7, **nutrition) -> DetectedItem:
    return DetectedItem(
        item_id=item_id,
        name=name,
        confidence=confidence,
        nutrition=NutritionFacts(**nutrition),
        portion=make_portion(grams) if grams else None,
    )


# =============================================================================
# App Fixtures
# =============================================================================


@pytest.fixture
def settings():
    from diettrack.config import get_settings
    return get_settings().model_copy(update={
        "openai_api_key": None,
        "detection_strategy": "openai_only",
        "provider_timeout_seconds": 0.2,
        "route_timeout_seconds": 2.0,
    })


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def stub_provider():
    return StubProvider()


@pytest.fixture
def app(fake_store, settings, stub_provider):
    """FastAPI test application wired to the in-memory store."""
    from diettrack.api.deps import init_services
    from diettrack.main import app

    init_services(app, fake_store, settings, providers=[stub_provider])
    return app


@pytest.fixture
def client(app):
    """Sync test client for API tests (lifespan not run)."""
    from fastapi.testclient import TestClient
    return TestClient(app)


@pytest.fixture
async def async_client(app):
    """Async test client for API tests."""
    from httpx import AsyncClient, ASGITransport
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as client:
        yield client


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
def mock_supabase():
    """Mock Supabase client for unit tests."""
    mock = MagicMock()
    mock.table.return_value.select.return_value.execute.return_value.data = []
    mock.table.return_value.insert.return_value.execute.return_value.data = [{"id": "test-uuid"}]
    mock.table.return_value.update.return_value.execute.return_value.data = [{}]
    mock.rpc.return_value.execute.return_value.data = []
    return mock


@pytest.fixture
def test_user_id():
    """Test user ID for database operations."""
    return "test-user-00000000-0000-0000-0000-000000000000"


# =============================================================================
# Sample Data Fixtures
# =============================================================================


@pytest.fixture
def rice_record(fake_store, test_user_id):
    """Stored analysis: 150 g rice, 200 kcal / 4 P / 44 C / 0.5 F."""
    item = make_item(
        item_id=1, name="rice", grams=150,
        calories=200, protein=4, carbs=44, fat=0.5, fiber=0.5, sodium=5,
    )
    return fake_store.add_analysis(AnalysisRecord(
        user_id=test_user_id,
        source="text",
        detected_items=[item],
        nutrition_summary={"total_calories": 200, "total_protein": 4, "total_carbs": 44, "total_fat": 0.5},
        summary_text="rice • ~200 kcal • 4g P",
        logged_at=datetime.now(timezone.utc),
    ))


@pytest.fixture
def sample_personal_row():
    """Row shape returned by the personal_food_lookup RPC."""
    return {
        "kind": "recipe",
        "id": "recipe-uuid",
        "name": "mom's dal",
        "default_serving_g": "180",
        "calories_per_100g": "116",
        "protein_per_100g": 7.2,
        "carbs_per_100g": 14.1,
        "fat_per_100g": None,
        "confidence": "0.92",
        "source": "personal",
    }


@pytest.fixture
def png_data_url():
    # 1x1 transparent PNG
    return (
        "data:image/png;base64,"
        "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
    )
