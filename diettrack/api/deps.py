"""
Common dependencies for API endpoints.

Services are built once by `init_services` and hung off `app.state`; routes
pull them out through the getters below with `Depends`.
"""

from typing import Optional

from fastapi import FastAPI, Request

from diettrack.config import Settings
from diettrack.services.analysis import AnalysisService
from diettrack.services.composition import CompositionCache, CompositionLookupChain
from diettrack.services.detection import DetectionProvider, DetectionService, build_providers
from diettrack.services.feedback import FeedbackService
from diettrack.services.deadline import LateTasks
from diettrack.services.feedback_lock import KeyedLock
from diettrack.services.healthcheck import HealthChecker


def init_services(
    app: FastAPI,
    store,
    settings: Settings,
    providers: Optional[list[DetectionProvider]] = None,
) -> None:
    """Wire the pipeline against `store` and attach it to `app.state`."""
    cache = CompositionCache(
        ttl_seconds=settings.composition_cache_ttl_seconds,
        max_entries=settings.composition_cache_max_entries,
    )
    chain = CompositionLookupChain(store, cache)
    late_tasks = LateTasks()
    detection = DetectionService(
        providers if providers is not None else build_providers(settings),
        timeout_seconds=settings.provider_timeout_seconds,
        late_tasks=late_tasks,
    )
    lock = KeyedLock()

    app.state.settings = settings
    app.state.store = store
    app.state.late_tasks = late_tasks
    app.state.composition_chain = chain
    app.state.analysis_service = AnalysisService(
        store,
        detection,
        chain,
        max_image_bytes=settings.max_image_bytes,
    )
    app.state.feedback_service = FeedbackService(store, lock, table=settings.feedback_table)
    app.state.health_checker = HealthChecker(store, cache, lock, settings, late_tasks=late_tasks)


def get_analysis_service(request: Request) -> AnalysisService:
    return request.app.state.analysis_service


def get_feedback_service(request: Request) -> FeedbackService:
    return request.app.state.feedback_service


def get_composition_chain(request: Request) -> CompositionLookupChain:
    return request.app.state.composition_chain


def get_health_checker(request: Request) -> HealthChecker:
    return request.app.state.health_checker


def get_late_tasks(request: Request) -> LateTasks:
    return request.app.state.late_tasks


def get_route_timeout(request: Request) -> float:
    return request.app.state.settings.route_timeout_seconds
