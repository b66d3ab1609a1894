"""Health check endpoints."""

import platform
from datetime import datetime, timezone

import psutil
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from diettrack.api.deps import get_health_checker
from diettrack.services.healthcheck import HealthChecker, HealthStatus

router = APIRouter(tags=["health"])

CRITICAL_SERVICES = ("api", "supabase")


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/health")
async def health_check():
    """Basic health check."""
    return {
        "status": "healthy",
        "timestamp": _timestamp(),
    }


def _gb(n_bytes: int) -> float:
    return round(n_bytes / 1024**3, 2)


def _host_snapshot() -> dict:
    memory = psutil.virtual_memory()
    disk = psutil.disk_usage("/")
    rss = psutil.Process().memory_info().rss
    return {
        "system": {
            "platform": platform.system(),
            "machine": platform.machine(),
            "python": platform.python_version(),
        },
        "cpu": {"percent": psutil.cpu_percent(interval=0.1), "cores": psutil.cpu_count()},
        "memory": {
            "used_gb": _gb(memory.used),
            "total_gb": _gb(memory.total),
            "percent": memory.percent,
            "process_rss_mb": round(rss / 1024**2, 1),
        },
        "disk": {"used_gb": _gb(disk.used), "total_gb": _gb(disk.total), "percent": disk.percent},
    }


@router.get("/health/detailed")
async def detailed_health(checker: HealthChecker = Depends(get_health_checker)):
    """Host resources plus the pipeline's in-process counters."""
    return {
        "status": "healthy",
        "timestamp": _timestamp(),
        **_host_snapshot(),
        "pipeline": checker.pipeline_stats(),
    }


@router.get("/health/services")
async def services_health(checker: HealthChecker = Depends(get_health_checker)):
    """
    Health of every service the pipeline depends on.

    Checks:
    - API responsiveness
    - Supabase database
    - Composition lookup cache
    - Detection providers
    - Feedback lock registry
    """
    report = await checker.run_all_checks()
    return report.to_dict()


@router.get("/health/ready")
async def readiness_check(checker: HealthChecker = Depends(get_health_checker)):
    """
    Kubernetes-style readiness check.

    Returns 200 if service is ready to receive traffic.
    Returns 503 if critical services are down.
    """
    report = await checker.run_all_checks()

    critical_healthy = all(
        c.status == HealthStatus.HEALTHY
        for c in report.checks
        if c.name in CRITICAL_SERVICES
    )

    if critical_healthy:
        return {"ready": True, "status": report.status.value}
    return JSONResponse(status_code=503, content={"ready": False, "status": report.status.value})


@router.get("/health/live")
async def liveness_check():
    """
    Kubernetes-style liveness check.

    Returns 200 if the process is alive.
    """
    return {"live": True, "timestamp": _timestamp()}
