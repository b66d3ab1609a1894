"""
Health check system.

Checks:
- API responsiveness
- Database connectivity (Supabase)
- Composition lookup cache
- Detection providers
- Feedback lock registry
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from diettrack.config import Settings
from diettrack.services.composition import CompositionCache
from diettrack.services.deadline import LateTasks, default_late_tasks
from diettrack.services.feedback_lock import KeyedLock

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class HealthStatus(str, Enum):
    """Health check status levels."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass
class CheckResult:
    """Result of a single health check."""
    name: str
    status: HealthStatus
    message: str = ""
    latency_ms: float = 0
    details: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_now)


@dataclass
class HealthReport:
    """Complete health report for the system."""
    status: HealthStatus
    checks: list[CheckResult]
    timestamp: datetime = field(default_factory=_now)
    version: str = VERSION

    @property
    def healthy_count(self) -> int:
        return sum(1 for c in self.checks if c.status == HealthStatus.HEALTHY)

    @property
    def total_count(self) -> int:
        return len(self.checks)

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "version": self.version,
            "timestamp": self.timestamp.isoformat(),
            "summary": f"{self.healthy_count}/{self.total_count} checks passing",
            "checks": [
                {
                    "name": c.name,
                    "status": c.status.value,
                    "message": c.message,
                    "latency_ms": round(c.latency_ms, 2),
                    "details": c.details,
                }
                for c in self.checks
            ]
        }


class HealthChecker:
    """Runs health checks against all system components."""

    CHECK_NAMES = ("api", "supabase", "composition_cache", "detection", "feedback_lock")

    def __init__(
        self,
        store,
        cache: CompositionCache,
        lock: KeyedLock,
        settings: Settings,
        late_tasks: Optional[LateTasks] = None,
    ):
        self.store = store
        self.cache = cache
        self.lock = lock
        self.settings = settings
        self.late_tasks = late_tasks if late_tasks is not None else default_late_tasks

    async def run_all_checks(self) -> HealthReport:
        """Run all health checks and return report."""
        checks = await asyncio.gather(
            self.check_api(),
            self.check_supabase(),
            self.check_composition_cache(),
            self.check_detection(),
            self.check_feedback_lock(),
            return_exceptions=True,
        )

        # Convert exceptions to failed checks
        results = []
        for name, check in zip(self.CHECK_NAMES, checks):
            if isinstance(check, BaseException):
                results.append(CheckResult(
                    name=name,
                    status=HealthStatus.UNHEALTHY,
                    message=str(check),
                ))
            else:
                results.append(check)

        if all(c.status == HealthStatus.HEALTHY for c in results):
            overall = HealthStatus.HEALTHY
        elif any(c.status == HealthStatus.UNHEALTHY for c in results if c.name in ("api", "supabase")):
            overall = HealthStatus.UNHEALTHY
        else:
            overall = HealthStatus.DEGRADED

        return HealthReport(status=overall, checks=results)

    async def check_api(self) -> CheckResult:
        """Check API is responsive."""
        start = time.time()
        return CheckResult(
            name="api",
            status=HealthStatus.HEALTHY,
            message="API is responsive",
            latency_ms=(time.time() - start) * 1000,
            details={"environment": self.settings.environment},
        )

    async def check_supabase(self) -> CheckResult:
        """Check Supabase database connectivity."""
        start = time.time()
        try:
            await self.store.ping()
            return CheckResult(
                name="supabase",
                status=HealthStatus.HEALTHY,
                message="Database connected",
                latency_ms=(time.time() - start) * 1000,
                details={"connected": True},
            )
        except Exception as e:
            logger.error(f"Supabase health check failed: {e}")
            return CheckResult(
                name="supabase",
                status=HealthStatus.UNHEALTHY,
                message=f"Database error: {str(e)}",
                latency_ms=(time.time() - start) * 1000,
            )

    async def check_composition_cache(self) -> CheckResult:
        """Report composition cache occupancy and hit rate."""
        stats = self.cache.stats()
        lookups = stats["hits"] + stats["misses"]
        hit_rate = stats["hits"] / lookups if lookups else 0.0
        full = stats["entries"] >= stats["max_entries"]
        return CheckResult(
            name="composition_cache",
            status=HealthStatus.DEGRADED if full else HealthStatus.HEALTHY,
            message=f"{stats['entries']} entries, {hit_rate:.0%} hit rate",
            details={**stats, "hit_rate": round(hit_rate, 3)},
        )

    async def check_detection(self) -> CheckResult:
        """Check the configured detection providers are usable."""
        strategy = self.settings.detection_strategy
        details = {
            "strategy": strategy,
            "vision_model": self.settings.vision_model,
            "openai_enabled": self.settings.openai_enabled,
            "late_tasks": len(self.late_tasks),
        }
        if strategy != "generic_only" and not self.settings.openai_enabled:
            return CheckResult(
                name="detection",
                status=HealthStatus.DEGRADED,
                message="OpenAI not configured; photos fall back to prompt parsing",
                details=details,
            )
        return CheckResult(
            name="detection",
            status=HealthStatus.HEALTHY,
            message=f"Strategy {strategy}",
            details=details,
        )

    async def check_feedback_lock(self) -> CheckResult:
        return CheckResult(
            name="feedback_lock",
            status=HealthStatus.HEALTHY,
            message=f"{len(self.lock)} keys held",
            details={"keys": len(self.lock)},
        )

    def pipeline_stats(self) -> dict:
        """In-process counters, no I/O."""
        return {
            "composition_cache": self.cache.stats(),
            "late_tasks": len(self.late_tasks),
            "feedback_locks": len(self.lock),
        }
