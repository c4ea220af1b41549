"""
Health checks for the pipeline service.

Each check returns a ``HealthCheck``; ``run_all_checks`` folds them into one
overall status. Only the database is critical for readiness: without a text
generation key the pipeline still runs on fallback summaries.
"""

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx

from shared.app_logging.logger import get_logger
from shared.database.store import ArticleStore
from shared.schemas.messages import FeedDescriptor

CRITICAL_CHECKS = ("database",)


class HealthStatus(Enum):
    """Health status enumeration."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DEGRADED = "degraded"
    UNKNOWN = "unknown"


@dataclass
class HealthCheck:
    """Individual health check result."""

    name: str
    status: HealthStatus
    message: str
    response_time_ms: Optional[float] = None
    details: Optional[Dict[str, Any]] = None
    timestamp: datetime = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now(timezone.utc)


def _elapsed_ms(started: float) -> float:
    return round((time.monotonic() - started) * 1000, 2)


class HealthChecker:
    def __init__(self, service_name: str):
        self.service_name = service_name
        self.logger = get_logger(f"{service_name}.health")
        self.checks: List[Callable[[], HealthCheck]] = []

    def add_check(self, check_func: Callable[[], HealthCheck]):
        self.checks.append(check_func)

    def check_database(self, store: ArticleStore) -> HealthCheck:
        started = time.monotonic()
        try:
            store.ping()
            return HealthCheck(
                name="database",
                status=HealthStatus.HEALTHY,
                message="Database connection successful",
                response_time_ms=_elapsed_ms(started),
            )
        except Exception as e:
            self.logger.error(f"❌ Database health check failed: {e}")
            return HealthCheck(
                name="database",
                status=HealthStatus.UNHEALTHY,
                message=f"Database connection failed: {str(e)}",
                response_time_ms=_elapsed_ms(started),
            )

    def check_openai(self, configured: bool) -> HealthCheck:
        """No API call: a missing key only degrades summaries to the fallback."""
        if configured:
            return HealthCheck(name="openai", status=HealthStatus.HEALTHY, message="OpenAI client configured")
        return HealthCheck(
            name="openai",
            status=HealthStatus.DEGRADED,
            message="OPENAI_API_KEY not set; summaries use the title fallback",
        )

    def check_http_endpoint(
        self,
        url: str,
        name: str = "http_endpoint",
        timeout: float = 5.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> HealthCheck:
        """Unreachable feeds only degrade the service; other feeds keep working."""
        started = time.monotonic()
        try:
            with httpx.Client(timeout=timeout, follow_redirects=True, transport=transport) as client:
                response = client.get(url)
                response.raise_for_status()
            return HealthCheck(
                name=name,
                status=HealthStatus.HEALTHY,
                message=f"HTTP endpoint {url} is accessible",
                response_time_ms=_elapsed_ms(started),
            )
        except httpx.HTTPError as e:
            return HealthCheck(
                name=name,
                status=HealthStatus.DEGRADED,
                message=f"HTTP endpoint {url} failed: {str(e)}",
                response_time_ms=_elapsed_ms(started),
            )

    def run_all_checks(self) -> Dict[str, Any]:
        """Run all registered health checks."""
        results = []
        overall_status = HealthStatus.HEALTHY

        for check_func in self.checks:
            try:
                result = check_func()
            except Exception as e:
                result = HealthCheck(
                    name=getattr(check_func, "__name__", "check"),
                    status=HealthStatus.UNHEALTHY,
                    message=f"Health check failed with exception: {str(e)}",
                )
            results.append(result)

            if result.status == HealthStatus.UNHEALTHY:
                overall_status = HealthStatus.UNHEALTHY
            elif result.status == HealthStatus.DEGRADED and overall_status == HealthStatus.HEALTHY:
                overall_status = HealthStatus.DEGRADED

        return {
            "service": self.service_name,
            "status": overall_status.value,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "checks": [
                {
                    "name": check.name,
                    "status": check.status.value,
                    "message": check.message,
                    "response_time_ms": check.response_time_ms,
                    "details": check.details,
                    "timestamp": check.timestamp.isoformat(),
                }
                for check in results
            ],
        }

    def readiness(self) -> Dict[str, Any]:
        health_data = self.run_all_checks()
        critical = [check for check in health_data["checks"] if check["name"] in CRITICAL_CHECKS]
        ready = all(check["status"] == "healthy" for check in critical)
        return {
            "status": "ready" if ready else "not_ready",
            "service": self.service_name,
            "critical_dependencies": {check["name"]: check["status"] for check in critical},
            "timestamp": health_data["timestamp"],
        }


def create_pipeline_health_checker(
    store: ArticleStore,
    openai_configured: bool,
    feeds: Sequence[FeedDescriptor] = (),
    max_feed_checks: int = 3,
    service_name: str = "orchestrator",
) -> HealthChecker:
    checker = HealthChecker(service_name)
    checker.add_check(lambda: checker.check_database(store))
    checker.add_check(lambda: checker.check_openai(openai_configured))
    for feed in list(feeds)[:max_feed_checks]:
        checker.add_check(lambda f=feed: checker.check_http_endpoint(f.address, f"feed:{f.name}"))
    return checker
