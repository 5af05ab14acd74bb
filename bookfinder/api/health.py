"""Health check routes"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from starlette.requests import Request
from starlette.responses import JSONResponse

from bookfinder.api.books import ServicesProvider
from bookfinder.config import config

logger = logging.getLogger(__name__)


def _timestamp() -> str:
    return datetime.now(UTC).isoformat()


class HealthApi:
    """Liveness and database readiness checks"""

    def __init__(self, get_services: ServicesProvider):
        self._services = get_services

    def routes(self) -> list[tuple[str, list[str], Callable]]:
        return [
            ("/", ["GET"], self.status),
            ("/health", ["GET"], self.status),
            ("/api/health", ["GET"], self.health),
            ("/api/health/ping", ["GET"], self.ping),
        ]

    async def status(self, request: Request) -> JSONResponse:
        return JSONResponse({"status": "ok"})

    async def ping(self, request: Request) -> JSONResponse:
        """Answer without touching the database"""
        return JSONResponse({"status": "ok", "timestamp": _timestamp()})

    async def health(self, request: Request) -> JSONResponse:
        """Report whether the database is reachable"""
        try:
            services = await self._services()
            healthy = await services.store.health_check()
            reason = None if healthy else "Database is not initialized"
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            healthy = False
            reason = str(e)

        body = {
            "status": "healthy" if healthy else "unhealthy",
            "timestamp": _timestamp(),
            "database": "connected" if healthy else "disconnected",
            "version": config.service_version,
        }
        if not healthy:
            body["error"] = reason
        return JSONResponse(body, status_code=200 if healthy else 503)
