"""Unauthenticated health endpoints."""
import logging
import os
import time
from datetime import datetime, timezone

import psutil
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from agentcore.config import SERVICE_VERSION
from agentcore.db.models import AgentState
from agentcore.envelope import ok
from agentcore.errors import AgentCoreError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/health", tags=["health"])


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _unhealthy(data: dict, message: str) -> JSONResponse:
    return JSONResponse(status_code=503, content={
        "success": False,
        "data": data,
        "error": {"code": "UpstreamUnavailable", "message": message},
    })


def system_health(services) -> dict:
    vm = psutil.virtual_memory()
    proc = psutil.Process(os.getpid())
    try:
        load_average = list(os.getloadavg())
    except (AttributeError, OSError):
        load_average = []
    return {
        "status": "healthy",
        "version": SERVICE_VERSION,
        "timestamp": _now(),
        "uptime": round(services.uptime, 3),
        "memory": {
            "total": vm.total,
            "free": vm.available,
            "used": vm.total - vm.available,
            "usagePercentage": vm.percent,
            "processRss": proc.memory_info().rss,
        },
        "cpu": {
            "loadAverage": load_average,
            "cpus": psutil.cpu_count() or 0,
            "percent": psutil.cpu_percent(interval=None),
        },
    }


def agents_health(services) -> dict:
    statuses = services.registry.status_all()
    degraded = any(s["status"] == AgentState.ERROR.value for s in statuses.values())
    return {
        "status": "degraded" if degraded else "healthy",
        "timestamp": _now(),
        "agents": statuses,
        "metrics": {
            "totalAgents": len(statuses),
            "activeAgents": services.registry.live_count(),
        },
        "cache": services.cache.stats(),
    }


async def database_health(services) -> tuple[bool, dict]:
    try:
        probe = await services.store_probe()
        return True, {"status": "healthy", "timestamp": _now(), "database": probe}
    except Exception as e:
        logger.warning(f"Database health probe failed: {e}")
        return False, {
            "status": "unhealthy",
            "timestamp": _now(),
            "database": {"connected": False, "lastError": str(e)},
        }


async def ai_health(services) -> tuple[bool, dict]:
    client = services.model_client
    started = time.perf_counter()
    try:
        await client.probe()
    except AgentCoreError as e:
        return False, {
            "status": "unhealthy",
            "timestamp": _now(),
            "ai": {"model": client.model_id, "connected": False, "lastError": e.message},
        }
    return True, {
        "status": "healthy",
        "timestamp": _now(),
        "ai": {
            "model": client.model_id,
            "connected": True,
            "responseTime": round((time.perf_counter() - started) * 1000, 3),
        },
    }


@router.get("")
async def health(request: Request):
    return ok(system_health(request.app.state.services))


@router.get("/agents")
async def health_agents(request: Request):
    return ok(agents_health(request.app.state.services))


@router.get("/database")
async def health_database(request: Request):
    healthy, data = await database_health(request.app.state.services)
    return ok(data) if healthy else _unhealthy(data, "Interaction store unavailable")


@router.get("/ai")
async def health_ai(request: Request):
    healthy, data = await ai_health(request.app.state.services)
    return ok(data) if healthy else _unhealthy(data, "Model provider unavailable")


@router.get("/all")
async def health_all(request: Request):
    services = request.app.state.services
    db_ok, db = await database_health(services)
    ai_ok, ai = await ai_health(services)
    agents = agents_health(services)
    overall = "healthy"
    if not (db_ok and ai_ok):
        overall = "unhealthy"
    elif agents["status"] != "healthy":
        overall = "degraded"
    data = {
        "status": overall,
        "timestamp": _now(),
        "system": system_health(services),
        "agents": agents,
        "database": db,
        "ai": ai,
    }
    return ok(data) if overall != "unhealthy" else _unhealthy(data, "One or more dependencies are unavailable")
