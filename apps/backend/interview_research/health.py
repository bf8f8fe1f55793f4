"""Dependency health checks for the /health endpoint."""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from typing import Any, Literal

import httpx
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

CHECK_TIMEOUT = 2.0


@dataclass
class ServiceHealth:
    """Health status for a service dependency."""

    status: Literal["connected", "unreachable", "error"]
    latency_ms: float | None = None
    error: str | None = None


async def _timed(check: Callable[[], Awaitable[str | None]]) -> ServiceHealth:
    """Run a check under CHECK_TIMEOUT and time it.

    The check returns None when the dependency answered correctly, or a
    short error string when it answered wrongly.
    """
    start = time.perf_counter()
    try:
        async with asyncio.timeout(CHECK_TIMEOUT):
            problem = await check()
    except asyncio.TimeoutError:
        return ServiceHealth(status="unreachable", error="timeout")
    except (httpx.ConnectError, OSError) as e:
        return ServiceHealth(status="unreachable", error=str(e))
    except Exception as e:
        return ServiceHealth(status="error", error=str(e))

    if problem is not None:
        return ServiceHealth(status="error", error=problem)
    latency = (time.perf_counter() - start) * 1000
    return ServiceHealth(status="connected", latency_ms=round(latency, 2))


async def check_database(engine: AsyncEngine) -> ServiceHealth:
    """Run SELECT 1 on a pooled connection of the application engine."""

    async def check() -> None:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    return await _timed(check)


async def check_ollama(
    base_url: str, transport: httpx.AsyncBaseTransport | None = None
) -> ServiceHealth:
    """Check that the Ollama API answers its model listing.

    Args:
        base_url: Ollama base URL (e.g., http://localhost:11434)
        transport: Optional httpx transport (tests)
    """

    async def check() -> str | None:
        async with httpx.AsyncClient(transport=transport) as client:
            response = await client.get(f"{base_url}/api/tags")
        if response.status_code != 200:
            return f"HTTP {response.status_code}"
        return None

    return await _timed(check)


async def collect_health(
    engine: AsyncEngine,
    ollama_base_url: str,
    search_enabled: bool,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, Any]:
    """Check all dependencies concurrently and build the /health payload.

    The service is "healthy" only when the database and the LLM both
    answer; search is reported as configured or disabled without a call.
    """
    database, ollama = await asyncio.gather(
        check_database(engine),
        check_ollama(ollama_base_url, transport=transport),
    )
    return {
        "status": (
            "healthy"
            if database.status == ollama.status == "connected"
            else "degraded"
        ),
        "dependencies": {
            "database": asdict(database),
            "ollama": asdict(ollama),
            "search": {"status": "configured" if search_enabled else "disabled"},
        },
    }
