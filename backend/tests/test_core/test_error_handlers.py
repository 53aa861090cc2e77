import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from coach_core.core.errors import MemoryCircuitOpenError, register_error_handlers


def _app(**kwargs) -> FastAPI:
    app = FastAPI()
    register_error_handlers(app, **kwargs)

    @app.get("/memory")
    async def memory():
        raise MemoryCircuitOpenError()

    return app


async def _get_memory(app: FastAPI):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        return await client.get("/memory")


@pytest.mark.asyncio
@pytest.mark.parametrize("reset_ms, expected", [(8000, "8"), (2500, "3"), (30_000, "30"), (200, "1")])
async def test_retry_after_follows_breaker_reset_window(reset_ms, expected):
    """Circuit-open responses ask clients to come back after the reset window."""
    response = await _get_memory(_app(memory_reset_timeout_ms=reset_ms))
    assert response.status_code == 503
    assert response.headers["Retry-After"] == expected
    assert response.json()["detail"] == "memory_circuit_open"


@pytest.mark.asyncio
async def test_retry_after_default():
    response = await _get_memory(_app())
    assert response.headers["Retry-After"] == "8"
