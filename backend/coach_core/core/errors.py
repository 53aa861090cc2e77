"""Coach errors and structured error responses (consistent JSON for all errors)."""

import math

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

MEMORY_CIRCUIT_OPEN = "memory_circuit_open"


class MemoryCircuitOpenError(RuntimeError):
    """The memory breaker denied a call to the persistence port."""

    def __init__(self, message: str = MEMORY_CIRCUIT_OPEN):
        super().__init__(message)


def _error_body(request: Request, status_code: int, detail, **extra) -> dict:
    return {
        "error": True,
        "status_code": status_code,
        "detail": detail,
        **extra,
        "request_id": getattr(request.state, "request_id", None),
    }


def register_error_handlers(app: FastAPI, *, memory_reset_timeout_ms: int = 8000) -> None:
    """Register global exception handlers on the FastAPI app.

    The circuit-open response asks clients to retry once the memory breaker
    may half-open, i.e. after `memory_reset_timeout_ms`.
    """
    retry_after = str(max(1, math.ceil(memory_reset_timeout_ms / 1000)))

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(request, exc.status_code, exc.detail),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=_error_body(
                request, 422, "Validation error", errors=jsonable_errors(exc)
            ),
        )

    @app.exception_handler(MemoryCircuitOpenError)
    async def circuit_open_handler(request: Request, exc: MemoryCircuitOpenError):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=_error_body(request, 503, MEMORY_CIRCUIT_OPEN),
            headers={"Retry-After": retry_after},
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_error_body(request, 500, "Internal server error"),
        )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    # ctx may hold raw exception objects that JSONResponse cannot encode
    return [
        {key: value for key, value in err.items() if key != "ctx"}
        for err in exc.errors()
    ]
