from __future__ import annotations

from typing import Any, AsyncIterator, Callable, TypeVar

from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from sse_starlette.sse import EventSourceResponse

from traverse.config import settings
from traverse.models.events import BaseEvent
from traverse.services import logger as log_service
from traverse.services import rate_limit
from traverse.services.sse import SSE_HEADERS, guard_stream

ModelT = TypeVar("ModelT", bound=BaseModel)


class RequestRejected(Exception):
    """Raised before streaming starts; rendered as a JSON error response."""

    def __init__(self, status_code: int, body: dict[str, Any], headers: dict[str, str] | None = None):
        super().__init__(body.get("error", "Request rejected"))
        self.status_code = status_code
        self.body = body
        self.headers = headers or {}


async def request_rejected_handler(request: Request, exc: RequestRejected) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.body, headers=exc.headers)


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    log_service.logger.exception(f"Unhandled error on {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def rate_limited(config: rate_limit.RateLimitConfig, scope: str) -> Callable[[Request], None]:
    """Route dependency enforcing a fixed-window limit per client and route."""

    def dependency(request: Request) -> None:
        if not settings.rate_limit_enabled:
            return
        peer = request.client.host if request.client else None
        client_id = rate_limit.client_identifier(request.headers, peer)
        result = rate_limit.limiter.check(f"{scope}:{client_id}", config)
        if result.allowed:
            return
        log_service.log_event(
            event_type="rate_limited",
            message=f"Rate limit exceeded on {scope}",
            client=client_id,
            reset_in=result.reset_in,
        )
        raise RequestRejected(
            429,
            {
                "error": "Too many requests",
                "message": f"Rate limit exceeded. Please try again in {result.reset_in} seconds.",
            },
            headers=result.headers(),
        )

    return dependency


async def read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError as exc:
        raise RequestRejected(400, {"error": "Invalid JSON body"}) from exc


def validation_details(exc: ValidationError) -> str:
    return ", ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
    )


def validate_body(model: type[ModelT], body: Any) -> ModelT:
    try:
        return model.model_validate(body)
    except ValidationError as exc:
        raise RequestRejected(400, {"error": "Validation failed", "details": validation_details(exc)}) from exc


def event_stream(source: AsyncIterator[BaseEvent], label: str) -> EventSourceResponse:
    """Frame an event producer as an SSE response ending with ``[DONE]``."""

    async def frames():
        async for payload in guard_stream(source, timeout=settings.stream_timeout_seconds, label=label):
            yield {"data": payload}

    return EventSourceResponse(frames(), headers=SSE_HEADERS, sep="\n")
