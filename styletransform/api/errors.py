# styletransform/api/errors.py
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from starlette.exceptions import HTTPException as StarletteHTTPException

from styletransform.api.utils.http import fail
from styletransform.runtime.orchestrator import GenerationError

log = logging.getLogger(__name__)

_HTTP_CODES = {
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
}


class UsageLimitExceeded(Exception):
    def __init__(self, used: int, limit: int):
        super().__init__(f"Generation limit reached ({used}/{limit})")
        self.used = used
        self.limit = limit


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def on_request_validation_error(request: Request, exc: RequestValidationError):
        return fail(
            "VALIDATION_ERROR",
            "Request validation failed",
            request=request,
            details={"errors": jsonable_encoder(exc.errors())},
            status_code=422,
        )

    @app.exception_handler(StarletteHTTPException)
    async def on_http_exception(request: Request, exc: StarletteHTTPException):
        code = _HTTP_CODES.get(exc.status_code, "HTTP_ERROR")
        return fail(
            code,
            str(exc.detail) if exc.detail else "HTTP error",
            request=request,
            status_code=exc.status_code,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(UsageLimitExceeded)
    async def on_usage_limit(request: Request, exc: UsageLimitExceeded):
        return fail(
            "GENERATION_LIMIT_REACHED",
            "Generation limit reached. Upgrade to premium for more generations.",
            request=request,
            details={"used": exc.used, "limit": exc.limit},
            status_code=403,
        )

    @app.exception_handler(GenerationError)
    async def on_generation_error(request: Request, exc: GenerationError):
        log.error("event=api.generate.error error=%s", exc)
        return fail(
            "GENERATION_FAILED",
            "Image generation failed",
            request=request,
            status_code=500,
        )
