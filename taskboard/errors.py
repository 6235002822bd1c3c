"""Render every error as ``{"error": "..."}``."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from taskboard.config import get_settings

logger = logging.getLogger(__name__)


def server_error(message: str, exc: Optional[BaseException] = None) -> HTTPException:
    """500 whose underlying cause is shown only in development."""
    body = {"error": message}
    if exc is not None and get_settings().expose_error_details:
        body["details"] = str(exc)
    return HTTPException(status_code=500, detail=body)


def error_body(detail) -> dict:
    if isinstance(detail, dict) and "error" in detail:
        return detail
    return {"error": detail if isinstance(detail, str) else jsonable_encoder(detail)}


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.detail),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    missing = [str(err["loc"][-1]) for err in errors if err.get("type") == "missing"]
    if missing:
        content = {"error": "All fields are required", "missing": missing}
    else:
        first = errors[0] if errors else {}
        field = first.get("loc", ("body",))[-1]
        content = {"error": f"Invalid {field}: {first.get('msg', 'invalid value')}"}
    return JSONResponse(status_code=400, content=content)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content=error_body(server_error("Internal server error", exc).detail))


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
