"""Response envelope and exception handlers.

Every endpoint answers ``{"success": bool, "message": str, "data"?: any}``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class CamelModel(BaseModel):
    """Request body accepting camelCase keys as well as snake_case ones."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def success_response(message: str, data: Any = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"success": True, "message": message}
    if data is not None:
        payload["data"] = data
    return payload


def error_payload(message: str, error_code: Optional[str] = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"success": False, "message": message}
    if error_code:
        payload["error_code"] = error_code
    return payload


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
    field = ".".join(location)
    message = str(first.get("msg", "Invalid value"))
    return f"{field}: {message}" if field else message


async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail if isinstance(exc.detail, str) else jsonable_encoder(exc.detail)
    message = detail if isinstance(detail, str) else "Request failed"
    content = error_payload(message, getattr(exc, "error_code", None))
    if not isinstance(detail, str):
        content["data"] = detail
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info("Validation error at %s: %s", request.url.path, exc.errors())
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_payload(_validation_message(exc), "VALIDATION_ERROR"),
    )


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error at %s", request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_payload("Server error"),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register envelope-producing handlers with the FastAPI app."""
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
