"""Rendering of codesearch errors as HTTP responses."""

from __future__ import annotations

import datetime as _dt
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..core.errors import CodeSearchError, RateLimited

logger = logging.getLogger(__name__)


def error_body(message: str, code: str, request: Request) -> dict:
    return {
        "success": False,
        "error": {"message": message, "code": code},
        "meta": {
            "timestamp": _dt.datetime.now(_dt.timezone.utc).isoformat(),
            "requestId": request.headers.get("x-request-id", "unknown"),
        },
    }


async def handle_codesearch_error(request: Request, exc: CodeSearchError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{exc.kind} on {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.kind} on {request.url.path}: {exc.message}")

    body = error_body(exc.message, exc.code, request)
    headers = {}
    if isinstance(exc, RateLimited):
        headers["Retry-After"] = str(exc.retry_after)
        body["error"]["retryAfter"] = exc.retry_after
    if exc.report is not None:
        body["error"]["report"] = exc.report.to_dict()
    return JSONResponse(status_code=exc.status_code, content=body, headers=headers)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CodeSearchError, handle_codesearch_error)
