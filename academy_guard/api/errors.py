"""Map engine exceptions onto JSON error responses."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from academy_guard.core.exceptions import AcademyGuardError
from academy_guard.core.logging import get_logger

log = get_logger(__name__)


async def guard_error_handler(request: Request, exc: AcademyGuardError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error(
            "request_failed",
            path=request.url.path,
            code=exc.code,
            error=str(exc),
            context=exc.context,
        )
    else:
        log.info("request_refused", path=request.url.path, code=exc.code)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.code})


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AcademyGuardError, guard_error_handler)
