"""Translate scheduling errors into JSON responses."""
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from scheduling.errors import SchedulingError

logger = logging.getLogger("scheduling.http")


def add_scheduling_error_handlers(app: FastAPI, service_name: str) -> None:
    @app.exception_handler(SchedulingError)
    async def scheduling_error_handler(request: Request, exc: SchedulingError) -> JSONResponse:
        logger.info(
            "%s %s %s -> %s %s",
            service_name,
            request.method,
            request.url.path,
            exc.status_code,
            exc.error,
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
