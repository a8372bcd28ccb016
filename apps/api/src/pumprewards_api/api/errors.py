"""Map typed points failures onto JSON responses."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from pumprewards_api.services.points.errors import PointsError


async def points_error_handler(request: Request, exc: PointsError) -> JSONResponse:
    logger.bind(context=exc.context).info(
        "Points request failed",
        path=request.url.path,
        code=exc.code,
        status_code=exc.status_code,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.as_payload())


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PointsError, points_error_handler)
