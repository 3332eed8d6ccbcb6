from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from report_validation.api.middleware import RequestContextMiddleware
from report_validation.api.routes import bots, health, reports, workflows
from report_validation.config import settings
from report_validation.core.errors import ValidationEngineError
from report_validation.core.schemas import ErrorResponse
from report_validation.db import init_db

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("report_validation")


@asynccontextmanager
async def app_lifespan(_: FastAPI):
    init_db()
    yield


def create_app() -> FastAPI:
    app = FastAPI(title="Report Validation Workflow Engine", version="0.1.0", lifespan=app_lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestContextMiddleware)

    app.include_router(health.router)
    app.include_router(workflows.router)
    app.include_router(reports.router)
    app.include_router(bots.router)

    @app.exception_handler(ValidationEngineError)
    async def engine_error_handler(request: Request, exc: ValidationEngineError):
        request_id = getattr(request.state, "request_id", None)
        if exc.status_code >= 500:
            logger.warning("engine_error request_id=%s error=%s", request_id, exc)
        payload = ErrorResponse(error=str(exc), request_id=request_id)
        return JSONResponse(status_code=exc.status_code, content=payload.model_dump())

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        request_id = getattr(request.state, "request_id", None)
        payload = ErrorResponse(error=str(exc.detail), request_id=request_id)
        return JSONResponse(status_code=exc.status_code, content=payload.model_dump())

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        request_id = getattr(request.state, "request_id", None)
        logger.exception("unhandled_error request_id=%s", request_id)
        payload = ErrorResponse(error="internal_server_error", request_id=request_id)
        return JSONResponse(status_code=500, content=payload.model_dump())

    return app


app = create_app()
