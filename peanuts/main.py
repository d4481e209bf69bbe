from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from peanuts.config import Settings
from peanuts.controllers import html, v1
from peanuts.db import init_db
from peanuts.dependencies import ErrorResponse
from peanuts.logger import setup_logging
from peanuts.metrics import db_errors_total
from peanuts.models import ErrorCode
from peanuts.services.templates import init_templates

STATIC_DIR = Path(__file__).resolve().parent / "static"

settings = Settings()
setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_templates(settings)
    await asyncio.to_thread(init_db, settings)
    yield


app = FastAPI(
    title="Peanuts Gallery",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(html.router)
app.include_router(v1.router)
app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")


@app.exception_handler(IntegrityError)
async def integrity_error_handler(_request: Request, exc: IntegrityError):
    logger.warning("Constraint violation: %s", exc.orig)
    db_errors_total.labels(kind="integrity").inc()
    err = ErrorResponse(
        code=ErrorCode.CONSTRAINT_VIOLATION, message="Constraint violation"
    )
    return JSONResponse(status_code=409, content=err.model_dump(mode="json"))


@app.exception_handler(OperationalError)
async def operational_error_handler(_request: Request, exc: OperationalError):
    logger.error("Database unavailable: %s", exc.orig)
    db_errors_total.labels(kind="operational").inc()
    err = ErrorResponse(
        code=ErrorCode.SERVICE_UNAVAILABLE, message="Database unavailable"
    )
    return JSONResponse(status_code=503, content=err.model_dump(mode="json"))


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(_request: Request, exc: SQLAlchemyError):
    logger.exception("Database error", exc_info=exc)
    db_errors_total.labels(kind="other").inc()
    err = ErrorResponse(code=ErrorCode.INTERNAL_ERROR, message="Database error")
    return JSONResponse(status_code=500, content=err.model_dump(mode="json"))


Instrumentator().instrument(app).expose(app)


def run() -> None:
    """Serve the gallery with uvicorn on the configured address."""
    import uvicorn

    uvicorn.run(app, host=settings.bind_address, port=settings.bind_port)
