import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from loyalty.api.v1.router import api_router
from loyalty.core.config import settings
from loyalty.core.database import init_db
from loyalty.core.exceptions import AppException
from loyalty.core.logging import configure_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.LOG_LEVEL)
    init_db()
    logger.info("%s %s started (%s)", settings.PROJECT_NAME, settings.VERSION, settings.ENVIRONMENT)
    yield


app = FastAPI(title=settings.PROJECT_NAME, version=settings.VERSION, lifespan=lifespan)


@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error_code": exc.error_code, "message": exc.message, "details": exc.details},
    )


@app.get("/health")
async def health():
    return {"status": "ok", "version": settings.VERSION}


app.include_router(api_router, prefix="/api/v1")
