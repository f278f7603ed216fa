"""Progression Service API - FastAPI with DynamoDB-backed XP, streaks and adaptive practice"""
import logging
from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from progression_service.config import get_settings
from progression_service.errors import (
    ProgressionError,
    NotConfiguredError,
    ConflictExhaustedError,
    ProgressValidationError,
    TransientIOError,
    LedgerTimeoutError
)
from progression_service.routers import progress, streaks, practice, daily_problems
from progression_service.services.ledger_service import LedgerService, get_ledger_service

settings = get_settings()
logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Progression Service API",
    description="Profile-scoped XP ledger, streaks and adaptive practice",
    version=settings.VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc"
)

app.include_router(progress.router, prefix="/api/v1")
app.include_router(streaks.router, prefix="/api/v1")
app.include_router(practice.router, prefix="/api/v1")
app.include_router(daily_problems.router, prefix="/api/v1")

app.add_middleware(CORSMiddleware, allow_origins=settings.CORS_ORIGINS, allow_credentials=True, allow_methods=["*"], allow_headers=["*"])

ERROR_STATUS = {
    ProgressValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    NotConfiguredError: status.HTTP_503_SERVICE_UNAVAILABLE,
    ConflictExhaustedError: status.HTTP_409_CONFLICT,
    TransientIOError: status.HTTP_502_BAD_GATEWAY,
    LedgerTimeoutError: status.HTTP_504_GATEWAY_TIMEOUT,
}


@app.exception_handler(ProgressionError)
async def progression_error_handler(request: Request, exc: ProgressionError):
    status_code = ERROR_STATUS.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
    if status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message} {exc.context()}")
    else:
        logger.warning(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message} {exc.context()}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "error": type(exc).__name__, "context": exc.context()}
    )


@app.get("/")
async def root():
    return {"service": "progression-service", "status": "running", "version": settings.VERSION}


@app.get("/health")
async def health(service: LedgerService = Depends(get_ledger_service)):
    return await service.health()
