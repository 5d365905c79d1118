from contextlib import asynccontextmanager

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from capgate.config import settings
from capgate.dependencies import get_cap_service
from capgate.exceptions import (
    CapError,
    ChallengeExpired,
    GenerationError,
    InvalidChallenge,
    InvalidSolutions,
    RateLimited,
    StorageError,
    StorageNotDefined,
)
from capgate.logging_config import setup_logging
from capgate.middleware.logging import CORRELATION_HEADER, LoggingMiddleware
from capgate.middleware.rate_limit import limiter
from capgate.routers import challenges
from capgate.scheduler import shutdown_scheduler, start_scheduler
from capgate.services.cap_service import CapService

logger = structlog.get_logger()

CAP_ERROR_STATUS = {
    InvalidChallenge: 400,
    ChallengeExpired: 400,
    InvalidSolutions: 400,
    RateLimited: 429,
    StorageError: 503,
    StorageNotDefined: 503,
    GenerationError: 500,
}


def check_storage(cap: CapService) -> None:
    """Fail fast if the configured storage backend is unusable."""
    if cap.is_available():
        return
    hint = ""
    if settings.storage_backend == "sql":
        hint = " Run: alembic upgrade head"
    raise RuntimeError(f"Storage backend '{settings.storage_backend}' is not available.{hint}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging, verify storage, start/stop the cleanup scheduler."""
    setup_logging()
    check_storage(get_cap_service())
    start_scheduler()
    yield
    shutdown_scheduler()


app = FastAPI(
    title="capgate",
    description="Proof-of-work CAPTCHA alternative: challenges, redemption, one-time tokens",
    version="0.1.0",
    lifespan=lifespan,
)

# Operator endpoint limits
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(CapError)
async def cap_error_handler(request: Request, exc: CapError) -> JSONResponse:
    status_code = CAP_ERROR_STATUS.get(type(exc), 400)
    if status_code >= 500:
        logger.error("cap_error", kind=type(exc).__name__, error=exc.message)
    else:
        logger.info("cap_error", kind=type(exc).__name__, error=exc.message)
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": exc.message, "code": exc.code},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    response = JSONResponse(status_code=500, content={"detail": "Internal Server Error"})
    correlation_id = getattr(request.state, "correlation_id", None)
    if correlation_id:
        response.headers[CORRELATION_HEADER] = correlation_id
    return response


app.add_middleware(LoggingMiddleware)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(challenges.router, prefix="/api/v1", tags=["cap"])


@app.get("/health")
def health_check(cap: CapService = Depends(get_cap_service)):
    return {"status": "healthy", "storage": cap.is_available()}
