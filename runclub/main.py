import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from runclub.database import init_db
from runclub.config import get_settings
from runclub.errors import ClubError, ErrorCodes
from runclub.limiter import limiter
from runclub.services.scheduler import init_scheduler, shutdown_scheduler
from runclub.middleware.security import setup_security_middleware
from runclub.routers import (
    payments_router,
    push_router,
    events_router,
    attendees_router,
    admin_router
)

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    init_scheduler()
    yield
    shutdown_scheduler()


app = FastAPI(
    title="Run Club Payments",
    description="Payments, refunds and push notifications for a running club",
    version="1.0.0",
    lifespan=lifespan
)

# Add rate limiter to app state
app.state.limiter = limiter

setup_security_middleware(app, allowed_hosts=settings.allowed_hosts)


def error_response(status_code: int, code: str, details) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": code, "details": details})


@app.exception_handler(ClubError)
async def club_error_handler(request: Request, exc: ClubError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
    return error_response(exc.status_code, exc.code, exc.message)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = "; ".join(
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
    return error_response(400, ErrorCodes.VALIDATION_ERROR, details)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return error_response(429, ErrorCodes.RATE_LIMIT_EXCEEDED, f"Rate limit exceeded: {exc.detail}")


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    codes = {
        400: ErrorCodes.BAD_REQUEST,
        401: ErrorCodes.UNAUTHORIZED,
        403: ErrorCodes.FORBIDDEN,
        404: ErrorCodes.NOT_FOUND,
    }
    return error_response(exc.status_code, codes.get(exc.status_code, "HTTP_ERROR"), exc.detail)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return error_response(500, ErrorCodes.INTERNAL_SERVER_ERROR, "Internal server error")


app.include_router(payments_router)
app.include_router(push_router)
app.include_router(events_router)
app.include_router(attendees_router)
app.include_router(admin_router)


@app.get("/health")
def health():
    return {"status": "ok"}
