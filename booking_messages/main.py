from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError, OperationalError
from starlette import status
from booking_messages.database import Base, engine
from booking_messages.config import settings
from booking_messages.exceptions import MessagingError, StorageError
from booking_messages.Middleware.audit_middleware import audit_log_middleware
from booking_messages import models  # noqa: F401  registers tables on Base.metadata
from booking_messages.limits import limiter, RateLimitExceeded, SlowAPIMiddleware
from slowapi import _rate_limit_exceeded_handler
import logging

logger = logging.getLogger(__name__)


from booking_messages.routers import messages

app = FastAPI(title="Booking Messages")
app.middleware("http")(audit_log_middleware)

# CORS (permissive for development; tighten in production)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)


def _error_response(status_code: int, detail: str, error: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "detail": detail, "error": error},
    )


@app.exception_handler(MessagingError)
async def messaging_error_handler(request: Request, exc: MessagingError):
    """Client errors carry a terse detail; storage errors were logged where raised."""
    if not isinstance(exc, StorageError):
        logger.info(
            "%s %s rejected: %s (%s)",
            request.method,
            request.url.path,
            exc.error,
            exc.detail,
        )
    return _error_response(exc.status_code, exc.detail, exc.error)


@app.exception_handler(OperationalError)
async def database_operational_error_handler(request: Request, exc: OperationalError):
    """Handle database connection/operation errors"""
    logger.error(f"Database operational error: {exc}", exc_info=True)
    error_msg = str(exc).lower()

    if "could not connect" in error_msg or "connection" in error_msg:
        return _error_response(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "Database connection error. Please try again.",
            "database_connection_error",
        )
    elif "timeout" in error_msg:
        return _error_response(
            status.HTTP_504_GATEWAY_TIMEOUT,
            "Database query timeout. Please try again.",
            "database_timeout",
        )

    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR, "Database error occurred", "database_error"
    )


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    """Handle general SQLAlchemy errors"""
    logger.error(f"Database error: {exc}", exc_info=True)
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR, "Database error occurred", "database_error"
    )


# Production databases are managed with Alembic migrations
if settings.DATABASE_URL.startswith("sqlite"):
    Base.metadata.create_all(bind=engine)


@app.get("/healthy", status_code=status.HTTP_200_OK)
def health_check():
    return {"status": "Healthy"}


app.include_router(messages.router)
