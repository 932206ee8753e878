import asyncio
import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError

from booking_messages.database import SessionLocal
from booking_messages.models.user import User
from booking_messages.services.audit_log_service import AuditLogService
from booking_messages.services.auth_service import token_user_id

logger = logging.getLogger(__name__)

# Thread pool for the blocking audit writes
_executor = ThreadPoolExecutor(max_workers=5)

SKIPPED_PATHS = {"/healthy", "/docs", "/openapi.json", "/redoc"}
CONVERSATION_PATH = "/messages/conversations/"


@dataclass(frozen=True)
class RequestContext:
    user_id: Optional[int]
    ip_address: Optional[str]
    user_agent: Optional[str]
    method: str
    path: str

    @property
    def resource(self):
        """(resource_type, resource_id) for the audit row.

        Conversation routes are keyed by conversation id so their audit
        trail can be filtered without parsing paths.
        """
        if self.path.startswith(CONVERSATION_PATH):
            key = self.path[len(CONVERSATION_PATH):].split("/", 1)[0]
            if key:
                return "conversation", key
        return "http", None

    @classmethod
    def from_request(cls, request: Request) -> "RequestContext":
        return cls(
            user_id=token_user_id(request.headers.get("authorization")),
            ip_address=request.headers.get("x-forwarded-for")
            or (request.client.host if request.client else None),
            user_agent=request.headers.get("user-agent"),
            method=request.method,
            path=request.url.path,
        )


def _log_audit_sync(
    context: RequestContext,
    status: str,
    status_code: Optional[int],
    error_message: Optional[str],
    duration_ms: int,
):
    """Write one http.request audit row; runs in the thread pool.

    Failures are logged and dropped so auditing never breaks a request.
    """
    resource_type, resource_id = context.resource
    db = SessionLocal()
    try:
        user_id = context.user_id
        # users live in another service; don't violate the FK for unknown ids
        if user_id is not None and db.get(User, user_id) is None:
            user_id = None

        AuditLogService().create_log(
            db=db,
            action="http.request",
            resource_type=resource_type,
            resource_id=resource_id,
            user_id=user_id,
            status=status,
            status_code=status_code,
            error_message=error_message,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            request_method=context.method,
            request_path=context.path,
            duration_ms=duration_ms,
        )
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning(
            "Audit logging failed for %s %s: %s", context.method, context.path, exc
        )
    finally:
        db.close()


async def audit_log_middleware(request: Request, call_next):
    """Record every API request in the audit log without blocking the response.

    Disabled when TESTING=true.
    """
    if os.getenv("TESTING") == "true" or request.url.path in SKIPPED_PATHS:
        return await call_next(request)

    started = time.monotonic()
    context = RequestContext.from_request(request)
    loop = asyncio.get_running_loop()

    def elapsed_ms() -> int:
        return int((time.monotonic() - started) * 1000)

    try:
        response = await call_next(request)
    except Exception as exc:
        # the exception type only; messages can quote request content
        loop.run_in_executor(
            _executor, _log_audit_sync, context, "error", None, type(exc).__name__, elapsed_ms()
        )
        raise

    status_code = getattr(response, "status_code", None)
    status = "success" if status_code and status_code < 400 else "failure"
    loop.run_in_executor(
        _executor, _log_audit_sync, context, status, status_code, None, elapsed_ms()
    )
    return response
