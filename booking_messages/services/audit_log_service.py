from typing import Optional
from fastapi import Request
from sqlalchemy.orm import Session
from booking_messages.models.audit_log import AuditLog


class AuditLogService:
    """Central service for writing audit log entries"""

    def create_log(
        self,
        db: Session,
        action: str,
        resource_type: str,
        resource_id: Optional[str] = None,
        user_id: Optional[int] = None,
        details: Optional[dict] = None,
        status: str = "success",
        status_code: Optional[int] = None,
        error_message: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        request_method: Optional[str] = None,
        request_path: Optional[str] = None,
        duration_ms: Optional[int] = None,
    ) -> AuditLog:
        log = AuditLog(
            user_id=user_id,
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id is not None else None,
            details=details,
            status=status,
            status_code=status_code,
            error_message=error_message,
            ip_address=ip_address,
            user_agent=user_agent,
            request_method=request_method,
            request_path=request_path,
            duration_ms=duration_ms,
        )

        db.add(log)
        try:
            db.commit()
            db.refresh(log)
        except Exception:
            db.rollback()
            raise
        return log

    def log_request(
        self,
        db: Session,
        http_req: Request,
        action: str,
        resource_type: str,
        user_id: Optional[int],
        status_code: int,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> AuditLog:
        """Record a successful API action with the caller's request context."""
        return self.create_log(
            db=db,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            user_id=user_id,
            details=details,
            status="success",
            status_code=status_code,
            ip_address=http_req.headers.get("x-forwarded-for")
            or (http_req.client.host if http_req.client else None),
            user_agent=http_req.headers.get("user-agent"),
            request_method=http_req.method,
            request_path=http_req.url.path,
        )
