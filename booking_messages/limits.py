from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from booking_messages.services.auth_service import token_user_id


def sender_key(request: Request) -> str:
    """Rate-limit sends per authenticated user, per client address otherwise."""
    user_id = token_user_id(request.headers.get("authorization"))
    if user_id is not None:
        return f"user:{user_id}"
    return get_remote_address(request)


limiter = Limiter(key_func=sender_key)

__all__ = [
    "limiter",
    "sender_key",
    "RateLimitExceeded",
    "SlowAPIMiddleware",
]
