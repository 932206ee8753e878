from datetime import datetime, timedelta, timezone
from typing import Annotated, Optional
from fastapi import Depends, HTTPException
from jose import JWTError, jwt
from starlette import status
from booking_messages.config import settings
from fastapi.security import OAuth2PasswordBearer

SECRET_KEY = settings.SECRET_KEY
ALGORITHM = settings.ALGORITHM

# Tokens are issued by the accounts service; tokenUrl is only used by the docs UI
oauth2_bearer = OAuth2PasswordBearer(tokenUrl="auth/login")


def create_access_token(email: str, user_id: int, role: str, expires_delta: timedelta):
    encode = {"sub": email, "id": user_id, "role": role}
    expires = datetime.now(timezone.utc) + expires_delta
    encode.update({"exp": expires})
    return jwt.encode(encode, SECRET_KEY, algorithm=ALGORITHM)


async def get_current_user(token: Annotated[str, Depends(oauth2_bearer)]):
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        email: str = payload.get("sub")
        user_id: int = payload.get("id")
        role: str = payload.get("role")
        if not email or not user_id:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="User not authenticated",
            )
        return {"email": email, "id": user_id, "role": role}
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not authenticated",
        )


def token_user_id(authorization: Optional[str]) -> Optional[int]:
    """User id from a bearer Authorization header, or None when absent or invalid.

    For request bookkeeping only; endpoints authenticate via get_current_user.
    """
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    try:
        payload = jwt.decode(token.strip(), SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    return payload.get("id")
