from datetime import timedelta
from typing import Optional

from fastapi.security import HTTPBearer
from jose import JWTError, jwt

from .config import settings
from ..utils.timezone import utcnow

# sign-in lives in the external identity service; it hands us a bearer JWT whose sub is the user id
bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(subject: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = utcnow() + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode = {"sub": subject, "exp": expire}
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def verify_token(token: str) -> Optional[str]:
    """Returns the token subject, None when the token is invalid or expired."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
    return payload.get("sub")
