from datetime import datetime
from typing import Callable, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from ..core.database import get_db
from ..core.security import bearer_scheme, verify_token
from ..core.session_store import SessionStore, get_session_store
from ..models.user import User
from ..services.certificate_audit_service import CertificateAuditService
from ..services.certificate_service import CertificateService
from ..services.email_service import EmailService
from ..services.test_session_service import TestSessionService
from ..services.user_service import UserService
from ..utils.timezone import utcnow


def get_clock() -> Callable[[], datetime]:
    return utcnow


def get_store() -> SessionStore:
    return get_session_store()


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db)
) -> User:
    user = None
    if credentials is not None:
        user_id = verify_token(credentials.credentials)
        if user_id:
            user = UserService(db).get_user_by_id(user_id)

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def get_current_admin(
    current_user: User = Depends(get_current_user),
) -> User:
    if not current_user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return current_user


def ensure_owner_or_admin(owner_id: str, current_user: User) -> None:
    if owner_id != current_user.id and not current_user.is_admin:
        raise HTTPException(status_code=403, detail="Access denied")


def get_test_session_service(
    db: Session = Depends(get_db),
    store: SessionStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> TestSessionService:
    return TestSessionService(db, store, clock=clock)


def get_certificate_service(
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> CertificateService:
    return CertificateService(db, clock=clock)


def get_audit_service(
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> CertificateAuditService:
    return CertificateAuditService(db, clock=clock)


def get_email_service() -> EmailService:
    return EmailService()


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


def user_agent(request: Request) -> str:
    return request.headers.get("user-agent", "unknown")
