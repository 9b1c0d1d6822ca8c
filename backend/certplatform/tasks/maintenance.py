import logging
import shutil
from datetime import datetime
from typing import Callable, Dict, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.cache import cache
from ..core.celery_app import celery_app
from ..core.config import settings
from ..core.database import SessionLocal
from ..core.session_store import SessionStore, get_session_store
from ..services.test_session_service import TestSessionService
from ..utils.timezone import utcnow

logger = logging.getLogger(__name__)


def run_session_sweep(
    db: Optional[Session] = None,
    store: Optional[SessionStore] = None,
    clock: Callable[[], datetime] = utcnow,
) -> Dict[str, int]:
    """Auto-submit every expired session left in the store"""
    own_session = db is None
    db = db or SessionLocal()
    try:
        service = TestSessionService(db, store or get_session_store(), clock=clock)
        return service.cleanup_expired_sessions()
    finally:
        if own_session:
            db.close()


@celery_app.task(name="cleanup_expired_sessions")
def cleanup_expired_sessions():
    """Task to auto-submit expired test sessions"""
    try:
        return run_session_sweep()
    except Exception as exc:
        logger.error(f"Error in cleanup_expired_sessions: {exc}")
        raise


@celery_app.task(name="health_check")
def health_check():
    """Task to perform system health checks"""
    health_status = {
        'timestamp': utcnow().isoformat(),
        'cache': cache.health_check(),
        'database': False,
        'storage': None,
    }

    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        health_status['database'] = True
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
    finally:
        db.close()

    try:
        total, used, free = shutil.disk_usage(settings.certificate_storage_dir)
        health_status['storage'] = {
            'free_gb': round(free / (1024**3), 2),
            'usage_percent': round((used / total) * 100, 2)
        }
    except OSError as e:
        logger.error(f"Certificate storage check failed: {e}")

    if health_status['cache']:
        cache.set('system_health', health_status, ttl=300)

    return health_status
