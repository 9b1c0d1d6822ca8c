import logging
import time

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ....api import deps
from ....core.cache import cache
from ....core.database import get_db
from ....core.session_store import RedisSessionStore, SessionStore
from ....models.user import User

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("")
async def get_basic_health():
    """Basic liveness check, no authentication required"""
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "service": "certplatform-api"
    }


@router.get("/system")
async def get_system_health(
    current_user: User = Depends(deps.get_current_admin),
    db: Session = Depends(get_db),
    store: SessionStore = Depends(deps.get_store),
):
    """Database, redis and session store status"""
    health_status = {
        "timestamp": time.time(),
        "overall_status": "healthy",
        "services": {},
        "alerts": []
    }

    try:
        start_time = time.time()
        db.execute(text("SELECT 1"))
        db_response_time = (time.time() - start_time) * 1000
        health_status["services"]["database"] = {
            "status": "healthy",
            "response_time": round(db_response_time, 2)
        }
        if db_response_time > 200:
            health_status["alerts"].append("Database response time is high")
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        health_status["services"]["database"] = {"status": "error", "error": str(e)}
        health_status["overall_status"] = "unhealthy"

    store_reachable = True
    if isinstance(store, RedisSessionStore):
        store_reachable = await cache.ahealth_check()
        health_status["services"]["cache"] = {"status": "healthy" if store_reachable else "unhealthy"}
        if not store_reachable:
            health_status["overall_status"] = "degraded"
        else:
            # last report written by the celery health_check task
            health_status["services"]["worker"] = cache.get("system_health")

    health_status["services"]["session_store"] = {
        "backend": type(store).__name__,
        "sessions": store.size() if store_reachable else None,
    }

    if health_status["alerts"] and health_status["overall_status"] == "healthy":
        health_status["overall_status"] = "degraded"

    return health_status
