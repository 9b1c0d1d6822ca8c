from fastapi import APIRouter

from .endpoints import certificates, health, tests

api_router = APIRouter()

api_router.include_router(tests.router, prefix="/tests", tags=["tests"])
api_router.include_router(certificates.router, prefix="/certificates", tags=["certificates"])
api_router.include_router(health.router, prefix="/health", tags=["health"])
