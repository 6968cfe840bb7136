"""HTTP side channel — route aggregation.

All routers registered here get mounted in main.py at the root, because
existing clients call /health, /register-agent and friends without a
prefix.
"""

from fastapi import APIRouter

from paired_bridge.api.agents import router as agents_router
from paired_bridge.api.health import router as health_router
from paired_bridge.api.instances import router as instances_router
from paired_bridge.api.intercept import router as intercept_router

api_router = APIRouter()

api_router.include_router(health_router, tags=["health"])
api_router.include_router(agents_router, tags=["agents"])
api_router.include_router(instances_router, tags=["instances"])
api_router.include_router(intercept_router, tags=["routing"])
