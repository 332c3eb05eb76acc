"""API route aggregation.

All routers registered here get mounted in main.py. None of them require
authentication: the marketplace has no seller accounts.
"""

from fastapi import APIRouter

from marketsync.api.health import router as health_router
from marketsync.api.listings import router as listings_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(listings_router, tags=["listings"])
