from fastapi import APIRouter

from .routes import (
    automation,
    health,
    plans,
)

api_router = APIRouter()

# Health check
api_router.include_router(health.router, tags=["health"])

# Plan data for the dashboard
api_router.include_router(plans.router, prefix="/plans", tags=["plans"])

# Plan-gated actions
api_router.include_router(automation.router, prefix="/automation", tags=["automation"])
