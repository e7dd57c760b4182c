"""API routes package."""

from fastapi import APIRouter

from refund_review.api.routes.health import router as health_router
from refund_review.api.routes.me import router as me_router
from refund_review.api.routes.notifications import router as notifications_router
from refund_review.api.routes.transactions import router as transactions_router

# Create API router with all sub-routers
api_router = APIRouter()

api_router.include_router(health_router)
api_router.include_router(me_router)
api_router.include_router(transactions_router)
api_router.include_router(notifications_router)


__all__ = [
    "api_router",
    "health_router",
    "me_router",
    "notifications_router",
    "transactions_router",
]
