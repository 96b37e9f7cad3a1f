from fastapi import APIRouter

from .endpoints import checkout_sessions, gift_codes, health, webhooks

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(checkout_sessions.router)
router.include_router(webhooks.router)
router.include_router(gift_codes.router)
