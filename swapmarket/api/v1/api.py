from fastapi import APIRouter
from ...core.config import get_settings
from .endpoints import offers, conversations, notifications

router = APIRouter(prefix=get_settings().api_v1_prefix)

# Include all endpoint routers
router.include_router(offers.router, prefix="/offers")
router.include_router(conversations.router, prefix="/conversations")
router.include_router(notifications.router, prefix="/notifications")
