from fastapi import APIRouter

from ai_responder.api.routers import cache_router, health_router, responses_router

router = APIRouter(prefix="/v1")
router.include_router(health_router)
router.include_router(responses_router)
router.include_router(cache_router)
