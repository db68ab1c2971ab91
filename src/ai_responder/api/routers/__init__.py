from ai_responder.api.routers.cache import router as cache_router
from ai_responder.api.routers.health import router as health_router
from ai_responder.api.routers.responses import router as responses_router

__all__ = [
    "health_router",
    "responses_router",
    "cache_router",
]
