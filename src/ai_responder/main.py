from __future__ import annotations

from contextlib import asynccontextmanager
import json
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ai_responder.api.config import get_settings
from ai_responder.api.deps import get_background, get_responder, get_tool_registry
from ai_responder.api.exception_handlers import register_exception_handlers
from ai_responder.api.middleware import setup_middlewares
from ai_responder.api.routes import router
from ai_responder.secrets import missing_secrets

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: ARG001
    # Warm up heavy dependencies early to fail fast on bad config.
    logging.info(
        json.dumps(
            {"event": "startup", "message": "Validating tool registry..."},
            ensure_ascii=False,
        )
    )
    get_tool_registry().validate()
    missing = missing_secrets()
    if missing:
        logging.warning(json.dumps({"event": "startup", "missing_secrets": missing}, ensure_ascii=False))
    _ = get_responder()
    logging.info(
        json.dumps(
            {"event": "startup", "message": "Responder warmed up"},
            ensure_ascii=False,
        )
    )
    yield
    # let post-response writes land before the loop goes away
    await get_background().drain()


def create_app() -> FastAPI:
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())
    app = FastAPI(
        title="ai-responder",
        lifespan=lifespan,
        debug=settings.debug,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    if settings.allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.allowed_origins),
            allow_methods=["*"],
            allow_headers=["*"],
        )
    setup_middlewares(app)
    register_exception_handlers(app)
    app.include_router(router)
    return app


app = create_app()
