"""
FastAPI application factory.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import get_settings
from .core.flags import get_flags
from .core.redis import close_redis
from .api.router import router

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="Agent Memory",
        description="Per-user memory, feedback and preference store",
        version="1.0.0",
        docs_url="/docs" if settings.env == "development" else None,
        redoc_url="/redoc" if settings.env == "development" else None,
    )

    # ── CORS ─────────────────────────────────────────────────────
    origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Startup ──────────────────────────────────────────────────
    @app.on_event("startup")
    async def on_startup():
        configure_logging(settings.log_level)
        logger.info("Starting agent memory (env=%s)", settings.env)

        flags = get_flags()
        if flags.storage_backend == "database":
            from .core.database import init_db
            await init_db()

        logger.info(
            "Flags: storage=%s embeddings=%s redis=%s",
            flags.storage_backend, flags.use_embeddings, flags.use_redis,
        )
        logger.info("Agent memory is ready")

    # ── Shutdown ─────────────────────────────────────────────────
    @app.on_event("shutdown")
    async def on_shutdown():
        from .core.database import close_db
        from .services.memory import close_memory_service

        await close_memory_service()
        await close_db()
        await close_redis()
        logger.info("Agent memory shut down")

    # ── Routes ───────────────────────────────────────────────────
    app.include_router(router)

    return app
