"""
Main API router. Mounts all sub-routers.
"""

from fastapi import APIRouter

from .memory import memory_router

router = APIRouter()


# ── Health ───────────────────────────────────────────────────────────

@router.get("/health")
async def health():
    from ..core.flags import get_flags

    flags = get_flags()
    return {
        "status": "ok",
        "service": "agent-memory",
        "storage": flags.storage_backend,
        "embeddings": flags.use_embeddings,
    }


# ── V1 routes ────────────────────────────────────────────────────────

router.include_router(memory_router, prefix="/v1")
