"""
FastAPI dependencies. Injected into route handlers.
"""

from ..services.memory import MemoryService, get_memory_service


def get_memory_service_dep() -> MemoryService:
    """Returns the process-wide memory service (override in tests)."""
    return get_memory_service()
