"""
All database models. Imported here so Base.metadata sees them for create_all().
"""

from .memory import MemoryObject

__all__ = ["MemoryObject"]
