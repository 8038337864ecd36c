"""
Agent memory service: per-user memories, feedback and preferences.
"""
