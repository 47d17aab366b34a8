"""
promptchain: sequential LLM prompt workflows with per-step pass/fail criteria.
"""

__version__ = "1.0.0"
