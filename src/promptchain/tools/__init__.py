"""
External tool clients.
"""

from .llm_client import LLMClient, LLMClientError, AVAILABLE_MODELS, MODEL_COSTS

__all__ = ["LLMClient", "LLMClientError", "AVAILABLE_MODELS", "MODEL_COSTS"]
