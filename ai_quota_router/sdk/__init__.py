"""
Model backends for AI Quota Router.

Provides OpenAI-backed model invocation and query classification.
"""

from .openai_client import OpenAIModelBackend, OpenAIQueryClassifier

__all__ = ["OpenAIModelBackend", "OpenAIQueryClassifier"]
