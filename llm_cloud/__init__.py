"""Top-level package exports for llm_cloud.

This package holds the LLM infrastructure layer:
    • provider.py – client construction, provider routing and the
      OpenAI-compatible `GenerationProvider` implementation
"""

from .provider import OpenAIGenerationProvider, get_client

__all__ = [
    "OpenAIGenerationProvider",
    "get_client",
]
