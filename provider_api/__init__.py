"""
provider_api package: collaborator contracts and their in-process implementations.

The routing engine talks to persistence, retrieval, generation and search only through
the abstract classes in `base`. Keeping these boundaries small means the classification
layer, router and handlers do not change when a backend is swapped.

Included modules:
- base: Abstract interfaces (ModelBinder, PromptStore, RetrievalService,
  GenerationProvider, OverrideStore, MessageStore, SearchService, Preprocessor).
- memory: Dictionary-backed stores and a keyword retrieval service for local runs and tests.
- mock_client: A deterministic generation provider that needs no credentials.

Concrete production backends live elsewhere: `services.model_config` (model catalog),
`services.message_store` (SQLite), `llm_cloud.provider` (OpenAI-compatible API) and
`services.web_search` (Brave Search).
"""

from .base import (
    GenerationProvider,
    MessageStore,
    ModelBinder,
    OverrideStore,
    Preprocessor,
    PromptStore,
    RetrievalService,
    SearchService,
)
from .memory import (
    InMemoryMessageStore,
    InMemoryOverrideStore,
    InMemoryPromptStore,
    InMemoryRetrievalService,
    PassthroughPreprocessor,
)
from .mock_client import MockGenerationProvider

__all__ = [
    "GenerationProvider",
    "MessageStore",
    "ModelBinder",
    "OverrideStore",
    "Preprocessor",
    "PromptStore",
    "RetrievalService",
    "SearchService",
    "InMemoryMessageStore",
    "InMemoryOverrideStore",
    "InMemoryPromptStore",
    "InMemoryRetrievalService",
    "PassthroughPreprocessor",
    "MockGenerationProvider",
]
