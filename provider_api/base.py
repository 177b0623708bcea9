"""
Collaborator interfaces consumed by the routing engine.

This module defines the abstract contracts the classification layer, the handlers and the
orchestrator depend on. Persistence, knowledge retrieval, generation and web search live
behind these boundaries so the core decision logic never touches an SDK, a database or
an HTTP client directly. The design uses the adapter pattern: each concrete backend
(SQLite stores, the OpenAI-compatible provider, the Brave search client, the in-memory
fakes used in tests) implements one of these ABCs, and the composition root wires them
together.

Key concepts:
- Capability tag: a model-catalog classification ("CHAT", "SORT", "VECTORIZE", ...) used
  to pick a default model per function.
- Retrieval group key: a namespace string scoping which indexed knowledge chunks are
  eligible for a given topic.
- ABC: Abstract Base Class, Python's mechanism for declaring required methods.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, FrozenSet, List, Optional

from shared.models import (
    Capability,
    CatalogModel,
    ChunkCallback,
    Message,
    ModelBinding,
    PromptTemplate,
    RetrievedChunk,
    SearchResult,
)


class ModelBinder(ABC):
    """
    Resolves capability tags and model ids to concrete provider/model pairs.

    Implementations answer the four primitive lookups; `bind` composes them into a
    `ModelBinding` that is only valid for the capability it was requested under.
    """

    @abstractmethod
    def default_model(self, capability: Capability, user_id: int) -> Optional[int]:
        """Return the model id configured for `capability` (user default first, then system)."""
        raise NotImplementedError

    @abstractmethod
    def provider_for(self, model_id: int) -> Optional[str]:
        raise NotImplementedError

    @abstractmethod
    def model_name_for(self, model_id: int) -> Optional[str]:
        raise NotImplementedError

    @abstractmethod
    def features_for(self, model_id: int) -> FrozenSet[str]:
        raise NotImplementedError

    @abstractmethod
    def capability_for(self, model_id: int) -> Optional[Capability]:
        """Return the catalog capability tag of a model, or None for unknown ids."""
        raise NotImplementedError

    @abstractmethod
    def models_for(self, capability: Capability) -> List[CatalogModel]:
        """Return every selectable catalog model carrying `capability`, in catalog order."""
        raise NotImplementedError

    def min_rating_for(self, owner_id: int) -> Optional[float]:
        """Minimum rating a model needs to be offered to `owner_id`; None means no threshold."""
        return None

    def bind(
        self,
        capability: Capability,
        user_id: int,
        model_id: Optional[int] = None,
    ) -> Optional[ModelBinding]:
        """
        Resolve a binding for `capability`.

        When `model_id` is given it is used if its catalog tag is `capability`; otherwise
        the default model for the capability is looked up. Returns None when no model is
        configured, the chosen id carries another capability tag, or it has no
        provider/model name in the catalog.
        """
        chosen = model_id if model_id else self.default_model(capability, user_id)
        if not chosen:
            return None
        if model_id and self.capability_for(model_id) != capability:
            return None
        provider = self.provider_for(chosen)
        model_name = self.model_name_for(chosen)
        if not provider or not model_name:
            return None
        return ModelBinding(
            model_id=chosen,
            provider=provider,
            model_name=model_name,
            capability=capability,
            features=self.features_for(chosen),
        )


class PromptStore(ABC):
    """Topic-scoped system prompts. User-owned prompts shadow global ones (owner id 0)."""

    @abstractmethod
    def find_by_topic(self, topic: str, owner_id: int, language: str) -> Optional[PromptTemplate]:
        """
        Return the prompt for `topic`, preferring one owned by `owner_id` over the global
        prompt. Returns None when neither exists.
        """
        raise NotImplementedError

    @abstractmethod
    def list_topics(self, owner_id: int, language: str) -> List[PromptTemplate]:
        """Return all prompts visible to `owner_id` (own and global), one per topic."""
        raise NotImplementedError

    def find_with_selection_rules(self, owner_id: int, language: str) -> List[PromptTemplate]:
        return [p for p in self.list_topics(owner_id, language) if p.selection_rules]


class RetrievalService(ABC):
    """Ranked lookup over the user's indexed knowledge chunks."""

    @abstractmethod
    def semantic_search(
        self,
        query: str,
        user_id: int,
        group_key: str,
        limit: int,
        min_score: float,
    ) -> List[RetrievedChunk]:
        """Return up to `limit` chunks scoring at least `min_score`, best first."""
        raise NotImplementedError


class GenerationProvider(ABC):
    """
    Access to generation models.

    Every call receives `options` with optional keys `provider`, `model`, `temperature`,
    `max_tokens`. Failures are raised as `ProviderFailure`.
    """

    @abstractmethod
    def chat(self, messages: List[Dict[str, str]], user_id: int, options: Dict[str, Any]) -> Dict[str, Any]:
        """Return `{content, provider, model, usage}`."""
        raise NotImplementedError

    @abstractmethod
    def chat_stream(
        self,
        messages: List[Dict[str, str]],
        chunk_cb: ChunkCallback,
        user_id: int,
        options: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Invoke `chunk_cb` once per emitted segment, in order; return `{provider, model, usage}`."""
        raise NotImplementedError

    @abstractmethod
    def generate_image(self, prompt: str, user_id: int, options: Dict[str, Any]) -> Dict[str, Any]:
        """Return `{images: [{url, revised_prompt}], provider, model}`."""
        raise NotImplementedError

    @abstractmethod
    def generate_video(self, prompt: str, user_id: int, options: Dict[str, Any]) -> Dict[str, Any]:
        """Return `{videos: [{url, revised_prompt}], provider, model}`."""
        raise NotImplementedError

    @abstractmethod
    def embed(self, text: str, user_id: int, options: Dict[str, Any]) -> Dict[str, Any]:
        """Return `{embedding, provider, model}`."""
        raise NotImplementedError


class OverrideStore(ABC):
    """Per-message key/value overrides (`PROMPTID`, `MODEL_ID`)."""

    @abstractmethod
    def get(self, message_id: int, key: str) -> Optional[str]:
        raise NotImplementedError

    @abstractmethod
    def set(self, message_id: int, key: str, value: str) -> None:
        raise NotImplementedError


class MessageStore(ABC):
    """Message persistence as far as the pipeline needs it."""

    @abstractmethod
    def get(self, message_id: int) -> Optional[Message]:
        raise NotImplementedError

    @abstractmethod
    def save(self, message: Message) -> Message:
        """Insert a new message, assign its id and return it."""
        raise NotImplementedError

    @abstractmethod
    def update(self, message: Message) -> None:
        raise NotImplementedError

    @abstractmethod
    def history_for(self, message: Message, max_messages: int, max_chars: Optional[int] = None) -> List[Message]:
        """
        Return earlier messages of the same conversation, oldest first, excluding `message`.

        Messages with a conversation id use the conversation; legacy messages fall back
        to the tracking id. `max_chars` caps the accumulated text of the returned window.
        """
        raise NotImplementedError

    @abstractmethod
    def find_reply(self, tracking_id: str, after_id: Optional[int] = None) -> Optional[Message]:
        """Return the newest outbound message for `tracking_id` (newer than `after_id` if given)."""
        raise NotImplementedError


class SearchService(ABC):
    """Web search."""

    @abstractmethod
    def search(self, query: str, language: str, count: int) -> List[SearchResult]:
        raise NotImplementedError


class Preprocessor(ABC):
    """Ingestion-side enrichment (file text extraction and similar) run before classification."""

    @abstractmethod
    def preprocess(self, message: Message) -> Message:
        raise NotImplementedError
