"""
Chat handler: prompt-driven text generation with knowledge and web-search context.

This handler serves every intent that ends in a text answer. For each run it:

1. Loads the topic's prompt template (the user's own prompt shadows the global one).
2. Resolves the chat model with a fixed precedence: the model chosen for this run, the
   prompt template's preferred model, the caller's preferred model, the CHAT default.
3. Retrieves knowledge chunks for the topic and appends them to the system prompt.
4. Appends attached web-search results to the user turn, asking the model to cite them.
5. Formats the thread (earlier turns plus their extracted file text) and calls the provider,
   streamed or not.

Retrieval and search formatting are optional context: their failures are logged and the
answer is generated without them.
"""

from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from provider_api.base import GenerationProvider, ModelBinder, PromptStore, RetrievalService
from shared.errors import ProviderFailure, RetrievalFailure, SearchFormattingFailure
from shared.models import (
    Capability,
    ClassificationResult,
    DEFAULT_TOPIC,
    Direction,
    HandlerResponse,
    Message,
    ModelBinding,
    ProgressStatus,
    PromptTemplate,
    ResponseEnvelope,
    RetrievedChunk,
    SearchResult,
)
from shared.utils import detect_file_type, notify
from .base import BaseHandler, HandlerName

GROUP_KEY_PREFIX = "TASKPROMPT:"


def retrieval_keys(topic: str, explicit_key: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """
    Return the (primary, fallback) retrieval group keys for a run.

    The derived key is `TASKPROMPT:<topic>` for non-general topics. An explicit key is
    tried first, with the derived key as fallback only when it differs. Without an explicit
    key the derived key is the only candidate, so there is no fallback.
    """
    derived = f"{GROUP_KEY_PREFIX}{topic}" if topic and topic != DEFAULT_TOPIC else None
    if explicit_key:
        return explicit_key, (derived if derived and derived != explicit_key else None)
    return derived, None


def format_knowledge_block(chunks: List[RetrievedChunk]) -> str:
    lines = [
        "",
        "",
        "## Knowledge Base Context",
        "The following excerpts come from the user's documents. Use them when they are relevant.",
        "",
    ]
    for index, chunk in enumerate(chunks, start=1):
        source = chunk.source or f"chunk {index}"
        lines.append(f"[{index}] (source: {source}, relevance: {chunk.score:.2f})")
        lines.append(chunk.text.strip())
        lines.append("")
    return "\n".join(lines).rstrip()


def format_search_results(results: List[SearchResult]) -> str:
    """
    Render web search results as a numbered block with a citation instruction.

    Raises:
        SearchFormattingFailure: If a result lacks the fields the block needs.
    """
    try:
        lines = ["", "", "---", "Web search results:", ""]
        for index, result in enumerate(results, start=1):
            lines.append(f"[{index}] {result.title}")
            lines.append(f"Source: {result.url}")
            if result.published:
                lines.append(f"Published: {result.published}")
            if result.description:
                lines.append(f"Summary: {result.description}")
            for snippet in result.extra_snippets[:2]:
                lines.append(f"- {snippet}")
            lines.append("")
        lines.append("Answer using these results where relevant and cite each source you use as [n], "
                     "where n is the number of the result.")
        return "\n".join(lines)
    except (AttributeError, TypeError) as e:
        raise SearchFormattingFailure(f"Malformed search result: {e}") from e


def decode_envelope(raw: str) -> Tuple[str, Dict[str, Any]]:
    """
    Decode a structured response envelope, or treat the content as plain text.

    Returns the visible text and the structured extras (attachments, links) to surface as
    metadata. Content that is not a valid envelope is returned unchanged with no extras.
    """
    candidate = (raw or "").strip()
    if not candidate.startswith("{"):
        return raw, {}
    try:
        envelope = ResponseEnvelope.model_validate_json(candidate)
    except ValidationError:
        return raw, {}
    extras: Dict[str, Any] = {}
    if envelope.attachments:
        extras["attachments"] = [
            {"path": a.path, "type": a.type or detect_file_type(a.path)} for a in envelope.attachments
        ]
    if envelope.links:
        extras["links"] = [link.model_dump() for link in envelope.links]
    return envelope.text, extras


class ChatHandler(BaseHandler):
    """
    Text generation handler; also the router's fallback for every other handler.

    Args:
        binder: Model catalog lookups.
        provider: Generation provider.
        prompts: Prompt template store.
        retrieval: Knowledge retrieval; None disables knowledge context.
        config: Application configuration.
    """

    def __init__(
        self,
        binder: ModelBinder,
        provider: GenerationProvider,
        prompts: PromptStore,
        retrieval: Optional[RetrievalService] = None,
        config: Optional[Dict[str, Any]] = None,
    ):
        self.prompts = prompts
        self.retrieval = retrieval
        super().__init__(binder, provider, config)

    def setup(self) -> None:
        chat = self.config.get("chat", {})
        retrieval = self.config.get("retrieval", {})
        self.temperature = float(chat.get("temperature", 0.7))
        self.file_text_max_chars = int(chat.get("file_text_max_chars", 10000))
        self.generic_prompt = chat.get("generic_system_prompt", "You are a helpful assistant.")
        self.retrieval_limit = int(retrieval.get("limit", 5))
        self.retrieval_min_score = float(retrieval.get("min_score", 0.3))

    def get_handler_name(self) -> HandlerName:
        return HandlerName.CHAT

    def resolve_model(
        self,
        classification: ClassificationResult,
        prompt: Optional[PromptTemplate],
        user_id: int,
    ) -> ModelBinding:
        """
        Pick the chat model; the first populated source wins:

        1. `classification.model_id` (chosen for this run, e.g. by reprocessing)
        2. the prompt template's `ai_model` when positive
        3. `classification.override_model_id` (caller preference)
        4. the CHAT default for the user

        Raises:
            ProviderFailure: If no model is configured or the chosen id is not in the catalog.
        """
        if classification.model_id:
            model_id, source = classification.model_id, "classification"
        elif prompt is not None and prompt.ai_model > 0:
            model_id, source = prompt.ai_model, "prompt"
        elif classification.override_model_id:
            model_id, source = classification.override_model_id, "override"
        else:
            model_id, source = self.binder.default_model(Capability.CHAT, user_id), "default"

        if not model_id:
            raise ProviderFailure("unknown", "No chat model is configured", {"capability": Capability.CHAT.value})

        provider = self.binder.provider_for(model_id)
        model_name = self.binder.model_name_for(model_id)
        if not provider or not model_name:
            raise ProviderFailure(
                provider or "unknown",
                f"Model {model_id} is not available in the model catalog",
                {"model_id": model_id},
            )
        self.logger.info("Chat model resolved",
                         extra={'model_id': model_id, 'model_source': source, 'provider': provider, 'model': model_name})
        return ModelBinding(
            model_id=model_id,
            provider=provider,
            model_name=model_name,
            capability=Capability.CHAT,
            features=self.binder.features_for(model_id),
        )

    def _find_prompt(self, topic: str, user_id: int, language: str) -> Optional[PromptTemplate]:
        try:
            return self.prompts.find_by_topic(topic, user_id, language)
        except Exception as e:
            self.logger.warning("Prompt lookup failed; using generic prompt",
                                extra={'topic': topic, 'user_id': user_id, 'error': str(e)})
            return None

    def retrieve(self, message: Message, classification: ClassificationResult, options: Dict[str, Any]) -> List[RetrievedChunk]:
        """Fetch knowledge chunks for this run; failures yield an empty list."""
        primary, fallback = retrieval_keys(classification.topic, options.get("rag_group_key"))
        if self.retrieval is None or primary is None:
            return []
        try:
            chunks = self._search(message, primary)
            if not chunks and fallback:
                self.logger.info("No chunks for group key; retrying with fallback key",
                                 extra={'message_id': message.id, 'group_key': primary, 'fallback_key': fallback})
                chunks = self._search(message, fallback)
        except RetrievalFailure as e:
            self.logger.warning("Knowledge retrieval failed; continuing without context",
                                extra={'message_id': message.id, 'user_id': message.user_id,
                                       'stage': 'retrieval', 'error': str(e)})
            return []
        return chunks

    def _search(self, message: Message, group_key: str) -> List[RetrievedChunk]:
        try:
            return list(self.retrieval.semantic_search(
                query=message.text or "",
                user_id=message.user_id,
                group_key=group_key,
                limit=self.retrieval_limit,
                min_score=self.retrieval_min_score,
            ))
        except Exception as e:
            raise RetrievalFailure(str(e)) from e

    def _with_file_text(self, text: str, file_text: Optional[str]) -> str:
        if not file_text:
            return text
        return (f"{text}\n\nUser provided 1 file(s):\n"
                f"---\n{file_text[:self.file_text_max_chars]}\n---")

    def format_thread(self, thread: List[Message]) -> List[Dict[str, str]]:
        turns = []
        for turn in thread:
            role = "user" if turn.direction == Direction.IN else "assistant"
            turns.append({"role": role, "content": self._with_file_text(turn.text or "", turn.file_text)})
        return turns

    def build_messages(
        self,
        message: Message,
        thread: List[Message],
        classification: ClassificationResult,
        options: Dict[str, Any],
    ) -> Tuple[List[Dict[str, str]], ModelBinding, Dict[str, Any]]:
        """
        Assemble the provider request for this run.

        Returns the chat messages, the model binding, and context statistics for metadata.
        """
        prompt = self._find_prompt(classification.topic, message.user_id, classification.language)
        binding = self.resolve_model(classification, prompt, message.user_id)

        system_prompt = prompt.text if prompt else self.generic_prompt
        chunks = self.retrieve(message, classification, options)
        if chunks:
            system_prompt += format_knowledge_block(chunks)

        user_content = self._with_file_text(message.text or "", message.file_text)
        search_count = 0
        if classification.search_results:
            try:
                user_content += format_search_results(classification.search_results)
                search_count = len(classification.search_results)
            except SearchFormattingFailure as e:
                self.logger.warning("Search results could not be formatted; continuing without them",
                                    extra={'message_id': message.id, 'stage': 'search_formatting', 'error': str(e)})

        messages: List[Dict[str, str]] = []
        if "no_system_role" not in binding.features:
            messages.append({"role": "system", "content": system_prompt})
        messages.extend(self.format_thread(thread))
        messages.append({"role": "user", "content": user_content})

        context = {"retrieved_chunks": len(chunks), "search_results": search_count}
        return messages, binding, context

    def _provider_options(self, binding: ModelBinding, options: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "provider": binding.provider,
            "model": binding.model_name,
            "temperature": options.get("temperature", self.temperature),
            "max_tokens": options.get("max_tokens"),
        }

    @staticmethod
    def _metadata(binding: ModelBinding, response: Dict[str, Any], classification: ClassificationResult,
                  context: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "handler": HandlerName.CHAT.value,
            "model_id": binding.model_id,
            "provider": response.get("provider", binding.provider),
            "model": response.get("model", binding.model_name),
            "usage": response.get("usage", {}),
            "topic": classification.topic,
            **context,
        }

    def _handle_internal(self, message, thread, classification, progress_cb, options) -> HandlerResponse:
        messages, binding, context = self.build_messages(message, thread, classification, options)
        notify(progress_cb, ProgressStatus.GENERATING, f"Generating response with {binding.model_name}",
               {"provider": binding.provider, "model": binding.model_name})
        response = self.provider.chat(messages, message.user_id, self._provider_options(binding, options))
        content, extras = decode_envelope(response.get("content") or "")
        metadata = self._metadata(binding, response, classification, context)
        metadata.update(extras)
        return HandlerResponse(content=content, metadata=metadata)

    def _handle_stream_internal(self, message, thread, classification, chunk_cb, progress_cb, options) -> HandlerResponse:
        messages, binding, context = self.build_messages(message, thread, classification, options)
        notify(progress_cb, ProgressStatus.GENERATING, f"Generating response with {binding.model_name}",
               {"provider": binding.provider, "model": binding.model_name})
        provider_options = self._provider_options(binding, options)

        if "no_streaming" in binding.features:
            response = self.provider.chat(messages, message.user_id, provider_options)
            content = response.get("content") or ""
            if content:
                chunk_cb(content)
        else:
            response = self.provider.chat_stream(messages, chunk_cb, message.user_id, provider_options)

        return HandlerResponse(content=None, metadata=self._metadata(binding, response, classification, context),
                               streamed=True)
