"""
core/classifier.py

Message classification for handler routing.

This module is the single source of truth for deciding a message's topic and language.
It applies a strict precedence chain, first match wins:

1. Override: an explicit `RunOverride` for this run, or the override recorded for the
   message (`PROMPTID` / `MODEL_ID`) when the run carries none.
2. Tool command: the message text starts with a registered slash command.
3. AI sorting: the `MessageSorter` picks a topic from the prompt catalog.

Classification never fails a pipeline run; anything unexpected degrades to general/en.
"""

import logging
from typing import List, Optional, Tuple

from monitoring.metrics import CLASSIFICATION_SOURCE_TOTAL
from provider_api.base import ModelBinder, OverrideStore
from shared.models import (
    Capability,
    ClassificationResult,
    ClassificationSource,
    DEFAULT_LANGUAGE,
    DEFAULT_TOPIC,
    Message,
    OverrideKey,
    RunOverride,
    SORTING_TOPIC,
)
from .sorter import MessageSorter

logger = logging.getLogger(__name__)

# Checked in order; the first prefix the text starts with wins.
TOOL_COMMANDS: Tuple[Tuple[str, str], ...] = (
    ("/pic", "tools:pic"),
    ("/vid", "tools:vid"),
    ("/search", "tools:search"),
    ("/lang", "tools:lang"),
    ("/web", "tools:web"),
    ("/list", "tools:list"),
    ("/docs", "tools:filesort"),
)

MODEL_TAG_TOPICS = {
    Capability.TEXT2PIC: "mediamaker",
    Capability.TEXT2VID: "mediamaker",
    Capability.TEXT2SOUND: "mediamaker",
    Capability.PIC2TEXT: "analyzefile",
    Capability.CHAT: DEFAULT_TOPIC,
    Capability.VECTORIZE: DEFAULT_TOPIC,
}


def detect_tool_command(text: str) -> Optional[str]:
    """Return the topic of the first registered command prefix `text` starts with."""
    if not text or not text.startswith("/"):
        return None
    for prefix, topic in TOOL_COMMANDS:
        if text.startswith(prefix):
            return topic
    return None


class MessageClassifier:
    """
    Central message classifier producing a `ClassificationResult` per pipeline run.

    Responsibilities:
    - Honor explicit overrides (reprocessing with a chosen prompt and/or model)
    - Recognize slash commands without a model call
    - Delegate everything else to the AI sorter and apply the general/en safe default

    Args:
        sorter: The AI sorter used when no override or command applies.
        binder: Resolves override model ids to provider/model names and capability tags.
        overrides: Store of recorded per-message overrides; optional.
    """

    def __init__(self, sorter: MessageSorter, binder: ModelBinder, overrides: Optional[OverrideStore] = None):
        self.sorter = sorter
        self.binder = binder
        self.overrides = overrides
        logger.info("[MessageClassifier] Initialized classification layer")

    def classify(
        self,
        message: Message,
        history: List[Message],
        run_override: Optional[RunOverride] = None,
    ) -> ClassificationResult:
        """
        Classify `message` in the context of `history`.

        Args:
            message: The inbound message being processed.
            history: Earlier turns of the conversation, oldest first.
            run_override: Explicit override for this run; when absent the override recorded
                for the message (if any) is used.

        Returns:
            ClassificationResult: Always returned; failures degrade to topic "general",
            language "en" with source AI_SORTING.
        """
        try:
            result = self._classify(message, history, run_override)
        except Exception as e:
            logger.error(
                "Classification failed; using safe default",
                exc_info=True,
                extra={'message_id': message.id, 'user_id': message.user_id, 'stage': 'classification', 'error': str(e)}
            )
            result = ClassificationResult(
                topic=DEFAULT_TOPIC,
                language=DEFAULT_LANGUAGE,
                source=ClassificationSource.AI_SORTING,
            )
        CLASSIFICATION_SOURCE_TOTAL.labels(source=result.source.value).inc()
        logger.info(
            "Message classified",
            extra={
                'message_id': message.id,
                'topic': result.topic,
                'language': result.language,
                'source': result.source.value,
                'intent': result.intent.value,
                'model_id': result.model_id,
            }
        )
        return result

    def _classify(self, message: Message, history: List[Message], run_override: Optional[RunOverride]) -> ClassificationResult:
        language = message.language or DEFAULT_LANGUAGE

        override = self.resolve_override(message, run_override)
        if override is not None:
            prompt_topic = override.prompt_topic if override.prompt_topic != SORTING_TOPIC else None
            if prompt_topic:
                return self._override_result(prompt_topic, language, override.model_id)
            if override.model_id:
                topic = self._topic_for_model(override.model_id, message.topic)
                logger.info("Model override without prompt; topic derived from model tag",
                            extra={'message_id': message.id, 'model_id': override.model_id, 'topic': topic})
                return self._override_result(topic, language, override.model_id)

        command_topic = detect_tool_command(message.text or "")
        if command_topic:
            return ClassificationResult(
                topic=command_topic,
                language=language,
                source=ClassificationSource.TOOL_COMMAND,
            )

        sorted_result = self.sorter.classify(message, history, message.user_id)
        return ClassificationResult(
            topic=sorted_result.topic or DEFAULT_TOPIC,
            language=sorted_result.language or DEFAULT_LANGUAGE,
            source=ClassificationSource.AI_SORTING,
            web_search=sorted_result.web_search,
            model_id=sorted_result.model_id,
            provider=sorted_result.provider,
            model_name=sorted_result.model_name,
        )

    def resolve_override(self, message: Message, run_override: Optional[RunOverride]) -> Optional[RunOverride]:
        """Return the explicit override if given, else the one recorded for the message, else None."""
        if run_override is not None and not run_override.is_empty:
            return run_override
        if self.overrides is None or message.id is None:
            return None

        prompt_topic = self.overrides.get(message.id, OverrideKey.PROMPT_ID.value) or None
        raw_model = self.overrides.get(message.id, OverrideKey.MODEL_ID.value)
        model_id = None
        if raw_model:
            try:
                model_id = int(raw_model)
            except ValueError:
                logger.warning("Ignoring non-numeric MODEL_ID override",
                               extra={'message_id': message.id, 'value': raw_model})
        stored = RunOverride(model_id=model_id, prompt_topic=prompt_topic)
        return None if stored.is_empty else stored

    def _override_result(self, topic: str, language: str, model_id: Optional[int]) -> ClassificationResult:
        result = ClassificationResult(topic=topic, language=language, source=ClassificationSource.OVERRIDE)
        if model_id:
            result.model_id = model_id
            result.provider = self.binder.provider_for(model_id)
            result.model_name = self.binder.model_name_for(model_id)
        return result

    def _topic_for_model(self, model_id: int, fallback_topic: Optional[str]) -> str:
        tag = self.binder.capability_for(model_id)
        if tag in MODEL_TAG_TOPICS:
            return MODEL_TAG_TOPICS[tag]
        return fallback_topic or DEFAULT_TOPIC
