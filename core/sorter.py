"""
core/sorter.py

LLM-driven topic and language sorting.

The sorter is the last resort of the classification layer: it only runs when neither an
override nor a slash command decided the topic. It first tries the keyword selection rules
that prompt owners can attach to their prompts, then asks the model bound to the SORT
capability to pick a topic from the catalog of available prompts.

Any failure (no SORT model, provider error, unparseable answer) degrades to the topic and
language the message already carries; the sorter never raises.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from config import CONFIG
from provider_api.base import GenerationProvider, ModelBinder, PromptStore
from shared.errors import ClassificationFailure
from shared.models import Capability, DEFAULT_TOPIC, Direction, Message, ModelBinding
from shared.utils import safe_json_loads, truncate_for_logging

logger = logging.getLogger(__name__)

_RULE_SPLIT = re.compile(r"[,\n]+")


@dataclass
class SortingResult:
    """
    Topic/language chosen by the sorter. `topic`/`language` are None only when the
    sorter failed and the message itself carried no value either.
    """
    topic: Optional[str]
    language: Optional[str]
    web_search: bool = False
    model_id: Optional[int] = None
    provider: Optional[str] = None
    model_name: Optional[str] = None


def matches_selection_rules(rules: Optional[str], text: str) -> bool:
    """True when any comma/newline separated keyword of `rules` occurs in `text` (case-insensitive)."""
    if not rules:
        return False
    haystack = text.lower()
    for keyword in _RULE_SPLIT.split(rules.lower()):
        keyword = keyword.strip()
        if keyword and keyword in haystack:
            return True
    return False


class MessageSorter:
    """
    Classifies a message into one of the available prompt topics.

    Args:
        provider: Generation provider used for the sorting call.
        binder: Resolves the SORT capability to a model.
        prompts: Source of the topic catalog and of keyword selection rules.
        config: Application configuration (the `sorting` section and the loaded prompt).
    """

    def __init__(self, provider: GenerationProvider, binder: ModelBinder, prompts: PromptStore,
                 config: Optional[Dict] = None):
        self.provider = provider
        self.binder = binder
        self.prompts = prompts
        self.config = config if config is not None else CONFIG
        sorting = self.config.get("sorting", {})
        self.history_turns = int(sorting.get("history_turns", 10))
        self.assistant_excerpt = int(sorting.get("assistant_excerpt_chars", 200))
        self.file_excerpt = int(sorting.get("file_excerpt_chars", 200))
        self.max_tokens = int(sorting.get("max_tokens", 1024))
        self.temperature = float(sorting.get("temperature", 0.1))
        self.languages: List[str] = list(sorting.get("languages", ["en"]))
        self.template: str = self.config.get("sorting_system_prompt", "")

    def classify(self, message: Message, history: List[Message], user_id: int) -> SortingResult:
        """
        Return the topic and language for `message`.

        Keyword selection rules are checked first and short-circuit the model call. Otherwise
        the SORT model receives the filled sorting prompt, the trimmed history and the current
        message as a compact JSON record. On any failure the message's own topic/language
        are returned unchanged.
        """
        fallback = SortingResult(topic=message.topic or None, language=message.language or None)

        try:
            rule_topic = self._match_rules(message.text or "", user_id)
        except Exception as e:
            logger.warning("Selection rule lookup failed", extra={'message_id': message.id, 'error': str(e)})
            rule_topic = None
        if rule_topic:
            logger.info("Selection rules matched", extra={'message_id': message.id, 'topic': rule_topic})
            return SortingResult(topic=rule_topic, language=message.language or None)

        binding: Optional[ModelBinding] = None
        try:
            binding = self.binder.bind(Capability.SORT, user_id)
            if binding is None:
                raise ClassificationFailure("No model configured for capability SORT")
            messages = self.build_messages(message, history, user_id)
            response = self.provider.chat(messages, user_id, {
                "provider": binding.provider,
                "model": binding.model_name,
                "temperature": self.temperature,
                "max_tokens": self.max_tokens,
            })
        except Exception as e:
            logger.warning(
                "AI sorting call failed; keeping message topic/language",
                extra={'message_id': message.id, 'user_id': user_id, 'stage': 'sorting', 'error': str(e)}
            )
            return self._with_binding(fallback, binding)

        raw = response.get("content") or ""
        logger.info("Sorter raw output", extra={'message_id': message.id, 'raw': truncate_for_logging(raw, 200)})
        return self._with_binding(self.parse_response(raw, message), binding)

    def _match_rules(self, text: str, user_id: int) -> Optional[str]:
        if not text:
            return None
        for language in self.languages:
            for prompt in self.prompts.find_with_selection_rules(user_id, language):
                if matches_selection_rules(prompt.selection_rules, text):
                    return prompt.topic
        return None

    @staticmethod
    def _with_binding(result: SortingResult, binding: Optional[ModelBinding]) -> SortingResult:
        if binding is not None:
            result.model_id = binding.model_id
            result.provider = binding.provider
            result.model_name = binding.model_name
        return result

    def fill_template(self, user_id: int, language: str) -> str:
        """Substitute the topic list, the quoted topic keys and the language list into the prompt."""
        topics = [p for p in self.prompts.list_topics(user_id, language) if not p.topic.startswith("tools:")]
        dynamic_list = "\n".join(f'- "{p.topic}": {p.description or p.topic}' for p in topics)
        keys = [p.topic for p in topics]
        if DEFAULT_TOPIC not in keys:
            keys.insert(0, DEFAULT_TOPIC)
        key_list = " | ".join(f'"{k}"' for k in keys)
        lang_list = " | ".join(f'"{lang}"' for lang in self.languages)
        return (self.template
                .replace("[DYNAMICLIST]", dynamic_list)
                .replace("[KEYLIST]", key_list)
                .replace("[LANGLIST]", lang_list))

    def build_messages(self, message: Message, history: List[Message], user_id: int) -> List[Dict[str, str]]:
        messages = [{"role": "system", "content": self.fill_template(user_id, message.language or "en")}]

        for turn in history[-self.history_turns:] if self.history_turns else []:
            if turn.direction == Direction.IN:
                content = turn.text or ""
                if turn.file_text:
                    content += (f" User provided a file: {turn.file_type or 'unknown'}, saying: "
                                f"'{turn.file_text[:self.file_excerpt]}'")
                messages.append({"role": "user", "content": content})
            else:
                text = turn.text or ""
                excerpt = text[:self.assistant_excerpt] + ("..." if len(text) > self.assistant_excerpt else "")
                messages.append({"role": "assistant", "content": f"[{turn.id}] {excerpt}"})

        record = {
            "BDATETIME": message.created_at.strftime("%Y%m%d%H%M%S"),
            "BFILEPATH": message.file_path or "",
            "BFILETYPE": message.file_type or "",
            "BTOPIC": message.topic or "",
            "BLANG": message.language or "en",
            "BTEXT": message.text or "",
            "BFILETEXT": message.file_text or "",
        }
        messages.append({"role": "user", "content": json.dumps(record, ensure_ascii=False, separators=(",", ":"))})
        return messages

    def parse_response(self, raw: str, message: Message) -> SortingResult:
        """
        Parse the sorter's JSON answer (code fences allowed).

        Missing or unparseable fields fall back to the message's own topic/language.
        """
        data = safe_json_loads(raw)
        if not data:
            logger.warning("Sorter answer was not a JSON object", extra={'message_id': message.id})
            return SortingResult(topic=message.topic or None, language=message.language or None)

        topic = data.get("BTOPIC")
        language = data.get("BLANG")
        web_search = data.get("BWEBSEARCH", False)
        if isinstance(web_search, str):
            web_search = web_search.strip().lower() in ("1", "true", "yes")
        return SortingResult(
            topic=str(topic).strip() if topic else (message.topic or None),
            language=str(language).strip().lower() if language else (message.language or None),
            web_search=bool(web_search),
        )
