"""
Turn a chat message into a web search query.

Slash commands and quoting are stripped first. When a `tools:searchquery` prompt exists, the
SORT model rewrites the question into a short keyword query; otherwise, or when the model
fails or rambles, the cleaned message text is used as the query.
"""

import logging
import re
from typing import Optional

from provider_api.base import GenerationProvider, ModelBinder, PromptStore
from shared.models import Capability

logger = logging.getLogger(__name__)

_COMMAND_PREFIX = re.compile(r"^/(search|web|google|find)\s+", re.IGNORECASE)
_QUOTED = re.compile(r"^([\"'])(.+)\1$", re.DOTALL)

SEARCH_PROMPT_TOPIC = "tools:searchquery"


def fallback_query(text: str) -> str:
    text = _COMMAND_PREFIX.sub("", (text or "").strip()).strip()
    match = _QUOTED.match(text)
    if match:
        text = match.group(2).strip()
    return text


class SearchQueryGenerator:
    """Builds search queries, asking the SORT model when a search prompt is configured."""

    def __init__(self, provider: GenerationProvider, binder: ModelBinder, prompts: PromptStore):
        self.provider = provider
        self.binder = binder
        self.prompts = prompts

    def generate(self, question: str, user_id: int) -> str:
        cleaned = fallback_query(question)
        prompt = self.prompts.find_by_topic(SEARCH_PROMPT_TOPIC, 0, "en")
        if prompt is None:
            return cleaned

        binding = self.binder.bind(Capability.SORT, user_id)
        if binding is None:
            return cleaned

        try:
            response = self.provider.chat(
                [
                    {"role": "system", "content": prompt.text},
                    {"role": "user", "content": cleaned},
                ],
                user_id,
                {"provider": binding.provider, "model": binding.model_name,
                 "temperature": 0.3, "max_tokens": 100},
            )
        except Exception as e:
            logger.warning("Search query generation failed; using message text",
                           extra={'user_id': user_id, 'error': str(e)})
            return cleaned

        query = (response.get("content") or "").strip().strip('"').strip()
        if not query or len(query) > 200 or "\n\n" in query:
            return cleaned
        return query
