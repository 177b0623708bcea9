"""
Unit tests for `services/search_query.py` – SearchQueryGenerator.
"""

import unittest
from unittest.mock import MagicMock

from config import CONFIG
from provider_api import InMemoryPromptStore, MockGenerationProvider
from services.model_config import ModelConfigService
from services.search_query import SearchQueryGenerator, fallback_query
from shared.models import PromptTemplate


class TestSearchQueryGenerator(unittest.TestCase):

    def setUp(self):
        self.binder = ModelConfigService.from_config(CONFIG)
        self.prompts = InMemoryPromptStore([PromptTemplate(topic="tools:searchquery", text="Write a search query.")])

    def test_model_rewrites_question(self):
        provider = MockGenerationProvider(replies=['"rust web frameworks 2024"'])
        generator = SearchQueryGenerator(provider, self.binder, self.prompts)

        query = generator.generate("/search which rust web frameworks are best this year?", 1)

        self.assertEqual(query, "rust web frameworks 2024")
        _, messages, options = provider.calls[0]
        self.assertEqual(messages[1]["content"], "which rust web frameworks are best this year?")
        self.assertEqual(options["model"], "gpt-4o-mini")

    def test_without_search_prompt_uses_cleaned_text(self):
        provider = MagicMock()
        generator = SearchQueryGenerator(provider, self.binder, InMemoryPromptStore())

        self.assertEqual(generator.generate('/web "weather in Rome"', 1), "weather in Rome")
        provider.chat.assert_not_called()

    def test_rambling_or_failed_answer_falls_back(self):
        rambling = MockGenerationProvider(replies=["Sure! Here is a query:\n\nweather rome"])
        self.assertEqual(SearchQueryGenerator(rambling, self.binder, self.prompts).generate("weather rome?", 1),
                         "weather rome?")

        failing = MagicMock()
        failing.chat.side_effect = RuntimeError("timeout")
        self.assertEqual(SearchQueryGenerator(failing, self.binder, self.prompts).generate("weather rome?", 1),
                         "weather rome?")


class TestFallbackQuery(unittest.TestCase):

    def test_strips_command_and_quotes(self):
        self.assertEqual(fallback_query("/search 'python asyncio'"), "python asyncio")
        self.assertEqual(fallback_query("  plain question  "), "plain question")


if __name__ == "__main__":
    unittest.main(verbosity=2)
