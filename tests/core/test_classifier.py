"""
Unit tests for `core/classifier.py` – MessageClassifier precedence in isolation.

The AI sorter is replaced with a MagicMock so every test controls exactly what sorting would
return (or whether it raises). The model catalog is the real `ModelConfigService` built from
config.json, and overrides live in the in-memory store, so no network or database is touched.
The tests pin down the precedence chain: override first, slash command second, AI sorting last,
with the general/en safe default when anything unexpected happens.
"""

import unittest
from unittest.mock import MagicMock

from config import CONFIG
from core.classifier import MessageClassifier, detect_tool_command
from core.sorter import SortingResult
from provider_api import InMemoryOverrideStore
from services.model_config import ModelConfigService
from shared.models import ClassificationSource, Message, OverrideKey, RunOverride


def make_message(text: str, message_id: int = 1, **kwargs) -> Message:
    return Message(user_id=7, tracking_id="trk-1", text=text, id=message_id, **kwargs)


class TestMessageClassifier(unittest.TestCase):
    """
    Covers:
    - explicit and recorded overrides (prompt and/or model)
    - slash command detection without any model call
    - AI sorting passthrough and the safe default on failure
    """

    def setUp(self):
        self.sorter = MagicMock()
        self.sorter.classify.return_value = SortingResult(topic="general", language="en")
        self.binder = ModelConfigService.from_config(CONFIG)
        self.overrides = InMemoryOverrideStore()
        self.classifier = MessageClassifier(self.sorter, self.binder, self.overrides)

    def test_run_override_wins_and_skips_sorting(self):
        message = make_message("please write a letter")
        result = self.classifier.classify(message, [], RunOverride(model_id=2, prompt_topic="officemaker"))

        self.assertEqual(result.topic, "officemaker")
        self.assertEqual(result.source, ClassificationSource.OVERRIDE)
        self.assertTrue(result.skip_sorting)
        self.assertEqual(result.model_id, 2)
        self.assertEqual(result.provider, "openai")
        self.assertEqual(result.model_name, "gpt-4o")
        self.sorter.classify.assert_not_called()

    def test_recorded_override_used_when_run_has_none(self):
        self.overrides.set(11, OverrideKey.PROMPT_ID.value, "translate")
        message = make_message("bonjour", message_id=11, language="fr")

        result = self.classifier.classify(message, [])

        self.assertEqual(result.topic, "translate")
        self.assertEqual(result.language, "fr")
        self.assertEqual(result.source, ClassificationSource.OVERRIDE)
        self.assertIsNone(result.model_id)
        self.sorter.classify.assert_not_called()

    def test_model_only_override_derives_topic_from_model_tag(self):
        message = make_message("a red balloon")
        result = self.classifier.classify(message, [], RunOverride(model_id=30))

        self.assertEqual(result.topic, "mediamaker")
        self.assertEqual(result.model_id, 30)
        self.assertEqual(result.model_name, "dall-e-3")
        self.assertEqual(result.intent.value, "image_generation")

    def test_sorting_topic_is_never_an_override_target(self):
        message = make_message("what is the weather")
        result = self.classifier.classify(message, [], RunOverride(prompt_topic="tools:sort"))

        self.assertEqual(result.source, ClassificationSource.AI_SORTING)
        self.sorter.classify.assert_called_once()

    def test_tool_command_matches_prefix(self):
        message = make_message("/picture of a cat")
        result = self.classifier.classify(message, [])

        self.assertEqual(result.topic, "tools:pic")
        self.assertEqual(result.source, ClassificationSource.TOOL_COMMAND)
        self.assertTrue(result.skip_sorting)
        self.assertIsNone(result.model_id)
        self.sorter.classify.assert_not_called()

    def test_search_command_skips_sorting(self):
        result = self.classifier.classify(make_message("/search best rust web frameworks"), [])

        self.assertEqual(result.topic, "tools:search")
        self.assertEqual(result.source, ClassificationSource.TOOL_COMMAND)
        self.assertTrue(result.skip_sorting)
        self.sorter.classify.assert_not_called()

    def test_override_beats_tool_command(self):
        message = make_message("/pic a dog")
        result = self.classifier.classify(message, [], RunOverride(prompt_topic="general"))

        self.assertEqual(result.topic, "general")
        self.assertEqual(result.source, ClassificationSource.OVERRIDE)

    def test_ai_sorting_result_is_passed_through(self):
        self.sorter.classify.return_value = SortingResult(
            topic="summarize", language="de", web_search=True, model_id=10, provider="openai", model_name="gpt-4o-mini"
        )
        history = [make_message("earlier", message_id=0)]
        message = make_message("Fasse diesen Text zusammen")

        result = self.classifier.classify(message, history)

        self.sorter.classify.assert_called_once_with(message, history, 7)
        self.assertEqual(result.topic, "summarize")
        self.assertEqual(result.language, "de")
        self.assertTrue(result.web_search)
        self.assertFalse(result.skip_sorting)
        self.assertEqual(result.model_id, 10)

    def test_sorting_failure_degrades_to_general_english(self):
        self.sorter.classify.side_effect = RuntimeError("sorter exploded")
        message = make_message("hola", language="es")

        result = self.classifier.classify(message, [])

        self.assertEqual(result.topic, "general")
        self.assertEqual(result.language, "en")
        self.assertEqual(result.source, ClassificationSource.AI_SORTING)

    def test_non_numeric_recorded_model_is_ignored(self):
        self.overrides.set(12, OverrideKey.MODEL_ID.value, "abc")
        message = make_message("hello", message_id=12)

        result = self.classifier.classify(message, [])

        self.assertEqual(result.source, ClassificationSource.AI_SORTING)


class TestDetectToolCommand(unittest.TestCase):

    def test_known_prefixes(self):
        self.assertEqual(detect_tool_command("/vid a sunset"), "tools:vid")
        self.assertEqual(detect_tool_command("/search python"), "tools:search")
        self.assertEqual(detect_tool_command("/docs"), "tools:filesort")

    def test_command_must_start_the_text(self):
        self.assertIsNone(detect_tool_command("show me /pic"))
        self.assertIsNone(detect_tool_command("/unknown thing"))
        self.assertIsNone(detect_tool_command(""))


if __name__ == "__main__":
    unittest.main(verbosity=2)
