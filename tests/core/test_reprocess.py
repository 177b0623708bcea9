"""
Unit tests for `core/reprocess.py` – ReprocessCoordinator ("again").

Stores are in-memory and generation goes through the deterministic mock provider, so the tests can
inspect every message row, every recorded override and the exact request sent to the model.
"""

import unittest

from config import CONFIG
from core.reprocess import ReprocessCoordinator, ReprocessRequest
from provider_api import InMemoryMessageStore, InMemoryOverrideStore, InMemoryPromptStore, MockGenerationProvider
from services.model_config import ModelConfigService
from shared.errors import MessageNotFound, OwnershipFailure, ProviderFailure
from shared.models import Direction, Message, MessageStatus, OverrideKey, PromptTemplate


class TestReprocessCoordinator(unittest.TestCase):

    def setUp(self):
        self.messages = InMemoryMessageStore()
        self.overrides = InMemoryOverrideStore()
        self.binder = ModelConfigService.from_config(CONFIG)
        self.prompts = InMemoryPromptStore([PromptTemplate(topic="translate", text="Translate to German.")])
        self.original = self.messages.save(Message(
            user_id=5, tracking_id="trk-7", text="Good morning", topic="general", language="en",
            status=MessageStatus.COMPLETE,
        ))

    def coordinator(self, replies):
        self.provider = MockGenerationProvider(replies=replies)
        return ReprocessCoordinator(self.messages, self.overrides, self.binder, self.provider, self.prompts)

    def test_reprocess_with_prompt_and_model(self):
        coordinator = self.coordinator(["Guten Morgen [IMAGE:https://cdn.example.org/sun.png]"])

        result = coordinator.reprocess(5, ReprocessRequest(self.original.id, model_id=2, prompt_topic="translate"))

        self.assertTrue(result["success"])
        reply = result["message"]
        self.assertEqual(reply["text"], "Guten Morgen")
        self.assertEqual(reply["tracking_id"], "trk-7")
        self.assertTrue(reply["has_file"])
        self.assertEqual(reply["file_path"], "https://cdn.example.org/sun.png")
        self.assertEqual(reply["file_type"], "png")
        self.assertEqual(reply["model"], "gpt-4o")
        self.assertEqual(reply["topic"], "translate")

        inbound = self.messages.get(reply["inbound_id"])
        self.assertNotEqual(inbound.id, self.original.id)
        self.assertEqual(inbound.tracking_id, "trk-7")
        self.assertEqual(inbound.direction, Direction.IN)
        self.assertEqual(inbound.status, MessageStatus.COMPLETE)
        self.assertEqual(self.overrides.get(inbound.id, OverrideKey.PROMPT_ID.value), "translate")
        self.assertEqual(self.overrides.get(inbound.id, OverrideKey.MODEL_ID.value), "2")

        outbound = self.messages.get(reply["id"])
        self.assertEqual(outbound.direction, Direction.OUT)
        self.assertEqual(outbound.model_id, 2)

        _, sent, options = self.provider.calls[0]
        self.assertEqual(sent[0], {"role": "system", "content": "Translate to German."})
        self.assertEqual(sent[-1], {"role": "user", "content": "Good morning"})
        self.assertEqual(options["model"], "gpt-4o")

    def test_again_options_predict_the_next_model(self):
        result = self.coordinator(["hi"]).reprocess(5, ReprocessRequest(self.original.id, model_id=2))

        again = result["again"]
        self.assertEqual(again["tag"], "CHAT")
        self.assertEqual([m["id"] for m in again["eligible"]], [2, 3, 1])
        self.assertEqual(again["predicted_next"]["id"], 3)

    def test_default_chat_model_without_choice(self):
        result = self.coordinator(["hi"]).reprocess(5, ReprocessRequest(self.original.id))

        self.assertEqual(result["message"]["model"], "gpt-4o-mini")
        self.assertEqual(self.provider.calls[0][1], [{"role": "user", "content": "Good morning"}])

    def test_sorting_topic_is_not_recorded(self):
        result = self.coordinator(["hi"]).reprocess(5, ReprocessRequest(self.original.id, prompt_topic="tools:sort"))

        inbound_id = result["message"]["inbound_id"]
        self.assertIsNone(self.overrides.get(inbound_id, OverrideKey.PROMPT_ID.value))
        self.assertEqual(result["message"]["topic"], "general")

    def test_empty_reply_becomes_placeholder(self):
        result = self.coordinator([""]).reprocess(5, ReprocessRequest(self.original.id))

        self.assertEqual(result["message"]["text"], "No response")
        self.assertFalse(result["message"]["has_file"])

    def test_other_users_message_is_rejected(self):
        with self.assertRaises(OwnershipFailure):
            self.coordinator(["hi"]).reprocess(6, ReprocessRequest(self.original.id))

        self.assertIsNone(self.messages.get(self.original.id + 1))

    def test_missing_message(self):
        with self.assertRaises(MessageNotFound):
            self.coordinator(["hi"]).reprocess(5, ReprocessRequest(999))

    def test_unknown_model_marks_clone_failed(self):
        with self.assertRaises(ProviderFailure):
            self.coordinator(["hi"]).reprocess(5, ReprocessRequest(self.original.id, model_id=99))

        clone = self.messages.get(self.original.id + 1)
        self.assertEqual(clone.status, MessageStatus.ERROR)
        self.assertEqual(clone.tracking_id, "trk-7")
        self.assertEqual(self.provider.calls, [])


if __name__ == "__main__":
    unittest.main(verbosity=2)
