"""
Unit tests for `handlers/chat.py` – ChatHandler model precedence, context assembly and envelopes.

A small model catalog is built in the test so model ids, feature flags and providers are explicit.
Generation goes through the deterministic mock provider, which records every request, so the tests
assert directly on the messages the handler assembled.
"""

import unittest
from unittest.mock import MagicMock

from config import CONFIG
from core.classifier import MessageClassifier
from handlers.chat import ChatHandler, decode_envelope, format_search_results, retrieval_keys
from provider_api import InMemoryOverrideStore, InMemoryPromptStore, InMemoryRetrievalService, MockGenerationProvider
from services.model_config import ModelConfigService
from shared.errors import ProviderFailure, SearchFormattingFailure
from shared.models import (
    Capability,
    CatalogModel,
    ClassificationResult,
    ClassificationSource,
    Direction,
    Err,
    Message,
    OverrideKey,
    PromptTemplate,
    RetrievedChunk,
)


def make_binder() -> ModelConfigService:
    catalog = [
        CatalogModel(id=1, tag=Capability.CHAT, provider="openai", name="gpt-4o-mini"),
        CatalogModel(id=2, tag=Capability.CHAT, provider="openai", name="gpt-4o"),
        CatalogModel(id=3, tag=Capability.CHAT, provider="openai", name="o1-mini",
                     features=frozenset({"no_system_role", "no_streaming"})),
        CatalogModel(id=7, tag=Capability.CHAT, provider="nebius", name="llama-3.3-70b"),
        CatalogModel(id=10, tag=Capability.SORT, provider="openai", name="gpt-4o-mini", selectable=False),
    ]
    return ModelConfigService(catalog, {"CHAT": 1, "SORT": 10})


def classification(topic="general", **kwargs) -> ClassificationResult:
    return ClassificationResult(topic=topic, language="en", source=ClassificationSource.AI_SORTING, **kwargs)


class TestChatHandler(unittest.TestCase):

    def setUp(self):
        self.binder = make_binder()
        self.provider = MockGenerationProvider(replies=["answer"])
        self.prompts = InMemoryPromptStore([
            PromptTemplate(topic="general", text="General prompt."),
            PromptTemplate(topic="support", text="Support prompt.", ai_model=2),
            PromptTemplate(topic="billing", text="Billing prompt."),
        ])
        self.retrieval = InMemoryRetrievalService()
        self.handler = ChatHandler(self.binder, self.provider, self.prompts, self.retrieval, CONFIG)
        self.message = Message(user_id=4, tracking_id="t", text="How do I reset my invoice address?", id=9)

    def sent_messages(self):
        return self.provider.calls[-1][1]

    def test_default_model_and_prompt(self):
        response = self.handler.handle(self.message, [], classification())

        self.assertEqual(response.content, "answer")
        self.assertEqual(response.metadata["model_id"], 1)
        self.assertEqual(response.metadata["handler"], "chat")
        self.assertEqual(self.sent_messages()[0], {"role": "system", "content": "General prompt."})
        self.assertEqual(self.sent_messages()[-1]["content"], self.message.text)

    def test_model_precedence(self):
        binding = self.handler.resolve_model(classification("support", model_id=7, override_model_id=3),
                                             self.prompts.find_by_topic("support", 4, "en"), 4)
        self.assertEqual(binding.model_id, 7)

        binding = self.handler.resolve_model(classification("support", override_model_id=3),
                                             self.prompts.find_by_topic("support", 4, "en"), 4)
        self.assertEqual(binding.model_id, 2)

        binding = self.handler.resolve_model(classification("billing", override_model_id=3),
                                             self.prompts.find_by_topic("billing", 4, "en"), 4)
        self.assertEqual(binding.model_id, 3)

        binding = self.handler.resolve_model(classification("billing"), None, 4)
        self.assertEqual(binding.model_id, 1)

    def test_recorded_override_pins_the_model_over_the_prompt(self):
        overrides = InMemoryOverrideStore()
        overrides.set(9, OverrideKey.PROMPT_ID.value, "support")
        overrides.set(9, OverrideKey.MODEL_ID.value, "7")
        classifier = MessageClassifier(MagicMock(), self.binder, overrides)

        result = classifier.classify(self.message, [])
        response = self.handler.handle(self.message, [], result)

        self.assertEqual(result.topic, "support")
        self.assertEqual(result.model_id, 7)
        self.assertEqual(result.source, ClassificationSource.OVERRIDE)
        self.assertEqual(self.provider.calls[-1][2]["provider"], "nebius")
        self.assertEqual(self.provider.calls[-1][2]["model"], "llama-3.3-70b")
        self.assertEqual(response.metadata["model_id"], 7)

    def test_unknown_model_is_a_provider_failure(self):
        result = self.handler.run(self.message, [], classification(model_id=99))

        self.assertIsInstance(result, Err)
        self.assertIsInstance(result.error.exception, ProviderFailure)
        self.assertEqual(result.error.handler, "chat")
        self.assertEqual(self.provider.calls, [])

    def test_no_knowledge_block_when_topic_index_is_empty(self):
        response = self.handler.handle(self.message, [], classification("billing"))

        self.assertEqual(self.sent_messages()[0]["content"], "Billing prompt.")
        self.assertEqual(response.metadata["retrieved_chunks"], 0)

    def test_knowledge_block_appended_for_topic_key(self):
        self.retrieval.add(4, "TASKPROMPT:billing", "How to reset the invoice address? Open Settings > Billing.",
                           source="faq.md")

        response = self.handler.handle(self.message, [], classification("billing"))

        system = self.sent_messages()[0]["content"]
        self.assertTrue(system.startswith("Billing prompt."))
        self.assertIn("## Knowledge Base Context", system)
        self.assertIn("source: faq.md", system)
        self.assertEqual(response.metadata["retrieved_chunks"], 1)

    def test_explicit_group_key_falls_back_to_topic_key(self):
        retrieval = MagicMock()
        retrieval.semantic_search.side_effect = [[], [RetrievedChunk(text="From the topic index", score=0.9)]]
        handler = ChatHandler(self.binder, self.provider, self.prompts, retrieval, CONFIG)

        handler.handle(self.message, [], classification("billing"), options={"rag_group_key": "docs:acme"})

        keys = [c.kwargs["group_key"] for c in retrieval.semantic_search.call_args_list]
        self.assertEqual(keys, ["docs:acme", "TASKPROMPT:billing"])
        self.assertIn("From the topic index", self.sent_messages()[0]["content"])

    def test_general_topic_without_key_skips_retrieval(self):
        retrieval = MagicMock()
        handler = ChatHandler(self.binder, self.provider, self.prompts, retrieval, CONFIG)

        handler.handle(self.message, [], classification("general"))

        retrieval.semantic_search.assert_not_called()

    def test_retrieval_failure_is_not_fatal(self):
        retrieval = MagicMock()
        retrieval.semantic_search.side_effect = ConnectionError("vector index down")
        handler = ChatHandler(self.binder, self.provider, self.prompts, retrieval, CONFIG)

        response = handler.handle(self.message, [], classification("billing"))

        self.assertEqual(response.content, "answer")
        self.assertEqual(self.sent_messages()[0]["content"], "Billing prompt.")

    def test_model_without_system_role_gets_no_system_message(self):
        self.handler.handle(self.message, [], classification(model_id=3))

        roles = [m["role"] for m in self.sent_messages()]
        self.assertNotIn("system", roles)

    def test_model_without_streaming_sends_one_chunk(self):
        chunks = []

        response = self.handler.handle_stream(self.message, [], classification(model_id=3), chunks.append)

        self.assertEqual(chunks, ["answer"])
        self.assertTrue(response.streamed)
        self.assertIsNone(response.content)
        self.assertEqual(self.provider.calls[-1][0], "chat")

    def test_streaming_model_streams_word_by_word(self):
        self.provider = MockGenerationProvider(replies=["one two three"])
        handler = ChatHandler(self.binder, self.provider, self.prompts, self.retrieval, CONFIG)
        chunks = []

        handler.handle_stream(self.message, [], classification(), chunks.append)

        self.assertEqual(chunks, ["one ", "two ", "three"])
        self.assertEqual(self.provider.calls[-1][0], "chat_stream")

    def test_thread_and_file_text_are_included(self):
        thread = [
            Message(user_id=4, tracking_id="t", text="here is my contract", id=1, file_text="Clause 1: ..."),
            Message(user_id=4, tracking_id="t", text="Noted.", id=2, direction=Direction.OUT),
        ]
        message = Message(user_id=4, tracking_id="t", text="summarize it", id=3, file_text="Appendix A")

        self.handler.handle(message, thread, classification())

        sent = self.sent_messages()
        self.assertEqual([m["role"] for m in sent], ["system", "user", "assistant", "user"])
        self.assertIn("User provided 1 file(s):", sent[1]["content"])
        self.assertIn("Clause 1: ...", sent[1]["content"])
        self.assertIn("Appendix A", sent[3]["content"])

    def test_envelope_reply_is_decoded(self):
        self.provider = MockGenerationProvider(replies=[
            '{"text": "Here is your report.", "attachments": [{"path": "/files/report.pdf"}],'
            ' "links": [{"url": "https://example.org", "title": "Source"}]}'
        ])
        handler = ChatHandler(self.binder, self.provider, self.prompts, self.retrieval, CONFIG)

        response = handler.handle(self.message, [], classification())

        self.assertEqual(response.content, "Here is your report.")
        self.assertEqual(response.metadata["attachments"], [{"path": "/files/report.pdf", "type": "pdf"}])
        self.assertEqual(response.metadata["links"][0]["url"], "https://example.org")


class TestChatHelpers(unittest.TestCase):

    def test_retrieval_keys(self):
        self.assertEqual(retrieval_keys("billing", None), ("TASKPROMPT:billing", None))
        self.assertEqual(retrieval_keys("general", None), (None, None))
        self.assertEqual(retrieval_keys("billing", "docs"), ("docs", "TASKPROMPT:billing"))
        self.assertEqual(retrieval_keys("billing", "TASKPROMPT:billing"), ("TASKPROMPT:billing", None))
        self.assertEqual(retrieval_keys("general", "docs"), ("docs", None))

    def test_non_envelope_content_is_plain_text(self):
        self.assertEqual(decode_envelope("just text"), ("just text", {}))
        self.assertEqual(decode_envelope('{"answer": 42}'), ('{"answer": 42}', {}))
        self.assertEqual(decode_envelope("{not json"), ("{not json", {}))

    def test_malformed_search_result_raises(self):
        with self.assertRaises(SearchFormattingFailure):
            format_search_results([object()])


if __name__ == "__main__":
    unittest.main(verbosity=2)
