"""
Unit tests for `services/message_queue.py` – queued ingestion and the worker batch.

The job table lives in a temporary SQLite file. Most tests mock the orchestrator; one test runs a
queued message through a fully wired engine (in-memory stores, mock provider) to check that a
queued override reaches classification.
"""

import asyncio
import os
import tempfile
import unittest
from unittest.mock import MagicMock

from config import CONFIG
from core.bootstrap import build_engine
from provider_api import InMemoryMessageStore, InMemoryOverrideStore, MockGenerationProvider
from services.message_queue import JOB_COMPLETE, JOB_ERROR, JOB_PENDING, MessageQueue
from shared.models import Message, MessageStatus, OverrideKey, PipelineResult, RunOverride


class TestMessageQueue(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.tmp.name, "queue.sqlite")
        self.orchestrator = MagicMock()
        self.messages = InMemoryMessageStore()
        self.overrides = InMemoryOverrideStore()
        self.queue = MessageQueue(self.orchestrator, self.messages, self.db_path, CONFIG, self.overrides)

    def tearDown(self):
        self.tmp.cleanup()

    def enqueue(self, text="hello", **kwargs):
        return self.queue.enqueue(Message(user_id=1, tracking_id=f"trk-{text}", text=text), **kwargs)

    def test_enqueue_persists_queued_message_and_job(self):
        message = self.enqueue(options={"web_search": True})

        self.assertEqual(self.messages.get(message.id).status, MessageStatus.QUEUED)
        self.assertEqual(self.queue.job_status(message.id)["status"], JOB_PENDING)
        jobs = self.queue.fetch_pending(10)
        self.assertEqual(jobs, [{"id": 1, "message_id": message.id, "options": {"web_search": True}}])

    def test_enqueue_records_run_override(self):
        message = self.enqueue(run_override=RunOverride(model_id=2, prompt_topic="translate"))

        self.assertEqual(self.overrides.get(message.id, OverrideKey.PROMPT_ID.value), "translate")
        self.assertEqual(self.overrides.get(message.id, OverrideKey.MODEL_ID.value), "2")

    def test_override_without_store_is_rejected(self):
        queue = MessageQueue(self.orchestrator, self.messages, self.db_path, CONFIG)
        with self.assertRaises(ValueError):
            queue.enqueue(Message(user_id=1, tracking_id="t", text="x"), run_override=RunOverride(model_id=2))

    def test_worker_processes_jobs_in_order(self):
        first, second = self.enqueue("one"), self.enqueue("two")
        self.orchestrator.process.side_effect = [
            PipelineResult(success=True, message_id=first.id, tracking_id=first.tracking_id),
            PipelineResult(success=False, message_id=second.id, tracking_id=second.tracking_id, error="provider down"),
        ]

        summary = self.queue.process_pending_messages()

        self.assertEqual(summary, {"processed": 2, "complete": 1, "error": 1})
        processed = [c.args[0].id for c in self.orchestrator.process.call_args_list]
        self.assertEqual(processed, [first.id, second.id])
        self.assertEqual(self.queue.job_status(first.id)["status"], JOB_COMPLETE)
        failed = self.queue.job_status(second.id)
        self.assertEqual(failed["status"], JOB_ERROR)
        self.assertEqual(failed["error"], "provider down")
        self.assertEqual(self.queue.fetch_pending(10), [])

    def test_crashing_job_is_marked_failed(self):
        message = self.enqueue()
        self.orchestrator.process.side_effect = RuntimeError("unexpected")

        summary = self.queue.process_pending_messages()

        self.assertEqual(summary["error"], 1)
        self.assertEqual(self.queue.job_status(message.id)["error"], "unexpected")

    def test_missing_message_fails_job(self):
        message = self.enqueue()
        queue = MessageQueue(self.orchestrator, InMemoryMessageStore(), self.db_path, CONFIG)

        summary = queue.process_pending_messages()

        self.assertEqual(summary, {"processed": 1, "complete": 0, "error": 1})
        self.orchestrator.process.assert_not_called()
        self.assertIn("not found", queue.job_status(message.id)["error"])

    def test_batch_limit(self):
        for text in ("a", "b", "c"):
            self.enqueue(text)
        self.orchestrator.process.return_value = PipelineResult(success=True, message_id=1, tracking_id="t")

        self.assertEqual(self.queue.process_pending_messages(limit=2)["processed"], 2)
        self.assertEqual(len(self.queue.fetch_pending(10)), 1)

    def test_unknown_job_status(self):
        self.assertIsNone(self.queue.job_status(404))

    def test_scheduler_start_and_shutdown(self):
        async def lifecycle():
            self.queue.start()
            self.assertIsNotNone(self.queue.scheduler)
            self.assertIsNotNone(self.queue.scheduler.get_job("message_queue_worker"))
            self.queue.shutdown()

        asyncio.run(lifecycle())
        self.assertIsNone(self.queue.scheduler)


class TestQueuedPipeline(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.engine = build_engine(
            config=CONFIG,
            provider=MockGenerationProvider(replies=["Guten Morgen"]),
            messages=InMemoryMessageStore(),
            overrides=InMemoryOverrideStore(),
            db_path=os.path.join(self.tmp.name, "engine.sqlite"),
        )

    def tearDown(self):
        self.tmp.cleanup()

    def test_queued_override_reaches_classification(self):
        message = self.engine.queue.enqueue(
            Message(user_id=8, tracking_id="trk-q", text="Good morning"),
            run_override=RunOverride(prompt_topic="translate"),
        )

        summary = self.engine.queue.process_pending_messages()

        self.assertEqual(summary["complete"], 1)
        stored = self.engine.messages.get(message.id)
        self.assertEqual(stored.status, MessageStatus.COMPLETE)
        self.assertEqual(stored.topic, "translate")
        reply = self.engine.messages.find_reply("trk-q", after_id=message.id)
        self.assertEqual(reply.text, "Guten Morgen")
        self.assertEqual(len(self.engine.provider.calls), 1)


if __name__ == "__main__":
    unittest.main(verbosity=2)
