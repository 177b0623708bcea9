"""
Unit tests for `services/message_store.py` – SQLite message and override persistence.

Each test works on a fresh database file in a temporary directory.
"""

import os
import tempfile
import unittest

from services.message_store import SQLiteMessageStore, SQLiteOverrideStore
from shared.models import Direction, Message, MessageStatus


class TestSQLiteMessageStore(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.tmp.name, "data", "messages.sqlite")
        self.store = SQLiteMessageStore(self.db_path)

    def tearDown(self):
        self.tmp.cleanup()

    def save(self, text, direction=Direction.IN, **kwargs):
        fields = {"user_id": 1, "tracking_id": "trk", **kwargs}
        return self.store.save(Message(text=text, direction=direction, **fields))

    def test_save_get_and_update(self):
        message = self.save("hello", file_text="pdf text", language="en")
        self.assertIsNotNone(message.id)

        message.status = MessageStatus.COMPLETE
        message.topic = "general"
        self.store.update(message)

        loaded = self.store.get(message.id)
        self.assertEqual(loaded.text, "hello")
        self.assertEqual(loaded.status, MessageStatus.COMPLETE)
        self.assertEqual(loaded.topic, "general")
        self.assertEqual(loaded.file_text, "pdf text")
        self.assertEqual(loaded.created_at, message.created_at)

    def test_get_missing_returns_none(self):
        self.assertIsNone(self.store.get(123))

    def test_update_requires_id(self):
        with self.assertRaises(ValueError):
            self.store.update(Message(user_id=1, tracking_id="t", text="x"))

    def test_history_by_conversation_is_oldest_first(self):
        self.save("q1", conversation_id="c1")
        self.save("a1", Direction.OUT, conversation_id="c1")
        self.save("other", conversation_id="c2")
        self.save("q2", conversation_id="c1")
        current = self.save("q3", conversation_id="c1")

        history = self.store.history_for(current, max_messages=10)

        self.assertEqual([m.text for m in history], ["q1", "a1", "q2"])

    def test_history_limits_count_and_characters(self):
        for text in ("a" * 50, "b" * 50, "c" * 50):
            self.save(text, conversation_id="c1")
        current = self.save("now", conversation_id="c1")

        self.assertEqual([m.text[0] for m in self.store.history_for(current, max_messages=2)], ["b", "c"])
        self.assertEqual([m.text[0] for m in self.store.history_for(current, 10, max_chars=120)], ["b", "c"])

    def test_history_falls_back_to_tracking_id(self):
        self.save("first", tracking_id="t-1")
        self.save("unrelated", tracking_id="t-2")
        current = self.save("again", tracking_id="t-1")

        self.assertEqual([m.text for m in self.store.history_for(current, 10)], ["first"])

    def test_find_reply_returns_newest_outbound_after_id(self):
        inbound = self.save("q")
        self.save("old answer", Direction.OUT)
        retry = self.save("q")
        self.save("new answer", Direction.OUT)

        self.assertEqual(self.store.find_reply("trk").text, "new answer")
        self.assertEqual(self.store.find_reply("trk", after_id=inbound.id).text, "new answer")
        self.assertIsNone(self.store.find_reply("missing"))
        self.assertEqual(self.store.find_reply("trk", after_id=retry.id).text, "new answer")


class TestSQLiteOverrideStore(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.store = SQLiteOverrideStore(os.path.join(self.tmp.name, "messages.sqlite"))

    def tearDown(self):
        self.tmp.cleanup()

    def test_write_once(self):
        self.store.set(1, "PROMPTID", "translate")
        self.store.set(1, "PROMPTID", "summarize")

        self.assertEqual(self.store.get(1, "PROMPTID"), "translate")
        self.assertIsNone(self.store.get(1, "MODEL_ID"))
        self.assertIsNone(self.store.get(2, "PROMPTID"))


if __name__ == "__main__":
    unittest.main(verbosity=2)
