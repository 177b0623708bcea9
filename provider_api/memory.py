"""
In-memory collaborator implementations for local runs, demos, and tests.

These classes implement the interfaces in `provider_api.base` with plain dictionaries
and lists so the whole pipeline can run without a database, a vector index or any
network access. Behavior is deterministic, which keeps unit tests reproducible.
"""

import copy
import itertools
import threading
from typing import Dict, List, Optional, Tuple

from shared.models import Direction, Message, PromptTemplate, RetrievedChunk
from .base import MessageStore, OverrideStore, Preprocessor, PromptStore, RetrievalService


class InMemoryMessageStore(MessageStore):
    """Dictionary-backed message store with auto-incrementing ids."""

    def __init__(self) -> None:
        self._messages: Dict[int, Message] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def get(self, message_id: int) -> Optional[Message]:
        message = self._messages.get(message_id)
        return copy.copy(message) if message else None

    def save(self, message: Message) -> Message:
        with self._lock:
            message.id = next(self._ids)
            self._messages[message.id] = copy.copy(message)
        return message

    def update(self, message: Message) -> None:
        if message.id is None or message.id not in self._messages:
            raise KeyError(f"Unknown message id: {message.id}")
        self._messages[message.id] = copy.copy(message)

    def history_for(self, message: Message, max_messages: int, max_chars: Optional[int] = None) -> List[Message]:
        if message.conversation_id:
            candidates = [
                m for m in self._messages.values()
                if m.user_id == message.user_id and m.conversation_id == message.conversation_id
            ]
        else:
            candidates = [
                m for m in self._messages.values()
                if m.user_id == message.user_id and m.tracking_id == message.tracking_id
            ]
        earlier = sorted(
            (m for m in candidates if m.id != message.id and (message.id is None or m.id < message.id)),
            key=lambda m: m.id,
        )
        window = earlier[-max_messages:] if max_messages else earlier
        if max_chars:
            kept: List[Message] = []
            total = 0
            for m in reversed(window):
                total += len(m.text or "")
                if total > max_chars and kept:
                    break
                kept.append(m)
            window = list(reversed(kept))
        return [copy.copy(m) for m in window]

    def find_reply(self, tracking_id: str, after_id: Optional[int] = None) -> Optional[Message]:
        replies = [
            m for m in self._messages.values()
            if m.tracking_id == tracking_id and m.direction == Direction.OUT
            and (after_id is None or m.id > after_id)
        ]
        if not replies:
            return None
        return copy.copy(max(replies, key=lambda m: m.id))


class InMemoryOverrideStore(OverrideStore):

    def __init__(self) -> None:
        self._values: Dict[Tuple[int, str], str] = {}

    def get(self, message_id: int, key: str) -> Optional[str]:
        return self._values.get((message_id, key))

    def set(self, message_id: int, key: str, value: str) -> None:
        # write-once, like the SQLite store
        self._values.setdefault((message_id, key), str(value))


class InMemoryPromptStore(PromptStore):
    """
    Prompt templates keyed by (owner, topic, language).

    Lookups prefer the owner's prompt, then the global prompt (owner 0); within each,
    the requested language wins over English.
    """

    def __init__(self, prompts: Optional[List[PromptTemplate]] = None) -> None:
        self._prompts: Dict[Tuple[int, str, str], PromptTemplate] = {}
        for prompt in prompts or []:
            self.add(prompt)

    def add(self, prompt: PromptTemplate) -> None:
        self._prompts[(prompt.owner_id, prompt.topic, prompt.language)] = prompt

    def find_by_topic(self, topic: str, owner_id: int, language: str) -> Optional[PromptTemplate]:
        for owner in dict.fromkeys((owner_id, 0)):
            for lang in dict.fromkeys((language, "en")):
                prompt = self._prompts.get((owner, topic, lang))
                if prompt:
                    return prompt
        return None

    def list_topics(self, owner_id: int, language: str) -> List[PromptTemplate]:
        topics = sorted({topic for (owner, topic, _lang) in self._prompts if owner in (0, owner_id)})
        found = (self.find_by_topic(topic, owner_id, language) for topic in topics)
        return [prompt for prompt in found if prompt is not None]


class InMemoryRetrievalService(RetrievalService):
    """
    Keyword-overlap retrieval over chunks registered per (user, group key).

    The score is the share of query words found in the chunk; good enough to exercise
    ranking, limits and thresholds without an embedding index.
    """

    def __init__(self) -> None:
        self._chunks: Dict[Tuple[int, str], List[RetrievedChunk]] = {}

    def add(self, user_id: int, group_key: str, text: str, source: Optional[str] = None) -> None:
        self._chunks.setdefault((user_id, group_key), []).append(
            RetrievedChunk(text=text, score=0.0, source=source)
        )

    def semantic_search(self, query: str, user_id: int, group_key: str, limit: int, min_score: float) -> List[RetrievedChunk]:
        words = {w for w in query.lower().split() if len(w) > 2}
        if not words:
            return []
        scored = []
        for chunk in self._chunks.get((user_id, group_key), []):
            text = chunk.text.lower()
            score = sum(1 for w in words if w in text) / len(words)
            if score >= min_score:
                scored.append(RetrievedChunk(text=chunk.text, score=score, source=chunk.source))
        scored.sort(key=lambda c: c.score, reverse=True)
        return scored[:limit]


class PassthroughPreprocessor(Preprocessor):
    """Preprocessor used when file extraction happens upstream."""

    def preprocess(self, message: Message) -> Message:
        return message
