"""
Deterministic mock generation provider for local runs, demos, and tests.

This module provides a reference implementation of `GenerationProvider` so the engine
can be exercised end-to-end without credentials or network access. Chat replies echo
the last user turn, streaming emits that reply word by word, and media generation
returns stable placeholder URLs. Because outputs are stable, behavior is reproducible
across machines.

Usage:
- Select it with `"llm": {"provider": "mock"}` in config.json (or LLM_PROVIDER=mock).
- Pass `replies=[...]` to script exact responses for a test.
"""

import hashlib
from typing import Any, Dict, List, Optional

from shared.models import ChunkCallback
from .base import GenerationProvider

MOCK_PROVIDER = "mock"


class MockGenerationProvider(GenerationProvider):
    """
    In-memory provider with scripted or echoed replies.

    Every call is recorded in `calls` as `(method, payload, options)` so tests can assert
    on the exact messages a handler assembled.
    """

    def __init__(self, replies: Optional[List[str]] = None) -> None:
        self._replies = list(replies or [])
        self.calls: List[tuple] = []

    def _next_reply(self, messages: List[Dict[str, str]]) -> str:
        if self._replies:
            return self._replies.pop(0)
        user_turns = [m["content"] for m in messages if m.get("role") == "user"]
        return f"Echo: {user_turns[-1] if user_turns else ''}"

    def _model(self, options: Dict[str, Any]) -> str:
        return options.get("model") or "mock-chat"

    def chat(self, messages, user_id, options):
        self.calls.append(("chat", messages, options))
        content = self._next_reply(messages)
        return {
            "content": content,
            "provider": MOCK_PROVIDER,
            "model": self._model(options),
            "usage": {"prompt_tokens": sum(len(m["content"].split()) for m in messages),
                      "completion_tokens": len(content.split())},
        }

    def chat_stream(self, messages, chunk_cb: ChunkCallback, user_id, options):
        self.calls.append(("chat_stream", messages, options))
        content = self._next_reply(messages)
        words = content.split(" ")
        for index, word in enumerate(words):
            chunk_cb(word if index == len(words) - 1 else word + " ")
        return {
            "provider": MOCK_PROVIDER,
            "model": self._model(options),
            "usage": {"completion_tokens": len(words)},
        }

    def generate_image(self, prompt, user_id, options):
        self.calls.append(("generate_image", prompt, options))
        digest = hashlib.sha1(prompt.encode("utf-8")).hexdigest()[:12]
        return {
            "images": [{"url": f"https://mock.local/images/{digest}.png", "revised_prompt": prompt}],
            "provider": MOCK_PROVIDER,
            "model": options.get("model") or "mock-image",
        }

    def generate_video(self, prompt, user_id, options):
        self.calls.append(("generate_video", prompt, options))
        digest = hashlib.sha1(prompt.encode("utf-8")).hexdigest()[:12]
        return {
            "videos": [{"url": f"https://mock.local/videos/{digest}.mp4", "revised_prompt": prompt}],
            "provider": MOCK_PROVIDER,
            "model": options.get("model") or "mock-video",
        }

    def embed(self, text, user_id, options):
        self.calls.append(("embed", text, options))
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return {
            "embedding": [b / 255.0 for b in digest[:16]],
            "provider": MOCK_PROVIDER,
            "model": options.get("model") or "mock-embedding",
        }
