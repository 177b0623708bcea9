"""
Unit tests for `handlers/media.py` – MediaGenerationHandler.

Image downloads are patched at `handlers.media.requests.get` and files land in a temporary upload
directory, so no network or project directories are touched.
"""

import os
import shutil
import tempfile
import unittest
from unittest.mock import MagicMock, patch

import requests

from config import CONFIG
from handlers.media import AUDIO, IMAGE, VIDEO, MediaGenerationHandler, media_type_for_text
from provider_api import MockGenerationProvider
from services.model_config import ModelConfigService
from shared.errors import ProviderFailure, StreamAborted
from shared.models import ClassificationResult, ClassificationSource, Message, Ok, ProgressStatus


def classification(topic="mediamaker", **kwargs) -> ClassificationResult:
    return ClassificationResult(topic=topic, language="en", source=ClassificationSource.AI_SORTING, **kwargs)


class TestMediaGenerationHandler(unittest.TestCase):

    def setUp(self):
        self.upload_dir = tempfile.mkdtemp()
        self.config = {**CONFIG, "paths": {**CONFIG["paths"], "upload_dir_full_path": self.upload_dir}}
        self.binder = ModelConfigService.from_config(CONFIG)
        self.provider = MockGenerationProvider()
        self.handler = MediaGenerationHandler(self.binder, self.provider, self.config)

    def tearDown(self):
        shutil.rmtree(self.upload_dir, ignore_errors=True)

    @patch("handlers.media.requests.get")
    def test_image_is_generated_and_stored_locally(self, mock_get):
        mock_get.return_value = MagicMock(content=b"\x89PNG", headers={"Content-Type": "image/png"})
        message = Message(user_id=2, tracking_id="t", text="/pic a red fox", id=1)
        chunks, events = [], []

        response = self.handler.handle_stream(message, [], classification("tools:pic"), chunks.append, events.append)

        self.assertEqual(chunks, ["Generated image: a red fox"])
        self.assertEqual(self.provider.calls[0][1], "a red fox")
        self.assertEqual(self.provider.calls[0][2]["model"], "dall-e-3")
        metadata = response.metadata
        self.assertEqual(metadata["model_id"], 30)
        self.assertEqual(metadata["file"]["type"], "image")
        self.assertTrue(metadata["file"]["path"].startswith("/api/v1/files/uploads/generated_"))
        self.assertTrue(os.path.exists(os.path.join(self.upload_dir, metadata["local_path"])))
        self.assertEqual(events[0].status, ProgressStatus.GENERATING)

    def test_stored_image_is_logged_with_its_file_name(self):
        with self.assertLogs(self.handler.logger, level="INFO") as logs:
            filename = self.handler.download_image(None, b64_data="iVBORw0KGgo=")

        self.assertTrue(filename.startswith("generated_"))
        stored = [r for r in logs.records if r.getMessage() == "Image stored locally"]
        self.assertEqual(stored[0].stored_file, filename)

    @patch("handlers.media.requests.get", side_effect=requests.ConnectionError("cdn down"))
    def test_failed_download_keeps_remote_url(self, _mock_get):
        message = Message(user_id=2, tracking_id="t", text="a lighthouse at dawn", id=1)

        response = self.handler.handle(message, [], classification())

        self.assertEqual(response.content, "Generated image: a lighthouse at dawn")
        self.assertIsNone(response.metadata["local_path"])
        self.assertTrue(response.metadata["file"]["path"].startswith("https://mock.local/images/"))

    @patch("handlers.media.requests.get", side_effect=requests.ConnectionError("offline"))
    def test_chosen_chat_model_is_not_used_for_images(self, _mock_get):
        message = Message(user_id=2, tracking_id="t", text="a lighthouse at dawn", id=1)

        media_type, model_id, _, model_name = self.handler.resolve_media(message, classification(model_id=2))
        response = self.handler.handle(message, [], classification(model_id=2))

        self.assertEqual((media_type, model_id, model_name), (IMAGE, 30, "dall-e-3"))
        self.assertEqual(self.provider.calls[0][0], "generate_image")
        self.assertEqual(self.provider.calls[0][2]["model"], "dall-e-3")
        self.assertEqual(response.metadata["model_id"], 30)

    def test_chosen_video_model_sets_media_type(self):
        binder = ModelConfigService.from_config({**CONFIG, "models": {**CONFIG["models"], "catalog": [
            *CONFIG["models"]["catalog"],
            {"id": 40, "tag": "TEXT2VID", "provider": "openai", "name": "sora", "quality": 8.0, "rating": 0.8},
        ]}})
        handler = MediaGenerationHandler(binder, self.provider, self.config)
        message = Message(user_id=2, tracking_id="t", text="a lighthouse at dawn", id=1)

        self.assertEqual(handler.resolve_media(message, classification(model_id=40))[:3], (VIDEO, 40, "openai"))

    def test_video_request_uses_remote_url(self):
        message = Message(user_id=2, tracking_id="t", text="/vid waves crashing", id=1)

        response = self.handler.handle(message, [], classification("tools:vid"))

        self.assertEqual(self.provider.calls[0][0], "generate_video")
        self.assertEqual(response.metadata["file"]["type"], "video")
        self.assertTrue(response.metadata["file"]["path"].endswith(".mp4"))

    def test_generation_failure_is_streamed_not_raised(self):
        provider = MagicMock()
        provider.generate_image.side_effect = ProviderFailure("openai", "content policy violation")
        handler = MediaGenerationHandler(self.binder, provider, self.config)
        message = Message(user_id=2, tracking_id="t", text="draw something", id=1)
        chunks, events = [], []

        result = handler.run_stream(message, [], classification(), chunks.append, events.append)

        self.assertIsInstance(result, Ok)
        self.assertEqual(chunks, ["Sorry, image generation failed: content policy violation"])
        self.assertEqual(result.value.metadata["error"], "content policy violation")
        self.assertEqual(events[-1].status, ProgressStatus.ERROR)

    def test_audio_is_not_supported(self):
        message = Message(user_id=2, tracking_id="t", text="compose a song about rain", id=1)

        response = self.handler.handle(message, [], classification())

        self.assertEqual(response.content, "Sorry, audio generation failed: Audio generation is not supported yet")

    @patch("handlers.media.requests.get", side_effect=requests.ConnectionError("offline"))
    def test_raising_chunk_callback_aborts(self, _mock_get):
        message = Message(user_id=2, tracking_id="t", text="a cat", id=1)
        chunk_cb = MagicMock(side_effect=BrokenPipeError("socket closed"))

        with self.assertRaises(StreamAborted):
            self.handler.run_stream(message, [], classification(), chunk_cb)


class TestMediaTypeForText(unittest.TestCase):

    def test_media_type_inference(self):
        self.assertEqual(media_type_for_text("/vid a sunset"), VIDEO)
        self.assertEqual(media_type_for_text("a sunset", "tools:vid"), VIDEO)
        self.assertEqual(media_type_for_text("make a short movie of a dog"), VIDEO)
        self.assertEqual(media_type_for_text("some relaxing music"), AUDIO)
        self.assertEqual(media_type_for_text("a castle on a hill"), IMAGE)


if __name__ == "__main__":
    unittest.main(verbosity=2)
