"""
Media generation handler: images, videos and audio from a text prompt.

The handler decides the media type (from the chosen model's capability tag, or from keywords
in the prompt), resolves the model for the matching capability, generates the media and
streams a short description (the provider's revised prompt) as the visible reply. Generated
images are downloaded to local storage; videos and audio are referenced by their remote URL.
The resulting file reference is returned as metadata for the caller to persist.

This handler owns the presentation of its own failures: a generation error is streamed to
the user as a readable message and reported as an "error" progress event instead of being
raised, so the router never falls back to chat for a failed media request.
"""

import base64
import os
import re
import uuid
from typing import Any, Dict, List, Optional, Tuple

import requests

from provider_api.base import GenerationProvider, ModelBinder
from shared.errors import ProviderFailure, StreamAborted
from shared.models import Capability, ClassificationResult, HandlerResponse, Message, ProgressStatus
from shared.utils import notify
from .base import BaseHandler, HandlerName

IMAGE, VIDEO, AUDIO = "image", "video", "audio"

MEDIA_CAPABILITIES = {
    IMAGE: Capability.TEXT2PIC,
    VIDEO: Capability.TEXT2VID,
    AUDIO: Capability.TEXT2SOUND,
}
_CAPABILITY_MEDIA = {capability: media_type for media_type, capability in MEDIA_CAPABILITIES.items()}

_VIDEO_WORDS = re.compile(r"\b(video|film|movie|clip|animation|animated)\b", re.IGNORECASE)
_AUDIO_WORDS = re.compile(r"\b(audio|sound|music|voice|speech|song)\b", re.IGNORECASE)
_COMMAND_PREFIX = re.compile(r"^/(pic|vid)\b\s*", re.IGNORECASE)

_MIME_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/gif": "gif",
    "image/webp": "webp",
}


def media_type_for_text(text: str, topic: Optional[str] = None) -> str:
    """Infer the media type from the prompt; `/vid` and `tools:vid` always mean video."""
    if topic in ("tools:vid", "text2vid") or (text or "").lower().startswith("/vid"):
        return VIDEO
    if topic == "text2sound":
        return AUDIO
    if _VIDEO_WORDS.search(text or ""):
        return VIDEO
    if _AUDIO_WORDS.search(text or ""):
        return AUDIO
    return IMAGE


class MediaGenerationHandler(BaseHandler):
    """
    Handler for the image_generation intent.

    Args:
        binder: Model catalog lookups.
        provider: Generation provider.
        config: Application configuration (the `media` section).
    """

    def __init__(self, binder: ModelBinder, provider: GenerationProvider, config: Optional[Dict[str, Any]] = None):
        super().__init__(binder, provider, config)

    def setup(self) -> None:
        media = self.config.get("media", {})
        paths = self.config.get("paths", {})
        self.upload_dir = paths.get("upload_dir_full_path") or media.get("upload_dir", "user_data/uploads")
        self.public_prefix = media.get("public_prefix", "/api/v1/files/uploads").rstrip("/")
        self.download_timeout = float(media.get("download_timeout", 30))
        self.fallback_provider = media.get("fallback_image_provider", "openai")
        self.fallback_model = media.get("fallback_image_model", "dall-e-3")

    def get_handler_name(self) -> HandlerName:
        return HandlerName.MEDIA_GENERATION

    def resolve_media(self, message: Message, classification: ClassificationResult) -> Tuple[str, Optional[int], str, str]:
        """
        Return (media_type, model_id, provider, model_name) for this request.

        A media model chosen for the run decides the media type through its capability tag;
        a chosen model of any other capability is ignored. Otherwise the prompt text decides
        and the capability's default model is used. With no model configured at all, the
        configured fallback image model is used.
        """
        model_id = classification.model_id
        tag = self.binder.capability_for(model_id) if model_id else None
        if tag in _CAPABILITY_MEDIA:
            media_type = _CAPABILITY_MEDIA[tag]
        else:
            if model_id:
                self.logger.warning("Chosen model cannot generate media; using the default",
                                    extra={'model_id': model_id, 'capability': tag.value if tag else None})
            media_type = media_type_for_text(message.text, classification.topic)
            model_id = self.binder.default_model(MEDIA_CAPABILITIES[media_type], message.user_id)

        provider = self.binder.provider_for(model_id) if model_id else None
        model_name = self.binder.model_name_for(model_id) if model_id else None
        if not provider or not model_name:
            self.logger.warning("No media model configured; using fallback image model",
                                extra={'media_type': media_type, 'model_id': model_id})
            provider, model_name = self.fallback_provider, self.fallback_model
        return media_type, model_id, provider, model_name

    def _generate(self, media_type: str, prompt: str, user_id: int, options: Dict[str, Any]) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
        if media_type == VIDEO:
            result = self.provider.generate_video(prompt, user_id, options)
            return result.get("videos") or [], result
        if media_type == AUDIO:
            raise ProviderFailure(options.get("provider", "unknown"), "Audio generation is not supported yet")
        result = self.provider.generate_image(prompt, user_id, options)
        return result.get("images") or [], result

    def download_image(self, url: Optional[str], b64_data: Optional[str] = None) -> Optional[str]:
        """
        Save a generated image under the upload directory and return its file name.

        Accepts either a URL to fetch or inline base64 data. Returns None when the image
        could not be stored; the caller then references the remote URL.
        """
        try:
            if b64_data:
                content, extension = base64.b64decode(b64_data), "png"
            elif url:
                response = requests.get(url, timeout=self.download_timeout)
                response.raise_for_status()
                content = response.content
                mime = (response.headers.get("Content-Type") or "").split(";")[0].strip().lower()
                extension = _MIME_EXTENSIONS.get(mime, "png")
            else:
                return None
            if not content:
                raise ValueError("Downloaded content is empty")
            os.makedirs(self.upload_dir, exist_ok=True)
            filename = f"generated_{uuid.uuid4().hex}.{extension}"
            with open(os.path.join(self.upload_dir, filename), "wb") as f:
                f.write(content)
            self.logger.info("Image stored locally", extra={'stored_file': filename, 'bytes': len(content)})
            return filename
        except (requests.RequestException, OSError, ValueError) as e:
            self.logger.warning("Image download failed; keeping remote URL", extra={'url': url, 'error': str(e)})
            return None

    def _handle_internal(self, message, thread, classification, progress_cb, options) -> HandlerResponse:
        chunks: List[str] = []
        response = self._handle_stream_internal(message, thread, classification, chunks.append, progress_cb, options)
        return HandlerResponse(content="".join(chunks), metadata=response.metadata)

    def _handle_stream_internal(self, message, thread, classification, chunk_cb, progress_cb, options) -> HandlerResponse:
        media_type, model_id, provider, model_name = self.resolve_media(message, classification)
        prompt = _COMMAND_PREFIX.sub("", message.text or "").strip() or (message.text or "")

        notify(progress_cb, ProgressStatus.GENERATING,
               f"Creating your {media_type} with {provider.capitalize()} {model_name}",
               {"media_type": media_type, "provider": provider, "model": model_name})

        try:
            media, result = self._generate(media_type, prompt, message.user_id,
                                           {**options, "provider": provider, "model": model_name})
            if not media:
                raise ProviderFailure(provider, f"No {media_type} returned by {provider}")

            first = media[0]
            remote_url = first.get("url")
            local_name = None
            if media_type == IMAGE:
                local_name = self.download_image(remote_url, first.get("b64_json"))
            display_path = f"{self.public_prefix}/{local_name}" if local_name else remote_url
            if not display_path:
                raise ProviderFailure(provider, f"No valid {media_type} URL available")

            chunk_cb(f"Generated {media_type}: {first.get('revised_prompt') or prompt}")
            notify(progress_cb, ProgressStatus.GENERATING, f"{media_type.capitalize()} generated successfully.")

            return HandlerResponse(content=None, streamed=True, metadata={
                "handler": HandlerName.MEDIA_GENERATION.value,
                "provider": result.get("provider", provider),
                "model": result.get("model", model_name),
                "model_id": model_id,
                "media_url": remote_url,
                "local_path": local_name,
                "file": {"path": display_path, "type": media_type},
            })
        except StreamAborted:
            raise
        except Exception as e:
            self.logger.error(
                "Media generation failed",
                extra={'message_id': message.id, 'user_id': message.user_id, 'stage': 'media_generation',
                       'provider': provider, 'error': str(e)}
            )
            chunk_cb(f"Sorry, {media_type} generation failed: {e}")
            notify(progress_cb, ProgressStatus.ERROR, f"{media_type.capitalize()} generation failed.",
                   {"error": str(e)})
            return HandlerResponse(content=None, streamed=True, metadata={
                "handler": HandlerName.MEDIA_GENERATION.value,
                "provider": provider,
                "model": model_name,
                "model_id": model_id,
                "error": str(e),
            })
