"""
core/reprocess.py

"Again": re-answer an earlier message with a chosen prompt and/or model.

The coordinator clones the original inbound message into a new row that keeps the
original tracking id, records the chosen prompt/model as overrides of the new message,
generates the reply directly through the provider and stores it as the outbound message
of the same exchange. The response also carries the eligible models for the topic and the
predicted next model so clients can keep cycling through models.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from provider_api.base import GenerationProvider, MessageStore, ModelBinder, OverrideStore, PromptStore
from shared.errors import MessageNotFound, OwnershipFailure, ProviderFailure
from shared.models import (
    Capability,
    DEFAULT_LANGUAGE,
    Direction,
    Message,
    MessageStatus,
    ModelBinding,
    OverrideKey,
    SORTING_TOPIC,
)
from shared.utils import extract_media_markers
from .model_selection import capability_for_topic, eligible_models, predicted_next

logger = logging.getLogger(__name__)

NO_RESPONSE_TEXT = "No response"


@dataclass(frozen=True)
class ReprocessRequest:
    original_message_id: int
    model_id: Optional[int] = None
    prompt_topic: Optional[str] = None


class ReprocessCoordinator:
    """
    Runs "again" requests for a user.

    Args:
        messages: Message persistence.
        overrides: Override persistence; the chosen prompt/model are recorded per new message.
        binder: Model catalog.
        provider: Generation provider used for the direct reply.
        prompts: Prompt templates; a chosen prompt's text becomes the system message.
    """

    def __init__(
        self,
        messages: MessageStore,
        overrides: OverrideStore,
        binder: ModelBinder,
        provider: GenerationProvider,
        prompts: Optional[PromptStore] = None,
    ):
        self.messages = messages
        self.overrides = overrides
        self.binder = binder
        self.provider = provider
        self.prompts = prompts

    def reprocess(self, user_id: int, request: ReprocessRequest) -> Dict[str, Any]:
        """
        Re-answer `request.original_message_id` for `user_id`.

        Raises:
            MessageNotFound: The original message does not exist.
            OwnershipFailure: The original message belongs to another user.
            ProviderFailure: The chosen model is unknown or generation failed.
        """
        original = self.messages.get(request.original_message_id)
        if original is None:
            raise MessageNotFound(f"Message {request.original_message_id} not found")
        if original.user_id != user_id:
            logger.warning("Reprocess denied: message owned by another user", extra={
                'message_id': original.id, 'user_id': user_id, 'stage': 'reprocess'
            })
            raise OwnershipFailure(f"Message {request.original_message_id} does not belong to user {user_id}")

        inbound = self.clone_inbound(original)
        self.messages.save(inbound)
        self.record_overrides(inbound, request)

        try:
            binding = self.resolve_binding(request.model_id, user_id)
            response = self.provider.chat(
                self.build_messages(inbound, request.prompt_topic),
                user_id,
                {"provider": binding.provider, "model": binding.model_name},
            )
        except Exception as e:
            logger.error("Reprocess generation failed", extra={
                'message_id': inbound.id, 'user_id': user_id, 'stage': 'reprocess', 'error': str(e)
            })
            inbound.status = MessageStatus.ERROR
            self.messages.update(inbound)
            raise

        outbound = self.build_outbound(inbound, binding, response)
        self.messages.save(outbound)
        inbound.status = MessageStatus.COMPLETE
        self.messages.update(inbound)

        logger.info("Reprocess completed", extra={
            'user_id': user_id,
            'original_message_id': original.id,
            'new_message_id': inbound.id,
            'reply_id': outbound.id,
            'model_id': binding.model_id,
        })
        return {
            "success": True,
            "message": {
                "id": outbound.id,
                "text": outbound.text,
                "has_file": bool(outbound.file_path),
                "file_path": outbound.file_path,
                "file_type": outbound.file_type,
                "provider": outbound.provider,
                "model": outbound.model_name,
                "tracking_id": outbound.tracking_id,
                "topic": inbound.topic,
                "inbound_id": inbound.id,
            },
            "again": self.again_options(inbound.topic, request.model_id, user_id),
        }

    @staticmethod
    def clone_inbound(original: Message) -> Message:
        return Message(
            user_id=original.user_id,
            tracking_id=original.tracking_id,
            text=original.text,
            conversation_id=original.conversation_id,
            direction=Direction.IN,
            topic=original.topic,
            language=original.language,
            status=MessageStatus.PROCESSING,
            file_text=original.file_text,
            file_path=original.file_path,
            file_type=original.file_type,
        )

    def record_overrides(self, inbound: Message, request: ReprocessRequest) -> None:
        if request.prompt_topic and request.prompt_topic != SORTING_TOPIC:
            self.overrides.set(inbound.id, OverrideKey.PROMPT_ID.value, request.prompt_topic)
            inbound.topic = request.prompt_topic
        if request.model_id:
            self.overrides.set(inbound.id, OverrideKey.MODEL_ID.value, str(request.model_id))

    def resolve_binding(self, model_id: Optional[int], user_id: int) -> ModelBinding:
        if model_id:
            provider = self.binder.provider_for(model_id)
            model_name = self.binder.model_name_for(model_id)
            if not provider or not model_name:
                raise ProviderFailure(provider or "unknown", f"Model {model_id} is not available in the model catalog",
                                      {"model_id": model_id})
            return ModelBinding(
                model_id=model_id,
                provider=provider,
                model_name=model_name,
                capability=self.binder.capability_for(model_id) or Capability.CHAT,
                features=self.binder.features_for(model_id),
            )
        binding = self.binder.bind(Capability.CHAT, user_id)
        if binding is None:
            raise ProviderFailure("unknown", "No chat model is configured", {"capability": Capability.CHAT.value})
        return binding

    def build_messages(self, inbound: Message, prompt_topic: Optional[str]) -> List[Dict[str, str]]:
        messages: List[Dict[str, str]] = []
        if prompt_topic and self.prompts is not None:
            prompt = self.prompts.find_by_topic(prompt_topic, inbound.user_id, inbound.language or DEFAULT_LANGUAGE)
            if prompt is not None:
                messages.append({"role": "system", "content": prompt.text})
        messages.append({"role": "user", "content": inbound.text or ""})
        return messages

    @staticmethod
    def build_outbound(inbound: Message, binding: ModelBinding, response: Dict[str, Any]) -> Message:
        text, markers = extract_media_markers(response.get("content") or NO_RESPONSE_TEXT)
        outbound = Message(
            user_id=inbound.user_id,
            tracking_id=inbound.tracking_id,
            text=text,
            conversation_id=inbound.conversation_id,
            direction=Direction.OUT,
            topic=inbound.topic,
            language=inbound.language,
            status=MessageStatus.COMPLETE,
            provider=response.get("provider") or binding.provider,
            model_name=response.get("model") or binding.model_name,
            model_id=binding.model_id,
        )
        if markers:
            outbound.file_path = markers[0]["url"]
            outbound.file_type = markers[0]["type"]
        return outbound

    def again_options(self, topic: Optional[str], current_model_id: Optional[int], user_id: int) -> Dict[str, Any]:
        """Eligible models for the topic's capability and the predicted next one."""
        capability = capability_for_topic(topic)
        models = eligible_models(self.binder, capability, user_id)
        suggestion = predicted_next(models, current_model_id)
        return {
            "tag": capability.value,
            "eligible": [m.to_dict() for m in models],
            "predicted_next": suggestion.to_dict() if suggestion else None,
        }
