"""
api/messages.py

Message processing endpoints.

Endpoints:
  - POST /messages: Process a message synchronously and return the pipeline result.
  - POST /messages/queue: Persist a message for the queue worker and return its tracking id.
  - GET /messages/{message_id}/status: Status of a message and, once complete, its reply.

Authentication is handled upstream; the caller passes `user_id` explicitly.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from core.bootstrap import Engine, get_engine
from shared.models import Message, MessageStatus, RunOverride
from shared.utils import generate_tracking_id, truncate_for_logging

logger = logging.getLogger(__name__)

router = APIRouter()


class MessageRequest(BaseModel):
    """
    Inbound message plus processing options.

    `model_id` / `prompt_topic` pin the model and topic for this run and bypass AI sorting;
    `preferred_model_id` is a weaker preference used only when the topic's prompt names no model.
    """

    user_id: int = Field(..., description="Owner of the message")
    text: str = Field(..., description="Message text")
    conversation_id: Optional[str] = Field(None, description="Conversation the message belongs to")
    tracking_id: Optional[str] = Field(None, description="Existing exchange to continue; generated if omitted")
    language: Optional[str] = None
    topic: Optional[str] = None
    file_text: Optional[str] = Field(None, description="Text already extracted from an attached file")
    file_path: Optional[str] = None
    file_type: Optional[str] = None
    model_id: Optional[int] = None
    prompt_topic: Optional[str] = None
    preferred_model_id: Optional[int] = None
    rag_group_key: Optional[str] = None
    web_search: bool = False
    temperature: Optional[float] = None

    def to_message(self) -> Message:
        return Message(
            user_id=self.user_id,
            tracking_id=self.tracking_id or generate_tracking_id(),
            text=self.text,
            conversation_id=self.conversation_id,
            language=self.language,
            topic=self.topic,
            file_text=self.file_text,
            file_path=self.file_path,
            file_type=self.file_type,
        )

    def options(self) -> Dict[str, Any]:
        options: Dict[str, Any] = {"web_search": self.web_search}
        if self.preferred_model_id:
            options["preferred_model_id"] = self.preferred_model_id
        if self.rag_group_key:
            options["rag_group_key"] = self.rag_group_key
        if self.temperature is not None:
            options["temperature"] = self.temperature
        return options

    def run_override(self) -> Optional[RunOverride]:
        override = RunOverride(model_id=self.model_id, prompt_topic=self.prompt_topic)
        return None if override.is_empty else override


@router.post("/messages")
def process_message(req: MessageRequest, engine: Engine = Depends(get_engine)) -> JSONResponse:
    """
    Run the full pipeline for one message and return the result.

    Returns HTTP 200 with the response content on success. Failures keep the uniform
    `{success: false, error, details}` shape; provider failures (HTTP 502) also carry the
    provider name and its context, anything else is HTTP 500.
    """
    logger.info(f"[process_message] Received message from user {req.user_id}: '{truncate_for_logging(req.text, 50)}'")
    result = engine.orchestrator.process(req.to_message(), options=req.options(), run_override=req.run_override())
    if result.success:
        return JSONResponse(result.to_api_response())
    status_code = 502 if result.provider else 500
    return JSONResponse(result.to_api_response(), status_code=status_code)


@router.post("/messages/queue")
def queue_message(req: MessageRequest, engine: Engine = Depends(get_engine)) -> JSONResponse:
    """Persist the message for the queue worker and acknowledge immediately."""
    message = engine.queue.enqueue(req.to_message(), req.options(), req.run_override())
    return JSONResponse({
        "success": True,
        "message_id": message.id,
        "tracking_id": message.tracking_id,
        "status": MessageStatus.QUEUED.value,
    })


@router.get("/messages/{message_id}/status")
def message_status(message_id: int, user_id: int, engine: Engine = Depends(get_engine)) -> JSONResponse:
    """Report the status of a message; the outbound reply is included once it is complete."""
    message = engine.messages.get(message_id)
    if message is None:
        return JSONResponse({"success": False, "error": "Message not found"}, status_code=404)
    if message.user_id != user_id:
        return JSONResponse({"success": False, "error": "Access denied"}, status_code=403)

    payload: Dict[str, Any] = {
        "success": True,
        "message_id": message.id,
        "tracking_id": message.tracking_id,
        "status": message.status.value,
        "topic": message.topic,
        "language": message.language,
        "job": engine.queue.job_status(message.id),
        "reply": None,
    }
    if message.status == MessageStatus.COMPLETE:
        reply = engine.messages.find_reply(message.tracking_id, after_id=message.id)
        payload["reply"] = reply.to_dict() if reply else None
    return JSONResponse(payload)
