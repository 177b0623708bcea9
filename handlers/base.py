"""
Base class for all response handlers.

This module defines the BaseHandler abstract base class that every generation strategy
(chat, media generation, ...) implements, and the closed `HandlerName` enum under which
handlers are registered with the inference router. The base class gives every handler the
same lifecycle: setup, latency/error metrics, start/end logging, chunk-callback guarding,
and the `run`/`run_stream` entry points that turn exceptions into an explicit
`Ok`/`Err` result for the router's fallback decision.
"""

from abc import ABC, abstractmethod
from enum import Enum
import logging
from typing import Any, Dict, List, Optional

from config import CONFIG
from monitoring.metrics import HANDLER_PROCESSING_TIME, track_errors, track_latency
from provider_api.base import GenerationProvider, ModelBinder
from shared.errors import StreamAborted
from shared.models import (
    ChunkCallback,
    ClassificationResult,
    Err,
    HandlerError,
    HandlerResponse,
    HandlerResult,
    Message,
    Ok,
    ProgressCallback,
)
from shared.utils import truncate_for_logging


class HandlerName(str, Enum):
    """Identity of every registrable handler."""
    CHAT = "chat"
    MEDIA_GENERATION = "media_generation"


def guard_chunk_callback(chunk_cb: ChunkCallback) -> ChunkCallback:
    """
    Wrap the caller's chunk callback so a failure inside it aborts the stream.

    The callback's exception is chained as the cause of `StreamAborted`, keeping its message
    as the abort message.
    """
    def guarded(chunk: str) -> None:
        try:
            chunk_cb(chunk)
        except Exception as exc:
            raise StreamAborted(str(exc) or type(exc).__name__) from exc
    return guarded


class BaseHandler(ABC):
    """
    Abstract base class for all handlers.

    Concrete handlers override `setup`, `get_handler_name`, `_handle_internal` and
    `_handle_stream_internal`. Collaborators are injected so the composition root decides
    which binder and provider every handler uses.
    """

    def __init__(self, binder: ModelBinder, provider: GenerationProvider, config: Optional[Dict[str, Any]] = None):
        """
        Store collaborators, set up a namespaced logger and run handler-specific setup.
        """
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self.config = config if config is not None else CONFIG
        self.binder = binder
        self.provider = provider
        self.setup()

    @abstractmethod
    def setup(self) -> None:
        """Read handler-specific settings and prepare resources."""
        pass

    @abstractmethod
    def get_handler_name(self) -> HandlerName:
        pass

    @track_latency(HANDLER_PROCESSING_TIME, lambda self: {'handler_name': self.get_handler_name().value})
    @track_errors('handler', lambda self: self.get_handler_name().value)
    def handle(
        self,
        message: Message,
        thread: List[Message],
        classification: ClassificationResult,
        progress_cb: Optional[ProgressCallback] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> HandlerResponse:
        """
        Produce a complete (non-streamed) response for `message`.

        Args:
            message: The inbound message.
            thread: Earlier turns of the conversation, oldest first.
            classification: Classification of this run.
            progress_cb: Optional best-effort progress listener.
            options: Processing options (temperature, retrieval group key, ...).

        Returns:
            HandlerResponse: Response text plus structured metadata.
        """
        self._log_processing_start(message)
        try:
            response = self._handle_internal(message, thread, classification, progress_cb, options or {})
        except Exception:
            self._log_processing_end(message, success=False)
            raise
        self._log_processing_end(message, success=True)
        return response

    @track_latency(HANDLER_PROCESSING_TIME, lambda self: {'handler_name': self.get_handler_name().value})
    @track_errors('handler', lambda self: self.get_handler_name().value)
    def handle_stream(
        self,
        message: Message,
        thread: List[Message],
        classification: ClassificationResult,
        chunk_cb: ChunkCallback,
        progress_cb: Optional[ProgressCallback] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> HandlerResponse:
        """
        Stream the response through `chunk_cb`, in emission order, and return its metadata.

        A failing `chunk_cb` aborts immediately with `StreamAborted`.
        """
        self._log_processing_start(message)
        try:
            response = self._handle_stream_internal(
                message, thread, classification, guard_chunk_callback(chunk_cb), progress_cb, options or {}
            )
        except Exception:
            self._log_processing_end(message, success=False)
            raise
        self._log_processing_end(message, success=True)
        return response

    def run(self, *args, **kwargs) -> HandlerResult:
        """`handle` returning `Ok`/`Err` instead of raising. Stream aborts still propagate."""
        try:
            return Ok(self.handle(*args, **kwargs))
        except StreamAborted:
            raise
        except Exception as e:
            return Err(HandlerError(handler=self.get_handler_name().value, exception=e))

    def run_stream(self, *args, **kwargs) -> HandlerResult:
        """`handle_stream` returning `Ok`/`Err` instead of raising. Stream aborts still propagate."""
        try:
            return Ok(self.handle_stream(*args, **kwargs))
        except StreamAborted:
            raise
        except Exception as e:
            return Err(HandlerError(handler=self.get_handler_name().value, exception=e))

    @abstractmethod
    def _handle_internal(self, message, thread, classification, progress_cb, options) -> HandlerResponse:
        pass

    @abstractmethod
    def _handle_stream_internal(self, message, thread, classification, chunk_cb, progress_cb, options) -> HandlerResponse:
        pass

    def _log_processing_start(self, message: Message) -> None:
        name = self.get_handler_name().value
        self.logger.info(
            f"[{name}] Starting message processing for message {message.id}: '{truncate_for_logging(message.text, 50)}'",
            extra={'message_id': message.id, 'user_id': message.user_id, 'handler_name': name}
        )

    def _log_processing_end(self, message: Message, success: bool = True) -> None:
        name = self.get_handler_name().value
        status = "completed successfully" if success else "failed"
        self.logger.info(
            f"[{name}] Message processing {status} for message {message.id}",
            extra={'message_id': message.id, 'user_id': message.user_id, 'handler_name': name}
        )
