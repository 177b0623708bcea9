"""
core/inference_router.py

Intent-based routing of classified messages to handlers.

The router owns an explicit registry built by the composition root: a list of
(HandlerName, handler) pairs plus a total Intent -> HandlerName map. It executes the
handler for a classification's intent and applies a single-level fallback: when a non-chat
handler returns an error, the chat handler is invoked once with the same arguments. A chat
failure, or a failure of that fallback, reaches the caller as the original exception.
"""

from typing import Callable, Dict, Iterable, List, Optional, Tuple

from config.logging_config import get_logger
from handlers.base import BaseHandler, HandlerName
from monitoring.metrics import HANDLER_FALLBACK_TOTAL
from shared.errors import HandlerFailure
from shared.models import (
    ChunkCallback,
    ClassificationResult,
    Err,
    HandlerResponse,
    HandlerResult,
    Intent,
    Message,
    ProgressCallback,
)

logger = get_logger(__name__)

DEFAULT_INTENT_HANDLERS: Dict[Intent, HandlerName] = {
    Intent.CHAT: HandlerName.CHAT,
    Intent.IMAGE_GENERATION: HandlerName.MEDIA_GENERATION,
    Intent.DOCUMENT_GENERATION: HandlerName.CHAT,
    Intent.FILE_ANALYSIS: HandlerName.CHAT,
    Intent.SUMMARIZE: HandlerName.CHAT,
    Intent.TRANSLATE: HandlerName.CHAT,
}


class InferenceRouter:
    """
    Routes a classified message to its handler, with one fallback to chat.

    Args:
        handlers: (HandlerName, handler) pairs; names must be unique and CHAT is required.
        intent_handlers: Handler name for every Intent; defaults to DEFAULT_INTENT_HANDLERS.

    Raises:
        ValueError: If CHAT is not registered, a name is registered twice, or an intent
            has no handler name.
    """

    def __init__(
        self,
        handlers: Iterable[Tuple[HandlerName, BaseHandler]],
        intent_handlers: Optional[Dict[Intent, HandlerName]] = None,
    ):
        self.handlers: Dict[HandlerName, BaseHandler] = {}
        for name, handler in handlers:
            if name in self.handlers:
                raise ValueError(f"Handler registered twice: {name.value}")
            self.handlers[name] = handler
        if HandlerName.CHAT not in self.handlers:
            raise ValueError("The chat handler must be registered")

        self.intent_handlers = dict(intent_handlers or DEFAULT_INTENT_HANDLERS)
        missing = [intent.value for intent in Intent if intent not in self.intent_handlers]
        if missing:
            raise ValueError(f"No handler mapped for intents: {', '.join(missing)}")

        logger.info("Initialized with %d handlers", len(self.handlers),
                    extra={'handlers': [name.value for name in self.handlers]})

    def handler_name_for(self, intent: Intent) -> HandlerName:
        """Registered handler for `intent`; unregistered handlers resolve to chat."""
        name = self.intent_handlers[intent]
        if name not in self.handlers:
            logger.warning("No handler registered for intent; using chat",
                           extra={'intent': intent.value, 'handler': name.value})
            return HandlerName.CHAT
        return name

    def route(
        self,
        message: Message,
        history: List[Message],
        classification: ClassificationResult,
        progress_cb: Optional[ProgressCallback] = None,
        options: Optional[Dict] = None,
    ) -> HandlerResponse:
        """Run the handler for the classification's intent and return its complete response."""
        return self._dispatch(
            message, classification,
            lambda handler: handler.run(message, history, classification, progress_cb, options),
        )

    def route_stream(
        self,
        message: Message,
        history: List[Message],
        classification: ClassificationResult,
        chunk_cb: ChunkCallback,
        progress_cb: Optional[ProgressCallback] = None,
        options: Optional[Dict] = None,
    ) -> HandlerResponse:
        """Streaming variant of `route`; chunks reach `chunk_cb` in emission order."""
        return self._dispatch(
            message, classification,
            lambda handler: handler.run_stream(message, history, classification, chunk_cb, progress_cb, options),
        )

    def _dispatch(
        self,
        message: Message,
        classification: ClassificationResult,
        invoke: Callable[[BaseHandler], HandlerResult],
    ) -> HandlerResponse:
        name = self.handler_name_for(classification.intent)
        logger.info("Routing to handler", extra={
            'message_id': message.id,
            'intent': classification.intent.value,
            'handler_name': name.value,
        })

        result = invoke(self.handlers[name])
        if not isinstance(result, Err):
            return result.value

        error = result.error
        logger.error(
            "Handler failed",
            extra={'message_id': message.id, 'user_id': message.user_id, 'stage': 'handler',
                   'handler_name': error.handler, 'error': error.message}
        )
        if name == HandlerName.CHAT:
            raise error.exception

        HANDLER_FALLBACK_TOTAL.labels(failed_handler=name.value).inc()
        logger.warning("Falling back to chat handler",
                       extra={'message_id': message.id, 'failed_handler': name.value})
        fallback = invoke(self.handlers[HandlerName.CHAT])
        if isinstance(fallback, Err):
            logger.error(
                "Chat fallback failed",
                extra={'message_id': message.id, 'user_id': message.user_id, 'stage': 'fallback',
                       'error': fallback.error.message}
            )
            raise fallback.error.exception from HandlerFailure(name.value, error.exception)

        response = fallback.value
        response.metadata["fallback_from"] = name.value
        return response
