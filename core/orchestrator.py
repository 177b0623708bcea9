"""
core/orchestrator.py

Central pipeline orchestrator for inbound messages.

This module contains the main coordination logic that:
1. Preprocesses the message (file text extraction happens in a collaborator)
2. Loads the conversation history and classifies the message
3. Runs the optional web search step and attaches its results
4. Routes the message to a handler through the inference router, streamed or not,
   and stores the reply as the outbound message of the exchange
5. Updates message status, emits progress events and shapes every failure into
   a uniform error result
"""

from typing import Any, Callable, Dict, List, Optional, Tuple

from config import CONFIG
from config.logging_config import get_logger
from provider_api.base import MessageStore, ModelBinder, Preprocessor, SearchService
from services.search_query import SearchQueryGenerator
from shared.errors import HandlerFailure, PipelineFailure, ProviderFailure, StreamAborted
from shared.models import (
    Capability,
    ChunkCallback,
    ClassificationResult,
    ClassificationSource,
    Direction,
    HandlerResponse,
    Message,
    MessageStatus,
    PipelineResult,
    ProgressCallback,
    ProgressStatus,
    RunOverride,
)
from shared.utils import notify, truncate_for_logging
from .classifier import MessageClassifier
from .inference_router import InferenceRouter

logger = get_logger(__name__)

SEARCH_TOPICS = ("tools:search", "tools:web")

# route(message, history, classification, progress_cb, options) -> HandlerResponse
RouteCall = Callable[[Message, List[Message], ClassificationResult, Optional[ProgressCallback], Dict[str, Any]],
                     HandlerResponse]


class PipelineOrchestrator:
    """
    Sequences preprocessing, classification, web search and routing for one message.

    Responsibilities:
    - Message status bookkeeping (processing -> complete | error) and topic/language updates
    - Best-effort progress events for every stage
    - Sorting-model attribution kept out of the handlers' model precedence
    - Uniform error shaping for streaming and non-streaming runs

    Args:
        classifier: Classification layer.
        router: Inference router holding the registered handlers.
        messages: Message persistence.
        binder: Model catalog, used to describe the sorting model in progress events.
        preprocessor: Optional preprocessing collaborator (file text extraction).
        search: Optional web search client; None disables the web search step.
        query_generator: Builds search queries; required when `search` is set.
        config: Application configuration (the `history` and `search` sections).
    """

    def __init__(
        self,
        classifier: MessageClassifier,
        router: InferenceRouter,
        messages: MessageStore,
        binder: Optional[ModelBinder] = None,
        preprocessor: Optional[Preprocessor] = None,
        search: Optional[SearchService] = None,
        query_generator: Optional[SearchQueryGenerator] = None,
        config: Optional[Dict[str, Any]] = None,
    ):
        self.classifier = classifier
        self.router = router
        self.messages = messages
        self.binder = binder
        self.preprocessor = preprocessor
        self.search = search
        self.query_generator = query_generator
        self.config = config if config is not None else CONFIG

        history = self.config.get("history", {})
        self.chat_max_messages = int(history.get("chat_max_messages", 30))
        self.chat_max_chars = int(history.get("chat_max_chars", 15000))
        self.tracking_max_messages = int(history.get("tracking_max_messages", 10))
        self.search_count = int(self.config.get("search", {}).get("count", 5))

        logger.info("Initialized pipeline orchestrator",
                    extra={'web_search': self.search is not None, 'preprocessing': self.preprocessor is not None})

    def process(
        self,
        message: Message,
        progress_cb: Optional[ProgressCallback] = None,
        options: Optional[Dict[str, Any]] = None,
        run_override: Optional[RunOverride] = None,
    ) -> PipelineResult:
        """
        Process `message` to a complete response.

        Args:
            message: The inbound message; saved first if it has no id yet.
            progress_cb: Optional best-effort progress listener.
            options: Processing options (`preferred_model_id`, `rag_group_key`, `web_search`,
                `temperature`, ...).
            run_override: Explicit prompt/model choice for this run.

        Returns:
            PipelineResult: Successful result with content and metadata, or the shaped error.
        """
        return self._run(message, progress_cb, options, run_override, self.router.route)

    def process_stream(
        self,
        message: Message,
        chunk_cb: ChunkCallback,
        progress_cb: Optional[ProgressCallback] = None,
        options: Optional[Dict[str, Any]] = None,
        run_override: Optional[RunOverride] = None,
    ) -> PipelineResult:
        """
        Process `message`, streaming the response text through `chunk_cb`.

        The returned result carries metadata only; its content is None because the text
        already reached the caller. A raising `chunk_cb` ends the run with an error result.
        """
        streamed: List[str] = []

        def collect(chunk: str) -> None:
            chunk_cb(chunk)
            streamed.append(chunk)

        def route(msg, history, classification, cb, opts):
            response = self.router.route_stream(msg, history, classification, collect, cb, opts)
            response.metadata.setdefault("streamed_text", "".join(streamed))
            return response

        return self._run(message, progress_cb, options, run_override, route)

    def _run(
        self,
        message: Message,
        progress_cb: Optional[ProgressCallback],
        options: Optional[Dict[str, Any]],
        run_override: Optional[RunOverride],
        route: RouteCall,
    ) -> PipelineResult:
        options = dict(options or {})
        logger.bind(tracking_id=message.tracking_id, handler_name='no_handler')
        stage = "started"
        classification: Optional[ClassificationResult] = None

        logger.info("Processing message", extra={
            'message_id': message.id,
            'user_id': message.user_id,
            'message_preview': truncate_for_logging(message.text, 50),
        })
        notify(progress_cb, ProgressStatus.STARTED, "Processing your message")

        try:
            message.status = MessageStatus.PROCESSING
            if message.id is None:
                self.messages.save(message)
            else:
                self.messages.update(message)

            stage = "preprocessing"
            if self.preprocessor is not None:
                notify(progress_cb, ProgressStatus.PREPROCESSING, "Preparing your message")
                message = self.preprocessor.preprocess(message)

            stage = "history"
            history = self.load_history(message)

            stage = "classification"
            notify(progress_cb, ProgressStatus.CLASSIFYING, "Understanding your request",
                   self._sorting_model_info(message.user_id))
            classification = self.classifier.classify(message, history, run_override)
            classification, attribution = self._split_sorting_model(classification)
            if options.get("preferred_model_id"):
                classification.override_model_id = int(options["preferred_model_id"])

            message.topic = classification.topic
            message.language = classification.language
            self.messages.update(message)
            notify(progress_cb, ProgressStatus.CLASSIFIED, f"Topic: {classification.topic}",
                   classification.to_dict())

            stage = "web_search"
            self.attach_search_results(message, classification, progress_cb, options)

            stage = "routing"
            response = route(message, history, classification, progress_cb, options)
            logger.bind(handler_name=response.metadata.get("handler", "no_handler"))

            stage = "finalize"
            streamed_text = response.metadata.pop("streamed_text", None)
            reply = self.save_reply(message, response, streamed_text)
            handled_error = response.metadata.get("error")
            message.status = MessageStatus.ERROR if handled_error else MessageStatus.COMPLETE
            self.messages.update(message)
        except Exception as e:
            return self._failure(message, stage, classification, e, progress_cb)

        # The handler already reported its own failure to the caller.
        if not handled_error:
            notify(progress_cb, ProgressStatus.COMPLETE, "Done")
        logger.info("Message processed", extra={
            'message_id': message.id,
            'topic': classification.topic,
            'streamed': response.streamed,
        })
        return PipelineResult(
            success=True,
            message_id=message.id,
            tracking_id=message.tracking_id,
            content=response.content,
            classification=classification,
            metadata={**attribution, **response.metadata, "streamed": response.streamed, "reply_id": reply.id},
        )

    def save_reply(self, message: Message, response: HandlerResponse, streamed_text: Optional[str] = None) -> Message:
        """Persist the outbound message for `message`, sharing its tracking id."""
        metadata = response.metadata
        text = response.content if response.content is not None else (streamed_text or "")
        reply = Message(
            user_id=message.user_id,
            tracking_id=message.tracking_id,
            text=text,
            conversation_id=message.conversation_id,
            direction=Direction.OUT,
            topic=message.topic,
            language=message.language,
            status=MessageStatus.COMPLETE,
            provider=metadata.get("provider"),
            model_name=metadata.get("model"),
            model_id=metadata.get("model_id"),
        )
        attachment = metadata.get("file") or (metadata.get("attachments") or [None])[0]
        if attachment:
            reply.file_path = attachment.get("path")
            reply.file_type = attachment.get("type")
        return self.messages.save(reply)

    def load_history(self, message: Message) -> List[Message]:
        """Earlier turns: the conversation window when the message has one, else its tracking thread."""
        if message.conversation_id:
            return self.messages.history_for(message, self.chat_max_messages, self.chat_max_chars)
        return self.messages.history_for(message, self.tracking_max_messages)

    def _sorting_model_info(self, user_id: int) -> Dict[str, Any]:
        if self.binder is None:
            return {}
        model_id = self.binder.default_model(Capability.SORT, user_id)
        if not model_id:
            return {}
        return {"sorting_model": self.binder.model_name_for(model_id),
                "sorting_provider": self.binder.provider_for(model_id)}

    @staticmethod
    def _split_sorting_model(classification: ClassificationResult) -> Tuple[ClassificationResult, Dict[str, Any]]:
        """
        Separate the sorting model from an AI-sorted classification.

        The model that sorted the message is reported as metadata; handlers only see models
        chosen by the user or an override.
        """
        if classification.source != ClassificationSource.AI_SORTING or not classification.model_id:
            return classification, {}
        attribution = {
            "sorting_model_id": classification.model_id,
            "sorting_provider": classification.provider,
            "sorting_model_name": classification.model_name,
        }
        return classification.without_model(), attribution

    def wants_search(self, classification: ClassificationResult, options: Dict[str, Any]) -> bool:
        return bool(options.get("web_search") or classification.web_search
                    or classification.topic in SEARCH_TOPICS)

    def attach_search_results(
        self,
        message: Message,
        classification: ClassificationResult,
        progress_cb: Optional[ProgressCallback],
        options: Dict[str, Any],
    ) -> None:
        """Run the web search step when requested; failures leave the classification unchanged."""
        if self.search is None or not self.wants_search(classification, options):
            return
        notify(progress_cb, ProgressStatus.ANALYZING, "Searching the web")
        try:
            if self.query_generator is not None:
                query = self.query_generator.generate(message.text or "", message.user_id)
            else:
                query = (message.text or "").strip()
            if not query:
                return
            results = self.search.search(query, classification.language, self.search_count)
        except Exception as e:
            logger.warning("Web search failed; continuing without results", extra={
                'message_id': message.id, 'user_id': message.user_id, 'stage': 'web_search', 'error': str(e)
            })
            return
        classification.search_results = results or None
        logger.info("Web search attached", extra={'message_id': message.id, 'results_count': len(results or [])})

    def _failure(
        self,
        message: Message,
        stage: str,
        classification: Optional[ClassificationResult],
        exc: Exception,
        progress_cb: Optional[ProgressCallback],
    ) -> PipelineResult:
        logger.error(
            "Error processing message",
            exc_info=True,
            extra={
                'message_id': message.id,
                'user_id': message.user_id,
                'stage': stage,
                'error_type': type(exc).__name__,
                'error': str(exc),
            }
        )
        if message.id is not None:
            message.status = MessageStatus.ERROR
            try:
                self.messages.update(message)
            except Exception as update_error:
                logger.warning("Could not mark message as failed",
                               extra={'message_id': message.id, 'error': str(update_error)})

        result = PipelineResult(
            success=False,
            message_id=message.id,
            tracking_id=message.tracking_id,
            classification=classification,
        )
        if isinstance(exc, ProviderFailure):
            result.error = exc.message
            result.provider = exc.provider
            result.context = exc.context
            result.details = {"stage": stage}
        elif isinstance(exc, StreamAborted):
            result.error = str(exc)
            result.details = {"stage": "streaming"}
        elif isinstance(exc, PipelineFailure):
            result.error = str(exc)
            result.details = {"stage": exc.stage, **exc.details}
        else:
            result.error = str(exc) or type(exc).__name__
            result.details = {"stage": stage, "type": type(exc).__name__}
        if isinstance(exc.__cause__, HandlerFailure):
            result.details["failed_handler"] = exc.__cause__.handler

        notify(progress_cb, ProgressStatus.ERROR, result.error, {"stage": result.details.get("stage", stage)})
        return result
