"""
shared/models.py

Common data models and type definitions used across the routing engine.

This module contains the data structures that flow between the classification
layer, the inference router, the handlers and the orchestrator: messages and their
per-run override, the classification result, model bindings, prompt templates,
retrieval/search payloads, progress events, handler results and the structured
response envelope some providers are prompted to emit.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_TOPIC = "general"
DEFAULT_LANGUAGE = "en"

# Internal topic used by the sorting prompt itself; never a valid override target.
SORTING_TOPIC = "tools:sort"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Direction(str, Enum):
    IN = "IN"
    OUT = "OUT"


class MessageStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


class ClassificationSource(str, Enum):
    """
    Where a classification came from. Exactly one source applies per pipeline run.

    - OVERRIDE: an explicit per-run override (reprocessing with a chosen prompt/model)
    - TOOL_COMMAND: a slash command at the start of the message text
    - AI_SORTING: the LLM-driven sorter (including its keyword selection rules)
    """
    OVERRIDE = "override"
    TOOL_COMMAND = "tool_command"
    AI_SORTING = "ai_sorting"


class Intent(str, Enum):
    """
    Routing keys derived from a topic. The router maps each intent to a handler.
    """
    CHAT = "chat"
    IMAGE_GENERATION = "image_generation"
    DOCUMENT_GENERATION = "document_generation"
    FILE_ANALYSIS = "file_analysis"
    SUMMARIZE = "summarize"
    TRANSLATE = "translate"


class Capability(str, Enum):
    """Model catalog capability tags."""
    CHAT = "CHAT"
    SORT = "SORT"
    VECTORIZE = "VECTORIZE"
    TEXT2PIC = "TEXT2PIC"
    TEXT2VID = "TEXT2VID"
    TEXT2SOUND = "TEXT2SOUND"
    PIC2TEXT = "PIC2TEXT"


class OverrideKey(str, Enum):
    PROMPT_ID = "PROMPTID"
    MODEL_ID = "MODEL_ID"


class ProgressStatus(str, Enum):
    STARTED = "started"
    PREPROCESSING = "preprocessing"
    CLASSIFYING = "classifying"
    CLASSIFIED = "classified"
    ANALYZING = "analyzing"
    GENERATING = "generating"
    COMPLETE = "complete"
    ERROR = "error"


TOPIC_INTENTS: Dict[str, Intent] = {
    "general": Intent.CHAT,
    "chat": Intent.CHAT,
    "mediamaker": Intent.IMAGE_GENERATION,
    "text2pic": Intent.IMAGE_GENERATION,
    "text2vid": Intent.IMAGE_GENERATION,
    "text2sound": Intent.IMAGE_GENERATION,
    "tools:pic": Intent.IMAGE_GENERATION,
    "tools:vid": Intent.IMAGE_GENERATION,
    "officemaker": Intent.DOCUMENT_GENERATION,
    "analyzefile": Intent.FILE_ANALYSIS,
    "pic2text": Intent.FILE_ANALYSIS,
    "analyze": Intent.FILE_ANALYSIS,
    "summarize": Intent.SUMMARIZE,
    "translate": Intent.TRANSLATE,
}


def intent_for_topic(topic: Optional[str]) -> Intent:
    """Map a topic to its routing intent; unknown topics are plain chat."""
    return TOPIC_INTENTS.get((topic or "").lower(), Intent.CHAT)


@dataclass
class Message:
    """
    A chat message as seen by the pipeline.

    Inbound (IN) messages are created on ingestion; outbound (OUT) messages carry the
    assistant reply. A `tracking_id` is shared by the inbound/outbound pair and by every
    reprocessing attempt of the same exchange. The pipeline mutates `status`, `topic`
    and `language`; it never deletes messages.
    """
    user_id: int
    tracking_id: str
    text: str
    id: Optional[int] = None
    conversation_id: Optional[str] = None
    direction: Direction = Direction.IN
    topic: Optional[str] = None
    language: Optional[str] = None
    status: MessageStatus = MessageStatus.PROCESSING
    file_text: Optional[str] = None
    file_path: Optional[str] = None
    file_type: Optional[str] = None
    provider: Optional[str] = None
    model_name: Optional[str] = None
    model_id: Optional[int] = None
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "tracking_id": self.tracking_id,
            "conversation_id": self.conversation_id,
            "direction": self.direction.value,
            "text": self.text,
            "topic": self.topic,
            "language": self.language,
            "status": self.status.value,
            "file_text": self.file_text,
            "file_path": self.file_path,
            "file_type": self.file_type,
            "provider": self.provider,
            "model_name": self.model_name,
            "model_id": self.model_id,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class RunOverride:
    """
    Explicit per-run instruction to bypass AI classification.

    `prompt_topic` selects the topic (and with it the prompt template); `model_id`
    pins the generation model. Passed down the call chain for the run it applies to.
    """
    model_id: Optional[int] = None
    prompt_topic: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.model_id is None and not self.prompt_topic


@dataclass
class SearchResult:
    title: str
    url: str
    description: str = ""
    published: Optional[str] = None
    extra_snippets: List[str] = field(default_factory=list)


@dataclass
class ClassificationResult:
    """
    Unified outcome of the classification layer for one pipeline run.

    `skip_sorting` is derived from `source` so the two can never disagree. Model fields
    describe a model the user (or an override) chose; `override_model_id` is a weaker
    caller preference consulted after the prompt template's own model.
    """
    topic: str
    language: str
    source: ClassificationSource
    model_id: Optional[int] = None
    provider: Optional[str] = None
    model_name: Optional[str] = None
    web_search: bool = False
    override_model_id: Optional[int] = None
    search_results: Optional[List[SearchResult]] = None

    @property
    def skip_sorting(self) -> bool:
        return self.source in (ClassificationSource.OVERRIDE, ClassificationSource.TOOL_COMMAND)

    @property
    def intent(self) -> Intent:
        return intent_for_topic(self.topic)

    def without_model(self) -> "ClassificationResult":
        return replace(self, model_id=None, provider=None, model_name=None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "topic": self.topic,
            "language": self.language,
            "source": self.source.value,
            "skip_sorting": self.skip_sorting,
            "intent": self.intent.value,
            "model_id": self.model_id,
            "provider": self.provider,
            "model_name": self.model_name,
            "web_search": self.web_search,
        }


@dataclass
class CatalogModel:
    """One entry of the model catalog."""
    id: int
    tag: Capability
    provider: str
    name: str
    quality: float = 0.0
    rating: float = 0.0
    features: FrozenSet[str] = frozenset()
    selectable: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tag": self.tag.value,
            "provider": self.provider,
            "name": self.name,
            "quality": self.quality,
            "rating": self.rating,
        }


@dataclass(frozen=True)
class ModelBinding:
    """A resolved model for one capability. Only valid for `capability`."""
    model_id: Optional[int]
    provider: str
    model_name: str
    capability: Capability
    features: FrozenSet[str] = frozenset()


@dataclass
class PromptTemplate:
    topic: str
    text: str
    owner_id: int = 0
    language: str = DEFAULT_LANGUAGE
    description: str = ""
    ai_model: int = 0
    selection_rules: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RetrievedChunk:
    text: str
    score: float
    source: Optional[str] = None


@dataclass
class ProgressEvent:
    status: ProgressStatus
    message: str
    timestamp: datetime = field(default_factory=utc_now)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }


ProgressCallback = Callable[[ProgressEvent], None]
ChunkCallback = Callable[[str], None]


@dataclass
class HandlerResponse:
    """
    What a handler produced. `content` is None when the text was streamed through
    the chunk callback instead of returned.
    """
    content: Optional[str]
    metadata: Dict[str, Any] = field(default_factory=dict)
    streamed: bool = False


@dataclass
class HandlerError:
    handler: str
    exception: Exception

    @property
    def message(self) -> str:
        return str(self.exception)


@dataclass
class Ok:
    value: HandlerResponse


@dataclass
class Err:
    error: HandlerError


HandlerResult = Union[Ok, Err]


class Attachment(BaseModel):
    model_config = ConfigDict(extra="forbid")

    path: str = Field(..., description="Location of the generated or referenced file")
    type: Optional[str] = Field(None, description="File type, e.g. 'png' or 'pdf'")


class Link(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: str
    title: Optional[str] = None


class ResponseEnvelope(BaseModel):
    """
    Structured reply some providers are prompted to emit instead of plain text.

    `text` is the visible answer; attachments and links are surfaced to the caller as
    metadata. Output that does not validate against this schema is plain text.
    """
    model_config = ConfigDict(extra="forbid")

    text: str = Field(..., description="The visible response text")
    attachments: List[Attachment] = Field(default_factory=list)
    links: List[Link] = Field(default_factory=list)


@dataclass
class PipelineResult:
    """
    Outcome of one orchestrator run, successful or not.

    Failed runs carry `error` and optionally `details`; provider failures additionally
    keep the failing `provider` and its structured `context` (install instructions,
    suggested models) intact for the caller.
    """
    success: bool
    message_id: Optional[int]
    tracking_id: Optional[str]
    content: Optional[str] = None
    classification: Optional[ClassificationResult] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    provider: Optional[str] = None
    context: Optional[Dict[str, Any]] = None

    def to_api_response(self) -> Dict[str, Any]:
        if not self.success:
            payload: Dict[str, Any] = {"success": False, "error": self.error}
            if self.details:
                payload["details"] = self.details
            if self.provider:
                payload["provider"] = self.provider
            if self.context:
                payload["context"] = self.context
            return payload
        return {
            "success": True,
            "message_id": self.message_id,
            "tracking_id": self.tracking_id,
            "content": self.content,
            "classification": self.classification.to_dict() if self.classification else None,
            "metadata": self.metadata,
        }
