"""
shared/errors.py

Error taxonomy for the routing engine.

Each class marks a failure with a fixed recovery policy. Classification, retrieval and
search-formatting failures are always recovered where they occur. Handler failures get
one fallback to the chat handler. Provider failures, ownership failures and pipeline
failures reach the caller with their context intact.
"""

from typing import Any, Dict, Optional


class RoutingEngineError(Exception):
    """Base exception for all engine-specific failures."""


class ProviderFailure(RoutingEngineError):
    """
    A generation provider could not serve the request.

    Carries the provider name, a human-readable message and optional structured context
    such as install instructions, suggested models or the upstream HTTP status. The
    orchestrator surfaces this context unchanged.
    """

    def __init__(self, provider: str, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.provider = provider
        self.message = message
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "provider": self.provider, "context": self.context}


class ClassificationFailure(RoutingEngineError):
    """The AI sorter could not produce a classification. Never surfaced to callers."""


class RetrievalFailure(RoutingEngineError):
    """Knowledge retrieval failed. Chat proceeds without retrieved context."""


class SearchFormattingFailure(RoutingEngineError):
    """Web search results could not be turned into prompt context."""


class HandlerFailure(RoutingEngineError):
    """
    A non-chat handler failed and the chat fallback failed too.

    Attached as the `__cause__` of the fallback's exception so the first failure stays
    visible to whoever shapes the terminal error.
    """

    def __init__(self, handler: str, cause: Exception):
        super().__init__(f"{handler} handler failed: {cause}")
        self.handler = handler
        self.cause = cause


class StreamAborted(RoutingEngineError):
    """
    The caller's chunk callback raised while a response was streaming.

    Raised from the callback's exception; it aborts the run immediately and is never
    retried through the chat fallback.
    """


class PipelineFailure(RoutingEngineError):
    """A run could not produce a response after fallbacks were exhausted."""

    def __init__(self, message: str, stage: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.stage = stage
        self.details = details or {}


class MessageNotFound(RoutingEngineError):
    """A referenced message does not exist."""


class OwnershipFailure(RoutingEngineError):
    """A user tried to act on a message owned by someone else."""
