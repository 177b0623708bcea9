"""
Monitoring package initializer.

This package exposes Prometheus metrics and helper decorators for tracking the
classification, routing and generation stages of the engine.
"""

from .metrics import (
    ERROR_COUNT,
    HANDLER_PROCESSING_TIME,
    LLM_REQUEST_TIME,
    CLASSIFICATION_SOURCE_TOTAL,
    HANDLER_FALLBACK_TOTAL,
    QUEUE_JOBS_TOTAL,
    track_latency,
    track_errors,
)

__all__ = [
    'ERROR_COUNT',
    'HANDLER_PROCESSING_TIME',
    'LLM_REQUEST_TIME',
    'CLASSIFICATION_SOURCE_TOTAL',
    'HANDLER_FALLBACK_TOTAL',
    'QUEUE_JOBS_TOTAL',
    'track_latency',
    'track_errors',
]
