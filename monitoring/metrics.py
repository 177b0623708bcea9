"""
Core metrics and monitoring decorators for the routing engine.

This module defines Prometheus metrics and decorators for tracking:
- Handler processing time
- Error rates by type and location
- LLM provider latency
- Classification sources and handler fallbacks
- Queued job outcomes
"""

import time
import functools
import logging
from typing import Optional, Callable, Union
from prometheus_client import Counter, Histogram

logger = logging.getLogger(__name__)

ERROR_COUNT = Counter(
    'error_total',
    'Total number of errors',
    ['type', 'location']  # type: e.g. 'handler', 'provider', 'queue'; location: specific component
)

HANDLER_PROCESSING_TIME = Histogram(
    'handler_processing_duration_seconds',
    'Time spent inside a handler',
    ['handler_name'],
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, float("inf")]
)

LLM_REQUEST_TIME = Histogram(
    'llm_request_duration_seconds',
    'Time spent waiting for the generation provider',
    ['model'],
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 30.0, float("inf")]
)

CLASSIFICATION_SOURCE_TOTAL = Counter(
    'classification_source_total',
    'Classifications by source',
    ['source']
)

HANDLER_FALLBACK_TOTAL = Counter(
    'handler_fallback_total',
    'Fallbacks to the chat handler after a handler failure',
    ['failed_handler']
)

QUEUE_JOBS_TOTAL = Counter(
    'queue_jobs_total',
    'Queued messages processed by the worker',
    ['outcome']
)


def track_latency(metric: Histogram, labels: Optional[Callable] = None) -> Callable:
    """
    A decorator factory that tracks the execution time of a function using a Prometheus Histogram.

    Args:
        metric (Histogram): The Prometheus Histogram to record the timing in
        labels (Callable, optional): Function receiving `self` that returns the metric labels

    Returns:
        Callable: The decorated function
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                return func(*args, **kwargs)
            finally:
                duration = time.time() - start_time
                if labels and args:
                    metric.labels(**labels(args[0])).observe(duration)
                else:
                    metric.observe(duration)
                logger.debug(
                    f"Function {func.__name__} execution time: {duration:.2f} seconds",
                    extra={'duration': duration, 'function': func.__name__}
                )
        return wrapper
    return decorator


def track_errors(error_type: str, location: Union[str, Callable]) -> Callable:
    """
    A decorator factory that counts and logs errors raised by a function, then re-raises them.

    Args:
        error_type (str): Type of error (e.g., 'handler', 'provider')
        location (Union[str, Callable]): Where the error occurred; a callable receives `self`

    Returns:
        Callable: The decorated function

    Example:
        @track_errors('handler', lambda self: self.get_handler_name())
        def handle(self, message, ...):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                resolved = location(args[0]) if callable(location) and args else location
                ERROR_COUNT.labels(type=error_type, location=str(resolved)).inc()
                logger.error(
                    f"Error in {resolved} ({error_type}): {str(e)}",
                    extra={
                        'error_type': error_type,
                        'location': str(resolved),
                        'error': str(e)
                    },
                    exc_info=True
                )
                raise
        return wrapper
    return decorator
