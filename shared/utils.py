"""
shared/utils.py

Shared utility functions used across multiple modules.

This module contains small helpers used by the classification layer, the handlers,
the orchestrator and the reprocess coordinator: tolerant JSON decoding of model
output, log truncation, best-effort progress notification, inline media marker
parsing and file type detection.
"""

import json
import logging
import re
import uuid
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from shared.models import ProgressCallback, ProgressEvent, ProgressStatus

logger = logging.getLogger(__name__)

_CODE_FENCE_OPEN = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_CODE_FENCE_CLOSE = re.compile(r"\s*```$")
_MEDIA_MARKER = re.compile(r"\[(IMAGE|VIDEO|AUDIO):([^\]\s]+)\]", re.IGNORECASE)


def generate_tracking_id() -> str:
    """Return a new identifier for a logical exchange (inbound + outbound + retries)."""
    return str(uuid.uuid4())


def strip_code_fence(text: str) -> str:
    """Remove an optional markdown code fence (```json ... ```) around model output."""
    text = (text or "").strip()
    if text.startswith("```"):
        text = _CODE_FENCE_OPEN.sub("", text)
        text = _CODE_FENCE_CLOSE.sub("", text)
    return text.strip()


def safe_json_loads(json_string: str, fallback: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Safely parse a JSON object string, tolerating code fences, with fallback handling.

    Args:
        json_string (str): JSON string to parse, possibly wrapped in a code fence
        fallback (Optional[Dict[str, Any]]): Value returned if parsing fails or the
            payload is not an object

    Returns:
        Dict[str, Any]: Parsed JSON dictionary or fallback value
    """
    try:
        data = json.loads(strip_code_fence(json_string))
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning(f"Failed to parse JSON: {e}. Using fallback value.")
        return fallback or {}
    if not isinstance(data, dict):
        return fallback or {}
    return data


def truncate_for_logging(message: Optional[str], max_length: int = 100) -> str:
    """
    Truncate long texts for logging purposes.

    Args:
        message (Optional[str]): Text to truncate
        max_length (int): Maximum length before truncation (default: 100)

    Returns:
        str: Truncated text with ellipsis if needed
    """
    message = message or ""
    if len(message) <= max_length:
        return message
    return message[:max_length] + "..."


def notify(
    progress_cb: Optional[ProgressCallback],
    status: ProgressStatus,
    message: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Send a progress event to the caller, if a callback was supplied.

    Progress reporting is fire-and-forget: a failing callback is logged and ignored so
    it can never change the outcome of the run.
    """
    if progress_cb is None:
        return
    try:
        progress_cb(ProgressEvent(status=status, message=message, metadata=metadata or {}))
    except Exception as e:
        logger.warning(
            "Progress callback failed; continuing",
            extra={'progress_status': status.value, 'error': str(e)}
        )


def detect_file_type(path_or_url: str) -> str:
    """Return the lowercase file extension of a path or URL, or 'unknown'."""
    path = urlparse(path_or_url).path or path_or_url
    suffix = PurePosixPath(path).suffix.lstrip(".").lower()
    return suffix or "unknown"


def extract_media_markers(text: str) -> Tuple[str, List[Dict[str, str]]]:
    """
    Pull inline `[IMAGE:url]`, `[VIDEO:url]` and `[AUDIO:url]` markers out of a reply.

    Returns the text with every marker removed (and surrounding whitespace tidied)
    plus the list of markers in order of appearance, each as
    `{"kind": "image"|"video"|"audio", "url": ..., "type": <extension>}`.
    """
    markers: List[Dict[str, str]] = []
    for kind, url in _MEDIA_MARKER.findall(text or ""):
        markers.append({"kind": kind.lower(), "url": url, "type": detect_file_type(url)})
    cleaned = _MEDIA_MARKER.sub("", text or "")
    cleaned = re.sub(r"[ \t]{2,}", " ", cleaned)
    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
    return cleaned.strip(), markers
