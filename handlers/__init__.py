"""
handlers/__init__.py

Response handlers registered with the inference router.

- chat: prompt-driven text generation; the router's fallback for every other handler
- media: image/video generation with local storage of generated images

Every handler follows the BaseHandler interface and is registered under a HandlerName.
"""

from .base import BaseHandler, HandlerName
from .chat import ChatHandler
from .media import MediaGenerationHandler

__all__ = ["BaseHandler", "HandlerName", "ChatHandler", "MediaGenerationHandler"]
