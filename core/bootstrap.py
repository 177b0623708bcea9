"""
core/bootstrap.py

Composition root: builds the routing engine from configuration.

Every collaborator is constructed here and injected downward, so no component reaches
for a global backend. The handler registry is an explicit list of (HandlerName, handler)
pairs; the router validates it at construction.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, List, Optional

from config import CONFIG, ENV
from handlers import ChatHandler, HandlerName, MediaGenerationHandler
from llm_cloud.provider import OpenAIGenerationProvider, configured_provider
from provider_api import (
    GenerationProvider,
    InMemoryPromptStore,
    InMemoryRetrievalService,
    MessageStore,
    MockGenerationProvider,
    OverrideStore,
    PassthroughPreprocessor,
    PromptStore,
    RetrievalService,
    SearchService,
)
from services.message_queue import MessageQueue
from services.message_store import SQLiteMessageStore, SQLiteOverrideStore
from services.model_config import ModelConfigService
from services.search_query import SearchQueryGenerator
from services.web_search import BraveSearchClient
from shared.models import PromptTemplate
from .classifier import MessageClassifier
from .inference_router import InferenceRouter
from .orchestrator import PipelineOrchestrator
from .reprocess import ReprocessCoordinator
from .sorter import MessageSorter

logger = logging.getLogger(__name__)


@dataclass
class Engine:
    """Fully wired engine; the API layer only talks to these objects."""
    binder: ModelConfigService
    provider: GenerationProvider
    messages: MessageStore
    overrides: OverrideStore
    prompts: PromptStore
    classifier: MessageClassifier
    router: InferenceRouter
    orchestrator: PipelineOrchestrator
    reprocess: ReprocessCoordinator
    queue: MessageQueue


def load_prompts(config: Dict[str, Any]) -> List[PromptTemplate]:
    prompts = []
    for entry in config.get("prompts", []):
        prompts.append(PromptTemplate(
            topic=entry["topic"],
            text=entry["text"],
            owner_id=int(entry.get("owner_id", 0)),
            language=entry.get("language", "en"),
            description=entry.get("description", ""),
            ai_model=int(entry.get("ai_model", 0)),
            selection_rules=entry.get("selection_rules"),
        ))
    return prompts


def build_provider(config: Dict[str, Any]) -> GenerationProvider:
    provider = configured_provider(config)
    if provider == "mock":
        logger.info("Using mock generation provider")
        return MockGenerationProvider()
    return OpenAIGenerationProvider(default_provider=provider)


def build_search(config: Dict[str, Any]) -> Optional[SearchService]:
    search = config.get("search", {})
    if not search.get("enabled"):
        return None
    if not ENV.get("BRAVE_API_KEY"):
        logger.warning("Web search enabled but BRAVE_API_KEY is not set; search disabled")
        return None
    return BraveSearchClient(
        api_key=ENV["BRAVE_API_KEY"],
        base_url=search.get("base_url", "https://api.search.brave.com/res/v1/web/search"),
        timeout=float(search.get("timeout", 10)),
    )


def build_engine(
    config: Optional[Dict[str, Any]] = None,
    provider: Optional[GenerationProvider] = None,
    messages: Optional[MessageStore] = None,
    overrides: Optional[OverrideStore] = None,
    prompts: Optional[PromptStore] = None,
    retrieval: Optional[RetrievalService] = None,
    search: Optional[SearchService] = None,
    db_path: Optional[str] = None,
) -> Engine:
    """
    Wire the engine. Every collaborator can be injected; missing ones come from `config`.

    Args:
        config: Application configuration; defaults to the global CONFIG.
        provider: Generation provider; defaults to the configured provider.
        messages: Message store; defaults to SQLite at the configured path.
        overrides: Override store; defaults to SQLite at the configured path.
        prompts: Prompt templates; defaults to the `prompts` config section.
        retrieval: Knowledge retrieval; defaults to an empty in-memory index.
        search: Web search client; defaults to Brave Search when enabled and keyed.
        db_path: SQLite file for stores and the job queue.
    """
    config = config if config is not None else CONFIG
    db_path = db_path or config.get("paths", {}).get("db_full_path", "user_data/messages.sqlite")

    binder = ModelConfigService.from_config(config)
    provider = provider or build_provider(config)
    messages = messages or SQLiteMessageStore(db_path)
    overrides = overrides or SQLiteOverrideStore(db_path)
    prompts = prompts or InMemoryPromptStore(load_prompts(config))
    retrieval = retrieval or InMemoryRetrievalService()
    search = search or build_search(config)

    sorter = MessageSorter(provider, binder, prompts, config)
    classifier = MessageClassifier(sorter, binder, overrides)
    router = InferenceRouter([
        (HandlerName.CHAT, ChatHandler(binder, provider, prompts, retrieval, config)),
        (HandlerName.MEDIA_GENERATION, MediaGenerationHandler(binder, provider, config)),
    ])
    orchestrator = PipelineOrchestrator(
        classifier=classifier,
        router=router,
        messages=messages,
        binder=binder,
        preprocessor=PassthroughPreprocessor(),
        search=search,
        query_generator=SearchQueryGenerator(provider, binder, prompts) if search else None,
        config=config,
    )
    reprocess = ReprocessCoordinator(messages, overrides, binder, provider, prompts)
    queue = MessageQueue(orchestrator, messages, db_path, config, overrides)

    logger.info("Engine ready", extra={'provider': type(provider).__name__, 'web_search': search is not None})
    return Engine(
        binder=binder,
        provider=provider,
        messages=messages,
        overrides=overrides,
        prompts=prompts,
        classifier=classifier,
        router=router,
        orchestrator=orchestrator,
        reprocess=reprocess,
        queue=queue,
    )


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    """Process-wide engine built from CONFIG; FastAPI routes depend on it."""
    return build_engine()
