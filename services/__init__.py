"""
services/__init__.py

Backends behind the collaborator interfaces:
- model_config: catalog-backed ModelBinder
- message_store: SQLite message and override persistence
- message_queue: queued mode with an APScheduler-driven worker
- web_search: Brave Search client
- search_query: web search query generation
"""
