"""
Brave Search client.

Implements the `SearchService` interface against the Brave Search web API using
`requests`. The client normalizes the language code it receives from classification
(ISO 639-1, two letters) and derives a matching country code, enforces a request timeout,
and returns results as `SearchResult` objects. Errors are raised as `requests` exceptions
or `RuntimeError` for non-200 responses; the orchestrator treats search as optional
context and swallows them.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from provider_api.base import SearchService
from shared.models import SearchResult

logger = logging.getLogger(__name__)

_LANGUAGE_COUNTRY = {
    "en": "US", "de": "DE", "fr": "FR", "es": "ES", "it": "IT", "nl": "NL",
    "pt": "PT", "ru": "RU", "sv": "SE", "tr": "TR",
}


def normalize_language(language: Optional[str], default: str = "en") -> str:
    code = (language or "").strip().lower()[:2]
    return code if len(code) == 2 and code.isalpha() else default


def country_for_language(language: str, default: str = "US") -> str:
    return _LANGUAGE_COUNTRY.get(language, default)


class BraveSearchClient(SearchService):
    """
    Thin client for `GET /res/v1/web/search`.

    Args:
        api_key: Brave subscription token (BRAVE_API_KEY).
        base_url: Search endpoint URL.
        timeout: Request timeout in seconds.
    """

    def __init__(self, api_key: str, base_url: str, timeout: float = 10.0):
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout

    def search(self, query: str, language: str, count: int) -> List[SearchResult]:
        lang = normalize_language(language)
        params: Dict[str, Any] = {
            "q": query,
            "count": int(count),
            "search_lang": lang,
            "country": country_for_language(lang),
        }
        headers = {
            "Accept": "application/json",
            "X-Subscription-Token": self.api_key,
        }
        logger.info("Brave search request", extra={'query': query[:100], 'search_lang': lang})
        response = requests.get(self.base_url, params=params, headers=headers, timeout=self.timeout)
        if response.status_code != 200:
            raise RuntimeError(f"Brave Search HTTP {response.status_code}: {response.text[:200]}")
        payload = response.json()
        results = []
        for item in (payload.get("web") or {}).get("results", []):
            results.append(SearchResult(
                title=item.get("title", ""),
                url=item.get("url", ""),
                description=item.get("description", ""),
                published=item.get("page_age") or item.get("age"),
                extra_snippets=list(item.get("extra_snippets") or []),
            ))
        logger.info("Brave search completed", extra={'results_count': len(results)})
        return results
