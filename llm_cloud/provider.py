"""
provider.py – OpenAI-compatible generation provider with provider routing and validation
-----------------------------------------------------------------------------------------
In the overall data-flow this file sits at the infrastructure layer.
It is the single place where the engine talks to external LLM platforms. Every supported
platform exposes an OpenAI-compatible API, so one SDK (`openai`) serves all of them and only
the base URL and the API key differ:

- "openai": OpenAI's official API with OPENAI_API_KEY (or LLM_API_KEY)
- "nebius": Nebius AI Studio with NEBIUS_API_KEY (or LLM_API_KEY)
- "ollama": a local Ollama daemon's /v1 endpoint; no key required

Why a *provider* module?
• Keeps third-party SDK initialisation separate from routing and handler logic.
• Offers a small, easily mockable `get_client()` function instead of a global singleton.
• Handlers only see the `GenerationProvider` contract; they never import the SDK.

Validation happens at client creation time (not import time) so the package can be imported
by tests and tooling without credentials. SDK errors are translated into `ProviderFailure`
with structured context (HTTP status, install instructions for local models) so the
orchestrator can surface them to the caller intact.
"""

import logging
import os
from typing import Any, Dict, List, Optional, Tuple

import openai
from openai import OpenAI

from config import CONFIG
from monitoring.metrics import LLM_REQUEST_TIME
from provider_api.base import GenerationProvider
from shared.errors import ProviderFailure
from shared.models import ChunkCallback

logger = logging.getLogger(__name__)

PROVIDER_BASE_URLS = {
    "openai": "https://api.openai.com/v1",
    "nebius": "https://api.studio.nebius.com/v1/",
    "ollama": "http://localhost:11434/v1",
}

PROVIDER_KEY_VARS = {
    "openai": ["OPENAI_API_KEY", "LLM_API_KEY"],
    "nebius": ["NEBIUS_API_KEY", "LLM_API_KEY"],
}


def require_any_env(var_names: List[str]) -> Tuple[str, str]:
    """
    Check that at least one of the specified environment variables is present and non-empty.

    The function never logs or returns more than the variable *name* for diagnostics; the
    secret value is returned only to the caller building the client.

    Args:
        var_names (List[str]): Environment variable names to check, in order of preference.

    Returns:
        Tuple[str, str]: (selected_var_name, value) for the first variable that is set.

    Raises:
        RuntimeError: If none of the variables are present or all are empty.
    """
    for var_name in var_names:
        value = os.getenv(var_name, "")
        if value:
            return var_name, value

    var_list = ", ".join(var_names)
    raise RuntimeError(
        f"Missing required environment variable. Set one of: {var_list}"
    )


def configured_provider(config: Dict) -> str:
    return (os.getenv("LLM_PROVIDER") or config.get("llm", {}).get("provider", "openai")).strip().lower()


def validate_env_for_provider(config: Dict, provider: Optional[str] = None) -> None:
    """
    Validate that the environment carries credentials for `provider`.

    Args:
        config (Dict): The configuration dictionary with an 'llm' section.
        provider (Optional[str]): Provider to validate; defaults to the configured one.

    Raises:
        ValueError: If the provider is not supported.
        RuntimeError: If its API key variables are missing or empty.
    """
    provider = (provider or configured_provider(config)).strip().lower()
    if provider not in PROVIDER_BASE_URLS:
        raise ValueError(f"Unsupported LLM provider: {provider}")
    if provider in PROVIDER_KEY_VARS:
        selected_var, _ = require_any_env(PROVIDER_KEY_VARS[provider])
        logger.info("Using environment variable %s for provider %s", selected_var, provider)


def get_client(provider: Optional[str] = None) -> OpenAI:
    """
    Build and return an OpenAI-compatible client for `provider`.

    The configured `llm.base_url` applies only to the configured provider; other providers use
    their well-known endpoints. The request timeout comes from `llm.timeout`.

    Returns:
        OpenAI: A ready-to-use client.

    Raises:
        RuntimeError: If required environment variables are missing.
        ValueError: If the provider is not supported.
    """
    llm_config = CONFIG.get("llm", {})
    provider = (provider or configured_provider(CONFIG)).strip().lower()
    validate_env_for_provider(CONFIG, provider)

    if provider in PROVIDER_KEY_VARS:
        _, api_key = require_any_env(PROVIDER_KEY_VARS[provider])
    else:
        api_key = "ollama"

    base_url = PROVIDER_BASE_URLS[provider]
    if provider == configured_provider(CONFIG) and llm_config.get("base_url"):
        base_url = llm_config["base_url"]
    logger.info("LLM provider selected: %s | base_url=%s", provider, base_url)

    return OpenAI(
        base_url=base_url,
        api_key=api_key,
        timeout=llm_config.get("timeout", 60),
    )


class OpenAIGenerationProvider(GenerationProvider):
    """
    `GenerationProvider` backed by the `openai` SDK.

    Clients are built lazily, one per provider name, the first time a binding for that
    provider is used. `options["provider"]` selects the client and `options["model"]` the model.
    """

    def __init__(self, default_provider: Optional[str] = None):
        self.default_provider = default_provider or configured_provider(CONFIG)
        self._clients: Dict[str, OpenAI] = {}

    def _client(self, provider: str) -> OpenAI:
        if provider not in self._clients:
            try:
                self._clients[provider] = get_client(provider)
            except (RuntimeError, ValueError) as e:
                raise ProviderFailure(
                    provider,
                    str(e),
                    {"env_vars": PROVIDER_KEY_VARS.get(provider, [])},
                ) from e
        return self._clients[provider]

    def _target(self, options: Dict[str, Any]) -> Tuple[str, str]:
        provider = (options.get("provider") or self.default_provider).lower()
        model = options.get("model")
        if not model:
            raise ProviderFailure(provider, "No model specified for generation request")
        return provider, model

    def _failure(self, provider: str, model: str, exc: Exception) -> ProviderFailure:
        context: Dict[str, Any] = {"model": model}
        status = getattr(exc, "status_code", None)
        if status is not None:
            context["http_status"] = status
        if provider == "ollama":
            if isinstance(exc, openai.NotFoundError):
                context["install_command"] = f"ollama pull {model}"
            elif isinstance(exc, openai.APIConnectionError):
                context["install_command"] = "ollama serve"
        message = f"{provider} request failed for model {model}: {exc}"
        logger.error(message, extra={"provider": provider, "model": model, "http_status": status})
        return ProviderFailure(provider, message, context)

    @staticmethod
    def _chat_kwargs(model: str, messages: List[Dict[str, str]], options: Dict[str, Any]) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"model": model, "messages": messages}
        if options.get("temperature") is not None:
            kwargs["temperature"] = options["temperature"]
        if options.get("max_tokens"):
            kwargs["max_tokens"] = options["max_tokens"]
        return kwargs

    @staticmethod
    def _usage(usage) -> Dict[str, Any]:
        if usage is None:
            return {}
        return {
            "prompt_tokens": getattr(usage, "prompt_tokens", None),
            "completion_tokens": getattr(usage, "completion_tokens", None),
            "total_tokens": getattr(usage, "total_tokens", None),
        }

    def chat(self, messages, user_id, options):
        provider, model = self._target(options)
        client = self._client(provider)
        try:
            with LLM_REQUEST_TIME.labels(model=model).time():
                response = client.chat.completions.create(**self._chat_kwargs(model, messages, options))
        except openai.APIError as e:
            raise self._failure(provider, model, e) from e
        return {
            "content": response.choices[0].message.content or "",
            "provider": provider,
            "model": model,
            "usage": self._usage(response.usage),
        }

    def chat_stream(self, messages, chunk_cb: ChunkCallback, user_id, options):
        provider, model = self._target(options)
        client = self._client(provider)
        kwargs = self._chat_kwargs(model, messages, options)
        usage = None
        try:
            with LLM_REQUEST_TIME.labels(model=model).time():
                stream = client.chat.completions.create(
                    stream=True, stream_options={"include_usage": True}, **kwargs
                )
                for chunk in stream:
                    if chunk.usage is not None:
                        usage = chunk.usage
                    if not chunk.choices:
                        continue
                    delta = chunk.choices[0].delta.content
                    if delta:
                        chunk_cb(delta)
        except openai.APIError as e:
            raise self._failure(provider, model, e) from e
        return {"provider": provider, "model": model, "usage": self._usage(usage)}

    def generate_image(self, prompt, user_id, options):
        provider, model = self._target(options)
        client = self._client(provider)
        try:
            with LLM_REQUEST_TIME.labels(model=model).time():
                response = client.images.generate(
                    model=model,
                    prompt=prompt,
                    n=1,
                    size=options.get("size", "1024x1024"),
                )
        except openai.APIError as e:
            raise self._failure(provider, model, e) from e
        images = [
            {
                "url": item.url,
                "b64_json": item.b64_json,
                "revised_prompt": item.revised_prompt or prompt,
            }
            for item in response.data or []
        ]
        return {"images": images, "provider": provider, "model": model}

    def generate_video(self, prompt, user_id, options):
        provider = (options.get("provider") or self.default_provider).lower()
        raise ProviderFailure(
            provider,
            f"Video generation is not available through the {provider} API",
            {"suggested_capability": "TEXT2PIC"},
        )

    def embed(self, text, user_id, options):
        provider, model = self._target(options)
        client = self._client(provider)
        try:
            with LLM_REQUEST_TIME.labels(model=model).time():
                response = client.embeddings.create(model=model, input=text)
        except openai.APIError as e:
            raise self._failure(provider, model, e) from e
        return {"embedding": list(response.data[0].embedding), "provider": provider, "model": model}
