"""Provider construction and the ordered fallback chain."""
from __future__ import annotations

import logging

from exam_trainer.config import Settings
from exam_trainer.errors import ExternalServiceError
from exam_trainer.providers.base import Completion, LLMProvider

log = logging.getLogger("exam_trainer.llm")


class FallbackProvider(LLMProvider):
    """Try interchangeable providers in order; the first success wins."""

    def __init__(self, providers: list[LLMProvider]):
        if not providers:
            raise ValueError("FallbackProvider needs at least one provider")
        self.providers = providers

    async def generate(
        self,
        prompt: str,
        *,
        system: str | None = None,
        max_tokens: int = 4000,
        temperature: float = 0.7,
        json_mode: bool = False,
    ) -> Completion:
        failures: list[str] = []
        for i, provider in enumerate(self.providers):
            try:
                completion = await provider.generate(
                    prompt, system=system, max_tokens=max_tokens,
                    temperature=temperature, json_mode=json_mode,
                )
            except ExternalServiceError as e:
                failures.append(str(e))
                if i + 1 < len(self.providers):
                    log.warning("%s failed (%s), falling back to %s",
                                provider.name(), e, self.providers[i + 1].name())
                continue
            if not completion.provider:
                completion.provider = provider.name()
            return completion
        raise ExternalServiceError(self.name(), "all providers failed: " + "; ".join(failures))

    def name(self) -> str:
        return " -> ".join(p.name() for p in self.providers)


def make_provider(entry: str, settings: Settings, model: str | None = None) -> LLMProvider:
    """Build one provider from a ``"name"`` or ``"name:model"`` entry."""
    name, _, entry_model = entry.partition(":")
    model = entry_model or model
    timeout = settings.request_timeout_seconds
    if name == "ollama":
        from exam_trainer.providers.llm_ollama import OllamaProvider
        return OllamaProvider(base_url=settings.ollama_url, model=model or "qwen3:8b", timeout=timeout)
    if name == "anthropic":
        from exam_trainer.providers.llm_anthropic import AnthropicProvider
        return AnthropicProvider(model=model or "claude-sonnet-4-20250514", timeout=timeout)
    if name == "openai":
        from exam_trainer.providers.llm_openai import OpenAIProvider
        return OpenAIProvider(model=model or "gpt-4-turbo", timeout=timeout)
    if name == "perplexity":
        from exam_trainer.providers.llm_perplexity import PerplexityProvider
        return PerplexityProvider(model=model or "sonar-pro", timeout=timeout)
    raise ValueError(f"Unknown LLM provider: {name}")


def build_llm(settings: Settings) -> LLMProvider:
    """Primary provider followed by the configured fallbacks.

    A provider that cannot be built (usually a missing API key) is skipped
    with a warning; only when none can be built is the failure raised.
    """
    entries = [(settings.llm_provider, settings.llm_model)]
    entries += [(entry, None) for entry in settings.fallback_providers]
    chain: list[LLMProvider] = []
    failures: list[str] = []
    for entry, model in entries:
        try:
            chain.append(make_provider(entry, settings, model=model))
        except ExternalServiceError as e:
            log.warning("Skipping LLM provider %s: %s", entry, e)
            failures.append(str(e))
    if not chain:
        raise ExternalServiceError(settings.llm_provider, "no usable provider: " + "; ".join(failures))
    if len(chain) == 1:
        return chain[0]
    return FallbackProvider(chain)
