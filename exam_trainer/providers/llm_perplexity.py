from __future__ import annotations

from exam_trainer.providers.llm_openai import OpenAIProvider


class PerplexityProvider(OpenAIProvider):
    """Perplexity Sonar through its OpenAI-compatible chat endpoint."""

    prefix = "perplexity"
    api_key_env = "PERPLEXITY_API_KEY"
    base_url = "https://api.perplexity.ai"
    # Sonar rejects response_format=json_object
    supports_json_mode = False

    def __init__(self, model: str = "sonar-pro", timeout: float = 120.0):
        super().__init__(model=model, timeout=timeout)
