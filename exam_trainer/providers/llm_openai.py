from __future__ import annotations

import logging
import os
import time

from exam_trainer.errors import ExternalServiceError
from exam_trainer.providers.base import Completion, LLMProvider

log = logging.getLogger("exam_trainer.llm")


class OpenAIProvider(LLMProvider):
    """Chat-completions provider; also serves OpenAI-compatible endpoints."""

    prefix = "openai"
    api_key_env = "OPENAI_API_KEY"
    base_url: str | None = None
    supports_json_mode = True

    def __init__(self, model: str = "gpt-4-turbo", timeout: float = 120.0):
        import openai
        self._errors = openai.OpenAIError
        self.model = model
        api_key = os.environ.get(self.api_key_env)
        if not api_key:
            raise ExternalServiceError(self.name(), f"{self.api_key_env} is not set")
        try:
            self.client = openai.AsyncOpenAI(api_key=api_key, base_url=self.base_url, timeout=timeout)
        except openai.OpenAIError as e:
            raise ExternalServiceError(self.name(), str(e)) from e

    async def generate(
        self,
        prompt: str,
        *,
        system: str | None = None,
        max_tokens: int = 4000,
        temperature: float = 0.7,
        json_mode: bool = False,
    ) -> Completion:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        kwargs: dict = {
            "model": self.model,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "messages": messages,
        }
        if json_mode and self.supports_json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        t0 = time.monotonic()
        try:
            resp = await self.client.chat.completions.create(**kwargs)
        except self._errors as e:
            raise ExternalServiceError(self.name(), str(e)) from e

        choice = resp.choices[0]
        tokens = resp.usage.completion_tokens if resp.usage else None
        log.info("── RESPONSE %s (%.1fs, %s tokens) ──", self.name(), time.monotonic() - t0, tokens)
        return Completion(
            text=choice.message.content or "",
            tokens_used=tokens,
            was_truncated=choice.finish_reason == "length",
            provider=self.name(),
        )

    def name(self) -> str:
        return f"{self.prefix}/{self.model}"
