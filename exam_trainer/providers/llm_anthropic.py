from __future__ import annotations

import logging
import os
import time

from exam_trainer.errors import ExternalServiceError
from exam_trainer.providers.base import Completion, LLMProvider

log = logging.getLogger("exam_trainer.llm")


class AnthropicProvider(LLMProvider):
    def __init__(self, model: str = "claude-sonnet-4-20250514", timeout: float = 120.0):
        import anthropic
        self._errors = anthropic.APIError
        self.model = model
        api_key = os.environ.get("ANTHROPIC_API_KEY")
        if not api_key:
            raise ExternalServiceError(self.name(), "ANTHROPIC_API_KEY is not set")
        try:
            self.client = anthropic.AsyncAnthropic(api_key=api_key, timeout=timeout)
        except anthropic.AnthropicError as e:
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
        kwargs: dict = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system
        t0 = time.monotonic()
        try:
            message = await self.client.messages.create(**kwargs)
        except self._errors as e:
            raise ExternalServiceError(self.name(), str(e)) from e

        text = "".join(b.text for b in message.content if getattr(b, "type", "text") == "text")
        tokens = getattr(message.usage, "output_tokens", None)
        log.info("── RESPONSE %s (%.1fs, %s tokens) ──", self.name(), time.monotonic() - t0, tokens)
        return Completion(
            text=text,
            tokens_used=tokens,
            was_truncated=message.stop_reason == "max_tokens",
            provider=self.name(),
        )

    def name(self) -> str:
        return f"anthropic/{self.model}"
