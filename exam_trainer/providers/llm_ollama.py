from __future__ import annotations

import logging
import time

import httpx

from exam_trainer.errors import ExternalServiceError
from exam_trainer.providers.base import Completion, LLMProvider

log = logging.getLogger("exam_trainer.llm")


class OllamaProvider(LLMProvider):
    def __init__(self, base_url: str = "http://localhost:11434", model: str = "qwen3:8b",
                 timeout: float = 120.0):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout

    async def generate(
        self,
        prompt: str,
        *,
        system: str | None = None,
        max_tokens: int = 4000,
        temperature: float = 0.7,
        json_mode: bool = False,
    ) -> Completion:
        log.info("── PROMPT (%s, %d tokens max) ──\n%s", self.model, max_tokens, prompt)
        body: dict = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "think": False,
            "options": {"temperature": temperature, "num_predict": max_tokens},
        }
        if system:
            body["system"] = system
        if json_mode:
            body["format"] = "json"

        t0 = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(f"{self.base_url}/api/generate", json=body)
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPError as e:
            raise ExternalServiceError(self.name(), str(e) or type(e).__name__) from e

        elapsed = time.monotonic() - t0
        response = data.get("response", "")
        tokens = data.get("eval_count")
        log.info("── RESPONSE (%.1fs, %s tokens) ──\n%s", elapsed, tokens or "?", response[:300])
        return Completion(
            text=response,
            tokens_used=tokens,
            was_truncated=data.get("done_reason") == "length",
            provider=self.name(),
        )

    def name(self) -> str:
        return f"ollama/{self.model}"
