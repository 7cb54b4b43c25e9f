from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class Completion:
    text: str
    tokens_used: int | None = None
    was_truncated: bool = False  # provider says it stopped at the token limit
    provider: str = ""


class LLMProvider(ABC):
    @abstractmethod
    async def generate(
        self,
        prompt: str,
        *,
        system: str | None = None,
        max_tokens: int = 4000,
        temperature: float = 0.7,
        json_mode: bool = False,
    ) -> Completion:
        ...

    @abstractmethod
    def name(self) -> str:
        ...
