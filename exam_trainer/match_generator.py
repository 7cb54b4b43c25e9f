"""Daily term/definition match sets, three topics per day."""
from __future__ import annotations

import logging
from datetime import date as date_cls
from typing import TYPE_CHECKING

from exam_trainer.config import Settings
from exam_trainer.models import MatchSet
from exam_trainer.orchestrator import GenerationRequest, RetryOrchestrator
from exam_trainer.prompts import MATCH_PROMPT, MATCH_SYSTEM
from exam_trainer.validator import ContentKind

if TYPE_CHECKING:
    from exam_trainer.cache import TTLCache
    from exam_trainer.db import Database
    from exam_trainer.providers.base import LLMProvider

_log = logging.getLogger("exam_trainer.match")

PAIRS_PER_SET = 6

MATCH_TOPICS = [
    ("General Knowledge", "Diverse general knowledge facts for competitive exams"),
    ("Indian History", "Important events, personalities, and movements in Indian history"),
    ("Science & Tech", "Scientific concepts, discoveries, and technological innovations"),
]


class MatchSetGenerator:
    def __init__(
        self,
        llm: LLMProvider,
        db: Database,
        cache: TTLCache | None = None,
        settings: Settings | None = None,
    ):
        self.db = db
        self.cache = cache
        self.settings = settings or Settings()
        self.orchestrator = RetryOrchestrator(llm, budget_increment=self.settings.budget_increment)

    async def generate_set(self, topic: str, description: str, day: str) -> MatchSet:
        result = await self.orchestrator.run(GenerationRequest(
            kind=ContentKind.MATCH_PAIRS,
            prompt=MATCH_PROMPT.format(count=PAIRS_PER_SET, topic=topic, description=description),
            system=MATCH_SYSTEM,
            target_count=PAIRS_PER_SET,
            token_budget=self.settings.match_token_budget,
            max_attempts=self.settings.max_attempts,
            temperature=0.7,
            timeout=self.settings.request_timeout_seconds,
        ))
        if result.padded:
            _log.warning("%s (%s): %d placeholder pair(s)", topic, day, result.padded)
        return MatchSet(date=day, topic=topic, pairs=result.items)

    async def get_daily_sets(self, day: str | None = None) -> list[MatchSet]:
        """Return the day's sets, generating only the topics not stored yet.

        Topics are generated one after another.
        """
        day = day or date_cls.today().isoformat()
        if self.cache is not None:
            cached = self.cache.get(day)
            if cached is not None:
                return cached

        stored = {s.topic: s for s in self.db.get_match_sets(day)}
        missing = [(t, d) for t, d in MATCH_TOPICS if t not in stored]
        if missing:
            _log.info("Generating %d match set(s) for %s", len(missing), day)
        for topic, description in missing:
            match_set = await self.generate_set(topic, description, day)
            self.db.save_match_set(match_set)
            stored[topic] = match_set

        sets = [stored[t] for t, _ in MATCH_TOPICS]
        if self.cache is not None:
            self.cache.set(day, sets)
        return sets
