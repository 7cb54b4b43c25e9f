"""Quizzes generated from a stored study note."""
from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING

from exam_trainer.config import Settings
from exam_trainer.errors import ParseError, RecordNotFoundError
from exam_trainer.models import Quiz, QuizQuestion
from exam_trainer.normalizer import OBJECT, normalize
from exam_trainer.orchestrator import GenerationRequest, RetryOrchestrator
from exam_trainer.prompts import QUIZ_SYSTEM, QUIZ_TYPE_INSTRUCTIONS, build_quiz_prompt
from exam_trainer.validator import ContentKind

if TYPE_CHECKING:
    from exam_trainer.db import Database
    from exam_trainer.providers.base import LLMProvider

_log = logging.getLogger("exam_trainer.quiz")

QUIZ_TYPES = tuple(QUIZ_TYPE_INSTRUCTIONS)
PASSING_SCORE = 60


class QuizGenerator:
    def __init__(self, llm: LLMProvider, db: Database, settings: Settings | None = None):
        self.db = db
        self.settings = settings or Settings()
        self.orchestrator = RetryOrchestrator(llm, budget_increment=self.settings.budget_increment)

    async def generate(
        self,
        note_id: str,
        owner_id: str,
        question_count: int = 10,
        quiz_type: str = "mixed",
        difficulty: str = "mixed",
    ) -> Quiz:
        if quiz_type not in QUIZ_TYPES:
            raise ValueError(f"quiz_type must be one of {', '.join(QUIZ_TYPES)}")
        note = self.db.get_note(note_id, owner_id)
        if note is None:
            raise RecordNotFoundError("Study note", note_id)

        result = await self.orchestrator.run(GenerationRequest(
            kind=ContentKind.QUIZ_QUESTIONS,
            prompt=build_quiz_prompt(note, question_count, quiz_type, difficulty),
            system=QUIZ_SYSTEM,
            target_count=question_count,
            token_budget=self.settings.quiz_token_budget,
            max_attempts=self.settings.max_attempts,
            temperature=0.4,
            timeout=self.settings.request_timeout_seconds,
        ))

        title = f"Quiz: {note.title}"
        passing = PASSING_SCORE
        try:
            parsed = normalize(result.raw, OBJECT)
        except ParseError:
            parsed = None
        if isinstance(parsed, dict):
            title = str(parsed.get("quiz_title") or title)
            if isinstance(parsed.get("passing_score"), int) and 0 < parsed["passing_score"] <= 100:
                passing = parsed["passing_score"]

        questions = [
            QuizQuestion(
                id=str(uuid.uuid4()),
                question=item["question"],
                type=item["type"],
                options=item["options"],
                correct_answer=item["correct_answer"],
                explanation=item.get("explanation"),
                points=1,
                placeholder=item.get("placeholder", False),
            )
            for item in result.items
        ]
        quiz = Quiz(
            id=str(uuid.uuid4()),
            note_id=note.id,
            owner_id=owner_id,
            title=title,
            quiz_type=quiz_type,
            questions=questions,
            passing_score=passing,
            description=f"{len(questions)} {quiz_type.replace('_', ' ')} questions from {note.title}",
        )
        self.db.save_quiz(quiz)
        _log.info("Quiz %s: %d questions from note %s", quiz.id, len(questions), note.id)
        return quiz
