"""Grade exam attempts question by question and aggregate the result.

Questions are graded in fixed-size batches: every question in a batch is
sent concurrently, and batches run one after another.  Unanswered questions
score zero without a model call.  A grading response that can't be parsed
scores half marks with a generic note instead of failing the run.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from exam_trainer.errors import (
    AttemptStateError,
    ExternalServiceError,
    GradingError,
    ParseError,
    ValidationError,
)
from exam_trainer.models import (
    ATTEMPT_GRADED,
    ATTEMPT_SUBMITTED,
    GradingResult,
    Question,
    QuestionFeedback,
    SectionScore,
)
from exam_trainer.orchestrator import GenerationRequest, RetryOrchestrator
from exam_trainer.prompts import build_grading_prompt
from exam_trainer.validator import ContentKind

if TYPE_CHECKING:
    from exam_trainer.models import ExamAttempt, ExamPaper
    from exam_trainer.providers.base import LLMProvider

_log = logging.getLogger("exam_trainer.grading")

BATCH_SIZE = 10
NO_ANSWER_FEEDBACK = "No answer provided."
FALLBACK_RATIO = 0.5
FALLBACK_FEEDBACK = "Answer shows some understanding. Reviewed by fallback grading."
FALLBACK_REFERENCE = "Please review key concepts for this topic."

# Each table is (minimum percentage, label), highest band first, and ends
# with a catch-all band at 0.
GRADE_TABLES: dict[str, list[tuple[float, str]]] = {
    "board": [
        (91, "A1"), (81, "A2"), (71, "B1"), (61, "B2"),
        (51, "C1"), (41, "C2"), (33, "D"), (0, "E (Needs Improvement)"),
    ],
    "civil_services": [
        (80, "Outstanding"), (70, "Excellent"), (60, "Very Good"),
        (50, "Good"), (40, "Satisfactory"), (0, "Needs Improvement"),
    ],
    "entrance": [
        (90, "Excellent (90+ percentile)"), (80, "Very Good (80+ percentile)"),
        (70, "Good (70+ percentile)"), (60, "Above Average"),
        (50, "Average"), (0, "Below Average"),
    ],
    "recruitment": [
        (80, "Excellent"), (70, "Very Good"), (60, "Good"),
        (50, "Satisfactory"), (40, "Pass"), (0, "Fail"),
    ],
    "default": [
        (90, "A+"), (80, "A"), (70, "B+"), (60, "B"),
        (50, "C+"), (40, "C"), (0, "D"),
    ],
}

EXAM_GRADE_TABLE = {
    "CBSE": "board",
    "UP_Board": "board",
    "UPSC": "civil_services",
    "State_PSC": "civil_services",
    "JEE": "entrance",
    "NEET": "entrance",
    "SSC": "recruitment",
    "Railway": "recruitment",
    "Banking": "recruitment",
}


def grade_label(percentage: float, exam_type: str) -> str:
    table = GRADE_TABLES[EXAM_GRADE_TABLE.get(exam_type, "default")]
    for threshold, label in table:
        if percentage >= threshold:
            return label
    return table[-1][1]


def _percent(obtained: float, total: float) -> float:
    return round(obtained / total * 100, 2) if total > 0 else 0.0


class GradingAggregator:
    def __init__(
        self,
        llm: LLMProvider,
        batch_size: int = BATCH_SIZE,
        timeout: float | None = None,
        token_budget: int = 8000,
    ):
        self.llm = llm
        self.batch_size = max(1, batch_size)
        self.timeout = timeout
        self.token_budget = token_budget
        self.orchestrator = RetryOrchestrator(llm)

    async def grade_question(
        self, question: Question, answer: str, subject: str, question_type: str = ""
    ) -> QuestionFeedback:
        """Grade one answered question.

        Raises :class:`GradingError` when the response can't be parsed and
        :class:`ExternalServiceError` when the provider call fails.
        """
        system, prompt = build_grading_prompt(question, answer, subject, question_type or "MCQ")
        req = GenerationRequest(
            kind=ContentKind.GRADING_FEEDBACK,
            prompt=prompt,
            system=system,
            token_budget=self.token_budget,
            max_attempts=1,
            temperature=0.3,
            timeout=self.timeout,
            context={"max_marks": question.marks, "objective": question.is_objective},
        )
        try:
            result = await self.orchestrator.run(req)
        except (ParseError, ValidationError) as e:
            raise GradingError(question.question_number, str(e)) from e

        data = result.items[0]
        return QuestionFeedback(
            question_number=question.question_number,
            user_answer=answer,
            marks_awarded=data["marks_awarded"],
            max_marks=question.marks,
            feedback=data["feedback"],
            correct_answer_reference=data["correct_answer_reference"],
        )

    async def _grade_one(
        self, question: Question, answer: str | None, subject: str, question_type: str
    ) -> tuple[QuestionFeedback, bool]:
        """Returns the feedback and whether the provider call failed."""
        if not answer or not answer.strip():
            return QuestionFeedback(
                question_number=question.question_number,
                user_answer="",
                marks_awarded=0.0,
                max_marks=question.marks,
                feedback=NO_ANSWER_FEEDBACK,
            ), False

        external_failure = False
        try:
            return await self.grade_question(question, answer, subject, question_type), False
        except GradingError as e:
            _log.warning("%s; using fallback score", e)
        except ExternalServiceError as e:
            _log.warning("Question %d: grading call failed (%s); using fallback score",
                         question.question_number, e)
            external_failure = True

        return QuestionFeedback(
            question_number=question.question_number,
            user_answer=answer,
            marks_awarded=question.marks * FALLBACK_RATIO,
            max_marks=question.marks,
            feedback=FALLBACK_FEEDBACK,
            correct_answer_reference=FALLBACK_REFERENCE,
        ), external_failure

    async def grade(self, paper: ExamPaper, attempt: ExamAttempt) -> GradingResult:
        if attempt.status not in (ATTEMPT_SUBMITTED, ATTEMPT_GRADED):
            raise AttemptStateError(
                f"Attempt {attempt.id} is {attempt.status}; submit it before grading"
            )

        section_types = {s.section_id: s.question_type for s in paper.outline}
        work = [
            (section, q)
            for section in paper.formatted_paper
            for q in section.questions
        ]
        feedback: dict[int, QuestionFeedback] = {}
        answered = 0
        external_failures = 0

        for start in range(0, len(work), self.batch_size):
            batch = work[start:start + self.batch_size]
            results = await asyncio.gather(*(
                self._grade_one(
                    q,
                    attempt.answers.get(q.question_number),
                    paper.subject,
                    section_types.get(section.section_id, ""),
                )
                for section, q in batch
            ))
            for (_, q), (fb, failed) in zip(batch, results):
                feedback[q.question_number] = fb
                if fb.feedback != NO_ANSWER_FEEDBACK:
                    answered += 1
                external_failures += failed
            _log.info("Graded questions %d-%d of %d",
                      start + 1, start + len(batch), len(work))

        if answered and external_failures == answered:
            raise ExternalServiceError(
                self.llm.name(), f"grading failed for all {answered} answered question(s)"
            )

        section_scores = []
        for section in paper.formatted_paper:
            obtained = sum(feedback[q.question_number].marks_awarded for q in section.questions)
            total = section.total_marks
            section_scores.append(SectionScore(
                section_id=section.section_id,
                section_name=section.section_name,
                marks_obtained=obtained,
                total_marks=total,
                percentage=_percent(obtained, total),
            ))

        total_obtained = sum(s.marks_obtained for s in section_scores)
        total_possible = sum(s.total_marks for s in section_scores)
        percentage = _percent(total_obtained, total_possible)
        grade = grade_label(percentage, paper.exam_type)
        _log.info("Attempt %s: %.1f/%.1f (%.2f%%), grade %s",
                  attempt.id, total_obtained, total_possible, percentage, grade)

        return GradingResult(
            exam_paper_id=paper.id,
            total_marks_obtained=total_obtained,
            total_marks=total_possible,
            percentage=percentage,
            grade=grade,
            section_scores=section_scores,
            question_feedback=[feedback[q.question_number] for _, q in work],
            graded_at=datetime.now(timezone.utc).isoformat(),
        )
