"""The persisted exam-paper pipeline.

A paper moves through outline (phase 1), questions (phase 2) and
finalization (phase 3), each persisted before the next may start.  Attempts
against a paper are started, answered, submitted and graded separately; an
attempt's grading never changes the paper.
"""
from __future__ import annotations

import logging
import uuid
from functools import partial
from typing import TYPE_CHECKING

from exam_trainer.config import Settings
from exam_trainer.errors import (
    AttemptStateError,
    ParseError,
    PhaseOrderError,
    RecordNotFoundError,
    ValidationError,
)
from exam_trainer.grading import GradingAggregator
from exam_trainer.models import (
    ATTEMPT_GRADED,
    ATTEMPT_IN_PROGRESS,
    ATTEMPT_SUBMITTED,
    PHASE_FINAL,
    PHASE_NONE,
    PHASE_OUTLINE,
    PHASE_QUESTIONS,
    ExamAttempt,
    ExamPaper,
    PaperSection,
    Question,
    Section,
)
from exam_trainer.normalizer import OBJECT, normalize
from exam_trainer.orchestrator import GenerationRequest, RetryOrchestrator, placeholder_question
from exam_trainer.prompts import build_outline_prompt, build_questions_prompt, section_instructions
from exam_trainer.validator import ContentKind

if TYPE_CHECKING:
    from exam_trainer.db import Database
    from exam_trainer.providers.base import LLMProvider

_log = logging.getLogger("exam_trainer.pipeline")

MIN_QUESTIONS = 5
SECTION_MARKS_SLACK = 2
MAX_INSTRUCTIONS = 10

EXAM_BOARD_INFO = {
    "CBSE": ("Central Board of Secondary Education", "2024-25 - Annual Examination"),
    "UPSC": ("Union Public Service Commission", "Civil Services Examination - 2025"),
    "SSC": ("Staff Selection Commission", "Combined Graduate Level Examination - 2025"),
    "Railway": ("Railway Recruitment Board", "Railway Recruitment Examination - 2025"),
    "JEE": ("Joint Entrance Examination", "JEE (Main) - 2025"),
    "NEET": ("National Eligibility cum Entrance Test", "NEET (UG) - 2025"),
    "Banking": ("Banking Recruitment Examination", "IBPS/SBI - 2025"),
    "UP_Board": ("Uttar Pradesh Madhyamik Shiksha Parishad", "Board Examination - 2024-25"),
    "State_PSC": ("State Public Service Commission", "State Civil Services Examination - 2025"),
}

SUBJECT_CODES = {
    "Chemistry": "043",
    "Physics": "042",
    "Mathematics": "041",
    "Biology": "044",
    "English": "101",
    "Hindi": "002",
    "History": "027",
    "Geography": "029",
    "Political Science": "028",
    "Economics": "030",
    "General Science": "GS",
    "General Awareness": "GA",
    "Reasoning": "R",
    "Quantitative Aptitude": "QA",
}

BASE_INSTRUCTIONS = [
    "Read all instructions carefully before attempting the questions.",
    "All questions are compulsory unless stated otherwise.",
    "Write your answers neatly and legibly.",
    "Marks are indicated against each question.",
]

EXAM_INSTRUCTIONS = {
    "CBSE": [
        "Draw diagrams wherever necessary.",
        "Use of calculators is not permitted.",
        "Check that all pages of the question paper are complete.",
    ],
    "UPSC": [
        "Answers must be written in the medium authorized in the Admission Certificate.",
        "The number of words indicated is approximate.",
        "Credit will be given for orderly, effective and exact expression combined with due economy of words.",
    ],
    "SSC": [
        "There is negative marking for wrong answers.",
        "Each wrong answer will result in deduction of 0.25 marks.",
        "Do not use pencil for marking answers on OMR sheet.",
    ],
    "Railway": [
        "There is negative marking of 1/3 marks for each wrong answer.",
        "Mark your answers carefully on the OMR sheet.",
        "Use only blue/black ball point pen.",
    ],
    "JEE": [
        "For each question, you will be awarded 4 marks if you darken the bubble(s) "
        "corresponding to the correct answer(s) only.",
        "In case of negative marking questions, -1 mark will be awarded for incorrect answer.",
        "No deduction from the total score will be made if no answer is indicated.",
    ],
    "NEET": [
        "Each question carries 4 marks.",
        "For each incorrect response, 1 mark will be deducted from the total score.",
        "No mark will be deducted for un-attempted questions.",
    ],
}


def format_duration(minutes: int) -> str:
    if minutes < 60:
        return f"{minutes} Minutes"
    hours, rest = divmod(minutes, 60)
    label = f"{hours} Hour{'s' if hours > 1 else ''}"
    return f"{label} {rest} Minutes" if rest else label


def merge_instructions(exam_type: str, custom: list[str]) -> list[str]:
    """General, then exam-specific, then custom instructions; no repeats, at most 10."""
    merged: list[str] = []
    for inst in [*BASE_INSTRUCTIONS, *EXAM_INSTRUCTIONS.get(exam_type, []), *custom]:
        if isinstance(inst, str) and inst.strip() and inst not in merged:
            merged.append(inst)
    return merged[:MAX_INSTRUCTIONS]


def format_header(paper: ExamPaper) -> dict:
    board, session = EXAM_BOARD_INFO.get(paper.exam_type, (paper.exam_type, "Examination - 2025"))
    return {
        "board_name": board,
        "session": session,
        "subject_code": f"{paper.subject} ({SUBJECT_CODES.get(paper.subject, 'XXX')})",
        "class": paper.class_level,
        "duration": format_duration(paper.duration_minutes),
        "max_marks": f"{paper.total_marks:g}",
    }


def check_paper(paper: ExamPaper, tolerance: float = 0.10) -> tuple[list[str], list[str]]:
    """Return ``(errors, warnings)`` for a paper about to be finalized."""
    errors: list[str] = []
    warnings: list[str] = []
    if not paper.formatted_paper:
        return ["No sections found in paper"], warnings

    outline = {s.section_id: s for s in paper.outline}
    for section in paper.formatted_paper:
        for j, q in enumerate(section.questions, start=1):
            if not q.question_text.strip():
                errors.append(f"Section {section.section_id}, Question {j}: Empty question text")
        planned = outline.get(section.section_id)
        if planned is None:
            continue
        if len(section.questions) != planned.total_questions:
            warnings.append(
                f"Section {section.section_id}: question count mismatch "
                f"(got {len(section.questions)}, expected {planned.total_questions})"
            )
        if abs(section.total_marks - planned.total_marks) > SECTION_MARKS_SLACK:
            warnings.append(
                f"Section {section.section_id}: marks mismatch "
                f"(got {section.total_marks:g}, expected {planned.total_marks:g})"
            )

    total = sum(s.total_marks for s in paper.formatted_paper)
    if abs(total - paper.total_marks) > paper.total_marks * tolerance:
        errors.append(f"Total marks mismatch: got {total:g}, expected {paper.total_marks:g}")
    count = len(paper.questions)
    if count < MIN_QUESTIONS:
        errors.append(f"Too few questions: {count}")
    return errors, warnings


def _section_placeholder(section: Section, n: int) -> dict:
    item = placeholder_question(n)
    if section.question_type == "TRUE_FALSE":
        item["options"] = ["True", "False"]
    elif section.question_type in ("MCQ", "MULTI_SELECT"):
        item["options"] = ["Option A", "Option B", "Option C", "Option D"]
    return item


def _to_question(item: dict, number: int, section: Section, index: int) -> Question:
    topic = item.get("topic")
    if not topic:
        topic = section.topics[index % len(section.topics)] if section.topics else "General"
    return Question(
        question_number=number,
        question_text=item["question_text"],
        marks=section.marks_per_question,
        topic=topic,
        difficulty=item.get("difficulty") or "medium",
        options=item.get("options"),
        word_limit=item.get("word_limit") or section.word_limit,
        sub_questions=item.get("sub_questions"),
        past_year_reference=item.get("past_year_reference"),
        placeholder=item.get("placeholder", False),
    )


class ExamPipeline:
    def __init__(self, llm: LLMProvider, db: Database, settings: Settings | None = None):
        self.llm = llm
        self.db = db
        self.settings = settings or Settings()
        self.orchestrator = RetryOrchestrator(llm, budget_increment=self.settings.budget_increment)
        self.grader = GradingAggregator(
            llm,
            batch_size=self.settings.grading_batch_size,
            timeout=self.settings.request_timeout_seconds,
            token_budget=self.settings.grading_token_budget,
        )

    def _load_paper(self, paper_id: str, owner_id: str | None, required_phase: int) -> ExamPaper:
        paper = self.db.get_paper(paper_id, owner_id)
        current = paper.phase if paper else PHASE_NONE
        if paper is None or current < required_phase:
            raise PhaseOrderError(paper_id, required_phase, current)
        return paper

    # ── Phase 1 ──────────────────────────────────────────────────────────

    async def create_outline(
        self,
        owner_id: str,
        exam_type: str,
        subject: str,
        duration_minutes: int,
        total_marks: float,
        class_level: str | None = None,
        note_id: str | None = None,
    ) -> ExamPaper:
        note = None
        if note_id:
            note = self.db.get_note(note_id, owner_id)
            if note is None:
                raise RecordNotFoundError("Study note", note_id)

        system, prompt = build_outline_prompt(
            exam_type, subject, duration_minutes, total_marks, class_level, note
        )
        result = await self.orchestrator.run(GenerationRequest(
            kind=ContentKind.OUTLINE,
            prompt=prompt,
            system=system,
            token_budget=self.settings.outline_token_budget,
            max_attempts=self.settings.max_attempts,
            temperature=0.4,
            timeout=self.settings.request_timeout_seconds,
        ))

        metadata: dict = {}
        try:
            parsed = normalize(result.raw, OBJECT)
            if isinstance(parsed, dict) and isinstance(parsed.get("exam_metadata"), dict):
                metadata = parsed["exam_metadata"]
        except ParseError:
            _log.info("Outline metadata unavailable (sections were recovered from a broken response)")

        paper = ExamPaper(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            exam_type=exam_type,
            subject=subject,
            duration_minutes=duration_minutes,
            total_marks=total_marks,
            class_level=class_level,
            note_id=note_id,
            outline=result.items,
            exam_metadata=metadata,
            phase=PHASE_OUTLINE,
            model_used=result.provider,
        )
        planned = paper.outline_marks
        if abs(planned - total_marks) > total_marks * self.settings.marks_tolerance:
            msg = f"Outline marks {planned:g} differ from target {total_marks:g} by more than {self.settings.marks_tolerance:.0%}"
            _log.warning("%s (paper %s)", msg, paper.id)
            paper.warnings.append(msg)

        self.db.save_paper(paper)
        _log.info("Paper %s: outline with %d sections, %g marks", paper.id, len(paper.outline), planned)
        return paper

    # ── Phase 2 ──────────────────────────────────────────────────────────

    async def generate_questions(self, paper_id: str, owner_id: str | None = None) -> ExamPaper:
        """Generate every section's questions in outline order.

        Sections run one at a time because each section's first question
        number depends on how many questions came before it.  The paper is
        written once, after all sections succeed.
        """
        paper = self._load_paper(paper_id, owner_id, PHASE_OUTLINE)
        if not paper.outline:
            raise PhaseOrderError(paper_id, PHASE_OUTLINE, PHASE_NONE, f"Exam paper {paper_id} has no outline")
        if paper.phase >= PHASE_FINAL:
            raise PhaseOrderError(
                paper_id, PHASE_QUESTIONS, paper.phase,
                f"Exam paper {paper_id} is finalized; its questions can no longer be regenerated",
            )

        note = self.db.get_note(paper.note_id) if paper.note_id else None
        sections: list[PaperSection] = []
        warnings: list[str] = []
        providers: list[str] = []
        offset = 0
        for section in paper.outline:
            system, prompt = build_questions_prompt(
                section, paper.exam_type, paper.subject, paper.class_level, note
            )
            result = await self.orchestrator.run(GenerationRequest(
                kind=ContentKind.QUESTION_SET,
                prompt=prompt,
                system=system,
                target_count=section.total_questions,
                token_budget=self.settings.questions_token_budget,
                max_attempts=self.settings.max_attempts,
                temperature=0.5,
                timeout=self.settings.request_timeout_seconds,
                placeholder=partial(_section_placeholder, section),
                context={"section_type": section.question_type},
            ))
            questions = [
                _to_question(item, offset + i + 1, section, i)
                for i, item in enumerate(result.items)
            ]
            offset += len(questions)
            if result.padded:
                warnings.append(
                    f"Section {section.section_id}: {result.padded} placeholder question(s), regenerate to replace"
                )
            if result.provider and result.provider not in providers:
                providers.append(result.provider)
            sections.append(PaperSection(
                section_id=section.section_id,
                section_name=section.section_name,
                section_instructions=section_instructions(section),
                questions=questions,
            ))
            _log.info("Paper %s: section %s -> questions %d-%d",
                      paper.id, section.section_id, offset - len(questions) + 1, offset)

        paper.formatted_paper = sections
        paper.phase = PHASE_QUESTIONS
        paper.warnings = [w for w in paper.warnings if not w.startswith("Section ")] + warnings
        if providers:
            paper.model_used = ", ".join(providers)
        self.db.save_paper(paper)
        return paper

    # ── Phase 3 ──────────────────────────────────────────────────────────

    def finalize_paper(self, paper_id: str, owner_id: str | None = None) -> ExamPaper:
        paper = self._load_paper(paper_id, owner_id, PHASE_QUESTIONS)
        if paper.phase >= PHASE_FINAL:
            return paper

        paper.header = format_header(paper)
        custom = paper.exam_metadata.get("instructions") or []
        paper.instructions = merge_instructions(paper.exam_type, custom if isinstance(custom, list) else [])

        errors, warnings = check_paper(paper, self.settings.marks_tolerance)
        for w in warnings:
            _log.warning("Paper %s: %s", paper.id, w)
        if errors:
            paper.status = "failed"
            paper.error_message = "; ".join(errors)
            self.db.save_paper(paper)
            raise ValidationError(f"Exam paper validation failed: {paper.error_message}")

        paper.warnings.extend(w for w in warnings if w not in paper.warnings)
        paper.phase = PHASE_FINAL
        paper.status = "ready"
        paper.error_message = None
        self.db.save_paper(paper)
        _log.info("Paper %s finalized: %d questions", paper.id, len(paper.questions))
        return paper

    # ── Attempts ─────────────────────────────────────────────────────────

    def _load_attempt(self, attempt_id: str, owner_id: str | None) -> ExamAttempt:
        attempt = self.db.get_attempt(attempt_id, owner_id)
        if attempt is None:
            raise RecordNotFoundError("Exam attempt", attempt_id)
        return attempt

    def start_attempt(self, paper_id: str, owner_id: str) -> ExamAttempt:
        self._load_paper(paper_id, owner_id, PHASE_QUESTIONS)
        attempt = ExamAttempt(id=str(uuid.uuid4()), exam_paper_id=paper_id, owner_id=owner_id)
        self.db.save_attempt(attempt)
        return attempt

    def save_answers(self, attempt_id: str, owner_id: str | None, answers: dict) -> ExamAttempt:
        attempt = self._load_attempt(attempt_id, owner_id)
        if attempt.status != ATTEMPT_IN_PROGRESS:
            raise AttemptStateError(f"Attempt {attempt_id} is {attempt.status}; answers are locked")
        attempt.answers.update({int(k): str(v) for k, v in answers.items()})
        self.db.save_attempt(attempt)
        return attempt

    def submit_attempt(self, attempt_id: str, owner_id: str | None, answers: dict | None = None) -> ExamAttempt:
        attempt = self._load_attempt(attempt_id, owner_id)
        if attempt.status != ATTEMPT_IN_PROGRESS:
            raise AttemptStateError(f"Attempt {attempt_id} was already submitted")
        if answers:
            attempt.answers.update({int(k): str(v) for k, v in answers.items()})
        attempt.status = ATTEMPT_SUBMITTED
        self.db.save_attempt(attempt)
        return attempt

    async def grade_attempt(self, attempt_id: str, owner_id: str | None = None) -> ExamAttempt:
        """Grade (or re-grade) a submitted attempt, replacing any earlier result."""
        attempt = self._load_attempt(attempt_id, owner_id)
        paper = self._load_paper(attempt.exam_paper_id, None, PHASE_QUESTIONS)
        attempt.grading_result = await self.grader.grade(paper, attempt)
        attempt.status = ATTEMPT_GRADED
        self.db.save_attempt(attempt)
        return attempt
