"""Shared test fixtures."""
from __future__ import annotations

import pytest

from exam_trainer.db import Database
from exam_trainer.models import (
    ATTEMPT_SUBMITTED,
    PHASE_OUTLINE,
    PHASE_QUESTIONS,
    ExamAttempt,
    ExamPaper,
    PaperSection,
    Question,
    Section,
    StudyNote,
)


@pytest.fixture
def tmp_db(tmp_path):
    """Create a fresh temporary database."""
    db = Database(tmp_path / "test.db")
    yield db
    db.close()


@pytest.fixture
def sample_note():
    return StudyNote(
        id="note-1",
        owner_id="local",
        title="Laws of Motion",
        summary="Newton's three laws and their applications.",
        key_points=["Inertia resists change in motion", "F = ma", "Action and reaction are equal"],
        raw_content="# Laws of Motion\n\nNewton's three laws and their applications.\n",
        source_file="motion.md",
    )


@pytest.fixture
def sample_sections():
    """Two sections: 5 one-mark MCQs and 3 five-mark short answers (20 marks)."""
    return [
        Section(
            section_id="A",
            section_name="Multiple Choice Questions",
            question_type="MCQ",
            total_questions=5,
            marks_per_question=1,
            total_marks=5,
            topics=["Kinematics", "Optics"],
        ),
        Section(
            section_id="B",
            section_name="Short Answer Questions",
            question_type="SHORT_ANSWER",
            total_questions=3,
            marks_per_question=5,
            total_marks=15,
            word_limit=50,
            topics=["Thermodynamics"],
        ),
    ]


@pytest.fixture
def outline_paper(tmp_db, sample_sections):
    """A persisted paper at phase 1."""
    paper = ExamPaper(
        id="paper-1",
        owner_id="local",
        exam_type="CBSE",
        subject="Physics",
        duration_minutes=90,
        total_marks=20,
        outline=sample_sections,
        exam_metadata={"instructions": ["Use blue ink only."]},
        phase=PHASE_OUTLINE,
    )
    tmp_db.save_paper(paper)
    return paper


def _sample_formatted(sections: list[Section]) -> list[PaperSection]:
    number = 0
    formatted = []
    for s in sections:
        questions = []
        for i in range(s.total_questions):
            number += 1
            questions.append(Question(
                question_number=number,
                question_text=f"{s.section_name} question {i + 1}?",
                marks=s.marks_per_question,
                topic=s.topics[0],
                options=["alpha", "beta", "gamma", "delta"] if s.question_type == "MCQ" else None,
                word_limit=s.word_limit,
            ))
        formatted.append(PaperSection(s.section_id, s.section_name, "Answer all.", questions))
    return formatted


@pytest.fixture
def questions_paper(tmp_db, outline_paper):
    """The sample paper advanced to phase 2 with 8 numbered questions."""
    outline_paper.formatted_paper = _sample_formatted(outline_paper.outline)
    outline_paper.phase = PHASE_QUESTIONS
    tmp_db.save_paper(outline_paper)
    return outline_paper


@pytest.fixture
def submitted_attempt(tmp_db, questions_paper):
    """Answers for Q1-Q3 (MCQ) and Q6 (short answer); the rest left blank."""
    attempt = ExamAttempt(
        id="attempt-1",
        exam_paper_id=questions_paper.id,
        owner_id="local",
        answers={1: "alpha", 2: "beta", 3: "gamma", 6: "Heat flows from hot to cold bodies."},
        status=ATTEMPT_SUBMITTED,
    )
    tmp_db.save_attempt(attempt)
    return attempt
