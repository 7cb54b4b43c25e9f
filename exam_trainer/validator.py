"""Shape and range checks for normalized model output.

:func:`validate` takes a normalized value and a :class:`ContentKind` and
returns the items that pass plus the ones that don't, each with a reason.
Bad items never raise; only a value whose top-level shape is wrong for the
kind raises :class:`~exam_trainer.errors.ValidationError`.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from exam_trainer.errors import ValidationError
from exam_trainer.models import OBJECTIVE_TYPES, MatchPair, Section

MAX_TERM_WORDS = 4
MIN_DEFINITION_WORDS = 6
MAX_DEFINITION_WORDS = 12
TERMINAL_PUNCTUATION = (".", "!", "?")

# A definition ending on one of these was cut off mid-phrase
DANGLING_WORDS = frozenset({
    "a", "an", "the",
    "about", "above", "across", "after", "against", "along", "among", "around", "at",
    "before", "behind", "below", "beneath", "beside", "between", "beyond", "by",
    "during", "for", "from", "in", "inside", "into", "near", "of", "off", "on", "onto",
    "over", "through", "to", "toward", "towards", "under", "until", "upon", "via",
    "with", "within", "without",
    "and", "or", "but", "nor", "so", "yet", "as", "than", "that", "which", "if",
    "because", "while", "whereas",
})

DIFFICULTIES = ("easy", "medium", "hard")
QUIZ_TYPES = ("mcq", "true_false", "short_answer")


class ContentKind(str, Enum):
    OUTLINE = "outline"
    QUESTION_SET = "question-set"
    MATCH_PAIRS = "match-pairs"
    GRADING_FEEDBACK = "grading-feedback"
    QUIZ_QUESTIONS = "quiz-questions"

    @property
    def envelope(self) -> str | None:
        """Object field that holds the item array, if the kind has one."""
        return _ENVELOPES.get(self)


_ENVELOPES = {
    ContentKind.OUTLINE: "sections",
    ContentKind.QUESTION_SET: "questions",
    ContentKind.MATCH_PAIRS: "pairs",
    ContentKind.QUIZ_QUESTIONS: "questions",
}


@dataclass
class Rejected:
    index: int
    item: object
    reason: str


@dataclass
class ValidationReport:
    valid: list = field(default_factory=list)
    rejected: list[Rejected] = field(default_factory=list)


def validate(value: object, kind: ContentKind, **context) -> ValidationReport:
    """Check every item of *value* against the rules for *kind*.

    Context keywords: ``section_type`` for question sets (the section's
    question type when items don't carry their own); ``max_marks`` and
    ``objective`` for grading feedback.
    """
    check = _CHECKS[kind]
    report = ValidationReport()
    for i, item in enumerate(_items(value, kind)):
        if not isinstance(item, dict):
            report.rejected.append(Rejected(i, item, f"expected an object, got {type(item).__name__}"))
            continue
        result, reason = check(item, **context)
        if reason is None:
            report.valid.append(result)
        else:
            report.rejected.append(Rejected(i, item, reason))
    return report


def _items(value: object, kind: ContentKind) -> list:
    if kind is ContentKind.GRADING_FEEDBACK:
        if isinstance(value, dict):
            return [value]
        if isinstance(value, list):
            return value
        raise ValidationError(f"expected an object for {kind.value}, got {type(value).__name__}", kind=kind.value)

    if isinstance(value, list):
        return value
    key = kind.envelope
    if isinstance(value, dict) and isinstance(value.get(key), list):
        return value[key]
    raise ValidationError(
        f"expected an array or an object with a '{key}' array for {kind.value}, got {type(value).__name__}",
        kind=kind.value,
    )


def _to_number(value: object) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _to_flag(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1", "y")
    return bool(value)


def _text(value: object) -> str:
    return " ".join(str(value).split()) if value is not None else ""


def _options(value: object) -> list[str] | None:
    if not isinstance(value, list):
        return None
    opts = [_text(o) for o in value if _text(o)]
    return opts or None


# ── Match pairs ──────────────────────────────────────────────────────────

def _check_pair(item: dict, **_) -> tuple[MatchPair | None, str | None]:
    term = _text(item.get("term"))
    definition = _text(item.get("definition"))
    if not term:
        return None, "missing term"
    if len(term.split()) > MAX_TERM_WORDS:
        return None, f"term has {len(term.split())} words (max {MAX_TERM_WORDS})"
    if not definition:
        return None, "missing definition"

    words = definition.split()
    if not MIN_DEFINITION_WORDS <= len(words) <= MAX_DEFINITION_WORDS:
        return None, (
            f"definition has {len(words)} words "
            f"(need {MIN_DEFINITION_WORDS}-{MAX_DEFINITION_WORDS})"
        )
    last = words[-1].rstrip(".!?,;:").lower()
    if last in DANGLING_WORDS:
        return None, f"definition ends with dangling word '{last}'"
    if not definition.endswith(TERMINAL_PUNCTUATION):
        definition = definition.rstrip(",;:") + "."
    return MatchPair(term=term, definition=definition), None


# ── Question sets ────────────────────────────────────────────────────────

def _check_question(item: dict, section_type: str | None = None, **_) -> tuple[dict | None, str | None]:
    text = _text(item.get("question_text") or item.get("question"))
    if not text:
        return None, "empty question text"

    qtype = str(item.get("question_type") or section_type or "").upper()
    options = _options(item.get("options"))
    if qtype == "TRUE_FALSE" and options is None:
        options = ["True", "False"]
    if qtype in OBJECTIVE_TYPES and (options is None or len(options) < 2):
        return None, f"{qtype} question needs at least 2 options"

    difficulty = str(item.get("difficulty") or "medium").lower()
    word_limit = _to_number(item.get("word_limit"))
    sub_questions = item.get("sub_questions")
    return {
        "question_text": text,
        "options": options,
        "topic": _text(item.get("topic")) or None,
        "difficulty": difficulty if difficulty in DIFFICULTIES else "medium",
        "word_limit": int(word_limit) if word_limit else None,
        "sub_questions": sub_questions if isinstance(sub_questions, list) and sub_questions else None,
        "past_year_reference": _text(item.get("past_year_reference")) or None,
    }, None


# ── Outline sections ─────────────────────────────────────────────────────

def _check_section(item: dict, **_) -> tuple[Section | None, str | None]:
    section_id = _text(item.get("section_id"))
    name = _text(item.get("section_name"))
    qtype = _text(item.get("question_type")).upper().replace(" ", "_")
    if not section_id:
        return None, "missing section_id"
    if not name:
        return None, "missing section_name"
    if not qtype:
        return None, "missing question_type"

    count = _to_number(item.get("total_questions"))
    if count is None or count < 1 or count != int(count):
        return None, f"total_questions must be a positive integer, got {item.get('total_questions')!r}"
    per_question = _to_number(item.get("marks_per_question"))
    if per_question is None or per_question <= 0:
        return None, f"marks_per_question must be positive, got {item.get('marks_per_question')!r}"
    total = _to_number(item.get("total_marks"))
    if total is None or total <= 0:
        total = count * per_question

    word_limit = _to_number(item.get("word_limit"))
    topics = item.get("topics")
    return Section(
        section_id=section_id,
        section_name=name,
        question_type=qtype,
        total_questions=int(count),
        marks_per_question=per_question,
        total_marks=total,
        word_limit=int(word_limit) if word_limit else None,
        has_choices=_to_flag(item.get("has_choices", False)),
        topics=[_text(t) for t in topics if _text(t)] if isinstance(topics, list) else [],
    ), None


# ── Grading feedback ─────────────────────────────────────────────────────

def _check_feedback(
    item: dict, max_marks: float = 1.0, objective: bool = False, **_
) -> tuple[dict | None, str | None]:
    raw = item.get("marks_awarded", item.get("marksAwarded"))
    marks = _to_number(raw)
    if marks is None:
        return None, f"marks_awarded is not numeric: {raw!r}"

    marks = min(max(marks, 0.0), float(max_marks))
    if objective:
        # Objective answers are right or wrong
        marks = float(max_marks) if marks >= max_marks else 0.0

    reference = (
        item.get("correct_answer_reference")
        or item.get("correctAnswerReference")
        or item.get("correct_answer")
    )
    return {
        "marks_awarded": marks,
        "feedback": _text(item.get("feedback")),
        "correct_answer_reference": _text(reference) or None,
    }, None


# ── Quiz questions ───────────────────────────────────────────────────────

def _check_quiz_question(item: dict, **_) -> tuple[dict | None, str | None]:
    question = _text(item.get("question") or item.get("question_text"))
    if not question:
        return None, "empty question text"
    qtype = str(item.get("type") or "mcq").lower()
    if qtype not in QUIZ_TYPES:
        return None, f"unknown quiz question type '{qtype}'"
    answer = _text(item.get("correct_answer"))
    if not answer:
        return None, "missing correct_answer"

    options = _options(item.get("options"))
    if qtype == "true_false" and options is None:
        options = ["True", "False"]
    if qtype == "mcq" and (options is None or len(options) < 2):
        return None, "mcq question needs at least 2 options"
    if qtype == "short_answer":
        options = None
    return {
        "question": question,
        "type": qtype,
        "options": options,
        "correct_answer": answer,
        "explanation": _text(item.get("explanation")) or None,
    }, None


_CHECKS = {
    ContentKind.OUTLINE: _check_section,
    ContentKind.QUESTION_SET: _check_question,
    ContentKind.MATCH_PAIRS: _check_pair,
    ContentKind.GRADING_FEEDBACK: _check_feedback,
    ContentKind.QUIZ_QUESTIONS: _check_quiz_question,
}
