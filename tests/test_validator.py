"""Tests for per-kind validation of normalized model output."""
from __future__ import annotations

import pytest

from exam_trainer.errors import ValidationError
from exam_trainer.models import MatchPair, Section
from exam_trainer.validator import ContentKind, validate


def _pair(term="Dandi March", definition="Salt protest led by Gandhi against British taxes."):
    return {"term": term, "definition": definition}


class TestShape:
    def test_envelope_object(self):
        report = validate({"pairs": [_pair()]}, ContentKind.MATCH_PAIRS)
        assert len(report.valid) == 1

    def test_bare_array(self):
        report = validate([_pair()], ContentKind.MATCH_PAIRS)
        assert len(report.valid) == 1

    def test_scalar_raises(self):
        with pytest.raises(ValidationError) as exc:
            validate("just text", ContentKind.MATCH_PAIRS)
        assert exc.value.kind == "match-pairs"

    def test_wrong_envelope_raises(self):
        with pytest.raises(ValidationError):
            validate({"items": [_pair()]}, ContentKind.MATCH_PAIRS)

    def test_non_object_item_rejected(self):
        report = validate({"pairs": ["Dandi March", _pair()]}, ContentKind.MATCH_PAIRS)
        assert len(report.valid) == 1
        assert report.rejected[0].index == 0
        assert "expected an object" in report.rejected[0].reason

    def test_envelope_names(self):
        assert ContentKind.OUTLINE.envelope == "sections"
        assert ContentKind.QUESTION_SET.envelope == "questions"
        assert ContentKind.MATCH_PAIRS.envelope == "pairs"
        assert ContentKind.GRADING_FEEDBACK.envelope is None


class TestMatchPairs:
    def test_valid_pair(self):
        report = validate([_pair()], ContentKind.MATCH_PAIRS)
        assert report.valid == [MatchPair("Dandi March", "Salt protest led by Gandhi against British taxes.")]

    def test_terminal_punctuation_added(self):
        report = validate([_pair(definition="Salt protest led by Gandhi against British taxes")],
                          ContentKind.MATCH_PAIRS)
        assert report.valid[0].definition.endswith("taxes.")

    def test_whitespace_collapsed(self):
        report = validate([_pair(term="  Dandi   March ")], ContentKind.MATCH_PAIRS)
        assert report.valid[0].term == "Dandi March"

    def test_long_term_rejected(self):
        report = validate([_pair(term="The Great Salt March of India")], ContentKind.MATCH_PAIRS)
        assert not report.valid
        assert "term has 6 words" in report.rejected[0].reason

    @pytest.mark.parametrize("definition", [
        "Salt protest.",
        "A long definition that goes on and on well past the twelve word ceiling here.",
    ])
    def test_definition_length_bounds(self, definition):
        report = validate([_pair(definition=definition)], ContentKind.MATCH_PAIRS)
        assert not report.valid
        assert "need 6-12" in report.rejected[0].reason

    def test_dangling_word_rejected(self):
        report = validate([_pair(definition="Salt protest led by Gandhi against the")],
                          ContentKind.MATCH_PAIRS)
        assert not report.valid
        assert "dangling word 'the'" in report.rejected[0].reason

    def test_missing_fields(self):
        report = validate([{"term": "X"}, {"definition": "a b c d e f."}], ContentKind.MATCH_PAIRS)
        reasons = [r.reason for r in report.rejected]
        assert reasons == ["missing definition", "missing term"]


class TestQuestionSet:
    def test_mcq_with_options(self):
        item = {"question_text": "Unit of force?", "options": ["Newton", "Joule", "Watt", "Pascal"]}
        report = validate({"questions": [item]}, ContentKind.QUESTION_SET, section_type="MCQ")
        q = report.valid[0]
        assert q["question_text"] == "Unit of force?"
        assert q["options"] == ["Newton", "Joule", "Watt", "Pascal"]
        assert q["difficulty"] == "medium"

    def test_mcq_without_options_rejected(self):
        report = validate([{"question_text": "Unit of force?"}], ContentKind.QUESTION_SET, section_type="MCQ")
        assert not report.valid
        assert "at least 2 options" in report.rejected[0].reason

    def test_true_false_gets_default_options(self):
        report = validate([{"question": "Light is a wave."}], ContentKind.QUESTION_SET, section_type="TRUE_FALSE")
        assert report.valid[0]["options"] == ["True", "False"]

    def test_item_type_overrides_section(self):
        item = {"question_text": "Is sound a wave?", "question_type": "TRUE_FALSE"}
        report = validate([item], ContentKind.QUESTION_SET, section_type="SHORT_ANSWER")
        assert report.valid[0]["options"] == ["True", "False"]

    def test_empty_text_rejected(self):
        report = validate([{"question_text": "   "}], ContentKind.QUESTION_SET)
        assert report.rejected[0].reason == "empty question text"

    def test_subjective_fields(self):
        item = {
            "question_text": "Explain entropy.",
            "topic": "Thermodynamics",
            "difficulty": "HARD",
            "word_limit": "80",
            "sub_questions": [{"part": "a", "text": "Define it."}],
            "past_year_reference": "CBSE 2019",
        }
        q = validate([item], ContentKind.QUESTION_SET, section_type="LONG_ANSWER").valid[0]
        assert q["topic"] == "Thermodynamics"
        assert q["difficulty"] == "hard"
        assert q["word_limit"] == 80
        assert q["sub_questions"] == [{"part": "a", "text": "Define it."}]
        assert q["past_year_reference"] == "CBSE 2019"
        assert q["options"] is None

    def test_unknown_difficulty_defaults(self):
        q = validate([{"question_text": "Q?", "difficulty": "brutal"}], ContentKind.QUESTION_SET).valid[0]
        assert q["difficulty"] == "medium"


class TestOutline:
    def _section(self, **overrides):
        item = {
            "section_id": "A",
            "section_name": "Objective",
            "question_type": "mcq",
            "total_questions": 10,
            "marks_per_question": 1,
            "total_marks": 10,
            "topics": ["Optics", " "],
        }
        item.update(overrides)
        return item

    def test_valid_section(self):
        report = validate({"sections": [self._section()]}, ContentKind.OUTLINE)
        s = report.valid[0]
        assert isinstance(s, Section)
        assert s.question_type == "MCQ"
        assert s.total_questions == 10
        assert s.topics == ["Optics"]

    def test_numeric_strings_coerced(self):
        s = validate([self._section(total_questions="4", marks_per_question="2.5", total_marks="10")],
                     ContentKind.OUTLINE).valid[0]
        assert s.total_questions == 4
        assert s.marks_per_question == 2.5
        assert s.total_marks == 10.0

    def test_total_marks_defaulted(self):
        s = validate([self._section(total_questions=3, marks_per_question=5, total_marks=None)],
                     ContentKind.OUTLINE).valid[0]
        assert s.total_marks == 15

    @pytest.mark.parametrize("raw,expected", [
        ("false", False),
        ("False", False),
        ("no", False),
        ("true", True),
        (True, True),
        (0, False),
        (None, False),
    ])
    def test_has_choices_parsed(self, raw, expected):
        s = validate([self._section(has_choices=raw)], ContentKind.OUTLINE).valid[0]
        assert s.has_choices is expected

    def test_question_type_normalized(self):
        s = validate([self._section(question_type="short answer")], ContentKind.OUTLINE).valid[0]
        assert s.question_type == "SHORT_ANSWER"

    @pytest.mark.parametrize("overrides,reason", [
        ({"section_id": ""}, "missing section_id"),
        ({"section_name": None}, "missing section_name"),
        ({"question_type": ""}, "missing question_type"),
        ({"total_questions": 0}, "total_questions must be a positive integer"),
        ({"total_questions": 2.5}, "total_questions must be a positive integer"),
        ({"marks_per_question": "lots"}, "marks_per_question must be positive"),
    ])
    def test_invalid_sections(self, overrides, reason):
        report = validate([self._section(**overrides)], ContentKind.OUTLINE)
        assert not report.valid
        assert report.rejected[0].reason.startswith(reason)


class TestGradingFeedback:
    def test_single_object(self):
        report = validate({"marks_awarded": 3, "feedback": "Good"}, ContentKind.GRADING_FEEDBACK, max_marks=5)
        assert report.valid == [{"marks_awarded": 3.0, "feedback": "Good", "correct_answer_reference": None}]

    def test_clamped_to_max(self):
        fb = validate({"marks_awarded": 9}, ContentKind.GRADING_FEEDBACK, max_marks=5).valid[0]
        assert fb["marks_awarded"] == 5.0

    def test_negative_clamped_to_zero(self):
        fb = validate({"marks_awarded": -2}, ContentKind.GRADING_FEEDBACK, max_marks=5).valid[0]
        assert fb["marks_awarded"] == 0.0

    def test_camel_case_keys(self):
        fb = validate({"marksAwarded": "2.5", "correctAnswerReference": "Newton's second law"},
                      ContentKind.GRADING_FEEDBACK, max_marks=5).valid[0]
        assert fb["marks_awarded"] == 2.5
        assert fb["correct_answer_reference"] == "Newton's second law"

    def test_objective_is_all_or_nothing(self):
        full = validate({"marks_awarded": 1}, ContentKind.GRADING_FEEDBACK, max_marks=1, objective=True)
        partial = validate({"marks_awarded": 0.5}, ContentKind.GRADING_FEEDBACK, max_marks=1, objective=True)
        assert full.valid[0]["marks_awarded"] == 1.0
        assert partial.valid[0]["marks_awarded"] == 0.0

    def test_non_numeric_rejected(self):
        report = validate({"marks_awarded": "full"}, ContentKind.GRADING_FEEDBACK, max_marks=5)
        assert not report.valid
        assert "not numeric" in report.rejected[0].reason

    def test_boolean_not_numeric(self):
        report = validate({"marks_awarded": True}, ContentKind.GRADING_FEEDBACK, max_marks=5)
        assert not report.valid

    def test_scalar_raises(self):
        with pytest.raises(ValidationError):
            validate(4, ContentKind.GRADING_FEEDBACK, max_marks=5)


class TestQuizQuestions:
    def test_mcq(self):
        item = {"question": "2 + 2?", "type": "mcq", "options": ["3", "4"], "correct_answer": "4",
                "explanation": "Arithmetic."}
        q = validate({"questions": [item]}, ContentKind.QUIZ_QUESTIONS).valid[0]
        assert q == {"question": "2 + 2?", "type": "mcq", "options": ["3", "4"],
                     "correct_answer": "4", "explanation": "Arithmetic."}

    def test_true_false_defaults_options(self):
        q = validate([{"question": "Sky is blue.", "type": "true_false", "correct_answer": "True"}],
                     ContentKind.QUIZ_QUESTIONS).valid[0]
        assert q["options"] == ["True", "False"]

    def test_short_answer_drops_options(self):
        q = validate([{"question": "Define inertia.", "type": "short_answer", "options": ["x", "y"],
                       "correct_answer": "Resistance to change in motion"}],
                     ContentKind.QUIZ_QUESTIONS).valid[0]
        assert q["options"] is None

    def test_missing_answer_rejected(self):
        report = validate([{"question": "2 + 2?", "type": "mcq", "options": ["3", "4"]}],
                          ContentKind.QUIZ_QUESTIONS)
        assert report.rejected[0].reason == "missing correct_answer"

    def test_unknown_type_rejected(self):
        report = validate([{"question": "Match these", "type": "matching", "correct_answer": "a"}],
                          ContentKind.QUIZ_QUESTIONS)
        assert "unknown quiz question type" in report.rejected[0].reason
