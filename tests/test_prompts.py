"""Tests for prompt templates and formatting."""
from __future__ import annotations

from exam_trainer.models import Question, Section, StudyNote
from exam_trainer.prompts import (
    MATCH_PROMPT,
    MATCH_SYSTEM,
    build_grading_prompt,
    build_outline_prompt,
    build_questions_prompt,
    build_quiz_prompt,
    exam_format,
    format_note_context,
    section_instructions,
)

NOTE = StudyNote(id="n", owner_id="local", title="Optics", summary="Light and lenses.",
                 key_points=["Snell's law", "Total internal reflection"], raw_content="x" * 6000)


class TestExamFormat:
    def test_known(self):
        assert exam_format("NEET")["name"] == "National Eligibility cum Entrance Test"

    def test_unknown_falls_back(self):
        assert exam_format("Olympiad") == {
            "name": "Olympiad", "format": "Standard exam format", "marking": "As per exam guidelines",
        }


class TestNoteContext:
    def test_none(self):
        assert format_note_context(None, 100) == ""

    def test_preview_truncated(self):
        block = format_note_context(NOTE, 100)
        assert "Title: Optics" in block
        assert "Snell's law\nTotal internal reflection" in block
        assert "x" * 100 in block
        assert "x" * 101 not in block


class TestOutlinePrompt:
    def test_fields(self):
        system, prompt = build_outline_prompt("UPSC", "History", 180, 250, class_level="Graduate")
        assert "Union Public Service Commission" in system
        assert "Total Marks: 250" in prompt
        assert "Class/Level: Graduate" in prompt
        assert "PERSONALIZATION" not in prompt
        assert '"sections": [' in prompt

    def test_note_personalization(self):
        _, prompt = build_outline_prompt("CBSE", "Physics", 180, 70, note=NOTE)
        assert "PERSONALIZATION" in prompt
        assert "x" * 5000 in prompt
        assert "x" * 5001 not in prompt


class TestQuestionsPrompt:
    def test_mcq(self):
        section = Section("A", "Objective", "MCQ", 10, 1, 10, topics=["Optics", "Waves"])
        system, prompt = build_questions_prompt(section, "CBSE", "Physics")
        assert "multiple choice" in system
        assert prompt.startswith("Generate 10 MCQ questions")
        assert '"options": [' in prompt
        assert "Topics: Optics, Waves" in prompt
        assert "Generate EXACTLY 10 questions." in prompt

    def test_case_study_and_word_limit(self):
        section = Section("D", "Case Study", "CASE_STUDY", 2, 4, 8, word_limit=120)
        _, prompt = build_questions_prompt(section, "CBSE", "Physics", note=NOTE)
        assert "Word Limit: 120 words" in prompt
        assert '"sub_questions"' in prompt
        assert '"options"' not in prompt
        assert "any core topics of the syllabus" in prompt
        assert "PERSONALIZED CONTENT" in prompt

    def test_section_instructions(self):
        section = Section("B", "Short", "SHORT_ANSWER", 6, 2, 12, word_limit=60, has_choices=True)
        text = section_instructions(section)
        assert text.startswith("This section contains 6 questions of 2 mark(s) each.")
        assert "Answer any questions as per choice given." in text
        assert "Word limit: 60 words" in text
        assert text.endswith("Write short answers in 2-3 sentences.")


class TestGradingPrompt:
    def test_objective(self):
        q = Question(3, "Unit of force?", 1, "Mechanics", options=["Newton", "Joule"])
        system, prompt = build_grading_prompt(q, "Newton", "Physics", "MCQ")
        assert "Determine which option is correct" in system
        assert "A) Newton\nB) Joule" in prompt
        assert "Award full marks (1) ONLY" in prompt

    def test_subjective(self):
        q = Question(7, "Explain refraction.", 5, "Optics", word_limit=80)
        system, prompt = build_grading_prompt(q, "Light bends.", "Physics", "SHORT_ANSWER")
        assert "constructive feedback" in system
        assert "Word Limit: 80 words" in prompt
        assert "<number between 0 and 5>" in prompt


class TestMatchPrompt:
    def test_format(self):
        prompt = MATCH_PROMPT.format(count=6, topic="Indian History", description="Events")
        assert 'for the topic: "Indian History"' in prompt
        assert "Generate exactly 6 pairs." in prompt
        assert '{"term": "Mount Everest"' in prompt

    def test_system_is_literal(self):
        assert '{"pairs": [{"term": "...", "definition": "..."}]}' in MATCH_SYSTEM


class TestQuizPrompt:
    def test_mixed(self):
        prompt = build_quiz_prompt(NOTE, 10, "mixed")
        assert "QUIZ TYPE: MIXED" in prompt
        assert "Mix of easy (30%)" in prompt
        assert "Title: Optics" in prompt

    def test_falls_back_to_summary(self):
        note = StudyNote(id="n", owner_id="local", title="Optics", summary="Light bends.", key_points=["Snell"])
        prompt = build_quiz_prompt(note, 5, "short_answer", "easy")
        assert "Light bends.\nSnell" in prompt
        assert "QUIZ TYPE: SHORT ANSWER" in prompt
        assert "DIFFICULTY: easy" in prompt
