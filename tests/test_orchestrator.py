"""Tests for the retry orchestrator and its recovery helpers."""
from __future__ import annotations

import asyncio
import json

import pytest

from exam_trainer.errors import ExternalServiceError, ParseError, ValidationError
from exam_trainer.models import MatchPair
from exam_trainer.orchestrator import (
    PLACEHOLDER_DEFINITION,
    GenerationRequest,
    RetryOrchestrator,
    is_truncated,
    parse_pair_lines,
    parse_question_lines,
    salvage,
)
from exam_trainer.providers.base import Completion
from exam_trainer.validator import ContentKind


class FakeLLM:
    """Replays scripted responses: a str, a Completion, or an exception to raise."""

    def __init__(self, responses=None, delay: float = 0.0):
        self._responses = responses or []
        self._delay = delay
        self.calls: list[dict] = []

    async def generate(self, prompt: str, *, system=None, max_tokens=4000,
                       temperature=0.7, json_mode=False) -> Completion:
        self.calls.append({"prompt": prompt, "system": system, "max_tokens": max_tokens,
                           "temperature": temperature, "json_mode": json_mode})
        if self._delay:
            await asyncio.sleep(self._delay)
        idx = min(len(self.calls) - 1, len(self._responses) - 1)
        response = self._responses[idx]
        if isinstance(response, Exception):
            raise response
        if isinstance(response, Completion):
            return response
        return Completion(text=response, provider="fake-llm")

    def name(self) -> str:
        return "fake-llm"

    @property
    def call_count(self):
        return len(self.calls)


def _pair(i: int) -> dict:
    return {"term": f"Event {i}", "definition": f"Definition number {i} describes a distinct historical event clearly."}


def _pairs_json(n: int, start: int = 1) -> str:
    return json.dumps({"pairs": [_pair(i) for i in range(start, start + n)]})


def _match_request(**overrides) -> GenerationRequest:
    kwargs = dict(kind=ContentKind.MATCH_PAIRS, prompt="Generate pairs", system="Be terse",
                  target_count=6, token_budget=1000, max_attempts=2)
    kwargs.update(overrides)
    return GenerationRequest(**kwargs)


class TestIsTruncated:
    @pytest.mark.parametrize("text", [
        '{"a": 1}',
        '[{"a": "b"}]',
        '```json\n{"a": "}"}\n```',
        '"encoded"',
    ])
    def test_complete(self, text):
        assert not is_truncated(text)

    @pytest.mark.parametrize("text", [
        "",
        '{"pairs": [{"term": "A"}',
        '{"a": "unterminated',
        "Here are your pairs.",
        '{"a": [1, 2, 3',
    ])
    def test_truncated(self, text):
        assert is_truncated(text)


class TestSalvage:
    def test_pairs_from_broken_array(self):
        raw = '{"pairs": [' + json.dumps(_pair(1)) + ", " + json.dumps(_pair(2)) + ', {"term": "Third", "defin'
        found = salvage(raw, ContentKind.MATCH_PAIRS)
        assert [p["term"] for p in found] == ["Event 1", "Event 2"]

    def test_pairs_decode_escapes(self):
        raw = '[{"term": "The \\"Raj\\"", "definition": "British rule over the Indian subcontinent."}'
        found = salvage(raw, ContentKind.MATCH_PAIRS)
        assert found[0]["term"] == 'The "Raj"'

    def test_flat_objects_filtered_by_key(self):
        raw = '{"questions": [{"question_text": "Q1?"}, {"note": "skip me"}, {"question_text": "Q2?", "opt'
        found = salvage(raw, ContentKind.QUESTION_SET)
        assert found == [{"question_text": "Q1?"}]

    def test_grading_object(self):
        raw = 'Verdict: {"marks_awarded": 3, "feedback": "ok"} and then {"marks_awarded":'
        found = salvage(raw, ContentKind.GRADING_FEEDBACK)
        assert found == [{"marks_awarded": 3, "feedback": "ok"}]


class TestTextFallbacks:
    def test_numbered_pairs(self):
        text = ("1. Photosynthesis - Process by which green plants make food using sunlight.\n"
                "2) **Osmosis**: Movement of water across a membrane toward higher concentration.\n")
        pairs = parse_pair_lines(text)
        assert pairs[0] == {"term": "Photosynthesis",
                            "definition": "Process by which green plants make food using sunlight."}
        assert pairs[1]["term"] == "Osmosis"

    def test_bullet_pairs(self):
        pairs = parse_pair_lines("- Inertia – Tendency of a body to resist changes in motion.")
        assert pairs == [{"term": "Inertia", "definition": "Tendency of a body to resist changes in motion."}]

    def test_chatter_lines_ignored(self):
        text = ("I could not finish the list.\n"
                "Note: each definition below was written to be short and clear.\n"
                "Sorry - the rest got cut off.\n")
        assert parse_pair_lines(text) == []

    def test_question_lines_with_options(self):
        text = ("1. What is the unit of force? (easy)\n"
                "A) Newton\nB) Joule\n"
                "2. Explain Newton's third law.\n")
        questions = parse_question_lines(text)
        assert questions[0] == {"question_text": "What is the unit of force?", "difficulty": "easy",
                                "options": ["Newton", "Joule"]}
        assert questions[1]["options"] is None
        assert questions[1]["difficulty"] == "medium"


class TestRetryOrchestrator:
    @pytest.mark.asyncio
    async def test_clean_first_attempt(self):
        llm = FakeLLM([_pairs_json(6)])
        result = await RetryOrchestrator(llm).run(_match_request())
        assert result.attempts == 1
        assert len(result.items) == 6
        assert all(isinstance(p, MatchPair) for p in result.items)
        assert result.padded == 0
        assert not result.salvaged
        assert result.provider == "fake-llm"
        assert llm.calls[0]["system"] == "Be terse"
        assert llm.calls[0]["json_mode"] is True

    @pytest.mark.asyncio
    async def test_budget_grows_after_truncation(self):
        llm = FakeLLM(['{"pairs": [{"term": "Event 1"', '{"pairs": [{"term"', _pairs_json(6)])
        orchestrator = RetryOrchestrator(llm, budget_increment=500)
        result = await orchestrator.run(_match_request(max_attempts=3))
        assert [c["max_tokens"] for c in llm.calls] == [1000, 1500, 2000]
        assert result.attempts == 3
        assert len(result.items) == 6

    @pytest.mark.asyncio
    async def test_provider_truncation_flag_retries(self):
        truncated = Completion(text=_pairs_json(6), was_truncated=True, provider="fake-llm")
        llm = FakeLLM([truncated, _pairs_json(6, start=10)])
        result = await RetryOrchestrator(llm).run(_match_request())
        assert llm.call_count == 2
        assert result.items[0].term == "Event 10"

    @pytest.mark.asyncio
    async def test_salvage_on_final_attempt_then_pad(self):
        broken = '{"pairs": [' + json.dumps(_pair(1)) + ", " + json.dumps(_pair(2)) + ', {"term": "Ev'
        llm = FakeLLM([broken])
        result = await RetryOrchestrator(llm).run(_match_request(max_attempts=1, target_count=3))
        assert result.salvaged
        assert result.padded == 1
        assert [p.term for p in result.items] == ["Event 1", "Event 2", "Term 3"]
        assert result.items[2].placeholder
        assert result.items[2].definition == PLACEHOLDER_DEFINITION

    @pytest.mark.asyncio
    async def test_plain_text_list_fallback(self):
        text = ("Here you go\n"
                "1. Photosynthesis - Process by which green plants make food using sunlight.\n"
                "2. Osmosis - Movement of water across a membrane toward higher concentration.\n")
        llm = FakeLLM([text])
        result = await RetryOrchestrator(llm).run(_match_request(max_attempts=1, target_count=2))
        assert [p.term for p in result.items] == ["Photosynthesis", "Osmosis"]
        assert result.salvaged
        assert result.padded == 0

    @pytest.mark.asyncio
    async def test_prose_is_not_a_pair(self):
        text = ("I could not finish the list.\n"
                "Note: each definition below was written to be short and clear.")
        llm = FakeLLM([text])
        with pytest.raises(ParseError):
            await RetryOrchestrator(llm).run(_match_request(max_attempts=1, target_count=6))

    @pytest.mark.asyncio
    async def test_trims_to_target(self):
        llm = FakeLLM([_pairs_json(8)])
        result = await RetryOrchestrator(llm).run(_match_request())
        assert len(result.items) == 6
        assert result.items[-1].term == "Event 6"

    @pytest.mark.asyncio
    async def test_keeps_best_attempt(self):
        llm = FakeLLM([_pairs_json(4), _pairs_json(2, start=20)])
        result = await RetryOrchestrator(llm).run(_match_request())
        assert result.attempts == 2
        assert result.raw == _pairs_json(4)
        assert [p.term for p in result.items[:4]] == ["Event 1", "Event 2", "Event 3", "Event 4"]
        assert result.padded == 2

    @pytest.mark.asyncio
    async def test_rejected_items_reported(self):
        bad = {"term": "A term that is far too long", "definition": "Some definition of reasonable length here."}
        llm = FakeLLM([json.dumps({"pairs": [_pair(1), bad]})])
        result = await RetryOrchestrator(llm).run(_match_request(max_attempts=1, target_count=None))
        assert len(result.items) == 1
        assert len(result.rejected) == 1
        assert result.rejected[0].index == 1

    @pytest.mark.asyncio
    async def test_custom_placeholder(self):
        llm = FakeLLM([_pairs_json(1)])
        req = _match_request(max_attempts=1, target_count=2,
                             placeholder=lambda n: MatchPair(f"Blank {n}", "-", placeholder=True))
        result = await RetryOrchestrator(llm).run(req)
        assert result.items[1].term == "Blank 2"

    @pytest.mark.asyncio
    async def test_question_set_padding(self):
        raw = json.dumps({"questions": [{"question_text": "Explain entropy."}]})
        llm = FakeLLM([raw])
        req = GenerationRequest(kind=ContentKind.QUESTION_SET, prompt="p", target_count=3,
                                max_attempts=1, context={"section_type": "LONG_ANSWER"})
        result = await RetryOrchestrator(llm).run(req)
        assert result.items[0]["question_text"] == "Explain entropy."
        assert result.items[1]["placeholder"] is True
        assert result.padded == 2

    @pytest.mark.asyncio
    async def test_grading_single_object(self):
        llm = FakeLLM(['{"marks_awarded": 4, "feedback": "Good"}'])
        req = GenerationRequest(kind=ContentKind.GRADING_FEEDBACK, prompt="grade", max_attempts=1,
                                context={"max_marks": 5})
        result = await RetryOrchestrator(llm).run(req)
        assert result.items == [{"marks_awarded": 4.0, "feedback": "Good", "correct_answer_reference": None}]

    @pytest.mark.asyncio
    async def test_provider_error_then_success(self):
        llm = FakeLLM([ExternalServiceError("fake-llm", "503"), _pairs_json(6)])
        result = await RetryOrchestrator(llm).run(_match_request())
        assert result.attempts == 2
        assert len(result.items) == 6

    @pytest.mark.asyncio
    async def test_recovers_from_earlier_raw_text(self):
        broken = '{"pairs": [' + json.dumps(_pair(1)) + ", " + json.dumps(_pair(2)) + ', {"te'
        llm = FakeLLM([broken, ExternalServiceError("fake-llm", "connection reset")])
        result = await RetryOrchestrator(llm).run(_match_request(target_count=2))
        assert result.salvaged
        assert [p.term for p in result.items] == ["Event 1", "Event 2"]

    @pytest.mark.asyncio
    async def test_timeout_raises_external_error(self):
        llm = FakeLLM([_pairs_json(6)], delay=1.0)
        with pytest.raises(ExternalServiceError, match="timed out"):
            await RetryOrchestrator(llm).run(_match_request(timeout=0.01))
        assert llm.call_count == 2

    @pytest.mark.asyncio
    async def test_unparseable_raises_parse_error(self):
        llm = FakeLLM(["I cannot help with that"])
        req = GenerationRequest(kind=ContentKind.GRADING_FEEDBACK, prompt="grade", max_attempts=2)
        with pytest.raises(ParseError) as exc:
            await RetryOrchestrator(llm).run(req)
        assert exc.value.attempts == 2
        assert exc.value.kind == "grading-feedback"

    @pytest.mark.asyncio
    async def test_wrong_shape_raises_validation_error(self):
        llm = FakeLLM(["42"])
        with pytest.raises(ValidationError):
            await RetryOrchestrator(llm).run(_match_request(max_attempts=1))
