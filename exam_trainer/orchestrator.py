"""Drive model calls until an exact number of valid items comes back.

Each attempt calls the provider with a token budget that grows by a fixed
increment, checks the raw text for likely truncation, and runs it through
:func:`~exam_trainer.normalizer.normalize` and
:func:`~exam_trainer.validator.validate`.  When the last attempt still
yields nothing usable the raw text is salvaged (complete objects picked out
by pattern) and, failing that, parsed as a plain numbered list.  The final
collection is padded with marked placeholders or trimmed to the target.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from exam_trainer.errors import ExternalServiceError, ParseError, ValidationError
from exam_trainer.models import MatchPair
from exam_trainer.normalizer import OBJECT, Shape, envelope, normalize, strip_code_fence
from exam_trainer.validator import ContentKind, Rejected, validate

if TYPE_CHECKING:
    from exam_trainer.providers.base import LLMProvider

_log = logging.getLogger("exam_trainer.orchestrator")

DEFAULT_BUDGET_INCREMENT = 500
PLACEHOLDER_DEFINITION = "Definition pending, please regenerate this match set."


@dataclass
class GenerationRequest:
    kind: ContentKind
    prompt: str
    system: str | None = None
    target_count: int | None = None  # None: take whatever is valid
    token_budget: int = 4000
    max_attempts: int = 2
    temperature: float = 0.5
    json_mode: bool = True
    timeout: float | None = None  # seconds per provider call
    placeholder: Callable[[int], object] | None = None  # 1-based position -> item
    context: dict = field(default_factory=dict)  # extra validate() keywords


@dataclass
class GenerationResult:
    items: list
    attempts: int
    provider: str = ""
    raw: str = ""
    padded: int = 0
    salvaged: bool = False
    rejected: list[Rejected] = field(default_factory=list)


# ── Truncation heuristic ─────────────────────────────────────────────────

def is_truncated(text: str) -> bool:
    """Guess whether *text* was cut off before the model finished.

    Flags unclosed brackets or braces, a final character that is not a
    closer or quote, and an odd number of unescaped quotes.  Best effort
    only: an ordinary sentence ending in a full stop is also flagged.
    """
    body = strip_code_fence(text)
    if not body:
        return True
    if body[-1] not in '}]"':
        return True

    depth = 0
    quotes = 0
    in_str = False
    escape = False
    for ch in body:
        if in_str:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_str = False
                quotes += 1
            continue
        if ch == '"':
            in_str = True
            quotes += 1
        elif ch in "{[":
            depth += 1
        elif ch in "}]":
            depth -= 1
    return depth > 0 or quotes % 2 == 1


# ── Salvage ──────────────────────────────────────────────────────────────

_STRING = r'"((?:[^"\\]|\\.)*)"'
_PAIR_RE = re.compile(r'\{\s*"term"\s*:\s*' + _STRING + r'\s*,\s*"definition"\s*:\s*' + _STRING + r"\s*\}")
_FLAT_OBJECT_RE = re.compile(r'\{(?:[^{}"]|"(?:[^"\\]|\\.)*")*\}')

SALVAGE_KEYS = {
    ContentKind.OUTLINE: ("section_id",),
    ContentKind.QUESTION_SET: ("question_text", "question"),
    ContentKind.GRADING_FEEDBACK: ("marks_awarded", "marksAwarded"),
    ContentKind.QUIZ_QUESTIONS: ("question",),
}


def _decode(s: str) -> str | None:
    try:
        return json.loads(f'"{s}"')
    except json.JSONDecodeError:
        return None


def salvage(text: str, kind: ContentKind) -> list[dict]:
    """Pick every complete item object out of possibly broken *text*."""
    if kind is ContentKind.MATCH_PAIRS:
        found = []
        for m in _PAIR_RE.finditer(text):
            term, definition = _decode(m.group(1)), _decode(m.group(2))
            if term is not None and definition is not None:
                found.append({"term": term, "definition": definition})
        return found

    keys = SALVAGE_KEYS[kind]
    found = []
    for m in _FLAT_OBJECT_RE.finditer(text):
        try:
            obj = json.loads(m.group(0))
        except json.JSONDecodeError:
            continue
        if isinstance(obj, dict) and any(k in obj for k in keys):
            found.append(obj)
    return found


# ── Plain-text list fallback ─────────────────────────────────────────────

_SEP = r"(?:\s*[–—:]\s*|\s+-\s+)"
_NUMBERED_PAIR_RE = re.compile(r"^\d+[.)]\s*(.+?)" + _SEP + r"(.+)$")
_BULLET_PAIR_RE = re.compile(r"^[-*•]\s+(.+?)" + _SEP + r"(.+)$")
_QUESTION_LINE_RE = re.compile(r"^(\d+)[.)]\s+(.+?)(?:\s*\((easy|medium|hard)\))?$", re.IGNORECASE)
_OPTION_LINE_RE = re.compile(r"^\(?([A-Da-d])[).]\s*(.+)$")


def _plain_lines(text: str):
    for line in strip_code_fence(text).splitlines():
        line = line.strip()
        if line and line[0] not in '{}[]"':
            yield line


def parse_pair_lines(text: str) -> list[dict]:
    """Parse ``1. Term - definition`` or ``- Term: definition`` lines; other lines are ignored."""
    pairs = []
    for line in _plain_lines(text):
        m = _NUMBERED_PAIR_RE.match(line) or _BULLET_PAIR_RE.match(line)
        if m:
            pairs.append({
                "term": m.group(1).strip("*_ "),
                "definition": m.group(2).strip("*_ "),
            })
    return pairs


def parse_question_lines(text: str) -> list[dict]:
    """Parse a numbered question list with optional ``A)`` option lines."""
    questions: list[dict] = []
    for line in _plain_lines(text):
        q = _QUESTION_LINE_RE.match(line)
        if q:
            questions.append({
                "question_text": q.group(2).strip(),
                "difficulty": (q.group(3) or "medium").lower(),
                "options": [],
            })
            continue
        opt = _OPTION_LINE_RE.match(line)
        if opt and questions:
            questions[-1]["options"].append(opt.group(2).strip())
    for q in questions:
        if not q["options"]:
            q["options"] = None
    return questions


TEXT_FALLBACKS: dict[ContentKind, Callable[[str], list[dict]]] = {
    ContentKind.MATCH_PAIRS: parse_pair_lines,
    ContentKind.QUESTION_SET: parse_question_lines,
}


# ── Placeholders ─────────────────────────────────────────────────────────

def placeholder_pair(n: int) -> MatchPair:
    return MatchPair(term=f"Term {n}", definition=PLACEHOLDER_DEFINITION, placeholder=True)


def placeholder_question(n: int) -> dict:
    return {
        "question_text": f"Question {n} could not be generated. Please regenerate this section.",
        "options": None,
        "topic": None,
        "difficulty": "medium",
        "word_limit": None,
        "sub_questions": None,
        "past_year_reference": None,
        "placeholder": True,
    }


def placeholder_quiz_question(n: int) -> dict:
    return {
        "question": f"Question {n} could not be generated. Please regenerate this quiz.",
        "type": "short_answer",
        "options": None,
        "correct_answer": "N/A",
        "explanation": None,
        "placeholder": True,
    }


DEFAULT_PLACEHOLDERS: dict[ContentKind, Callable[[int], object]] = {
    ContentKind.MATCH_PAIRS: placeholder_pair,
    ContentKind.QUESTION_SET: placeholder_question,
    ContentKind.QUIZ_QUESTIONS: placeholder_quiz_question,
}


def shape_for(kind: ContentKind) -> Shape:
    return envelope(kind.envelope) if kind.envelope else OBJECT


# ── Orchestrator ─────────────────────────────────────────────────────────

class RetryOrchestrator:
    def __init__(self, llm: LLMProvider, budget_increment: int = DEFAULT_BUDGET_INCREMENT):
        self.llm = llm
        self.budget_increment = budget_increment

    async def _call(self, req: GenerationRequest, budget: int):
        coro = self.llm.generate(
            req.prompt,
            system=req.system,
            max_tokens=budget,
            temperature=req.temperature,
            json_mode=req.json_mode,
        )
        if req.timeout:
            return await asyncio.wait_for(coro, req.timeout)
        return await coro

    def _parse(self, raw: str, req: GenerationRequest) -> tuple[list, list[Rejected]]:
        report = validate(normalize(raw, shape_for(req.kind)), req.kind, **req.context)
        return report.valid, report.rejected

    def _recover(self, raw: str, req: GenerationRequest) -> tuple[list, list[Rejected], str]:
        """Salvage complete objects, then try the plain-text list parser."""
        found = salvage(raw, req.kind)
        mode = "salvage"
        if not found and req.kind in TEXT_FALLBACKS:
            found = TEXT_FALLBACKS[req.kind](raw)
            mode = "text list"
        if not found:
            return [], [], mode
        report = validate(found, req.kind, **req.context)
        return report.valid, report.rejected, mode

    async def run(self, req: GenerationRequest) -> GenerationResult:
        kind = req.kind.value
        best: list = []
        best_rejected: list[Rejected] = []
        salvaged = False
        last_raw = ""
        best_raw = ""
        provider = ""
        last_error: Exception | None = None
        attempts = 0

        for attempt in range(1, req.max_attempts + 1):
            attempts = attempt
            final = attempt == req.max_attempts
            budget = req.token_budget + (attempt - 1) * self.budget_increment
            _log.info("%s attempt %d/%d (budget %d tokens)", kind, attempt, req.max_attempts, budget)

            try:
                completion = await self._call(req, budget)
            except asyncio.TimeoutError:
                last_error = ExternalServiceError(self.llm.name(), f"timed out after {req.timeout}s")
                _log.warning("%s attempt %d timed out after %ss", kind, attempt, req.timeout)
                continue
            except ExternalServiceError as e:
                last_error = e
                _log.warning("%s attempt %d failed: %s", kind, attempt, e)
                continue

            raw = completion.text or ""
            last_raw = raw
            provider = completion.provider or self.llm.name()
            _log.debug("%s raw response: %s", kind, raw[:300])

            truncated = completion.was_truncated or is_truncated(raw)
            if truncated and not final:
                _log.warning("%s attempt %d looks truncated, retrying with a larger budget", kind, attempt)
                continue

            items: list = []
            rejected: list[Rejected] = []
            try:
                items, rejected = self._parse(raw, req)
            except (ParseError, ValidationError) as e:
                last_error = e
                _log.info("%s attempt %d unparseable: %s", kind, attempt, e)

            used_recovery = False
            if not items and final:
                items, rejected, mode = self._recover(raw, req)
                if items:
                    used_recovery = True
                    _log.warning("%s: recovered %d item(s) by %s", kind, len(items), mode)

            _log.info(
                "%s attempt %d: truncated=%s, %d valid, %d rejected",
                kind, attempt, truncated, len(items), len(rejected),
            )
            if len(items) > len(best):
                best, best_rejected, salvaged = items, rejected, used_recovery
                best_raw = raw

            if best and (req.target_count is None or len(best) >= req.target_count):
                break

        # The final call may have failed outright; fall back to the last text we saw
        if not best and last_raw:
            best, best_rejected, mode = self._recover(last_raw, req)
            best_raw = last_raw
            if best:
                salvaged = True
                _log.warning("%s: recovered %d item(s) by %s from an earlier attempt", kind, len(best), mode)

        if not best:
            msg = f"no valid {kind} items after {attempts} attempt(s)"
            if last_error is not None:
                msg += f": {last_error}"
            if not last_raw and isinstance(last_error, ExternalServiceError):
                raise last_error
            if isinstance(last_error, ValidationError):
                raise ValidationError(msg, kind=kind, attempts=attempts)
            raise ParseError(msg, kind=kind, attempts=attempts)

        padded = 0
        if req.target_count is not None:
            if len(best) > req.target_count:
                _log.info("%s: trimming %d items to %d", kind, len(best), req.target_count)
                best = best[:req.target_count]
            elif len(best) < req.target_count:
                factory = req.placeholder or DEFAULT_PLACEHOLDERS.get(req.kind)
                if factory is not None:
                    padded = req.target_count - len(best)
                    _log.warning("%s: padding %d placeholder item(s) to reach %d",
                                 kind, padded, req.target_count)
                    best = best + [factory(n) for n in range(len(best) + 1, req.target_count + 1)]

        return GenerationResult(
            items=best,
            attempts=attempts,
            provider=provider,
            raw=best_raw,
            padded=padded,
            salvaged=salvaged,
            rejected=best_rejected,
        )
