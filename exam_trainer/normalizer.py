"""Turn raw model completions into structured values.

A completion may arrive wrapped in a code fence, encoded as a JSON string
(sometimes two or three levels deep), as a bare array where an enveloping
object was asked for, or surrounded by chatter.  :func:`normalize` peels those
layers in a fixed order and returns the parsed value, raising
:class:`~exam_trainer.errors.ParseError` when nothing parseable remains.
Shape problems that survive normalization (a scalar where an array was
required) are left for the validator to report.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass

from exam_trainer.errors import ParseError

_log = logging.getLogger("exam_trainer.normalize")

MAX_UNWRAP = 5

_THINK_RE = re.compile(r"<think>.*?</think>", re.DOTALL)
_FENCE_RE = re.compile(r"```[\w-]*[ \t]*\n?(.*?)```", re.DOTALL)
_CLOSERS = {"{": "}", "[": "]"}

# Last-resort repairs for common model mistakes: stray quotes between
# elements and trailing commas before a closer.
_REPAIRS = [
    (re.compile(r'"\s*"\s*,'), '",'),
    (re.compile(r'"\s*"\s*}'), '"}'),
    (re.compile(r'"\s*"\s*]'), '"]'),
    (re.compile(r",\s*([}\]])"), r"\1"),
]


@dataclass(frozen=True)
class Shape:
    """Expected top-level shape of a normalized value.

    ``container`` is ``"object"`` or ``"array"``.  ``envelope`` names the
    object field that holds the item array, e.g. ``"pairs"`` for
    ``{"pairs": [...]}``.
    """

    container: str
    envelope: str | None = None


OBJECT = Shape("object")
ARRAY = Shape("array")


def envelope(key: str) -> Shape:
    return Shape("object", key)


def strip_code_fence(text: str) -> str:
    """Return the body of the first fenced block, or *text* minus dangling fences."""
    text = text.strip()
    m = _FENCE_RE.search(text)
    if m:
        return m.group(1).strip()
    # A truncated response can open a fence and never close it
    text = re.sub(r"^```[\w-]*[ \t]*\n?", "", text)
    text = re.sub(r"\n?[ \t]*```$", "", text)
    return text.strip()


def unwrap_encoded(text: str) -> object:
    """Peel JSON-string layers off *text*.

    Returns the first non-string value found, or the innermost string when
    unwrapping stops (text no longer quoted, decode failure, or the
    iteration bound reached).
    """
    current: object = text
    for _ in range(MAX_UNWRAP):
        if not isinstance(current, str):
            break
        s = current.strip()
        if len(s) < 2 or not (s.startswith('"') and s.endswith('"')):
            break
        try:
            current = json.loads(s)
        except json.JSONDecodeError:
            break
    return current


def find_balanced(text: str, opener: str = "{") -> str | None:
    """Return the substring from the first *opener* to its matching closer.

    Delimiters inside string literals are ignored; a quote only toggles the
    string state when it is not escaped.  Returns ``None`` when *opener* is
    absent or never balanced.
    """
    closer = _CLOSERS[opener]
    start = text.find(opener)
    if start == -1:
        return None
    depth = 0
    in_str = False
    escape = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_str:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
        elif ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


def repair_json(text: str) -> str:
    for pattern, replacement in _REPAIRS:
        text = pattern.sub(replacement, text)
    return text


def _first_opener(text: str, shape: Shape) -> str | None:
    if shape.container == "array":
        return "[" if "[" in text else None
    if shape.envelope is None:
        return "{" if "{" in text else None
    # Envelope shapes accept either the object or a bare array
    positions = [(text.find(o), o) for o in "{[" if o in text]
    return min(positions)[1] if positions else None


def _parse_text(text: str, shape: Shape) -> object:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    opener = _first_opener(text, shape)
    if opener is None:
        raise ParseError(f"no JSON {shape.container} found in response")
    candidate = find_balanced(text, opener)
    if candidate is None:
        raise ParseError(f"no balanced {opener}{_CLOSERS[opener]} region in response")
    _log.debug("Extracted %d-char candidate from %d-char response", len(candidate), len(text))
    try:
        return json.loads(candidate)
    except json.JSONDecodeError as e:
        try:
            return json.loads(repair_json(candidate))
        except json.JSONDecodeError:
            raise ParseError(f"extracted candidate is not valid JSON: {e}") from e


def _fit_shape(value: object, shape: Shape) -> object:
    if shape.envelope and isinstance(value, list):
        return {shape.envelope: value}
    if shape.container == "array" and isinstance(value, dict):
        lists = [v for v in value.values() if isinstance(v, list)]
        if len(lists) == 1:
            return lists[0]
    return value


def normalize(text: str, shape: Shape = OBJECT) -> object:
    """Normalize a raw completion into a parsed JSON value of *shape*."""
    if not text or not text.strip():
        raise ParseError("empty response")
    cleaned = strip_code_fence(_THINK_RE.sub("", text))
    value = unwrap_encoded(cleaned)
    if isinstance(value, str):
        value = _parse_text(value, shape)
    return _fit_shape(value, shape)
