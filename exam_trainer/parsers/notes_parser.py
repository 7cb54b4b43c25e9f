"""Parse a markdown study note into a StudyNote.

Expected layout:
  # Title
  One or more summary paragraphs.
  ## Key Points
  - bullet
  - bullet
  ## Any other section ...

Only the title is required; the whole file is kept as raw content.
"""
from __future__ import annotations

import re
import uuid
from pathlib import Path

from exam_trainer.models import StudyNote

_BULLET_RE = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+(.+)")


def parse_note_text(text: str, owner_id: str, source_file: str = "", note_id: str | None = None) -> StudyNote:
    title = ""
    summary_lines: list[str] = []
    key_points: list[str] = []
    section = None  # None: before any "##" heading

    for line in text.splitlines():
        m = re.match(r"^# (.+)", line)
        if m and not title:
            title = m.group(1).strip()
            continue
        m = re.match(r"^##\s+(.+)", line)
        if m:
            section = m.group(1).strip().lower()
            continue
        if section is None:
            if title:
                summary_lines.append(line.strip())
        elif section == "key points":
            b = _BULLET_RE.match(line)
            if b:
                key_points.append(b.group(1).strip())

    if not title:
        title = Path(source_file).stem.replace("_", " ").replace("-", " ").strip() or "Untitled note"
    summary = " ".join(" ".join(summary_lines).split())
    return StudyNote(
        id=note_id or str(uuid.uuid4()),
        owner_id=owner_id,
        title=title,
        summary=summary,
        key_points=key_points,
        raw_content=text,
        source_file=source_file,
    )


def parse_note_file(path: Path, owner_id: str, note_id: str | None = None) -> StudyNote:
    return parse_note_text(path.read_text(), owner_id, source_file=path.name, note_id=note_id)
