from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from exam_trainer.models import (
    ExamAttempt,
    ExamPaper,
    GradingResult,
    MatchPair,
    MatchSet,
    PaperSection,
    Quiz,
    QuizQuestion,
    Section,
    StudyNote,
)

SCHEMA = """
CREATE TABLE IF NOT EXISTS study_notes (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    title TEXT NOT NULL,
    summary TEXT,
    key_points_json TEXT DEFAULT '[]',
    raw_content TEXT,
    source_file TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS exam_papers (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    exam_type TEXT NOT NULL,
    subject TEXT NOT NULL,
    class_level TEXT,
    duration_minutes INTEGER NOT NULL,
    total_marks REAL NOT NULL,
    note_id TEXT,
    outline_json TEXT DEFAULT '[]',
    exam_metadata_json TEXT DEFAULT '{}',
    formatted_paper_json TEXT DEFAULT '[]',
    header_json TEXT DEFAULT '{}',
    instructions_json TEXT DEFAULT '[]',
    phase INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL,
    warnings_json TEXT DEFAULT '[]',
    error_message TEXT,
    model_used TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS exam_attempts (
    id TEXT PRIMARY KEY,
    exam_paper_id TEXT NOT NULL REFERENCES exam_papers(id),
    owner_id TEXT NOT NULL,
    answers_json TEXT DEFAULT '{}',
    status TEXT NOT NULL,
    grading_result_json TEXT,
    percentage REAL,
    started_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS match_sets (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    date TEXT NOT NULL,
    topic TEXT NOT NULL,
    pairs_json TEXT NOT NULL,
    created_at TEXT NOT NULL,
    UNIQUE (date, topic)
);

CREATE TABLE IF NOT EXISTS quizzes (
    id TEXT PRIMARY KEY,
    note_id TEXT NOT NULL,
    owner_id TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    quiz_type TEXT NOT NULL,
    questions_json TEXT NOT NULL,
    passing_score INTEGER DEFAULT 60,
    time_limit_minutes INTEGER,
    created_at TEXT NOT NULL
);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _owner_clause(owner_id: str | None) -> tuple[str, tuple]:
    if owner_id is None:
        return "", ()
    return " AND owner_id = ?", (owner_id,)


class Database:
    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self._init_schema()

    def _init_schema(self) -> None:
        self.conn.executescript(SCHEMA)
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()

    # ── Study notes ──────────────────────────────────────────────────────

    def save_note(self, note: StudyNote) -> None:
        self.conn.execute(
            "INSERT OR REPLACE INTO study_notes "
            "(id, owner_id, title, summary, key_points_json, raw_content, source_file, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                note.id,
                note.owner_id,
                note.title,
                note.summary,
                json.dumps(note.key_points),
                note.raw_content,
                note.source_file,
                _now(),
            ),
        )
        self.conn.commit()

    @staticmethod
    def _row_to_note(row: sqlite3.Row) -> StudyNote:
        return StudyNote(
            id=row["id"],
            owner_id=row["owner_id"],
            title=row["title"],
            summary=row["summary"] or "",
            key_points=json.loads(row["key_points_json"] or "[]"),
            raw_content=row["raw_content"] or "",
            source_file=row["source_file"] or "",
        )

    def get_note(self, note_id: str, owner_id: str | None = None) -> StudyNote | None:
        clause, params = _owner_clause(owner_id)
        row = self.conn.execute(
            "SELECT * FROM study_notes WHERE id = ?" + clause, (note_id, *params)
        ).fetchone()
        return self._row_to_note(row) if row else None

    def get_note_by_source(self, source_file: str, owner_id: str) -> StudyNote | None:
        row = self.conn.execute(
            "SELECT * FROM study_notes WHERE source_file = ? AND owner_id = ?",
            (source_file, owner_id),
        ).fetchone()
        return self._row_to_note(row) if row else None

    def list_notes(self, owner_id: str) -> list[StudyNote]:
        rows = self.conn.execute(
            "SELECT * FROM study_notes WHERE owner_id = ? ORDER BY created_at DESC", (owner_id,)
        ).fetchall()
        return [self._row_to_note(r) for r in rows]

    # ── Exam papers ──────────────────────────────────────────────────────

    def save_paper(self, paper: ExamPaper) -> None:
        """Insert or update the whole paper record in one statement."""
        now = _now()
        self.conn.execute(
            "INSERT INTO exam_papers "
            "(id, owner_id, exam_type, subject, class_level, duration_minutes, total_marks, "
            "note_id, outline_json, exam_metadata_json, formatted_paper_json, header_json, "
            "instructions_json, phase, status, warnings_json, error_message, model_used, "
            "created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET "
            "outline_json = excluded.outline_json, "
            "exam_metadata_json = excluded.exam_metadata_json, "
            "formatted_paper_json = excluded.formatted_paper_json, "
            "header_json = excluded.header_json, "
            "instructions_json = excluded.instructions_json, "
            "phase = excluded.phase, "
            "status = excluded.status, "
            "warnings_json = excluded.warnings_json, "
            "error_message = excluded.error_message, "
            "model_used = excluded.model_used, "
            "updated_at = excluded.updated_at",
            (
                paper.id,
                paper.owner_id,
                paper.exam_type,
                paper.subject,
                paper.class_level,
                paper.duration_minutes,
                paper.total_marks,
                paper.note_id,
                json.dumps([s.to_dict() for s in paper.outline]),
                json.dumps(paper.exam_metadata),
                json.dumps([s.to_dict() for s in paper.formatted_paper]),
                json.dumps(paper.header),
                json.dumps(paper.instructions),
                paper.phase,
                paper.status,
                json.dumps(paper.warnings),
                paper.error_message,
                paper.model_used,
                now,
                now,
            ),
        )
        self.conn.commit()

    def get_paper(self, paper_id: str, owner_id: str | None = None) -> ExamPaper | None:
        clause, params = _owner_clause(owner_id)
        row = self.conn.execute(
            "SELECT * FROM exam_papers WHERE id = ?" + clause, (paper_id, *params)
        ).fetchone()
        if row is None:
            return None
        return ExamPaper(
            id=row["id"],
            owner_id=row["owner_id"],
            exam_type=row["exam_type"],
            subject=row["subject"],
            duration_minutes=row["duration_minutes"],
            total_marks=row["total_marks"],
            class_level=row["class_level"],
            note_id=row["note_id"],
            outline=[Section.from_dict(s) for s in json.loads(row["outline_json"] or "[]")],
            exam_metadata=json.loads(row["exam_metadata_json"] or "{}"),
            formatted_paper=[
                PaperSection.from_dict(s) for s in json.loads(row["formatted_paper_json"] or "[]")
            ],
            header=json.loads(row["header_json"] or "{}"),
            instructions=json.loads(row["instructions_json"] or "[]"),
            phase=row["phase"],
            status=row["status"],
            warnings=json.loads(row["warnings_json"] or "[]"),
            error_message=row["error_message"],
            model_used=row["model_used"] or "",
        )

    def list_papers(self, owner_id: str) -> list[dict]:
        rows = self.conn.execute(
            "SELECT id, exam_type, subject, total_marks, phase, status, created_at "
            "FROM exam_papers WHERE owner_id = ? ORDER BY created_at DESC",
            (owner_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    # ── Attempts ─────────────────────────────────────────────────────────

    def save_attempt(self, attempt: ExamAttempt) -> None:
        now = _now()
        result = attempt.grading_result
        self.conn.execute(
            "INSERT INTO exam_attempts "
            "(id, exam_paper_id, owner_id, answers_json, status, grading_result_json, "
            "percentage, started_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET "
            "answers_json = excluded.answers_json, "
            "status = excluded.status, "
            "grading_result_json = excluded.grading_result_json, "
            "percentage = excluded.percentage, "
            "updated_at = excluded.updated_at",
            (
                attempt.id,
                attempt.exam_paper_id,
                attempt.owner_id,
                # JSON object keys are strings; converted back on read
                json.dumps({str(k): v for k, v in attempt.answers.items()}),
                attempt.status,
                json.dumps(result.to_dict()) if result else None,
                result.percentage if result else None,
                now,
                now,
            ),
        )
        self.conn.commit()

    def get_attempt(self, attempt_id: str, owner_id: str | None = None) -> ExamAttempt | None:
        clause, params = _owner_clause(owner_id)
        row = self.conn.execute(
            "SELECT * FROM exam_attempts WHERE id = ?" + clause, (attempt_id, *params)
        ).fetchone()
        if row is None:
            return None
        raw_result = row["grading_result_json"]
        return ExamAttempt(
            id=row["id"],
            exam_paper_id=row["exam_paper_id"],
            owner_id=row["owner_id"],
            answers={int(k): v for k, v in json.loads(row["answers_json"] or "{}").items()},
            status=row["status"],
            grading_result=GradingResult.from_dict(json.loads(raw_result)) if raw_result else None,
        )

    # ── Match sets ───────────────────────────────────────────────────────

    def save_match_set(self, match_set: MatchSet) -> int:
        cur = self.conn.execute(
            "INSERT OR REPLACE INTO match_sets (date, topic, pairs_json, created_at) "
            "VALUES (?, ?, ?, ?)",
            (
                match_set.date,
                match_set.topic,
                json.dumps([p.to_dict() for p in match_set.pairs]),
                _now(),
            ),
        )
        self.conn.commit()
        match_set.id = cur.lastrowid
        return cur.lastrowid

    def get_match_sets(self, date: str) -> list[MatchSet]:
        rows = self.conn.execute(
            "SELECT * FROM match_sets WHERE date = ? ORDER BY id", (date,)
        ).fetchall()
        return [
            MatchSet(
                id=r["id"],
                date=r["date"],
                topic=r["topic"],
                pairs=[MatchPair(**p) for p in json.loads(r["pairs_json"])],
            )
            for r in rows
        ]

    # ── Quizzes ──────────────────────────────────────────────────────────

    def save_quiz(self, quiz: Quiz) -> None:
        self.conn.execute(
            "INSERT OR REPLACE INTO quizzes "
            "(id, note_id, owner_id, title, description, quiz_type, questions_json, "
            "passing_score, time_limit_minutes, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                quiz.id,
                quiz.note_id,
                quiz.owner_id,
                quiz.title,
                quiz.description,
                quiz.quiz_type,
                json.dumps([q.to_dict() for q in quiz.questions]),
                quiz.passing_score,
                quiz.time_limit_minutes,
                _now(),
            ),
        )
        self.conn.commit()

    def get_quiz(self, quiz_id: str, owner_id: str | None = None) -> Quiz | None:
        clause, params = _owner_clause(owner_id)
        row = self.conn.execute(
            "SELECT * FROM quizzes WHERE id = ?" + clause, (quiz_id, *params)
        ).fetchone()
        if row is None:
            return None
        return Quiz(
            id=row["id"],
            note_id=row["note_id"],
            owner_id=row["owner_id"],
            title=row["title"],
            quiz_type=row["quiz_type"],
            questions=[QuizQuestion(**q) for q in json.loads(row["questions_json"])],
            passing_score=row["passing_score"],
            time_limit_minutes=row["time_limit_minutes"],
            description=row["description"] or "",
        )

    # ── Stats ────────────────────────────────────────────────────────────

    def get_stats(self, owner_id: str | None = None) -> dict:
        where = " WHERE owner_id = ?" if owner_id is not None else ""
        params = (owner_id,) if owner_id is not None else ()

        notes = self.conn.execute(
            "SELECT COUNT(*) FROM study_notes" + where, params
        ).fetchone()[0]
        phases = {
            row["phase"]: row["cnt"]
            for row in self.conn.execute(
                "SELECT phase, COUNT(*) AS cnt FROM exam_papers" + where + " GROUP BY phase", params
            ).fetchall()
        }
        attempts = {
            row["status"]: row["cnt"]
            for row in self.conn.execute(
                "SELECT status, COUNT(*) AS cnt FROM exam_attempts" + where + " GROUP BY status", params
            ).fetchall()
        }
        graded = self.conn.execute(
            "SELECT AVG(percentage) FROM exam_attempts"
            + (where + " AND" if where else " WHERE")
            + " percentage IS NOT NULL",
            params,
        ).fetchone()[0]
        match_sets = self.conn.execute("SELECT COUNT(*) FROM match_sets").fetchone()[0]
        quizzes = self.conn.execute(
            "SELECT COUNT(*) FROM quizzes" + where, params
        ).fetchone()[0]

        return {
            "total_notes": notes,
            "total_papers": sum(phases.values()),
            "papers_by_phase": {str(p): phases.get(p, 0) for p in range(1, 4)},
            "attempts_by_status": attempts,
            "average_percentage": round(graded, 1) if graded is not None else 0,
            "total_match_sets": match_sets,
            "total_quizzes": quizzes,
        }
