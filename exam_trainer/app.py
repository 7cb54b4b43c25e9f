"""FastAPI application: exam papers, attempts, match sets, quizzes and notes."""
from __future__ import annotations

import logging
import os

logging.basicConfig(level=logging.INFO, format="%(name)s | %(message)s")

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from exam_trainer.cache import TTLCache
from exam_trainer.config import Settings, load_settings, save_settings
from exam_trainer.db import Database
from exam_trainer.errors import (
    AttemptStateError,
    ExternalServiceError,
    ParseError,
    PhaseOrderError,
    RecordNotFoundError,
    ValidationError,
)
from exam_trainer.match_generator import MatchSetGenerator
from exam_trainer.models import ExamAttempt, ExamPaper
from exam_trainer.parsers.notes_parser import parse_note_file, parse_note_text
from exam_trainer.pipeline import ExamPipeline
from exam_trainer.providers.registry import build_llm
from exam_trainer.quiz_generator import QUIZ_TYPES, QuizGenerator
from exam_trainer.tasks import BestEffortTasks

app = FastAPI(title="Exam Trainer")

# Global state (initialized in startup)
_db: Database | None = None
_settings: Settings | None = None
_match_cache: TTLCache | None = None
_bg = BestEffortTasks()

DEFAULT_OWNER = "local"


def get_db() -> Database:
    assert _db is not None
    return _db


def get_settings() -> Settings:
    assert _settings is not None
    return _settings


def _get_llm():
    return build_llm(get_settings())


def _get_match_cache() -> TTLCache:
    global _match_cache
    if _match_cache is None:
        _match_cache = TTLCache(get_settings().match_cache_ttl_seconds)
    return _match_cache


def _pipeline() -> ExamPipeline:
    return ExamPipeline(_get_llm(), get_db(), get_settings())


def _owner(request: Request) -> str:
    return request.headers.get("X-Owner-Id") or DEFAULT_OWNER


def _paper_payload(paper: ExamPaper) -> dict:
    return {
        "id": paper.id,
        "exam_type": paper.exam_type,
        "subject": paper.subject,
        "class_level": paper.class_level,
        "duration_minutes": paper.duration_minutes,
        "total_marks": paper.total_marks,
        "note_id": paper.note_id,
        "phase": paper.phase,
        "status": paper.status,
        "exam_metadata": paper.exam_metadata,
        "outline": [s.to_dict() for s in paper.outline],
        "formatted_paper": [s.to_dict() for s in paper.formatted_paper],
        "header": paper.header,
        "instructions": paper.instructions,
        "warnings": paper.warnings,
        "error_message": paper.error_message,
        "model_used": paper.model_used,
    }


def _paper_counts(paper: ExamPaper) -> dict:
    return {
        "sections": len(paper.formatted_paper) or len(paper.outline),
        "questions": len(paper.questions),
        "total_marks": paper.outline_marks,
    }


def _attempt_payload(attempt: ExamAttempt) -> dict:
    return {
        "id": attempt.id,
        "exam_paper_id": attempt.exam_paper_id,
        "status": attempt.status,
        "answers": {str(k): v for k, v in attempt.answers.items()},
        "grading_result": attempt.grading_result.to_dict() if attempt.grading_result else None,
    }


# ── Errors ────────────────────────────────────────────────────────────────

def _error(request: Request, status: int, exc: Exception, phase=None) -> JSONResponse:
    if phase is None:
        phase = getattr(request.state, "phase", None)
    return JSONResponse(
        status_code=status,
        content={"success": False, "error": str(exc), "phase": phase},
    )


@app.exception_handler(RecordNotFoundError)
async def record_not_found_handler(request: Request, exc: RecordNotFoundError) -> JSONResponse:
    return _error(request, 404, exc)


@app.exception_handler(PhaseOrderError)
async def phase_order_handler(request: Request, exc: PhaseOrderError) -> JSONResponse:
    return _error(request, 409, exc, phase=exc.current_phase)


@app.exception_handler(AttemptStateError)
async def attempt_state_handler(request: Request, exc: AttemptStateError) -> JSONResponse:
    return _error(request, 409, exc)


@app.exception_handler(ParseError)
@app.exception_handler(ValidationError)
@app.exception_handler(ExternalServiceError)
async def generation_failed_handler(request: Request, exc: Exception) -> JSONResponse:
    logging.getLogger("exam_trainer.api").warning("%s %s failed: %s", request.method, request.url.path, exc)
    return _error(request, 502, exc)


# ── Lifecycle ─────────────────────────────────────────────────────────────

def _auto_import_notes(db: Database, settings: Settings) -> None:
    log = logging.getLogger("exam_trainer.import")
    for path in settings.resolved_note_files():
        existing = db.get_note_by_source(path.name, DEFAULT_OWNER)
        note = parse_note_file(path, DEFAULT_OWNER, note_id=existing.id if existing else None)
        db.save_note(note)
        log.info("Imported note %s (%d key points)", path.name, len(note.key_points))


@app.on_event("startup")
async def startup():
    global _db, _settings
    if _db is not None:
        return  # Already initialized (e.g. by tests)
    _settings = load_settings()
    _db = Database(_settings.db_full_path)
    if not os.environ.get("EXAM_TRAINER_NO_AUTO_IMPORT"):
        _auto_import_notes(_db, _settings)


@app.on_event("shutdown")
async def shutdown():
    _bg.cancel_all()
    if _db:
        _db.close()


# ── API: Stats ────────────────────────────────────────────────────────────

@app.get("/api/stats")
async def api_stats(request: Request):
    return get_db().get_stats(_owner(request))


# ── API: Settings ─────────────────────────────────────────────────────────

@app.get("/api/settings")
async def api_get_settings():
    return get_settings().to_dict()


@app.put("/api/settings")
async def api_update_settings(request: Request):
    global _match_cache
    body = await request.json()
    s = get_settings()
    known = {f.name for f in Settings.__dataclass_fields__.values()}
    for k, v in body.items():
        if k in known:
            setattr(s, k, v)
    save_settings(s)
    if "match_cache_ttl_seconds" in body:
        _match_cache = None
    return s.to_dict()


# ── API: Study notes ──────────────────────────────────────────────────────

@app.post("/api/notes")
async def api_create_note(request: Request):
    body = await request.json()
    content = body.get("content", "")
    if not content.strip():
        raise HTTPException(400, "content is required")
    note = parse_note_text(content, _owner(request), source_file=body.get("source_file", ""))
    if body.get("title"):
        note.title = body["title"]
    get_db().save_note(note)
    return {
        "success": True,
        "note": {"id": note.id, "title": note.title, "summary": note.summary, "key_points": note.key_points},
    }


@app.get("/api/notes")
async def api_list_notes(request: Request):
    notes = get_db().list_notes(_owner(request))
    return {
        "success": True,
        "notes": [{"id": n.id, "title": n.title, "summary": n.summary} for n in notes],
        "count": len(notes),
    }


# ── API: Exam papers ──────────────────────────────────────────────────────

@app.post("/api/exams/outline")
async def api_create_outline(request: Request):
    request.state.phase = 1
    body = await request.json()
    for key in ("exam_type", "subject", "duration_minutes", "total_marks"):
        if not body.get(key):
            raise HTTPException(400, f"{key} is required")
    try:
        duration = int(body["duration_minutes"])
        total_marks = float(body["total_marks"])
    except (TypeError, ValueError):
        raise HTTPException(400, "duration_minutes and total_marks must be numbers")
    if duration <= 0 or total_marks <= 0:
        raise HTTPException(400, "duration_minutes and total_marks must be positive")

    owner = _owner(request)
    pipeline = _pipeline()
    paper = await pipeline.create_outline(
        owner,
        body["exam_type"],
        body["subject"],
        duration,
        total_marks,
        class_level=body.get("class_level"),
        note_id=body.get("note_id"),
    )

    # No ordering or delivery guarantee; failures are only logged
    if body.get("auto_questions"):
        _bg.submit(pipeline.generate_questions(paper.id, owner), f"questions for {paper.id}")

    return {"success": True, "exam_paper": _paper_payload(paper), "counts": _paper_counts(paper)}


@app.post("/api/exams/{paper_id}/questions")
async def api_generate_questions(paper_id: str, request: Request):
    request.state.phase = 2
    paper = await _pipeline().generate_questions(paper_id, _owner(request))
    return {"success": True, "exam_paper": _paper_payload(paper), "counts": _paper_counts(paper)}


@app.post("/api/exams/{paper_id}/finalize")
async def api_finalize(paper_id: str, request: Request):
    request.state.phase = 3
    paper = _pipeline().finalize_paper(paper_id, _owner(request))
    return {"success": True, "exam_paper": _paper_payload(paper), "counts": _paper_counts(paper)}


@app.get("/api/exams/{paper_id}")
async def api_get_paper(paper_id: str, request: Request):
    paper = get_db().get_paper(paper_id, _owner(request))
    if paper is None:
        raise RecordNotFoundError("Exam paper", paper_id)
    return {"success": True, "exam_paper": _paper_payload(paper), "counts": _paper_counts(paper)}


# ── API: Attempts ─────────────────────────────────────────────────────────

@app.post("/api/attempts")
async def api_start_attempt(request: Request):
    body = await request.json()
    paper_id = body.get("exam_paper_id")
    if not paper_id:
        raise HTTPException(400, "exam_paper_id is required")
    attempt = _pipeline().start_attempt(paper_id, _owner(request))
    return {"success": True, "attempt": _attempt_payload(attempt)}


def _answers_from(body: dict) -> dict:
    answers = body.get("answers") or {}
    if not isinstance(answers, dict):
        raise HTTPException(400, "answers must be an object keyed by question number")
    try:
        return {int(k): v for k, v in answers.items()}
    except ValueError:
        raise HTTPException(400, "answer keys must be question numbers")


@app.put("/api/attempts/{attempt_id}/answers")
async def api_save_answers(attempt_id: str, request: Request):
    answers = _answers_from(await request.json())
    attempt = _pipeline().save_answers(attempt_id, _owner(request), answers)
    return {"success": True, "attempt": _attempt_payload(attempt)}


@app.post("/api/attempts/{attempt_id}/submit")
async def api_submit_attempt(attempt_id: str, request: Request):
    body = await request.json() if await request.body() else {}
    attempt = _pipeline().submit_attempt(attempt_id, _owner(request), _answers_from(body))
    return {"success": True, "attempt": _attempt_payload(attempt)}


@app.post("/api/attempts/{attempt_id}/grade")
async def api_grade_attempt(attempt_id: str, request: Request):
    request.state.phase = "grading"
    attempt = await _pipeline().grade_attempt(attempt_id, _owner(request))
    result = attempt.grading_result
    return {
        "success": True,
        "attempt": _attempt_payload(attempt),
        "counts": {
            "sections": len(result.section_scores),
            "questions": len(result.question_feedback),
        },
    }


# ── API: Match sets ───────────────────────────────────────────────────────

@app.get("/api/match-sets")
async def api_match_sets(date: str | None = None):
    generator = MatchSetGenerator(_get_llm(), get_db(), _get_match_cache(), get_settings())
    sets = await generator.get_daily_sets(date)
    return {
        "success": True,
        "match_sets": [
            {"id": s.id, "date": s.date, "topic": s.topic, "pairs": [p.to_dict() for p in s.pairs]}
            for s in sets
        ],
        "counts": {"sets": len(sets), "pairs": sum(len(s.pairs) for s in sets)},
    }


# ── API: Quizzes ──────────────────────────────────────────────────────────

@app.post("/api/quizzes")
async def api_create_quiz(request: Request):
    body = await request.json()
    note_id = body.get("note_id")
    if not note_id:
        raise HTTPException(400, "note_id is required")
    quiz_type = body.get("quiz_type", "mixed")
    if quiz_type not in QUIZ_TYPES:
        raise HTTPException(400, f"quiz_type must be one of {', '.join(QUIZ_TYPES)}")
    try:
        count = int(body.get("question_count", 10))
    except (TypeError, ValueError):
        raise HTTPException(400, "question_count must be a number")
    if not 1 <= count <= 50:
        raise HTTPException(400, "question_count must be between 1 and 50")

    quiz = await QuizGenerator(_get_llm(), get_db(), get_settings()).generate(
        note_id, _owner(request), question_count=count, quiz_type=quiz_type,
        difficulty=body.get("difficulty", "mixed"),
    )
    return {
        "success": True,
        "quiz": {
            "id": quiz.id,
            "title": quiz.title,
            "description": quiz.description,
            "quiz_type": quiz.quiz_type,
            "passing_score": quiz.passing_score,
            "questions": [q.to_dict() for q in quiz.questions],
        },
        "counts": {"questions": len(quiz.questions)},
    }
