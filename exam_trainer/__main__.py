"""CLI entry point for exam-trainer.

Usage:
  python -m exam_trainer serve [--port PORT] [--host HOST] [--no-auto-import]
  python -m exam_trainer stop
  python -m exam_trainer restart [--port PORT]
  python -m exam_trainer status
  python -m exam_trainer import-note PATH
  python -m exam_trainer outline --exam-type CBSE --subject Physics --duration 180 --marks 70 [--class 12] [--note ID]
  python -m exam_trainer questions PAPER_ID
  python -m exam_trainer finalize PAPER_ID
  python -m exam_trainer grade ATTEMPT_ID
  python -m exam_trainer match [--date YYYY-MM-DD]
  python -m exam_trainer stats
"""
from __future__ import annotations

import asyncio
import os
import signal
import sys
from pathlib import Path

PID_FILE = Path(__file__).resolve().parent.parent / ".server.pid"
OWNER = "local"


def main():
    args = sys.argv[1:]
    command = args[0] if args else "serve"

    commands = {
        "serve": lambda: _serve(args[1:]),
        "stop": _stop,
        "restart": lambda: _restart(args[1:]),
        "status": _status,
        "import-note": lambda: _import_note(args[1:]),
        "outline": lambda: _outline(args[1:]),
        "questions": lambda: _questions(args[1:]),
        "finalize": lambda: _finalize(args[1:]),
        "grade": lambda: _grade(args[1:]),
        "match": lambda: _match(args[1:]),
        "stats": _stats,
    }
    if command not in commands:
        print(f"Unknown command: {command}")
        print("Commands: " + ", ".join(commands))
        sys.exit(1)

    from exam_trainer.errors import ExamTrainerError
    try:
        commands[command]()
    except ExamTrainerError as e:
        print(f"Error: {e}")
        sys.exit(1)


def _parse_flag(args: list[str], name: str, default: str | None) -> str | None:
    for i, a in enumerate(args):
        if a == name and i + 1 < len(args):
            return args[i + 1]
    return default


def _positional(args: list[str], what: str) -> str:
    if not args or args[0].startswith("--"):
        print(f"Missing {what}")
        sys.exit(1)
    return args[0]


def _read_pid() -> int | None:
    """Read PID from file, return None if stale or missing."""
    if not PID_FILE.exists():
        return None
    try:
        pid = int(PID_FILE.read_text().strip())
        os.kill(pid, 0)
        return pid
    except (ValueError, ProcessLookupError, PermissionError):
        PID_FILE.unlink(missing_ok=True)
        return None


def _stop() -> bool:
    """Stop a running server. Returns True if a server was stopped."""
    pid = _read_pid()
    if pid is None:
        print("Server is not running.")
        return False
    try:
        os.kill(pid, signal.SIGTERM)
        print(f"Stopped server (PID {pid}).")
        return True
    except ProcessLookupError:
        print("Server was not running (stale PID file removed).")
        return False
    finally:
        PID_FILE.unlink(missing_ok=True)


def _status():
    pid = _read_pid()
    if pid is None:
        print("Server is not running.")
    else:
        print(f"Server is running (PID {pid}).")


def _restart(args: list[str]):
    import time
    _stop()
    time.sleep(1)
    _serve(args)


def _serve(args: list[str]):
    import uvicorn

    existing = _read_pid()
    if existing is not None:
        print(f"Server already running (PID {existing}). Use 'restart' or 'stop' first.")
        sys.exit(1)

    if "--no-auto-import" in args:
        os.environ["EXAM_TRAINER_NO_AUTO_IMPORT"] = "1"

    port = int(_parse_flag(args, "--port", "8765"))
    host = _parse_flag(args, "--host", "127.0.0.1")
    PID_FILE.write_text(str(os.getpid()))

    print(f"Starting Exam Trainer on http://{host}:{port}")
    print("Press Ctrl+C to stop\n")
    try:
        uvicorn.run(
            "exam_trainer.app:app",
            host=host,
            port=port,
            reload=False,
            timeout_graceful_shutdown=5,
        )
    finally:
        PID_FILE.unlink(missing_ok=True)
        os.environ.pop("EXAM_TRAINER_NO_AUTO_IMPORT", None)


def _open():
    from exam_trainer.config import load_settings
    from exam_trainer.db import Database

    settings = load_settings()
    return settings, Database(settings.db_full_path)


def _pipeline():
    from exam_trainer.pipeline import ExamPipeline
    from exam_trainer.providers.registry import build_llm

    settings, db = _open()
    return ExamPipeline(build_llm(settings), db, settings), db


def _import_note(args: list[str]):
    from exam_trainer.parsers.notes_parser import parse_note_file

    path = Path(_positional(args, "note file path"))
    if not path.exists():
        print(f"Not found: {path}")
        sys.exit(1)
    _, db = _open()
    existing = db.get_note_by_source(path.name, OWNER)
    note = parse_note_file(path, OWNER, note_id=existing.id if existing else None)
    db.save_note(note)
    print(f"Imported '{note.title}' ({len(note.key_points)} key points)")
    print(f"Note id: {note.id}")
    db.close()


def _print_paper(paper) -> None:
    print(f"Paper {paper.id}: phase {paper.phase}, status {paper.status}")
    for section in paper.formatted_paper or []:
        first = section.questions[0].question_number if section.questions else "-"
        last = section.questions[-1].question_number if section.questions else "-"
        print(f"  {section.section_id}. {section.section_name}: Q{first}-Q{last}, {section.total_marks:g} marks")
    if not paper.formatted_paper:
        for s in paper.outline:
            print(f"  {s.section_id}. {s.section_name}: {s.total_questions} x {s.question_type}, {s.total_marks:g} marks")
    for w in paper.warnings:
        print(f"  warning: {w}")


def _outline(args: list[str]):
    exam_type = _parse_flag(args, "--exam-type", None)
    subject = _parse_flag(args, "--subject", None)
    duration = _parse_flag(args, "--duration", None)
    marks = _parse_flag(args, "--marks", None)
    if not (exam_type and subject and duration and marks):
        print("outline needs --exam-type, --subject, --duration and --marks")
        sys.exit(1)

    pipeline, db = _pipeline()
    paper = asyncio.run(pipeline.create_outline(
        OWNER,
        exam_type,
        subject,
        int(duration),
        float(marks),
        class_level=_parse_flag(args, "--class", None),
        note_id=_parse_flag(args, "--note", None),
    ))
    _print_paper(paper)
    db.close()


def _questions(args: list[str]):
    paper_id = _positional(args, "paper id")
    pipeline, db = _pipeline()
    paper = asyncio.run(pipeline.generate_questions(paper_id, OWNER))
    _print_paper(paper)
    db.close()


def _finalize(args: list[str]):
    paper_id = _positional(args, "paper id")
    pipeline, db = _pipeline()
    paper = pipeline.finalize_paper(paper_id, OWNER)
    _print_paper(paper)
    print(f"  {paper.header.get('board_name')} | {paper.header.get('duration')} | "
          f"Max marks {paper.header.get('max_marks')}")
    db.close()


def _grade(args: list[str]):
    attempt_id = _positional(args, "attempt id")
    pipeline, db = _pipeline()
    attempt = asyncio.run(pipeline.grade_attempt(attempt_id, OWNER))
    result = attempt.grading_result
    print(f"Score: {result.total_marks_obtained:g}/{result.total_marks:g} "
          f"({result.percentage:.2f}%), grade {result.grade}")
    for s in result.section_scores:
        print(f"  {s.section_id}. {s.section_name}: {s.marks_obtained:g}/{s.total_marks:g}")
    db.close()


def _match(args: list[str]):
    from exam_trainer.match_generator import MatchSetGenerator
    from exam_trainer.providers.registry import build_llm

    settings, db = _open()
    generator = MatchSetGenerator(build_llm(settings), db, settings=settings)
    sets = asyncio.run(generator.get_daily_sets(_parse_flag(args, "--date", None)))
    for s in sets:
        print(f"{s.topic} ({s.date})")
        for p in s.pairs:
            print(f"  {p.term}: {p.definition}")
    db.close()


def _stats():
    _, db = _open()
    stats = db.get_stats()

    print("Exam Trainer Stats")
    print("=" * 40)
    print(f"Study notes:        {stats['total_notes']}")
    print(f"Exam papers:        {stats['total_papers']}")
    for phase, count in stats["papers_by_phase"].items():
        print(f"  at phase {phase}:       {count}")
    for status, count in stats["attempts_by_status"].items():
        print(f"Attempts {status + ':':12}{count}")
    print(f"Average score:      {stats['average_percentage']}%")
    print(f"Match sets:         {stats['total_match_sets']}")
    print(f"Quizzes:            {stats['total_quizzes']}")
    db.close()


if __name__ == "__main__":
    main()
