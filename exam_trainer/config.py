from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path

CONFIG_PATH = Path(__file__).resolve().parent.parent / "config.json"

DEFAULTS = {
    "llm_provider": "perplexity",
    "llm_model": "sonar-pro",
    "fallback_providers": ["openai:gpt-4-turbo"],
    "ollama_url": "http://localhost:11434",
    "db_path": "exams.db",
    "notes_dir": "notes",
    "request_timeout_seconds": 120.0,
    "max_attempts": 2,
    "budget_increment": 500,
    "outline_token_budget": 3000,
    "questions_token_budget": 15000,
    "grading_token_budget": 8000,
    "match_token_budget": 10000,
    "quiz_token_budget": 6000,
    "grading_batch_size": 10,
    "match_cache_ttl_seconds": 3600,
    "marks_tolerance": 0.10,
}


@dataclass
class Settings:
    llm_provider: str = DEFAULTS["llm_provider"]
    llm_model: str = DEFAULTS["llm_model"]
    # "provider" or "provider:model", tried in order after the primary
    fallback_providers: list[str] = field(default_factory=lambda: list(DEFAULTS["fallback_providers"]))
    ollama_url: str = DEFAULTS["ollama_url"]
    db_path: str = DEFAULTS["db_path"]
    notes_dir: str = DEFAULTS["notes_dir"]
    request_timeout_seconds: float = DEFAULTS["request_timeout_seconds"]
    max_attempts: int = DEFAULTS["max_attempts"]
    budget_increment: int = DEFAULTS["budget_increment"]
    outline_token_budget: int = DEFAULTS["outline_token_budget"]
    questions_token_budget: int = DEFAULTS["questions_token_budget"]
    grading_token_budget: int = DEFAULTS["grading_token_budget"]
    match_token_budget: int = DEFAULTS["match_token_budget"]
    quiz_token_budget: int = DEFAULTS["quiz_token_budget"]
    grading_batch_size: int = DEFAULTS["grading_batch_size"]
    match_cache_ttl_seconds: int = DEFAULTS["match_cache_ttl_seconds"]
    marks_tolerance: float = DEFAULTS["marks_tolerance"]

    @property
    def project_root(self) -> Path:
        return Path(__file__).resolve().parent.parent

    @property
    def db_full_path(self) -> Path:
        return self.project_root / self.db_path

    @property
    def notes_full_path(self) -> Path:
        return self.project_root / self.notes_dir

    def resolved_note_files(self) -> list[Path]:
        if not self.notes_full_path.is_dir():
            return []
        return sorted(self.notes_full_path.glob("*.md"))

    def to_dict(self) -> dict:
        return asdict(self)


def load_settings() -> Settings:
    if CONFIG_PATH.exists():
        raw = json.loads(CONFIG_PATH.read_text())
        known = {f.name for f in Settings.__dataclass_fields__.values()}
        filtered = {k: v for k, v in raw.items() if k in known}
        return Settings(**filtered)
    return Settings()


def save_settings(settings: Settings) -> None:
    CONFIG_PATH.write_text(json.dumps(settings.to_dict(), indent=4) + "\n")
