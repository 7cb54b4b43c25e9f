"""Exception taxonomy for generation, grading and the exam pipeline."""
from __future__ import annotations


class ExamTrainerError(Exception):
    """Base class for all errors raised by exam_trainer."""


class ParseError(ExamTrainerError):
    """No structured value could be recovered from a model response."""

    def __init__(self, message: str, kind: str | None = None, attempts: int | None = None):
        self.kind = kind
        self.attempts = attempts
        super().__init__(message)


class ValidationError(ExamTrainerError):
    """A normalized value has the wrong top-level shape for its content kind."""

    def __init__(self, message: str, kind: str | None = None, attempts: int | None = None):
        self.kind = kind
        self.attempts = attempts
        super().__init__(message)


class PhaseOrderError(ExamTrainerError):
    def __init__(self, paper_id: str, required_phase: int, current_phase: int, message: str | None = None):
        self.paper_id = paper_id
        self.required_phase = required_phase
        self.current_phase = current_phase
        super().__init__(
            message
            or f"Exam paper {paper_id} is at phase {current_phase}; phase {required_phase} must be completed first"
        )


class ExternalServiceError(ExamTrainerError):
    """The generative text service failed, timed out or returned nothing."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class GradingError(ExamTrainerError):
    def __init__(self, question_number: int, message: str):
        self.question_number = question_number
        super().__init__(f"Question {question_number}: {message}")


class RecordNotFoundError(ExamTrainerError):
    def __init__(self, record: str, record_id: str):
        self.record = record
        self.record_id = record_id
        super().__init__(f"{record} not found: {record_id}")


class AttemptStateError(ExamTrainerError):
    pass
