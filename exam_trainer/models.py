from __future__ import annotations

from dataclasses import asdict, dataclass, field

# ExamPaper.phase
PHASE_NONE = 0
PHASE_OUTLINE = 1
PHASE_QUESTIONS = 2
PHASE_FINAL = 3

# ExamAttempt.status
ATTEMPT_IN_PROGRESS = "in_progress"
ATTEMPT_SUBMITTED = "submitted"
ATTEMPT_GRADED = "graded"

OBJECTIVE_TYPES = {"MCQ", "MULTI_SELECT", "TRUE_FALSE"}


@dataclass
class StudyNote:
    id: str
    owner_id: str
    title: str
    summary: str = ""
    key_points: list[str] = field(default_factory=list)
    raw_content: str = ""
    source_file: str = ""


@dataclass
class Section:
    section_id: str
    section_name: str
    question_type: str  # MCQ | TRUE_FALSE | SHORT_ANSWER | LONG_ANSWER | CASE_STUDY | ...
    total_questions: int
    marks_per_question: float
    total_marks: float
    word_limit: int | None = None
    has_choices: bool = False
    topics: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> Section:
        return cls(
            section_id=d["section_id"],
            section_name=d["section_name"],
            question_type=d["question_type"],
            total_questions=d["total_questions"],
            marks_per_question=d["marks_per_question"],
            total_marks=d["total_marks"],
            word_limit=d.get("word_limit"),
            has_choices=d.get("has_choices", False),
            topics=list(d.get("topics") or []),
        )


@dataclass
class Question:
    question_number: int
    question_text: str
    marks: float
    topic: str
    difficulty: str = "medium"
    options: list[str] | None = None
    word_limit: int | None = None
    sub_questions: list[dict] | None = None
    past_year_reference: str | None = None
    placeholder: bool = False

    @property
    def is_objective(self) -> bool:
        return bool(self.options)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> Question:
        return cls(
            question_number=d["question_number"],
            question_text=d["question_text"],
            marks=d["marks"],
            topic=d.get("topic", "General"),
            difficulty=d.get("difficulty", "medium"),
            options=d.get("options"),
            word_limit=d.get("word_limit"),
            sub_questions=d.get("sub_questions"),
            past_year_reference=d.get("past_year_reference"),
            placeholder=d.get("placeholder", False),
        )


@dataclass
class PaperSection:
    """A section of the formatted paper, holding its generated questions."""

    section_id: str
    section_name: str
    section_instructions: str
    questions: list[Question]

    @property
    def total_marks(self) -> float:
        return sum(q.marks for q in self.questions)

    def to_dict(self) -> dict:
        return {
            "section_id": self.section_id,
            "section_name": self.section_name,
            "section_instructions": self.section_instructions,
            "questions": [q.to_dict() for q in self.questions],
        }

    @classmethod
    def from_dict(cls, d: dict) -> PaperSection:
        return cls(
            section_id=d["section_id"],
            section_name=d["section_name"],
            section_instructions=d.get("section_instructions", ""),
            questions=[Question.from_dict(q) for q in d.get("questions", [])],
        )


@dataclass
class ExamPaper:
    id: str
    owner_id: str
    exam_type: str
    subject: str
    duration_minutes: int
    total_marks: float
    class_level: str | None = None
    note_id: str | None = None
    outline: list[Section] = field(default_factory=list)
    exam_metadata: dict = field(default_factory=dict)
    formatted_paper: list[PaperSection] = field(default_factory=list)
    header: dict = field(default_factory=dict)
    instructions: list[str] = field(default_factory=list)
    phase: int = PHASE_NONE
    status: str = "generating"  # generating | ready | failed
    warnings: list[str] = field(default_factory=list)
    error_message: str | None = None
    model_used: str = ""

    @property
    def questions(self) -> list[Question]:
        return [q for s in self.formatted_paper for q in s.questions]

    @property
    def outline_marks(self) -> float:
        return sum(s.total_marks for s in self.outline)


@dataclass
class QuestionFeedback:
    question_number: int
    user_answer: str
    marks_awarded: float
    max_marks: float
    feedback: str
    correct_answer_reference: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SectionScore:
    section_id: str
    section_name: str
    marks_obtained: float
    total_marks: float
    percentage: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class GradingResult:
    exam_paper_id: str
    total_marks_obtained: float
    total_marks: float
    percentage: float
    grade: str
    section_scores: list[SectionScore]
    question_feedback: list[QuestionFeedback]
    graded_at: str

    def to_dict(self) -> dict:
        return {
            "exam_paper_id": self.exam_paper_id,
            "total_marks_obtained": self.total_marks_obtained,
            "total_marks": self.total_marks,
            "percentage": self.percentage,
            "grade": self.grade,
            "section_wise_scores": [s.to_dict() for s in self.section_scores],
            "question_wise_feedback": [f.to_dict() for f in self.question_feedback],
            "graded_at": self.graded_at,
        }

    @classmethod
    def from_dict(cls, d: dict) -> GradingResult:
        return cls(
            exam_paper_id=d["exam_paper_id"],
            total_marks_obtained=d["total_marks_obtained"],
            total_marks=d["total_marks"],
            percentage=d["percentage"],
            grade=d["grade"],
            section_scores=[SectionScore(**s) for s in d.get("section_wise_scores", [])],
            question_feedback=[QuestionFeedback(**f) for f in d.get("question_wise_feedback", [])],
            graded_at=d["graded_at"],
        )


@dataclass
class ExamAttempt:
    id: str
    exam_paper_id: str
    owner_id: str
    answers: dict[int, str] = field(default_factory=dict)  # question_number -> answer
    status: str = ATTEMPT_IN_PROGRESS
    grading_result: GradingResult | None = None


@dataclass
class MatchPair:
    term: str
    definition: str
    placeholder: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class MatchSet:
    date: str
    topic: str
    pairs: list[MatchPair]
    id: int | None = None


@dataclass
class QuizQuestion:
    id: str
    question: str
    type: str  # mcq | true_false | short_answer
    options: list[str] | None
    correct_answer: str
    explanation: str | None = None
    points: int = 1
    placeholder: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Quiz:
    id: str
    note_id: str
    owner_id: str
    title: str
    quiz_type: str
    questions: list[QuizQuestion]
    passing_score: int = 60
    time_limit_minutes: int | None = None
    description: str = ""
