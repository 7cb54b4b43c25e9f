"""Prompt templates for outline, question, grading, match and quiz generation."""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from exam_trainer.models import Question, Section, StudyNote

EXAM_FORMATS = {
    "CBSE": {
        "name": "Central Board of Secondary Education",
        "format": "Sections A/B/C/D format with MCQ, Short Answer, Long Answer, Case Study",
        "marking": "Negative marking typically not applicable except objective sections",
    },
    "UPSC": {
        "name": "Union Public Service Commission",
        "format": "Mains format with word limits, optional questions, multi-part questions",
        "marking": "Descriptive answers with strict word limits",
    },
    "SSC": {
        "name": "Staff Selection Commission",
        "format": "Tier-based: Tier 1 (MCQ only), Tier 2 (Descriptive + MCQ)",
        "marking": "Negative marking of 0.25 or 0.50 for wrong answers",
    },
    "Railway": {
        "name": "Railway Recruitment Board",
        "format": "MCQ-based with multiple sections (GA, Reasoning, Math, Technical)",
        "marking": "Negative marking of 1/3 marks for wrong answers",
    },
    "JEE": {
        "name": "Joint Entrance Examination",
        "format": "MCQ (single correct, multiple correct), Numerical value, Integer type",
        "marking": "Negative marking varies by question type",
    },
    "NEET": {
        "name": "National Eligibility cum Entrance Test",
        "format": "MCQ only with 4 options each",
        "marking": "Negative marking of 1 mark for wrong answers",
    },
    "Banking": {
        "name": "Banking Recruitment Exams (IBPS/SBI)",
        "format": "Prelims (MCQ) and Mains (MCQ + Descriptive)",
        "marking": "Negative marking of 0.25 marks",
    },
    "UP_Board": {
        "name": "Uttar Pradesh Board of Education",
        "format": "Similar to CBSE with sections and various question types",
        "marking": "No negative marking",
    },
    "State_PSC": {
        "name": "State Public Service Commission",
        "format": "Prelims (MCQ) and Mains (Descriptive)",
        "marking": "Negative marking in Prelims, no negative in Mains",
    },
}


def exam_format(exam_type: str) -> dict:
    return EXAM_FORMATS.get(exam_type) or {
        "name": exam_type,
        "format": "Standard exam format",
        "marking": "As per exam guidelines",
    }


def format_note_context(note: StudyNote | None, preview_chars: int) -> str:
    """Study-note block used to personalize outline and question prompts."""
    if note is None:
        return ""
    key_points = "\n".join(note.key_points) if note.key_points else "N/A"
    preview = note.raw_content[:preview_chars] if note.raw_content else "N/A"
    return (
        "Based on your study notes:\n"
        f"Title: {note.title}\n\n"
        f"Summary: {note.summary or 'N/A'}\n\n"
        f"Key Points: {key_points}\n\n"
        f"Content Preview: {preview}"
    )


# ── Phase 1: outline ─────────────────────────────────────────────────────

OUTLINE_SYSTEM = """\
You are an expert exam paper creator specializing in {exam_name} examinations. \
You know the official {exam_type} exam patterns from the past 10 years: question \
distribution, section-wise breakdown, marking schemes, topic weightage and the \
standard instructions. Your outlines match real {exam_type} papers exactly. \
Always return valid JSON without markdown."""

OUTLINE_PROMPT = """\
Create a detailed exam outline for a {exam_type} {subject} exam.

EXAM SPECIFICATIONS:
- Exam Type: {exam_type} ({exam_name})
- Subject: {subject}
{class_line}- Duration: {duration_minutes} minutes
- Total Marks: {total_marks}
{personalization}
REQUIREMENTS:
1. Divide marks across sections using {exam_type} section naming (A, B, C, D or \
Part I, II, III). Section totals MUST add up to {total_marks}.
2. Use question types typical for {exam_type}: {exam_format}. Use one of MCQ, \
TRUE_FALSE, SHORT_ANSWER, LONG_ANSWER, CASE_STUDY, FILL_BLANK, MATCH_FOLLOWING.
3. Give marks per question and a word limit for descriptive sections.
4. Cover the major {subject} topics and balance easy/medium/hard difficulty.
5. Include general instructions typical for {exam_type} and mention the marking \
scheme ({exam_marking}).

Return ONLY this JSON:
{{
  "exam_metadata": {{
    "exam_type": "{exam_type}",
    "exam_name": "{exam_name}",
    "subject": "{subject}",
    "duration_minutes": {duration_minutes},
    "total_marks": {total_marks},
    "instructions": ["All questions are compulsory", "..."]
  }},
  "sections": [
    {{
      "section_id": "A",
      "section_name": "Multiple Choice Questions",
      "question_type": "MCQ",
      "total_questions": 20,
      "marks_per_question": 1,
      "total_marks": 20,
      "has_choices": false,
      "word_limit": null,
      "topics": ["Topic 1", "Topic 2"]
    }}
  ]
}}
"""


def build_outline_prompt(
    exam_type: str,
    subject: str,
    duration_minutes: int,
    total_marks: float,
    class_level: str | None = None,
    note: StudyNote | None = None,
) -> tuple[str, str]:
    fmt = exam_format(exam_type)
    note_block = format_note_context(note, 5000)
    personalization = (
        f"\nPERSONALIZATION:\n{note_block}\n\n"
        f"Base the topics on this content while keeping the {exam_type} format.\n"
        if note_block else ""
    )
    system = OUTLINE_SYSTEM.format(exam_name=fmt["name"], exam_type=exam_type)
    prompt = OUTLINE_PROMPT.format(
        exam_type=exam_type,
        exam_name=fmt["name"],
        exam_format=fmt["format"],
        exam_marking=fmt["marking"],
        subject=subject,
        class_line=f"- Class/Level: {class_level}\n" if class_level else "",
        duration_minutes=duration_minutes,
        total_marks=f"{total_marks:g}",
        personalization=personalization,
    )
    return system, prompt


# ── Phase 2: questions ───────────────────────────────────────────────────

QUESTION_SYSTEM_BY_TYPE = {
    "MCQ": "Create multiple choice questions with 4 options (A, B, C, D). Make distractors plausible but clearly wrong.",
    "TRUE_FALSE": "Create true/false questions testing important concepts. Avoid trick questions.",
    "SHORT_ANSWER": "Create short answer questions requiring 2-3 sentence responses. Focus on conceptual understanding.",
    "LONG_ANSWER": "Create long answer questions requiring detailed explanations. Test deep understanding.",
    "CASE_STUDY": "Create case study based questions with context and multiple sub-questions.",
    "FILL_BLANK": "Create fill in the blank questions with specific, unambiguous answers.",
    "MATCH_FOLLOWING": "Create match the following questions with two columns.",
}

TYPE_REQUIREMENTS = {
    "MCQ": 'Create 4 plausible options, avoid "all of the above" unless necessary, make options similar in length',
    "SHORT_ANSWER": "Questions should require concise 2-3 sentence responses testing key concepts",
    "LONG_ANSWER": "Questions should require detailed explanations, diagrams, examples",
    "CASE_STUDY": "Provide a context paragraph followed by 3-5 sub-questions",
}

QUESTIONS_PROMPT = """\
Generate {count} {question_type} questions for a {exam_type} {subject} exam.

SECTION DETAILS:
- Section: {section_name}
- Question Type: {question_type}
- Total Questions: {count}
- Marks per Question: {marks:g}
{word_limit_line}- Topics: {topics}
{class_line}{personalization}
REQUIREMENTS:
1. Questions must match {exam_type} past year paper patterns
2. Cover all topics: {topics}
3. Difficulty distribution: 30% easy, 50% medium, 20% hard
4. Questions should be clear, unambiguous and exam-authentic
5. {type_requirements}

Return ONLY this JSON:
{{
  "questions": [
    {{
      "question_text": "Question here",{option_line}
      "topic": "Topic name from the list",
      "difficulty": "easy | medium | hard",
      "past_year_reference": "optional note on a past paper"{sub_questions_line}
    }}
  ]
}}

Generate EXACTLY {count} questions.
"""


def build_questions_prompt(
    section: Section,
    exam_type: str,
    subject: str,
    class_level: str | None = None,
    note: StudyNote | None = None,
) -> tuple[str, str]:
    qtype = section.question_type
    system = (
        f"You are an expert {exam_type} exam question creator. Generate questions that "
        f"match real past year papers exactly. "
        f"{QUESTION_SYSTEM_BY_TYPE.get(qtype, 'Create high-quality exam questions.')} "
        "Always return valid JSON."
    )
    if qtype == "MCQ":
        option_line = '\n      "options": ["First option", "Second option", "Third option", "Fourth option"],'
    elif qtype == "TRUE_FALSE":
        option_line = '\n      "options": ["True", "False"],'
    else:
        option_line = ""
    note_block = format_note_context(note, 3000)
    topics = ", ".join(section.topics) or "any core topics of the syllabus"
    prompt = QUESTIONS_PROMPT.format(
        count=section.total_questions,
        question_type=qtype,
        exam_type=exam_type,
        subject=subject,
        section_name=section.section_name,
        marks=section.marks_per_question,
        word_limit_line=f"- Word Limit: {section.word_limit} words\n" if section.word_limit else "",
        topics=topics,
        class_line=f"- Class/Level: {class_level}\n" if class_level else "",
        personalization=f"\nPERSONALIZED CONTENT:\n{note_block}\n" if note_block else "",
        type_requirements=TYPE_REQUIREMENTS.get(qtype, "Follow standard exam question format"),
        option_line=option_line,
        sub_questions_line=(
            ',\n      "sub_questions": [{"question": "...", "marks": 2}]' if qtype == "CASE_STUDY" else ""
        ),
    )
    return system, prompt


def section_instructions(section: Section) -> str:
    parts = [
        f"This section contains {section.total_questions} questions of "
        f"{section.marks_per_question:g} mark(s) each.",
        f"Total marks for this section: {section.total_marks:g}",
    ]
    if section.has_choices:
        parts.append("Answer any questions as per choice given.")
    else:
        parts.append("All questions are compulsory.")
    if section.word_limit:
        parts.append(f"Word limit: {section.word_limit} words")
    type_line = {
        "MCQ": "Choose the correct option for each question.",
        "SHORT_ANSWER": "Write short answers in 2-3 sentences.",
        "LONG_ANSWER": "Write detailed answers with diagrams wherever necessary.",
        "CASE_STUDY": "Read the case study carefully and answer all sub-questions.",
    }.get(section.question_type)
    if type_line:
        parts.append(type_line)
    return " ".join(parts)


# ── Grading ──────────────────────────────────────────────────────────────

OBJECTIVE_GRADING_PROMPT = """\
Grade this {marks:g}-mark {question_type} question:

QUESTION:
{question_text}

OPTIONS:
{options}

STUDENT'S ANSWER:
{answer}

Topic: {topic}
Difficulty: {difficulty}

GRADING INSTRUCTIONS:
1. Determine which option is CORRECT based on your expertise in {subject}
2. Check whether the student selected the correct option
3. Award full marks ({marks:g}) ONLY if the answer is correct, otherwise 0
4. Explain briefly why the answer is right or wrong

Return ONLY this JSON:
{{
  "marks_awarded": <{marks:g} if correct, 0 if incorrect>,
  "feedback": "Brief explanation (1-2 sentences)",
  "correct_answer_reference": "The correct option and a brief explanation"
}}
"""

SUBJECTIVE_GRADING_PROMPT = """\
Grade this answer for a {marks:g}-mark subjective question:

QUESTION:
{question_text}

STUDENT'S ANSWER:
{answer}

{word_limit_line}Topic: {topic}
Difficulty: {difficulty}

GRADING CRITERIA:
1. Correctness of concepts (40%)
2. Completeness of answer (30%)
3. Clarity and organization (20%)
4. Keyword usage (10%)

In "feedback" say what the student got right, which concepts are wrong or \
missing, where and why marks were deducted, and how to improve. In \
"correct_answer_reference" give the ideal answer's key points and the keywords \
it must include. Do not penalize synonyms. Award partial marks for partially \
correct answers.

Return ONLY this JSON:
{{
  "marks_awarded": <number between 0 and {marks:g}>,
  "feedback": "What's correct + what's wrong or missing + improvement tips",
  "correct_answer_reference": "Expected answer with key points and keywords"
}}
"""


def build_grading_prompt(question: Question, answer: str, subject: str, question_type: str) -> tuple[str, str]:
    if question.is_objective:
        system = (
            f"You are an expert {subject} examiner. Grade the student's answer accurately. "
            "Determine which option is correct and mark accordingly. "
            "Evaluate whether the answer is factually correct."
        )
        options = "\n".join(f"{chr(65 + i)}) {opt}" for i, opt in enumerate(question.options or []))
        prompt = OBJECTIVE_GRADING_PROMPT.format(
            marks=question.marks,
            question_type=question_type,
            question_text=question.question_text,
            options=options,
            answer=answer,
            topic=question.topic,
            difficulty=question.difficulty,
            subject=subject,
        )
    else:
        system = (
            f"You are an expert {subject} examiner. Grade the student's answer accurately "
            "and fairly and provide constructive feedback. "
            "Evaluate whether the answer is factually correct."
        )
        prompt = SUBJECTIVE_GRADING_PROMPT.format(
            marks=question.marks,
            question_text=question.question_text,
            answer=answer,
            word_limit_line=f"Word Limit: {question.word_limit} words\n" if question.word_limit else "",
            topic=question.topic,
            difficulty=question.difficulty,
        )
    return system, prompt


# ── Daily match sets ─────────────────────────────────────────────────────

MATCH_SYSTEM = """\
You create educational match games for Indian government exam aspirants. \
Terms are 1-4 words. Definitions are complete sentences of 6-12 words that \
end with a full stop and never stop mid-phrase. Pick facts that matter for \
competitive exams and are not too obvious.

Return ONLY a JSON object of the form {"pairs": [{"term": "...", "definition": "..."}]}. \
No markdown, no code fences, no numbered lists, no text before or after the JSON."""

MATCH_PROMPT = """\
Generate {count} term-definition pairs for the topic: "{topic}"

TOPIC CONTEXT: {description}

REQUIREMENTS:
- term: a concise term, name or concept (1-4 words)
- definition: a clear, accurate definition of 6-12 words ending in a full stop
- Mix difficulty levels (2 easy, 3 medium, 1 hard) and vary the kinds of terms
- General Knowledge: capitals, numbers, famous people, awards
- Indian History: events, dates, personalities, movements, battles
- Science & Tech: inventions, discoveries, scientists, concepts, units

Example:
{{
  "pairs": [
    {{"term": "Mount Everest", "definition": "The world's highest mountain, standing 8,849 metres tall."}}
  ]
}}

Generate exactly {count} pairs. Start your response with {{ and end with }}.
"""


# ── Note quizzes ─────────────────────────────────────────────────────────

QUIZ_SYSTEM = "You are an expert exam creator for Indian government exams. Always return valid JSON without markdown."

QUIZ_TYPE_INSTRUCTIONS = {
    "mcq": "Multiple Choice Questions with 4 options (A, B, C, D). Mark the correct answer.",
    "true_false": "True/False questions. Mark the correct answer.",
    "short_answer": "Short answer questions requiring 1-2 sentence responses.",
    "mixed": "Mix of MCQ (60%), True/False (20%), and Short Answer (20%).",
}

QUIZ_PROMPT = """\
Generate a quiz with {count} questions from the following study notes.

QUIZ TYPE: {quiz_type_label}
{type_instructions}

DIFFICULTY: {difficulty}

RULES:
1. Questions must be clear, unambiguous and based strictly on the notes
2. MCQ distractors must be plausible and similar in length to the answer
3. True/False questions test important concepts without tricks
4. Short answers need only 1-2 sentences
5. Include an explanation for every answer and cover diverse topics

STUDY NOTES:
Title: {title}
Content:
{content}

Return ONLY this JSON:
{{
  "quiz_title": "Quiz title based on the content",
  "passing_score": 60,
  "questions": [
    {{
      "question": "Question text",
      "type": "mcq | true_false | short_answer",
      "options": ["A", "B", "C", "D"],
      "correct_answer": "Correct answer",
      "explanation": "Why this is correct"
    }}
  ]
}}
Use "options": null for short answer questions.
"""


def build_quiz_prompt(note: StudyNote, count: int, quiz_type: str, difficulty: str = "mixed") -> str:
    content = note.raw_content or "\n".join([note.summary, *note.key_points])
    return QUIZ_PROMPT.format(
        count=count,
        quiz_type_label=quiz_type.upper().replace("_", " "),
        type_instructions=QUIZ_TYPE_INSTRUCTIONS[quiz_type],
        difficulty="Mix of easy (30%), medium (50%), hard (20%)" if difficulty == "mixed" else difficulty,
        title=note.title,
        content=content[:15000],
    )
