"""Prompt templates for quiz generation."""
from __future__ import annotations

from studyquiz.models import GenerationParameters

ARITY_RULES = {
    "multiple-choice": (
        'Every question MUST have exactly 4 entries in "options". Exactly one of '
        'them is correct, and "correctAnswer" MUST repeat that entry character '
        "for character."
    ),
    "true-false": (
        'Every question MUST be a statement that is either true or false. '
        '"options" MUST be exactly ["True", "False"] in that order, and '
        '"correctAnswer" MUST be either "True" or "False".'
    ),
    "fill-blank": (
        'Every question MUST contain a blank written as "___". Put the word or '
        'phrase that fills the blank as the FIRST entry of "options" (you may add '
        'a few plausible alternatives after it), and repeat it exactly in '
        '"correctAnswer".'
    ),
}

EXAMPLES = {
    "multiple-choice": """\
[
  {
    "questionText": "Which organelle produces most of a cell's ATP?",
    "options": ["Nucleus", "Mitochondrion", "Ribosome", "Golgi apparatus"],
    "correctAnswer": "Mitochondrion"
  }
]""",
    "true-false": """\
[
  {
    "questionText": "Water boils at 100 degrees Celsius at sea level.",
    "options": ["True", "False"],
    "correctAnswer": "True"
  }
]""",
    "fill-blank": """\
[
  {
    "questionText": "The process by which plants turn light into chemical energy is called ___.",
    "options": ["photosynthesis", "respiration", "transpiration"],
    "correctAnswer": "photosynthesis"
  }
]""",
}

SYSTEM_PROMPT = """\
You are a quiz generator that writes {question_type} questions for students. \
You only ever answer with quiz data in JSON.

Output contract:
1. Respond with a single JSON array and nothing else: no introduction, no \
closing remarks, no markdown code fences.
2. Each element of the array is an object with exactly these fields:
   - "questionText": the question, a non-empty string
   - "options": an array of answer strings
   - "correctAnswer": the correct answer, copied exactly from "options"
3. {arity_rule}
4. Never repeat the same option twice within one question.

Example of a valid response with one question:
{example}
"""

TASK_PROMPT = """\
Generate {question_count} {question_type} questions of {difficulty} difficulty, \
suitable for {academic_level} level students.

Base every question only on the study material below. Cover different parts \
of the material instead of asking about the same fact twice.

Study material:
\"\"\"
{content}
\"\"\"

Respond with the JSON array of {question_count} questions only.
"""

LEVEL_LABELS = {
    "elementary": "elementary school",
    "middle": "middle school",
    "high": "high school",
    "university": "university",
}


def build_system_prompt(params: GenerationParameters) -> str:
    return SYSTEM_PROMPT.format(
        question_type=params.question_type,
        arity_rule=ARITY_RULES[params.question_type],
        example=EXAMPLES[params.question_type],
    )


def build_task_prompt(content: str, params: GenerationParameters) -> str:
    return TASK_PROMPT.format(
        question_count=params.question_count,
        question_type=params.question_type,
        difficulty=params.difficulty,
        academic_level=LEVEL_LABELS[params.academic_level],
        content=content,
    )


IMAGE_EXTRACTION_PROMPT = """\
Transcribe all readable text in this image exactly as written. If the image \
contains diagrams or charts, briefly describe what they show after the text. \
Return plain text only."""
