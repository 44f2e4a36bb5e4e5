from __future__ import annotations

from dataclasses import dataclass

QUESTION_TYPES = ("multiple-choice", "true-false", "fill-blank")
DIFFICULTIES = ("easy", "medium", "hard")
ACADEMIC_LEVELS = ("elementary", "middle", "high", "university")
MIN_QUESTIONS = 1
MAX_QUESTIONS = 50

# Required option count per question type; fill-blank has no fixed arity.
ARITY = {
    "multiple-choice": 4,
    "true-false": 2,
    "fill-blank": None,
}


class ParameterError(ValueError):
    """Generation parameters are missing or outside their domain."""

    def __init__(self, field_name: str, message: str):
        super().__init__(f"{field_name}: {message}")
        self.field = field_name


@dataclass(frozen=True)
class GenerationParameters:
    question_type: str  # multiple-choice | true-false | fill-blank
    difficulty: str  # easy | medium | hard
    academic_level: str  # elementary | middle | high | university
    question_count: int

    def to_dict(self) -> dict:
        return {
            "questionType": self.question_type,
            "difficulty": self.difficulty,
            "academicLevel": self.academic_level,
            "questionCount": self.question_count,
        }


@dataclass(frozen=True)
class GeneratedQuestion:
    question_text: str
    options: tuple[str, ...]
    correct_answer: str

    def to_dict(self) -> dict:
        return {
            "questionText": self.question_text,
            "options": list(self.options),
            "correctAnswer": self.correct_answer,
        }

    @classmethod
    def from_dict(cls, data: dict) -> GeneratedQuestion:
        return cls(
            question_text=data["questionText"],
            options=tuple(data["options"]),
            correct_answer=data["correctAnswer"],
        )


def _pick(raw: dict, *keys: str):
    for key in keys:
        if key in raw and raw[key] is not None and raw[key] != "":
            return raw[key]
    return None


def _coerce_count(value) -> int:
    if isinstance(value, bool):
        raise ParameterError("questionCount", "must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise ParameterError("questionCount", f"must be an integer (got {value!r})")


def validate_parameters(raw: dict) -> GenerationParameters:
    """Build GenerationParameters from a request body.

    Accepts both the form field names sent by the web client (``type``,
    ``level``, ``numQuestions``) and the canonical names (``questionType``,
    ``academicLevel``, ``questionCount``).  Raises ParameterError naming the
    first offending field.
    """
    question_type = _pick(raw, "questionType", "type")
    if question_type not in QUESTION_TYPES:
        raise ParameterError(
            "questionType", f"must be one of {', '.join(QUESTION_TYPES)} (got {question_type!r})"
        )

    difficulty = _pick(raw, "difficulty")
    if difficulty not in DIFFICULTIES:
        raise ParameterError(
            "difficulty", f"must be one of {', '.join(DIFFICULTIES)} (got {difficulty!r})"
        )

    level = _pick(raw, "academicLevel", "level")
    if level not in ACADEMIC_LEVELS:
        raise ParameterError(
            "academicLevel", f"must be one of {', '.join(ACADEMIC_LEVELS)} (got {level!r})"
        )

    count = _pick(raw, "questionCount", "numQuestions")
    if count is None:
        raise ParameterError("questionCount", "is required")
    count = _coerce_count(count)
    if not MIN_QUESTIONS <= count <= MAX_QUESTIONS:
        raise ParameterError(
            "questionCount", f"must be between {MIN_QUESTIONS} and {MAX_QUESTIONS} (got {count})"
        )

    return GenerationParameters(
        question_type=question_type,
        difficulty=difficulty,
        academic_level=level,
        question_count=count,
    )
