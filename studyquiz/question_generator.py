"""Turn study material into validated quiz questions via the LLM."""
from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

from studyquiz.errors import (
    GenerationParseError,
    GenerationUpstreamError,
    GenerationValidationError,
)
from studyquiz.models import ARITY, GeneratedQuestion, GenerationParameters
from studyquiz.prompts import build_system_prompt, build_task_prompt

if TYPE_CHECKING:
    from studyquiz.providers.base import LLMProvider

_log = logging.getLogger("studyquiz.qgen")

DEFAULT_TEMPERATURE = 0.7

_FENCE_RE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)
_ARRAY_RE = re.compile(r"\[[\s\S]*\]")

# Loose key names the model sometimes uses, in order of preference.
_TEXT_KEYS = ("questionText", "question", "question_text", "text")
_OPTIONS_KEYS = ("options", "choices")
_ANSWER_KEYS = ("correctAnswer", "correct_answer", "answer")


@dataclass(frozen=True)
class Parsed:
    items: list


@dataclass(frozen=True)
class ParseFailed:
    reason: str


ParseResult = Union[Parsed, ParseFailed]


def _strip_fences(text: str) -> str:
    return _FENCE_RE.sub("", text).strip()


def parse_response(text: str) -> ParseResult:
    """Read a JSON array out of a raw model response.

    Tries the whole fence-stripped response first, then the first ``[ ... ]``
    span in it.  No further repair is attempted.
    """
    cleaned = _strip_fences(text or "")
    try:
        value = json.loads(cleaned)
    except json.JSONDecodeError:
        m = _ARRAY_RE.search(cleaned)
        if not m:
            return ParseFailed("No valid JSON array found in response")
        try:
            value = json.loads(m.group(0))
        except json.JSONDecodeError as e:
            return ParseFailed(f"Embedded JSON array is malformed: {e.msg}")

    if not isinstance(value, list):
        return ParseFailed("Response is not an array of questions")
    return Parsed(value)


def _first_key(item: dict, keys: tuple[str, ...]):
    for k in keys:
        if k in item:
            return item[k]
    return None


def _validate_item(item, index: int, question_type: str) -> GeneratedQuestion:
    if not isinstance(item, dict):
        raise GenerationValidationError(index, "question", f"expected object, got {type(item).__name__}")

    text = _first_key(item, _TEXT_KEYS)
    if not isinstance(text, str) or not text.strip():
        raise GenerationValidationError(index, "questionText", "missing or empty")

    options = _first_key(item, _OPTIONS_KEYS)
    if not isinstance(options, list) or not options:
        raise GenerationValidationError(index, "options", "missing or empty")
    if not all(isinstance(o, str) for o in options):
        raise GenerationValidationError(index, "options", "every option must be a string")
    options = [o.strip() for o in options]

    arity = ARITY[question_type]
    if arity is not None and len(options) != arity:
        raise GenerationValidationError(
            index, "options", f"{question_type} needs {arity} options (got {len(options)})"
        )

    answer = _first_key(item, _ANSWER_KEYS)
    if not isinstance(answer, str) or not answer.strip():
        raise GenerationValidationError(index, "correctAnswer", "missing or empty")
    answer = answer.strip()
    hits = options.count(answer)
    if hits == 0:
        raise GenerationValidationError(index, "correctAnswer", f"{answer!r} is not one of the options")
    if hits > 1:
        raise GenerationValidationError(index, "correctAnswer", f"{answer!r} appears {hits} times in options")

    return GeneratedQuestion(
        question_text=text.strip(),
        options=tuple(options),
        correct_answer=answer,
    )


def validate_questions(items: list, question_type: str) -> list[GeneratedQuestion]:
    """All-or-nothing: the first invalid question rejects the whole batch."""
    if not items:
        raise GenerationValidationError(None, "questions", "response contained no questions")
    return [_validate_item(item, i, question_type) for i, item in enumerate(items)]


class QuestionGenerator:
    """Generate quiz questions with an injected LLM provider.

    The provider owns the service credential; the generator holds no state
    between calls, so one instance can serve concurrent requests.
    """

    def __init__(
        self,
        llm: LLMProvider,
        temperature: float = DEFAULT_TEMPERATURE,
        timeout: float | None = None,
    ):
        self.llm = llm
        self.temperature = temperature
        self.timeout = timeout

    async def _call(self, system: str, prompt: str, timeout: float | None) -> str:
        call = self.llm.generate(prompt, temperature=self.temperature, system=system)
        try:
            if timeout is not None:
                return await asyncio.wait_for(call, timeout)
            return await call
        except asyncio.TimeoutError as e:
            limit = f" within {timeout:g}s" if timeout is not None else ""
            raise GenerationUpstreamError(f"{self.llm.name()} did not answer{limit}") from e
        except Exception as e:
            raise GenerationUpstreamError(f"{self.llm.name()} request failed: {e}") from e

    async def generate(
        self,
        content: str,
        params: GenerationParameters,
        timeout: float | None = None,
    ) -> list[GeneratedQuestion]:
        if not isinstance(content, str) or not content.strip():
            raise ValueError("content must be a non-empty string")

        system = build_system_prompt(params)
        prompt = build_task_prompt(content, params)

        _log.info(
            "Generate %d %s questions (%s, %s) with %s",
            params.question_count, params.question_type,
            params.difficulty, params.academic_level, self.llm.name(),
        )
        response = await self._call(system, prompt, timeout if timeout is not None else self.timeout)
        _log.debug("Raw response: %.500s", response)

        result = parse_response(response)
        if isinstance(result, ParseFailed):
            _log.info("Parse failed: %s", result.reason)
            raise GenerationParseError(result.reason)

        try:
            questions = validate_questions(result.items, params.question_type)
        except GenerationValidationError as e:
            _log.info("Validation failed: %s", e)
            raise

        if len(questions) != params.question_count:
            _log.warning(
                "Requested %d questions, model returned %d; keeping all",
                params.question_count, len(questions),
            )
        _log.info("Generated %d questions", len(questions))
        return questions
