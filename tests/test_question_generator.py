"""Tests for question generation (response parsing, validation, LLM orchestration)."""
from __future__ import annotations

import asyncio
import json

import pytest

from studyquiz.errors import (
    GenerationParseError,
    GenerationUpstreamError,
    GenerationValidationError,
)
from studyquiz.models import GeneratedQuestion, GenerationParameters
from studyquiz.question_generator import (
    Parsed,
    ParseFailed,
    QuestionGenerator,
    parse_response,
    validate_questions,
)


class FakeLLM:
    """Simple fake LLM that records what it was asked."""

    def __init__(self, responses=None, error=None, delay=0.0):
        self._responses = responses or []
        self._error = error
        self._delay = delay
        self.calls: list[dict] = []

    async def generate(self, prompt: str, temperature: float = 0.7, system: str | None = None) -> str:
        self.calls.append({"prompt": prompt, "temperature": temperature, "system": system})
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        idx = min(len(self.calls) - 1, len(self._responses) - 1)
        return self._responses[idx]

    def name(self) -> str:
        return "fake-llm"

    @property
    def call_count(self):
        return len(self.calls)


class TestParseResponse:
    def test_bare_array(self, mc_items):
        result = parse_response(json.dumps(mc_items))
        assert isinstance(result, Parsed)
        assert result.items == mc_items

    def test_code_fence_parses_like_unwrapped(self, mc_items):
        raw = json.dumps(mc_items, indent=2)
        fenced = f"```json\n{raw}\n```"
        assert parse_response(fenced) == parse_response(raw)

    def test_code_fence_no_lang(self, mc_items):
        result = parse_response(f"```\n{json.dumps(mc_items)}\n```")
        assert isinstance(result, Parsed)
        assert len(result.items) == 2

    def test_surrounding_prose_uses_fallback(self, mc_items):
        text = f"Sure! Here are your questions:\n\n{json.dumps(mc_items)}\n\nGood luck with the exam!"
        result = parse_response(text)
        assert isinstance(result, Parsed)
        assert result.items == mc_items

    def test_no_array(self):
        result = parse_response("I'm sorry, I can't help with that.")
        assert isinstance(result, ParseFailed)
        assert "No valid JSON array" in result.reason

    def test_malformed_embedded_array(self):
        result = parse_response('Here: [{"questionText": "missing brace"]')
        assert isinstance(result, ParseFailed)

    def test_object_instead_of_array(self):
        result = parse_response('{"questions": []}')
        assert isinstance(result, ParseFailed)
        assert result.reason == "Response is not an array of questions"

    def test_empty_response(self):
        assert isinstance(parse_response(""), ParseFailed)

    def test_own_output_round_trips(self, sample_questions):
        text = json.dumps([q.to_dict() for q in sample_questions])
        first = parse_response(text)
        second = parse_response(json.dumps(first.items))
        assert first == second
        assert [GeneratedQuestion.from_dict(d) for d in first.items] == sample_questions


class TestValidateQuestions:
    def test_valid_multiple_choice(self, mc_items):
        questions = validate_questions(mc_items, "multiple-choice")
        assert len(questions) == 2
        for q in questions:
            assert len(q.options) == 4
            assert q.correct_answer in q.options
            assert q.question_text

    def test_loose_key_names(self):
        items = [{"question": "2 + 2 = 4", "choices": ["True", "False"], "answer": "True"}]
        (q,) = validate_questions(items, "true-false")
        assert q.question_text == "2 + 2 = 4"
        assert q.options == ("True", "False")
        assert q.correct_answer == "True"

    def test_whitespace_is_trimmed(self):
        items = [{"questionText": "  Is ice cold?  ", "options": [" True", "False "], "correctAnswer": "True "}]
        (q,) = validate_questions(items, "true-false")
        assert q.question_text == "Is ice cold?"
        assert q.options == ("True", "False")

    def test_bad_answer_at_index_two_rejects_batch(self, tf_items):
        tf_items[2]["correctAnswer"] = "Maybe"
        with pytest.raises(GenerationValidationError) as exc:
            validate_questions(tf_items, "true-false")
        assert exc.value.index == 2
        assert exc.value.field == "correctAnswer"
        assert "question[2]" in str(exc.value)

    def test_answer_match_is_case_sensitive(self, tf_items):
        tf_items[0]["correctAnswer"] = "true"
        with pytest.raises(GenerationValidationError) as exc:
            validate_questions(tf_items, "true-false")
        assert exc.value.index == 0

    def test_multiple_choice_needs_four_options(self, mc_items):
        mc_items[1]["options"] = ["DNA", "ATP", "Glucose"]
        with pytest.raises(GenerationValidationError) as exc:
            validate_questions(mc_items, "multiple-choice")
        assert exc.value.index == 1
        assert exc.value.field == "options"

    def test_true_false_needs_two_options(self, tf_items):
        tf_items[1]["options"] = ["True", "False", "Unknown"]
        with pytest.raises(GenerationValidationError) as exc:
            validate_questions(tf_items, "true-false")
        assert exc.value.field == "options"

    def test_fill_blank_accepts_informal_options(self):
        items = [
            {"questionText": "The capital of France is ___.", "options": ["Paris"], "correctAnswer": "Paris"},
            {"questionText": "H2O is ___.", "options": ["water", "salt", "sugar"], "correctAnswer": "water"},
        ]
        questions = validate_questions(items, "fill-blank")
        assert [q.options[0] for q in questions] == ["Paris", "water"]

    def test_missing_question_text(self, mc_items):
        del mc_items[0]["questionText"]
        with pytest.raises(GenerationValidationError) as exc:
            validate_questions(mc_items, "multiple-choice")
        assert exc.value.index == 0
        assert exc.value.field == "questionText"

    def test_blank_question_text(self, mc_items):
        mc_items[1]["questionText"] = "   "
        with pytest.raises(GenerationValidationError) as exc:
            validate_questions(mc_items, "multiple-choice")
        assert exc.value.field == "questionText"

    def test_empty_options(self, mc_items):
        mc_items[0]["options"] = []
        with pytest.raises(GenerationValidationError) as exc:
            validate_questions(mc_items, "multiple-choice")
        assert exc.value.field == "options"

    def test_non_string_options(self, mc_items):
        mc_items[0]["options"] = [1, 2, 3, 4]
        mc_items[0]["correctAnswer"] = "1"
        with pytest.raises(GenerationValidationError) as exc:
            validate_questions(mc_items, "multiple-choice")
        assert exc.value.field == "options"

    def test_correct_answer_must_be_unique(self, mc_items):
        mc_items[0]["options"] = ["Mitochondrion", "Mitochondrion", "Ribosome", "Nucleus"]
        with pytest.raises(GenerationValidationError) as exc:
            validate_questions(mc_items, "multiple-choice")
        assert exc.value.field == "correctAnswer"

    def test_element_not_an_object(self, mc_items):
        mc_items.append("not a question")
        with pytest.raises(GenerationValidationError) as exc:
            validate_questions(mc_items, "multiple-choice")
        assert exc.value.index == 2

    def test_empty_array(self):
        with pytest.raises(GenerationValidationError) as exc:
            validate_questions([], "multiple-choice")
        assert exc.value.index is None


class TestQuestionGenerator:
    @pytest.mark.asyncio
    async def test_true_false_scenario(self, tf_params, tf_items, study_text):
        llm = FakeLLM(responses=[json.dumps(tf_items)])
        gen = QuestionGenerator(llm)

        questions = await gen.generate(study_text, tf_params)

        assert [q.to_dict() for q in questions] == tf_items
        assert llm.call_count == 1

    @pytest.mark.asyncio
    async def test_sends_system_and_task_instructions(self, mc_params, mc_items, study_text):
        llm = FakeLLM(responses=[json.dumps(mc_items)])
        gen = QuestionGenerator(llm, temperature=0.4)

        await gen.generate(study_text, mc_params)

        call = llm.calls[0]
        assert call["temperature"] == 0.4
        assert "exactly 4" in call["system"]
        assert "JSON array" in call["system"]
        assert study_text in call["prompt"]
        assert "Generate 2 multiple-choice questions of medium difficulty" in call["prompt"]

    @pytest.mark.asyncio
    async def test_count_mismatch_is_tolerated(self, tf_params, tf_items, study_text):
        five = tf_items + tf_items[:2]
        llm = FakeLLM(responses=[json.dumps(five)])

        questions = await QuestionGenerator(llm).generate(study_text, tf_params)

        assert tf_params.question_count == 3
        assert len(questions) == 5

    @pytest.mark.asyncio
    async def test_fenced_response(self, mc_params, mc_items, study_text):
        llm = FakeLLM(responses=["```json\n" + json.dumps(mc_items) + "\n```"])
        questions = await QuestionGenerator(llm).generate(study_text, mc_params)
        assert len(questions) == 2

    @pytest.mark.asyncio
    async def test_unparseable_response(self, mc_params, study_text):
        llm = FakeLLM(responses=["Here are some great questions about cells!"])
        with pytest.raises(GenerationParseError):
            await QuestionGenerator(llm).generate(study_text, mc_params)

    @pytest.mark.asyncio
    async def test_invalid_question_returns_nothing(self, tf_params, tf_items, study_text):
        tf_items[2]["correctAnswer"] = "Perhaps"
        llm = FakeLLM(responses=[json.dumps(tf_items)])
        with pytest.raises(GenerationValidationError) as exc:
            await QuestionGenerator(llm).generate(study_text, tf_params)
        assert exc.value.index == 2

    @pytest.mark.asyncio
    async def test_no_retry_on_failure(self, mc_params, study_text):
        llm = FakeLLM(responses=["garbage", "[]"])
        with pytest.raises(GenerationParseError):
            await QuestionGenerator(llm).generate(study_text, mc_params)
        assert llm.call_count == 1

    @pytest.mark.asyncio
    async def test_upstream_failure(self, mc_params, study_text):
        llm = FakeLLM(error=ConnectionError("rate limited"))
        with pytest.raises(GenerationUpstreamError) as exc:
            await QuestionGenerator(llm).generate(study_text, mc_params)
        assert "rate limited" in str(exc.value)
        assert isinstance(exc.value.__cause__, ConnectionError)

    @pytest.mark.asyncio
    async def test_timeout_becomes_upstream_error(self, mc_params, mc_items, study_text):
        llm = FakeLLM(responses=[json.dumps(mc_items)], delay=1.0)
        with pytest.raises(GenerationUpstreamError):
            await QuestionGenerator(llm).generate(study_text, mc_params, timeout=0.01)

    @pytest.mark.asyncio
    async def test_constructor_timeout_applies(self, mc_params, mc_items, study_text):
        llm = FakeLLM(responses=[json.dumps(mc_items)], delay=1.0)
        with pytest.raises(GenerationUpstreamError):
            await QuestionGenerator(llm, timeout=0.01).generate(study_text, mc_params)

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, mc_params, mc_items, study_text):
        llm = FakeLLM(responses=[json.dumps(mc_items)], delay=5.0)
        task = asyncio.create_task(QuestionGenerator(llm).generate(study_text, mc_params))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    @pytest.mark.asyncio
    async def test_empty_content_rejected_before_call(self, mc_params):
        llm = FakeLLM(responses=["[]"])
        with pytest.raises(ValueError):
            await QuestionGenerator(llm).generate("   ", mc_params)
        assert llm.call_count == 0

    @pytest.mark.asyncio
    async def test_concurrent_calls_are_independent(self, mc_items, tf_items, study_text):
        mc = GenerationParameters("multiple-choice", "hard", "university", 2)
        tf = GenerationParameters("true-false", "easy", "elementary", 3)
        gen_mc = QuestionGenerator(FakeLLM(responses=[json.dumps(mc_items)], delay=0.02))
        gen_tf = QuestionGenerator(FakeLLM(responses=[json.dumps(tf_items)]))

        got_mc, got_tf = await asyncio.gather(
            gen_mc.generate(study_text, mc),
            gen_tf.generate(study_text, tf),
        )
        assert len(got_mc) == 2
        assert len(got_tf) == 3
