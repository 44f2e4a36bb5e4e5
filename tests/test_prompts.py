"""Tests for prompt templates and formatting."""
from __future__ import annotations

import json

from studyquiz.models import GenerationParameters
from studyquiz.prompts import EXAMPLES, build_system_prompt, build_task_prompt


def _params(question_type: str = "multiple-choice", **kw) -> GenerationParameters:
    defaults = {"difficulty": "medium", "academic_level": "high", "question_count": 5}
    defaults.update(kw)
    return GenerationParameters(question_type=question_type, **defaults)


class TestSystemPrompt:
    def test_multiple_choice_arity(self):
        system = build_system_prompt(_params("multiple-choice"))
        assert "exactly 4" in system
        assert "multiple-choice" in system

    def test_true_false_arity(self):
        system = build_system_prompt(_params("true-false"))
        assert '["True", "False"]' in system

    def test_fill_blank_convention(self):
        system = build_system_prompt(_params("fill-blank"))
        assert "FIRST entry" in system
        assert "___" in system

    def test_contains_field_contract(self):
        system = build_system_prompt(_params())
        for key in ("questionText", "options", "correctAnswer"):
            assert f'"{key}"' in system
        assert "code fences" in system

    def test_examples_are_valid_json(self):
        for qtype, example in EXAMPLES.items():
            items = json.loads(example)
            assert len(items) == 1
            assert items[0]["correctAnswer"] in items[0]["options"]
            assert example in build_system_prompt(_params(qtype))

    def test_deterministic(self):
        assert build_system_prompt(_params()) == build_system_prompt(_params())


class TestTaskPrompt:
    def test_embeds_parameters(self):
        prompt = build_task_prompt("Photosynthesis happens in chloroplasts.", _params(
            "true-false", difficulty="hard", academic_level="middle", question_count=7,
        ))
        assert "Generate 7 true-false questions of hard difficulty" in prompt
        assert "middle school" in prompt
        assert "Photosynthesis happens in chloroplasts." in prompt

    def test_content_not_truncated(self):
        content = "word " * 5000
        assert content in build_task_prompt(content, _params())

    def test_braces_in_content(self):
        content = "A set is written {1, 2, 3} and a dict as {'a': 1}."
        assert content in build_task_prompt(content, _params())
