"""Typed failures of the question generation pipeline."""
from __future__ import annotations


class GenerationError(Exception):
    """Base class: the generation call produced no usable questions."""


class GenerationUpstreamError(GenerationError):
    """The generation service call failed (network, auth, rate limit, timeout)."""


class GenerationParseError(GenerationError):
    """The response could not be read as a JSON array of questions."""


class GenerationValidationError(GenerationError):
    """A parsed question broke a structural or referential invariant.

    ``index`` is the 0-based position of the offending question, or None
    when the batch as a whole is rejected (e.g. an empty array).
    """

    def __init__(self, index: int | None, field: str, reason: str):
        self.index = index
        self.field = field
        self.reason = reason
        where = f"question[{index}]" if index is not None else "questions"
        super().__init__(f"{where}.{field}: {reason}" if index is not None else f"{where}: {reason}")
