from __future__ import annotations

from abc import ABC, abstractmethod


class LLMProvider(ABC):
    @abstractmethod
    async def generate(self, prompt: str, temperature: float = 0.7, system: str | None = None) -> str:
        ...

    async def extract_image_text(self, data: bytes, mime_type: str, prompt: str) -> str:
        """Read the text out of an image. Only vision-capable providers support this."""
        raise NotImplementedError(f"{self.name()} cannot read images")

    @abstractmethod
    def name(self) -> str:
        ...
