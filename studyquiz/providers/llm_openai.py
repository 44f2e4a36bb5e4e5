from __future__ import annotations

import base64
import os

from studyquiz.providers.base import LLMProvider


class OpenAIProvider(LLMProvider):
    def __init__(self, model: str = "gpt-3.5-turbo", timeout: float = 120.0,
                 vision_model: str = "gpt-4o-mini"):
        import openai
        self.client = openai.AsyncOpenAI(
            api_key=os.environ.get("OPENAI_API_KEY", ""),
            timeout=timeout,
            max_retries=0,
        )
        self.model = model
        self.vision_model = vision_model

    async def generate(self, prompt: str, temperature: float = 0.7, system: str | None = None) -> str:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        resp = await self.client.chat.completions.create(
            model=self.model,
            temperature=temperature,
            messages=messages,
        )
        return resp.choices[0].message.content or ""

    async def extract_image_text(self, data: bytes, mime_type: str, prompt: str) -> str:
        encoded = base64.b64encode(data).decode("ascii")
        resp = await self.client.chat.completions.create(
            model=self.vision_model,
            messages=[{
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{encoded}"}},
                ],
            }],
        )
        return resp.choices[0].message.content or ""

    def name(self) -> str:
        return f"openai/{self.model}"
