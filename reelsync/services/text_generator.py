from __future__ import annotations

from abc import ABC, abstractmethod

import openai
from openai import AsyncOpenAI

from reelsync.core.config import Settings
from reelsync.core.errors import EnrichmentFailed
from reelsync.db.models import EnrichmentKind

TITLE_PROMPT = (
    "You write titles for uploaded videos. Given the transcript, reply with one concise, "
    "descriptive title of at most 100 characters. Reply with the title only, no quotes."
)
DESCRIPTION_PROMPT = (
    "You write descriptions for uploaded videos. Given the transcript, reply with a summary "
    "of at most 3000 characters in plain prose. Reply with the description only."
)

_LIMITS = {EnrichmentKind.title: 100, EnrichmentKind.description: 3000}


class TextGenerator(ABC):
    @abstractmethod
    async def generate(self, kind: EnrichmentKind, transcript: str) -> str: ...


class OpenAITextGenerator(TextGenerator):
    def __init__(self, api_key: str, model: str, *, timeout_s: float = 30.0):
        self.api_key = api_key
        self.model = model
        self.timeout_s = timeout_s
        self._client: AsyncOpenAI | None = None

    @property
    def client(self) -> AsyncOpenAI:
        # created on first use so processes without a key can still boot
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key or None, timeout=self.timeout_s)
        return self._client

    async def generate(self, kind: EnrichmentKind, transcript: str) -> str:
        prompt = TITLE_PROMPT if kind == EnrichmentKind.title else DESCRIPTION_PROMPT
        try:
            completion = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": prompt},
                    {"role": "user", "content": transcript},
                ],
            )
        except openai.OpenAIError as exc:
            raise EnrichmentFailed(f"generator_error:{type(exc).__name__}") from exc
        text = (completion.choices[0].message.content or "").strip().strip('"')
        if not text:
            raise EnrichmentFailed("empty_generation")
        return text[: _LIMITS[kind]]


def get_text_generator(settings: Settings) -> TextGenerator:
    return OpenAITextGenerator(settings.secrets.openai_api_key, settings.openai_model, timeout_s=settings.http_timeout_s * 3)


__all__ = ["TextGenerator", "OpenAITextGenerator", "get_text_generator", "TITLE_PROMPT", "DESCRIPTION_PROMPT"]
