"""Short chat answers from an OpenAI-compatible chat completion endpoint."""

from __future__ import annotations

import logging
import re

from openai import AsyncOpenAI
from openai.types.chat import ChatCompletionMessageParam

LOGGER: logging.Logger = logging.getLogger("Engine.AI")

_THINK_BLOCK = re.compile(r"<think>[\s\S]*?(</think>|$)")


def truncate(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[: max_chars - 3].rstrip() + "..."


class AIAnswerService:
    """Answers ``!ask`` questions.

    Clients are created per API key since the key comes from whichever
    credential the pool selected for the call.
    """

    def __init__(self, base_url: str, model: str, max_chars: int = 150) -> None:
        self.base_url = base_url
        self.model = model
        self.max_chars = max_chars
        self._clients: dict[str, AsyncOpenAI] = {}

    def _client(self, api_key: str) -> AsyncOpenAI:
        client = self._clients.get(api_key)
        if client is None:
            client = self._clients[api_key] = AsyncOpenAI(base_url=self.base_url, api_key=api_key)
        return client

    async def answer(self, question: str, api_key: str) -> str:
        """Return an answer of at most ``max_chars`` characters.

        Raises ValueError for a missing key or an empty completion; openai
        errors propagate to the caller.
        """
        if not api_key:
            raise ValueError("No AI API key configured for the selected credential")

        messages: list[ChatCompletionMessageParam] = [
            {
                "role": "system",
                "content": (
                    "You are a friendly YouTube live chat bot. "
                    f"Answer in plain text, at most {self.max_chars} characters, no markdown."
                ),
            },
            {
                "role": "user",
                "content": (
                    f"Please provide a brief, clear answer (maximum {self.max_chars} "
                    f"characters) to: {question}"
                ),
            },
        ]

        LOGGER.debug(f"AI request: model={self.model}, question={question[:100]}")
        completion = await self._client(api_key).chat.completions.create(
            model=self.model,
            max_tokens=256,
            messages=messages,
        )
        if not completion.choices:
            raise ValueError("AI returned no choices")

        raw = completion.choices[0].message.content or ""
        text = _THINK_BLOCK.sub("", raw).strip()
        if not text:
            raise ValueError("AI returned empty content")

        LOGGER.info(f"AI [{self.model}]: raw={len(raw)}, clean={len(text)}")
        return truncate(text, self.max_chars)

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()
        self._clients.clear()
